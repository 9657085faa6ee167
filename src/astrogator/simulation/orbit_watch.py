"""
===============================================================================
ASTROGATOR - Orbit Change Watch
===============================================================================
Notices when a vessel's orbit stops matching the last snapshot taken of it,
which is the signal to recompute its burns.
===============================================================================
"""

import logging
from typing import Optional

from astrogator.dynamics.orbital_mechanics import OrbitState

logger = logging.getLogger(__name__)


class OrbitChangeDetector:
    """Compares successive orbit snapshots using the orbit tolerances."""

    def __init__(self, orbit: Optional[OrbitState] = None) -> None:
        self._last = orbit

    def reset(self, orbit: Optional[OrbitState] = None) -> None:
        self._last = orbit

    def poll(self, orbit: Optional[OrbitState]) -> bool:
        """Store ``orbit`` and report whether it differs from the previous one."""
        previous, self._last = self._last, orbit
        if previous is None:
            return False
        if orbit is None:
            return True
        if previous.matches(orbit):
            # Keep the older snapshot so slow drift still accumulates
            self._last = previous
            return False
        logger.info("Orbit changed: %s", previous.describe_differences(orbit))
        return True
