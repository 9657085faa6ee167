"""
===============================================================================
ASTROGATOR - Astrogation Model
===============================================================================
The set of transfers available from one origin, and which of them the
player is currently looking at.

The transfer list is only ever replaced wholesale (by the route resolver on
the simulation thread).  The active transfer is kept as a reference into
that list and re-validated on every read, so a rebuilt list silently drops
a stale selection.
===============================================================================
"""

import logging
from typing import List, Optional, Sequence

from astrogator.core.settings import Settings
from astrogator.dynamics.bodies import TargetRef
from astrogator.guidance.transfer_model import TransferModel
from astrogator.simulation.host import HostSimulation

logger = logging.getLogger(__name__)


class AstrogationModel:
    """Aggregate of TransferModels from a single origin."""

    def __init__(self, origin: Optional[TargetRef] = None) -> None:
        self.origin = origin
        self.transfers: List[TransferModel] = []
        self.bad_inclination = False
        self._active: Optional[TransferModel] = None

    def reset(self, origin: Optional[TargetRef], transfers: Sequence[TransferModel],
              bad_inclination: bool = False) -> None:
        """Replace the origin and every transfer."""
        self.origin = origin
        self.transfers = list(transfers)
        self.bad_inclination = bad_inclination
        self._active = None
        logger.debug("Astrogation model reset: origin %s, %d transfer(s)",
                     origin, len(self.transfers))

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self.transfers)

    def __iter__(self):
        return iter(list(self.transfers))

    def transfer_for(self, destination: TargetRef) -> Optional[TransferModel]:
        for transfer in self.transfers:
            if transfer.destination == destination:
                return transfer
        return None

    def has_destination(self, destination: TargetRef) -> bool:
        return self.transfer_for(destination) is not None

    @property
    def active_transfer(self) -> Optional[TransferModel]:
        active = self._active
        if active is not None and any(t is active for t in self.transfers):
            return active
        self._active = None
        return None

    @active_transfer.setter
    def active_transfer(self, transfer: Optional[TransferModel]) -> None:
        if transfer is not None and not any(t is transfer for t in self.transfers):
            raise ValueError(f"{transfer!r} is not part of this model")
        self._active = transfer

    def origin_description(self, host: HostSimulation) -> str:
        """Short text naming the origin and where it is."""
        if self.origin is None:
            return 'No origin'
        target = host.resolve(self.origin)
        if target is None:
            return f"{self.origin.name} (lost)"
        if self.origin.is_vessel:
            if target.landed or target.orbit is None:
                return f"{target.name} ({target.situation.name.lower()})"
            return f"{target.name} orbiting {target.orbit.reference_body}"
        return target.name

    # ------------------------------------------------------------------
    # Bulk operations
    # ------------------------------------------------------------------

    def recalculate_ejection_burns(self, host: HostSimulation) -> int:
        """Recompute every ejection burn; returns how many are feasible."""
        feasible = 0
        for transfer in list(self.transfers):
            try:
                if transfer.calculate_ejection_burn(host) is not None:
                    feasible += 1
            except Exception:
                logger.exception("Ejection burn for %s failed", transfer.destination)
        return feasible

    def stale_transfers(self, now: float) -> List[TransferModel]:
        return [t for t in self.transfers if t.is_stale(now)]

    def check_if_nodes_disappeared(self, host: HostSimulation) -> None:
        for transfer in self.transfers:
            transfer.check_if_nodes_disappeared(host)

    def apply_translation_input(self, host: HostSimulation, settings: Settings) -> bool:
        """Nudge the burn being edited from the translation controls."""
        if not settings.translation_adjust:
            return False
        transfer = self.active_transfer
        if transfer is None:
            return False
        if settings.auto_edit_plane_change_node and transfer.plane_change_burn is not None:
            burn = transfer.plane_change_burn
        else:
            burn = transfer.ejection_burn
        if burn is None:
            return False
        return burn.adjust_from_input(host, settings.fine_adjust_step,
                                      settings.coarse_adjust_step)
