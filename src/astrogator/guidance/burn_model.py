"""
===============================================================================
ASTROGATOR - Burn Model
===============================================================================
One planned impulsive burn: when to fire and how much delta-V to apply, in
the (radial, normal, prograde) frame of the orbit being burned from.

A burn may be linked to a real maneuver node on the host through
``node_id``.  The model never holds the node itself; it looks the node up
by id whenever it needs it, so a node the player deleted simply stops
being found and the link is dropped.
===============================================================================
"""

import logging
from typing import Optional, Sequence

import numpy as np

from astrogator.simulation.host import HostSimulation, ManeuverNodeView

logger = logging.getLogger(__name__)

# Burns are equal when time and every component agree this closely.
_TIME_EPSILON = 1e-3        # s
_DELTA_V_EPSILON = 1e-3     # m/s


class BurnModel:
    """
    A maneuver to perform at a given time.

    Parameters
    ----------
    time : float
        Universal time of the burn (s).
    delta_v : sequence of float
        (radial, normal, prograde) delta-V (m/s).
    node_id : int, optional
        Id of the host maneuver node this burn is mirrored into.
    """

    def __init__(self, time: float, delta_v: Sequence[float],
                 node_id: Optional[int] = None) -> None:
        self.time = float(time)
        self.delta_v = np.array(delta_v, dtype=np.float64).reshape(3)
        self.node_id = node_id

    # ------------------------------------------------------------------
    # Components
    # ------------------------------------------------------------------

    @property
    def radial(self) -> float:
        return float(self.delta_v[0])

    @property
    def normal(self) -> float:
        return float(self.delta_v[1])

    @property
    def prograde(self) -> float:
        return float(self.delta_v[2])

    @property
    def total_delta_v(self) -> float:
        """Magnitude of the burn (m/s)."""
        return float(np.linalg.norm(self.delta_v))

    @property
    def is_linked(self) -> bool:
        return self.node_id is not None

    def is_stale(self, now: float) -> bool:
        """True once the burn time has passed."""
        return self.time < now

    def time_until(self, now: float) -> float:
        return self.time - now

    # ------------------------------------------------------------------
    # Host node link
    # ------------------------------------------------------------------

    def node(self, host: HostSimulation) -> Optional[ManeuverNodeView]:
        return host.find_node(self.node_id) if self.node_id is not None else None

    def matches_node(self, node: ManeuverNodeView) -> bool:
        return (abs(node.time - self.time) < _TIME_EPSILON
                and np.allclose(node.delta_v, self.delta_v, atol=_DELTA_V_EPSILON))

    def activate(self, host: HostSimulation) -> int:
        """Create a real host node for this burn and link to it."""
        self.node_id = host.add_maneuver_node(self.time, self.delta_v)
        logger.debug("Created node %d at %.1f for %.1f m/s",
                     self.node_id, self.time, self.total_delta_v)
        return self.node_id

    def remove_node(self, host: HostSimulation) -> None:
        """Delete the linked host node, if it still exists, and unlink."""
        if self.node_id is not None and host.has_node(self.node_id):
            host.remove_maneuver_node(self.node_id)
        self.node_id = None

    def check_link(self, host: HostSimulation) -> bool:
        """Drop the link if the host no longer has the node; return whether linked."""
        if self.node_id is not None and not host.has_node(self.node_id):
            logger.debug("Node %d disappeared, unlinking burn", self.node_id)
            self.node_id = None
        return self.node_id is not None

    def transient(self, host: HostSimulation):
        """Context manager placing a temporary host node for this burn."""
        return host.transient_node(self.time, self.delta_v)

    # ------------------------------------------------------------------
    # Adjustment
    # ------------------------------------------------------------------

    def adjust(self, host: HostSimulation, direction: Sequence[float],
               magnitude_fraction: float, step: float) -> bool:
        """
        Nudge the burn along ``direction`` by ``magnitude_fraction * step``
        m/s and push the new delta-V to the linked node.

        Does nothing and returns False when the burn has no live node.
        """
        if not self.check_link(host):
            return False
        if magnitude_fraction == 0.0:
            return True
        self.delta_v = self.delta_v + np.asarray(direction, dtype=np.float64) * (
            magnitude_fraction * step)
        host.update_maneuver_node(self.node_id, self.delta_v)
        return True

    def adjust_from_input(self, host: HostSimulation, fine_step: float,
                          coarse_step: float) -> bool:
        """Apply the host's translation-control input as a nudge."""
        controls = host.input_state()
        if controls.is_neutral:
            return False
        step = fine_step if controls.precision else coarse_step
        return self.adjust(host, controls.as_vector(), 1.0, step)

    # ------------------------------------------------------------------
    # Value semantics
    # ------------------------------------------------------------------

    def same_burn(self, other: Optional['BurnModel']) -> bool:
        """Equality by time and delta-V, ignoring any node link."""
        return (other is not None
                and abs(other.time - self.time) < _TIME_EPSILON
                and bool(np.allclose(other.delta_v, self.delta_v, atol=_DELTA_V_EPSILON)))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, BurnModel):
            return NotImplemented
        return self.same_burn(other)

    def __repr__(self) -> str:
        return (f"BurnModel(time={self.time:.1f}, radial={self.radial:.2f}, "
                f"normal={self.normal:.2f}, prograde={self.prograde:.2f}, "
                f"node_id={self.node_id})")
