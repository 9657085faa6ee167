"""
===============================================================================
ASTROGATOR - Host Simulation Contract
===============================================================================
Everything the planner needs from the game (or any other patched-conic
simulation) goes through this interface:

    Read:   universal time, the reference-body tree, vessels, the active
            vessel and its target, the translation-control input, existing
            maneuver nodes and the predicted trajectory after a node.
    Write:  create, update and remove maneuver nodes; request time-warp.

The host is passed explicitly to whatever needs it.  Implementations must
allow the node and trajectory calls from a background thread; the planner
never issues two such calls concurrently.
===============================================================================
"""

import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, List, Optional, Sequence, Tuple, Union

import numpy as np

from astrogator.dynamics.bodies import (
    BodyTree,
    CelestialNode,
    TargetRef,
    VesselView,
)
from astrogator.dynamics.orbital_mechanics import OrbitState

logger = logging.getLogger(__name__)

Target = Union[CelestialNode, VesselView]


class ManeuverNodeError(RuntimeError):
    """Raised when the host cannot honour a maneuver-node request."""


@dataclass(frozen=True)
class ManeuverNodeView:
    """A maneuver node as the host reports it."""
    node_id: int
    time: float
    delta_v: Tuple[float, float, float]    # (radial, normal, prograde)


@dataclass(frozen=True)
class InputState:
    """Translation-control axes and the fine-control modifier."""
    radial: float = 0.0
    normal: float = 0.0
    prograde: float = 0.0
    precision: bool = False

    @property
    def is_neutral(self) -> bool:
        return self.radial == 0.0 and self.normal == 0.0 and self.prograde == 0.0

    def as_vector(self) -> np.ndarray:
        return np.array([self.radial, self.normal, self.prograde])


class HostSimulation(ABC):
    """Abstract patched-conic simulation the planner reads and writes."""

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    @abstractmethod
    def universal_time(self) -> float:
        """Current simulation time (s)."""

    @property
    @abstractmethod
    def body_tree(self) -> BodyTree:
        """The reference-body hierarchy."""

    @abstractmethod
    def vessels(self) -> List[VesselView]:
        """Every vessel, station and asteroid the host knows about."""

    @abstractmethod
    def active_vessel(self) -> Optional[VesselView]:
        """Vessel under the player's control, if any."""

    @abstractmethod
    def target(self) -> Optional[TargetRef]:
        """The active vessel's target, if any."""

    @abstractmethod
    def input_state(self) -> InputState:
        """Current translation-control input."""

    @abstractmethod
    def maneuver_nodes(self) -> List[ManeuverNodeView]:
        """The active vessel's maneuver nodes in time order."""

    @abstractmethod
    def trajectory_after(self, node_id: int) -> List[OrbitState]:
        """
        Predicted orbit patches after a node, including the effect of every
        earlier node, in the order they will be flown.
        """

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    @abstractmethod
    def add_maneuver_node(self, time: float, delta_v: Sequence[float]) -> int:
        """Create a node on the active vessel and return its id."""

    @abstractmethod
    def update_maneuver_node(self, node_id: int, delta_v: Sequence[float]) -> None:
        """Replace a node's delta-V."""

    @abstractmethod
    def remove_maneuver_node(self, node_id: int) -> None:
        """Delete a node; unknown ids raise ManeuverNodeError."""

    @abstractmethod
    def warp_to(self, time: float) -> None:
        """Request time-warp up to ``time``."""

    # ------------------------------------------------------------------
    # Conveniences built on the contract
    # ------------------------------------------------------------------

    def vessel(self, name: str) -> Optional[VesselView]:
        for vessel in self.vessels():
            if vessel.name == name:
                return vessel
        return None

    def resolve(self, ref: Optional[TargetRef]) -> Optional[Target]:
        """Current snapshot of a body or vessel, None if it no longer exists."""
        if ref is None:
            return None
        if ref.is_vessel:
            return self.vessel(ref.name)
        return self.body_tree.find(ref.name)

    def orbit_of(self, ref: Optional[TargetRef]) -> Optional[OrbitState]:
        target = self.resolve(ref)
        return None if target is None else target.orbit

    def parent_of(self, ref: TargetRef) -> Optional[CelestialNode]:
        """Body whose sphere of influence ``ref`` is in."""
        if ref.is_vessel:
            orbit = self.orbit_of(ref)
            return None if orbit is None else self.body_tree.find(orbit.reference_body)
        return self.body_tree.parent(ref.name)

    def node_ids(self) -> List[int]:
        return [node.node_id for node in self.maneuver_nodes()]

    def has_node(self, node_id: Optional[int]) -> bool:
        return node_id is not None and node_id in self.node_ids()

    def find_node(self, node_id: Optional[int]) -> Optional[ManeuverNodeView]:
        for node in self.maneuver_nodes():
            if node.node_id == node_id:
                return node
        return None

    def clear_maneuver_nodes(self) -> None:
        for node_id in self.node_ids():
            self.remove_maneuver_node(node_id)

    @contextmanager
    def transient_node(self, time: float, delta_v: Sequence[float]) -> Iterator[int]:
        """
        Create a node for the duration of a ``with`` block.

        The node is removed on every exit path, including exceptions and
        cancellation, unless the host already dropped it.
        """
        node_id = self.add_maneuver_node(time, delta_v)
        try:
            yield node_id
        finally:
            if self.has_node(node_id):
                self.remove_maneuver_node(node_id)
            else:
                logger.debug("Transient node %d vanished before cleanup", node_id)
