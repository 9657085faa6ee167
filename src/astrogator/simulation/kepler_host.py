"""
===============================================================================
ASTROGATOR - In-Memory Keplerian Host
===============================================================================
A self-contained HostSimulation built on pure two-body propagation, used by
the command-line planner and the test suite.

Trajectory prediction follows the patched-conic model: after each maneuver
node the vessel's new orbit is propagated until it leaves its body's sphere
of influence, at which point it continues as an orbit of the parent body.
Entering a satellite's sphere of influence is not modelled.

All node and trajectory calls are serialised by a re-entrant lock so the
background scheduler can use the host while the main thread reads it.
===============================================================================
"""

import logging
import math
import threading
from dataclasses import dataclass, replace
from typing import Dict, List, Optional, Sequence

import numpy as np

from astrogator.dynamics.bodies import BodyTree, TargetRef, VesselView
from astrogator.dynamics.orbital_mechanics import OrbitState
from astrogator.simulation.host import (
    HostSimulation,
    InputState,
    ManeuverNodeError,
    ManeuverNodeView,
)

logger = logging.getLogger(__name__)

# A vessel can hop up at most this many spheres of influence per prediction
MAX_PATCHES = 4


@dataclass
class Patch:
    """One conic of a predicted trajectory, valid for start <= t < end."""
    orbit: OrbitState
    start: float
    end: float = math.inf


def local_to_inertial(position: np.ndarray, velocity: np.ndarray,
                      delta_v: Sequence[float]) -> np.ndarray:
    """
    Rotate a (radial, normal, prograde) burn into the inertial frame.

    prograde = v / |v|
    normal   = (r x v) / |r x v|
    radial   = prograde x normal
    """
    prograde = velocity / np.linalg.norm(velocity)
    h = np.cross(position, velocity)
    normal = h / np.linalg.norm(h)
    radial = np.cross(prograde, normal)
    radial_dv, normal_dv, prograde_dv = (float(c) for c in delta_v)
    return radial_dv * radial + normal_dv * normal + prograde_dv * prograde


class KeplerianHost(HostSimulation):
    """
    Patched-conic host holding bodies, vessels and the active vessel's nodes.

    Parameters
    ----------
    body_tree : BodyTree
        Bodies of the system.
    universal_time : float
        Starting clock value (s).
    """

    def __init__(self, body_tree: BodyTree, universal_time: float = 0.0) -> None:
        self._tree = body_tree
        self._ut = float(universal_time)
        self._vessels: Dict[str, VesselView] = {}
        self._active: Optional[str] = None
        self._target: Optional[TargetRef] = None
        self._input = InputState()
        self._nodes: Dict[int, ManeuverNodeView] = {}
        self._next_node_id = 1
        self._lock = threading.RLock()
        self.warp_requests: List[float] = []

    # ------------------------------------------------------------------
    # Scenario setup
    # ------------------------------------------------------------------

    def set_time(self, ut: float) -> None:
        with self._lock:
            self._ut = float(ut)

    def advance(self, seconds: float) -> float:
        with self._lock:
            self._ut += seconds
            return self._ut

    def add_vessel(self, vessel: VesselView, active: bool = False) -> None:
        with self._lock:
            if vessel.orbit is not None and vessel.orbit.reference_body not in self._tree:
                raise ValueError(f"{vessel.name} orbits unknown body "
                                 f"'{vessel.orbit.reference_body}'")
            self._vessels[vessel.name] = vessel
            if active:
                self._active = vessel.name

    def set_vessel_orbit(self, name: str, orbit: OrbitState) -> None:
        with self._lock:
            self._vessels[name] = replace(self._vessels[name], orbit=orbit)

    def set_active_vessel(self, name: Optional[str]) -> None:
        with self._lock:
            if name is not None and name not in self._vessels:
                raise KeyError(f"Unknown vessel '{name}'")
            if name != self._active:
                self._nodes.clear()
            self._active = name

    def set_target(self, target: Optional[TargetRef]) -> None:
        self._target = target

    def set_input(self, controls: InputState) -> None:
        self._input = controls

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def universal_time(self) -> float:
        return self._ut

    @property
    def body_tree(self) -> BodyTree:
        return self._tree

    def vessels(self) -> List[VesselView]:
        with self._lock:
            return list(self._vessels.values())

    def active_vessel(self) -> Optional[VesselView]:
        with self._lock:
            return None if self._active is None else self._vessels[self._active]

    def target(self) -> Optional[TargetRef]:
        return self._target

    def input_state(self) -> InputState:
        return self._input

    def maneuver_nodes(self) -> List[ManeuverNodeView]:
        with self._lock:
            return sorted(self._nodes.values(), key=lambda n: (n.time, n.node_id))

    def trajectory_after(self, node_id: int) -> List[OrbitState]:
        with self._lock:
            if node_id not in self._nodes:
                raise ManeuverNodeError(f"No maneuver node {node_id}")
            vessel = self.active_vessel()
            if vessel is None or vessel.orbit is None:
                raise ManeuverNodeError("No active vessel in orbit")

            chain = self.propagate(vessel.orbit, self._ut)
            for node in self.maneuver_nodes():
                chain = self._apply_node(chain, node)
                if node.node_id == node_id:
                    return [patch.orbit for patch in chain]
        raise ManeuverNodeError(f"Node {node_id} vanished during prediction")

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    def add_maneuver_node(self, time: float, delta_v: Sequence[float]) -> int:
        with self._lock:
            if self._active is None:
                raise ManeuverNodeError("No active vessel for a maneuver node")
            node_id = self._next_node_id
            self._next_node_id += 1
            self._nodes[node_id] = ManeuverNodeView(
                node_id, float(time), tuple(float(c) for c in delta_v))
            return node_id

    def update_maneuver_node(self, node_id: int, delta_v: Sequence[float]) -> None:
        with self._lock:
            if node_id not in self._nodes:
                raise ManeuverNodeError(f"No maneuver node {node_id}")
            node = self._nodes[node_id]
            self._nodes[node_id] = replace(node, delta_v=tuple(float(c) for c in delta_v))

    def remove_maneuver_node(self, node_id: int) -> None:
        with self._lock:
            if self._nodes.pop(node_id, None) is None:
                raise ManeuverNodeError(f"No maneuver node {node_id}")

    def warp_to(self, time: float) -> None:
        with self._lock:
            self.warp_requests.append(time)
            self._ut = max(self._ut, float(time))

    # ------------------------------------------------------------------
    # Patched conics
    # ------------------------------------------------------------------

    def soi_exit_time(self, orbit: OrbitState, after_ut: float) -> Optional[float]:
        """Time the orbit next crosses its body's SOI boundary outward, if ever."""
        body = self._tree.find(orbit.reference_body)
        if body is None or body.parent is None or math.isinf(body.sphere_of_influence):
            return None
        soi = body.sphere_of_influence
        if orbit.is_periodic and orbit.apoapsis < soi:
            return None
        if orbit.eccentricity <= 0.0:
            return None

        cos_nu = (orbit.semi_latus_rectum / soi - 1.0) / orbit.eccentricity
        if abs(cos_nu) > 1.0:
            return None
        exit_time = orbit.ut_at_true_anomaly(math.acos(cos_nu), after_ut)
        if exit_time < after_ut:
            return None
        return exit_time

    def to_parent_frame(self, orbit: OrbitState, ut: float) -> OrbitState:
        """Re-express an orbit about its body as an orbit about that body's parent."""
        body = self._tree.get(orbit.reference_body)
        parent = self._tree.get(body.parent)
        r, v = orbit.state_at(ut)
        r_body, v_body = body.orbit.state_at(ut)
        return OrbitState.from_state_vectors(r + r_body, v + v_body, parent.mu, ut, parent.name)

    def propagate(self, orbit: OrbitState, start_ut: float) -> List[Patch]:
        """Patch chain of an orbit from ``start_ut`` onward."""
        chain = [Patch(orbit, start_ut)]
        while len(chain) < MAX_PATCHES:
            last = chain[-1]
            exit_time = self.soi_exit_time(last.orbit, last.start)
            if exit_time is None:
                break
            last.end = exit_time
            chain.append(Patch(self.to_parent_frame(last.orbit, exit_time), exit_time))
        return chain

    def _apply_node(self, chain: List[Patch], node: ManeuverNodeView) -> List[Patch]:
        patch = chain[0]
        for candidate in chain:
            if candidate.start <= node.time:
                patch = candidate
        orbit = patch.orbit
        r, v = orbit.state_at(node.time)
        v_new = v + local_to_inertial(r, v, node.delta_v)
        burned = OrbitState.from_state_vectors(r, v_new, orbit.mu, node.time,
                                               orbit.reference_body)
        return chain[:chain.index(patch)] + self.propagate(burned, node.time)
