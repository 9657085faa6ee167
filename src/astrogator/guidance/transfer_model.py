"""
===============================================================================
ASTROGATOR - Transfer Model
===============================================================================
Plan for travelling from one origin to one destination: an ejection burn
and, optionally, a mid-course plane-change burn.

Ejection burn
-------------
The destination's chain of parents is walked upward until it reaches the
body the origin currently orbits.  Three cases follow:

    1. The origin's body is the destination's parent (or grandparent ...):
       a Hohmann-like transfer to that satellite, timed by phase angle.
    2. The origin's body is the destination itself: drop to a low parking
       orbit around it.
    3. Neither: plan the transfer for the origin's body first, then find
       where on the current orbit to burn so the escape asymptote lines up
       with that outer burn.

Plane change
------------
The ejection burn is placed on the host as a transient node, the patch of
the predicted trajectory around the transfer parent is found, and a normal
burn at the next node crossing is grown until the post-burn plane matches
the destination's within tolerance.  Each trial node is transient too, so
the host never keeps a node the planner did not mean to leave behind.

Computing a plane change reads and writes host nodes but never replaces
this model's burns; ``apply_plane_change`` stores the result and must run
on the simulation thread.
===============================================================================
"""

import logging
import math
import threading
import time as wallclock
from contextlib import contextmanager, nullcontext
from dataclasses import dataclass
from enum import Enum, auto
from typing import List, Optional

import numpy as np

from astrogator.core.constants import (
    TAU,
    PI,
    HALF_PI,
    RAD2DEG,
    SOI_AIM_FRACTION,
    EJECTION_ANGLE_ITERATIONS,
    MIN_PLANE_CHANGE_DELTA_V,
    STALE_BURN_TOLERANCE,
)
from astrogator.core.settings import Settings
from astrogator.dynamics.bodies import CelestialNode, TargetRef
from astrogator.dynamics.orbital_mechanics import OrbitState, clamp_angle
from astrogator.guidance.burn_model import BurnModel
from astrogator.guidance.orbital_math import (
    NeverAlignsError,
    NotPeriodicError,
    absolute_phase_angle,
    ejection_angle,
    escape_delta_v,
    orbital_period,
    phase_angle,
    plane_change_delta_v,
    speed_at_periapsis,
    time_at_angle_from_midnight,
    time_to_next_alignment,
    transfer_delta_v,
    transfer_period,
)
from astrogator.simulation.host import HostSimulation

logger = logging.getLogger(__name__)


class TransferState(Enum):
    """Progress of a transfer through its calculations."""
    UNCALCULATED = auto()
    EJECTION_INFEASIBLE = auto()
    EJECTION_CALCULATED = auto()
    PLANE_CHANGE_CALCULATED = auto()
    PLANE_CHANGE_SKIPPED = auto()
    PLANE_CHANGE_FAILED = auto()


class Infeasibility(Enum):
    """Why no ejection burn exists."""
    NO_ORIGIN_ORBIT = 'origin has no orbit'
    NO_DESTINATION_ORBIT = 'destination has no orbit'
    DESTINATION_ESCAPING = 'destination is on an escape trajectory'
    ORIGIN_LANDED = 'origin is on the surface'
    ORIGIN_ESCAPING = 'origin is leaving its sphere of influence'
    NO_COMMON_ANCESTOR = 'origin and destination share no parent body'
    NOT_PERIODIC = 'an orbit involved is not periodic'
    NEVER_ALIGNS = 'origin and destination never reach the transfer phase'
    ZERO_GRAVITY = 'reference body has no gravity'
    BURN_IN_PAST = 'burn time has already passed'


class NodePolicy(Enum):
    """How pre-existing maneuver nodes were treated by a plane-change run."""
    NONE_PRESENT = auto()
    REUSED_EJECTION_NODE = auto()
    REMOVED_FOREIGN = auto()
    FOREIGN_PRESENT = auto()


class CalculationCancelled(Exception):
    """Raised inside a plane-change run once it has been superseded."""


class _Infeasible(Exception):
    def __init__(self, reason: Infeasibility) -> None:
        super().__init__(reason.value)
        self.reason = reason


@dataclass
class PlaneChangeOutcome:
    """Result of one plane-change computation, applied on the simulation thread."""
    state: TransferState
    burn: Optional[BurnModel] = None
    reason: str = ''
    node_policy: NodePolicy = NodePolicy.NONE_PRESENT
    iterations: int = 0
    residual: float = 0.0                   # rad
    ejection_time: Optional[float] = None
    relink: bool = False


def residual_plane_angle(orbit: OrbitState, destination: OrbitState, ut: float) -> float:
    """
    Signed rotation (rad) about the radius vector at ``ut`` that carries
    ``orbit``'s plane onto ``destination``'s.  A positive value calls for a
    burn along the orbit normal.
    """
    position = orbit.position_at(ut)
    axis = position / np.linalg.norm(position)
    n_cur = orbit.normal()
    n_dest = destination.normal()
    return math.atan2(float(np.dot(np.cross(n_cur, n_dest), axis)),
                      float(np.dot(n_cur, n_dest)))


class TransferModel:
    """
    Ejection and plane-change burns from ``origin`` to ``destination``.

    Parameters
    ----------
    origin : TargetRef
        Vessel or body the transfer starts from.
    destination : TargetRef
        Body or vessel to reach.
    """

    def __init__(self, origin: TargetRef, destination: TargetRef) -> None:
        self.origin = origin
        self.destination = destination

        self.ejection_burn: Optional[BurnModel] = None
        self.plane_change_burn: Optional[BurnModel] = None

        # Level of the body tree at which the transfer ellipse is flown
        self.transfer_parent: Optional[str] = None
        self.transfer_destination: Optional[TargetRef] = None
        self.retrograde_transfer = False

        self.state = TransferState.UNCALCULATED
        self.infeasibility: Optional[Infeasibility] = None
        self.plane_change_reason = ''

    def __repr__(self) -> str:
        return (f"TransferModel({self.origin} -> {self.destination}, "
                f"{self.state.name})")

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def has_ejection_burn(self) -> bool:
        return self.ejection_burn is not None

    def total_delta_v(self, include_plane_change: bool = False) -> Optional[float]:
        """Ejection delta-V, optionally plus the plane change; None if infeasible."""
        if self.ejection_burn is None:
            return None
        total = self.ejection_burn.total_delta_v
        if include_plane_change and self.plane_change_burn is not None:
            total += self.plane_change_burn.total_delta_v
        return total

    def is_stale(self, now: float) -> bool:
        return self.ejection_burn is not None and self.ejection_burn.is_stale(now)

    # ------------------------------------------------------------------
    # Ejection burn
    # ------------------------------------------------------------------

    def calculate_ejection_burn(self, host: HostSimulation) -> Optional[BurnModel]:
        """
        Recompute the ejection burn against the host's current state.

        Infeasible geometry leaves ``ejection_burn`` as None and records the
        reason in ``infeasibility``; nothing is raised for it.  A burn that
        fell due less than ``STALE_BURN_TOLERANCE`` ago is still accepted.
        An existing node link carries over to the new burn so that
        ``update_maneuvers`` can refresh the node.

        The state only moves back to ``EJECTION_CALCULATED`` when the burn
        actually changed.  A recompute that lands on the same burn keeps the
        plane-change state and burn already worked out for it.
        """
        now = host.universal_time()
        burn = None
        self.infeasibility = None
        try:
            burn = self._generate_for_origin(host, now)
            if burn.time < now - STALE_BURN_TOLERANCE:
                raise _Infeasible(Infeasibility.BURN_IN_PAST)
        except _Infeasible as exc:
            self.infeasibility = exc.reason
            burn = None
            logger.info("No transfer %s -> %s: %s",
                        self.origin, self.destination, exc.reason.value)
        except NotPeriodicError as exc:
            self.infeasibility = Infeasibility.NOT_PERIODIC
            burn = None
            logger.info("No transfer %s -> %s: %s", self.origin, self.destination, exc)
        except NeverAlignsError as exc:
            self.infeasibility = Infeasibility.NEVER_ALIGNS
            burn = None
            logger.info("No transfer %s -> %s: %s", self.origin, self.destination, exc)

        previous = self.ejection_burn
        if burn is not None and previous is not None:
            if burn.same_burn(previous):
                burn = previous
            else:
                burn.node_id = previous.node_id

        changed = burn is not previous
        self.ejection_burn = burn

        if burn is None:
            self.state = TransferState.EJECTION_INFEASIBLE
            self.plane_change_burn = None
        elif changed:
            self.state = TransferState.EJECTION_CALCULATED
            if self.plane_change_burn is not None and self.plane_change_burn.time < burn.time:
                logger.debug("Dropping plane change for %s, now earlier than ejection",
                             self.destination)
                self.plane_change_burn = None
        return burn

    def _generate_for_origin(self, host: HostSimulation, now: float) -> BurnModel:
        origin = host.resolve(self.origin)
        if origin is None or origin.orbit is None:
            raise _Infeasible(Infeasibility.NO_ORIGIN_ORBIT)
        if self.origin.is_vessel and origin.landed:
            raise _Infeasible(Infeasibility.ORIGIN_LANDED)
        return self._generate_ejection(host, origin.orbit, now)

    def _destination_lineage(self, host: HostSimulation) -> List[TargetRef]:
        """The destination followed by every body above it."""
        chain = [self.destination]
        parent = host.parent_of(self.destination)
        while parent is not None:
            chain.append(parent.ref)
            parent = host.body_tree.parent(parent.name)
        return chain

    def _generate_ejection(self, host: HostSimulation, current: OrbitState,
                           now: float) -> BurnModel:
        destination_orbit = host.orbit_of(self.destination)
        if destination_orbit is None:
            raise _Infeasible(Infeasibility.NO_DESTINATION_ORBIT)
        if destination_orbit.is_hyperbolic:
            raise _Infeasible(Infeasibility.DESTINATION_ESCAPING)
        if current.mu <= 0.0:
            raise _Infeasible(Infeasibility.ZERO_GRAVITY)

        self.transfer_parent = None
        self.transfer_destination = None
        self.retrograde_transfer = False

        tree = host.body_tree
        if current.is_hyperbolic:
            return self._capture_burn(current, now)

        previous: Optional[TargetRef] = None
        for ref in self._destination_lineage(host):
            if not ref.is_vessel and ref.name == current.reference_body:
                if previous is None:
                    return self._return_burn(tree.get(ref.name), current, now)
                self.transfer_parent = ref.name
                self.transfer_destination = previous
                break
            previous = ref

        if self.transfer_destination is not None:
            return self._direct_transfer(host, current, now)

        body = tree.find(current.reference_body)
        if body is None or body.orbit is None:
            raise _Infeasible(Infeasibility.NO_COMMON_ANCESTOR)
        outer = self._generate_ejection(host, body.orbit, now)
        return self._escape_burn(body, current, outer)

    def _capture_burn(self, current: OrbitState, now: float) -> BurnModel:
        """Circularise at periapsis of an inbound hyperbola."""
        if current.true_anomaly_at(now) >= 0.0:
            raise _Infeasible(Infeasibility.ORIGIN_ESCAPING)
        periapsis_time = current.ut_at_true_anomaly(0.0, now)
        pe = current.periapsis
        circular = speed_at_periapsis(current.mu, pe, pe)
        logger.debug("Capture burn at %.1f (periapsis %.0f m)", periapsis_time, pe)
        return BurnModel(periapsis_time,
                         (0.0, 0.0, circular - current.speed_at(periapsis_time)))

    def _return_burn(self, body: CelestialNode, current: OrbitState, now: float) -> BurnModel:
        """Drop from orbit around the destination to a low parking orbit."""
        dv = transfer_delta_v(current, body.good_low_orbit_radius, now)
        logger.debug("Return burn to low %s orbit: %.1f m/s", body.name, dv[2])
        return BurnModel(now, dv)

    def _direct_transfer(self, host: HostSimulation, current: OrbitState,
                         now: float) -> BurnModel:
        target = host.resolve(self.transfer_destination)
        target_orbit = target.orbit
        mu = current.mu

        origin_period = orbital_period(current.semi_major_axis, mu)
        if not target_orbit.is_periodic:
            raise _Infeasible(Infeasibility.DESTINATION_ESCAPING)
        destination_period = orbital_period(target_orbit.semi_major_axis, mu)

        optimal = phase_angle(origin_period, destination_period)
        current_phase = clamp_angle(absolute_phase_angle(target_orbit, now)
                                    - absolute_phase_angle(current, now))

        self.retrograde_transfer = current.relative_inclination(target_orbit) > HALF_PI
        if self.retrograde_transfer:
            wait = time_to_next_alignment(
                TAU - current_phase, TAU - optimal,
                -(TAU / destination_period + TAU / origin_period))
        else:
            wait = time_to_next_alignment(
                current_phase, optimal,
                TAU / destination_period - TAU / origin_period)
        burn_time = now + wait

        arrival_time = burn_time + 0.5 * transfer_period(
            target_orbit.semi_major_axis, current.semi_major_axis, mu)
        aim_radius = target_orbit.radius_at(arrival_time)
        offset = SOI_AIM_FRACTION * target.sphere_of_influence
        if current.semi_major_axis < target_orbit.semi_major_axis:
            aim_radius -= offset
        else:
            aim_radius += offset

        logger.debug(
            "Transfer %s -> %s around %s: phase %.2f deg (optimal %.2f), "
            "wait %.0f s, aim %.0f m%s",
            self.origin, self.transfer_destination, self.transfer_parent,
            current_phase * RAD2DEG, optimal * RAD2DEG, wait, aim_radius,
            ' (retrograde)' if self.retrograde_transfer else '',
        )
        return BurnModel(burn_time, transfer_delta_v(current, aim_radius, burn_time))

    def _escape_burn(self, body: CelestialNode, current: OrbitState,
                     outer: BurnModel) -> BurnModel:
        """
        Burn on ``current`` that leaves ``body``'s sphere of influence in
        the direction the outer burn requires.
        """
        angle_offset = 0.0 if outer.prograde < 0.0 else -PI
        speed_at_infinity = outer.total_delta_v
        burn_time = outer.time
        try:
            for _ in range(EJECTION_ANGLE_ITERATIONS):
                angle = ejection_angle(current.radius_at(burn_time), speed_at_infinity, body.mu)
                burn_time = time_at_angle_from_midnight(
                    body.orbit, current, outer.time, angle + angle_offset)
        except ValueError as exc:
            logger.warning("Ejection angle iteration for %s stopped early: %s",
                           self.destination, exc)

        return BurnModel(burn_time, escape_delta_v(
            body.mu, body.sphere_of_influence, current, speed_at_infinity, burn_time))

    # ------------------------------------------------------------------
    # Plane change
    # ------------------------------------------------------------------

    def _skip(self, reason: str, **extra) -> PlaneChangeOutcome:
        logger.info("Plane change for %s skipped: %s", self.destination, reason)
        return PlaneChangeOutcome(TransferState.PLANE_CHANGE_SKIPPED, reason=reason, **extra)

    def _fail(self, reason: str, **extra) -> PlaneChangeOutcome:
        logger.warning("Plane change for %s failed: %s", self.destination, reason)
        return PlaneChangeOutcome(TransferState.PLANE_CHANGE_FAILED, reason=reason, **extra)

    def _patch_around(self, patches: List[OrbitState]) -> Optional[OrbitState]:
        for patch in patches:
            if patch.reference_body == self.transfer_parent:
                return patch
        return None

    def compute_plane_change(
        self,
        host: HostSimulation,
        settings: Settings,
        cancel: Optional[threading.Event] = None,
    ) -> PlaneChangeOutcome:
        """
        Work out the plane-change burn without storing it.

        Safe to call from the background worker.  Transient nodes are
        removed on every exit path.  Foreign nodes are deleted only when
        ``settings.delete_existing_maneuvers`` is set; otherwise their
        presence skips the calculation.

        Raises
        ------
        CalculationCancelled
            If ``cancel`` is set between iterations.
        """
        ejection = self.ejection_burn
        if not settings.generate_plane_change_burns:
            return self._skip('disabled')
        if ejection is None:
            return self._skip('no ejection burn')
        if self.transfer_parent is None or self.transfer_destination is None:
            return self._skip('no transfer orbit to align')

        destination_orbit = host.orbit_of(self.transfer_destination)
        if destination_orbit is None or destination_orbit.is_hyperbolic:
            return self._skip('destination not orbiting')
        active = host.active_vessel()
        if active is None or active.ref != self.origin:
            return self._skip('origin is not the active vessel')

        outcome_fields = {'ejection_time': ejection.time}

        previous = self.plane_change_burn
        ejection_live = host.has_node(ejection.node_id)
        previous_live = previous is not None and host.has_node(previous.node_id)
        ours = {ejection.node_id if ejection_live else None,
                previous.node_id if previous_live else None}
        foreign = [n for n in host.maneuver_nodes() if n.node_id not in ours]
        if foreign:
            if not settings.delete_existing_maneuvers:
                return self._skip('foreign nodes present',
                                  node_policy=NodePolicy.FOREIGN_PRESENT, **outcome_fields)
            for node in foreign:
                host.remove_maneuver_node(node.node_id)
            policy = NodePolicy.REMOVED_FOREIGN
            logger.info("Removed %d existing maneuver node(s)", len(foreign))
        elif ejection_live:
            policy = NodePolicy.REUSED_EJECTION_NODE
        else:
            policy = NodePolicy.NONE_PRESENT
        outcome_fields['node_policy'] = policy

        # Our own earlier plane change is zeroed while the trials run
        outcome_fields['relink'] = previous_live
        previous_scope = self._suspended(host, previous.node_id) if previous_live else nullcontext()

        tolerance = settings.plane_change_tolerance
        ejection_scope = nullcontext(ejection.node_id) if ejection_live else ejection.transient(host)
        with previous_scope, ejection_scope as ejection_node:
            patch = self._patch_around(host.trajectory_after(ejection_node))
            if patch is None:
                return self._fail('no transfer patch', **outcome_fields)

            if patch.relative_inclination(destination_orbit) < tolerance:
                return self._skip('already coplanar', **outcome_fields)

            crossings = patch.node_times(destination_orbit, ejection.time)
            if not crossings:
                return self._fail('no node crossing after ejection', **outcome_fields)
            node_time, ascending = crossings[0]
            logger.debug("Plane change for %s at %s node, t=%.1f",
                         self.destination, 'ascending' if ascending else 'descending',
                         node_time)

            residual = residual_plane_angle(patch, destination_orbit, node_time)
            current = patch
            normal = 0.0
            iteration = 0
            for iteration in range(1, max(1, settings.plane_change_max_iterations) + 1):
                if cancel is not None and cancel.is_set():
                    raise CalculationCancelled(str(self.destination))

                step = plane_change_delta_v(residual, current.speed_at(node_time))
                normal += math.copysign(step, residual)
                with host.transient_node(node_time, (0.0, normal, 0.0)) as trial_node:
                    after = self._patch_around(host.trajectory_after(trial_node))
                if after is None:
                    return self._fail('plane change left the transfer orbit',
                                      iterations=iteration, **outcome_fields)

                residual = residual_plane_angle(after, destination_orbit, node_time)
                logger.debug("  iteration %d: normal %.3f m/s, residual %.4f deg",
                             iteration, normal, residual * RAD2DEG)
                if abs(residual) < tolerance:
                    break
                current = after
                self._pause(settings.plane_change_iteration_delay, cancel)
            else:
                return self._fail('did not converge', iterations=iteration,
                                  residual=residual, **outcome_fields)

        if abs(normal) <= MIN_PLANE_CHANGE_DELTA_V:
            return self._skip('already coplanar', iterations=iteration,
                              residual=residual, **outcome_fields)

        logger.info("Plane change for %s: %.2f m/s at %.1f after %d iteration(s)",
                    self.destination, normal, node_time, iteration)
        return PlaneChangeOutcome(
            TransferState.PLANE_CHANGE_CALCULATED,
            burn=BurnModel(node_time, (0.0, normal, 0.0)),
            iterations=iteration,
            residual=residual,
            **outcome_fields,
        )

    @staticmethod
    @contextmanager
    def _suspended(host: HostSimulation, node_id: int):
        """Zero a live node's delta-V, then put the original back on exit."""
        saved = host.find_node(node_id).delta_v
        host.update_maneuver_node(node_id, (0.0, 0.0, 0.0))
        try:
            yield node_id
        finally:
            if host.has_node(node_id):
                host.update_maneuver_node(node_id, saved)

    @staticmethod
    def _pause(delay: float, cancel: Optional[threading.Event]) -> None:
        if delay <= 0.0:
            return
        if cancel is not None:
            cancel.wait(delay)
        else:
            wallclock.sleep(delay)

    def apply_plane_change(self, outcome: PlaneChangeOutcome,
                           host: Optional[HostSimulation] = None) -> bool:
        """
        Store a computed outcome.  Call on the simulation thread.

        Outcomes for an infeasible transfer, or computed against an
        ejection burn that has since changed, are discarded.  Returns
        whether the outcome was applied.

        A node already placed for the previous plane change is kept when
        the new burn matches it or the calculation failed, replaced when
        a different burn was found, and removed when the plane change was
        skipped.
        """
        if self.ejection_burn is None:
            self.plane_change_burn = None
            return False
        if (outcome.ejection_time is not None
                and abs(self.ejection_burn.time - outcome.ejection_time) > 1e-3):
            logger.debug("Discarding plane change for %s, ejection moved", self.destination)
            return False

        self.state = outcome.state
        self.plane_change_reason = outcome.reason
        previous = self.plane_change_burn
        previous_live = (previous is not None and host is not None
                         and host.has_node(previous.node_id))

        if outcome.state is TransferState.PLANE_CHANGE_CALCULATED:
            burn = outcome.burn
            if previous is not None and burn.same_burn(previous):
                burn = previous
            elif previous_live:
                previous.remove_node(host)
                burn.activate(host)
            self.plane_change_burn = burn
        elif outcome.state is TransferState.PLANE_CHANGE_FAILED and previous_live:
            logger.info("Keeping previous plane change node for %s", self.destination)
        else:
            if previous_live:
                previous.remove_node(host)
            self.plane_change_burn = None
        return True

    def calculate_plane_change_burn(
        self,
        host: HostSimulation,
        settings: Settings,
        cancel: Optional[threading.Event] = None,
    ) -> PlaneChangeOutcome:
        """Compute and immediately store the plane-change burn."""
        outcome = self.compute_plane_change(host, settings, cancel)
        self.apply_plane_change(outcome, host)
        return outcome

    # ------------------------------------------------------------------
    # Host nodes
    # ------------------------------------------------------------------

    def burns(self) -> List[BurnModel]:
        return [b for b in (self.ejection_burn, self.plane_change_burn) if b is not None]

    def check_if_nodes_disappeared(self, host: HostSimulation) -> None:
        for burn in self.burns():
            burn.check_link(host)

    def update_maneuvers(self, host: HostSimulation) -> None:
        """
        Bring linked host nodes in line with the burns after a recompute.

        A node is only deleted and recreated when it no longer matches its
        burn; unlinked burns are left alone.
        """
        for burn in self.burns():
            if burn.node_id is None:
                continue
            node = host.find_node(burn.node_id)
            if node is None:
                burn.node_id = None
                continue
            if not burn.matches_node(node):
                host.remove_maneuver_node(node.node_id)
                burn.activate(host)

    def create_maneuvers(self, host: HostSimulation, settings: Settings) -> List[int]:
        """
        Replace every node on the active vessel with this transfer's burns.

        Plane changes not yet calculated are worked out on the spot when
        enabled.  Returns the ids of the created nodes.
        """
        if self.ejection_burn is None:
            return []
        host.clear_maneuver_nodes()
        for burn in self.burns():
            burn.node_id = None
        created = [self.ejection_burn.activate(host)]

        if settings.generate_plane_change_burns:
            if self.plane_change_burn is None:
                self.calculate_plane_change_burn(host, settings)
            if self.plane_change_burn is not None:
                created.append(self.plane_change_burn.activate(host))
        return created

    def warp_to_burn(self, host: HostSimulation, settings: Settings) -> bool:
        """Warp to just before the ejection burn."""
        if self.ejection_burn is None:
            return False
        now = host.universal_time()
        target = self.ejection_burn.time - settings.burn_padding
        if target <= now:
            return False
        host.warp_to(target)
        return True

    def have_encounter(self, host: HostSimulation) -> bool:
        """True when the trajectory after the ejection node reaches the destination."""
        if self.ejection_burn is None or self.ejection_burn.node_id is None:
            return False
        if self.destination.is_vessel:
            return False
        return any(p.reference_body == self.destination.name
                   for p in host.trajectory_after(self.ejection_burn.node_id))
