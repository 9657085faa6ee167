"""
===============================================================================
ASTROGATOR - Background Load Scheduler
===============================================================================
Keeps the astrogation model current without stalling the simulation thread.

Threading model
---------------
    Simulation thread   start(), try_start(), tick(), display notifications.
                        Route rebuilding and ejection burns (cheap) run here
                        synchronously, as does applying every result.
    Worker thread       one persistent daemon thread running plane-change
                        calculations (slow, they place transient nodes and
                        wait for trajectory predictions) one transfer at a
                        time.

Every run carries a generation number and a cancellation event.  Starting
a new run bumps the generation and sets the previous run's event; the
worker checks the event between iterations and between transfers, and the
simulation thread drops any queued result whose generation is not current.
Results travel back through a queue drained by ``tick()``, so listeners are
always called on the simulation thread.
===============================================================================
"""

import logging
import math
import queue
import threading
import time as wallclock
from collections import defaultdict
from dataclasses import dataclass
from enum import Enum, auto
from typing import Callable, Dict, List, Optional, Sequence, Set

from astrogator.core.settings import Settings
from astrogator.dynamics.bodies import TargetRef
from astrogator.guidance.astrogation_model import AstrogationModel
from astrogator.guidance.route_resolver import RouteResolver
from astrogator.guidance.transfer_model import (
    CalculationCancelled,
    PlaneChangeOutcome,
    TransferModel,
    TransferState,
)
from astrogator.simulation.host import HostSimulation, ManeuverNodeError
from astrogator.simulation.orbit_watch import OrbitChangeDetector

logger = logging.getLogger(__name__)


class LoadEvent(Enum):
    """Notifications a scheduler delivers to its listeners."""
    DESTINATIONS_CHANGED = auto()     # payload: AstrogationModel
    PLANE_CHANGE_READY = auto()       # payload: TransferModel
    LOAD_COMPLETE = auto()            # payload: AstrogationModel
    UNREQUESTED_REFRESH = auto()      # payload: list of TransferModel


@dataclass
class _Job:
    generation: int
    transfers: List[TransferModel]
    cancel: threading.Event


class BackgroundLoadScheduler:
    """
    Drives route resolution, ejection burns and plane-change burns.

    Parameters
    ----------
    host : HostSimulation
    settings : Settings
    model : AstrogationModel, optional
        Aggregate to keep current; a new one is created when omitted.
    resolver : RouteResolver, optional
    clock : callable, optional
        Wall-clock source for the burn-expiry poll.
    """

    def __init__(
        self,
        host: HostSimulation,
        settings: Settings,
        model: Optional[AstrogationModel] = None,
        resolver: Optional[RouteResolver] = None,
        clock: Callable[[], float] = wallclock.monotonic,
    ) -> None:
        self.host = host
        self.settings = settings
        self.model = model if model is not None else AstrogationModel()
        self.resolver = resolver if resolver is not None else RouteResolver(host)
        self._clock = clock

        self._listeners: Dict[LoadEvent, List[Callable]] = defaultdict(list)
        self._completions: queue.Queue = queue.Queue()

        self._condition = threading.Condition()
        self._pending: Optional[_Job] = None
        self._running: Optional[_Job] = None
        self._generation = 0
        self._cancel = threading.Event()
        self._idle = threading.Event()
        self._idle.set()
        self._shutdown = False
        self._worker: Optional[threading.Thread] = None

        self._open_displays = 0
        self._plane_changes_owed = False
        self._last_origin: Optional[TargetRef] = None
        self._last_update_ut = -math.inf
        self._last_poll = -math.inf
        self._orbit_watch = OrbitChangeDetector()

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def subscribe(self, event: LoadEvent, callback: Callable) -> None:
        self._listeners[event].append(callback)

    def unsubscribe(self, event: LoadEvent, callback: Callable) -> None:
        if callback in self._listeners[event]:
            self._listeners[event].remove(callback)

    def _emit(self, event: LoadEvent, payload) -> None:
        for callback in list(self._listeners[event]):
            try:
                callback(payload)
            except Exception:
                logger.exception("Listener for %s failed", event.name)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def is_loading(self) -> bool:
        with self._condition:
            return self._pending is not None or self._running is not None

    @property
    def open_displays(self) -> int:
        return self._open_displays

    @property
    def plane_changes_enabled(self) -> bool:
        return self.settings.generate_plane_change_burns

    def wait_until_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until the worker has nothing to do; False on timeout."""
        return self._idle.wait(timeout)

    # ------------------------------------------------------------------
    # Starting runs
    # ------------------------------------------------------------------

    def default_origin(self) -> Optional[TargetRef]:
        vessel = self.host.active_vessel()
        return None if vessel is None else vessel.ref

    def start(self, origin: Optional[TargetRef] = None) -> AstrogationModel:
        """
        Begin a full load, superseding any run in progress.

        Rebuilds the transfer list and recomputes every ejection burn before
        returning; plane changes are queued for the worker if a display is
        open, or owed until one opens.
        """
        if origin is None:
            origin = self.model.origin or self.default_origin()
        self._supersede()

        self.resolver.rebuild(self.model, origin)
        feasible = self.model.recalculate_ejection_burns(self.host)
        self._last_origin = origin
        self._last_update_ut = self.host.universal_time()
        self._orbit_watch.reset(self.host.orbit_of(origin) if origin is not None else None)
        logger.info("Loaded %d transfer(s) from %s, %d feasible",
                    len(self.model), origin, feasible)
        self._emit(LoadEvent.DESTINATIONS_CHANGED, self.model)

        if not self.plane_changes_enabled or not self.model.transfers:
            self._plane_changes_owed = False
            self._emit(LoadEvent.LOAD_COMPLETE, self.model)
        elif self._open_displays > 0:
            self._submit(self.model.transfers)
        else:
            self._plane_changes_owed = True
        return self.model

    def allow_start(self, origin: Optional[TargetRef]) -> bool:
        """A new origin always loads; otherwise only when idle and not too soon."""
        if origin != self._last_origin:
            return True
        if self.is_loading:
            return False
        elapsed = self.host.universal_time() - self._last_update_ut
        return elapsed >= self.settings.min_seconds_between_loads

    def try_start(self, origin: Optional[TargetRef] = None) -> bool:
        """Start a load if throttling allows it; returns whether one started."""
        if origin is None:
            origin = self.default_origin()
        if not self.allow_start(origin):
            return False
        self.start(origin)
        return True

    def notify_display_opened(self) -> None:
        self._open_displays += 1
        if self._plane_changes_owed and self.model.transfers:
            self._plane_changes_owed = False
            self._submit(self.model.transfers)

    def notify_display_closed(self) -> None:
        self._open_displays = max(0, self._open_displays - 1)

    def _supersede(self) -> None:
        with self._condition:
            self._cancel.set()
            self._generation += 1
            self._cancel = threading.Event()
            self._pending = None
        self._plane_changes_owed = False

    def _submit(self, transfers: Sequence[TransferModel]) -> None:
        with self._condition:
            self._pending = _Job(self._generation, list(transfers), self._cancel)
            self._idle.clear()
            self._condition.notify()
        self._ensure_worker()

    def _ensure_worker(self) -> None:
        if self._worker is None or not self._worker.is_alive():
            self._worker = threading.Thread(
                target=self._worker_loop, name='astrogator-loader', daemon=True)
            self._worker.start()

    def shutdown(self, timeout: Optional[float] = 5.0) -> None:
        """Cancel any run and stop the worker thread."""
        with self._condition:
            self._shutdown = True
            self._cancel.set()
            self._pending = None
            self._condition.notify_all()
        if self._worker is not None:
            self._worker.join(timeout)
        self._idle.set()

    # ------------------------------------------------------------------
    # Worker
    # ------------------------------------------------------------------

    def _worker_loop(self) -> None:
        while True:
            with self._condition:
                while self._pending is None and not self._shutdown:
                    self._condition.wait()
                if self._shutdown:
                    return
                job, self._pending = self._pending, None
                self._running = job
            try:
                self._run_job(job)
            except Exception:
                logger.exception("Background load %d crashed", job.generation)
            finally:
                with self._condition:
                    self._running = None
                    if self._pending is None:
                        self._idle.set()

    def _run_job(self, job: _Job) -> None:
        logger.debug("Plane-change run %d: %d transfer(s)", job.generation, len(job.transfers))
        for transfer in job.transfers:
            if job.cancel.is_set():
                logger.debug("Run %d superseded", job.generation)
                return
            if self.settings.transfer_delay > 0.0 and job.cancel.wait(self.settings.transfer_delay):
                logger.debug("Run %d superseded", job.generation)
                return

            before = set(self.host.node_ids())
            try:
                outcome = transfer.compute_plane_change(self.host, self.settings, job.cancel)
            except CalculationCancelled:
                logger.debug("Run %d cancelled during %s", job.generation, transfer.destination)
                return
            except Exception:
                logger.exception("Plane change for %s raised", transfer.destination)
                self._remove_new_nodes(before)
                ejection = transfer.ejection_burn
                outcome = PlaneChangeOutcome(
                    TransferState.PLANE_CHANGE_FAILED, reason='host error',
                    ejection_time=None if ejection is None else ejection.time)
            self._completions.put((job.generation, transfer, outcome))

        self._completions.put((job.generation, None, None))

    def _remove_new_nodes(self, before: Set[int]) -> None:
        for node_id in set(self.host.node_ids()) - before:
            try:
                self.host.remove_maneuver_node(node_id)
            except ManeuverNodeError as exc:
                logger.warning("Could not remove leftover node %d: %s", node_id, exc)

    # ------------------------------------------------------------------
    # Simulation-thread pump
    # ------------------------------------------------------------------

    def tick(self) -> int:
        """
        Apply finished background results and run the periodic checks.

        Call once per simulation frame.  Returns the number of plane-change
        results applied.
        """
        applied = 0
        while True:
            try:
                generation, transfer, outcome = self._completions.get_nowait()
            except queue.Empty:
                break
            if generation != self._generation:
                continue
            if transfer is None:
                logger.info("Background load %d complete", generation)
                self._emit(LoadEvent.LOAD_COMPLETE, self.model)
                continue
            if not any(t is transfer for t in self.model.transfers):
                continue
            if transfer.apply_plane_change(outcome, self.host):
                applied += 1
                self._emit(LoadEvent.PLANE_CHANGE_READY, transfer)

        self.model.check_if_nodes_disappeared(self.host)
        self._poll_orbit()
        self._poll_expired_burns()
        self.model.apply_translation_input(self.host, self.settings)
        return applied

    def _refresh(self, transfers: Sequence[TransferModel]) -> None:
        for transfer in transfers:
            try:
                transfer.calculate_ejection_burn(self.host)
                transfer.update_maneuvers(self.host)
            except Exception:
                logger.exception("Refreshing %s failed", transfer.destination)
        if self.plane_changes_enabled and self._open_displays > 0:
            self._submit(transfers)
        self._emit(LoadEvent.UNREQUESTED_REFRESH, list(transfers))

    def _poll_orbit(self) -> None:
        origin = self.model.origin
        if origin is None or not origin.is_vessel or self.is_loading:
            return
        if self._orbit_watch.poll(self.host.orbit_of(origin)):
            self._refresh(self.model.transfers)

    def _poll_expired_burns(self) -> None:
        now_wall = self._clock()
        if now_wall - self._last_poll < self.settings.burn_poll_interval:
            return
        self._last_poll = now_wall
        if self.is_loading:
            return
        stale = self.model.stale_transfers(self.host.universal_time())
        if stale:
            logger.debug("Recalculating %d expired burn(s)", len(stale))
            self._refresh(stale)
