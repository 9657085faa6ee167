"""
===============================================================================
ASTROGATOR - Background Load Scheduler Test Suite
===============================================================================
Generations and cancellation, display gating, throttling, unrequested
refreshes, and the orbit-change watch that triggers them.
===============================================================================
"""

import sys
import os
import threading
from collections import defaultdict
from dataclasses import replace

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

import pytest

from astrogator.core.constants import KERBIN_MU
from astrogator.dynamics.bodies import TargetRef
from astrogator.dynamics.orbital_mechanics import OrbitState
from astrogator.guidance.transfer_model import TransferState
from astrogator.simulation.kepler_host import KeplerianHost
from astrogator.simulation.load_scheduler import BackgroundLoadScheduler, LoadEvent
from astrogator.simulation.orbit_watch import OrbitChangeDetector

from conftest import LKO_RADIUS, RELAY_RADIUS, circular_vessel

SHIP = TargetRef.vessel('Ship')
WAIT = 30.0


class GatedHost(KeplerianHost):
    """Host whose ``block_on``-th trajectory prediction waits until released."""

    def __init__(self, body_tree, block_on=1):
        super().__init__(body_tree)
        self.block_on = block_on
        self.calls = 0
        self.entered = threading.Event()
        self.gate = threading.Event()

    def trajectory_after(self, node_id):
        self.calls += 1
        if self.calls == self.block_on:
            self.entered.set()
            self.gate.wait(WAIT)
        return super().trajectory_after(node_id)


class FaultyHost(KeplerianHost):
    """Host that leaves a stray node behind and then fails every prediction."""

    def trajectory_after(self, node_id):
        self.add_maneuver_node(1.0e6, (0.0, 0.0, 1.0))
        raise RuntimeError("prediction service unavailable")


def populate(host):
    host.add_vessel(circular_vessel('Ship', LKO_RADIUS), active=True)
    host.add_vessel(circular_vessel('Relay', RELAY_RADIUS, phase=1.0))
    return host


class Recorder:
    """Collects every event a scheduler emits."""

    def __init__(self, scheduler):
        self.events = defaultdict(list)
        for event in LoadEvent:
            scheduler.subscribe(event, lambda payload, e=event: self.events[e].append(payload))

    def count(self, event):
        return len(self.events[event])


@pytest.fixture
def make_scheduler(settings):
    created = []

    def factory(host, **kwargs):
        scheduler = BackgroundLoadScheduler(host, settings, **kwargs)
        created.append(scheduler)
        return scheduler, Recorder(scheduler)

    yield factory
    for scheduler in created:
        scheduler.shutdown()


def finish(scheduler):
    assert scheduler.wait_until_idle(WAIT)
    return scheduler.tick()


# =============================================================================
# Full loads
# =============================================================================

class TestLoad:
    """A load from start to LOAD_COMPLETE."""

    def test_complete_run(self, lko_host, make_scheduler):
        scheduler, recorder = make_scheduler(lko_host)
        scheduler.notify_display_opened()
        model = scheduler.start(SHIP)

        assert recorder.count(LoadEvent.DESTINATIONS_CHANGED) == 1
        assert [t.destination.name for t in model] == ['Relay', 'Mun', 'Minmus']
        assert all(t.ejection_burn is not None for t in model)

        assert finish(scheduler) == 3
        assert recorder.count(LoadEvent.PLANE_CHANGE_READY) == 3
        assert recorder.count(LoadEvent.LOAD_COMPLETE) == 1
        assert model.transfer_for(TargetRef.body('Minmus')).state is \
            TransferState.PLANE_CHANGE_CALCULATED
        assert model.transfer_for(TargetRef.vessel('Relay')).plane_change_reason == \
            'already coplanar'
        assert lko_host.maneuver_nodes() == []
        assert not scheduler.is_loading

    def test_default_origin_is_active_vessel(self, lko_host, make_scheduler):
        scheduler, _ = make_scheduler(lko_host)
        assert scheduler.start().origin == SHIP

    def test_without_plane_changes(self, lko_host, make_scheduler, settings):
        settings.generate_plane_change_burns = False
        scheduler, recorder = make_scheduler(lko_host)
        scheduler.notify_display_opened()
        scheduler.start(SHIP)
        assert recorder.count(LoadEvent.LOAD_COMPLETE) == 1
        assert not scheduler.is_loading
        assert all(t.plane_change_burn is None for t in scheduler.model)

    def test_empty_origin_completes_at_once(self, moon_tree, make_scheduler):
        scheduler, recorder = make_scheduler(KeplerianHost(moon_tree))
        model = scheduler.start()
        assert model.origin is None
        assert len(model) == 0
        assert recorder.count(LoadEvent.LOAD_COMPLETE) == 1

    def test_supersede_drops_stale_results(self, moon_tree, make_scheduler):
        host = populate(GatedHost(moon_tree))
        scheduler, recorder = make_scheduler(host)
        scheduler.notify_display_opened()

        first = scheduler.start(SHIP)
        first_transfers = list(first)
        assert host.entered.wait(WAIT)
        scheduler.start(SHIP)
        assert scheduler.generation == 2
        host.gate.set()

        assert finish(scheduler) == 3
        assert recorder.count(LoadEvent.LOAD_COMPLETE) == 1
        assert all(t.state is TransferState.EJECTION_CALCULATED for t in first_transfers)
        assert all(not any(t is old for old in first_transfers) for t in scheduler.model)
        assert host.maneuver_nodes() == []

    def test_supersede_during_third_of_five(self, moon_tree, make_scheduler):
        host = GatedHost(moon_tree, block_on=3)
        host.add_vessel(circular_vessel('Ship', LKO_RADIUS), active=True)
        for name, radius, phase in [('Relay A', 2.0e6, 1.0), ('Relay B', 3.0e6, 2.0),
                                    ('Relay C', 5.0e6, 3.0)]:
            host.add_vessel(circular_vessel(name, radius, phase=phase))
        scheduler, recorder = make_scheduler(host)
        scheduler.notify_display_opened()

        scheduler.start(SHIP)
        assert host.entered.wait(WAIT)
        assert len(host.maneuver_nodes()) == 1
        model = scheduler.start(SHIP)
        assert len(model) == 5
        assert all(t.state is TransferState.EJECTION_CALCULATED for t in model)
        host.gate.set()

        assert finish(scheduler) == 5
        assert recorder.count(LoadEvent.PLANE_CHANGE_READY) == 5
        assert recorder.count(LoadEvent.LOAD_COMPLETE) == 1
        assert host.maneuver_nodes() == []

    def test_host_error_fails_transfer(self, moon_tree, make_scheduler):
        host = populate(FaultyHost(moon_tree))
        scheduler, recorder = make_scheduler(host)
        scheduler.notify_display_opened()
        scheduler.start(SHIP)

        assert finish(scheduler) == 3
        for transfer in scheduler.model:
            assert transfer.state is TransferState.PLANE_CHANGE_FAILED
            assert transfer.plane_change_reason == 'host error'
        assert host.maneuver_nodes() == []
        assert recorder.count(LoadEvent.LOAD_COMPLETE) == 1

    def test_shutdown_stops_worker(self, lko_host, make_scheduler):
        scheduler, _ = make_scheduler(lko_host)
        scheduler.notify_display_opened()
        scheduler.start(SHIP)
        scheduler.shutdown()
        assert not scheduler._worker.is_alive()
        assert scheduler.wait_until_idle(0.0)


# =============================================================================
# Display gating and throttling
# =============================================================================

class TestGating:
    """Plane changes wait for a display; loads are throttled."""

    def test_plane_changes_owed_until_display_opens(self, lko_host, make_scheduler):
        scheduler, recorder = make_scheduler(lko_host)
        scheduler.start(SHIP)
        assert not scheduler.is_loading
        scheduler.tick()
        assert recorder.count(LoadEvent.LOAD_COMPLETE) == 0

        scheduler.notify_display_opened()
        assert finish(scheduler) == 3
        assert recorder.count(LoadEvent.LOAD_COMPLETE) == 1

    def test_display_count(self, lko_host, make_scheduler):
        scheduler, _ = make_scheduler(lko_host)
        scheduler.notify_display_opened()
        scheduler.notify_display_opened()
        scheduler.notify_display_closed()
        assert scheduler.open_displays == 1
        scheduler.notify_display_closed()
        scheduler.notify_display_closed()
        assert scheduler.open_displays == 0

    def test_try_start_throttled(self, lko_host, make_scheduler, settings):
        scheduler, recorder = make_scheduler(lko_host)
        assert scheduler.try_start(SHIP)
        assert not scheduler.try_start(SHIP)
        lko_host.advance(settings.min_seconds_between_loads)
        assert scheduler.try_start(SHIP)
        assert recorder.count(LoadEvent.DESTINATIONS_CHANGED) == 2

    def test_new_origin_always_loads(self, lko_host, make_scheduler):
        scheduler, _ = make_scheduler(lko_host)
        assert scheduler.try_start(SHIP)
        assert scheduler.try_start(TargetRef.vessel('Relay'))
        assert scheduler.model.origin == TargetRef.vessel('Relay')

    def test_no_start_while_loading(self, moon_tree, make_scheduler, settings):
        host = populate(GatedHost(moon_tree))
        scheduler, _ = make_scheduler(host)
        scheduler.notify_display_opened()
        scheduler.start(SHIP)
        assert host.entered.wait(WAIT)
        host.advance(settings.min_seconds_between_loads * 2)
        assert scheduler.is_loading
        assert not scheduler.allow_start(SHIP)
        host.gate.set()
        assert scheduler.wait_until_idle(WAIT)
        assert scheduler.allow_start(SHIP)


# =============================================================================
# Unrequested refreshes
# =============================================================================

class TestRefresh:
    """Recomputation the player did not ask for."""

    @pytest.fixture
    def loaded(self, lko_host, make_scheduler, settings):
        settings.generate_plane_change_burns = False
        scheduler, recorder = make_scheduler(lko_host)
        scheduler.start(SHIP)
        return scheduler, recorder

    def test_unchanged_orbit_does_nothing(self, loaded):
        scheduler, recorder = loaded
        scheduler.tick()
        assert recorder.count(LoadEvent.UNREQUESTED_REFRESH) == 0

    def test_orbit_change_recomputes(self, loaded, lko_host):
        scheduler, recorder = loaded
        relay = scheduler.model.transfer_for(TargetRef.vessel('Relay'))
        before = relay.ejection_burn

        lko_host.set_vessel_orbit('Ship', OrbitState.circular(800000.0, KERBIN_MU, 'Kerbin'))
        scheduler.tick()
        assert recorder.count(LoadEvent.UNREQUESTED_REFRESH) == 1
        assert len(recorder.events[LoadEvent.UNREQUESTED_REFRESH][0]) == 3
        assert not relay.ejection_burn.same_burn(before)

    def test_refresh_keeps_nodes_current(self, loaded, lko_host):
        scheduler, _ = loaded
        relay = scheduler.model.transfer_for(TargetRef.vessel('Relay'))
        relay.ejection_burn.activate(lko_host)

        lko_host.set_vessel_orbit('Ship', OrbitState.circular(800000.0, KERBIN_MU, 'Kerbin'))
        scheduler.tick()
        assert len(lko_host.maneuver_nodes()) == 1
        assert relay.ejection_burn.matches_node(relay.ejection_burn.node(lko_host))

    def test_expired_burns_recomputed(self, lko_host, make_scheduler, settings):
        settings.generate_plane_change_burns = False
        settings.burn_poll_interval = 1.0
        wall = [0.0]
        scheduler, recorder = make_scheduler(lko_host, clock=lambda: wall[0])
        model = scheduler.start(SHIP)
        scheduler.tick()

        latest = max(t.ejection_burn.time for t in model)
        lko_host.set_time(latest + 100.0)
        wall[0] = 0.5
        scheduler.tick()
        assert recorder.count(LoadEvent.UNREQUESTED_REFRESH) == 0

        wall[0] = 1.5
        scheduler.tick()
        assert recorder.count(LoadEvent.UNREQUESTED_REFRESH) == 1
        assert model.stale_transfers(lko_host.universal_time()) == []

    def test_refresh_queues_plane_changes_when_displayed(self, lko_host, make_scheduler):
        scheduler, recorder = make_scheduler(lko_host)
        scheduler.notify_display_opened()
        scheduler.start(SHIP)
        finish(scheduler)

        lko_host.set_vessel_orbit('Ship', OrbitState.circular(800000.0, KERBIN_MU, 'Kerbin'))
        scheduler.tick()
        assert recorder.count(LoadEvent.UNREQUESTED_REFRESH) == 1
        finish(scheduler)
        assert recorder.count(LoadEvent.PLANE_CHANGE_READY) == 6
        assert lko_host.maneuver_nodes() == []


class TestListeners:
    """Subscription management."""

    def test_failing_listener_is_isolated(self, lko_host, make_scheduler):
        scheduler, recorder = make_scheduler(lko_host)

        def broken(payload):
            raise RuntimeError("listener bug")

        scheduler.subscribe(LoadEvent.DESTINATIONS_CHANGED, broken)
        scheduler.start(SHIP)
        assert recorder.count(LoadEvent.DESTINATIONS_CHANGED) == 1

    def test_unsubscribe(self, lko_host, make_scheduler):
        scheduler, _ = make_scheduler(lko_host)
        calls = []
        scheduler.subscribe(LoadEvent.DESTINATIONS_CHANGED, calls.append)
        scheduler.unsubscribe(LoadEvent.DESTINATIONS_CHANGED, calls.append)
        scheduler.unsubscribe(LoadEvent.LOAD_COMPLETE, calls.append)
        scheduler.start(SHIP)
        assert calls == []


# =============================================================================
# Orbit watch
# =============================================================================

class TestOrbitChangeDetector:
    """Snapshot comparison with tolerances."""

    @pytest.fixture
    def orbit(self):
        return OrbitState.circular(LKO_RADIUS, KERBIN_MU, 'Kerbin')

    def test_first_snapshot_is_not_a_change(self, orbit):
        watch = OrbitChangeDetector()
        assert not watch.poll(orbit)
        assert not watch.poll(orbit)

    def test_change_detected(self, orbit):
        watch = OrbitChangeDetector(orbit)
        assert watch.poll(replace(orbit, semi_major_axis=LKO_RADIUS + 500.0))

    def test_orbit_lost(self, orbit):
        assert OrbitChangeDetector(orbit).poll(None)

    def test_slow_drift_accumulates(self, orbit):
        watch = OrbitChangeDetector(orbit)
        assert not watch.poll(replace(orbit, semi_major_axis=LKO_RADIUS + 0.6))
        assert watch.poll(replace(orbit, semi_major_axis=LKO_RADIUS + 1.2))

    def test_reset(self, orbit):
        watch = OrbitChangeDetector(orbit)
        moved = replace(orbit, reference_body='Mun')
        watch.reset(moved)
        assert not watch.poll(moved)
