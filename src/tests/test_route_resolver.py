"""
===============================================================================
ASTROGATOR - Route Resolver and Astrogation Model Test Suite
===============================================================================
Which destinations an origin is offered and in what order, and the
aggregate that holds those transfers and the player's selection.
===============================================================================
"""

import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

import pytest

from astrogator.core.constants import DEG2RAD
from astrogator.dynamics.bodies import Situation, TargetRef
from astrogator.guidance.astrogation_model import AstrogationModel
from astrogator.guidance.burn_model import BurnModel
from astrogator.guidance.route_resolver import RouteResolver
from astrogator.guidance.transfer_model import TransferModel
from astrogator.simulation.host import InputState
from astrogator.simulation.kepler_host import KeplerianHost

from conftest import LKO_RADIUS, circular_vessel

SHIP = TargetRef.vessel('Ship')


def names(refs):
    return [ref.name for ref in refs]


# =============================================================================
# Destinations
# =============================================================================

class TestDestinations:
    """Walking the body tree outward from the origin."""

    def test_vessel_in_kerbin_orbit(self, lko_host):
        found = RouteResolver(lko_host).destinations(SHIP)
        assert names(found) == ['Relay', 'Mun', 'Minmus']
        assert found[0] == TargetRef.vessel('Relay')
        assert found[1] == TargetRef.body('Mun')

    def test_siblings_ordered_by_distance(self, five_destination_host):
        found = RouteResolver(five_destination_host).destinations(SHIP)
        assert names(found) == ['Relay A', 'Relay B', 'Relay C', 'Mun', 'Minmus']

    def test_stock_tiers(self, stock_host):
        found = RouteResolver(stock_host).destinations(SHIP)
        assert names(found) == ['Mun', 'Minmus',
                                'Moho', 'Eve', 'Duna', 'Dres', 'Jool', 'Eeloo']

    def test_moon_origin_skips_branch_climbed_out_of(self, stock_host):
        mun = stock_host.body_tree.get('Mun')
        stock_host.add_vessel(circular_vessel('Lander', 300000.0, body='Mun', mu=mun.mu))
        found = names(RouteResolver(stock_host).destinations(TargetRef.vessel('Lander')))
        assert found[:3] == ['Ship', 'Minmus', 'Moho']
        assert 'Kerbin' not in found
        assert 'Mun' not in found

    def test_body_origin_skips_own_moons(self, stock_host):
        found = names(RouteResolver(stock_host).destinations(TargetRef.body('Kerbin')))
        assert found == ['Moho', 'Eve', 'Duna', 'Dres', 'Jool', 'Eeloo']

    @pytest.mark.parametrize("situation", [Situation.PRELAUNCH, Situation.LANDED, Situation.SPLASHED])
    def test_vessels_on_surface_are_skipped(self, lko_host, situation):
        lko_host.add_vessel(circular_vessel('Rover', LKO_RADIUS, situation=situation))
        assert 'Rover' not in names(RouteResolver(lko_host).destinations(SHIP))

    def test_untracked_vessels_are_skipped(self, lko_host):
        lko_host.add_vessel(circular_vessel('Debris', 900000.0, tracked=False))
        assert 'Debris' not in names(RouteResolver(lko_host).destinations(SHIP))

    def test_origin_without_orbit(self, lko_host):
        assert RouteResolver(lko_host).destinations(TargetRef.vessel('Ghost')) == []


class TestResolve:
    """Transfers built for an origin."""

    def test_transfers_share_origin(self, lko_host):
        transfers, bad = RouteResolver(lko_host).resolve(SHIP)
        assert not bad
        assert len(transfers) == 3
        assert all(t.origin == SHIP for t in transfers)

    def test_no_origin(self, lko_host):
        assert RouteResolver(lko_host).resolve(None) == ([], False)

    @pytest.mark.parametrize("inclination_deg, bad", [
        (29.0, False), (31.0, True), (145.0, True), (175.0, False), (180.0, False),
    ])
    def test_inclination_limit(self, moon_tree, inclination_deg, bad):
        host = KeplerianHost(moon_tree)
        host.add_vessel(circular_vessel('Ship', LKO_RADIUS,
                                        inclination=inclination_deg * DEG2RAD), active=True)
        transfers, flagged = RouteResolver(host).resolve(SHIP)
        assert flagged is bad
        assert (transfers == []) is bad

    def test_target_inserted_first(self, stock_host):
        stock_host.set_target(TargetRef.body('Laythe'))
        transfers, _ = RouteResolver(stock_host).resolve(SHIP)
        assert transfers[0].destination == TargetRef.body('Laythe')
        assert len(transfers) == 9

    def test_target_already_listed_keeps_its_place(self, lko_host):
        lko_host.set_target(TargetRef.body('Minmus'))
        transfers, _ = RouteResolver(lko_host).resolve(SHIP)
        assert [t.destination.name for t in transfers] == ['Relay', 'Mun', 'Minmus']

    def test_missing_target_ignored(self, lko_host):
        lko_host.set_target(TargetRef.vessel('Scrapped'))
        transfers, _ = RouteResolver(lko_host).resolve(SHIP)
        assert len(transfers) == 3

    def test_origin_as_target_ignored(self, lko_host):
        lko_host.set_target(SHIP)
        transfers, _ = RouteResolver(lko_host).resolve(SHIP)
        assert SHIP not in [t.destination for t in transfers]

    def test_rebuild_resets_model(self, lko_host):
        model = AstrogationModel()
        resolver = RouteResolver(lko_host)
        resolver.rebuild(model, SHIP)
        model.active_transfer = model.transfers[0]
        resolver.rebuild(model, TargetRef.vessel('Relay'))
        assert model.origin == TargetRef.vessel('Relay')
        assert model.active_transfer is None
        assert names(t.destination for t in model) == ['Ship', 'Mun', 'Minmus']


# =============================================================================
# Astrogation model
# =============================================================================

@pytest.fixture
def model(lko_host):
    return RouteResolver(lko_host).rebuild(AstrogationModel(), SHIP)


class TestAstrogationModel:
    """Lookup, selection and bulk operations."""

    def test_lookup(self, model):
        assert len(model) == 3
        assert model.has_destination(TargetRef.body('Mun'))
        assert model.transfer_for(TargetRef.body('Duna')) is None

    def test_active_transfer_must_belong(self, model):
        with pytest.raises(ValueError):
            model.active_transfer = TransferModel(SHIP, TargetRef.body('Mun'))

    def test_active_transfer_dropped_on_rebuild(self, model):
        chosen = model.transfer_for(TargetRef.body('Mun'))
        model.active_transfer = chosen
        assert model.active_transfer is chosen
        model.transfers = [t for t in model.transfers if t is not chosen]
        assert model.active_transfer is None

    def test_recalculate_counts_feasible(self, model, lko_host):
        assert model.recalculate_ejection_burns(lko_host) == 3
        assert all(t.ejection_burn is not None for t in model)

    def test_stale_transfers(self, model, lko_host):
        model.recalculate_ejection_burns(lko_host)
        latest = max(t.ejection_burn.time for t in model)
        assert model.stale_transfers(lko_host.universal_time()) == []
        assert len(model.stale_transfers(latest + 10.0)) == 3

    @pytest.mark.parametrize("origin, expected", [
        (SHIP, 'Ship orbiting Kerbin'),
        (TargetRef.body('Mun'), 'Mun'),
        (TargetRef.vessel('Ghost'), 'Ghost (lost)'),
        (None, 'No origin'),
    ])
    def test_origin_description(self, lko_host, origin, expected):
        assert AstrogationModel(origin).origin_description(lko_host) == expected

    def test_landed_description(self, lko_host):
        lko_host.add_vessel(circular_vessel('Rover', LKO_RADIUS, situation=Situation.LANDED))
        model = AstrogationModel(TargetRef.vessel('Rover'))
        assert model.origin_description(lko_host) == 'Rover (landed)'


class TestTranslationInput:
    """Editing the selected transfer's burn from the controls."""

    @pytest.fixture
    def editing(self, model, lko_host):
        model.recalculate_ejection_burns(lko_host)
        transfer = model.transfer_for(TargetRef.vessel('Relay'))
        transfer.ejection_burn.activate(lko_host)
        model.active_transfer = transfer
        lko_host.set_input(InputState(prograde=1.0))
        return transfer

    def test_edits_ejection_burn(self, model, lko_host, settings, editing):
        before = editing.ejection_burn.prograde
        assert model.apply_translation_input(lko_host, settings)
        assert editing.ejection_burn.prograde == pytest.approx(
            before + settings.coarse_adjust_step)

    def test_disabled(self, model, lko_host, settings, editing):
        settings.translation_adjust = False
        assert not model.apply_translation_input(lko_host, settings)

    def test_no_selection(self, model, lko_host, settings, editing):
        model.active_transfer = None
        assert not model.apply_translation_input(lko_host, settings)

    def test_edits_plane_change_when_chosen(self, model, lko_host, settings, editing):
        editing.plane_change_burn = BurnModel(editing.ejection_burn.time + 600.0,
                                              (0.0, 20.0, 0.0))
        editing.plane_change_burn.activate(lko_host)
        settings.auto_edit_plane_change_node = True
        ejection_before = editing.ejection_burn.prograde

        assert model.apply_translation_input(lko_host, settings)
        assert editing.plane_change_burn.prograde == pytest.approx(
            settings.coarse_adjust_step)
        assert editing.ejection_burn.prograde == ejection_before
