"""
===============================================================================
ASTROGATOR - Transfer Table and CLI Test Suite
===============================================================================
The DataFrame view of a model, its sort orders, the transfer window chart,
and the command-line planner's config and scenario handling.
===============================================================================
"""

import sys
import os
import math

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

import numpy as np
import pandas as pd
import pytest
from numpy.testing import assert_allclose

from astrogator.core.settings import Settings, TransferSort
from astrogator.dynamics.bodies import Situation, TargetRef
from astrogator.guidance.astrogation_model import AstrogationModel
from astrogator.guidance.route_resolver import RouteResolver
from astrogator.main import build_host, load_config, main, plan
from astrogator.reporting.transfer_table import (
    COLUMNS, build_sorted_table, sort_transfers, transfer_table,
)
from astrogator.visualization.transfer_plots import plot_transfer_windows

from conftest import LKO_RADIUS, circular_vessel

SHIP = TargetRef.vessel('Ship')


@pytest.fixture
def loaded_model(lko_host, settings):
    """Relay, Mun and Minmus with burns, plus a twin that never aligns."""
    lko_host.add_vessel(circular_vessel('Twin', LKO_RADIUS, phase=2.0))
    model = RouteResolver(lko_host).rebuild(AstrogationModel(), SHIP)
    model.recalculate_ejection_burns(lko_host)
    for transfer in model:
        transfer.calculate_plane_change_burn(lko_host, settings)
    return model


class TestTable:
    """One row per transfer."""

    def test_columns_and_index(self, loaded_model, lko_host, settings):
        df = transfer_table(loaded_model, lko_host, settings)
        assert list(df.columns) == COLUMNS
        assert df.index.name == 'position'
        assert list(df['destination']) == ['Twin', 'Relay', 'Mun', 'Minmus']
        assert list(df['kind']) == ['vessel', 'vessel', 'body', 'body']

    def test_infeasible_row(self, loaded_model, lko_host, settings):
        twin = transfer_table(loaded_model, lko_host, settings).iloc[0]
        assert math.isnan(twin['burn_time'])
        assert math.isnan(twin['total_dv'])
        assert twin['state'] == 'EJECTION_INFEASIBLE'
        assert 'never reach' in twin['note']

    def test_plane_change_columns(self, loaded_model, lko_host, settings):
        df = transfer_table(loaded_model, lko_host, settings).set_index('destination')
        assert np.isnan(df.loc['Relay', 'plane_change_dv'])
        assert df.loc['Relay', 'note'] == 'already coplanar'
        assert df.loc['Minmus', 'plane_change_dv'] > 0.0
        assert_allclose(df.loc['Minmus', 'total_dv'], df.loc['Minmus', 'ejection_dv'])

    def test_total_includes_plane_change_when_asked(self, loaded_model, lko_host, settings):
        settings.add_plane_change_delta_v = True
        row = transfer_table(loaded_model, lko_host, settings).set_index(
            'destination').loc['Minmus']
        assert_allclose(row['total_dv'], row['ejection_dv'] + row['plane_change_dv'])

    def test_stale_and_active_flags(self, loaded_model, lko_host, settings):
        relay = loaded_model.transfer_for(TargetRef.vessel('Relay'))
        loaded_model.active_transfer = relay
        lko_host.set_time(relay.ejection_burn.time + 10.0)
        df = transfer_table(loaded_model, lko_host, settings).set_index('destination')
        assert df.loc['Relay', 'active']
        assert df.loc['Relay', 'stale']
        assert df.loc['Relay', 'time_until'] < 0.0
        assert not df.loc['Mun', 'active']

    def test_empty_model(self, lko_host, settings):
        df = transfer_table(AstrogationModel(), lko_host, settings)
        assert df.empty
        assert list(df.columns) == COLUMNS


class TestSorting:
    """Position, name, time and delta-V orders."""

    @pytest.fixture
    def table(self, loaded_model, lko_host, settings):
        return transfer_table(loaded_model, lko_host, settings)

    @pytest.mark.parametrize("descending", [False, True])
    def test_position(self, table, descending):
        result = sort_transfers(table, TransferSort.POSITION, descending)
        expected = [0, 1, 2, 3] if not descending else [3, 2, 1, 0]
        assert list(result.index) == expected

    def test_name_ignores_case(self, table):
        table.loc[1, 'destination'] = 'relay'
        result = sort_transfers(table, TransferSort.NAME)
        assert list(result['destination']) == ['Minmus', 'Mun', 'relay', 'Twin']

    @pytest.mark.parametrize("order, column", [
        (TransferSort.TIME, 'time_until'), (TransferSort.DELTA_V, 'total_dv'),
    ])
    @pytest.mark.parametrize("descending", [False, True])
    def test_infeasible_last(self, table, order, column, descending):
        result = sort_transfers(table, order, descending)
        assert result.iloc[-1]['destination'] == 'Twin'
        values = result[column].iloc[:-1].to_numpy()
        steps = np.diff(values)
        assert np.all(steps <= 0.0) if descending else np.all(steps >= 0.0)

    def test_build_sorted_table_uses_settings(self, loaded_model, lko_host, settings):
        settings.transfer_sort = TransferSort.DELTA_V
        settings.descending_sort = True
        df = build_sorted_table(loaded_model, lko_host, settings)
        assert df['total_dv'].iloc[0] == df['total_dv'].max()


class TestPlot:
    """Transfer window chart."""

    def test_writes_png(self, loaded_model, lko_host, settings, tmp_path):
        loaded_model.active_transfer = loaded_model.transfer_for(TargetRef.body('Mun'))
        table = transfer_table(loaded_model, lko_host, settings)
        path = plot_transfer_windows(table, str(tmp_path / 'windows.png'), title='LKO')
        assert os.path.exists(path)
        assert os.path.getsize(path) > 0


# =============================================================================
# Command-line planner
# =============================================================================

SCENARIO = {
    'universal_time': 1000.0,
    'active_vessel': 'Scout',
    'target': 'Duna',
    'vessels': [
        {'name': 'Station', 'body': 'Kerbin', 'altitude': 250000.0},
        {'name': 'Scout', 'body': 'Kerbin', 'altitude': 100000.0, 'inclination': 6.0},
        {'name': 'Rover', 'body': 'Mun', 'altitude': 0.0, 'situation': 'landed'},
    ],
}


class TestCommandLine:
    """Config loading, scenario placement and a full planner run."""

    def test_build_host(self):
        host = build_host(SCENARIO)
        assert host.universal_time() == 1000.0
        assert host.active_vessel().name == 'Scout'
        assert host.target() == TargetRef.body('Duna')
        scout = host.orbit_of(TargetRef.vessel('Scout'))
        assert_allclose(scout.semi_major_axis, 700000.0)
        assert_allclose(np.degrees(scout.inclination), 6.0)
        assert scout.epoch == 1000.0
        assert host.vessel('Rover').situation is Situation.LANDED

    def test_vessel_target(self):
        host = build_host(dict(SCENARIO, target='Station'))
        assert host.target() == TargetRef.vessel('Station')

    def test_default_scenario(self):
        host = build_host({})
        assert host.active_vessel().name == 'Kerbal X'

    def test_load_config(self, tmp_path):
        path = tmp_path / 'planner.yaml'
        path.write_text('astrogator:\n  TransferSort: time\nscenario:\n  universal_time: 5\n')
        config = load_config(str(path))
        assert Settings.from_dict(config['astrogator']).transfer_sort is TransferSort.TIME
        assert config['scenario']['universal_time'] == 5

    def test_missing_config_raises(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(str(tmp_path / 'absent.yaml'))

    def test_empty_config(self, tmp_path):
        path = tmp_path / 'empty.yaml'
        path.write_text('')
        assert load_config(str(path)) == {}

    def test_plan(self, settings, capsys):
        host = build_host({'vessels': [
            {'name': 'Ship', 'body': 'Kerbin', 'altitude': 100000.0},
            {'name': 'Relay', 'body': 'Kerbin', 'altitude': 1400000.0, 'mean_anomaly': 60.0},
        ]})
        table = plan(host, settings, None)
        assert list(table['destination'][:3]) == ['Relay', 'Mun', 'Minmus']
        assert len(table) == 9
        assert 'Ship orbiting Kerbin' in capsys.readouterr().out
        assert host.maneuver_nodes() == []

    def test_main_writes_outputs(self, tmp_path, capsys):
        config = tmp_path / 'planner.yaml'
        config.write_text(
            'astrogator:\n'
            '  TransferDelay: 0.0\n'
            'scenario:\n'
            '  vessels:\n'
            '    - {name: Ship, body: Kerbin, altitude: 100000.0}\n'
        )
        csv_path = tmp_path / 'transfers.csv'
        plot_path = tmp_path / 'windows.png'
        code = main(['--config', str(config), '--no-plane-changes', '--sort', 'delta_v',
                     '--csv', str(csv_path), '--plot', str(plot_path)])
        assert code == 0
        written = pd.read_csv(csv_path, index_col='position')
        assert list(written.columns) == COLUMNS
        assert written['plane_change_dv'].isna().all()
        assert plot_path.exists()
        assert 'ASTROGATOR' in capsys.readouterr().out

    def test_main_from_body(self, tmp_path, capsys):
        config = tmp_path / 'planner.yaml'
        config.write_text('astrogator:\n  TransferDelay: 0.0\n')
        assert main(['--config', str(config), '--origin-body', 'Duna',
                     '--no-plane-changes']) == 0
        out = capsys.readouterr().out
        assert 'Origin: Duna' in out
        assert 'Ike' not in out
