#!/usr/bin/env python3
"""
===============================================================================
ASTROGATOR - COMMAND-LINE PLANNER
===============================================================================
Builds the stock Kerbol system in the in-memory Keplerian host, places the
vessels described by the scenario section of the config file, runs one
full background load and prints the resulting transfer table.

USAGE:
    astrogator                                 Default config
    astrogator --config my.yaml                Custom config
    astrogator --origin-body Kerbin            Plan from a body
    astrogator --no-plane-changes              Ejection burns only
    astrogator --csv transfers.csv --plot windows.png

DEPENDENCIES:
    numpy, scipy, matplotlib, pandas, pyyaml
===============================================================================
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional

import pandas as pd
import yaml

from astrogator.core.constants import DEG2RAD
from astrogator.core.settings import Settings, TransferSort
from astrogator.dynamics.bodies import Situation, TargetRef, VesselView, kerbol_system
from astrogator.dynamics.orbital_mechanics import OrbitState
from astrogator.reporting.transfer_table import build_sorted_table
from astrogator.simulation.kepler_host import KeplerianHost
from astrogator.simulation.load_scheduler import BackgroundLoadScheduler, LoadEvent

logger = logging.getLogger('ASTROGATOR_MAIN')

DEFAULT_CONFIG = Path(__file__).resolve().parents[2] / 'config' / 'astrogator.yaml'


def load_config(config_path: Optional[str] = None) -> dict:
    """
    Load the planner configuration from a YAML file.

    Args:
        config_path: Path to YAML config. Defaults to config/astrogator.yaml

    Returns:
        Dictionary with optional 'astrogator' and 'scenario' sections
    """
    path = Path(config_path) if config_path is not None else DEFAULT_CONFIG
    if not path.exists():
        if config_path is not None:
            raise FileNotFoundError(f"Config file not found: {path}")
        logger.info("No config at %s, using built-in scenario", path)
        return {}
    logger.info("Loading configuration from: %s", path)
    with open(path, 'r') as f:
        return yaml.safe_load(f) or {}


def build_host(scenario: dict) -> KeplerianHost:
    """Create the host and place every scenario vessel in it."""
    tree = kerbol_system()
    host = KeplerianHost(tree, universal_time=float(scenario.get('universal_time', 0.0)))
    vessels = scenario.get('vessels') or [
        {'name': 'Kerbal X', 'body': 'Kerbin', 'altitude': 100000.0},
    ]
    for entry in vessels:
        body = tree.get(entry['body'])
        orbit = OrbitState(
            semi_major_axis=body.radius + float(entry.get('altitude', 100000.0)),
            eccentricity=float(entry.get('eccentricity', 0.0)),
            inclination=float(entry.get('inclination', 0.0)) * DEG2RAD,
            lan=float(entry.get('lan', 0.0)) * DEG2RAD,
            argument_of_periapsis=float(entry.get('argument_of_periapsis', 0.0)) * DEG2RAD,
            mean_anomaly_at_epoch=float(entry.get('mean_anomaly', 0.0)) * DEG2RAD,
            epoch=host.universal_time(),
            reference_body=body.name,
            mu=body.mu,
        )
        situation = Situation[str(entry.get('situation', 'orbiting')).upper()]
        host.add_vessel(VesselView(entry['name'], orbit, situation=situation,
                                   tracked=bool(entry.get('tracked', True))))
        logger.info("Placed %s around %s at %.0f km", entry['name'], body.name,
                    (orbit.semi_major_axis - body.radius) / 1000.0)

    active = scenario.get('active_vessel') or vessels[0]['name']
    host.set_active_vessel(active)
    target = scenario.get('target')
    if target:
        kind = TargetRef.body if target in tree else TargetRef.vessel
        host.set_target(kind(target))
    return host


def plan(host: KeplerianHost, settings: Settings, origin: Optional[TargetRef],
         timeout: float = 120.0) -> pd.DataFrame:
    """Run one full load and return the sorted transfer table."""
    scheduler = BackgroundLoadScheduler(host, settings)
    scheduler.subscribe(LoadEvent.PLANE_CHANGE_READY,
                        lambda t: logger.info("Plane change ready: %s", t.destination))
    scheduler.notify_display_opened()
    try:
        scheduler.start(origin)
        if not scheduler.wait_until_idle(timeout):
            logger.warning("Background load still running after %.0f s", timeout)
        scheduler.tick()
    finally:
        scheduler.shutdown()
    print(f"  Origin: {scheduler.model.origin_description(host)}")
    if scheduler.model.bad_inclination:
        print("  Origin is too far from the equator for transfers")
    return build_sorted_table(scheduler.model, host, settings)


def main(argv=None):
    """
    Main entry point. Parses command line arguments and prints the
    transfer table for the requested origin.
    """
    parser = argparse.ArgumentParser(
        description='Astrogator: transfer windows and burns for the Kerbol system',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  astrogator                          Plan from the active vessel
  astrogator --origin-body Duna       Plan from a body
  astrogator --sort delta_v           Cheapest transfers first
        """
    )
    parser.add_argument('--config', type=str, default=None,
                        help='Path to config YAML')
    origin_group = parser.add_mutually_exclusive_group()
    origin_group.add_argument('--origin-vessel', type=str, default=None,
                              help='Plan from this vessel (default: active vessel)')
    origin_group.add_argument('--origin-body', type=str, default=None,
                              help='Plan from this body')
    parser.add_argument('--no-plane-changes', action='store_true',
                        help='Skip plane-change burns')
    parser.add_argument('--sort', type=str, default=None,
                        choices=[s.value for s in TransferSort],
                        help='Sort column for the table')
    parser.add_argument('--descending', action='store_true',
                        help='Reverse the sort order')
    parser.add_argument('--csv', type=str, default=None,
                        help='Write the transfer table to this CSV file')
    parser.add_argument('--plot', type=str, default=None,
                        help='Save a transfer window chart to this PNG file')
    parser.add_argument('--verbose', '-v', action='store_true',
                        help='Debug logging')
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    config = load_config(args.config)
    settings = Settings.from_dict(config.get('astrogator'))
    if args.no_plane_changes:
        settings.generate_plane_change_burns = False
    if args.sort is not None:
        settings.transfer_sort = TransferSort(args.sort)
    if args.descending:
        settings.descending_sort = True

    host = build_host(config.get('scenario') or {})
    if args.origin_body:
        origin = TargetRef.body(args.origin_body)
    elif args.origin_vessel:
        origin = TargetRef.vessel(args.origin_vessel)
        host.set_active_vessel(args.origin_vessel)
    else:
        origin = None

    print("=" * 70)
    print("  ASTROGATOR")
    print("=" * 70)
    table = plan(host, settings, origin)

    with pd.option_context('display.max_columns', None, 'display.width', 160,
                           'display.float_format', '{:.1f}'.format):
        print(table.drop(columns=['kind', 'active']).to_string())
    print("=" * 70)

    if args.csv:
        table.to_csv(args.csv)
        logger.info("Wrote %s", args.csv)
    if args.plot:
        from astrogator.visualization.transfer_plots import plot_transfer_windows
        plot_transfer_windows(table, args.plot)
    return 0


if __name__ == '__main__':
    sys.exit(main())
