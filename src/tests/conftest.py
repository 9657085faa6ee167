"""
===============================================================================
ASTROGATOR - Shared Test Fixtures
===============================================================================
Scenario builders used across the suite.  ``moon_tree`` is Kerbin as a
root body with its two moons, which keeps predictions inside one sphere of
influence; the full stock system is used where escapes are under test.
===============================================================================
"""

import sys
import os
import math
from dataclasses import replace

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

import pytest

from astrogator.core.constants import KERBIN_MU
from astrogator.core.settings import Settings
from astrogator.dynamics.bodies import BodyTree, VesselView, kerbol_system
from astrogator.dynamics.orbital_mechanics import OrbitState
from astrogator.simulation.kepler_host import KeplerianHost

LKO_RADIUS = 700000.0
RELAY_RADIUS = 2000000.0


def circular_vessel(name, radius, body='Kerbin', mu=KERBIN_MU, phase=0.0,
                    inclination=0.0, **kwargs):
    """VesselView on a circular orbit."""
    orbit = OrbitState.circular(radius, mu, body, inclination=inclination, phase=phase)
    return VesselView(name, orbit, **kwargs)


def kerbin_moons():
    """Kerbin, Mun and Minmus with Kerbin as an unparented root."""
    stock = kerbol_system()
    kerbin = replace(stock.get('Kerbin'), orbit=None, parent=None,
                     sphere_of_influence=math.inf)
    return BodyTree([kerbin, stock.get('Mun'), stock.get('Minmus')])


@pytest.fixture
def settings():
    """Settings with no artificial delays."""
    return Settings(transfer_delay=0.0, plane_change_iteration_delay=0.0,
                    burn_poll_interval=0.0)


@pytest.fixture
def moon_tree():
    return kerbin_moons()


@pytest.fixture
def lko_host(moon_tree):
    """Active vessel in a 700 km orbit and a coplanar relay at 2 Mm."""
    host = KeplerianHost(moon_tree)
    host.add_vessel(circular_vessel('Ship', LKO_RADIUS), active=True)
    host.add_vessel(circular_vessel('Relay', RELAY_RADIUS, phase=1.0))
    return host


@pytest.fixture
def five_destination_host(moon_tree):
    """Active vessel with three relays plus Mun and Minmus to fly to."""
    host = KeplerianHost(moon_tree)
    host.add_vessel(circular_vessel('Ship', LKO_RADIUS), active=True)
    host.add_vessel(circular_vessel('Relay A', 2.0e6, phase=1.0))
    host.add_vessel(circular_vessel('Relay B', 3.0e6, phase=2.0))
    host.add_vessel(circular_vessel('Relay C', 5.0e6, phase=3.0))
    return host


@pytest.fixture
def stock_host():
    """Active vessel in low Kerbin orbit in the full stock system."""
    host = KeplerianHost(kerbol_system())
    host.add_vessel(circular_vessel('Ship', LKO_RADIUS), active=True)
    return host
