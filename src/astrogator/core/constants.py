"""
===============================================================================
ASTROGATOR - Physical and Planning Constants
===============================================================================
Central repository for the constants shared by the transfer planner.
SI units throughout (meters, seconds, radians) unless a name says otherwise.

Body parameters are those of the stock Kerbol system; the complete table
used to build a reference-body tree lives in dynamics.bodies.
===============================================================================
"""

import numpy as np


# =============================================================================
# MATHEMATICAL CONSTANTS
# =============================================================================
PI = np.pi
TAU = 2.0 * np.pi
HALF_PI = 0.5 * np.pi
DEG2RAD = PI / 180.0
RAD2DEG = 180.0 / PI

# =============================================================================
# KERBOL SYSTEM PARAMETERS
# =============================================================================
KERBOL_MU = 1.1723328e18               # Gravitational parameter (m^3/s^2)
KERBOL_RADIUS = 261600000.0            # m

KERBIN_MU = 3.5316e12                  # Gravitational parameter (m^3/s^2)
KERBIN_RADIUS = 600000.0               # Mean radius (m)
KERBIN_SMA = 13599840256.0             # Semi-major axis about Kerbol (m)
KERBIN_SOI_RADIUS = 84159286.0         # Sphere of influence radius (m)
KERBIN_ATMOSPHERE_DEPTH = 70000.0      # m
KERBIN_ROTATION_PERIOD = 21549.425     # Sidereal day (s)

MUN_MU = 6.5138398e10                  # m^3/s^2
MUN_RADIUS = 200000.0                  # m
MUN_SMA = 12000000.0                   # m

# =============================================================================
# TRANSFER PLANNING
# =============================================================================
# Margin added above the atmosphere (or highest terrain) when picking a
# parking orbit for return and capture burns.
LOW_ORBIT_PADDING = 10000.0            # m

# Fraction of the destination's sphere of influence by which the transfer
# apoapsis (or periapsis) misses the destination's centre.
SOI_AIM_FRACTION = 0.25

# Vessels further than this from their body's equatorial plane do not get
# transfers at all (measured so that retrograde equatorial orbits qualify).
MAX_INCLINATION = TAU / 12.0           # rad (30 deg)

# Cross-seeding passes between the ejection angle and the burn time when
# escaping the current sphere of influence.
EJECTION_ANGLE_ITERATIONS = 6

# A freshly computed burn may fall due this long ago and still be used.
STALE_BURN_TOLERANCE = 1.0             # s

# Plane-change burns smaller than this are not worth a maneuver node.
MIN_PLANE_CHANGE_DELTA_V = 0.05        # m/s

# Phase rates below this cannot bring two bodies into alignment.
MIN_PHASE_RATE = 1e-12                 # rad/s

# =============================================================================
# ORBIT COMPARISON TOLERANCES
# =============================================================================
# Two orbit snapshots closer than these are treated as the same orbit.
SMA_TOLERANCE = 1.0                    # m
ECCENTRICITY_TOLERANCE = 0.01
INCLINATION_TOLERANCE = 0.1 * DEG2RAD  # rad
LAN_TOLERANCE = 0.1 * DEG2RAD          # rad
ARG_PERIAPSIS_TOLERANCE = 0.5 * DEG2RAD  # rad

# =============================================================================
# NUMERICS
# =============================================================================
KEPLER_TOLERANCE = 1e-12               # rad
KEPLER_MAX_ITERATIONS = 100
CIRCULAR_ECCENTRICITY = 1e-9           # below this an orbit has no periapsis
EQUATORIAL_NODE = 1e-9                 # node-vector magnitude below which LAN is undefined
