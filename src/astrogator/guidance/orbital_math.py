"""
===============================================================================
ASTROGATOR - Transfer Geometry
===============================================================================
Closed-form quantities for planning a transfer between two orbits that
share a parent body: phase angles, waiting time until a window opens,
ejection angles for leaving a sphere of influence, and the delta-V of the
ejection and plane-change burns.

Every function is pure; none of them touches the host simulation.

Sign conventions and units:
    - All distances in meters
    - All velocities in m/s
    - All angles in radians, phase angles normalised to [0, 2*pi)
    - Gravitational parameters (mu) in m^3/s^2
    - Burn delta-V vectors are (radial, normal, prograde) in the frame of
      the orbit being burned from
===============================================================================
"""

import logging
import math

import numpy as np

from astrogator.core.constants import TAU, PI, HALF_PI, MIN_PHASE_RATE
from astrogator.dynamics.orbital_mechanics import OrbitState, clamp_angle

logger = logging.getLogger(__name__)


class NotPeriodicError(ValueError):
    """Raised when a period is requested for an open orbit."""


class NeverAlignsError(ValueError):
    """Raised when two orbits have no relative angular motion."""


# -------------------------------------------------------------------------
# Periods and phase
# -------------------------------------------------------------------------

def orbital_period(semi_major_axis: float, mu: float) -> float:
    """
    Orbital period from Kepler's third law.

        T = 2*pi * sqrt(a^3 / mu)

    Raises
    ------
    NotPeriodicError
        If a <= 0 (open orbit) or mu <= 0 (no gravity).
    """
    if semi_major_axis <= 0.0 or mu <= 0.0:
        raise NotPeriodicError(
            f"Orbit is not periodic (a = {semi_major_axis:.4e} m, mu = {mu:.4e})"
        )
    return TAU * math.sqrt(semi_major_axis ** 3 / mu)


def transfer_period(origin_sma: float, destination_sma: float, mu: float) -> float:
    """Period of the ellipse touching both orbits, a_t = (a1 + a2) / 2."""
    return orbital_period(0.5 * (origin_sma + destination_sma), mu)


def phase_angle(origin_period: float, destination_period: float) -> float:
    """
    Optimal angle of the destination ahead of the origin at departure.

    The destination must travel pi minus this angle during half a transfer
    period:

        T_t = ((T1^(2/3) + T2^(2/3)) / 2)^(3/2)
        phase = pi * (1 - T_t / T2)

    Both periods must be about the same parent.  The result lies in
    [0, 2*pi); a negative optimum (inward transfer) wraps around.
    """
    if origin_period <= 0.0 or destination_period <= 0.0:
        raise NotPeriodicError("Phase angle needs two finite periods")
    ratio = ((origin_period ** (2.0 / 3.0) + destination_period ** (2.0 / 3.0))
             / (2.0 * destination_period ** (2.0 / 3.0))) ** 1.5
    return clamp_angle(PI * (1.0 - ratio))


def absolute_phase_angle(orbit: OrbitState, ut: float) -> float:
    """
    Longitude of an orbiting object at a time, measured in its direction of
    travel so that retrograde orbits compare with prograde ones.
    """
    direction = 1.0 if orbit.inclination < HALF_PI else -1.0
    return clamp_angle(orbit.lan + direction * (orbit.argument_of_periapsis
                                                + orbit.true_anomaly_at(ut)))


def time_to_next_alignment(
    current_phase: float,
    target_phase: float,
    relative_angular_rate: float,
) -> float:
    """
    Seconds until the phase angle next equals ``target_phase``.

    The phase changes at ``relative_angular_rate`` (rad/s, destination mean
    motion minus origin mean motion), so the remaining angle is wrapped in
    whichever direction the phase is moving.

    Raises
    ------
    NeverAlignsError
        If the relative rate is effectively zero.
    """
    if abs(relative_angular_rate) < MIN_PHASE_RATE:
        raise NeverAlignsError("Orbits have the same period and never align")

    angle_to_make_up = clamp_angle(current_phase) - clamp_angle(target_phase)
    if angle_to_make_up > 0.0 and relative_angular_rate > 0.0:
        angle_to_make_up -= TAU
    elif angle_to_make_up < 0.0 and relative_angular_rate < 0.0:
        angle_to_make_up += TAU
    return abs(angle_to_make_up / relative_angular_rate)


# -------------------------------------------------------------------------
# Speeds
# -------------------------------------------------------------------------

def speed_at_periapsis(mu: float, apoapsis: float, periapsis: float) -> float:
    """Speed at periapsis of the ellipse with the given apsides (vis-viva)."""
    return math.sqrt(mu * (2.0 / periapsis - 2.0 / (apoapsis + periapsis)))


def speed_at_apoapsis(mu: float, apoapsis: float, periapsis: float) -> float:
    """Speed at apoapsis of the ellipse with the given apsides (vis-viva)."""
    return math.sqrt(mu * (2.0 / apoapsis - 2.0 / (apoapsis + periapsis)))


def speed_to_exit_soi(
    mu: float, sphere_of_influence: float, radius: float, speed_at_infinity: float,
) -> float:
    """
    Speed needed at ``radius`` to leave the sphere of influence with
    ``speed_at_infinity`` left over.

        v^2 = v_inf^2 + 2*mu*(SOI - r) / (SOI * r)

    An infinite sphere reduces to the usual hyperbolic excess relation.
    """
    if math.isinf(sphere_of_influence):
        return math.sqrt(speed_at_infinity ** 2 + 2.0 * mu / radius)
    return math.sqrt(
        2.0 * mu * (sphere_of_influence - radius) / (sphere_of_influence * radius)
        + speed_at_infinity ** 2
    )


# -------------------------------------------------------------------------
# Ejection
# -------------------------------------------------------------------------

def ejection_angle(
    origin_radius: float,
    speed_at_infinity: float,
    mu: float,
    escaping: bool = True,
) -> float:
    """
    Angle from "midnight" (the side of the body facing away from its own
    parent) at which to burn so that the escape asymptote points along the
    body's retrograde direction.

    The escape hyperbola with periapsis ``origin_radius`` and excess speed
    ``speed_at_infinity`` has

        a = -mu / v_inf^2
        e = 1 - r_p / a
        theta_inf = acos(-1 / e)

    and the burn sits 3*pi/2 - theta_inf from midnight.  Callers aiming for
    the prograde direction shift the result by -pi.  A direct transfer
    between co-orbiting objects needs no escape and gets 0.

    Raises
    ------
    ValueError
        If the excess speed or gravitational parameter is not positive.
    """
    if not escaping:
        return 0.0
    if speed_at_infinity <= 0.0 or mu <= 0.0:
        raise ValueError("Ejection angle needs positive excess speed and mu")

    a = -mu / speed_at_infinity ** 2
    e = 1.0 - origin_radius / a
    theta = math.acos(-1.0 / e)
    angle = 0.75 * TAU - theta
    logger.debug("Ejection angle: r=%.0f m, v_inf=%.1f m/s, e=%.4f -> %.2f deg",
                 origin_radius, speed_at_infinity, e, math.degrees(angle))
    return angle


def time_at_angle_from_midnight(
    parent_orbit: OrbitState,
    orbit: OrbitState,
    min_time: float,
    angle: float,
) -> float:
    """
    First time at or after ``min_time`` at which ``orbit`` puts its object
    ``angle`` ahead of midnight, midnight being the direction from the
    parent's own parent through the parent at ``min_time``.
    """
    parent_longitude = (parent_orbit.lan + parent_orbit.argument_of_periapsis
                        + parent_orbit.true_anomaly_at(min_time))
    if orbit.relative_inclination(parent_orbit) < HALF_PI:
        true_anomaly = clamp_angle(parent_longitude - orbit.lan
                                   - orbit.argument_of_periapsis + angle)
    else:
        true_anomaly = clamp_angle(orbit.lan - orbit.argument_of_periapsis
                                   - parent_longitude + angle + PI)

    next_time = orbit.ut_at_true_anomaly(true_anomaly, min_time)
    period = orbit.period
    num_orbits = math.ceil((min_time - next_time) / period)
    return next_time + num_orbits * period


def escape_delta_v(
    body_mu: float,
    sphere_of_influence: float,
    orbit: OrbitState,
    speed_at_infinity: float,
    burn_ut: float,
) -> np.ndarray:
    """Prograde burn that leaves the SOI with the given excess speed."""
    radius = orbit.radius_at(burn_ut)
    needed = speed_to_exit_soi(body_mu, sphere_of_influence, radius, abs(speed_at_infinity))
    return np.array([0.0, 0.0, needed - orbit.speed_at(burn_ut)])


# -------------------------------------------------------------------------
# Burns
# -------------------------------------------------------------------------

def transfer_delta_v(
    origin_orbit: OrbitState,
    destination_radius: float,
    burn_ut: float,
    retrograde_compatible: bool = True,
) -> np.ndarray:
    """
    Single burn at ``burn_ut`` that stretches the origin orbit out (or in)
    to ``destination_radius`` on the far side.

    Raising:  burn to the periapsis speed of the ellipse (r, r_dest).
    Lowering: burn to the apoapsis speed of the ellipse (r, r_dest).

    The magnitude is the difference between that vis-viva speed and the
    current speed.  The direction is along the origin's own velocity, which
    is what a retrograde origin needs.  With ``retrograde_compatible`` off,
    the sign is instead reported in the parent's rotational sense, so a
    retrograde origin shows its raising burn as negative.

    Returns
    -------
    np.ndarray
        (radial, normal, prograde) delta-V (m/s).
    """
    radius = origin_orbit.radius_at(burn_ut)
    speed = origin_orbit.speed_at(burn_ut)
    mu = origin_orbit.mu

    if destination_radius >= radius:
        target_speed = speed_at_periapsis(mu, destination_radius, radius)
    else:
        target_speed = speed_at_apoapsis(mu, radius, destination_radius)

    prograde = target_speed - speed
    if not retrograde_compatible and origin_orbit.is_retrograde:
        prograde = -prograde

    logger.debug("Transfer burn: r=%.0f m -> %.0f m, v=%.1f -> %.1f m/s",
                 radius, destination_radius, speed, target_speed)
    return np.array([0.0, 0.0, prograde])


def plane_change_delta_v(inclination_delta: float, velocity_at_node: float) -> float:
    """
    Delta-V to rotate an orbit plane by ``inclination_delta`` at a node
    where the speed is ``velocity_at_node``.

        dv = 2 * v * sin(|di| / 2)
    """
    dv = 2.0 * velocity_at_node * math.sin(abs(inclination_delta) / 2.0)
    logger.debug("Plane change: di=%.4f deg, v=%.1f m/s -> dv=%.2f m/s",
                 math.degrees(inclination_delta), velocity_at_node, dv)
    return dv
