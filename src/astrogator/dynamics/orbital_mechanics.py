"""
===============================================================================
ASTROGATOR - Keplerian Orbit Snapshots
===============================================================================
Immutable two-body orbit description and the geometry the transfer planner
needs from it:

    1. **State representation** -- OrbitState bundles the classical
       elements, the epoch of the mean anomaly and the gravitational
       parameter of the reference body into a value that can be handed
       freely between the simulation thread and the background worker.

    2. **Propagation** -- mean/eccentric/true anomaly conversions for
       elliptic and hyperbolic orbits, Kepler's equation solved with
       scipy's Newton iteration.

    3. **Orbit geometry** -- Keplerian <-> Cartesian conversions, orbit
       normals, relative inclination, ascending/descending nodes against
       another orbit and the next time a true anomaly is reached.

    4. **Comparison** -- tolerance-based equality used to notice that a
       vessel's orbit has changed enough to invalidate its burns.

Every orbit about every body is expressed in one shared inertial
orientation; positions and velocities are relative to the orbit's own
reference body.  Angles are radians, distances meters, times seconds of
universal time.

References
----------
    [1] Vallado, "Fundamentals of Astrodynamics and Applications", 4th ed.
    [2] Curtis, "Orbital Mechanics for Engineering Students", 4th ed.
===============================================================================
"""

import logging
import math
from dataclasses import dataclass, replace
from typing import List, Optional, Tuple

import numpy as np
from scipy.optimize import newton

from astrogator.core.constants import (
    TAU,
    PI,
    RAD2DEG,
    KEPLER_TOLERANCE,
    KEPLER_MAX_ITERATIONS,
    CIRCULAR_ECCENTRICITY,
    EQUATORIAL_NODE,
    SMA_TOLERANCE,
    ECCENTRICITY_TOLERANCE,
    INCLINATION_TOLERANCE,
    LAN_TOLERANCE,
    ARG_PERIAPSIS_TOLERANCE,
)

logger = logging.getLogger(__name__)


def clamp_angle(angle: float) -> float:
    """Wrap an angle into [0, 2*pi)."""
    wrapped = math.fmod(angle, TAU)
    if wrapped < 0.0:
        wrapped += TAU
    # fmod of a value just below a multiple of TAU can round up to TAU
    return 0.0 if wrapped >= TAU else wrapped


def signed_angle(angle: float) -> float:
    """Wrap an angle into [-pi, pi)."""
    return clamp_angle(angle + PI) - PI


def _angle_difference(a: float, b: float) -> float:
    return abs(signed_angle(a - b))


def perifocal_rotation(lan: float, inc: float, argp: float) -> np.ndarray:
    """
    Rotation matrix from the perifocal (PQW) frame to the inertial frame.

        R = Rz(-LAN) * Rx(-i) * Rz(-omega)
    """
    cos_O, sin_O = math.cos(lan), math.sin(lan)
    cos_i, sin_i = math.cos(inc), math.sin(inc)
    cos_w, sin_w = math.cos(argp), math.sin(argp)

    return np.array([
        [cos_O * cos_w - sin_O * sin_w * cos_i,
         -cos_O * sin_w - sin_O * cos_w * cos_i,
         sin_O * sin_i],
        [sin_O * cos_w + cos_O * sin_w * cos_i,
         -sin_O * sin_w + cos_O * cos_w * cos_i,
         -cos_O * sin_i],
        [sin_w * sin_i,
         cos_w * sin_i,
         cos_i],
    ], dtype=np.float64)


# =============================================================================
# ORBIT STATE
# =============================================================================

@dataclass(frozen=True)
class OrbitState:
    """
    Snapshot of a two-body orbit about a named reference body.

    Attributes
    ----------
    semi_major_axis : float
        Semi-major axis (m).  Negative for hyperbolic orbits.
    eccentricity : float
        Eccentricity, >= 0.
    inclination : float
        Inclination (rad) in [0, pi].  Above pi/2 the orbit is retrograde.
    lan : float
        Longitude of the ascending node (rad).
    argument_of_periapsis : float
        Argument of periapsis (rad).
    mean_anomaly_at_epoch : float
        Mean anomaly (rad) at ``epoch``.
    epoch : float
        Universal time (s) at which ``mean_anomaly_at_epoch`` holds.
    reference_body : str
        Name of the body being orbited.
    mu : float
        Gravitational parameter of the reference body (m^3/s^2).
    """
    semi_major_axis: float
    eccentricity: float
    inclination: float
    lan: float
    argument_of_periapsis: float
    mean_anomaly_at_epoch: float
    epoch: float
    reference_body: str
    mu: float

    # ------------------------------------------------------------------
    # Basic properties
    # ------------------------------------------------------------------

    @property
    def is_hyperbolic(self) -> bool:
        return self.eccentricity >= 1.0

    @property
    def is_periodic(self) -> bool:
        return self.eccentricity < 1.0 and self.semi_major_axis > 0.0

    @property
    def is_retrograde(self) -> bool:
        return self.inclination > 0.5 * PI

    @property
    def mean_motion(self) -> float:
        """Mean angular motion (rad/s)."""
        if self.mu <= 0.0:
            raise ValueError("Mean motion is undefined without gravity")
        return math.sqrt(self.mu / abs(self.semi_major_axis) ** 3)

    @property
    def period(self) -> float:
        """Orbital period (s); infinite for open orbits."""
        if not self.is_periodic:
            return math.inf
        return TAU / self.mean_motion

    @property
    def semi_latus_rectum(self) -> float:
        return self.semi_major_axis * (1.0 - self.eccentricity ** 2)

    @property
    def periapsis(self) -> float:
        """Periapsis radius (m)."""
        return self.semi_major_axis * (1.0 - self.eccentricity)

    @property
    def apoapsis(self) -> float:
        """Apoapsis radius (m); infinite for open orbits."""
        if not self.is_periodic:
            return math.inf
        return self.semi_major_axis * (1.0 + self.eccentricity)

    @property
    def max_true_anomaly(self) -> float:
        """Asymptotic true anomaly of a hyperbola, pi for closed orbits."""
        if self.eccentricity <= 1.0:
            return PI
        return math.acos(-1.0 / self.eccentricity)

    # ------------------------------------------------------------------
    # Frame
    # ------------------------------------------------------------------

    def perifocal_rotation(self) -> np.ndarray:
        """Rotation from this orbit's perifocal frame to the inertial frame."""
        return perifocal_rotation(self.lan, self.inclination, self.argument_of_periapsis)

    def normal(self) -> np.ndarray:
        """Unit vector along the specific angular momentum."""
        return self.perifocal_rotation()[:, 2]

    def relative_inclination(self, other: 'OrbitState') -> float:
        """Angle (rad) between this orbit's plane and another's, in [0, pi]."""
        cos_angle = float(np.dot(self.normal(), other.normal()))
        return math.acos(max(-1.0, min(1.0, cos_angle)))

    # ------------------------------------------------------------------
    # Anomalies
    # ------------------------------------------------------------------

    def mean_anomaly_at(self, ut: float) -> float:
        """Mean anomaly at a universal time, wrapped for closed orbits."""
        mean_anomaly = self.mean_anomaly_at_epoch + self.mean_motion * (ut - self.epoch)
        if self.is_hyperbolic:
            return mean_anomaly
        return clamp_angle(mean_anomaly)

    def eccentric_anomaly_from_mean(self, mean_anomaly: float) -> float:
        """
        Solve Kepler's equation for the eccentric (or hyperbolic) anomaly.

            Elliptic:   M = E - e*sin(E)
            Hyperbolic: M = e*sinh(H) - H
        """
        e = self.eccentricity
        if abs(e - 1.0) < 1e-9:
            raise ValueError("Parabolic orbits are not supported")

        if e < 1.0:
            def kepler(E):
                return E - e * math.sin(E) - mean_anomaly

            def kepler_prime(E):
                return 1.0 - e * math.cos(E)

            guess = mean_anomaly if e < 0.8 else PI
        else:
            def kepler(H):
                return e * math.sinh(H) - H - mean_anomaly

            def kepler_prime(H):
                return e * math.cosh(H) - 1.0

            guess = math.asinh(mean_anomaly / e) if e > 1.0 else mean_anomaly

        return float(newton(kepler, guess, fprime=kepler_prime,
                            tol=KEPLER_TOLERANCE, maxiter=KEPLER_MAX_ITERATIONS))

    def true_anomaly_from_eccentric(self, eccentric_anomaly: float) -> float:
        e = self.eccentricity
        if e < 1.0:
            beta = math.sqrt((1.0 + e) / (1.0 - e))
            return clamp_angle(2.0 * math.atan(beta * math.tan(0.5 * eccentric_anomaly)))
        beta = math.sqrt((e + 1.0) / (e - 1.0))
        return 2.0 * math.atan(beta * math.tanh(0.5 * eccentric_anomaly))

    def mean_anomaly_from_true(self, true_anomaly: float) -> float:
        """Mean anomaly for a true anomaly; unwrapped for hyperbolae."""
        e = self.eccentricity
        if e < 1.0:
            half = 0.5 * signed_angle(true_anomaly)
            E = 2.0 * math.atan(math.sqrt((1.0 - e) / (1.0 + e)) * math.tan(half))
            return clamp_angle(E - e * math.sin(E))
        nu = signed_angle(true_anomaly)
        if abs(nu) >= self.max_true_anomaly:
            raise ValueError(
                f"True anomaly {nu * RAD2DEG:.2f} deg is beyond the asymptote "
                f"of this hyperbola ({self.max_true_anomaly * RAD2DEG:.2f} deg)"
            )
        H = 2.0 * math.atanh(math.sqrt((e - 1.0) / (e + 1.0)) * math.tan(0.5 * nu))
        return e * math.sinh(H) - H

    def true_anomaly_at(self, ut: float) -> float:
        """True anomaly at a universal time ([0, 2pi) closed, (-pi, pi) open)."""
        E = self.eccentric_anomaly_from_mean(self.mean_anomaly_at(ut))
        return self.true_anomaly_from_eccentric(E)

    def ut_at_true_anomaly(self, true_anomaly: float, after_ut: float) -> float:
        """
        Universal time at which the orbit next reaches a true anomaly.

        For closed orbits the result is the first occurrence at or after
        ``after_ut``.  A hyperbola passes each anomaly once, so the single
        occurrence is returned even if it lies before ``after_ut``.
        """
        target_mean = self.mean_anomaly_from_true(true_anomaly)
        n = self.mean_motion
        if self.is_hyperbolic:
            return self.epoch + (target_mean - self.mean_anomaly_at_epoch) / n
        current_mean = self.mean_anomaly_at(after_ut)
        return after_ut + clamp_angle(target_mean - current_mean) / n

    # ------------------------------------------------------------------
    # State vectors
    # ------------------------------------------------------------------

    def radius_at_true_anomaly(self, true_anomaly: float) -> float:
        return self.semi_latus_rectum / (1.0 + self.eccentricity * math.cos(true_anomaly))

    def radius_at(self, ut: float) -> float:
        """Distance (m) from the reference body's centre at a time."""
        return self.radius_at_true_anomaly(self.true_anomaly_at(ut))

    def speed_at(self, ut: float) -> float:
        """Orbital speed (m/s) at a time, from vis-viva."""
        r = self.radius_at(ut)
        return math.sqrt(self.mu * (2.0 / r - 1.0 / self.semi_major_axis))

    def state_at_true_anomaly(self, true_anomaly: float) -> Tuple[np.ndarray, np.ndarray]:
        """Position and velocity for a true anomaly."""
        return keplerian_to_cartesian(
            self.semi_major_axis, self.eccentricity, self.inclination,
            self.lan, self.argument_of_periapsis, true_anomaly, self.mu,
        )

    def state_at(self, ut: float) -> Tuple[np.ndarray, np.ndarray]:
        """Position (m) and velocity (m/s) relative to the reference body."""
        return self.state_at_true_anomaly(self.true_anomaly_at(ut))

    def position_at(self, ut: float) -> np.ndarray:
        return self.state_at(ut)[0]

    # ------------------------------------------------------------------
    # Nodes against another orbit
    # ------------------------------------------------------------------

    def true_anomaly_of_direction(self, direction: np.ndarray) -> float:
        """True anomaly at which the orbit's radius vector points along a direction."""
        rotation = self.perifocal_rotation()
        p_hat = rotation[:, 0]
        q_hat = rotation[:, 1]
        return clamp_angle(math.atan2(float(np.dot(direction, q_hat)),
                                      float(np.dot(direction, p_hat))))

    def ascending_node_anomaly(self, other: 'OrbitState') -> float:
        """
        True anomaly of the ascending node of this orbit relative to another.

        Raises
        ------
        ValueError
            If the planes coincide and the node line is undefined.
        """
        node_line = np.cross(other.normal(), self.normal())
        if np.linalg.norm(node_line) < 1e-12:
            raise ValueError("Orbits are coplanar; no line of nodes")
        return self.true_anomaly_of_direction(node_line)

    def descending_node_anomaly(self, other: 'OrbitState') -> float:
        return clamp_angle(self.ascending_node_anomaly(other) + PI)

    def node_times(self, other: 'OrbitState', after_ut: float) -> List[Tuple[float, bool]]:
        """
        Upcoming (time, is_ascending) node crossings against another orbit.

        Nodes that a hyperbola never reaches, or reached before ``after_ut``,
        are dropped.  The list is sorted by time.
        """
        crossings = []
        for anomaly, ascending in ((self.ascending_node_anomaly(other), True),
                                   (self.descending_node_anomaly(other), False)):
            try:
                ut = self.ut_at_true_anomaly(anomaly, after_ut)
            except ValueError:
                continue
            if ut >= after_ut:
                crossings.append((ut, ascending))
        crossings.sort()
        return crossings

    # ------------------------------------------------------------------
    # Construction and comparison
    # ------------------------------------------------------------------

    @classmethod
    def from_state_vectors(
        cls, position: np.ndarray, velocity: np.ndarray, mu: float,
        ut: float, reference_body: str,
    ) -> 'OrbitState':
        """Build the orbit passing through a state at a universal time."""
        a, e, inc, lan, argp, nu = cartesian_to_keplerian(position, velocity, mu)
        proto = cls(a, e, inc, lan, argp, 0.0, ut, reference_body, mu)
        return replace(proto, mean_anomaly_at_epoch=proto.mean_anomaly_from_true(nu))

    @classmethod
    def circular(
        cls, radius: float, mu: float, reference_body: str,
        inclination: float = 0.0, lan: float = 0.0,
        phase: float = 0.0, epoch: float = 0.0,
    ) -> 'OrbitState':
        """Circular orbit whose argument of latitude is ``phase`` at ``epoch``."""
        return cls(radius, 0.0, inclination, lan, 0.0, clamp_angle(phase),
                   epoch, reference_body, mu)

    def differences(self, other: 'OrbitState') -> List[str]:
        """Labels of the elements that differ beyond the comparison tolerances."""
        diffs = []
        if self.reference_body != other.reference_body:
            diffs.append('body')
        if abs(self.semi_major_axis - other.semi_major_axis) > SMA_TOLERANCE:
            diffs.append('sma')
        if abs(self.eccentricity - other.eccentricity) > ECCENTRICITY_TOLERANCE:
            diffs.append('ecc')
        if abs(self.inclination - other.inclination) > INCLINATION_TOLERANCE:
            diffs.append('inc')
        if _angle_difference(self.lan, other.lan) > LAN_TOLERANCE:
            diffs.append('lan')
        if _angle_difference(self.argument_of_periapsis,
                             other.argument_of_periapsis) > ARG_PERIAPSIS_TOLERANCE:
            diffs.append('aop')
        return diffs

    def matches(self, other: Optional['OrbitState']) -> bool:
        """True when the two snapshots describe the same orbit within tolerance."""
        return other is not None and not self.differences(other)

    def describe_differences(self, other: 'OrbitState') -> str:
        """Human-readable comparison, used in orbit-change log messages."""
        parts = []
        for label in self.differences(other):
            if label == 'body':
                parts.append(f"body {self.reference_body} -> {other.reference_body}")
            elif label == 'sma':
                parts.append(f"sma {self.semi_major_axis:.0f} -> {other.semi_major_axis:.0f} m")
            elif label == 'ecc':
                parts.append(f"ecc {self.eccentricity:.3f} -> {other.eccentricity:.3f}")
            elif label == 'inc':
                parts.append(f"inc {self.inclination * RAD2DEG:.2f} -> "
                             f"{other.inclination * RAD2DEG:.2f} deg")
            elif label == 'lan':
                parts.append(f"lan {self.lan * RAD2DEG:.2f} -> {other.lan * RAD2DEG:.2f} deg")
            else:
                parts.append(f"aop {self.argument_of_periapsis * RAD2DEG:.2f} -> "
                             f"{other.argument_of_periapsis * RAD2DEG:.2f} deg")
        return ', '.join(parts) if parts else 'identical'


# =============================================================================
# KEPLERIAN <-> CARTESIAN CONVERSIONS
# =============================================================================

def keplerian_to_cartesian(
    a: float, e: float, i: float,
    lan: float, omega: float, nu: float,
    mu: float,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Convert classical Keplerian elements to position and velocity.

    Perifocal frame quantities:

        p = a * (1 - e^2)                        (semi-latus rectum)
        r = p / (1 + e*cos(nu))                  (orbital radius)
        r_pqw = r * [cos(nu), sin(nu), 0]
        v_pqw = sqrt(mu/p) * [-sin(nu), e+cos(nu), 0]

    followed by the 3-1-3 rotation (LAN, i, omega) into the inertial frame.

    Parameters
    ----------
    a : float
        Semi-major axis (m).  Negative for hyperbolic orbits.
    e : float
        Eccentricity.
    i, lan, omega, nu : float
        Inclination, longitude of the ascending node, argument of periapsis
        and true anomaly (rad).
    mu : float
        Gravitational parameter (m^3/s^2).

    Returns
    -------
    r_vec, v_vec : np.ndarray
        3-element position (m) and velocity (m/s) vectors.

    References
    ----------
    Vallado (2013), Algorithm 10.
    """
    p = a * (1.0 - e * e)
    if abs(p) < 1e-10:
        raise ValueError("Semi-latus rectum is near zero; degenerate orbit.")

    cos_nu = math.cos(nu)
    sin_nu = math.sin(nu)
    r_mag = p / (1.0 + e * cos_nu)

    r_pqw = r_mag * np.array([cos_nu, sin_nu, 0.0], dtype=np.float64)
    v_pqw = math.sqrt(mu / p) * np.array([-sin_nu, e + cos_nu, 0.0], dtype=np.float64)

    rotation = perifocal_rotation(lan, i, omega)
    return rotation @ r_pqw, rotation @ v_pqw


def cartesian_to_keplerian(
    r_vec: np.ndarray, v_vec: np.ndarray, mu: float
) -> Tuple[float, float, float, float, float, float]:
    """
    Convert position and velocity to classical Keplerian elements.

    Edge cases follow the usual conventions so that the elements rebuild the
    same state through ``keplerian_to_cartesian``:
        - Circular orbit: omega = 0, nu measured from the ascending node.
        - Equatorial orbit: LAN = 0, omega measured from the x-axis.
        - Circular equatorial: LAN = omega = 0, nu measured from the x-axis.
      For retrograde equatorial orbits the angles from the x-axis are taken
      in the direction of motion.

    Returns
    -------
    tuple of (a, e, i, LAN, omega, nu)

    References
    ----------
    Vallado (2013), Algorithm 9.
    """
    r = np.asarray(r_vec, dtype=np.float64)
    v = np.asarray(v_vec, dtype=np.float64)

    r_mag = float(np.linalg.norm(r))
    v_mag = float(np.linalg.norm(v))

    h = np.cross(r, v)
    h_mag = float(np.linalg.norm(h))
    if h_mag < 1e-12:
        raise ValueError("Radial trajectory; angular momentum is zero.")

    n = np.cross(np.array([0.0, 0.0, 1.0]), h)
    n_mag = float(np.linalg.norm(n)) / h_mag

    e_vec = (np.cross(v, h) / mu) - (r / r_mag)
    e = float(np.linalg.norm(e_vec))

    energy = 0.5 * v_mag * v_mag - mu / r_mag
    if abs(energy) < 1e-20:
        raise ValueError("Parabolic trajectory; semi-major axis undefined.")
    a = -mu / (2.0 * energy)

    inc = math.acos(max(-1.0, min(1.0, h[2] / h_mag)))
    # Sign of in-plane angles measured from +x in an equatorial orbit
    direction = 1.0 if h[2] >= 0.0 else -1.0

    if n_mag > EQUATORIAL_NODE:
        lan = clamp_angle(math.atan2(n[1], n[0]))
    else:
        lan = 0.0

    if e > CIRCULAR_ECCENTRICITY and n_mag > EQUATORIAL_NODE:
        cos_omega = float(np.dot(n, e_vec)) / (float(np.linalg.norm(n)) * e)
        omega = math.acos(max(-1.0, min(1.0, cos_omega)))
        if e_vec[2] < 0.0:
            omega = TAU - omega
    elif e > CIRCULAR_ECCENTRICITY:
        omega = clamp_angle(math.atan2(direction * e_vec[1], e_vec[0]))
    else:
        e = 0.0
        omega = 0.0

    if e > 0.0:
        cos_nu = float(np.dot(e_vec, r)) / (e * r_mag)
        nu = math.acos(max(-1.0, min(1.0, cos_nu)))
        if np.dot(r, v) < 0.0:
            nu = TAU - nu
    elif n_mag > EQUATORIAL_NODE:
        cos_nu = float(np.dot(n, r)) / (float(np.linalg.norm(n)) * r_mag)
        nu = math.acos(max(-1.0, min(1.0, cos_nu)))
        if r[2] < 0.0:
            nu = TAU - nu
    else:
        nu = clamp_angle(math.atan2(direction * r[1], r[0]))

    return (a, e, inc, lan, omega, nu)
