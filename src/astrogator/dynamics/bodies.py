"""
===============================================================================
ASTROGATOR - Reference Bodies and Vessels
===============================================================================
Read-only views of the things a transfer can start from or aim at:

    CelestialNode  -- a body in the reference-body tree (star, planet, moon)
    VesselView     -- a vessel, station or tracked asteroid
    TargetRef      -- identity of either, stable across snapshots
    BodyTree       -- parent/child navigation over the bodies

The host simulation owns these objects; the planner only reads them and
refers to them by TargetRef so that a fresh snapshot can be looked up each
time a burn is recomputed.
===============================================================================
"""

import logging
import math
from dataclasses import dataclass
from enum import Enum, auto
from typing import Dict, Iterable, List, Optional, Tuple

from astrogator.core.constants import (
    DEG2RAD,
    HALF_PI,
    LOW_ORBIT_PADDING,
)
from astrogator.dynamics.orbital_mechanics import OrbitState

logger = logging.getLogger(__name__)


class Situation(Enum):
    """Flight situation of a vessel."""
    PRELAUNCH = auto()
    LANDED = auto()
    SPLASHED = auto()
    FLYING = auto()
    SUB_ORBITAL = auto()
    ORBITING = auto()
    ESCAPING = auto()
    DOCKED = auto()

    @property
    def on_surface(self) -> bool:
        return self in (Situation.PRELAUNCH, Situation.LANDED, Situation.SPLASHED)


class TargetKind(Enum):
    BODY = auto()
    VESSEL = auto()


@dataclass(frozen=True)
class TargetRef:
    """Identity of a body or vessel, compared by value."""
    kind: TargetKind
    name: str

    @classmethod
    def body(cls, name: str) -> 'TargetRef':
        return cls(TargetKind.BODY, name)

    @classmethod
    def vessel(cls, name: str) -> 'TargetRef':
        return cls(TargetKind.VESSEL, name)

    @property
    def is_vessel(self) -> bool:
        return self.kind is TargetKind.VESSEL

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class CelestialNode:
    """
    A body in the reference-body tree.

    Attributes
    ----------
    name : str
    mu : float
        Gravitational parameter (m^3/s^2).
    radius : float
        Mean radius (m).
    sphere_of_influence : float
        SOI radius (m); infinite for the root star.
    orbit : OrbitState or None
        Orbit about the parent; None for a root.
    parent : str or None
    atmosphere_depth : float
        Height of the atmosphere (m), 0 when airless.
    min_orbit_altitude : float
        Lowest safe altitude above airless terrain (m).
    rotation_period : float
        Sidereal rotation period (s).
    """
    name: str
    mu: float
    radius: float
    sphere_of_influence: float
    orbit: Optional[OrbitState] = None
    parent: Optional[str] = None
    atmosphere_depth: float = 0.0
    min_orbit_altitude: float = 0.0
    rotation_period: float = math.inf

    @property
    def ref(self) -> TargetRef:
        return TargetRef.body(self.name)

    @property
    def situation(self) -> Situation:
        return Situation.ORBITING

    @property
    def good_low_orbit_radius(self) -> float:
        """Radius of a safe parking orbit just above the air or terrain."""
        if self.atmosphere_depth > 0.0:
            return self.radius + self.atmosphere_depth + LOW_ORBIT_PADDING
        return self.radius + self.min_orbit_altitude + LOW_ORBIT_PADDING


@dataclass(frozen=True)
class VesselView:
    """A vessel or tracked asteroid as seen at one instant."""
    name: str
    orbit: Optional[OrbitState]
    situation: Situation = Situation.ORBITING
    tracked: bool = True
    is_asteroid: bool = False

    @property
    def ref(self) -> TargetRef:
        return TargetRef.vessel(self.name)

    @property
    def landed(self) -> bool:
        return self.situation.on_surface

    @property
    def sphere_of_influence(self) -> float:
        return 0.0


def angle_from_equatorial(inclination: float) -> float:
    """Angle between an orbit plane and the equator, 0 for retrograde equatorial."""
    return HALF_PI - abs(HALF_PI - abs(inclination))


# =============================================================================
# BODY TREE
# =============================================================================

class BodyTree:
    """
    Navigation over the reference-body hierarchy.

    The tree may hold several independent roots; bodies under different
    roots share no ancestor.
    """

    def __init__(self, bodies: Iterable[CelestialNode]) -> None:
        self._bodies: Dict[str, CelestialNode] = {}
        for body in bodies:
            if body.name in self._bodies:
                raise ValueError(f"Duplicate body '{body.name}'")
            self._bodies[body.name] = body

        self._children: Dict[str, List[str]] = {name: [] for name in self._bodies}
        for body in self._bodies.values():
            if body.parent is None:
                continue
            if body.parent not in self._bodies:
                raise ValueError(f"Body '{body.name}' orbits unknown parent '{body.parent}'")
            if body.orbit is None:
                raise ValueError(f"Body '{body.name}' has a parent but no orbit")
            self._children[body.parent].append(body.name)

        for names in self._children.values():
            names.sort(key=lambda n: (self._bodies[n].orbit.semi_major_axis, n))

        logger.debug("Body tree with %d bodies, roots: %s",
                     len(self._bodies), ', '.join(self.roots()))

    def __contains__(self, name: str) -> bool:
        return name in self._bodies

    def __iter__(self):
        return iter(self._bodies.values())

    def __len__(self) -> int:
        return len(self._bodies)

    def get(self, name: str) -> CelestialNode:
        try:
            return self._bodies[name]
        except KeyError:
            raise KeyError(f"Unknown body '{name}'") from None

    def find(self, name: str) -> Optional[CelestialNode]:
        return self._bodies.get(name)

    def roots(self) -> List[str]:
        return [b.name for b in self._bodies.values() if b.parent is None]

    def parent(self, name: str) -> Optional[CelestialNode]:
        parent = self.get(name).parent
        return None if parent is None else self._bodies[parent]

    def children(self, name: str) -> List[CelestialNode]:
        """Satellites of a body, nearest first."""
        return [self._bodies[n] for n in self._children[name]]

    def ancestors(self, name: str) -> List[CelestialNode]:
        """Bodies above ``name``, nearest first, excluding ``name`` itself."""
        chain = []
        body = self.parent(name)
        while body is not None:
            chain.append(body)
            body = self.parent(body.name)
        return chain

    def lineage(self, name: str) -> List[str]:
        """``name`` followed by its ancestors."""
        return [name] + [b.name for b in self.ancestors(name)]

    def common_ancestor(self, a: str, b: str) -> Optional[CelestialNode]:
        """Closest body whose sphere of influence contains both ``a`` and ``b``."""
        above_b = set(self.lineage(b))
        for name in self.lineage(a):
            if name in above_b:
                return self._bodies[name]
        return None

    def is_descendant(self, name: str, ancestor: str) -> bool:
        return ancestor in self.lineage(name)[1:]


# =============================================================================
# STOCK KERBOL SYSTEM
# =============================================================================

# name, parent, mu, radius, SOI, sma, ecc, inc, LAN, AoP (deg), M0 (rad),
# atmosphere depth, min orbit altitude, rotation period
_KERBOL_SYSTEM: Tuple[tuple, ...] = (
    ('Kerbol', None, 1.1723328e18, 261600000.0, math.inf,
     0, 0, 0, 0, 0, 0, 600000.0, 0.0, 432000.0),
    ('Moho', 'Kerbol', 1.6860938e11, 250000.0, 9646663.0,
     5263138304.0, 0.2, 7.0, 70.0, 15.0, 3.14, 0.0, 6900.0, 1210000.0),
    ('Eve', 'Kerbol', 8.1717302e12, 700000.0, 85109365.0,
     9832684544.0, 0.01, 2.1, 15.0, 0.0, 3.14, 90000.0, 0.0, 80500.0),
    ('Gilly', 'Eve', 8289449.8, 13000.0, 126123.27,
     31500000.0, 0.55, 12.0, 80.0, 10.0, 0.9, 0.0, 6500.0, 28255.0),
    ('Kerbin', 'Kerbol', 3.5316e12, 600000.0, 84159286.0,
     13599840256.0, 0.0, 0.0, 0.0, 0.0, 3.14, 70000.0, 0.0, 21549.425),
    ('Mun', 'Kerbin', 6.5138398e10, 200000.0, 2429559.1,
     12000000.0, 0.0, 0.0, 0.0, 0.0, 1.7, 0.0, 7100.0, 138984.38),
    ('Minmus', 'Kerbin', 1.7658e9, 60000.0, 2247428.4,
     47000000.0, 0.0, 6.0, 78.0, 38.0, 0.9, 0.0, 5800.0, 40400.0),
    ('Duna', 'Kerbol', 3.0136321e11, 320000.0, 47921949.0,
     20726155264.0, 0.051, 0.06, 135.5, 0.0, 3.14, 50000.0, 0.0, 65517.859),
    ('Ike', 'Duna', 1.8568369e10, 130000.0, 1049598.9,
     3200000.0, 0.03, 0.2, 0.0, 0.0, 1.7, 0.0, 12800.0, 65517.862),
    ('Dres', 'Kerbol', 2.1484489e10, 138000.0, 32832840.0,
     40839348203.0, 0.145, 5.0, 280.0, 90.0, 3.14, 0.0, 5800.0, 34800.0),
    ('Jool', 'Kerbol', 2.82528e14, 6000000.0, 2.4559852e9,
     68773560320.0, 0.05, 1.304, 52.0, 0.0, 0.1, 200000.0, 0.0, 36000.0),
    ('Laythe', 'Jool', 1.962e12, 500000.0, 3723645.8,
     27184000.0, 0.0, 0.0, 0.0, 0.0, 3.14, 50000.0, 0.0, 52980.879),
    ('Vall', 'Jool', 2.074815e11, 300000.0, 2406401.4,
     43152000.0, 0.0, 0.0, 0.0, 0.0, 0.9, 0.0, 8000.0, 105962.09),
    ('Tylo', 'Jool', 2.82528e12, 600000.0, 10856518.0,
     68500000.0, 0.0, 0.025, 0.0, 0.0, 3.14, 0.0, 11300.0, 211926.36),
    ('Bop', 'Jool', 2.4868349e9, 65000.0, 1221060.9,
     128500000.0, 0.235, 15.0, 10.0, 25.0, 0.9, 0.0, 21800.0, 544507.43),
    ('Pol', 'Jool', 7.2170208e8, 44000.0, 1042138.9,
     179890000.0, 0.171, 4.25, 2.0, 15.0, 0.9, 0.0, 5600.0, 901902.62),
    ('Eeloo', 'Kerbol', 7.4410815e10, 210000.0, 1.1908294e8,
     90118820000.0, 0.26, 6.15, 50.0, 260.0, 3.14, 0.0, 3900.0, 19460.0),
)


def kerbol_system() -> BodyTree:
    """Build the stock Kerbol system with every orbit at epoch 0."""
    mus = {row[0]: row[2] for row in _KERBOL_SYSTEM}
    bodies = []
    for (name, parent, mu, radius, soi, sma, ecc, inc, lan, aop, m0,
         atmosphere, min_altitude, rotation) in _KERBOL_SYSTEM:
        orbit = None
        if parent is not None:
            orbit = OrbitState(
                semi_major_axis=sma,
                eccentricity=ecc,
                inclination=inc * DEG2RAD,
                lan=lan * DEG2RAD,
                argument_of_periapsis=aop * DEG2RAD,
                mean_anomaly_at_epoch=m0,
                epoch=0.0,
                reference_body=parent,
                mu=mus[parent],
            )
        bodies.append(CelestialNode(
            name=name, mu=mu, radius=radius, sphere_of_influence=soi,
            orbit=orbit, parent=parent, atmosphere_depth=atmosphere,
            min_orbit_altitude=min_altitude, rotation_period=rotation,
        ))
    return BodyTree(bodies)
