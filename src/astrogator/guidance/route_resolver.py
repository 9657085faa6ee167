"""
===============================================================================
ASTROGATOR - Route Resolver
===============================================================================
Decides which destinations are worth offering from an origin.

Starting at the body whose sphere of influence the origin is in, each level
of the tree contributes its satellites (and tracked vessels orbiting it),
skipping the branch just climbed out of; the walk continues up to the root.
For a bare body origin the first level is skipped, since the body cannot
fly to its own moons without being a vessel.  Within a level, destinations
are ordered by distance from the shared parent, then name.  The player's
current target is always offered, first in the list, even when the walk
did not reach it.
===============================================================================
"""

import logging
from typing import List, Optional, Tuple

from astrogator.core.constants import MAX_INCLINATION
from astrogator.dynamics.bodies import TargetRef, angle_from_equatorial
from astrogator.guidance.astrogation_model import AstrogationModel
from astrogator.guidance.transfer_model import TransferModel
from astrogator.simulation.host import HostSimulation

logger = logging.getLogger(__name__)


class RouteResolver:
    """Builds the transfer list for an origin from the host's current state."""

    def __init__(self, host: HostSimulation) -> None:
        self.host = host

    def start_body(self, origin: TargetRef) -> Optional[str]:
        """Body whose satellites are siblings of the origin."""
        if origin.is_vessel:
            orbit = self.host.orbit_of(origin)
            return None if orbit is None else orbit.reference_body
        return origin.name

    def destinations(self, origin: TargetRef) -> List[TargetRef]:
        """Destinations reachable from ``origin``, nearest relationships first."""
        tree = self.host.body_tree
        body_name = self.start_body(origin)
        if body_name is None or body_name not in tree:
            return []

        orbiting_vessels = {}
        for vessel in self.host.vessels():
            if (not vessel.tracked or vessel.orbit is None or vessel.landed
                    or vessel.orbit.is_hyperbolic or vessel.ref == origin):
                continue
            orbiting_vessels.setdefault(vessel.orbit.reference_body, []).append(vessel)

        found: List[TargetRef] = []
        skip: Optional[str] = None
        body = tree.get(body_name)
        first = True
        while body is not None:
            if origin.is_vessel or not first:
                tier = [(child.orbit.semi_major_axis, child.name, child.ref)
                        for child in tree.children(body.name) if child.name != skip]
                tier += [(v.orbit.semi_major_axis, v.name, v.ref)
                         for v in orbiting_vessels.get(body.name, [])]
                tier.sort(key=lambda entry: (entry[0], entry[1]))
                found.extend(ref for _, _, ref in tier)
            first = False
            skip = body.name
            body = tree.parent(body.name)
        return found

    def resolve(self, origin: Optional[TargetRef]) -> Tuple[List[TransferModel], bool]:
        """
        Transfers for ``origin`` and whether its inclination ruled them out.

        A vessel inclined more than 30 degrees from its body's equator gets
        no transfers; retrograde equatorial orbits are accepted.
        """
        if origin is None:
            return [], False

        if origin.is_vessel:
            orbit = self.host.orbit_of(origin)
            if orbit is not None and angle_from_equatorial(orbit.inclination) > MAX_INCLINATION:
                logger.info("%s is too far from the equator for transfers", origin)
                return [], True

        destinations = self.destinations(origin)
        target = self.host.target()
        if target is not None and target != origin and target not in destinations:
            if self.host.resolve(target) is not None:
                destinations.insert(0, target)

        logger.debug("Destinations from %s: %s", origin,
                     ', '.join(d.name for d in destinations))
        return [TransferModel(origin, d) for d in destinations], False

    def rebuild(self, model: AstrogationModel, origin: Optional[TargetRef]) -> AstrogationModel:
        """Replace ``model``'s transfers with a fresh set for ``origin``."""
        transfers, bad_inclination = self.resolve(origin)
        model.reset(origin, transfers, bad_inclination)
        return model
