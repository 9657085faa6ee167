"""
===============================================================================
ASTROGATOR - Guidance Package
===============================================================================
Transfer planning from an origin to every reachable destination.

Modules:
    orbital_math       : Closed-form phase angle, alignment, ejection and
                         delta-V formulas
    burn_model         : A burn and its link to a host maneuver node
    transfer_model     : Ejection and plane-change burns for one destination
    astrogation_model  : All transfers from one origin
    route_resolver     : Which destinations to offer from an origin
===============================================================================
"""
