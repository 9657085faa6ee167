"""
===============================================================================
ASTROGATOR - Dynamics Module
===============================================================================
Two-body orbit representation and the bodies that orbits are expressed in.

Submodules:
    orbital_mechanics -- OrbitState snapshots, anomaly conversions, element
                         conversions, node crossings, tolerance comparison
    bodies            -- celestial bodies, vessels, target references and the
                         reference-body tree
===============================================================================
"""
