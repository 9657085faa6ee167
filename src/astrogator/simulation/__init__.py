"""
===============================================================================
ASTROGATOR - Simulation Package
===============================================================================
Modules:
    host            : HostSimulation contract the planner reads and writes
    kepler_host     : In-memory patched-conic implementation of the contract
    orbit_watch     : Detects when a vessel's orbit has changed
    load_scheduler  : Background computation of plane-change burns
===============================================================================
"""
