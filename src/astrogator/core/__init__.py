"""
===============================================================================
ASTROGATOR - Core Module
===============================================================================
Submodules:
    constants -- physical constants, stock Kerbin values and planner tolerances
    settings  -- Settings object with option interlocks and YAML persistence
===============================================================================
"""
