"""
===============================================================================
ASTROGATOR
===============================================================================
Transfer-window planning for a patched-conic solar system: when to leave,
how hard to burn, and the mid-course plane change that lines the transfer
up with the destination.

Packages:
    core           -- constants and planner settings
    dynamics       -- orbit snapshots and the reference-body tree
    guidance       -- orbital math, burn/transfer/astrogation models, routes
    simulation     -- host contract, Keplerian host, background scheduler
    reporting      -- pandas transfer table
    visualization  -- transfer window chart
===============================================================================
"""

__version__ = '0.1.0'
