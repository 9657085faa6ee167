"""
===============================================================================
ASTROGATOR - Visualization Module
===============================================================================
Submodules:
    transfer_plots -- bar chart of upcoming transfer windows
===============================================================================
"""
