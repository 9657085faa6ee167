"""
===============================================================================
ASTROGATOR - Reporting Module
===============================================================================
Submodules:
    transfer_table -- pandas DataFrame of the transfer list, with sorting
===============================================================================
"""
