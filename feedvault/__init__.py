"""
feedvault: keeps a local archive of the items published by tracked remote accounts.
"""

__version__ = "0.3.0"
