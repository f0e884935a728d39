"""
Shared helpers: formatting, on-disk layout and provider call protection.
"""
