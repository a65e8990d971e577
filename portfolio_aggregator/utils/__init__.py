"""
Generic utility functions shared across modules.

Includes UTC day-bucket helpers, numeric helpers (finiteness, percentiles)
and logging setup.
"""
