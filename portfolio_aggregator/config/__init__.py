"""
Configuration and settings management.

Loads engine settings from environment variables (.env file) and exposes a
validated, immutable settings object.
"""
