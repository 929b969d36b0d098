"""
Shared infrastructure for the field operations platform: base models,
structured logging, Sentry helpers and cache utilities.
"""
