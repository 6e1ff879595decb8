"""
Domain services for Milestack.

Each module exposes a service class with a module-level instance, except
storage and rate_limit which are plain functions.
"""
