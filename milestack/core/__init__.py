"""
Core module for the Milestack backend.

This module contains core functionality including:
- Configuration management
- Database connections
- Security utilities (JWT, password hashing, signatures)
"""

from .config import settings
from .database import get_db, engine, SessionLocal
from .security import (
    create_access_token,
    verify_password,
    get_password_hash,
    verify_token,
    verify_access_token,
    generate_secure_token,
)

__all__ = [
    "settings",
    "get_db",
    "engine",
    "SessionLocal",
    "create_access_token",
    "verify_password",
    "get_password_hash",
    "verify_token",
    "verify_access_token",
    "generate_secure_token",
]
