"""
Security utilities for Milestack.

Handles password hashing, JWT token creation/verification, and
opaque token generation for sessions, e-mail verification and password reset.
"""

import hashlib
import hmac
import json
import secrets
from datetime import datetime, timedelta
from typing import Optional, Dict, Any
from jose import JWTError, jwt
from passlib.context import CryptContext

from .config import settings


# Password hashing context
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

SPECIAL_CHARACTERS = "!@#$%^&*()_+-=[]{}|;:,.<>?"


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """
    Verify a plain password against a hashed password.

    Args:
        plain_password: The plain text password to verify
        hashed_password: The hashed password to compare against

    Returns:
        bool: True if password matches, False otherwise
    """
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    """
    Hash a password using bcrypt.

    Args:
        password: The plain text password to hash

    Returns:
        str: The hashed password
    """
    return pwd_context.hash(password)


def create_access_token(
    subject: str,
    expires_delta: Optional[timedelta] = None,
    additional_claims: Optional[Dict[str, Any]] = None
) -> str:
    """
    Create a JWT access token.

    Args:
        subject: The subject of the token (the user ID)
        expires_delta: Optional custom expiration time
        additional_claims: Optional additional claims to include in the token

    Returns:
        str: The encoded JWT token
    """
    if expires_delta:
        expire = datetime.utcnow() + expires_delta
    else:
        expire = datetime.utcnow() + timedelta(
            minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES
        )

    to_encode = {"exp": expire, "sub": subject, "type": "access"}

    if additional_claims:
        to_encode.update(additional_claims)

    to_encode["iat"] = datetime.utcnow()

    return jwt.encode(
        to_encode,
        settings.SECRET_KEY,
        algorithm=settings.ALGORITHM
    )


def verify_token(token: str) -> Optional[Dict[str, Any]]:
    """
    Verify and decode a JWT token.

    Args:
        token: The JWT token to verify

    Returns:
        Optional[Dict[str, Any]]: The decoded token payload if valid, None otherwise
    """
    try:
        return jwt.decode(
            token,
            settings.SECRET_KEY,
            algorithms=[settings.ALGORITHM]
        )
    except JWTError:
        return None


def verify_access_token(token: str) -> Optional[Dict[str, Any]]:
    """Decode a token and make sure it is an access token."""
    payload = verify_token(token)
    if payload and payload.get("type") == "access" and payload.get("sub"):
        return payload
    return None


def generate_secure_token(nbytes: int = 32) -> str:
    """
    Generate an opaque random token.

    Used for refresh tokens, e-mail verification and password reset links.

    Returns:
        str: Hex encoded token (2 * nbytes characters)
    """
    return secrets.token_hex(nbytes)


def sign_payload(data: Dict[str, Any]) -> str:
    """
    HMAC-SHA256 signature of a JSON payload using the integrity salt.

    Keys are sorted so the same payload always yields the same signature.
    """
    message = json.dumps(data, sort_keys=True, default=str).encode("utf-8")
    return hmac.new(
        settings.INTEGRITY_SALT.encode("utf-8"),
        message,
        hashlib.sha256
    ).hexdigest()


def hash_identifier(value: str) -> str:
    """Short, non-reversible fingerprint of an identifier such as an IP address."""
    return hashlib.sha256(
        f"{settings.INTEGRITY_SALT}:{value}".encode("utf-8")
    ).hexdigest()[:16]


def check_password_strength(password: str) -> Dict[str, Any]:
    """
    Check password strength and return feedback.

    Args:
        password: The password to check

    Returns:
        Dict[str, Any]: Strength assessment and suggestions
    """
    issues = []
    strength = "weak"

    if len(password) < 8:
        issues.append("Password should be at least 8 characters long")

    if not any(c.isupper() for c in password):
        issues.append("Password should contain at least one uppercase letter")

    if not any(c.islower() for c in password):
        issues.append("Password should contain at least one lowercase letter")

    if not any(c.isdigit() for c in password):
        issues.append("Password should contain at least one number")

    if not any(c in SPECIAL_CHARACTERS for c in password):
        issues.append("Password should contain at least one special character")

    if len(issues) == 0:
        strength = "strong"
    elif len(issues) <= 2:
        strength = "medium"

    return {
        "strength": strength,
        "issues": issues,
        "valid": len(issues) == 0
    }
