"""
Authentication request schemas.

Request fields are optional so handlers can answer missing values with
a 400 and a readable message.
"""

from typing import Optional
from pydantic import BaseModel


class UserSignup(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    terms_accepted: bool = False
    privacy_accepted: bool = False
    ferpa_consent: bool = False


class UserLogin(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


class TokenRefresh(BaseModel):
    refresh_token: Optional[str] = None


class EmailRequest(BaseModel):
    """Body for forgot-password and resend-verification."""
    email: Optional[str] = None


class PasswordReset(BaseModel):
    token: Optional[str] = None
    password: Optional[str] = None


class PasswordChange(BaseModel):
    current_password: Optional[str] = None
    new_password: Optional[str] = None
