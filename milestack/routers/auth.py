"""
Authentication router for Milestack.

Handles signup, login with account lockout, refresh-token sessions,
e-mail verification and password reset endpoints.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional, Dict, Any
from fastapi import APIRouter, Depends, HTTPException, status, BackgroundTasks, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from email_validator import validate_email, EmailNotValidError
from sqlalchemy.orm import Session

from milestack.core.database import get_db
from milestack.core.security import (
    verify_password,
    get_password_hash,
    create_access_token,
    verify_access_token,
    generate_secure_token,
    check_password_strength
)
from milestack.core.config import settings
from milestack.models.user import User, UserSession
from milestack.models.admin import AuditLog, AuditAction, SystemSettings
from milestack.schemas.auth import (
    UserSignup,
    UserLogin,
    TokenRefresh,
    EmailRequest,
    PasswordReset,
    PasswordChange
)
from milestack.services.email import email_service
from milestack.services.rate_limit import check_rate_limit


logger = logging.getLogger(__name__)

router = APIRouter()

# Bearer scheme; missing headers are reported by get_current_user
bearer_scheme = HTTPBearer(auto_error=False)

GENERIC_EMAIL_MESSAGE = "If an account exists for this email, a message has been sent"


def client_ip(request: Request) -> Optional[str]:
    """Client address, preferring the first x-forwarded-for hop."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


def auth_error(status_code: int, code: str, message: str) -> HTTPException:
    return HTTPException(status_code=status_code, detail={"code": code, "message": message})


# Dependencies
def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: Session = Depends(get_db)
) -> User:
    """
    Get current authenticated user from the bearer access token.
    """
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization header missing or invalid",
            headers={"WWW-Authenticate": "Bearer"},
        )

    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid or expired token",
        headers={"WWW-Authenticate": "Bearer"},
    )

    payload = verify_access_token(credentials.credentials)
    if payload is None:
        raise credentials_exception

    try:
        user_id = int(payload["sub"])
    except (KeyError, TypeError, ValueError):
        raise credentials_exception

    user = db.query(User).filter(User.id == user_id).first()
    if user is None:
        raise credentials_exception

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Inactive user"
        )

    return user


def issue_tokens(db: Session, user: User, request: Request) -> Dict[str, Any]:
    """Create an access token and a stored refresh-token session."""
    access_token = create_access_token(
        subject=str(user.id),
        expires_delta=timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES),
        additional_claims={
            "email": user.email,
            "is_admin": user.is_admin,
        }
    )

    session = UserSession(
        user_id=user.id,
        refresh_token=generate_secure_token(),
        expires_at=datetime.utcnow() + timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS),
        user_agent=(request.headers.get("user-agent") or "")[:500] or None,
        ip_address=client_ip(request),
    )
    db.add(session)
    db.commit()

    return {
        "access_token": access_token,
        "refresh_token": session.refresh_token,
        "token_type": "bearer",
        "expires_in": settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        "user": user.to_dict(),
    }


def _require_strong_password(password: str) -> None:
    password_check = check_password_strength(password)
    if not password_check["valid"]:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "message": "Password does not meet requirements",
                "issues": password_check["issues"]
            }
        )


def _rate_limited() -> HTTPException:
    return auth_error(
        status.HTTP_429_TOO_MANY_REQUESTS,
        "RATE_LIMITED",
        "Too many requests. Please try again later."
    )


# Endpoints
@router.post("/signup", status_code=status.HTTP_201_CREATED)
async def signup(
    user_data: UserSignup,
    background_tasks: BackgroundTasks,
    request: Request,
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """
    Register a new student account.
    """
    if not (user_data.email and user_data.password and user_data.first_name and user_data.last_name):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Email, password, first name and last name are required"
        )

    if not user_data.terms_accepted or not user_data.privacy_accepted:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="You must accept the terms of service and privacy policy"
        )

    # Check if registration is enabled
    if not SystemSettings.get_value(db, "enable_registration", True):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User registration is currently disabled"
        )

    ip_address = client_ip(request) or "unknown"
    if not check_rate_limit(db, ip_address, "signup", settings.SIGNUP_RATE_LIMIT, settings.SIGNUP_RATE_WINDOW_MINUTES):
        raise _rate_limited()

    email = user_data.email.strip().lower()
    try:
        validate_email(email, check_deliverability=False)
    except EmailNotValidError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid email address"
        )

    _require_strong_password(user_data.password)

    if db.query(User).filter(User.email == email).first():
        raise auth_error(
            status.HTTP_409_CONFLICT,
            "EMAIL_ALREADY_REGISTERED",
            "An account with this email already exists"
        )

    new_user = User(
        email=email,
        hashed_password=get_password_hash(user_data.password),
        first_name=user_data.first_name.strip(),
        last_name=user_data.last_name.strip(),
        is_active=True,
        is_email_verified=False,
        email_verification_token=generate_secure_token(),
        email_verification_expires=datetime.utcnow() + timedelta(hours=settings.EMAIL_VERIFICATION_EXPIRE_HOURS),
        terms_accepted=True,
        privacy_accepted=True,
        ferpa_consent=user_data.ferpa_consent,
    )
    db.add(new_user)
    db.flush()

    db.add(AuditLog.log_action(
        action=AuditAction.SIGNUP,
        resource="user",
        user_id=new_user.id,
        resource_id=new_user.id,
        ip_address=ip_address,
        user_agent=request.headers.get("user-agent")
    ))
    db.commit()
    db.refresh(new_user)

    background_tasks.add_task(
        email_service.send_verification_email,
        new_user.email,
        new_user.first_name,
        new_user.email_verification_token
    )
    logger.info(f"New user registered: {new_user.id}")

    return {
        "message": "Account created. Please check your email to verify your account.",
        "user": new_user.to_dict()
    }


@router.post("/login")
async def login(
    credentials: UserLogin,
    request: Request,
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """
    Log in with e-mail and password.
    """
    if not credentials.email or not credentials.password:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Email and password are required"
        )

    ip_address = client_ip(request) or "unknown"
    if not check_rate_limit(db, ip_address, "login", settings.LOGIN_RATE_LIMIT, settings.LOGIN_RATE_WINDOW_MINUTES):
        raise _rate_limited()

    email = credentials.email.strip().lower()
    user = db.query(User).filter(User.email == email).first()

    if not user or not user.is_active:
        raise auth_error(status.HTTP_401_UNAUTHORIZED, "USER_NOT_FOUND", "No account found with this email")

    if user.is_locked:
        raise auth_error(
            status.HTTP_423_LOCKED,
            "ACCOUNT_LOCKED",
            "Account temporarily locked due to too many failed login attempts"
        )

    if not verify_password(credentials.password, user.hashed_password):
        user.register_failed_login(settings.MAX_LOGIN_ATTEMPTS, settings.ACCOUNT_LOCK_MINUTES)
        db.add(AuditLog.log_action(
            action=AuditAction.LOGIN_FAILED,
            resource="user",
            user_id=user.id,
            resource_id=user.id,
            ip_address=ip_address,
            user_agent=request.headers.get("user-agent"),
            success=False,
            error_message="Invalid password"
        ))
        if user.is_locked:
            db.add(AuditLog.log_action(action=AuditAction.ACCOUNT_LOCKED, resource="user", user_id=user.id,
                                       resource_id=user.id, ip_address=ip_address))
            logger.warning(f"Account {user.id} locked after {settings.MAX_LOGIN_ATTEMPTS} failed logins")
        db.commit()

        raise auth_error(status.HTTP_401_UNAUTHORIZED, "WRONG_PASSWORD", "Incorrect password")

    if not user.is_email_verified:
        raise auth_error(
            status.HTTP_403_FORBIDDEN,
            "EMAIL_NOT_VERIFIED",
            "Please verify your email before logging in"
        )

    user.register_successful_login()
    db.add(AuditLog.log_action(
        action=AuditAction.LOGIN,
        resource="user",
        user_id=user.id,
        resource_id=user.id,
        ip_address=ip_address,
        user_agent=request.headers.get("user-agent")
    ))

    return issue_tokens(db, user, request)


@router.post("/refresh")
async def refresh_token(
    token_data: TokenRefresh,
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """
    Exchange a refresh token for a new access token.
    """
    if not token_data.refresh_token:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Refresh token is required"
        )

    session = db.query(UserSession).filter(
        UserSession.refresh_token == token_data.refresh_token
    ).first()

    if not session or not session.is_valid or not session.user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired refresh token"
        )

    session.last_used_at = datetime.utcnow()
    db.commit()

    user = session.user
    access_token = create_access_token(
        subject=str(user.id),
        expires_delta=timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES),
        additional_claims={"email": user.email, "is_admin": user.is_admin}
    )

    return {
        "access_token": access_token,
        "token_type": "bearer",
        "expires_in": settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60
    }


@router.post("/logout")
async def logout(
    token_data: TokenRefresh,
    request: Request,
    db: Session = Depends(get_db)
) -> Dict[str, str]:
    """
    Revoke a refresh-token session.
    """
    if token_data.refresh_token:
        session = db.query(UserSession).filter(
            UserSession.refresh_token == token_data.refresh_token
        ).first()
        if session and session.is_active:
            session.is_active = False
            db.add(AuditLog.log_action(
                action=AuditAction.LOGOUT,
                resource="user",
                user_id=session.user_id,
                resource_id=session.user_id,
                ip_address=client_ip(request)
            ))
            db.commit()

    return {"message": "Successfully logged out"}


@router.get("/me")
async def get_current_user_info(
    current_user: User = Depends(get_current_user)
) -> Dict[str, Any]:
    """
    Get current user information.
    """
    return {"user": current_user.to_dict(include_sensitive=True)}


@router.get("/verify-email/{token}")
async def verify_email(
    token: str,
    request: Request,
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """
    Verify an e-mail address and log the user in.
    """
    user = db.query(User).filter(User.email_verification_token == token).first()
    if (
        not user
        or not user.email_verification_expires
        or user.email_verification_expires < datetime.utcnow()
    ):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid or expired verification token"
        )

    now = datetime.utcnow()
    user.is_email_verified = True
    user.email_verified_at = now
    user.email_verification_token = None
    user.email_verification_expires = None
    user.register_successful_login()
    db.add(AuditLog.log_action(
        action=AuditAction.EMAIL_VERIFIED,
        resource="user",
        user_id=user.id,
        resource_id=user.id,
        ip_address=client_ip(request)
    ))

    tokens = issue_tokens(db, user, request)
    return {"message": "Email verified successfully", **tokens}


@router.post("/forgot-password")
async def forgot_password(
    request_data: EmailRequest,
    background_tasks: BackgroundTasks,
    request: Request,
    db: Session = Depends(get_db)
) -> Dict[str, str]:
    """
    Request a password reset link.
    """
    if not request_data.email:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Email is required"
        )

    ip_address = client_ip(request) or "unknown"
    if not check_rate_limit(
        db, ip_address, "forgot_password",
        settings.FORGOT_PASSWORD_RATE_LIMIT, settings.FORGOT_PASSWORD_RATE_WINDOW_MINUTES
    ):
        raise _rate_limited()

    user = db.query(User).filter(User.email == request_data.email.strip().lower()).first()

    # Same answer whether or not the account exists
    if user and user.is_active:
        user.password_reset_token = generate_secure_token()
        user.password_reset_expires = datetime.utcnow() + timedelta(hours=settings.PASSWORD_RESET_EXPIRE_HOURS)
        db.add(AuditLog.log_action(
            action=AuditAction.PASSWORD_RESET_REQUESTED,
            resource="user",
            user_id=user.id,
            resource_id=user.id,
            ip_address=ip_address
        ))
        db.commit()

        background_tasks.add_task(
            email_service.send_password_reset_email,
            user.email,
            user.first_name,
            user.password_reset_token
        )

    return {"message": GENERIC_EMAIL_MESSAGE}


@router.post("/reset-password")
async def reset_password(
    reset_data: PasswordReset,
    request: Request,
    db: Session = Depends(get_db)
) -> Dict[str, str]:
    """
    Reset password using reset token.
    """
    if not reset_data.token or not reset_data.password:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Token and new password are required"
        )

    user = db.query(User).filter(User.password_reset_token == reset_data.token).first()
    if not user or not user.password_reset_expires or user.password_reset_expires < datetime.utcnow():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid or expired reset token"
        )

    _require_strong_password(reset_data.password)

    user.hashed_password = get_password_hash(reset_data.password)
    user.password_reset_token = None
    user.password_reset_expires = None
    user.login_attempts = 0
    user.locked_until = None

    # Sign out everywhere
    db.query(UserSession).filter(
        UserSession.user_id == user.id,
        UserSession.is_active.is_(True)
    ).update({UserSession.is_active: False}, synchronize_session=False)

    db.add(AuditLog.log_action(
        action=AuditAction.PASSWORD_RESET,
        resource="user",
        user_id=user.id,
        resource_id=user.id,
        ip_address=client_ip(request)
    ))
    db.commit()
    logger.info(f"Password reset for user {user.id}")

    return {"message": "Password reset successfully"}


@router.post("/resend-verification")
async def resend_verification(
    request_data: EmailRequest,
    background_tasks: BackgroundTasks,
    request: Request,
    db: Session = Depends(get_db)
) -> Dict[str, str]:
    """
    Send the verification e-mail again.
    """
    if not request_data.email:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Email is required"
        )

    email = request_data.email.strip().lower()
    if not check_rate_limit(
        db, email, "resend_verification",
        settings.RESEND_VERIFICATION_RATE_LIMIT, settings.RESEND_VERIFICATION_RATE_WINDOW_MINUTES
    ):
        raise _rate_limited()

    user = db.query(User).filter(User.email == email).first()
    if not user:
        return {"message": GENERIC_EMAIL_MESSAGE}

    if user.is_email_verified:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Email is already verified"
        )

    now = datetime.utcnow()
    if not user.email_verification_token or not user.email_verification_expires \
            or user.email_verification_expires < now:
        user.email_verification_token = generate_secure_token()
        user.email_verification_expires = now + timedelta(hours=settings.EMAIL_VERIFICATION_EXPIRE_HOURS)
        db.commit()

    background_tasks.add_task(
        email_service.send_verification_email,
        user.email,
        user.first_name,
        user.email_verification_token
    )

    return {"message": GENERIC_EMAIL_MESSAGE}


@router.get("/check-verification")
async def check_verification(
    email: str,
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """
    Report whether an account's e-mail is verified.
    """
    user = db.query(User).filter(User.email == email.strip().lower()).first()
    if not user:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found"
        )

    return {"email": user.email, "is_verified": user.is_email_verified}


@router.post("/change-password")
async def change_password(
    password_data: PasswordChange,
    request: Request,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Dict[str, str]:
    """
    Change password for authenticated user.
    """
    if not password_data.current_password or not password_data.new_password:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Current and new password are required"
        )

    if not verify_password(password_data.current_password, current_user.hashed_password):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Current password is incorrect"
        )

    _require_strong_password(password_data.new_password)

    current_user.hashed_password = get_password_hash(password_data.new_password)
    db.add(AuditLog.log_action(
        action=AuditAction.PASSWORD_CHANGED,
        resource="user",
        user_id=current_user.id,
        resource_id=current_user.id,
        ip_address=client_ip(request)
    ))
    db.commit()

    return {"message": "Password changed successfully"}
