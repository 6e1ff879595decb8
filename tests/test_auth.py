"""Tests for the /auth endpoints."""

from datetime import datetime, timedelta

from milestack.models.user import User
from milestack.models.admin import AuditLog

from conftest import PASSWORD


SIGNUP = {
    "email": "New.Student@milestack.dev",
    "password": PASSWORD,
    "first_name": "New",
    "last_name": "Student",
    "terms_accepted": True,
    "privacy_accepted": True,
}


class TestSignup:
    """Tests for POST /auth/signup."""

    def test_signup_creates_unverified_user(self, client, db):
        """Signup stores a lower-cased, unverified account."""
        response = client.post("/api/v1/auth/signup", json=SIGNUP)
        assert response.status_code == 201
        assert response.json()["user"]["email"] == "new.student@milestack.dev"

        user = db.query(User).filter(User.email == "new.student@milestack.dev").first()
        assert user is not None
        assert user.is_email_verified is False
        assert user.email_verification_token

    def test_signup_missing_fields(self, client):
        """Missing names are rejected with 400."""
        response = client.post("/api/v1/auth/signup", json={"email": "a@milestack.dev", "password": PASSWORD})
        assert response.status_code == 400

    def test_signup_requires_terms(self, client):
        """Terms and privacy policy must be accepted."""
        response = client.post("/api/v1/auth/signup", json={**SIGNUP, "terms_accepted": False})
        assert response.status_code == 400

    def test_signup_weak_password(self, client):
        """Weak passwords list their issues."""
        response = client.post("/api/v1/auth/signup", json={**SIGNUP, "password": "short"})
        assert response.status_code == 400
        assert response.json()["detail"]["issues"]

    def test_signup_duplicate_email(self, client, user):
        """An existing e-mail gives a 409 with an error code."""
        response = client.post("/api/v1/auth/signup", json={**SIGNUP, "email": user.email})
        assert response.status_code == 409
        assert response.json()["detail"]["code"] == "EMAIL_ALREADY_REGISTERED"

    def test_signup_rate_limited(self, client):
        """The fourth signup from one address within a minute is refused."""
        for index in range(3):
            client.post("/api/v1/auth/signup", json={**SIGNUP, "email": f"s{index}@milestack.dev"})
        response = client.post("/api/v1/auth/signup", json={**SIGNUP, "email": "s9@milestack.dev"})
        assert response.status_code == 429
        assert response.json()["detail"]["code"] == "RATE_LIMITED"


class TestLogin:
    """Tests for POST /auth/login."""

    def test_login_returns_tokens(self, client, user, db):
        """Valid credentials issue access and refresh tokens."""
        response = client.post("/api/v1/auth/login", json={"email": user.email, "password": PASSWORD})
        assert response.status_code == 200
        data = response.json()
        assert data["access_token"]
        assert data["refresh_token"]
        assert data["token_type"] == "bearer"
        assert db.query(AuditLog).filter(AuditLog.action == "login").count() == 1

    def test_login_unknown_email(self, client):
        """Unknown accounts get USER_NOT_FOUND."""
        response = client.post("/api/v1/auth/login", json={"email": "nobody@milestack.dev", "password": PASSWORD})
        assert response.status_code == 401
        assert response.json()["detail"]["code"] == "USER_NOT_FOUND"

    def test_login_wrong_password(self, client, user):
        """Wrong passwords get WRONG_PASSWORD."""
        response = client.post("/api/v1/auth/login", json={"email": user.email, "password": "Wrong123!"})
        assert response.status_code == 401
        assert response.json()["detail"]["code"] == "WRONG_PASSWORD"

    def test_login_unverified(self, client, db):
        """Unverified accounts cannot log in."""
        client.post("/api/v1/auth/signup", json=SIGNUP)
        response = client.post("/api/v1/auth/login", json={"email": SIGNUP["email"], "password": PASSWORD})
        assert response.status_code == 403
        assert response.json()["detail"]["code"] == "EMAIL_NOT_VERIFIED"

    def test_account_locks_after_failed_logins(self, client, user, db):
        """Five wrong passwords lock the account."""
        for index in range(5):
            client.post(
                "/api/v1/auth/login",
                json={"email": user.email, "password": "Wrong123!"},
                headers={"x-forwarded-for": f"10.0.0.{index}"},
            )

        response = client.post(
            "/api/v1/auth/login",
            json={"email": user.email, "password": PASSWORD},
            headers={"x-forwarded-for": "10.0.1.1"},
        )
        assert response.status_code == 423
        assert response.json()["detail"]["code"] == "ACCOUNT_LOCKED"

    def test_expired_lock_starts_a_fresh_count(self, client, user, db):
        """After a lock expires one wrong password does not lock again."""
        for index in range(5):
            client.post(
                "/api/v1/auth/login",
                json={"email": user.email, "password": "Wrong123!"},
                headers={"x-forwarded-for": f"10.0.2.{index}"},
            )

        db.expire_all()
        account = db.get(User, user.id)
        assert account.login_attempts == 0
        account.locked_until = datetime.utcnow() - timedelta(minutes=1)
        db.commit()

        response = client.post(
            "/api/v1/auth/login",
            json={"email": user.email, "password": "Wrong123!"},
            headers={"x-forwarded-for": "10.0.3.1"},
        )
        assert response.status_code == 401
        assert response.json()["detail"]["code"] == "WRONG_PASSWORD"

        response = client.post(
            "/api/v1/auth/login",
            json={"email": user.email, "password": PASSWORD},
            headers={"x-forwarded-for": "10.0.3.2"},
        )
        assert response.status_code == 200


class TestSessions:
    """Tests for refresh, logout and /me."""

    def login(self, client, user):
        return client.post("/api/v1/auth/login", json={"email": user.email, "password": PASSWORD}).json()

    def test_refresh_issues_access_token(self, client, user):
        """A stored refresh token returns a new access token."""
        tokens = self.login(client, user)
        response = client.post("/api/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
        assert response.status_code == 200
        assert response.json()["access_token"]

    def test_logout_revokes_refresh_token(self, client, user):
        """A logged out refresh token can no longer be used."""
        tokens = self.login(client, user)
        client.post("/api/v1/auth/logout", json={"refresh_token": tokens["refresh_token"]})
        response = client.post("/api/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
        assert response.status_code == 401

    def test_me(self, client, user, auth_headers):
        """/me returns the caller."""
        response = client.get("/api/v1/auth/me", headers=auth_headers)
        assert response.status_code == 200
        assert response.json()["user"]["email"] == user.email

    def test_me_without_token(self, client):
        """Missing bearer tokens are rejected."""
        assert client.get("/api/v1/auth/me").status_code == 401

    def test_me_with_garbage_token(self, client):
        """Invalid tokens are rejected."""
        response = client.get("/api/v1/auth/me", headers={"Authorization": "Bearer not-a-token"})
        assert response.status_code == 401


class TestVerificationAndPasswords:
    """Tests for e-mail verification and password changes."""

    def test_resend_verification(self, client, user):
        """Unknown addresses get the generic answer; verified ones are refused."""
        response = client.post("/api/v1/auth/resend-verification", json={"email": "nobody@milestack.dev"})
        assert response.status_code == 200
        assert response.json()["message"]

        response = client.post("/api/v1/auth/resend-verification", json={"email": user.email})
        assert response.status_code == 400
        assert response.json()["detail"] == "Email is already verified"

    def test_verify_email_logs_in(self, client, db):
        """Following the verification link verifies and returns tokens."""
        client.post("/api/v1/auth/signup", json=SIGNUP)
        token = db.query(User).filter(User.email == "new.student@milestack.dev").first().email_verification_token

        response = client.get(f"/api/v1/auth/verify-email/{token}")
        assert response.status_code == 200
        assert response.json()["access_token"]

        response = client.get("/api/v1/auth/check-verification", params={"email": SIGNUP["email"]})
        assert response.json()["is_verified"] is True

    def test_verify_email_bad_token(self, client):
        """Unknown verification tokens are rejected."""
        assert client.get("/api/v1/auth/verify-email/bogus").status_code == 400

    def test_forgot_password_is_generic(self, client):
        """Forgot-password never reveals whether an account exists."""
        response = client.post("/api/v1/auth/forgot-password", json={"email": "nobody@milestack.dev"})
        assert response.status_code == 200
        assert "If an account exists" in response.json()["message"]

    def test_reset_password_flow(self, client, user, db):
        """A reset token sets a new password."""
        client.post("/api/v1/auth/forgot-password", json={"email": user.email})
        db.refresh(user)
        assert user.password_reset_token

        response = client.post(
            "/api/v1/auth/reset-password",
            json={"token": user.password_reset_token, "password": "NewPassword1!"},
        )
        assert response.status_code == 200

        response = client.post("/api/v1/auth/login", json={"email": user.email, "password": "NewPassword1!"})
        assert response.status_code == 200

    def test_change_password_wrong_current(self, client, auth_headers):
        """The current password must match."""
        response = client.post(
            "/api/v1/auth/change-password",
            headers=auth_headers,
            json={"current_password": "Wrong123!", "new_password": "NewPassword1!"},
        )
        assert response.status_code == 400

    def test_change_password(self, client, auth_headers):
        """A valid change is accepted."""
        response = client.post(
            "/api/v1/auth/change-password",
            headers=auth_headers,
            json={"current_password": PASSWORD, "new_password": "NewPassword1!"},
        )
        assert response.status_code == 200
