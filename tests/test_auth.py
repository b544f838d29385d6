"""Tests for authentication endpoints and flows."""

from datetime import datetime, timedelta
from unittest.mock import patch

from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from app.dependencies import get_user_store
from app.errors import StoreFailure
from app.models.user import User
from app.stores.base import utcnow


def set_cookie_header(response) -> str:
    return response.headers.get("set-cookie", "")


class TestRegistration:
    """Tests for user registration."""

    def test_register_api_success(self, client: TestClient):
        """Register a new user via API."""
        response = client.post(
            "/api/register",
            json={"name": "New User", "email": "New@Example.com", "password": "password123"},
        )
        assert response.status_code == 200
        data = response.json()
        assert data["user"]["email"] == "new@example.com"
        assert data["user"]["name"] == "New User"
        assert set(data["user"]) == {"id", "name", "email"}
        assert data["token"]

    def test_register_sets_session_cookie(self, client: TestClient):
        """Session cookie is HTTP-only, same-site, path-scoped, with a 7 day max-age."""
        response = client.post(
            "/api/register",
            json={"name": "New User", "email": "new@example.com", "password": "password123"},
        )
        cookie = set_cookie_header(response)
        assert cookie.startswith("auth_token=")
        assert "HttpOnly" in cookie
        assert "samesite=lax" in cookie.lower()
        assert "Path=/" in cookie
        assert "Max-Age=604800" in cookie
        assert "Secure" not in cookie

    def test_register_api_duplicate_email(self, client: TestClient, test_user: dict):
        """Reject duplicate email registration."""
        response = client.post(
            "/api/register",
            json={"name": "Another User", "email": "TEST@example.com", "password": "password123"},
        )
        assert response.status_code == 400
        assert response.json()["detail"] == "Email already registered"

    def test_register_with_lone_surrogate_password(self, client: TestClient):
        response = client.post(
            "/api/register",
            content='{"name": "Ann", "email": "ann@x.com", "password": "\\udfff"}',
            headers={"Content-Type": "application/json"},
        )
        assert response.status_code == 400
        assert response.json()["detail"] == "Missing fields"

    def test_register_api_missing_fields(self, client: TestClient):
        response = client.post("/api/register", json={"email": "x@example.com"})
        assert response.status_code == 400
        assert response.json()["detail"] == "Missing fields"

    def test_register_web_success(self, client: TestClient):
        """Register via web form redirects to dashboard."""
        response = client.post(
            "/register",
            data={"name": "Web User", "email": "web@example.com", "password": "password123"},
            follow_redirects=False,
        )
        assert response.status_code == 302
        assert response.headers["location"] == "/dashboard"
        assert "auth_token" in response.cookies

    def test_register_web_duplicate(self, client: TestClient, test_user: dict):
        """Web registration with duplicate email shows error."""
        response = client.post(
            "/register",
            data={"name": "Dup User", "email": "test@example.com", "password": "password123"},
        )
        assert response.status_code == 200
        assert "Email already registered" in response.text


class TestLogin:
    """Tests for user login."""

    def test_login_api_success(self, client: TestClient, test_user: dict):
        """Login via API with valid credentials."""
        response = client.post(
            "/api/login",
            json={"email": "test@example.com", "password": "password123"},
        )
        assert response.status_code == 200
        data = response.json()
        assert data["user"] == {"id": test_user["user_id"], "name": "Test User", "email": "test@example.com"}
        assert "auth_token" in response.cookies

    def test_login_token_claims(self, client: TestClient, test_user: dict):
        """The issued token carries sub, email, name, iat and exp."""
        from main import app

        token = client.post(
            "/api/login",
            json={"email": "test@example.com", "password": "password123"},
        ).json()["token"]
        claims = app.state.token_codec.verify(token)
        assert claims["sub"] == test_user["user_id"]
        assert claims["email"] == "test@example.com"
        assert claims["name"] == "Test User"
        assert claims["exp"] - claims["iat"] == 604800

    def test_wrong_password_and_unknown_email_look_alike(self, client: TestClient, test_user: dict):
        """Both failures give the same status and message."""
        wrong = client.post("/api/login", json={"email": "test@example.com", "password": "wrongpassword"})
        unknown = client.post("/api/login", json={"email": "nobody@example.com", "password": "password123"})
        assert wrong.status_code == unknown.status_code == 401
        assert wrong.json() == unknown.json() == {"detail": "Invalid email or password"}
        assert "auth_token" not in wrong.cookies

    def test_login_with_lone_surrogate_password(self, client: TestClient, test_user: dict):
        """A JSON escape for an unpaired surrogate is just a wrong password."""
        response = client.post(
            "/api/login",
            content='{"email": "test@example.com", "password": "\\ud800"}',
            headers={"Content-Type": "application/json"},
        )
        assert response.status_code == 401
        assert response.json() == {"detail": "Invalid email or password"}

    def test_login_api_missing_credentials(self, client: TestClient):
        response = client.post("/api/login", json={"email": "test@example.com"})
        assert response.status_code == 400
        assert response.json()["detail"] == "Missing credentials"

    def test_login_case_insensitive(self, client: TestClient, test_user: dict):
        """Login works regardless of email case."""
        response = client.post(
            "/api/login",
            json={"email": "TEST@EXAMPLE.COM", "password": "password123"},
        )
        assert response.status_code == 200

    def test_login_web_success(self, client: TestClient, test_user: dict):
        """Web login redirects to dashboard and sets cookie."""
        response = client.post(
            "/login",
            data={"email": "test@example.com", "password": "password123"},
            follow_redirects=False,
        )
        assert response.status_code == 302
        assert response.headers["location"] == "/dashboard"
        assert "auth_token" in response.cookies

    def test_login_web_failure(self, client: TestClient, test_user: dict):
        """Web login with wrong password shows error."""
        response = client.post(
            "/login",
            data={"email": "test@example.com", "password": "wrong"},
        )
        assert response.status_code == 200
        assert "Invalid email or password" in response.text

    def test_login_page_redirects_authenticated(self, client: TestClient, test_user: dict):
        """Login page redirects already-authenticated users to dashboard."""
        client.cookies.set("auth_token", test_user["token"])
        response = client.get("/login", follow_redirects=False)
        assert response.status_code == 302
        assert response.headers["location"] == "/dashboard"

    def test_register_page_redirects_authenticated(self, client: TestClient, test_user: dict):
        client.cookies.set("auth_token", test_user["token"])
        response = client.get("/register", follow_redirects=False)
        assert response.status_code == 302
        assert response.headers["location"] == "/dashboard"


class TestSession:
    """Tests for session endpoints."""

    def test_me_returns_claims(self, client: TestClient, test_user: dict):
        client.cookies.set("auth_token", test_user["token"])
        response = client.get("/api/me")
        assert response.status_code == 200
        data = response.json()
        assert data["user_id"] == test_user["user_id"]
        assert data["name"] == "Test User"
        assert data["expires_at"] - data["issued_at"] == 604800

    def test_api_logout_clears_cookie(self, client: TestClient, test_user: dict):
        client.cookies.set("auth_token", test_user["token"])
        response = client.post("/api/logout")
        assert response.status_code == 200
        cookie = set_cookie_header(response)
        assert cookie.startswith("auth_token=")
        assert "Max-Age=0" in cookie

    def test_web_logout_clears_cookie(self, client: TestClient, test_user: dict):
        """Logout clears auth cookie and redirects to the welcome page."""
        client.cookies.set("auth_token", test_user["token"])
        response = client.get("/logout", follow_redirects=False)
        assert response.status_code == 302
        assert response.headers["location"] == "/welcome"
        assert "Max-Age=0" in set_cookie_header(response)


class TestForgotPassword:
    """Tests for forgot password flow."""

    def test_forgot_password_existing_email(self, client: TestClient, test_user: dict, db_session: Session):
        """Request reset for existing email generates and returns a token."""
        response = client.post("/api/forgot", json={"email": "test@example.com"})
        assert response.status_code == 200
        data = response.json()
        assert data["ok"] is True

        user = db_session.query(User).filter(User.email == "test@example.com").first()
        db_session.refresh(user)
        assert user.reset_token == data["token"]
        assert user.reset_token_expires_at is not None

    def test_forgot_password_expiry_is_utc(self, client: TestClient, test_user: dict):
        """The returned expiry carries its zone and lies about fifteen minutes ahead."""
        exp = client.post("/api/forgot", json={"email": "test@example.com"}).json()["exp"]
        expires_at = datetime.fromisoformat(exp.replace("Z", "+00:00"))
        assert expires_at.utcoffset() == timedelta(0)
        remaining = expires_at.replace(tzinfo=None) - utcnow()
        assert timedelta(minutes=14) < remaining <= timedelta(minutes=15)

    def test_forgot_password_nonexistent_email(self, client: TestClient):
        """Request reset for non-existent email answers ok without a token."""
        response = client.post("/api/forgot", json={"email": "nobody@example.com"})
        assert response.status_code == 200
        assert response.json() == {"ok": True}

    def test_forgot_password_missing_email(self, client: TestClient):
        response = client.post("/api/forgot", json={})
        assert response.status_code == 400
        assert response.json()["detail"] == "Email required"

    def test_forgot_token_hidden_when_disabled(self, client: TestClient, test_user: dict):
        from main import app

        settings = app.state.settings
        original = settings.RESET_TOKEN_IN_RESPONSE
        settings.RESET_TOKEN_IN_RESPONSE = False
        try:
            response = client.post("/api/forgot", json={"email": "test@example.com"})
        finally:
            settings.RESET_TOKEN_IN_RESPONSE = original
        assert response.json() == {"ok": True}

    def test_forgot_password_logs_reset_link(self, client: TestClient, test_user: dict):
        """Reset link is logged for an existing user."""
        with patch("app.routers.auth.logger") as mock_logger:
            client.post("/api/forgot", json={"email": "test@example.com"})
            calls = [str(c) for c in mock_logger.info.call_args_list]
            assert any("PASSWORD RESET" in c for c in calls)

    def test_forgot_password_web_page_renders(self, client: TestClient):
        response = client.get("/forgot-password")
        assert response.status_code == 200
        assert "Forgot your password?" in response.text

    def test_forgot_password_web_submit(self, client: TestClient, test_user: dict):
        """Web form shows the same message whether or not the account exists."""
        known = client.post("/forgot-password", data={"email": "test@example.com"})
        unknown = client.post("/forgot-password", data={"email": "nobody@example.com"})
        assert known.status_code == unknown.status_code == 200
        assert "reset link has been generated" in known.text
        assert "reset link has been generated" in unknown.text

    def test_forgot_password_web_logs_reset_link(self, client: TestClient, test_user: dict):
        with patch("main.logger") as mock_logger:
            client.post("/forgot-password", data={"email": "test@example.com"})
            calls = [str(c) for c in mock_logger.info.call_args_list]
            assert any("PASSWORD RESET" in c for c in calls)


class TestResetPassword:
    """Tests for password reset flow."""

    def request_token(self, client: TestClient) -> str:
        return client.post("/api/forgot", json={"email": "test@example.com"}).json()["token"]

    def test_scenario_reset_with_valid_token(self, client: TestClient, test_user: dict):
        """Reset replaces the password: old one fails, new one works."""
        token = self.request_token(client)

        response = client.post("/api/reset", json={"token": token, "password": "newpassword456"})
        assert response.status_code == 200
        assert response.json() == {"ok": True}

        old = client.post("/api/login", json={"email": "test@example.com", "password": "password123"})
        assert old.status_code == 401
        new = client.post("/api/login", json={"email": "test@example.com", "password": "newpassword456"})
        assert new.status_code == 200

    def test_reset_with_expired_token(self, client: TestClient, test_user: dict, db_session: Session):
        """Expired and unknown tokens get the same answer."""
        token = self.request_token(client)

        user = db_session.query(User).filter(User.email == "test@example.com").first()
        user.reset_token_expires_at = utcnow() - timedelta(minutes=1)
        db_session.commit()

        expired = client.post("/api/reset", json={"token": token, "password": "newpassword456"})
        bogus = client.post("/api/reset", json={"token": "totally-bogus-token", "password": "newpassword456"})
        assert expired.status_code == bogus.status_code == 400
        assert expired.json() == bogus.json() == {"detail": "Invalid or expired token"}

    def test_reset_missing_fields(self, client: TestClient):
        response = client.post("/api/reset", json={"token": "abc"})
        assert response.status_code == 400
        assert response.json()["detail"] == "Token and password required"

    def test_reset_clears_token(self, client: TestClient, test_user: dict):
        """After reset, the same token cannot be reused."""
        token = self.request_token(client)

        response = client.post("/api/reset", json={"token": token, "password": "newpassword456"})
        assert response.status_code == 200

        response = client.post("/api/reset", json={"token": token, "password": "anotherpassword"})
        assert response.status_code == 400

    def test_reset_password_web_page_renders(self, client: TestClient, test_user: dict):
        token = self.request_token(client)
        response = client.get(f"/reset-password?token={token}")
        assert response.status_code == 200
        assert "Set a new password" in response.text
        assert token in response.text

    def test_reset_password_web_page_missing_token(self, client: TestClient):
        response = client.get("/reset-password")
        assert response.status_code == 200
        assert "Missing reset token" in response.text

    def test_reset_password_web_submit(self, client: TestClient, test_user: dict):
        """Web form reset redirects to login."""
        token = self.request_token(client)
        response = client.post(
            "/reset-password",
            data={"token": token, "password": "newpassword456"},
            follow_redirects=False,
        )
        assert response.status_code == 302
        assert response.headers["location"] == "/login?reset=1"

    def test_reset_password_web_bad_token(self, client: TestClient):
        response = client.post("/reset-password", data={"token": "nope", "password": "newpassword456"})
        assert response.status_code == 200
        assert "Invalid or expired token" in response.text


class TestScenario:
    """End to end: register, browse, reset, log back in."""

    def test_full_flow(self, client: TestClient):
        register = client.post(
            "/api/register",
            json={"name": "Ann", "email": "ann@x.com", "password": "pw123"},
        )
        assert register.status_code == 200
        assert client.get("/dashboard").status_code == 200

        client.post("/api/logout")
        client.cookies.clear()
        assert client.get("/dashboard", follow_redirects=False).status_code == 302

        token = client.post("/api/forgot", json={"email": "ann@x.com"}).json()["token"]
        assert client.post("/api/reset", json={"token": token, "password": "newpw"}).status_code == 200
        assert client.post("/api/login", json={"email": "ann@x.com", "password": "pw123"}).status_code == 401
        assert client.post("/api/login", json={"email": "ann@x.com", "password": "newpw"}).status_code == 200
        assert "Welcome back, Ann" in client.get("/dashboard").text


class TestHardening:
    """Tests for the HTTP hardening layers."""

    def test_health_check(self, client: TestClient):
        response = client.get("/api/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_security_headers(self, client: TestClient):
        response = client.get("/welcome")
        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["X-Frame-Options"] == "DENY"
        assert "default-src 'self'" in response.headers["Content-Security-Policy"]

    def test_security_headers_on_gate_redirect(self, client: TestClient):
        response = client.get("/dashboard", follow_redirects=False)
        assert response.headers["X-Frame-Options"] == "DENY"

    def test_oversized_body_rejected(self, client: TestClient):
        response = client.post("/api/login", content=b"x" * (65 * 1024), headers={"content-type": "application/json"})
        assert response.status_code == 413

    def test_store_failure_is_opaque_503(self, client: TestClient):
        """Persistence errors are surfaced without details."""
        from main import app

        class FailingStore:
            def __getattr__(self, name):
                def fail(*args, **kwargs):
                    raise StoreFailure("connection refused to db-host:5432")

                return fail

        app.dependency_overrides[get_user_store] = lambda: FailingStore()
        response = client.post("/api/login", json={"email": "test@example.com", "password": "password123"})
        assert response.status_code == 503
        assert response.json() == {"detail": "Service temporarily unavailable"}

    def test_audit_log_for_auth_posts(self, client: TestClient):
        with patch("main.logger") as mock_logger:
            client.post("/api/login", json={"email": "nobody@example.com", "password": "x"})
            calls = [str(c) for c in mock_logger.info.call_args_list]
            assert any("AUDIT" in c and "/api/login" in c for c in calls)
