import base64
import json
import time

import pytest
from fastapi.testclient import TestClient

import security
from config import Settings
from errors import ConfigurationError, InvalidCredentialsError
from main import create_app
from tests.conftest import ADMIN_EMAIL, ADMIN_PASSWORD, SECRET


def _b64(data: dict) -> str:
    return base64.urlsafe_b64encode(json.dumps(data).encode()).decode().rstrip("=")


# -----------------------------
# Tokens
# -----------------------------

def test_token_round_trip():
    token = security.issue_token("abc123", ADMIN_EMAIL, SECRET)
    session = security.verify_token(token, SECRET)
    assert session.admin_id == "abc123"
    assert session.email == ADMIN_EMAIL
    assert session.expires_at - session.issued_at == 7 * 24 * 60 * 60


def test_token_is_compact_hs256():
    token = security.issue_token("abc123", ADMIN_EMAIL, SECRET)
    header_b64, payload_b64, _ = token.split(".")
    header = json.loads(base64.urlsafe_b64decode(header_b64 + "=" * (-len(header_b64) % 4)))
    payload = json.loads(base64.urlsafe_b64decode(payload_b64 + "=" * (-len(payload_b64) % 4)))
    assert header == {"alg": "HS256", "typ": "JWT"}
    assert set(payload) == {"adminId", "email", "iat", "exp"}


def test_expired_token_returns_none():
    issued = time.time() - security.SESSION_TTL - 1
    token = security.issue_token("abc123", ADMIN_EMAIL, SECRET, now=issued)
    assert security.verify_token(token, SECRET) is None


def test_token_still_valid_just_before_expiry():
    issued = time.time() - security.SESSION_TTL + 60
    token = security.issue_token("abc123", ADMIN_EMAIL, SECRET, now=issued)
    assert security.verify_token(token, SECRET) is not None


@pytest.mark.parametrize(
    "token",
    [
        None,
        "",
        "garbage",
        "a.b.c",
        "a.b",
        "....",
    ],
)
def test_malformed_tokens_return_none(token):
    assert security.verify_token(token, SECRET) is None


def test_wrong_secret_and_tampering():
    token = security.issue_token("abc123", ADMIN_EMAIL, SECRET)
    assert security.verify_token(token, "other-secret") is None

    header_b64, _, sig_b64 = token.split(".")
    forged = _b64({"adminId": "evil", "email": ADMIN_EMAIL, "iat": 0, "exp": int(time.time()) + 3600})
    assert security.verify_token(f"{header_b64}.{forged}.{sig_b64}", SECRET) is None


def test_alg_none_is_rejected():
    header = _b64({"alg": "none", "typ": "JWT"})
    payload = _b64({"adminId": "x", "email": "x", "iat": 0, "exp": int(time.time()) + 3600})
    assert security.verify_token(f"{header}.{payload}.", SECRET) is None


def test_missing_secret_never_verifies():
    token = security.issue_token("abc123", ADMIN_EMAIL, SECRET)
    assert security.verify_token(token, None) is None


# -----------------------------
# Login
# -----------------------------

def test_login_issues_verifiable_token(db, settings, admin):
    token, info = security.login(db, settings, ADMIN_EMAIL, ADMIN_PASSWORD)
    session = security.verify_token(token, SECRET)
    assert session.admin_id == str(admin["_id"]) == info["id"]
    assert session.email == ADMIN_EMAIL == info["email"]


def test_wrong_password_and_unknown_email_are_indistinguishable(db, settings, admin):
    with pytest.raises(InvalidCredentialsError) as wrong_password:
        security.login(db, settings, ADMIN_EMAIL, "nope")
    with pytest.raises(InvalidCredentialsError) as unknown_email:
        security.login(db, settings, "someone@else.test", ADMIN_PASSWORD)
    assert wrong_password.value.message == unknown_email.value.message == "Invalid credentials"


def test_login_without_secret_is_a_configuration_error(db, admin):
    settings = Settings(database_url="mongodb://x", jwt_secret=None)
    with pytest.raises(ConfigurationError):
        security.login(db, settings, ADMIN_EMAIL, ADMIN_PASSWORD)


def test_password_hash_uses_bcrypt():
    hashed = security.hash_password("s3cret-pass")
    assert hashed.startswith("$2b$10$")
    assert security.verify_password("s3cret-pass", hashed)
    assert not security.verify_password("other", hashed)
    assert not security.verify_password("s3cret-pass", "not-a-hash")


def test_login_endpoint_sets_cookie(client, admin):
    resp = client.post("/api/admin/login", json={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD})
    assert resp.status_code == 200
    assert resp.json() == {"success": True, "admin": {"id": str(admin["_id"]), "email": ADMIN_EMAIL}}
    cookie = resp.headers["set-cookie"]
    assert cookie.startswith("admin-token=")
    assert "HttpOnly" in cookie
    assert "samesite=strict" in cookie.lower()
    assert "Max-Age=604800" in cookie
    assert "Path=/" in cookie
    assert "Secure" not in cookie


def test_login_cookie_is_secure_in_production(settings, db, admin):
    prod = settings.model_copy(update={"app_env": "production"})
    client = TestClient(create_app(prod, db))
    resp = client.post("/api/admin/login", json={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD})
    assert "Secure" in resp.headers["set-cookie"]


def test_login_endpoint_failures_look_the_same(client, admin):
    wrong = client.post("/api/admin/login", json={"email": ADMIN_EMAIL, "password": "nope"})
    unknown = client.post("/api/admin/login", json={"email": "ghost@x.test", "password": ADMIN_PASSWORD})
    assert wrong.status_code == unknown.status_code == 401
    assert wrong.json() == unknown.json() == {"error": "Invalid credentials"}
    assert "set-cookie" not in wrong.headers


def test_login_endpoint_requires_both_fields(client):
    resp = client.post("/api/admin/login", json={"email": ADMIN_EMAIL})
    assert resp.status_code == 400
    assert resp.json() == {"error": "Email and password are required"}


def test_logout_clears_cookie(logged_in):
    resp = logged_in.post("/api/admin/logout")
    assert resp.status_code == 200
    assert resp.json() == {"success": True}
    assert "admin-token=" in resp.headers["set-cookie"]
    assert "Max-Age=0" in resp.headers["set-cookie"]
    assert security.COOKIE_NAME not in logged_in.cookies


# -----------------------------
# Route guard
# -----------------------------

def test_dashboard_without_cookie_redirects_to_login(client):
    resp = client.get("/dashboard/default")
    assert resp.status_code == 307
    assert resp.headers["location"] == "/auth/v1/login"


def test_dashboard_with_invalid_cookie_redirects_and_clears(client):
    client.cookies.set(security.COOKIE_NAME, "garbage")
    resp = client.get("/dashboard/default/orders")
    assert resp.status_code == 307
    assert resp.headers["location"] == "/auth/v1/login"
    assert "admin-token=" in resp.headers["set-cookie"]
    assert "Max-Age=0" in resp.headers["set-cookie"]


def test_dashboard_with_expired_cookie_redirects(client, admin):
    issued = time.time() - security.SESSION_TTL - 1
    client.cookies.set(security.COOKIE_NAME, security.issue_token(str(admin["_id"]), ADMIN_EMAIL, SECRET, now=issued))
    resp = client.get("/dashboard/default")
    assert resp.status_code == 307
    assert resp.headers["location"] == "/auth/v1/login"


def test_dashboard_with_session(logged_in):
    resp = logged_in.get("/dashboard/default")
    assert resp.status_code == 200
    assert "/dashboard/default/orders" in resp.text
    assert logged_in.get("/dashboard/default/products").status_code == 200


def test_login_page_redirects_when_logged_in(logged_in):
    resp = logged_in.get("/auth/v1/login")
    assert resp.status_code == 307
    assert resp.headers["location"] == "/dashboard/default"


def test_login_page_is_served_when_logged_out(client):
    resp = client.get("/auth/v1/login")
    assert resp.status_code == 200
    assert "<form" in resp.text


def test_logout_then_dashboard_redirects(logged_in):
    logged_in.post("/api/admin/logout")
    resp = logged_in.get("/dashboard/default")
    assert resp.status_code == 307
    assert resp.headers["location"] == "/auth/v1/login"


@pytest.mark.parametrize(
    "path, skipped",
    [
        ("/api/admin/orders", True),
        ("/static/app.js", True),
        ("/dashboard/logo.png", True),
        ("/favicon.ico", True),
        ("/dashboard/default", False),
        ("/auth/v1/login", False),
    ],
)
def test_skip_guard(path, skipped):
    assert security.skip_guard(path) is skipped


def test_guard_ignores_paths_with_a_dot(client):
    resp = client.get("/dashboard/logo.png")
    assert resp.status_code == 404


# -----------------------------
# Admin API dependency
# -----------------------------

def test_admin_api_requires_session(client):
    resp = client.get("/api/admin/orders")
    assert resp.status_code == 401
    assert resp.json() == {"error": "Unauthorized"}


def test_admin_api_rejects_bad_token(client):
    client.cookies.set(security.COOKIE_NAME, "garbage")
    resp = client.get("/api/admin/orders")
    assert resp.status_code == 401
    assert resp.json() == {"error": "Invalid token"}


def test_admin_api_accepts_bearer_header(client, admin):
    token = security.issue_token(str(admin["_id"]), ADMIN_EMAIL, SECRET)
    resp = client.get("/api/admin/orders", headers={"Authorization": f"Bearer {token}"})
    assert resp.status_code == 200
    assert resp.json() == {"orders": []}


def test_admin_api_falls_back_to_bearer_when_cookie_is_stale(client, admin):
    client.cookies.set(security.COOKIE_NAME, "garbage")
    token = security.issue_token(str(admin["_id"]), ADMIN_EMAIL, SECRET)
    resp = client.get("/api/admin/orders", headers={"Authorization": f"Bearer {token}"})
    assert resp.status_code == 200
    assert resp.json() == {"orders": []}


def test_admin_api_rejects_bad_cookie_and_bad_bearer(client):
    client.cookies.set(security.COOKIE_NAME, "garbage")
    resp = client.get("/api/admin/orders", headers={"Authorization": "Bearer also-garbage"})
    assert resp.status_code == 401
    assert resp.json() == {"error": "Invalid token"}
