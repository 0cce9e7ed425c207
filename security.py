"""
Admin session authentication.

Sessions are stateless: a compact HS256 token ({adminId, email, iat, exp}) in an
http-only `admin-token` cookie. Verification only needs HMAC-SHA256, so the same
routine serves the page guard and the API dependency.
"""
import base64
import hmac
import json
import logging
import time
from dataclasses import dataclass
from hashlib import sha256
from typing import Any, Dict, Optional, Tuple

from fastapi import Header, Request, Response
from fastapi.responses import RedirectResponse
from passlib.context import CryptContext
from pymongo.errors import PyMongoError

from config import Settings
from database import Database
from errors import AuthenticationError, InvalidCredentialsError, PersistenceError

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=10)

COOKIE_NAME = "admin-token"
SESSION_TTL = 60 * 60 * 24 * 7  # 7 days
LOGIN_PATH = "/auth/v1/login"
DASHBOARD_PATH = "/dashboard/default"

_HEADER = {"alg": "HS256", "typ": "JWT"}


@dataclass
class AdminSession:
    admin_id: str
    email: str
    issued_at: int
    expires_at: int


# -----------------------------
# Passwords
# -----------------------------

def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return pwd_context.verify(password, password_hash)
    except ValueError:
        # unrecognised or corrupt hash
        return False


# -----------------------------
# Tokens
# -----------------------------

def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode().rstrip("=")


def _b64decode(part: str) -> bytes:
    return base64.urlsafe_b64decode(part + "=" * (-len(part) % 4))


def _sign(signing_input: bytes, secret: str) -> bytes:
    return hmac.new(secret.encode(), signing_input, sha256).digest()


def issue_token(admin_id: str, email: str, secret: str, now: Optional[float] = None) -> str:
    iat = int(time.time() if now is None else now)
    payload = {"adminId": admin_id, "email": email, "iat": iat, "exp": iat + SESSION_TTL}
    header_b64 = _b64encode(json.dumps(_HEADER, separators=(",", ":")).encode())
    payload_b64 = _b64encode(json.dumps(payload, separators=(",", ":")).encode())
    signing_input = f"{header_b64}.{payload_b64}".encode()
    return f"{header_b64}.{payload_b64}.{_b64encode(_sign(signing_input, secret))}"


def verify_token(token: Optional[str], secret: Optional[str], now: Optional[float] = None) -> Optional[AdminSession]:
    """Return the session a token carries, or None if it is not acceptable.

    Never raises: malformed input, a foreign algorithm, a bad signature, a
    missing claim and expiry all come back as None.
    """
    if not token or not secret:
        return None
    try:
        header_b64, payload_b64, sig_b64 = token.split(".")
        header = json.loads(_b64decode(header_b64))
        if header.get("alg") != "HS256":
            raise ValueError("Unexpected algorithm")
        expected = _sign(f"{header_b64}.{payload_b64}".encode(), secret)
        if not hmac.compare_digest(_b64decode(sig_b64), expected):
            raise ValueError("Invalid signature")
        payload = json.loads(_b64decode(payload_b64))
        current = time.time() if now is None else now
        if current >= int(payload["exp"]):
            raise ValueError("Token expired")
        return AdminSession(
            admin_id=str(payload["adminId"]),
            email=str(payload["email"]),
            issued_at=int(payload["iat"]),
            expires_at=int(payload["exp"]),
        )
    except Exception as e:
        logger.debug("Token verification failed: %s", e)
        return None


# -----------------------------
# Login / logout
# -----------------------------

def login(db: Database, settings: Settings, email: str, password: str) -> Tuple[str, Dict[str, Any]]:
    settings.require("jwt_secret")
    email = email.strip().lower()
    try:
        admin = db["admins"].find_one({"email": email})
    except PyMongoError as e:
        logger.exception("Error looking up admin")
        raise PersistenceError("Login failed", details=str(e)) from e
    if not admin:
        # keep response time the same as a wrong password
        pwd_context.dummy_verify()
    if not admin or not verify_password(password, admin.get("password_hash", "")):
        logger.info("Failed admin login for %s", email)
        raise InvalidCredentialsError()
    admin_id = str(admin["_id"])
    token = issue_token(admin_id, admin["email"], settings.jwt_secret)
    logger.info("Admin %s logged in", admin["email"])
    return token, {"id": admin_id, "email": admin["email"]}


def cookie_secure(request: Request, settings: Settings) -> bool:
    return request.url.scheme == "https" or settings.app_env == "production"


def set_session_cookie(response: Response, token: str, secure: bool) -> None:
    response.set_cookie(
        COOKIE_NAME,
        token,
        max_age=SESSION_TTL,
        path="/",
        httponly=True,
        samesite="strict",
        secure=secure,
    )


def clear_session_cookie(response: Response) -> None:
    response.delete_cookie(COOKIE_NAME, path="/", httponly=True, samesite="strict")


# -----------------------------
# Guards
# -----------------------------

def get_current_admin(request: Request, authorization: Optional[str] = Header(default=None)) -> AdminSession:
    """FastAPI dependency for /api/admin/* handlers."""
    secret = request.app.state.settings.jwt_secret
    tokens = [request.cookies.get(COOKIE_NAME)]
    if authorization and authorization.lower().startswith("bearer "):
        tokens.append(authorization.split(" ", 1)[1].strip())
    tokens = [t for t in tokens if t]
    if not tokens:
        raise AuthenticationError("Unauthorized")
    # a stale cookie does not shadow a valid bearer token
    for token in tokens:
        session = verify_token(token, secret)
        if session is not None:
            return session
    raise AuthenticationError("Invalid token")


def skip_guard(path: str) -> bool:
    return path.startswith("/api/") or path.startswith("/static/") or "." in path


def guard_response(path: str, token: Optional[str], secret: Optional[str]) -> Optional[Response]:
    """Redirect for a page request, or None to let it through."""
    if skip_guard(path):
        return None
    if path.startswith("/dashboard"):
        if not token:
            return RedirectResponse(LOGIN_PATH)
        if verify_token(token, secret) is None:
            response = RedirectResponse(LOGIN_PATH)
            clear_session_cookie(response)
            return response
    if path.startswith(LOGIN_PATH) and token and verify_token(token, secret):
        return RedirectResponse(DASHBOARD_PATH)
    return None
