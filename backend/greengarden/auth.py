import base64
import hashlib
import hmac
import logging
import os
import secrets
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from threading import Lock
from typing import Callable, Dict, Optional

from fastapi import Cookie, Depends, Header

logger = logging.getLogger(__name__)

SESSION_COOKIE = "admin_session"
DEFAULT_SESSION_TTL_MINUTES = 480


def _env_positive_int(name: str, default: int) -> int:
    raw = os.getenv(name, str(default))
    try:
        value = int(raw)
    except (TypeError, ValueError):
        return default
    return value if value > 0 else default


SESSION_TTL_MINUTES = _env_positive_int("ADMIN_SESSION_TTL_MINUTES", DEFAULT_SESSION_TTL_MINUTES)


class AuthError(Exception):
    error_kind = "Unauthorized"

    def __init__(self, reason: str = "Authentication required") -> None:
        super().__init__(reason)
        self.reason = reason


class Unauthorized(AuthError):
    pass


class SessionExpired(AuthError):
    error_kind = "SessionExpired"

    def __init__(self, reason: str = "Session expired") -> None:
        super().__init__(reason)


@dataclass(frozen=True)
class AdminSession:
    username: str
    session_id: str
    expires_at: float
    token: str

    @property
    def expires_at_iso(self) -> str:
        return datetime.fromtimestamp(self.expires_at, tz=timezone.utc).isoformat()


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")


def _b64urldecode(value: str) -> bytes:
    padding = "=" * ((4 - len(value) % 4) % 4)
    return base64.urlsafe_b64decode((value + padding).encode("utf-8"))


class SessionGuard:
    """Issues and checks admin session tokens.

    A token is ``payload.signature`` where the payload carries the username, a
    random session id and the expiry timestamp, signed with HMAC-SHA256.
    Logged-out session ids are remembered until they would have expired.
    """

    def __init__(
        self,
        username: str,
        password: str,
        secret: str,
        ttl_minutes: int = DEFAULT_SESSION_TTL_MINUTES,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._username = username
        self._password = password
        self._secret = secret.encode("utf-8")
        self.ttl_seconds = ttl_minutes * 60
        self.clock = clock
        self._lock = Lock()
        self._revoked: Dict[str, float] = {}

    def _sign(self, payload: bytes) -> bytes:
        return hmac.new(self._secret, payload, hashlib.sha256).digest()

    def authenticate(self, username: str, password: str) -> AdminSession:
        user_ok = hmac.compare_digest(username.strip().encode("utf-8"), self._username.encode("utf-8"))
        password_ok = hmac.compare_digest(password.encode("utf-8"), self._password.encode("utf-8"))
        if not (user_ok and password_ok):
            logger.warning("Rejected admin login for %r", username)
            raise Unauthorized("Invalid credentials")
        session_id = secrets.token_hex(8)
        expires_at = int(self.clock() + self.ttl_seconds)
        payload = f"{self._username}|{session_id}|{expires_at}".encode("utf-8")
        token = f"{_b64url(payload)}.{_b64url(self._sign(payload))}"
        logger.info("Admin session %s started", session_id)
        return AdminSession(username=self._username, session_id=session_id, expires_at=expires_at, token=token)

    def authorize(self, token: Optional[str], operation: str = "admin") -> AdminSession:
        if not token:
            raise Unauthorized()
        try:
            payload_part, sig_part = token.split(".", 1)
            payload = _b64urldecode(payload_part)
            sent_sig = _b64urldecode(sig_part)
            username, session_id, expiry_ts = payload.decode("utf-8").split("|", 2)
            expires_at = int(expiry_ts)
        except ValueError:
            logger.info("Denied %s: malformed token", operation)
            raise Unauthorized("Invalid session token") from None
        if not hmac.compare_digest(sent_sig, self._sign(payload)):
            logger.info("Denied %s: bad token signature", operation)
            raise Unauthorized("Invalid session token")
        if self.clock() > expires_at:
            raise SessionExpired()
        with self._lock:
            if session_id in self._revoked:
                raise Unauthorized("Session ended")
        return AdminSession(username=username, session_id=session_id, expires_at=expires_at, token=token)

    def revoke(self, token: str) -> None:
        session = self.authorize(token, operation="logout")
        now = self.clock()
        with self._lock:
            self._revoked = {sid: exp for sid, exp in self._revoked.items() if exp >= now}
            self._revoked[session.session_id] = session.expires_at
        logger.info("Admin session %s ended", session.session_id)


session_guard = SessionGuard(
    username=os.getenv("ADMIN_USERNAME", "admin"),
    password=os.getenv("ADMIN_PASSWORD", "admin123"),
    secret=os.getenv("ADMIN_SESSION_SECRET", "dev-insecure-secret-change-me"),
    ttl_minutes=SESSION_TTL_MINUTES,
)


def get_session_guard() -> SessionGuard:
    return session_guard


def parse_bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    parts = authorization.split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    return parts[1].strip() or None


def request_token(
    authorization: Optional[str] = Header(default=None),
    admin_session: Optional[str] = Cookie(default=None),
) -> Optional[str]:
    return parse_bearer_token(authorization) or admin_session or None


def require_admin(
    token: Optional[str] = Depends(request_token),
    guard: SessionGuard = Depends(get_session_guard),
) -> AdminSession:
    return guard.authorize(token)
