"""
auth/tokens.py -- JWT and password hashing utilities.

Security design decisions:
  JWT: python-jose with HS256. Access and refresh tokens are signed with
       separate keys derived from SECRET_KEY (Settings.derive_key), so a
       refresh token can never be replayed as an access token and vice
       versa. Both carry the session id ("sid"); the verifier checks that
       session in the store on every request, which is what makes signout
       and revocation effective before the JWT expires. Decoding returns
       None on any failure -- the verifier turns that into "unauthenticated".

  Passwords: bcrypt directly (no passlib wrapper). The _DUMMY_HASH constant
       enables timing equalization in authenticate_user() so response time
       does not reveal whether an email exists.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import bcrypt
from jose import JWTError, jwt

from auth.models import Session, TokenPair, User
from auth.permissions import permissions_for
from core.config import get_settings

if TYPE_CHECKING:
    from auth.store import AuthStore

logger = logging.getLogger("qms.auth")

# ---------------------------------------------------------------------------
# Config -- read once at module load via the lru_cache singleton
# ---------------------------------------------------------------------------

_settings = get_settings()

_ALGORITHM = "HS256"
_ACCESS_KEY = _settings.derive_key("jwt-access").hex()
_REFRESH_KEY = _settings.derive_key("jwt-refresh").hex()
_KEYS = {"access": _ACCESS_KEY, "refresh": _REFRESH_KEY}

# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    bcrypt truncates input beyond 72 bytes; the API layer caps passwords at
    72 characters, and multi-byte input past 72 bytes fails verification.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Malformed stored hash or over-long input.
        return False


# Timing equalization dummy hash. Computed once at module load so the
# first login attempt is not measurably slower than subsequent ones.
_DUMMY_HASH: str = hash_password("qms_timing_dummy")


def authenticate_user(store: AuthStore, email: str, password: str) -> User | None:
    """Authenticate an email/password login with timing equalization.

    Always runs bcrypt whether or not the user exists:
    - Unknown email: bcrypt runs against _DUMMY_HASH (same cost as real check)
    - Wrong password: bcrypt runs against the real hash (same cost)

    Returns the User on success, None on any failure.
    """
    user = store.get_by_email(email)
    if user is None or user.hashed_password is None:
        verify_password(password, _DUMMY_HASH)
        return None
    if not verify_password(password, user.hashed_password):
        return None
    if not user.is_active:
        return None
    return user


# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


def _encode(user: User, session_id: str, token_type: str, expires_at: datetime) -> str:
    payload = {
        "sub": user.email,
        "user_id": user.id,
        "role": user.role,
        "sid": session_id,
        "type": token_type,
        "iss": _settings.jwt_issuer,
        "aud": _settings.jwt_audience,
        "iat": datetime.now(timezone.utc),
        "exp": expires_at,
    }
    if token_type == "access":
        payload["permissions"] = permissions_for(user.role)
    return jwt.encode(payload, _KEYS[token_type], algorithm=_ALGORITHM)


def create_token_pair(user: User, session: Session) -> TokenPair:
    """Mint an access + refresh token pair for an open session.

    The access token lives Settings.access_token_expire_seconds (default 15
    minutes) but never past the session; the refresh token lives exactly as
    long as the session.
    """
    now = datetime.now(timezone.utc)
    access_expires = min(now + timedelta(seconds=_settings.access_token_expire_seconds), session.expires_at)
    return TokenPair(
        access_token=_encode(user, session.id, "access", access_expires),
        refresh_token=_encode(user, session.id, "refresh", session.expires_at),
        access_expires_at=access_expires,
        refresh_expires_at=session.expires_at,
        session_id=session.id,
    )


def _decode(token: str, token_type: str) -> dict | None:
    try:
        payload = jwt.decode(
            token,
            _KEYS[token_type],
            algorithms=[_ALGORITHM],
            audience=_settings.jwt_audience,
            issuer=_settings.jwt_issuer,
        )
    except JWTError:
        return None
    if payload.get("type") != token_type:
        return None
    if not isinstance(payload.get("user_id"), int) or not isinstance(payload.get("sid"), str):
        return None
    return payload


def decode_access_token(token: str) -> dict | None:
    """Decode and verify an access JWT. Returns the payload dict or None on any failure."""
    return _decode(token, "access")


def decode_refresh_token(token: str) -> dict | None:
    """Decode and verify a refresh JWT. Returns the payload dict or None on any failure."""
    return _decode(token, "refresh")
