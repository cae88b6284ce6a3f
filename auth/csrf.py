"""
auth/csrf.py -- CSRF token issuance and validation bound to a session.

Token format (before base64url):  <nonce>.<issued_at>.<signature>

  nonce      secrets.token_urlsafe(32) -- 256 bits, so tokens for different
             sessions never collide in practice.
  issued_at  Unix seconds.
  signature  HMAC-SHA256(key, "<session_id>.<nonce>.<issued_at>"), hex.

The session id is part of the signed message but not of the token, so a
token lifted from one session fails the signature check in any other.

A token is valid while all of these hold:
  - the signature matches the presenting session;
  - it is younger than max_age_seconds (default 3600);
  - its nonce is the latest one the store recorded for the session.

The last rule makes every issuance supersede the previous one. The store
records the nonce with a single UPDATE, so concurrent issuances for the same
session settle as last-write-wins.

Key lifecycle: the key is handed in once at startup (api/main.py lifespan)
and never changes on an issuer. rotated() builds a new issuer with a new key;
tokens signed by the old key stop validating once the new issuer is swapped in.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import logging
import secrets
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from auth.errors import Unauthenticated

if TYPE_CHECKING:
    from auth.models import Session
    from auth.store import AuthStore

logger = logging.getLogger("qms.auth.csrf")

NONCE_BYTES = 32
# Tolerated clock drift for issued_at values slightly in the future.
_MAX_SKEW_SECONDS = 60
# Upper bound on an encoded token; anything longer is rejected unparsed.
_MAX_TOKEN_LENGTH = 512


@dataclass(frozen=True)
class CsrfToken:
    value: str
    session_id: str
    issued_at: int
    expires_at: int


class CsrfTokenIssuer:
    """Mints and checks CSRF tokens for sessions held in an AuthStore."""

    __slots__ = ("_key", "_store", "_max_age", "_clock")

    def __init__(
        self,
        key: bytes,
        store: AuthStore,
        max_age_seconds: int = 3600,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if len(key) < 32:
            raise ValueError("CSRF key must be at least 32 bytes.")
        if max_age_seconds <= 0:
            raise ValueError("max_age_seconds must be positive.")
        self._key = bytes(key)
        self._store = store
        self._max_age = max_age_seconds
        self._clock = clock

    @property
    def max_age_seconds(self) -> int:
        return self._max_age

    def rotated(self, new_key: bytes) -> CsrfTokenIssuer:
        """Return an issuer identical to this one but signing with new_key."""
        return CsrfTokenIssuer(new_key, self._store, self._max_age, self._clock)

    def _sign(self, session_id: str, nonce: str, issued_at: int) -> str:
        message = f"{session_id}.{nonce}.{issued_at}".encode()
        return hmac.new(self._key, message, hashlib.sha256).hexdigest()

    def issue(self, session: Session | None) -> CsrfToken:
        """Mint a token for an active session and make it the session's only valid one.

        Raises Unauthenticated when session is None, expired or revoked. The
        HTTP layer checks authentication first; this is the backstop.
        """
        now = self._clock()
        if session is None or not session.is_active(datetime.fromtimestamp(now, tz=timezone.utc)):
            raise Unauthenticated()

        nonce = secrets.token_urlsafe(NONCE_BYTES)
        issued_at = int(now)
        raw = f"{nonce}.{issued_at}.{self._sign(session.id, nonce, issued_at)}"
        value = base64.urlsafe_b64encode(raw.encode()).decode().rstrip("=")

        if not self._store.set_csrf_nonce(session.id, nonce, issued_at):
            # Session was revoked between verification and issuance.
            raise Unauthenticated()
        logger.debug("Issued CSRF token for session %s...", session.id[:8])
        return CsrfToken(
            value=value,
            session_id=session.id,
            issued_at=issued_at,
            expires_at=issued_at + self._max_age,
        )

    def validate(self, session_id: str | None, token: str | None) -> bool:
        """Return True if token is the current, unexpired token of session_id.

        Never raises for malformed input; every parse failure is just False.
        """
        if not session_id or not token or len(token) > _MAX_TOKEN_LENGTH:
            return False
        try:
            padded = token + "=" * (-len(token) % 4)
            raw = base64.urlsafe_b64decode(padded.encode("ascii")).decode("ascii")
        except (binascii.Error, ValueError):
            return False

        parts = raw.split(".")
        if len(parts) != 3:
            return False
        nonce, issued_str, signature = parts
        if not nonce or not issued_str.isdigit():
            return False
        issued_at = int(issued_str)

        now = self._clock()
        if now - issued_at > self._max_age or issued_at - now > _MAX_SKEW_SECONDS:
            return False

        expected = self._sign(session_id, nonce, issued_at)
        if not hmac.compare_digest(signature, expected):
            return False

        current = self._store.get_csrf_nonce(session_id)
        if current is None:
            return False
        return hmac.compare_digest(current, nonce)
