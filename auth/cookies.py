"""
auth/cookies.py -- The auth cookie registry and the helpers that set and clear it.

AuthCookieSet is the one place that knows which cookies carry credentials
and under which attributes. It is built once from Settings at startup and
injected through app.state, so adding a credential cookie means adding one
CookieSpec in build_auth_cookie_set().

Attribute parity: a browser only replaces a cookie when name, path and domain
match, and some clients also compare Secure/SameSite. set_* and
clear_auth_cookies() therefore read every attribute from the same registry.

clear_auth_cookies() is all-or-nothing from the client's point of view:
  1. drop any Set-Cookie already queued on the response for a registry name
     (e.g. a token refresh earlier in the same request);
  2. queue an empty, already-expired replacement for every registry name.
Running it again yields the exact same header list, and it does not matter
whether the request carried any of the cookies.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Literal

from starlette.responses import Response

if TYPE_CHECKING:
    from auth.csrf import CsrfToken
    from auth.models import TokenPair
    from core.config import Settings

CookieRole = Literal["access", "refresh", "csrf", "session", "legacy"]

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass(frozen=True)
class CookieSpec:
    name: str
    role: CookieRole
    httponly: bool


@dataclass(frozen=True)
class AuthCookieSet:
    """Every cookie that carries auth state, plus their shared attributes."""

    specs: tuple[CookieSpec, ...]
    path: str = "/"
    domain: str | None = None
    secure: bool = False
    samesite: Literal["strict", "lax", "none"] = "strict"

    def __post_init__(self) -> None:
        names = [s.name for s in self.specs]
        if len(names) != len(set(names)):
            raise ValueError(f"Duplicate cookie names in auth cookie set: {names}")

    def __iter__(self) -> Iterator[CookieSpec]:
        return iter(self.specs)

    @property
    def names(self) -> frozenset[str]:
        return frozenset(s.name for s in self.specs)

    def get(self, role: CookieRole) -> CookieSpec:
        """Return the first spec with the given role. Raises KeyError if absent."""
        for spec in self.specs:
            if spec.role == role:
                return spec
        raise KeyError(role)


def build_auth_cookie_set(settings: Settings) -> AuthCookieSet:
    specs = [
        CookieSpec(settings.access_cookie_name, "access", httponly=True),
        CookieSpec(settings.refresh_cookie_name, "refresh", httponly=True),
        # Readable by the front end: it echoes the CSRF value in X-CSRF-Token
        # and checks the marker to decide whether to show the signin page.
        CookieSpec(settings.csrf_cookie_name, "csrf", httponly=False),
        CookieSpec(settings.session_marker_cookie_name, "session", httponly=False),
    ]
    specs.extend(CookieSpec(name, "legacy", httponly=False) for name in settings.legacy_cookie_names)
    return AuthCookieSet(
        specs=tuple(specs),
        path=settings.cookie_path,
        domain=settings.cookie_domain,
        secure=settings.secure_cookies,
        samesite=settings.cookie_samesite,
    )


# ---------------------------------------------------------------------------
# Writers
# ---------------------------------------------------------------------------


def _set(response: Response, cookies: AuthCookieSet, spec: CookieSpec, value: str, max_age: int) -> None:
    response.set_cookie(
        spec.name,
        value=value,
        max_age=max_age,
        path=cookies.path,
        domain=cookies.domain,
        secure=cookies.secure,
        httponly=spec.httponly,
        samesite=cookies.samesite,
    )


def _seconds_until(moment: datetime) -> int:
    return max(0, int((moment - datetime.now(timezone.utc)).total_seconds()))


def set_auth_cookies(response: Response, tokens: TokenPair, cookies: AuthCookieSet) -> Response:
    """Write the access/refresh token cookies and the session marker."""
    access_age = _seconds_until(tokens.access_expires_at)
    _set(response, cookies, cookies.get("access"), tokens.access_token, access_age)
    _set(response, cookies, cookies.get("refresh"), tokens.refresh_token, _seconds_until(tokens.refresh_expires_at))
    _set(response, cookies, cookies.get("session"), "true", access_age)
    return response


def set_csrf_cookie(response: Response, token: CsrfToken, cookies: AuthCookieSet) -> Response:
    _set(response, cookies, cookies.get("csrf"), token.value, token.expires_at - token.issued_at)
    return response


# ---------------------------------------------------------------------------
# Clearer
# ---------------------------------------------------------------------------


def _cookie_name(header_value: bytes) -> str:
    return header_value.split(b"=", 1)[0].decode("latin-1").strip()


def clear_auth_cookies(response: Response, cookies: AuthCookieSet) -> Response:
    """Expire every cookie in the registry on a response that has not been sent.

    Mutates only Set-Cookie headers of this response. Idempotent.
    """
    names = cookies.names
    response.raw_headers[:] = [
        (key, value)
        for key, value in response.raw_headers
        if not (key == b"set-cookie" and _cookie_name(value) in names)
    ]
    for spec in cookies:
        response.set_cookie(
            spec.name,
            value="",
            max_age=0,
            expires=_EPOCH,
            path=cookies.path,
            domain=cookies.domain,
            secure=cookies.secure,
            httponly=spec.httponly,
            samesite=cookies.samesite,
        )
    return response
