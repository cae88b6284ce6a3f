"""
auth/dependencies.py -- Request verification and FastAPI Depends() helpers.

Credentials are checked in priority order:
  1. Access token cookie  -- set by signin/refresh.
  2. Authorization: Bearer <access token> -- non-browser API clients.
  3. Refresh token cookie -- silent renewal when the access token expired.
     The result carries a fresh token pair for the same session; the route
     writes it back with set_auth_cookies().

Every path ends in the session store: a well-signed token whose session was
revoked (signout) or has expired is rejected.

verify_request() is the soft variant: it returns AuthResult and never raises
for missing or malformed credentials. Store failures do propagate -- they are
internal errors, not authentication outcomes.

get_auth() wraps it and raises Unauthenticated (401).
require_csrf() additionally checks X-CSRF-Token on state-changing methods.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from fastapi import Depends, Request

from auth.cookies import AuthCookieSet
from auth.csrf import CsrfTokenIssuer
from auth.errors import CsrfRejected, Unauthenticated
from auth.models import Session, TokenPair, User
from auth.permissions import permissions_for
from auth.store import AuthStore
from auth.tokens import create_token_pair, decode_access_token, decode_refresh_token

CSRF_HEADER = "X-CSRF-Token"
_UNSAFE_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})


@dataclass
class AuthResult:
    authenticated: bool
    user: User | None = None
    session: Session | None = None
    new_tokens: TokenPair | None = None
    permissions: list[str] = field(default_factory=list)


def get_auth_store(request: Request) -> AuthStore:
    return request.app.state.auth_store


def get_auth_cookies(request: Request) -> AuthCookieSet:
    return request.app.state.auth_cookies


def get_csrf_issuer(request: Request) -> CsrfTokenIssuer:
    return request.app.state.csrf_issuer


def resolve_session(store: AuthStore, payload: dict | None) -> tuple[User, Session] | None:
    """Map a decoded JWT payload onto a live session and active user."""
    if payload is None:
        return None
    session = store.get_active_session(payload["sid"])
    if session is None or session.user_id != payload["user_id"]:
        return None
    user = store.get_by_id(session.user_id)
    if user is None or not user.is_active:
        return None
    return user, session


def verify_request(request: Request) -> AuthResult:
    """Decide whether the request carries valid credentials.

    Safe on every request, including ones with no or garbage credentials.
    """
    store = get_auth_store(request)
    cookies = get_auth_cookies(request)

    # 1. Cookie (browser)
    token: str | None = request.cookies.get(cookies.get("access").name)

    # 2. Authorization: Bearer header (API clients)
    if not token:
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            token = auth_header[7:].strip()

    if token:
        resolved = resolve_session(store, decode_access_token(token))
        if resolved:
            user, session = resolved
            return AuthResult(True, user, session, permissions=permissions_for(user.role))

    # 3. Refresh cookie -- renew the access token within the same session
    refresh = request.cookies.get(cookies.get("refresh").name)
    if refresh:
        resolved = resolve_session(store, decode_refresh_token(refresh))
        if resolved:
            user, session = resolved
            return AuthResult(
                True,
                user,
                session,
                new_tokens=create_token_pair(user, session),
                permissions=permissions_for(user.role),
            )

    return AuthResult(False)


def session_id_from_request(request: Request) -> str | None:
    """Best-effort session id from either token cookie, for signout revocation.

    Does not check the store; a revoked or unknown id is fine here.
    """
    cookies = get_auth_cookies(request)
    access = request.cookies.get(cookies.get("access").name)
    payload = decode_access_token(access) if access else None
    if payload is None:
        refresh = request.cookies.get(cookies.get("refresh").name)
        payload = decode_refresh_token(refresh) if refresh else None
    return payload["sid"] if payload else None


def get_auth(request: Request) -> AuthResult:
    """Require authentication. Raises Unauthenticated if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(auth: AuthResult = Depends(get_auth)): ...
    """
    result = verify_request(request)
    if not result.authenticated:
        raise Unauthenticated()
    return result


def require_csrf(request: Request, auth: AuthResult = Depends(get_auth)) -> AuthResult:
    """Require a current CSRF token in X-CSRF-Token for unsafe methods.

    Safe methods pass through. The token must belong to the authenticated
    session and be its latest issuance.
    """
    if request.method in _UNSAFE_METHODS:
        issuer = get_csrf_issuer(request)
        if not issuer.validate(auth.session.id, request.headers.get(CSRF_HEADER)):
            raise CsrfRejected()
    return auth

