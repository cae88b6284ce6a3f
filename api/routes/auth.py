"""
api/routes/auth.py -- Session, CSRF and signout REST endpoints.

Routes:
  GET      /api/auth/csrf      -- mint a CSRF token for the current session
  GET|POST /api/auth/signout   -- clear every auth cookie; never requires auth
  POST     /api/auth/signin    -- email/password login; sets cookies
  POST     /api/auth/refresh   -- new token pair from the refresh cookie
  GET      /api/auth/me        -- current user identity and permissions
  GET      /api/auth/profile   -- current user profile
  PUT      /api/auth/profile   -- update profile (requires X-CSRF-Token)

Security:
  POST /signin is rate-limited per IP (LOGIN_RATE_LIMIT, default 5/minute).
  authenticate_user() provides timing equalization -- use it, never inline.
  Cache-Control: no-store on every response that carries a credential.
  Failures surface only a generic message; the detail goes to the log.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import (
    CsrfTokenResponse,
    MeResponse,
    MessageResponse,
    ProfileData,
    ProfileResponse,
    ProfileUpdate,
    RefreshResponse,
    SigninRequest,
    SigninResponse,
    UserInfo,
)
from auth.cookies import clear_auth_cookies, set_auth_cookies, set_csrf_cookie
from auth.dependencies import (
    AuthResult,
    get_auth,
    get_auth_cookies,
    get_auth_store,
    get_csrf_issuer,
    require_csrf,
    resolve_session,
    session_id_from_request,
    verify_request,
)
from auth.errors import InternalFailure, Unauthenticated
from auth.tokens import authenticate_user, create_token_pair, decode_refresh_token
from core.config import get_settings

logger = logging.getLogger("qms.api.auth")

_settings = get_settings()

# Auth policy:
# - GET      /api/auth/csrf:     requires a session (checked in-handler, see below)
# - GET|POST /api/auth/signout:  public -- a user must always be able to clear their own cookies
# - POST     /api/auth/signin:   public, rate-limited
# - POST     /api/auth/refresh:  refresh cookie only
# - GET      /api/auth/me:       requires auth (get_auth)
# - GET      /api/auth/profile:  requires auth (get_auth)
# - PUT      /api/auth/profile:  requires auth + CSRF (require_csrf)
router = APIRouter()


def _no_store(resp: JSONResponse) -> JSONResponse:
    resp.headers["Cache-Control"] = "no-store"
    resp.headers["X-Content-Type-Options"] = "nosniff"
    return resp


def _carry_refreshed_tokens(request: Request, resp: JSONResponse, auth: AuthResult) -> JSONResponse:
    """Write the token pair minted by a silent refresh, if there was one."""
    if auth.new_tokens is not None:
        set_auth_cookies(resp, auth.new_tokens, get_auth_cookies(request))
        _no_store(resp)
    return resp


# ---------------------------------------------------------------------------
# CSRF
# ---------------------------------------------------------------------------


@router.get(
    "/auth/csrf",
    response_model=CsrfTokenResponse,
    responses={401: {"description": "No valid session"}, 500: {"description": "Issuance failed"}},
)
def issue_csrf_token(request: Request) -> JSONResponse:
    """Mint a CSRF token for the caller's session.

    Verification runs inside the handler (not as a dependency) so that a
    failure while verifying is reported the same way as a failure while
    issuing: logged in full, 500 with a generic message.

    The new token supersedes any earlier one for this session. It is
    returned in the body and mirrored into the readable CSRF cookie.
    """
    try:
        auth = verify_request(request)
        if not auth.authenticated:
            raise Unauthenticated()
        token = get_csrf_issuer(request).issue(auth.session)
        resp = JSONResponse(content=CsrfTokenResponse(csrf_token=token.value).model_dump(by_alias=True))
        set_csrf_cookie(resp, token, get_auth_cookies(request))
        _carry_refreshed_tokens(request, resp, auth)
        return _no_store(resp)
    except Unauthenticated:
        raise
    except Exception as exc:
        logger.exception("CSRF token issuance failed")
        raise InternalFailure("Error generating CSRF token") from exc


# ---------------------------------------------------------------------------
# Signout
# ---------------------------------------------------------------------------


@router.api_route("/auth/signout", methods=["GET", "POST"], response_model=MessageResponse)
def signout(request: Request) -> JSONResponse:
    """Clear every auth cookie. GET is accepted so a plain link can log out.

    No authentication gate: an expired, revoked or absent session still
    gets a 200 and a full set of expired cookies. If the request names a
    session, it is revoked as well so replayed cookies stop working.
    """
    try:
        session_id = session_id_from_request(request)
        if session_id is not None and get_auth_store(request).revoke_session(session_id):
            logger.info("Session %s... revoked on signout", session_id[:8])
    except Exception:
        # Cookies are still cleared below.
        logger.exception("Session revocation failed on signout")

    try:
        resp = JSONResponse(content=MessageResponse(message="Logged out successfully").model_dump())
        clear_auth_cookies(resp, get_auth_cookies(request))
        return _no_store(resp)
    except Exception as exc:
        logger.exception("Signout failed")
        raise InternalFailure("Error during logout") from exc


# ---------------------------------------------------------------------------
# Signin / refresh
# ---------------------------------------------------------------------------


# The router must register the rate-limited wrapper, so @limiter.limit sits below @router.post.
@router.post("/auth/signin", response_model=SigninResponse)
@limiter.limit(_settings.login_rate_limit)
def signin(request: Request, body: SigninRequest) -> JSONResponse:
    """Authenticate with email and password; open a session and set cookies.

    Wrong email and wrong password produce the same 401 so the response does
    not reveal which accounts exist.
    """
    store = get_auth_store(request)
    user = authenticate_user(store, body.email, body.password)
    if user is None:
        return _no_store(
            JSONResponse(status_code=401, content={"success": False, "message": "Invalid email or password"})
        )

    try:
        session = store.create_session(user.id, _settings.refresh_token_expire_seconds)
        tokens = create_token_pair(user, session)
        csrf = get_csrf_issuer(request).issue(session)
        store.update_last_login(user.id)
    except Exception as exc:
        logger.exception("Signin failed for user id %s", user.id)
        raise InternalFailure("Error during sign in") from exc

    logger.info("User id %s signed in (session %s...)", user.id, session.id[:8])
    resp = JSONResponse(
        content=SigninResponse(
            user=UserInfo.from_user(user),
            csrf_token=csrf.value,
            expires_at=tokens.access_expires_at.isoformat(),
        ).model_dump(by_alias=True)
    )
    cookies = get_auth_cookies(request)
    set_auth_cookies(resp, tokens, cookies)
    set_csrf_cookie(resp, csrf, cookies)
    return _no_store(resp)


@router.post("/auth/refresh", response_model=RefreshResponse)
def refresh(request: Request) -> JSONResponse:
    """Exchange the refresh cookie for a new token pair and CSRF token.

    The session stays the same; its absolute expiry does not move.
    """
    cookies = get_auth_cookies(request)
    raw = request.cookies.get(cookies.get("refresh").name)
    if not raw:
        raise Unauthenticated("No refresh token provided")
    store = get_auth_store(request)
    resolved = resolve_session(store, decode_refresh_token(raw))
    if resolved is None:
        raise Unauthenticated("Invalid or expired refresh token")
    user, session = resolved

    try:
        tokens = create_token_pair(user, session)
        csrf = get_csrf_issuer(request).issue(session)
    except Unauthenticated:
        raise
    except Exception as exc:
        logger.exception("Token refresh failed for session %s...", session.id[:8])
        raise InternalFailure("Error refreshing token") from exc

    resp = JSONResponse(
        content=RefreshResponse(
            csrf_token=csrf.value,
            expires_at=tokens.access_expires_at.isoformat(),
        ).model_dump(by_alias=True)
    )
    set_auth_cookies(resp, tokens, cookies)
    set_csrf_cookie(resp, csrf, cookies)
    return _no_store(resp)


# ---------------------------------------------------------------------------
# Current user
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=MeResponse)
def me(request: Request, auth: AuthResult = Depends(get_auth)) -> JSONResponse:
    """Return identity information for the currently authenticated user."""
    resp = JSONResponse(content=MeResponse(user=UserInfo.from_user(auth.user)).model_dump(by_alias=True))
    return _carry_refreshed_tokens(request, resp, auth)


@router.get("/auth/profile", response_model=ProfileResponse)
def get_profile(request: Request, auth: AuthResult = Depends(get_auth)) -> JSONResponse:
    resp = JSONResponse(content=ProfileResponse(data=ProfileData.from_user(auth.user)).model_dump(by_alias=True))
    return _carry_refreshed_tokens(request, resp, auth)


@router.put("/auth/profile", response_model=MessageResponse)
def update_profile(request: Request, body: ProfileUpdate, auth: AuthResult = Depends(require_csrf)) -> JSONResponse:
    """Update the caller's own profile. State-changing, so X-CSRF-Token is required."""
    updates = body.model_dump(exclude_none=True)
    if not updates:
        raise HTTPException(status_code=400, detail="No fields to update")
    get_auth_store(request).update_user(auth.user.id, **updates)
    resp = JSONResponse(content=MessageResponse(message="Profile updated successfully").model_dump())
    return _carry_refreshed_tokens(request, resp, auth)
