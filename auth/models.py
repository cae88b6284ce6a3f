"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class. Stores and routes do the work; these classes own the
shape plus the occasional one-line predicate.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime


@dataclass
class User:
    """An account that can sign in to the portal.

    email doubles as the login name. Profile fields are optional and edited
    through PUT /api/auth/profile.
    """

    email: str
    role: str  # "Super Admin", "Admin", "Project Manager", ...
    id: int | None = None
    name: str | None = None
    hashed_password: str | None = None
    job_title: str | None = None
    department: str | None = None
    phone: str | None = None
    timezone: str = "UTC"
    locale: str = "en"
    created_at: str | None = None
    last_login: str | None = None
    is_active: bool = True


@dataclass
class Session:
    """A server-side login session.

    The session id travels inside the access and refresh JWTs (claim "sid").
    csrf_nonce holds the nonce of the most recently issued CSRF token; any
    older token for the same session is superseded.
    """

    id: str
    user_id: int
    created_at: datetime
    expires_at: datetime
    revoked: bool = False
    csrf_nonce: str | None = None
    csrf_issued_at: int | None = None

    def is_active(self, now: datetime) -> bool:
        return not self.revoked and now < self.expires_at


@dataclass
class TokenPair:
    """Access + refresh JWTs minted together for one session."""

    access_token: str
    refresh_token: str
    access_expires_at: datetime
    refresh_expires_at: datetime
    session_id: str = field(default="")
