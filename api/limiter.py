"""
api/limiter.py -- Shared slowapi rate limiter instance.

Imported by api/main.py (mounted as middleware) and api/routes/auth.py
(per-route limits via @limiter.limit()). A single shared instance keeps one
in-memory counter store; separate instances would never trip.

Keyed by client address. Behind a reverse proxy, run uvicorn with
--proxy-headers so request.client reflects X-Forwarded-For.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")
