"""
asgi.py -- Application assembly for the QMS portal auth API.

The ASGI server imports this module, never api/main.py directly, so later
routers (pages, other APIs) can be mounted here without api/ importing them.

Run with:  uvicorn asgi:app --reload
"""

from api.main import app

__all__ = ["app"]
