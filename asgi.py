"""
asgi.py -- ASGI entry point for the admin portal auth API.

Run with:  uvicorn asgi:app --reload

api/main.py owns the app and its lifespan; this module only exposes it under
the conventional name so deployment tooling does not depend on package layout.
"""

from api.main import app

__all__ = ["app"]
