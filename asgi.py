"""
asgi.py -- ASGI entry point for TeamGate.

Kept separate from api/main.py so process managers point at one stable
import path regardless of how the app module is organized.

Run with:  uvicorn asgi:app --reload
"""

from api.main import app

__all__ = ["app"]
