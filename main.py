"""
Container entrypoint for the docfetch service.
Re-exports the FastAPI app from server.py so it can be started as
``uvicorn main:app``.
"""

from server import app

__all__ = ["app"]
