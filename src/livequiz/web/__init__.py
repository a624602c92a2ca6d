"""Web API for livequiz.

FastAPI application with routes for sessions, materials, quiz generation,
quiz push and the audience SSE stream.
"""

from livequiz.web.api import create_app

__all__ = ["create_app"]
