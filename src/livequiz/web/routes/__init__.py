"""Route handlers for the Web API."""

from livequiz.web.routes.events import router as events_router
from livequiz.web.routes.health import router as health_router
from livequiz.web.routes.materials import router as materials_router
from livequiz.web.routes.quiz import router as quiz_router
from livequiz.web.routes.sessions import router as sessions_router

__all__ = [
    "events_router",
    "health_router",
    "materials_router",
    "quiz_router",
    "sessions_router",
]
