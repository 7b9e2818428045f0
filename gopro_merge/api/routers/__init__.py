from .uploads import router as uploads_router
from .jobs import router as jobs_router
from .files import router as files_router
from .health import router as health_router
from .events import router as events_router

__all__ = ["uploads_router", "jobs_router", "files_router", "health_router", "events_router"]
