from .engine import router as engine_router
from .match import router as match_router
from .queue import router as queue_router

__all__ = [
    "engine_router",
    "match_router",
    "queue_router",
]
