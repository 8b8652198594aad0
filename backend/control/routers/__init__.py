"""API routers"""

from . import gate_router, queue_router, settings_router

__all__ = [
    "gate_router",
    "queue_router",
    "settings_router",
]
