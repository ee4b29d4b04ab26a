from .webhook import router as webhook_router
from .flows import router as flows_router

__all__ = [
    "webhook_router",
    "flows_router",
]
