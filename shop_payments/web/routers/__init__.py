from .connect import router as connect_router
from .terminal import router as terminal_router
from .webhooks import router as webhooks_router


__all__ = ["connect_router", "terminal_router", "webhooks_router"]
