"""HTTP routers for the credit engine."""

from creditgate.credit.api.actors import router as actors_router
from creditgate.credit.api.review import router as review_router
from creditgate.credit.api.webhooks import router as webhooks_router

__all__ = ["actors_router", "review_router", "webhooks_router"]
