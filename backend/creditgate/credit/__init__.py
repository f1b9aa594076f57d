"""Credit package integration helpers exposed to the application."""

from creditgate.credit.api import actors_router, review_router, webhooks_router
from creditgate.credit.domain.container import configure, configure_git, configure_postgres, configure_redis, reset
from creditgate.credit.workers.runner import spawn_workers

__all__ = [
    "actors_router",
    "review_router",
    "webhooks_router",
    "configure",
    "configure_git",
    "configure_postgres",
    "configure_redis",
    "reset",
    "spawn_workers",
]
