"""FastAPI application entrypoint."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from creditgate import credit
from creditgate.api.errors import install_error_handlers
from creditgate.credit.domain.container import default_scope_config_source, get_pipeline
from creditgate.credit.domain.scope_config import ScopeConfigProvider
from creditgate.credit.evaluators import build_evaluator
from creditgate.credit.infra.git_store import GitBranchStateStore
from creditgate.credit.infra.github import GitHubRepositoryActions, GitHubScopeConfigSource, github_client
from creditgate.infra import postgres
from creditgate.infra.redis import redis_client
from creditgate.obs import init as obs_init
from creditgate.settings import settings

logger = logging.getLogger(__name__)


async def configure_store_backend() -> None:
	"""Point the container at the ledger backend named in settings."""
	backend = settings.store_backend.lower()
	if backend == "memory":
		credit.reset()
	elif backend == "postgres":
		pool = await postgres.init_pool()
		credit.configure_postgres(pool, redis_client)
	elif backend == "redis":
		credit.configure_redis(redis_client)
	elif backend == "git":
		store = GitBranchStateStore(settings.git_store_path, branch=settings.git_store_branch)
		await store.ensure_repository()
		credit.configure_git(store, redis_client)
	else:
		raise ValueError(f"unknown store backend: {settings.store_backend}")
	logger.info("credit_store_configured", extra={"backend": backend})


def configure_integrations(github: httpx.AsyncClient | None, evaluator_http: httpx.AsyncClient | None) -> None:
	config_source = default_scope_config_source()
	if config_source is None and github is not None:
		config_source = GitHubScopeConfigSource(github, path=settings.scope_config_repo_path)
	configs = ScopeConfigProvider(config_source, ttl_seconds=settings.scope_config_ttl_seconds)
	actions = None
	if github is not None:
		actions = GitHubRepositoryActions(github, privileged_logins=frozenset(settings.privileged_logins))
	credit.configure(
		actions=actions,
		evaluator=build_evaluator(settings, http=evaluator_http),
		configs=configs,
	)


@asynccontextmanager
async def lifespan(app: FastAPI):
	github = github_client(settings.github_token, base_url=settings.github_api_url) if settings.github_token else None
	evaluator_http = None
	if settings.evaluator_provider.lower() != "mock":
		evaluator_http = httpx.AsyncClient(timeout=settings.evaluator_timeout_seconds)
	configure_integrations(github, evaluator_http)
	await configure_store_backend()
	worker_tasks: list[asyncio.Task] = []
	if settings.workers_enabled:
		worker_tasks.extend(credit.spawn_workers(sweep_interval=settings.shadow_sweep_interval_seconds))
	try:
		yield
	finally:
		cancelled = await get_pipeline().shutdown(settings.shutdown_grace_seconds)
		if cancelled:
			logger.warning("credit_evaluations_abandoned", extra={"count": cancelled})
		if worker_tasks:
			for task in worker_tasks:
				task.cancel()
			await asyncio.gather(*worker_tasks, return_exceptions=True)
		for client in (github, evaluator_http):
			if client is not None:
				await client.aclose()
		await postgres.close_pool()


app = FastAPI(title="Creditgate", lifespan=lifespan)
install_error_handlers(app)
obs_init(app)

app.include_router(credit.webhooks_router)
app.include_router(credit.review_router)
app.include_router(credit.actors_router)


@app.get("/health")
async def health() -> dict[str, str]:
	return {"status": "ok", "backend": settings.store_backend}


@app.get("/metrics")
async def prometheus_metrics() -> Response:
	payload = generate_latest()
	return Response(content=payload, media_type=CONTENT_TYPE_LATEST)
