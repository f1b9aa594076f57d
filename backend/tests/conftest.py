import sys
from pathlib import Path

import pytest
import pytest_asyncio
from fakeredis.aioredis import FakeRedis
from httpx import ASGITransport, AsyncClient

# Ensure backend package is importable when tests run from repo root
BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
	sys.path.insert(0, str(BACKEND_ROOT))

from creditgate.credit.domain import container
from creditgate.credit.domain.actions import LoggingRepositoryActions
from creditgate.credit.domain.scope_config import ScopeConfigProvider
from creditgate.credit.evaluators.mock import MockEvaluator
from creditgate.infra import postgres
from creditgate.main import app
from creditgate.settings import settings

ADMIN_TOKEN = "test-admin-token"


@pytest_asyncio.fixture(autouse=True)
async def fake_redis():
	from creditgate.infra.redis import redis_client, set_redis_client
	original = redis_client.client
	client = FakeRedis(decode_responses=True)
	set_redis_client(client)
	try:
		yield client
	finally:
		set_redis_client(original)
		await client.flushall()


@pytest.fixture(autouse=True)
def patch_postgres(monkeypatch):
	async def _noop():
		return None

	monkeypatch.setattr(postgres, "init_pool", _noop)
	monkeypatch.setattr(postgres, "close_pool", _noop)


@pytest.fixture(autouse=True)
def force_test_settings():
	"""Pin settings that the webhook and admin routes read on every request."""
	names = ("environment", "webhook_secret", "admin_token", "store_backend", "workers_enabled", "privileged_logins")
	original = {name: getattr(settings, name) for name in names}
	settings.environment = "dev"
	settings.webhook_secret = None
	settings.admin_token = ADMIN_TOKEN
	settings.store_backend = "memory"
	settings.workers_enabled = False
	settings.privileged_logins = ()
	try:
		yield
	finally:
		for name, value in original.items():
			setattr(settings, name, value)


@pytest.fixture(autouse=True)
def fresh_container():
	container.configure(
		actions=LoggingRepositoryActions(),
		evaluator=MockEvaluator(),
		configs=ScopeConfigProvider(),
	)
	container.reset()
	yield
	container.reset()


@pytest.fixture
def admin_headers() -> dict[str, str]:
	return {"Authorization": f"Bearer {ADMIN_TOKEN}", "X-Credit-Actor": "maint"}


@pytest_asyncio.fixture
async def api_client():
	transport = ASGITransport(app=app)
	async with AsyncClient(transport=transport, base_url="http://testserver") as client:
		yield client
