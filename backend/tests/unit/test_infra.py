import asyncio
import json
import logging
import threading

import pytest

from tenantsearch import __main__ as entrypoint
from tenantsearch.infra.periodic import PeriodicTask
from tenantsearch.infra.postgres import DatabasePools, ReplicaSelector
from tenantsearch.infra.redis import RedisProxy
from tenantsearch.obs import logging as obs_logging
from tenantsearch.settings import Settings

PRIMARY_DSN = "postgresql://search@primary:5432/search"


@pytest.fixture
def clean_env(monkeypatch):
	for name in ("REPLICA_DATABASE_URLS", "REPLICA_DATABASE_URL", "POSTGRES_URL", "DATABASE_URL"):
		monkeypatch.delenv(name, raising=False)
	monkeypatch.setenv("POSTGRES_URL", PRIMARY_DSN)
	return monkeypatch


def test_replica_urls_parse_from_csv(clean_env):
	clean_env.setenv("REPLICA_DATABASE_URLS", " postgresql://r1/search , ,postgresql://r2/search")

	config = Settings()

	assert config.resolved_replica_urls() == ("postgresql://r1/search", "postgresql://r2/search")


def test_single_replica_url_is_the_fallback(clean_env):
	clean_env.setenv("REPLICA_DATABASE_URL", "postgresql://r1/search")

	assert Settings().resolved_replica_urls() == ("postgresql://r1/search",)


def test_reads_fall_back_to_primary_without_replicas(clean_env):
	assert Settings().resolved_replica_urls() == (PRIMARY_DSN,)


def test_log_level_is_normalised(clean_env):
	clean_env.setenv("LOG_LEVEL", "debug")

	assert Settings().obs_log_level == "DEBUG"


def test_replica_selector_requires_pools():
	with pytest.raises(ValueError):
		ReplicaSelector([])


def test_replica_selector_is_fair_across_threads(pool_factory):
	pools = [pool_factory(f"replica-{index}") for index in range(3)]
	selector = ReplicaSelector(pools)
	picks: list[str] = []
	lock = threading.Lock()

	def worker():
		for _ in range(100):
			pool = selector.next()
			with lock:
				picks.append(pool.name)

	threads = [threading.Thread(target=worker) for _ in range(6)]
	for thread in threads:
		thread.start()
	for thread in threads:
		thread.join()

	assert len(picks) == 600
	assert {name: picks.count(name) for name in set(picks)} == {
		"replica-0": 200,
		"replica-1": 200,
		"replica-2": 200,
	}


@pytest.mark.asyncio
async def test_pools_close_shared_pool_once(pool_factory, monkeypatch):
	primary = pool_factory("primary")
	replica = pool_factory("replica")
	closed: list[str] = []

	for pool in (primary, replica):
		async def _close(pool=pool):
			closed.append(pool.name)

		monkeypatch.setattr(pool, "close", _close)

	await DatabasePools(primary, [primary, replica]).close()

	assert closed == ["primary", "replica"]


@pytest.mark.asyncio
async def test_redis_proxy_forwards_to_client(fake_redis):
	proxy = RedisProxy(fake_redis)

	await proxy.set("search:tenant:1:abc", "page", ex=60)

	assert await proxy.get("search:tenant:1:abc") == "page"
	assert proxy.client is fake_redis


@pytest.mark.asyncio
async def test_periodic_task_survives_failing_ticks():
	calls = 0

	async def tick():
		nonlocal calls
		calls += 1
		if calls == 1:
			raise RuntimeError("first tick fails")

	task = PeriodicTask(tick, interval=0.01, name="test-periodic")
	task.start()
	try:
		for _ in range(100):
			if calls >= 3:
				break
			await asyncio.sleep(0.01)
	finally:
		await task.stop()

	assert calls >= 3
	assert task.running is False


@pytest.mark.asyncio
async def test_periodic_task_with_zero_interval_never_starts():
	task = PeriodicTask(lambda: None, interval=0, name="disabled")

	task.start()

	assert task.running is False
	await task.stop()


def test_json_formatter_includes_context_and_redacts_secrets():
	formatter = obs_logging.JSONLogFormatter()
	record = logging.LogRecord("tenantsearch.test", logging.INFO, __file__, 1, "cache.tenant_invalidated", None, None)
	record.removed = 3
	record.dsn = "postgresql://user:pw@db/search"
	tokens = obs_logging.bind_context(request_id="req-9", tenant_id="4")
	try:
		payload = json.loads(formatter.format(record))
	finally:
		obs_logging.reset_context(tokens)

	assert payload["msg"] == "cache.tenant_invalidated"
	assert payload["request_id"] == "req-9"
	assert payload["tenant_id"] == "4"
	assert payload["removed"] == 3
	assert payload["dsn"] == "[redacted]"
	assert obs_logging.current_request_id() is None


def test_entrypoint_serves_the_app_with_configured_address(monkeypatch):
	calls = []
	monkeypatch.setattr(entrypoint.uvicorn, "run", lambda app, **kwargs: calls.append((app, kwargs)))
	monkeypatch.setattr(entrypoint.settings, "http_host", "127.0.0.1")
	monkeypatch.setattr(entrypoint.settings, "http_port", 8081)

	entrypoint.main()

	app, kwargs = calls[0]
	assert app == "tenantsearch.main:app"
	assert kwargs["host"] == "127.0.0.1"
	assert kwargs["port"] == 8081
	assert kwargs["log_config"] is None
