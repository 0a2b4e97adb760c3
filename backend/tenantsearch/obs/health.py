"""Reachability checks for the primary, each replica, and Redis."""

from __future__ import annotations

import asyncio
import logging
from time import perf_counter
from typing import Any, Dict, Tuple

import asyncpg

from tenantsearch.infra.postgres import DatabasePools
from tenantsearch.obs import metrics

LOGGER = logging.getLogger(__name__)


async def _redis_status(redis: Any, timeout: float = 0.2) -> Dict[str, Any]:
	start = perf_counter()
	try:
		await asyncio.wait_for(redis.ping(), timeout=timeout)
	except Exception as exc:
		metrics.mark_dependency("redis", False)
		LOGGER.warning("health.redis_unreachable", exc_info=True)
		return {"ok": False, "error": type(exc).__name__}
	metrics.mark_dependency("redis", True)
	return {"ok": True, "latency_ms": round((perf_counter() - start) * 1000, 2)}


async def _postgres_status(name: str, pool: asyncpg.pool.Pool, timeout: float = 0.3) -> Dict[str, Any]:
	start = perf_counter()
	try:
		conn = await asyncio.wait_for(pool.acquire(), timeout=timeout)
		try:
			await asyncio.wait_for(conn.execute("SELECT 1"), timeout=timeout)
		finally:
			await pool.release(conn)
	except Exception as exc:
		metrics.mark_dependency(name, False)
		LOGGER.warning("health.postgres_unreachable", exc_info=True, extra={"target": name})
		return {"ok": False, "error": type(exc).__name__}
	metrics.mark_dependency(name, True)
	return {"ok": True, "latency_ms": round((perf_counter() - start) * 1000, 2)}


async def liveness() -> Dict[str, Any]:
	return {"status": "ok"}


async def readiness(pools: DatabasePools, redis: Any) -> Tuple[int, Dict[str, Any]]:
	"""Check every dependency independently; one failure never hides the others."""
	replica_checks = [
		_postgres_status(f"replica_{index}", pool) for index, pool in enumerate(pools.replicas, start=1)
	]
	primary, redis_state, *replicas = await asyncio.gather(
		_postgres_status("primary", pools.primary),
		_redis_status(redis),
		*replica_checks,
	)
	ok = primary["ok"] and redis_state["ok"] and all(item["ok"] for item in replicas)
	return (
		200 if ok else 503,
		{
			"status": "ok" if ok else "degraded",
			"checks": {
				"primary": primary,
				"replicas": [
					{"replica": index, **state} for index, state in enumerate(replicas, start=1)
				],
				"redis": redis_state,
			},
		},
	)
