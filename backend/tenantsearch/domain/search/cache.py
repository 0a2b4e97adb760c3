"""Two-tier cache for search result pages.

Tier one is an in-process dict with lazy TTL expiry and a periodic sweep.
Tier two is Redis. Redis is never allowed to fail a search: read and write
errors degrade to a miss / an in-process-only write.
"""

from __future__ import annotations

import hashlib
import json
import logging
import threading
import time
from typing import Any, Callable, Optional

from tenantsearch.domain.search.exceptions import CacheInvalidationError
from tenantsearch.infra.periodic import PeriodicTask
from tenantsearch.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)

KEY_PREFIX = "search:tenant"
REFILL_TTL_SECONDS = 30
DEFAULT_TTL_SECONDS = 60
SWEEP_INTERVAL_SECONDS = 60.0
_SCAN_BATCH = 500


def tenant_namespace(tenant_id: int) -> str:
	return f"{KEY_PREFIX}:{tenant_id}"


def tenant_pattern(tenant_id: int) -> str:
	return f"{tenant_namespace(tenant_id)}:*"


def search_cache_key(
	tenant_id: int,
	*,
	query: str,
	filters: dict[str, Any],
	cursor: Optional[str],
	limit: int,
) -> str:
	"""Deterministic, tenant-namespaced key for one result page.

	The term is only trimmed: the substring match on ``technical_ids`` is
	sensitive to inner whitespace, so differently spaced terms are different pages.
	"""
	material = json.dumps(
		{
			"tenant": tenant_id,
			"q": query.strip(),
			"filters": filters,
			"cursor": cursor or None,
			"limit": limit,
		},
		sort_keys=True,
		separators=(",", ":"),
		default=str,
	)
	digest = hashlib.sha256(material.encode("utf-8")).hexdigest()
	return f"{tenant_namespace(tenant_id)}:{digest}"


class MemoryCache:
	"""Thread-safe TTL map with no capacity bound."""

	def __init__(self, *, clock: Callable[[], float] = time.monotonic) -> None:
		self._entries: dict[str, tuple[Any, float]] = {}
		self._lock = threading.Lock()
		self._clock = clock

	def __len__(self) -> int:
		with self._lock:
			return len(self._entries)

	def get(self, key: str) -> Optional[Any]:
		now = self._clock()
		with self._lock:
			item = self._entries.get(key)
			if item is None:
				return None
			value, expires_at = item
			if now > expires_at:
				del self._entries[key]
				return None
			return value

	def set(self, key: str, value: Any, ttl: float) -> None:
		expires_at = self._clock() + ttl
		with self._lock:
			self._entries[key] = (value, expires_at)

	def delete(self, key: str) -> None:
		with self._lock:
			self._entries.pop(key, None)

	def clear(self) -> None:
		with self._lock:
			self._entries.clear()

	def sweep(self) -> int:
		"""Drop every expired entry and return how many were removed."""
		now = self._clock()
		with self._lock:
			expired = [key for key, (_, expires_at) in self._entries.items() if now > expires_at]
			for key in expired:
				del self._entries[key]
		return len(expired)


class TwoTierCache:
	"""In-process tier in front of Redis."""

	def __init__(
		self,
		redis: Any,
		*,
		memory: Optional[MemoryCache] = None,
		refill_ttl: int = REFILL_TTL_SECONDS,
		sweep_interval: float = SWEEP_INTERVAL_SECONDS,
	) -> None:
		self.redis = redis
		self.memory = memory if memory is not None else MemoryCache()
		self.refill_ttl = refill_ttl
		self._sweeper = PeriodicTask(self.memory.sweep, interval=sweep_interval, name="search-cache-sweeper")

	def start(self) -> None:
		self._sweeper.start()

	async def stop(self) -> None:
		await self._sweeper.stop()

	async def get(self, key: str) -> Optional[Any]:
		value = self.memory.get(key)
		if value is not None:
			obs_metrics.CACHE_LOOKUPS.labels(tier="l1").inc()
			return value
		try:
			raw = await self.redis.get(key)
		except Exception:
			logger.warning("cache.l2_get_failed", exc_info=True, extra={"key": key})
			obs_metrics.CACHE_ERRORS.labels(op="get").inc()
			return None
		if raw is None:
			return None
		try:
			value = json.loads(raw)
		except (TypeError, ValueError):
			logger.warning("cache.l2_payload_invalid", extra={"key": key})
			return None
		self.memory.set(key, value, self.refill_ttl)
		obs_metrics.CACHE_LOOKUPS.labels(tier="l2").inc()
		return value

	async def set(self, key: str, value: Any, ttl: int = DEFAULT_TTL_SECONDS) -> None:
		self.memory.set(key, value, ttl)
		try:
			await self.redis.set(key, json.dumps(value, default=str), ex=ttl)
		except Exception:
			logger.warning("cache.l2_set_failed", exc_info=True, extra={"key": key})
			obs_metrics.CACHE_ERRORS.labels(op="set").inc()

	async def delete(self, key: str) -> None:
		self.memory.delete(key)
		try:
			await self.redis.delete(key)
		except Exception:
			logger.warning("cache.l2_delete_failed", exc_info=True, extra={"key": key})
			obs_metrics.CACHE_ERRORS.labels(op="delete").inc()

	async def invalidate_tenant(self, tenant_id: int) -> int:
		"""Delete every Redis key in the tenant's namespace.

		In-process entries are left to expire on their own TTL.
		"""
		pattern = tenant_pattern(tenant_id)
		removed = 0
		try:
			batch: list[str] = []
			async for key in self.redis.scan_iter(match=pattern, count=_SCAN_BATCH):
				batch.append(key)
				if len(batch) >= _SCAN_BATCH:
					removed += await self.redis.delete(*batch)
					batch = []
			if batch:
				removed += await self.redis.delete(*batch)
		except Exception as exc:
			logger.error("cache.invalidate_failed", exc_info=True, extra={"tenant_id": tenant_id})
			obs_metrics.CACHE_ERRORS.labels(op="invalidate").inc()
			raise CacheInvalidationError(tenant_id) from exc
		logger.info("cache.tenant_invalidated", extra={"tenant_id": tenant_id, "removed": removed})
		return removed


__all__ = [
	"MemoryCache",
	"TwoTierCache",
	"search_cache_key",
	"tenant_namespace",
	"tenant_pattern",
]
