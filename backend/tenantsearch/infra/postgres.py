"""AsyncPG pool management for the primary store and its read replicas."""

from __future__ import annotations

import itertools
import logging
import threading
from typing import Optional, Sequence

import asyncpg

from tenantsearch.settings import Settings, settings as default_settings

logger = logging.getLogger(__name__)


class ReplicaSelector:
	"""Round-robin chooser over the configured replica pools."""

	def __init__(self, pools: Sequence[asyncpg.pool.Pool]) -> None:
		if not pools:
			raise ValueError("at least one replica pool is required")
		self._pools = tuple(pools)
		self._cycle = itertools.cycle(range(len(self._pools)))
		self._lock = threading.Lock()

	def __len__(self) -> int:
		return len(self._pools)

	@property
	def pools(self) -> tuple[asyncpg.pool.Pool, ...]:
		return self._pools

	def next(self) -> asyncpg.pool.Pool:
		with self._lock:
			index = next(self._cycle)
		return self._pools[index]


class DatabasePools:
	"""Process-wide handle on the primary pool and every replica pool."""

	def __init__(
		self,
		primary: asyncpg.pool.Pool,
		replicas: Sequence[asyncpg.pool.Pool],
	) -> None:
		self.primary = primary
		# Without replicas, reads are served by the primary.
		self.replicas = tuple(replicas) or (primary,)
		self.selector = ReplicaSelector(self.replicas)

	async def close(self) -> None:
		seen: set[int] = set()
		for pool in (self.primary, *self.replicas):
			if id(pool) in seen:
				continue
			seen.add(id(pool))
			try:
				await pool.close()
			except Exception:  # pragma: no cover - shutdown best effort
				logger.warning("postgres.pool_close_failed", exc_info=True)


async def _create_pool(dsn: str, config: Settings) -> asyncpg.pool.Pool:
	# Force 127.0.0.1 instead of localhost to avoid IPv6 resolution issues
	return await asyncpg.create_pool(
		dsn=dsn.replace("localhost", "127.0.0.1"),
		min_size=config.postgres_min_pool_size,
		max_size=config.postgres_max_pool_size,
	)


async def open_pools(config: Optional[Settings] = None) -> DatabasePools:
	"""Open the primary pool and one pool per replica DSN."""
	config = config or default_settings
	primary = await _create_pool(config.postgres_url, config)
	replicas: list[asyncpg.pool.Pool] = []
	try:
		for dsn in config.resolved_replica_urls():
			if dsn == config.postgres_url:
				replicas.append(primary)
				continue
			replicas.append(await _create_pool(dsn, config))
	except Exception:
		await DatabasePools(primary, replicas).close()
		raise
	logger.info("postgres.pools_opened", extra={"replica_count": len(replicas)})
	return DatabasePools(primary, replicas)
