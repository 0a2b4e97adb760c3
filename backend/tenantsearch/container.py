"""Process-wide service wiring.

One :class:`SearchBackend` is built per process and handed to request handlers
through ``app.state`` instead of being imported as ambient singletons.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

from tenantsearch.domain.search.cache import MemoryCache, TwoTierCache
from tenantsearch.domain.search.replication import IndexReplicator
from tenantsearch.domain.search.repository import SearchIndexRepository
from tenantsearch.domain.search.service import SearchService
from tenantsearch.domain.search.write_tracker import WriteTracker
from tenantsearch.infra.postgres import DatabasePools, open_pools
from tenantsearch.infra.redis import redis_client
from tenantsearch.infra.tenancy import ConnectionRouter
from tenantsearch.settings import Settings, settings as default_settings

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SearchBackend:
	pools: DatabasePools
	redis: Any
	router: ConnectionRouter
	cache: TwoTierCache
	write_tracker: WriteTracker
	search: SearchService
	replicator: IndexReplicator

	@classmethod
	def build(
		cls,
		pools: DatabasePools,
		redis: Any,
		*,
		config: Optional[Settings] = None,
		repository: Optional[SearchIndexRepository] = None,
	) -> SearchBackend:
		config = config or default_settings
		repository = repository if repository is not None else SearchIndexRepository()
		router = ConnectionRouter(pools)
		cache = TwoTierCache(
			redis,
			memory=MemoryCache(),
			refill_ttl=config.memory_cache_refill_ttl_seconds,
			sweep_interval=config.memory_cache_sweep_seconds,
		)
		write_tracker = WriteTracker(
			window=config.write_tracker_window_seconds,
			purge_interval=config.memory_cache_sweep_seconds,
		)
		return cls(
			pools=pools,
			redis=redis,
			router=router,
			cache=cache,
			write_tracker=write_tracker,
			search=SearchService(
				cache,
				write_tracker,
				repository=repository,
				ttl_seconds=config.search_cache_ttl_seconds,
			),
			replicator=IndexReplicator(
				router,
				cache,
				repository=repository,
				concurrency=config.replication_concurrency,
			),
		)

	def start(self) -> None:
		self.cache.start()
		self.write_tracker.start()

	async def stop(self) -> None:
		await self.cache.stop()
		await self.write_tracker.stop()


async def open_backend(config: Optional[Settings] = None) -> SearchBackend:
	config = config or default_settings
	pools = await open_pools(config)
	backend = SearchBackend.build(pools, redis_client, config=config)
	backend.start()
	logger.info("backend.started", extra={"replica_count": len(pools.replicas)})
	return backend


async def close_backend(backend: SearchBackend) -> None:
	await backend.stop()
	await backend.pools.close()
	await redis_client.close()
	logger.info("backend.stopped")


__all__ = ["SearchBackend", "close_backend", "open_backend"]
