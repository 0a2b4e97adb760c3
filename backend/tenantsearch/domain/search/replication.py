"""Index writes on the primary and fan-out to every read replica."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Mapping, Optional, Union

import asyncpg

from tenantsearch.domain.search.cache import TwoTierCache
from tenantsearch.domain.search.exceptions import ReplicaSyncError
from tenantsearch.domain.search.models import IndexFields, IndexKey
from tenantsearch.domain.search.repository import SearchIndexRepository
from tenantsearch.infra.tenancy import ConnectionRouter
from tenantsearch.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 4


class IndexReplicator:
	"""Owns every mutation of ``search_index``.

	The primary is the durable source of truth. After each primary commit the
	canonical row is read back and mirrored to all replicas (full fan-out, not
	quorum), then the tenant's cached result pages are invalidated. Replica or
	cache failures are logged and re-raised; the primary write is kept.
	"""

	def __init__(
		self,
		router: ConnectionRouter,
		cache: TwoTierCache,
		*,
		repository: Optional[SearchIndexRepository] = None,
		concurrency: int = DEFAULT_CONCURRENCY,
	) -> None:
		self.router = router
		self.cache = cache
		self.repository = repository if repository is not None else SearchIndexRepository()
		self.concurrency = max(1, concurrency)

	async def index_entity(
		self,
		tenant_id: int,
		entity_type: str,
		entity_id: int,
		fields: Union[IndexFields, Mapping[str, Any]],
	) -> None:
		key = IndexKey(tenant_id=tenant_id, entity_type=entity_type, entity_id=entity_id)
		if not isinstance(fields, IndexFields):
			fields = IndexFields.from_mapping(dict(fields))
		async with self.router.primary(tenant_id) as ctx:
			await self.repository.upsert(ctx.connection, key, fields)
		logger.info("index.upserted", extra={"tenant_id": tenant_id, "entity_type": entity_type, "entity_id": entity_id})
		await self._propagate(key)

	async def remove_from_index(self, tenant_id: int, entity_type: str, entity_id: int) -> None:
		key = IndexKey(tenant_id=tenant_id, entity_type=entity_type, entity_id=entity_id)
		async with self.router.primary(tenant_id) as ctx:
			removed = await self.repository.delete(ctx.connection, key)
		logger.info(
			"index.removed",
			extra={"tenant_id": tenant_id, "entity_type": entity_type, "entity_id": entity_id, "rows": removed},
		)
		await self._propagate(key)

	async def sync_to_replicas(self, tenant_id: int, entity_type: str, entity_id: int) -> None:
		"""Make every replica match the primary's current state for one key."""
		key = IndexKey(tenant_id=tenant_id, entity_type=entity_type, entity_id=entity_id)
		await self._fan_out(key)

	async def _propagate(self, key: IndexKey) -> None:
		replication_error: Optional[BaseException] = None
		try:
			await self._fan_out(key)
		except Exception as exc:
			replication_error = exc
		try:
			await self.cache.invalidate_tenant(key.tenant_id)
		except Exception as exc:
			if replication_error is not None:
				raise replication_error from exc
			raise
		if replication_error is not None:
			raise replication_error

	async def _fan_out(self, key: IndexKey) -> None:
		pools = self.router.pools
		async with self.router.session(pools.primary, key.tenant_id, write=False) as ctx:
			row = await self.repository.fetch(ctx.connection, key)

		targets = [(index, pool) for index, pool in enumerate(pools.replicas) if pool is not pools.primary]
		if not targets:
			return
		semaphore = asyncio.Semaphore(self.concurrency)

		async def _apply(pool: asyncpg.pool.Pool) -> None:
			async with semaphore:
				async with self.router.session(pool, key.tenant_id, write=True) as replica:
					if row is None:
						await self.repository.delete(replica.connection, key)
					else:
						await self.repository.replay_upsert(replica.connection, row)

		results = await asyncio.gather(*(_apply(pool) for _, pool in targets), return_exceptions=True)
		failures: list[tuple[int, BaseException]] = []
		for (index, _), result in zip(targets, results):
			if isinstance(result, BaseException):
				failures.append((index, result))
				obs_metrics.REPLICATION_FAILURES.labels(replica=str(index)).inc()
				logger.error(
					"replication.replica_failed",
					exc_info=(type(result), result, result.__traceback__),
					extra={
						"replica": index,
						"tenant_id": key.tenant_id,
						"entity_type": key.entity_type,
						"entity_id": key.entity_id,
					},
				)
		if failures:
			raise ReplicaSyncError(failures)
		logger.info(
			"replication.synced",
			extra={
				"tenant_id": key.tenant_id,
				"entity_type": key.entity_type,
				"entity_id": key.entity_id,
				"action": "delete" if row is None else "upsert",
				"replicas": len(targets),
			},
		)


__all__ = ["IndexReplicator"]
