"""Tenant-scoped database sessions.

Every database operation runs inside a transaction that carries the
``app.current_tenant_id`` setting consumed by the row-level security policy on
``search_index``. The setting is transaction-local (``set_config(..., true)``)
so a pooled connection never keeps one tenant's scope into its next checkout.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncContextManager, AsyncIterator, Optional

import asyncpg

from tenantsearch.domain.search.exceptions import DatabaseUnavailableError, MissingTenantError
from tenantsearch.infra.postgres import DatabasePools

logger = logging.getLogger(__name__)

TENANT_SETTING = "app.current_tenant_id"
_SET_TENANT_SQL = f"SELECT set_config('{TENANT_SETTING}', $1, true)"
_READ_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})


def parse_tenant_id(value: Any) -> int:
	"""Return the tenant id carried by a header value or raise :class:`MissingTenantError`."""
	if value is None or isinstance(value, bool):
		raise MissingTenantError()
	text = str(value).strip()
	if not (text.isascii() and text.isdigit()):
		raise MissingTenantError()
	tenant_id = int(text)
	if tenant_id <= 0:
		raise MissingTenantError()
	return tenant_id


def is_write_method(method: Optional[str]) -> bool:
	return (method or "GET").upper() not in _READ_METHODS


@dataclass(slots=True)
class TenantContext:
	"""One request's tenant binding and its scoped connection."""

	tenant_id: int
	is_write: bool
	connection: asyncpg.Connection


class ConnectionRouter:
	"""Hands out tenant-scoped sessions on the primary or a round-robin replica."""

	def __init__(self, pools: DatabasePools) -> None:
		self.pools = pools

	def bind(self, tenant_header: Any, method: Optional[str]) -> AsyncContextManager[TenantContext]:
		"""Validate the tenant and return a scoped session for the request.

		Validation happens eagerly so an invalid tenant is rejected before any
		pool is touched.
		"""
		tenant_id = parse_tenant_id(tenant_header)
		write = is_write_method(method)
		pool = self.pools.primary if write else self.pools.selector.next()
		return self.session(pool, tenant_id, write=write)

	def primary(self, tenant_id: int) -> AsyncContextManager[TenantContext]:
		return self.session(self.pools.primary, tenant_id, write=True)

	@asynccontextmanager
	async def session(
		self,
		pool: asyncpg.pool.Pool,
		tenant_id: int,
		*,
		write: bool,
	) -> AsyncIterator[TenantContext]:
		try:
			conn = await pool.acquire()
		except Exception as exc:
			logger.error("tenancy.acquire_failed", exc_info=True, extra={"tenant_id": tenant_id})
			raise DatabaseUnavailableError() from exc

		transaction = conn.transaction()
		started = False
		succeeded = False
		try:
			try:
				await transaction.start()
				started = True
				await conn.execute(_SET_TENANT_SQL, str(tenant_id))
			except Exception as exc:
				logger.error("tenancy.session_setup_failed", exc_info=True, extra={"tenant_id": tenant_id})
				raise DatabaseUnavailableError() from exc
			yield TenantContext(tenant_id=tenant_id, is_write=write, connection=conn)
			succeeded = True
		finally:
			# Runs to completion even when the request task is cancelled.
			await asyncio.shield(
				self._finish(pool, conn, transaction, started=started, commit=write and succeeded)
			)

	async def _finish(
		self,
		pool: asyncpg.pool.Pool,
		conn: asyncpg.Connection,
		transaction: Any,
		*,
		started: bool,
		commit: bool,
	) -> None:
		try:
			if not started:
				return
			if not commit:
				await self._rollback(transaction)
				return
			try:
				await transaction.commit()
			except Exception as exc:
				logger.error("tenancy.commit_failed", exc_info=True)
				await self._rollback(transaction)
				raise DatabaseUnavailableError("commit_failed") from exc
		finally:
			try:
				await pool.release(conn)
			except Exception:
				logger.error("tenancy.release_failed", exc_info=True)

	async def _rollback(self, transaction: Any) -> None:
		try:
			await transaction.rollback()
		except Exception:
			logger.warning("tenancy.rollback_failed", exc_info=True)


__all__ = [
	"ConnectionRouter",
	"TENANT_SETTING",
	"TenantContext",
	"is_write_method",
	"parse_tenant_id",
]
