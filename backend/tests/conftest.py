import re
import sys
from dataclasses import asdict
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
import pytest_asyncio
from fakeredis.aioredis import FakeRedis

# Ensure backend package is importable when tests run from repo root
BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
	sys.path.insert(0, str(BACKEND_ROOT))

from tenantsearch.domain.search.models import IndexKey
from tenantsearch.infra.postgres import DatabasePools

_TERM_PLACEHOLDER = re.compile(r"plainto_tsquery\('english', \$(\d+)\)")


class FakeTransaction:
	def __init__(self, conn: "FakeConnection") -> None:
		self.conn = conn
		self.state = "new"

	async def start(self) -> None:
		if self.conn.fail_begin:
			raise ConnectionError("begin failed")
		self.state = "started"
		self.conn.log.append("BEGIN")

	async def commit(self) -> None:
		if self.conn.fail_commit:
			raise ConnectionError("commit failed")
		self.state = "committed"
		self.conn.log.append("COMMIT")

	async def rollback(self) -> None:
		self.state = "rolled_back"
		self.conn.log.append("ROLLBACK")
		self.conn.current_tenant = None


class FakeConnection:
	"""Records statements; remembers the transaction-local tenant like the RLS policy would."""

	def __init__(self, pool: "FakePool") -> None:
		self.pool = pool
		self.log: list[str] = []
		self.statements: list[tuple[str, tuple]] = []
		self.transactions: list[FakeTransaction] = []
		self.current_tenant: int | None = None
		self.fail_begin = False
		self.fail_set_config = False
		self.fail_commit = False

	@property
	def store(self) -> dict:
		return self.pool.store

	def transaction(self) -> FakeTransaction:
		tx = FakeTransaction(self)
		self.transactions.append(tx)
		return tx

	async def execute(self, sql: str, *args):
		self.statements.append((sql, args))
		if "set_config" in sql:
			if self.fail_set_config:
				raise ConnectionError("set_config failed")
			self.current_tenant = int(args[0])
			return "SELECT 1"
		return "EXECUTE 0"

	async def fetch(self, sql: str, *args):
		self.statements.append((sql, args))
		return []

	async def fetchrow(self, sql: str, *args):
		self.statements.append((sql, args))
		return None


class FakePool:
	def __init__(self, name: str) -> None:
		self.name = name
		self.store: dict[IndexKey, dict] = {}
		self.connections: list[FakeConnection] = []
		self.acquired = 0
		self.released = 0
		self.fail_acquire = False
		self.fail_writes = False
		self.next_conn_setup = None

	async def acquire(self) -> FakeConnection:
		if self.fail_acquire:
			raise ConnectionError(f"{self.name} unreachable")
		conn = FakeConnection(self)
		if self.next_conn_setup is not None:
			self.next_conn_setup(conn)
		self.connections.append(conn)
		self.acquired += 1
		return conn

	async def release(self, conn: FakeConnection) -> None:
		self.released += 1

	async def close(self) -> None:
		return None

	@property
	def last_connection(self) -> FakeConnection:
		return self.connections[-1]


class MemoryIndexRepository:
	"""In-memory stand-in for SearchIndexRepository keyed per pool.

	Visibility is limited to the tenant bound on the connection, mirroring the
	row-level security policy. Search does a case-insensitive substring match of
	the bound search term against ``primary_text`` and ignores the other filters.
	"""

	def __init__(self) -> None:
		self._ids = 0
		self._clock = datetime(2024, 1, 1, tzinfo=timezone.utc)

	def _tick(self) -> datetime:
		self._clock += timedelta(seconds=1)
		return self._clock

	async def upsert(self, conn, key, fields):
		if conn.pool.fail_writes:
			raise ConnectionError(f"{conn.pool.name} write failed")
		existing = conn.store.get(key)
		if existing is None:
			self._ids += 1
			row_id = self._ids
		else:
			row_id = existing["id"]
		row = {
			"id": row_id,
			"tenant_id": key.tenant_id,
			"entity_type": key.entity_type,
			"entity_id": key.entity_id,
			**asdict(fields),
			"updated_at": self._tick(),
		}
		conn.store[key] = row
		return {"id": row_id, "updated_at": row["updated_at"]}

	async def fetch(self, conn, key):
		row = conn.store.get(key)
		return dict(row) if row is not None else None

	async def replay_upsert(self, conn, row):
		if conn.pool.fail_writes:
			raise ConnectionError(f"{conn.pool.name} write failed")
		key = IndexKey(row["tenant_id"], row["entity_type"], row["entity_id"])
		conn.store[key] = dict(row)

	async def delete(self, conn, key):
		if conn.pool.fail_writes:
			raise ConnectionError(f"{conn.pool.name} write failed")
		return 1 if conn.store.pop(key, None) is not None else 0

	async def search(self, conn, built):
		position = int(_TERM_PLACEHOLDER.search(built.sql).group(1))
		term = built.params[position - 1].lower()
		rows = [
			dict(row, fts_rank=0.5, trgm_rank=0.5)
			for row in conn.store.values()
			if row["tenant_id"] == conn.current_tenant and term in row["primary_text"].lower()
		]
		rows.sort(key=lambda row: (row["updated_at"], row["id"]), reverse=True)
		return rows[: built.limit]


@pytest_asyncio.fixture
async def fake_redis():
	client = FakeRedis(decode_responses=True)
	try:
		yield client
	finally:
		await client.flushall()


@pytest.fixture
def primary_pool():
	return FakePool("primary")


@pytest.fixture
def replica_pools():
	return [FakePool(f"replica-{index}") for index in range(1, 3)]


@pytest.fixture
def pools(primary_pool, replica_pools):
	return DatabasePools(primary_pool, replica_pools)


@pytest.fixture
def memory_repo():
	return MemoryIndexRepository()


@pytest.fixture
def pool_factory():
	return FakePool
