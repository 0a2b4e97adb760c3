"""Async data-access layer for the ``search_index`` table."""

from __future__ import annotations

import json
from typing import Any, Mapping, Optional

import asyncpg

from tenantsearch.domain.search.models import BuiltQuery, IndexFields, IndexKey

# Everything a replica needs to mirror a primary row. ``search_vector`` is a
# generated column on every store and is never copied.
REPLICATED_COLUMNS = (
	"id",
	"tenant_id",
	"entity_type",
	"entity_id",
	"primary_text",
	"secondary_text",
	"slug",
	"technical_ids",
	"author_id",
	"author_name",
	"brand_id",
	"brand_name",
	"follower_count",
	"like_count",
	"comment_count",
	"view_count",
	"tags",
	"topics",
	"language",
	"is_verified",
	"is_published",
	"published_at",
	"attributes",
	"updated_at",
)

_KEY_COLUMNS = ("tenant_id", "entity_type", "entity_id")

_UPSERT_SQL = """
	INSERT INTO search_index (
		tenant_id, entity_type, entity_id,
		primary_text, secondary_text, slug, technical_ids,
		author_id, author_name, brand_id, brand_name,
		follower_count, like_count, comment_count, view_count,
		tags, topics, language, is_verified, is_published, published_at, attributes,
		updated_at
	)
	VALUES (
		$1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11,
		$12, $13, $14, $15, $16, $17, $18, $19, $20, $21, $22::jsonb,
		clock_timestamp()
	)
	ON CONFLICT (tenant_id, entity_type, entity_id)
	DO UPDATE SET
		primary_text = EXCLUDED.primary_text,
		secondary_text = EXCLUDED.secondary_text,
		slug = EXCLUDED.slug,
		technical_ids = EXCLUDED.technical_ids,
		author_id = EXCLUDED.author_id,
		author_name = EXCLUDED.author_name,
		brand_id = EXCLUDED.brand_id,
		brand_name = EXCLUDED.brand_name,
		follower_count = EXCLUDED.follower_count,
		like_count = EXCLUDED.like_count,
		comment_count = EXCLUDED.comment_count,
		view_count = EXCLUDED.view_count,
		tags = EXCLUDED.tags,
		topics = EXCLUDED.topics,
		language = EXCLUDED.language,
		is_verified = EXCLUDED.is_verified,
		is_published = EXCLUDED.is_published,
		published_at = EXCLUDED.published_at,
		attributes = EXCLUDED.attributes,
		updated_at = GREATEST(clock_timestamp(), search_index.updated_at + interval '1 microsecond')
	RETURNING id, updated_at
"""


def _replay_sql() -> str:
	placeholders = []
	for index, column in enumerate(REPLICATED_COLUMNS, start=1):
		placeholders.append(f"${index}::jsonb" if column == "attributes" else f"${index}")
	updates = ",\n\t\t".join(
		f"{column} = EXCLUDED.{column}" for column in REPLICATED_COLUMNS if column not in _KEY_COLUMNS
	)
	return f"""
	INSERT INTO search_index ({", ".join(REPLICATED_COLUMNS)})
	VALUES ({", ".join(placeholders)})
	ON CONFLICT (tenant_id, entity_type, entity_id)
	DO UPDATE SET
		{updates}
	"""


_REPLAY_SQL = _replay_sql()

_FETCH_SQL = f"""
	SELECT {", ".join(REPLICATED_COLUMNS)}
	FROM search_index
	WHERE tenant_id = $1 AND entity_type = $2 AND entity_id = $3
"""

_DELETE_SQL = """
	DELETE FROM search_index
	WHERE tenant_id = $1 AND entity_type = $2 AND entity_id = $3
"""


def _json_param(value: Any) -> Optional[str]:
	if value is None:
		return None
	if isinstance(value, str):
		return value
	return json.dumps(value)


def _affected(status: str) -> int:
	try:
		return int(status.split()[-1])
	except (AttributeError, IndexError, ValueError):
		return 0


class SearchIndexRepository:
	"""Thin data-access layer around asyncpg; every call takes an explicit connection."""

	async def search(self, conn: asyncpg.Connection, query: BuiltQuery) -> list[asyncpg.Record]:
		return await conn.fetch(query.sql, *query.params)

	async def upsert(
		self,
		conn: asyncpg.Connection,
		key: IndexKey,
		fields: IndexFields,
	) -> Optional[asyncpg.Record]:
		return await conn.fetchrow(
			_UPSERT_SQL,
			key.tenant_id,
			key.entity_type,
			key.entity_id,
			fields.primary_text,
			fields.secondary_text,
			fields.slug,
			fields.technical_ids,
			fields.author_id,
			fields.author_name,
			fields.brand_id,
			fields.brand_name,
			fields.follower_count,
			fields.like_count,
			fields.comment_count,
			fields.view_count,
			list(fields.tags),
			list(fields.topics),
			fields.language,
			fields.is_verified,
			fields.is_published,
			fields.published_at,
			_json_param(fields.attributes),
		)

	async def fetch(self, conn: asyncpg.Connection, key: IndexKey) -> Optional[dict[str, Any]]:
		"""Return the canonical row for ``key`` or ``None`` when it does not exist."""
		row = await conn.fetchrow(_FETCH_SQL, key.tenant_id, key.entity_type, key.entity_id)
		return dict(row) if row is not None else None

	async def replay_upsert(self, conn: asyncpg.Connection, row: Mapping[str, Any]) -> None:
		"""Mirror a canonical primary row, including its id and ``updated_at``."""
		params = [
			_json_param(row.get(column)) if column == "attributes" else row.get(column)
			for column in REPLICATED_COLUMNS
		]
		await conn.execute(_REPLAY_SQL, *params)

	async def delete(self, conn: asyncpg.Connection, key: IndexKey) -> int:
		status = await conn.execute(_DELETE_SQL, key.tenant_id, key.entity_type, key.entity_id)
		return _affected(status)


__all__ = ["REPLICATED_COLUMNS", "SearchIndexRepository"]
