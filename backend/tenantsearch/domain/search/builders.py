"""SQL builders for hybrid full-text + trigram search over ``search_index``."""

from __future__ import annotations

import binascii
import logging
from base64 import urlsafe_b64decode, urlsafe_b64encode
from datetime import datetime
from typing import Any, Optional

from tenantsearch.domain.search.models import BuiltQuery, CursorState, SearchRequest

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 20
MAX_LIMIT = 100
TRIGRAM_THRESHOLD = 0.2
FTS_WEIGHT = 0.7
TRIGRAM_WEIGHT = 0.3

# Whitelisted equality filters: request attribute -> column.
FILTER_COLUMNS = {
	"entity_type": "entity_type",
	"language": "language",
	"brand_name": "brand_name",
	"is_verified": "is_verified",
	"is_published": "is_published",
}

TRIGRAM_COLUMNS = ("primary_text", "secondary_text", "author_name")

RESULT_COLUMNS = (
	"id",
	"entity_type",
	"entity_id",
	"primary_text",
	"secondary_text",
	"slug",
	"author_name",
	"brand_name",
	"follower_count",
	"like_count",
	"comment_count",
	"view_count",
	"tags",
	"topics",
	"language",
	"is_verified",
	"attributes",
	"updated_at",
)


def clamp_limit(value: Optional[int]) -> int:
	if value is None:
		return DEFAULT_LIMIT
	return max(1, min(MAX_LIMIT, int(value)))


def encode_cursor(updated_at: datetime, row_id: int) -> str:
	payload = f"{updated_at.isoformat()}|{row_id}"
	return urlsafe_b64encode(payload.encode("utf-8")).decode("ascii")


def decode_cursor(value: Optional[str]) -> Optional[CursorState]:
	"""Decode a pagination cursor; anything malformed counts as no cursor."""
	if not value:
		return None
	try:
		padded = value + "=" * (-len(value) % 4)
		decoded = urlsafe_b64decode(padded.encode("ascii")).decode("utf-8")
	except (binascii.Error, UnicodeError, ValueError):
		logger.debug("search.cursor_undecodable")
		return None
	parts = decoded.split("|")
	if len(parts) != 2 or not parts[0] or not parts[1]:
		return None
	ts_text, id_text = parts
	try:
		updated_at = datetime.fromisoformat(ts_text)
		row_id = int(id_text)
	except ValueError:
		return None
	return CursorState(updated_at=updated_at, row_id=row_id)


def _fallback_vector() -> str:
	return (
		"to_tsvector('english', COALESCE(primary_text, '') || ' ' || "
		"COALESCE(secondary_text, '') || ' ' || COALESCE(author_name, ''))"
	)


def _fts_rank(q: str) -> str:
	tsquery = f"plainto_tsquery('english', {q})"
	return f"COALESCE(ts_rank_cd(search_vector, {tsquery}), ts_rank_cd({_fallback_vector()}, {tsquery}))"


def _trigram_rank(q: str) -> str:
	parts = ", ".join(f"similarity(COALESCE({column}, ''), {q})" for column in TRIGRAM_COLUMNS)
	return f"GREATEST({parts})"


def _match_clause(q: str) -> str:
	tsquery = f"plainto_tsquery('english', {q})"
	conditions = [
		f"COALESCE(search_vector @@ {tsquery}, false)",
		f"{_fallback_vector()} @@ {tsquery}",
	]
	conditions.extend(
		f"similarity(COALESCE({column}, ''), {q}) > {TRIGRAM_THRESHOLD}" for column in TRIGRAM_COLUMNS
	)
	conditions.append(f"COALESCE(technical_ids, '') ILIKE '%' || {q} || '%'")
	return "(\n\t\t\t" + "\n\t\t\tOR ".join(conditions) + "\n\t\t)"


def build_search_query(request: SearchRequest) -> BuiltQuery:
	"""Return the parameterized ranking query for ``request``.

	Tenant scoping is not expressed here; the row-level security policy bound
	to the session's ``app.current_tenant_id`` applies it.
	"""
	limit = clamp_limit(request.limit)
	params: list[Any] = []
	where: list[str] = []

	for attr, value in request.filters().items():
		params.append(value)
		where.append(f"{FILTER_COLUMNS[attr]} = ${len(params)}")

	params.append(request.q)
	q = f"${len(params)}"
	where.append(_match_clause(q))

	cursor = decode_cursor(request.cursor)
	if cursor is not None:
		params.append(cursor.updated_at)
		params.append(cursor.row_id)
		where.append(f"(updated_at, id) < (${len(params) - 1}::timestamptz, ${len(params)}::bigint)")

	fts_rank = _fts_rank(q)
	trgm_rank = _trigram_rank(q)
	sql = f"""
		SELECT
			{", ".join(RESULT_COLUMNS)},
			{fts_rank} AS fts_rank,
			{trgm_rank} AS trgm_rank
		FROM search_index
		WHERE {" AND ".join(where)}
		ORDER BY
			({fts_rank} * {FTS_WEIGHT} + {trgm_rank} * {TRIGRAM_WEIGHT}) DESC,
			updated_at DESC,
			id DESC
		LIMIT {limit}
	"""
	return BuiltQuery(sql=sql, params=params, limit=limit)


__all__ = [
	"DEFAULT_LIMIT",
	"MAX_LIMIT",
	"build_search_query",
	"clamp_limit",
	"decode_cursor",
	"encode_cursor",
]
