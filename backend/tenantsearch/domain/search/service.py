"""Search orchestration: read-your-write check, cache, query, cache fill."""

from __future__ import annotations

import json
import logging
import time
from datetime import datetime
from typing import Any, Mapping, Optional, Sequence

from tenantsearch.domain.search import builders
from tenantsearch.domain.search.cache import DEFAULT_TTL_SECONDS, TwoTierCache, search_cache_key, tenant_namespace
from tenantsearch.domain.search.exceptions import MissingQueryError
from tenantsearch.domain.search.models import SearchOutcome, SearchRequest
from tenantsearch.domain.search.repository import SearchIndexRepository
from tenantsearch.domain.search.write_tracker import WriteTracker
from tenantsearch.infra.tenancy import TenantContext
from tenantsearch.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)


def _json_value(value: Any) -> Any:
	if isinstance(value, datetime):
		return value.isoformat()
	return value


def row_to_result(row: Mapping[str, Any]) -> dict[str, Any]:
	"""Map a database row onto the JSON-serialisable result shape."""
	row = dict(row)
	result = {column: _json_value(row[column]) for column in builders.RESULT_COLUMNS if column in row}
	for column in ("tags", "topics"):
		if column in result:
			result[column] = list(result[column] or [])
	attributes = result.get("attributes")
	if isinstance(attributes, str):
		try:
			result["attributes"] = json.loads(attributes)
		except ValueError:
			result["attributes"] = {}
	elif attributes is None and "attributes" in result:
		result["attributes"] = {}
	fts_rank = float(row.get("fts_rank") or 0.0)
	trgm_rank = float(row.get("trgm_rank") or 0.0)
	result["score"] = round(builders.FTS_WEIGHT * fts_rank + builders.TRIGRAM_WEIGHT * trgm_rank, 6)
	return result


def next_cursor_for(rows: Sequence[Mapping[str, Any]], limit: int) -> Optional[str]:
	"""A full page may have more rows behind it; a short page is the end."""
	if not rows or len(rows) < limit:
		return None
	last = rows[-1]
	return builders.encode_cursor(last["updated_at"], last["id"])


class SearchService:
	def __init__(
		self,
		cache: TwoTierCache,
		write_tracker: WriteTracker,
		*,
		repository: Optional[SearchIndexRepository] = None,
		ttl_seconds: int = DEFAULT_TTL_SECONDS,
	) -> None:
		self.cache = cache
		self.write_tracker = write_tracker
		self.repository = repository if repository is not None else SearchIndexRepository()
		self.ttl_seconds = ttl_seconds

	async def search(
		self,
		context: TenantContext,
		request: SearchRequest,
		*,
		user_id: Optional[str] = None,
	) -> SearchOutcome:
		start = time.perf_counter()
		if not request.q or not request.q.strip():
			raise MissingQueryError()

		limit = builders.clamp_limit(request.limit)
		key = search_cache_key(
			context.tenant_id,
			query=request.q,
			filters=request.filters(),
			cursor=request.cursor,
			limit=limit,
		)

		bypass = bool(user_id) and self.write_tracker.is_recent_write(user_id, tenant_namespace(context.tenant_id))
		if bypass:
			obs_metrics.CACHE_LOOKUPS.labels(tier="bypass").inc()
		else:
			page = await self.cache.get(key)
			if page is not None:
				return self._outcome(page, cached=True, start=start)
			obs_metrics.CACHE_LOOKUPS.labels(tier="miss").inc()

		built = builders.build_search_query(request)
		rows = await self.repository.search(context.connection, built)
		page = {
			"results": [row_to_result(row) for row in rows],
			"next_cursor": next_cursor_for(rows, built.limit),
		}
		await self.cache.set(key, page, self.ttl_seconds)
		return self._outcome(page, cached=False, start=start)

	def _outcome(self, page: Mapping[str, Any], *, cached: bool, start: float) -> SearchOutcome:
		elapsed = time.perf_counter() - start
		obs_metrics.SEARCH_LATENCY.labels(cached=str(cached).lower()).observe(elapsed)
		return SearchOutcome(
			results=list(page.get("results") or []),
			next_cursor=page.get("next_cursor"),
			cached=cached,
			latency_ms=round(elapsed * 1000, 2),
		)


__all__ = ["SearchService", "next_cursor_for", "row_to_result"]
