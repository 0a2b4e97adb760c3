"""REST endpoints for search and index maintenance."""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends, Header, Query, Request, Response, status

from tenantsearch.api.deps import get_backend
from tenantsearch.container import SearchBackend
from tenantsearch.domain.search import schemas
from tenantsearch.domain.search.cache import tenant_namespace
from tenantsearch.domain.search.exceptions import CacheInvalidationError, ReplicaSyncError
from tenantsearch.infra.tenancy import parse_tenant_id

router = APIRouter(tags=["search"])

logger = logging.getLogger(__name__)


def search_query(
	q: Optional[str] = Query(default=None),
	entity_type: Optional[str] = Query(default=None, alias="entityType"),
	language: Optional[str] = Query(default=None),
	brand_name: Optional[str] = Query(default=None, alias="brandName"),
	is_verified: Optional[bool] = Query(default=None, alias="isVerified"),
	is_published: Optional[bool] = Query(default=None, alias="isPublished"),
	limit: Optional[int] = Query(default=None),
	cursor: Optional[str] = Query(default=None),
) -> schemas.SearchQuery:
	return schemas.SearchQuery(
		q=q,
		entity_type=entity_type,
		language=language,
		brand_name=brand_name,
		is_verified=is_verified,
		is_published=is_published,
		limit=limit,
		cursor=cursor,
	)


@router.get("/search", response_model=schemas.SearchResponse)
async def search_endpoint(
	request: Request,
	query: schemas.SearchQuery = Depends(search_query),
	backend: SearchBackend = Depends(get_backend),
	x_tenant_id: Optional[str] = Header(default=None),
	x_user_id: Optional[str] = Header(default=None),
) -> schemas.SearchResponse:
	# Both validations run before any cache or database access.
	parse_tenant_id(x_tenant_id)
	search_request = query.to_request()
	async with backend.router.bind(x_tenant_id, request.method) as ctx:
		outcome = await backend.search.search(ctx, search_request, user_id=x_user_id or None)
	logger.info(
		"search.completed",
		extra={
			"tenant_id": ctx.tenant_id,
			"entity_type": search_request.entity_type,
			"result_count": len(outcome.results),
			"cached": outcome.cached,
			"latency_ms": outcome.latency_ms,
		},
	)
	return schemas.SearchResponse(
		results=[schemas.SearchResult.model_validate(item) for item in outcome.results],
		next_cursor=outcome.next_cursor,
		meta=schemas.SearchMeta(
			cached=outcome.cached,
			latency_ms=outcome.latency_ms,
			count=len(outcome.results),
		),
	)


def _track_write(backend: SearchBackend, user_id: Optional[str], tenant_id: int) -> None:
	if user_id:
		backend.write_tracker.track_write(user_id, tenant_namespace(tenant_id))


@router.put("/index/{entity_type}/{entity_id}", status_code=status.HTTP_204_NO_CONTENT)
async def index_entity_endpoint(
	entity_type: str,
	entity_id: int,
	body: Optional[schemas.IndexEntityBody] = Body(default=None),
	backend: SearchBackend = Depends(get_backend),
	x_tenant_id: Optional[str] = Header(default=None),
	x_user_id: Optional[str] = Header(default=None),
) -> Response:
	tenant_id = parse_tenant_id(x_tenant_id)
	fields = (body or schemas.IndexEntityBody()).to_fields()
	try:
		await backend.replicator.index_entity(tenant_id, entity_type, entity_id, fields)
	except (ReplicaSyncError, CacheInvalidationError):
		# The primary write is durable; the writer must still see it.
		_track_write(backend, x_user_id, tenant_id)
		raise
	_track_write(backend, x_user_id, tenant_id)
	return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.delete("/index/{entity_type}/{entity_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_entity_endpoint(
	entity_type: str,
	entity_id: int,
	backend: SearchBackend = Depends(get_backend),
	x_tenant_id: Optional[str] = Header(default=None),
	x_user_id: Optional[str] = Header(default=None),
) -> Response:
	tenant_id = parse_tenant_id(x_tenant_id)
	try:
		await backend.replicator.remove_from_index(tenant_id, entity_type, entity_id)
	except (ReplicaSyncError, CacheInvalidationError):
		_track_write(backend, x_user_id, tenant_id)
		raise
	_track_write(backend, x_user_id, tenant_id)
	return Response(status_code=status.HTTP_204_NO_CONTENT)
