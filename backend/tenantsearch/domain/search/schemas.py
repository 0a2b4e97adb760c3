"""Pydantic schemas for the search and indexing APIs."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from tenantsearch.domain.search.exceptions import MissingQueryError
from tenantsearch.domain.search.models import IndexFields, SearchRequest


class SearchQuery(BaseModel):
	q: Optional[str] = Field(default=None, description="Free-text search term")
	entity_type: Optional[str] = None
	language: Optional[str] = None
	brand_name: Optional[str] = None
	is_verified: Optional[bool] = None
	is_published: Optional[bool] = None
	limit: Optional[int] = Field(default=None, description="Clamped into [1, 100]")
	cursor: Optional[str] = Field(default=None, description="Opaque cursor for pagination")

	def to_request(self) -> SearchRequest:
		if self.q is None or not self.q.strip():
			raise MissingQueryError()
		return SearchRequest(
			q=self.q.strip(),
			entity_type=self.entity_type or None,
			language=self.language or None,
			brand_name=self.brand_name or None,
			is_verified=self.is_verified,
			is_published=self.is_published,
			limit=self.limit,
			cursor=self.cursor or None,
		)


class SearchResult(BaseModel):
	id: int
	entity_type: str
	entity_id: int
	primary_text: Optional[str] = None
	secondary_text: Optional[str] = None
	slug: Optional[str] = None
	author_name: Optional[str] = None
	brand_name: Optional[str] = None
	follower_count: int = 0
	like_count: int = 0
	comment_count: int = 0
	view_count: int = 0
	tags: list[str] = Field(default_factory=list)
	topics: list[str] = Field(default_factory=list)
	language: Optional[str] = None
	is_verified: Optional[bool] = None
	attributes: dict[str, Any] = Field(default_factory=dict)
	updated_at: datetime
	score: float = 0.0


class SearchMeta(BaseModel):
	cached: bool
	latency_ms: float
	count: int


class SearchResponse(BaseModel):
	results: list[SearchResult]
	next_cursor: Optional[str] = None
	meta: SearchMeta


class IndexEntityBody(BaseModel):
	"""Indexable state of an entity; omitted fields fall back to neutral defaults."""

	primary_text: Optional[str] = None
	secondary_text: Optional[str] = None
	slug: Optional[str] = None
	technical_ids: Optional[str] = None
	author_id: Optional[int] = None
	author_name: Optional[str] = None
	brand_id: Optional[int] = None
	brand_name: Optional[str] = None
	follower_count: Optional[int] = Field(default=None, ge=0)
	like_count: Optional[int] = Field(default=None, ge=0)
	comment_count: Optional[int] = Field(default=None, ge=0)
	view_count: Optional[int] = Field(default=None, ge=0)
	tags: Optional[list[str]] = None
	topics: Optional[list[str]] = None
	language: Optional[str] = None
	is_verified: Optional[bool] = None
	is_published: Optional[bool] = None
	published_at: Optional[datetime] = None
	attributes: Optional[dict[str, Any]] = None

	def to_fields(self) -> IndexFields:
		return IndexFields.from_mapping(self.model_dump())
