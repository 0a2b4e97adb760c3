"""Domain models backing the search index."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional


@dataclass(slots=True, frozen=True)
class IndexKey:
	"""Natural key of a ``search_index`` row."""

	tenant_id: int
	entity_type: str
	entity_id: int


@dataclass(slots=True)
class IndexFields:
	"""Mutable, indexable state of one entity.

	Absent values are normalized to neutral defaults so ranking and filtering
	never need to special-case missing data.
	"""

	primary_text: str = ""
	secondary_text: str = ""
	slug: str = ""
	technical_ids: str = ""
	author_id: Optional[int] = None
	author_name: str = ""
	brand_id: Optional[int] = None
	brand_name: str = ""
	follower_count: int = 0
	like_count: int = 0
	comment_count: int = 0
	view_count: int = 0
	tags: list[str] = field(default_factory=list)
	topics: list[str] = field(default_factory=list)
	language: Optional[str] = None
	is_verified: bool = False
	is_published: bool = False
	published_at: Optional[datetime] = None
	attributes: dict[str, Any] = field(default_factory=dict)

	@classmethod
	def from_mapping(cls, data: dict[str, Any]) -> IndexFields:
		return cls(
			primary_text=data.get("primary_text") or "",
			secondary_text=data.get("secondary_text") or "",
			slug=data.get("slug") or "",
			technical_ids=data.get("technical_ids") or "",
			author_id=data.get("author_id"),
			author_name=data.get("author_name") or "",
			brand_id=data.get("brand_id"),
			brand_name=data.get("brand_name") or "",
			follower_count=int(data.get("follower_count") or 0),
			like_count=int(data.get("like_count") or 0),
			comment_count=int(data.get("comment_count") or 0),
			view_count=int(data.get("view_count") or 0),
			tags=sorted(set(data.get("tags") or ())),
			topics=sorted(set(data.get("topics") or ())),
			language=data.get("language") or None,
			is_verified=bool(data.get("is_verified")),
			is_published=bool(data.get("is_published")),
			published_at=data.get("published_at"),
			attributes=dict(data.get("attributes") or {}),
		)


@dataclass(slots=True, frozen=True)
class CursorState:
	"""Last ``(updated_at, id)`` sort key of the previous page."""

	updated_at: datetime
	row_id: int


@dataclass(slots=True)
class SearchRequest:
	"""A normalized search request."""

	q: str
	entity_type: Optional[str] = None
	language: Optional[str] = None
	brand_name: Optional[str] = None
	is_verified: Optional[bool] = None
	is_published: Optional[bool] = None
	limit: Optional[int] = None
	cursor: Optional[str] = None

	def filters(self) -> dict[str, Any]:
		"""Equality filters that are set, in a stable order."""
		values = {
			"entity_type": self.entity_type,
			"language": self.language,
			"brand_name": self.brand_name,
			"is_verified": self.is_verified,
			"is_published": self.is_published,
		}
		return {key: value for key, value in values.items() if value is not None}


@dataclass(slots=True)
class BuiltQuery:
	sql: str
	params: list[Any]
	limit: int


@dataclass(slots=True)
class SearchOutcome:
	"""One page of results plus how it was served."""

	results: list[dict[str, Any]]
	next_cursor: Optional[str]
	cached: bool
	latency_ms: float
