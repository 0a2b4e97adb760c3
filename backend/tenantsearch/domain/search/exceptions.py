"""Custom exceptions for search and indexing operations."""

from __future__ import annotations

from typing import Sequence


class SearchError(Exception):
	"""Base class for errors that map onto an HTTP status."""

	def __init__(self, detail: str, *, status_code: int = 400) -> None:
		super().__init__(detail)
		self.detail = detail
		self.status_code = status_code


class MissingTenantError(SearchError):
	"""Raised when the tenant header is absent or not a positive integer."""

	def __init__(self) -> None:
		super().__init__("Missing x-tenant-id", status_code=400)


class MissingQueryError(SearchError):
	"""Raised when the search term is empty."""

	def __init__(self) -> None:
		super().__init__("Query parameter 'q' is required", status_code=400)


class DatabaseUnavailableError(SearchError):
	"""Raised when a scoped session cannot be opened."""

	def __init__(self, detail: str = "database_unavailable", *, status_code: int = 503) -> None:
		super().__init__(detail, status_code=status_code)


class CacheInvalidationError(SearchError):
	"""Raised when tenant-wide invalidation cannot reach the persistent tier."""

	def __init__(self, tenant_id: int) -> None:
		super().__init__("cache_invalidation_failed", status_code=502)
		self.tenant_id = tenant_id


class ReplicaSyncError(SearchError):
	"""Aggregate of per-replica failures raised after every replica was attempted."""

	def __init__(self, failures: Sequence[tuple[int, BaseException]]) -> None:
		super().__init__("replica_sync_failed", status_code=502)
		self.failures = list(failures)

	def __str__(self) -> str:
		parts = ", ".join(f"replica[{index}]: {exc!r}" for index, exc in self.failures)
		return f"{self.detail} ({parts})"


__all__ = [
	"CacheInvalidationError",
	"DatabaseUnavailableError",
	"MissingQueryError",
	"MissingTenantError",
	"ReplicaSyncError",
	"SearchError",
]
