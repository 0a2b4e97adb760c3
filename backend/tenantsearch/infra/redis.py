"""Redis connection management.

Provides a stable proxy object so the cache layer keeps a single reference
while the underlying client is created lazily on first use.
"""

from __future__ import annotations

from typing import Optional

import redis.asyncio as redis

from tenantsearch.settings import settings


class RedisProxy:
	"""Lightweight proxy that forwards attribute access to an underlying Redis client."""

	def __init__(self, client: Optional[redis.Redis] = None):
		self._client = client

	@property
	def client(self) -> redis.Redis:
		if self._client is None:
			self._client = redis.from_url(settings.redis_url, decode_responses=True)
		return self._client

	async def close(self) -> None:
		if self._client is not None:
			await self._client.aclose()
			self._client = None

	def __getattr__(self, item):
		return getattr(self.client, item)


redis_client: RedisProxy = RedisProxy()
