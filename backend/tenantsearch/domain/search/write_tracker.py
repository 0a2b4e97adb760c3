"""Read-your-write tracking.

Remembers, per acting user, which cache namespaces their recent writes
invalidated so their next searches skip the cache and see their own changes.
"""

from __future__ import annotations

import threading
import time
from typing import Callable

from tenantsearch.infra.periodic import PeriodicTask

WRITE_WINDOW_SECONDS = 300
PURGE_INTERVAL_SECONDS = 60.0


class WriteTracker:
	def __init__(
		self,
		*,
		window: float = WRITE_WINDOW_SECONDS,
		purge_interval: float = PURGE_INTERVAL_SECONDS,
		clock: Callable[[], float] = time.monotonic,
	) -> None:
		self.window = window
		self._clock = clock
		self._writes: dict[str, dict[str, float]] = {}
		self._lock = threading.Lock()
		self._purger = PeriodicTask(self.purge_expired, interval=purge_interval, name="write-tracker-purge")

	def start(self) -> None:
		self._purger.start()

	async def stop(self) -> None:
		await self._purger.stop()

	def track_write(self, user_id: str, namespace: str) -> None:
		now = self._clock()
		with self._lock:
			namespaces = self._writes.setdefault(user_id, {})
			namespaces[namespace] = now + self.window
			self._prune_user(user_id, now)

	def is_recent_write(self, user_id: str, namespace: str) -> bool:
		with self._lock:
			expires_at = self._writes.get(user_id, {}).get(namespace)
		return expires_at is not None and self._clock() <= expires_at

	def clear_user_writes(self, user_id: str) -> None:
		with self._lock:
			self._writes.pop(user_id, None)

	def purge_expired(self) -> int:
		"""Remove expired entries; returns how many namespaces were dropped."""
		now = self._clock()
		removed = 0
		with self._lock:
			for user_id in list(self._writes):
				removed += self._prune_user(user_id, now)
		return removed

	def tracked_users(self) -> list[str]:
		with self._lock:
			return list(self._writes)

	def _prune_user(self, user_id: str, now: float) -> int:
		namespaces = self._writes.get(user_id)
		if namespaces is None:
			return 0
		expired = [ns for ns, expires_at in namespaces.items() if now > expires_at]
		for ns in expired:
			del namespaces[ns]
		if not namespaces:
			del self._writes[user_id]
		return len(expired)


__all__ = ["WriteTracker", "WRITE_WINDOW_SECONDS"]
