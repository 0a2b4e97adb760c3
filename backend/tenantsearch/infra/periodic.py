"""Cancellable periodic background task."""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from typing import Awaitable, Callable, Optional, Union

logger = logging.getLogger(__name__)

TickCallable = Callable[[], Union[Awaitable[object], object]]


class PeriodicTask:
	"""Run ``func`` every ``interval`` seconds until :meth:`stop` is awaited."""

	def __init__(self, func: TickCallable, *, interval: float, name: str) -> None:
		self._func = func
		self.interval = interval
		self.name = name
		self._task: Optional[asyncio.Task] = None

	@property
	def running(self) -> bool:
		return self._task is not None and not self._task.done()

	def start(self) -> None:
		if self.running or self.interval <= 0:
			return
		self._task = asyncio.create_task(self._run(), name=self.name)

	async def stop(self) -> None:
		task = self._task
		self._task = None
		if task is None:
			return
		task.cancel()
		with suppress(asyncio.CancelledError):
			await task

	async def _run(self) -> None:
		while True:
			await asyncio.sleep(self.interval)
			try:
				result = self._func()
				if asyncio.iscoroutine(result):
					await result
			except asyncio.CancelledError:
				raise
			except Exception:
				logger.exception("periodic.tick_failed", extra={"task": self.name})
