import asyncio

import pytest

from tenantsearch.domain.search.write_tracker import WriteTracker


class _Clock:
	def __init__(self) -> None:
		self.now = 0.0

	def __call__(self) -> float:
		return self.now


def test_recent_write_is_visible_within_window():
	clock = _Clock()
	tracker = WriteTracker(window=300, clock=clock)

	tracker.track_write("user-1", "search:tenant:1")

	assert tracker.is_recent_write("user-1", "search:tenant:1")
	assert not tracker.is_recent_write("user-1", "search:tenant:2")
	assert not tracker.is_recent_write("user-2", "search:tenant:1")

	clock.now = 300
	assert tracker.is_recent_write("user-1", "search:tenant:1")

	clock.now = 300.5
	assert not tracker.is_recent_write("user-1", "search:tenant:1")


def test_rewrite_extends_the_window():
	clock = _Clock()
	tracker = WriteTracker(window=300, clock=clock)
	tracker.track_write("user-1", "search:tenant:1")

	clock.now = 200
	tracker.track_write("user-1", "search:tenant:1")
	clock.now = 450

	assert tracker.is_recent_write("user-1", "search:tenant:1")


def test_tracking_prunes_the_users_expired_entries():
	clock = _Clock()
	tracker = WriteTracker(window=300, clock=clock)
	tracker.track_write("user-1", "search:tenant:1")

	clock.now = 400
	tracker.track_write("user-1", "search:tenant:2")

	assert tracker._writes["user-1"].keys() == {"search:tenant:2"}


def test_purge_drops_expired_entries_and_empty_users():
	clock = _Clock()
	tracker = WriteTracker(window=300, clock=clock)
	tracker.track_write("user-1", "search:tenant:1")
	clock.now = 100
	tracker.track_write("user-2", "search:tenant:1")
	tracker.track_write("user-2", "search:tenant:3")

	clock.now = 350

	assert tracker.purge_expired() == 1
	assert tracker.tracked_users() == ["user-2"]
	assert tracker.is_recent_write("user-2", "search:tenant:3")


def test_clear_user_writes():
	tracker = WriteTracker()
	tracker.track_write("user-1", "search:tenant:1")

	tracker.clear_user_writes("user-1")
	tracker.clear_user_writes("nobody")

	assert not tracker.is_recent_write("user-1", "search:tenant:1")
	assert tracker.tracked_users() == []


@pytest.mark.asyncio
async def test_background_purge_runs_until_stopped():
	clock = _Clock()
	tracker = WriteTracker(window=1, purge_interval=0.01, clock=clock)
	tracker.track_write("user-1", "search:tenant:1")
	clock.now = 10

	tracker.start()
	try:
		for _ in range(50):
			if not tracker.tracked_users():
				break
			await asyncio.sleep(0.01)
	finally:
		await tracker.stop()

	assert tracker.tracked_users() == []
