"""Tests for the in-memory crawl registry."""
import re
import threading
import time

from conftest import FakeCrawler
from superschema.crawl_jobs import (
	STATUS_COMPLETED,
	STATUS_FAILED,
	STATUS_IN_PROGRESS,
	CrawlRegistry,
	CrawlResult,
	new_crawl_id,
)
from superschema.errors import CrawlBlockedError


class Clock:
	def __init__(self, start: float = 1_700_000_000.0):
		self.value = start

	def __call__(self) -> float:
		return self.value


def test_new_crawl_id_format():
	crawl_id = new_crawl_id(1_700_000_000.123)
	assert re.fullmatch(r"crawl_1700000000123_[a-z0-9]{9}", crawl_id)


def test_start_waits_for_completion_of_small_crawls():
	registry = CrawlRegistry(crawler_factory=FakeCrawler, initial_wait=5, poll_interval=0.01)
	snapshot = registry.start("coffeelab.test", user_id="user_1")

	assert snapshot["status"] == STATUS_COMPLETED
	assert snapshot["total_found"] == 3
	assert snapshot["has_more"] is False
	assert snapshot["urls"][0]["url"] == "https://coffeelab.test/"
	assert registry.get(snapshot["crawl_id"]).user_id == "user_1"


class GatedCrawler(FakeCrawler):
	"""Yields the first URL straight away, the rest once the gate opens."""

	def __init__(self, gate: threading.Event, first: int = 1):
		super().__init__()
		self.gate = gate
		self.first = first

	def discover_urls(self, domain: str):
		for index, discovered in enumerate(super().discover_urls(domain)):
			if index == self.first:
				self.gate.wait(5)
			yield discovered


def test_start_returns_initial_batch_while_crawl_continues():
	gate = threading.Event()
	registry = CrawlRegistry(crawler_factory=lambda: GatedCrawler(gate), initial_batch=1, initial_wait=5, poll_interval=0.01)
	try:
		snapshot = registry.start("coffeelab.test")

		assert snapshot["status"] == STATUS_IN_PROGRESS
		assert snapshot["has_more"] is True
		assert snapshot["total_found"] == 1
		assert [u["url"] for u in snapshot["urls"]] == ["https://coffeelab.test/"]
	finally:
		gate.set()

	result = registry.get(snapshot["crawl_id"])
	deadline = time.monotonic() + 2
	while result.status == STATUS_IN_PROGRESS and time.monotonic() < deadline:
		time.sleep(0.01)
	final = result.snapshot()
	assert final["status"] == STATUS_COMPLETED
	assert final["total_found"] == len(final["urls"]) == 3


def test_start_gives_up_waiting_after_initial_wait():
	gate = threading.Event()
	registry = CrawlRegistry(crawler_factory=lambda: GatedCrawler(gate), initial_batch=20, initial_wait=0.3, poll_interval=0.01)
	try:
		started = time.monotonic()
		snapshot = registry.start("coffeelab.test")
		elapsed = time.monotonic() - started

		assert snapshot["status"] == STATUS_IN_PROGRESS
		assert snapshot["has_more"] is True
		assert snapshot["total_found"] == len(snapshot["urls"]) == 1
		assert elapsed < 2
	finally:
		gate.set()


def test_failed_crawl_records_error():
	registry = CrawlRegistry(
		crawler_factory=lambda: FakeCrawler(error=CrawlBlockedError("Domain blocks automated crawling via robots.txt")),
		initial_wait=5,
		poll_interval=0.01,
	)
	snapshot = registry.start("blocked.test")

	assert snapshot["status"] == STATUS_FAILED
	assert "robots.txt" in snapshot["error"]
	assert snapshot["has_more"] is False


def test_find_cached_respects_ttl():
	clock = Clock()
	registry = CrawlRegistry(crawler_factory=FakeCrawler, initial_wait=5, poll_interval=0.01, ttl=100, now=clock)
	snapshot = registry.start("coffeelab.test")

	cached = registry.find_cached("coffeelab.test")
	assert cached is not None
	assert cached.crawl_id == snapshot["crawl_id"]
	assert cached.snapshot(cached=True)["cached"] is True
	assert registry.find_cached("other.test") is None

	clock.value += 101
	assert registry.find_cached("coffeelab.test") is None


def test_find_cached_ignores_in_progress_results():
	registry = CrawlRegistry(crawler_factory=FakeCrawler)
	registry._results["c1"] = CrawlResult(crawl_id="c1", domain="coffeelab.test")

	assert registry.find_cached("coffeelab.test") is None


def test_sweep_removes_expired_results():
	clock = Clock()
	registry = CrawlRegistry(crawler_factory=FakeCrawler, initial_wait=5, poll_interval=0.01, ttl=100, now=clock)
	registry.start("coffeelab.test")
	registry.start("example.test")
	assert len(registry) == 2

	assert registry.sweep() == 0
	clock.value += 500
	assert registry.sweep() == 2
	assert len(registry) == 0


def test_sweeper_thread_starts_and_stops():
	registry = CrawlRegistry(crawler_factory=FakeCrawler, sweep_interval=0.01)
	registry.start_sweeper()
	assert registry._sweeper.is_alive()
	registry.stop_sweeper()
	assert registry._sweeper is None
