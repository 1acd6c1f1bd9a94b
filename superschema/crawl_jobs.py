"""
In-memory registry of URL discovery jobs.

Each job runs the site crawler on a daemon thread. Starting a job blocks
until the first batch of URLs is in (or a short wait elapses) so the caller
can show something right away, then the crawl carries on in the background.
Completed crawls are served from memory for a day and swept hourly.
"""
import random
import string
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from .log import get_logger
from .site_crawler import DiscoveredUrl, SiteCrawler

logger = get_logger("crawl_jobs")

STATUS_IN_PROGRESS = "in_progress"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"


def new_crawl_id(now: Optional[float] = None) -> str:
	millis = int((now if now is not None else time.time()) * 1000)
	suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
	return f"crawl_{millis}_{suffix}"


@dataclass
class CrawlResult:
	crawl_id: str
	domain: str
	user_id: Optional[str] = None
	urls: List[DiscoveredUrl] = field(default_factory=list)
	total_found: int = 0
	status: str = STATUS_IN_PROGRESS
	error: Optional[str] = None
	started_at: float = field(default_factory=time.time)
	_lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False, compare=False)

	def add(self, discovered: DiscoveredUrl) -> None:
		with self._lock:
			self.urls.append(discovered)
			self.total_found = len(self.urls)

	def finish(self, status: str, error: Optional[str] = None) -> None:
		with self._lock:
			self.status = status
			self.error = error

	@property
	def has_more(self) -> bool:
		return self.status == STATUS_IN_PROGRESS

	def snapshot(self, cached: bool = False) -> Dict:
		with self._lock:
			data = {
				"crawl_id": self.crawl_id,
				"domain": self.domain,
				"urls": [u.to_dict() for u in self.urls],
				"total_found": self.total_found,
				"status": self.status,
				"error": self.error,
				"has_more": self.has_more,
			}
		if cached:
			data["cached"] = True
		return data


class CrawlRegistry:
	def __init__(
		self,
		crawler_factory: Callable[[], SiteCrawler] = SiteCrawler,
		initial_batch: int = 20,
		initial_wait: float = 10.0,
		poll_interval: float = 0.1,
		ttl: float = 24 * 60 * 60,
		sweep_interval: float = 60 * 60,
		now: Callable[[], float] = time.time,
	):
		self.crawler_factory = crawler_factory
		self.initial_batch = initial_batch
		self.initial_wait = initial_wait
		self.poll_interval = poll_interval
		self.ttl = ttl
		self.sweep_interval = sweep_interval
		self.now = now
		self._results: Dict[str, CrawlResult] = {}
		self._lock = threading.Lock()
		self._sweeper: Optional[threading.Thread] = None
		self._stop = threading.Event()

	def start(self, domain: str, user_id: Optional[str] = None) -> Dict:
		"""Kick off discovery and return what is known after the initial wait."""
		started = self.now()
		result = CrawlResult(crawl_id=new_crawl_id(started), domain=domain, user_id=user_id, started_at=started)
		with self._lock:
			self._results[result.crawl_id] = result
		logger.info(f"Starting crawl {result.crawl_id} for {domain}")

		thread = threading.Thread(target=self._run, args=(result,), daemon=True)
		thread.start()

		deadline = time.monotonic() + self.initial_wait
		while result.total_found < self.initial_batch and result.status == STATUS_IN_PROGRESS:
			if time.monotonic() >= deadline:
				break
			time.sleep(self.poll_interval)

		return result.snapshot()

	def _run(self, result: CrawlResult) -> None:
		try:
			crawler = self.crawler_factory()
			for discovered in crawler.discover_urls(result.domain):
				result.add(discovered)
			result.finish(STATUS_COMPLETED)
			logger.info(f"Crawl {result.crawl_id} completed with {result.total_found} URLs")
		except Exception as exc:
			result.finish(STATUS_FAILED, str(exc) or exc.__class__.__name__)
			logger.error(f"Crawl {result.crawl_id} failed: {result.error}")

	def get(self, crawl_id: str) -> Optional[CrawlResult]:
		with self._lock:
			return self._results.get(crawl_id)

	def find_cached(self, domain: str) -> Optional[CrawlResult]:
		"""Most recent completed crawl for the domain still inside the TTL."""
		current = self.now()
		with self._lock:
			candidates = [
				r for r in self._results.values()
				if r.domain == domain and r.status == STATUS_COMPLETED and current - r.started_at < self.ttl
			]
		if not candidates:
			return None
		return max(candidates, key=lambda r: r.started_at)

	def sweep(self) -> int:
		current = self.now()
		with self._lock:
			expired = [cid for cid, r in self._results.items() if current - r.started_at > self.ttl]
			for cid in expired:
				del self._results[cid]
		if expired:
			logger.info(f"Swept {len(expired)} expired crawl results")
		return len(expired)

	def start_sweeper(self) -> None:
		if self._sweeper and self._sweeper.is_alive():
			return
		self._stop.clear()

		def loop():
			while not self._stop.wait(self.sweep_interval):
				self.sweep()

		self._sweeper = threading.Thread(target=loop, daemon=True, name="crawl-sweeper")
		self._sweeper.start()

	def stop_sweeper(self) -> None:
		self._stop.set()
		if self._sweeper:
			self._sweeper.join(timeout=1)
		self._sweeper = None

	def __len__(self) -> int:
		with self._lock:
			return len(self._results)
