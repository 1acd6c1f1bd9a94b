"""
URL discovery for a whole site.

Sitemaps first (robots.txt Sitemap lines, then the usual locations), then a
breadth-first crawl of same-origin links until the URL cap or the time box
is hit. Results are yielded as they are found so callers can show the first
batch while the crawl keeps going.
"""
import re
import time
import urllib.parse as urlparse
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, Iterator, List, Optional, Set
from urllib.robotparser import RobotFileParser

import requests

from .config import Config, ROBOTS_USER_AGENT, USER_AGENT_DEFAULT
from .errors import CrawlBlockedError
from .log import get_logger
from .scraper import fetch_text, iterate_links
from .urls import ensure_scheme, is_content_url, path_depth

logger = get_logger("site_crawler")

SITEMAP_TYPES = ["application/xml", "text/xml", "application/rss+xml", "text/plain"]
SITEMAP_PATHS = ["/sitemap.xml", "/sitemap_index.xml", "/sitemap-index.xml"]
MAX_SITEMAP_NESTING = 3


@dataclass
class DiscoveredUrl:
	url: str
	path: str
	depth: int
	discovered_at: datetime = field(default_factory=datetime.utcnow)
	title: Optional[str] = None

	def to_dict(self) -> Dict:
		return {
			"url": self.url,
			"path": self.path,
			"depth": self.depth,
			"discovered_at": self.discovered_at.isoformat(),
			"title": self.title,
		}


def parse_sitemap_for_urls(sitemap_xml: str) -> List[str]:
	return [m.group(1).strip() for m in re.finditer(r"<loc>\s*([^<]+?)\s*</loc>", sitemap_xml, re.IGNORECASE)]


class SiteCrawler:
	def __init__(
		self,
		session: Optional[requests.Session] = None,
		max_urls: Optional[int] = None,
		max_depth: Optional[int] = None,
		timeout: Optional[float] = None,
		request_timeout: int = 10,
		clock: Callable[[], float] = time.monotonic,
	):
		self.session = session or requests.Session()
		if hasattr(self.session, "headers"):
			self.session.headers.update({"User-Agent": USER_AGENT_DEFAULT})
		self.max_urls = max_urls or Config.CRAWL_MAX_URLS
		self.max_depth = Config.CRAWL_MAX_DEPTH if max_depth is None else max_depth
		self.timeout = timeout or Config.CRAWL_TIMEOUT_S
		self.request_timeout = request_timeout
		self.clock = clock
		self.visited: Set[str] = set()
		self._robots_text: Dict[str, Optional[str]] = {}

	def discover_urls(self, domain: str) -> Iterator[DiscoveredUrl]:
		self.visited = set()
		started = self.clock()
		base = self.normalize_domain(domain)
		logger.info(f"Starting URL discovery for {base}")

		if not self.respects_robots_txt(base):
			raise CrawlBlockedError("Domain blocks automated crawling via robots.txt")

		count = 0
		for url in self.parse_sitemap(base):
			if count >= self.max_urls:
				break
			if url in self.visited:
				continue
			self.visited.add(url)
			count += 1
			yield DiscoveredUrl(url=url, path=urlparse.urlparse(url).path or "/", depth=0)
		logger.info(f"Sitemap yielded {count} URLs")

		if count < self.max_urls and not self._timed_out(started):
			for item in self.crawl_recursively(base + "/", self.max_urls - count, started):
				count += 1
				yield item

		logger.info(f"URL discovery completed: {count} URLs for {base}")

	def _timed_out(self, started: float) -> bool:
		return self.clock() - started >= self.timeout

	def normalize_domain(self, domain: str) -> str:
		"""Origin for the domain, switching to www. when only that host has a sitemap."""
		parsed = urlparse.urlparse(ensure_scheme(domain))
		if not parsed.hostname or "." not in parsed.hostname:
			raise ValueError("Invalid domain format")
		base = f"{parsed.scheme}://{parsed.netloc}"
		if not parsed.hostname.startswith("www."):
			www = f"{parsed.scheme}://www.{parsed.netloc}"
			if self._sitemap_exists(www) and not self._sitemap_exists(base):
				logger.info(f"Using www version: {www}")
				return www
		return base

	def _sitemap_exists(self, origin: str) -> bool:
		try:
			resp = self.session.get(origin + "/sitemap.xml", timeout=3)
		except requests.RequestException:
			return False
		return resp.status_code == 200

	def _robots(self, origin: str) -> Optional[str]:
		if origin not in self._robots_text:
			text = None
			try:
				resp = self.session.get(origin + "/robots.txt", timeout=5)
				if resp.status_code == 200:
					text = resp.text
			except requests.RequestException:
				logger.debug(f"No robots.txt for {origin}")
			self._robots_text[origin] = text
		return self._robots_text[origin]

	def respects_robots_txt(self, origin: str) -> bool:
		text = self._robots(origin)
		if text is None:
			return True
		parser = RobotFileParser()
		parser.parse(text.splitlines())
		allowed = parser.can_fetch(ROBOTS_USER_AGENT, origin + "/")
		if not allowed:
			logger.warning(f"Crawling disallowed by robots.txt: {origin}")
		return allowed

	def sitemap_candidates(self, origin: str) -> List[str]:
		candidates: List[str] = []
		robots = self._robots(origin) or ""
		for line in robots.splitlines():
			if line.strip().lower().startswith("sitemap:"):
				candidates.append(line.split(":", 1)[1].strip())
		candidates.extend(origin + path for path in SITEMAP_PATHS)
		unique: List[str] = []
		for c in candidates:
			if c and c not in unique:
				unique.append(c)
		return unique

	def parse_sitemap(self, origin: str) -> List[str]:
		"""URLs from the first sitemap candidate that has any."""
		for candidate in self.sitemap_candidates(origin):
			urls = self._read_sitemap(candidate, 0)
			if urls:
				logger.info(f"Found {len(urls)} URLs in sitemap {candidate}")
				return urls[:self.max_urls]
		return []

	def _read_sitemap(self, sitemap_url: str, nesting: int) -> List[str]:
		text = fetch_text(sitemap_url, self.session, self.request_timeout, allowed_content_types=SITEMAP_TYPES)
		if not text:
			return []
		urls: List[str] = []
		if "<sitemapindex" in text:
			if nesting >= MAX_SITEMAP_NESTING:
				return []
			for child in parse_sitemap_for_urls(text):
				urls.extend(self._read_sitemap(child, nesting + 1))
				if len(urls) >= self.max_urls:
					break
		elif "<urlset" in text:
			urls = parse_sitemap_for_urls(text)
		return list(dict.fromkeys(urls))

	def crawl_recursively(self, start_url: str, limit: int, started: float) -> Iterator[DiscoveredUrl]:
		origin_parts = urlparse.urlparse(start_url)
		origin = f"{origin_parts.scheme}://{origin_parts.netloc}"
		queue = deque([start_url])
		count = 0

		while queue and count < limit:
			if self._timed_out(started):
				logger.warning("Crawl time box reached")
				break
			current = queue.popleft()
			if current in self.visited:
				continue
			self.visited.add(current)

			path = urlparse.urlparse(current).path or "/"
			depth = path_depth(path)
			if depth > self.max_depth:
				continue

			yield DiscoveredUrl(url=current, path=path, depth=depth)
			count += 1

			html = fetch_text(current, self.session, self.request_timeout, allowed_content_types=["text/html"])
			if not html:
				logger.warning(f"Failed to crawl {current}")
				continue
			for link in iterate_links(html, current):
				parsed = urlparse.urlparse(link)
				if f"{parsed.scheme}://{parsed.netloc}" != origin:
					continue
				clean = origin + (parsed.path or "/")
				if clean not in self.visited and is_content_url(clean):
					queue.append(clean)
