"""
Page content analysis.

Fetches a page with requests and turns the HTML into a ContentAnalysis: full
visible text (hidden FAQ / accordion copy included), a structured outline for
the LLM, existing JSON-LD, article metadata and images. Also hosts the crawler
access checks and the optional playwright screenshot.
"""
import base64
import html as ihtml
import json
import re
import time
import urllib.parse as urlparse
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Tuple
from urllib.robotparser import RobotFileParser

import requests
from bs4 import BeautifulSoup

from .config import Config, USER_AGENT_DEFAULT
from .log import get_logger
from .urls import is_navigable_link, normalize_url

logger = get_logger("scraper")

HEADING_TAGS = ["h1", "h2", "h3", "h4", "h5", "h6"]
HTML_TYPES = ["text/html", "application/xhtml+xml"]
ROBOTS_HEADER_DIRECTIVES = ["noindex", "nofollow", "none", "noarchive"]
ROBOTS_META_DIRECTIVES = ["noindex", "nofollow", "none"]
ROBOTS_META_NAMES = ["robots", "googlebot", "bingbot"]
MAX_TEXT_CHARS = 2500000


@dataclass
class ContentAnalysis:
	url: str
	title: str
	description: str = ""
	text: str = ""
	outline: Dict[str, Any] = field(default_factory=dict)
	headings: List[Dict[str, Any]] = field(default_factory=list)
	existing_schemas: List[Dict[str, Any]] = field(default_factory=list)
	author: Optional[Dict[str, Any]] = None
	publish_date: Optional[str] = None
	modified_date: Optional[str] = None
	article_section: Optional[str] = None
	site_name: Optional[str] = None
	keywords: List[str] = field(default_factory=list)
	language: str = "en"
	canonical_url: Optional[str] = None
	images: List[str] = field(default_factory=list)
	word_count: int = 0
	screenshot_b64: Optional[str] = None

	def to_dict(self, include_text: bool = False) -> Dict[str, Any]:
		data = asdict(self)
		data.pop("screenshot_b64", None)
		if not include_text:
			data.pop("text", None)
			data.pop("outline", None)
		return data


def fetch_text(
	url: str,
	session: requests.Session,
	timeout: int,
	rate_limit: float = 0.0,
	allowed_content_types: Optional[List[str]] = None,
) -> Optional[str]:
	try:
		resp = session.get(url, timeout=timeout)
		if rate_limit > 0:
			time.sleep(rate_limit)
		if resp.status_code >= 400:
			logger.warning(f"HTTP {resp.status_code}: {url}")
			return None
		if allowed_content_types:
			content_type = resp.headers.get("content-type", "")
			if not any(t in content_type for t in allowed_content_types):
				logger.warning(f"Unexpected content-type {content_type}: {url}")
				return None
		# requests falls back to latin-1 when the header has no charset
		if not resp.encoding or resp.encoding.lower() == "iso-8859-1":
			resp.encoding = resp.apparent_encoding or "utf-8"
		return resp.text
	except requests.RequestException as exc:
		logger.warning(f"Request failed {url}: {exc}")
		return None


def _definition_pairs(dl) -> List[str]:
	lines: List[str] = []
	terms = dl.find_all("dt", recursive=False)
	answers = dl.find_all("dd", recursive=False)
	for i, dt in enumerate(terms):
		question = dt.get_text(" ", strip=True)
		if question:
			lines.append(f"Q: {question}")
		if i < len(answers):
			answer = answers[i].get_text(" ", strip=True)
			if answer:
				lines.append(f"A: {answer}")
	return lines


FAQ_CLASS_PATTERN = re.compile(r"faq|accordion|question|answer|collapse|expandable|toggle|panel", re.I)


def extract_hidden_and_faq_content(soup: BeautifulSoup) -> str:
	"""Collect FAQ and collapsed content that CSS may hide from a visual reader."""
	chunks: List[str] = []
	seen = set()

	def keep(text: str, min_len: int = 10) -> None:
		if text and len(text) > min_len and text not in seen:
			seen.add(text)
			chunks.append(text)

	for dl in soup.find_all("dl"):
		keep("\n".join(_definition_pairs(dl)), 0)

	for elem in soup.find_all(class_=FAQ_CLASS_PATTERN):
		keep(elem.get_text(" ", strip=True))

	for elem in soup.find_all(attrs={"data-content": True}):
		keep(elem.get("data-content", "").strip(), 0)

	for elem in soup.find_all(attrs={"aria-hidden": "false"}):
		keep(elem.get_text(" ", strip=True), 0)

	for elem in soup.find_all(["div", "section", "article"]):
		marker = (elem.get("id") or "").lower() + " " + " ".join(elem.get("class") or []).lower()
		if any(term in marker for term in ["faq", "question", "answer", "q-and-a"]):
			keep(elem.get_text(" ", strip=True), 20)

	return "\n\n".join(chunks)


def extract_visible_text_full(html: str, url: str) -> Tuple[str, str]:
	"""Return (title, full_text) for the page, scripts and styles excluded."""
	soup = BeautifulSoup(html, "lxml")
	title_tag = soup.find("title")
	title = title_tag.get_text(strip=True) if title_tag else url
	for tag in soup(["script", "style", "noscript"]):
		tag.decompose()

	text = soup.get_text("\n", strip=True)

	hidden = extract_hidden_and_faq_content(soup)
	if hidden:
		lowered = text.lower()
		long_lines = [line.strip() for line in hidden.split("\n") if len(line.strip()) > 30]
		if any(line.lower() not in lowered for line in long_lines[:10]):
			text += "\n\n" + hidden

	text = ihtml.unescape(text)
	text = re.sub(r"\r\n?", "\n", text)
	text = re.sub(r"\n{3,}", "\n\n", text)
	return title[:280] or url, text[:MAX_TEXT_CHARS]


def _heading_level(name: Optional[str]) -> int:
	if name and len(name) == 2 and name[0] == "h" and name[1].isdigit():
		return int(name[1])
	return 7


def _block_text(node) -> str:
	"""Readable text for one block: lists as '- ' items, tables as pipe rows, dl as Q/A."""
	name = getattr(node, "name", None)
	if not name:
		return str(node).strip()
	name = name.lower()
	if name in ("script", "style", "noscript"):
		return ""
	if name == "dl":
		return "\n".join(_definition_pairs(node))
	if name in ("dt", "dd", "p", "blockquote", "pre", "code"):
		return node.get_text(" ", strip=True)
	if name in ("ul", "ol"):
		return "\n".join("- " + li.get_text(" ", strip=True) for li in node.find_all("li", recursive=False))
	if name == "table":
		rows = []
		for tr in node.find_all("tr"):
			cells = [c.get_text(" ", strip=True) for c in tr.find_all(["th", "td"])]
			if cells:
				rows.append(" | ".join(cells))
		return "\n".join(rows)
	if name == "img":
		alt = node.get("alt") or ""
		return f"[image: {alt}]" if alt else ""
	parts = [_block_text(child) for child in node.children]
	return "\n".join(p for p in parts if p)


def _join_blocks(nodes) -> str:
	texts = [_block_text(n) for n in nodes]
	return "\n".join(t for t in texts if t and t.strip())


def build_structured_outline(html: str) -> Dict[str, Any]:
	"""Meta tags, headings and heading-delimited sections of a page."""
	soup = BeautifulSoup(html, "lxml")

	meta: Dict[str, str] = {}
	title = soup.find("title")
	if title:
		meta["title"] = title.get_text(strip=True)
	for name in ["description", "keywords"]:
		tag = soup.find("meta", attrs={"name": name})
		if tag and tag.get("content"):
			meta[name] = tag["content"].strip()
	for prop in [
		"og:title", "og:description", "og:type", "og:url", "og:image", "og:site_name",
		"twitter:title", "twitter:description", "twitter:image",
	]:
		tag = soup.find("meta", attrs={"property": prop}) or soup.find("meta", attrs={"name": prop})
		if tag and tag.get("content"):
			meta[prop] = tag["content"].strip()

	heading_nodes = soup.find_all(HEADING_TAGS)
	headings = [
		{"tag": h.name, "level": _heading_level(h.name), "text": h.get_text(strip=True)}
		for h in heading_nodes
	]

	sections: List[Dict[str, Any]] = []
	if heading_nodes:
		intro = _join_blocks(reversed(list(heading_nodes[0].previous_siblings)))
		if intro.strip():
			sections.append({"heading": "Intro", "level": 0, "text": intro})

	for h in heading_nodes:
		level = _heading_level(h.name)
		body = []
		for sib in h.next_siblings:
			if getattr(sib, "name", None) in HEADING_TAGS and _heading_level(sib.name) <= level:
				break
			body.append(sib)
		sections.append({"heading": h.get_text(strip=True), "level": level, "text": _join_blocks(body)})

	if heading_nodes:
		outro = _join_blocks(heading_nodes[-1].next_siblings)
		if outro.strip():
			sections.append({"heading": "Outro", "level": 7, "text": outro})

	return {"meta": meta, "headings": headings, "sections": sections}


def iterate_links(html: str, base_url: str) -> List[str]:
	soup = BeautifulSoup(html, "html5lib")
	links: List[str] = []
	for a in soup.find_all("a"):
		href = a.get("href")
		if not is_navigable_link(href):
			continue
		norm = normalize_url(base_url, href)
		if norm:
			links.append(norm)
	return links


def extract_existing_jsonld(soup: BeautifulSoup) -> List[Dict[str, Any]]:
	found: List[Dict[str, Any]] = []
	for script in soup.find_all("script", attrs={"type": "application/ld+json"}):
		raw = script.string or script.get_text()
		if not raw or not raw.strip():
			continue
		try:
			data = json.loads(raw)
		except ValueError:
			logger.debug("Skipping unparseable JSON-LD block")
			continue
		if isinstance(data, list):
			found.extend(item for item in data if isinstance(item, dict))
		elif isinstance(data, dict):
			found.append(data)
	return found


def _meta_content(soup: BeautifulSoup, **attrs) -> Optional[str]:
	tag = soup.find("meta", attrs=attrs)
	if tag and tag.get("content"):
		return tag["content"].strip()
	return None


def _extract_author(soup: BeautifulSoup) -> Optional[Dict[str, Any]]:
	name = _meta_content(soup, name="author")
	if not name:
		for selector in ['[rel="author"]', ".author", '[itemprop="author"]']:
			node = soup.select_one(selector)
			if node and node.get_text(strip=True):
				name = node.get_text(strip=True)
				break
	if not name:
		return None
	link = soup.select_one('a[rel="author"]')
	job = soup.select_one('[itemprop="jobTitle"]')
	return {
		"name": name,
		"url": link.get("href") if link else None,
		"jobTitle": job.get_text(strip=True) if job else None,
	}


def _extract_date(soup: BeautifulSoup, meta_props: List[str], itemprop: str) -> Optional[str]:
	for prop in meta_props:
		value = _meta_content(soup, property=prop) or _meta_content(soup, name=prop)
		if value:
			return value
	node = soup.find(attrs={"itemprop": itemprop})
	if node:
		return node.get("datetime") or node.get("content") or node.get_text(strip=True) or None
	if itemprop == "datePublished":
		time_tag = soup.find("time", attrs={"datetime": True})
		if time_tag:
			return time_tag["datetime"]
	return None


def _extract_images(soup: BeautifulSoup, base_url: str, limit: int = 20) -> List[str]:
	images: List[str] = []
	og_image = _meta_content(soup, property="og:image")
	if og_image:
		images.append(normalize_url(base_url, og_image) or og_image)
	for img in soup.find_all("img"):
		src = img.get("src") or img.get("data-src")
		if not src or src.startswith("data:"):
			continue
		absolute = normalize_url(base_url, src)
		if absolute and absolute not in images:
			images.append(absolute)
		if len(images) >= limit:
			break
	return images


def analyze_html(html: str, url: str) -> ContentAnalysis:
	"""Build the ContentAnalysis for already-fetched HTML."""
	title, text = extract_visible_text_full(html, url)
	outline = build_structured_outline(html)
	soup = BeautifulSoup(html, "lxml")

	html_tag = soup.find("html")
	language = (html_tag.get("lang") if html_tag else None) or _meta_content(soup, property="og:locale") or "en"
	canonical = soup.find("link", attrs={"rel": "canonical"})
	keywords_raw = _meta_content(soup, name="keywords") or ""

	return ContentAnalysis(
		url=url,
		title=title,
		description=_meta_content(soup, name="description") or _meta_content(soup, property="og:description") or "",
		text=text,
		outline=outline,
		headings=outline["headings"],
		existing_schemas=extract_existing_jsonld(soup),
		author=_extract_author(soup),
		publish_date=_extract_date(soup, ["article:published_time", "date"], "datePublished"),
		modified_date=_extract_date(soup, ["article:modified_time"], "dateModified"),
		article_section=_meta_content(soup, property="article:section"),
		site_name=_meta_content(soup, property="og:site_name"),
		keywords=[k.strip() for k in keywords_raw.split(",") if k.strip()],
		language=language,
		canonical_url=canonical.get("href") if canonical else None,
		images=_extract_images(soup, url),
		word_count=len(text.split()),
	)


class ScrapeError(Exception):
	pass


class PageScraper:
	"""Fetches and analyses single pages for schema generation."""

	def __init__(
		self,
		session: Optional[requests.Session] = None,
		timeout: Optional[int] = None,
		use_vision: Optional[bool] = None,
	):
		self.session = session or requests.Session()
		self.session.headers.update({"User-Agent": USER_AGENT_DEFAULT})
		self.timeout = timeout or Config.REQUEST_TIMEOUT_S
		self.use_vision = Config.USE_VISION if use_vision is None else use_vision

	def scrape_url(self, url: str) -> ContentAnalysis:
		html = fetch_text(url, self.session, self.timeout, allowed_content_types=HTML_TYPES)
		if not html:
			raise ScrapeError(f"Could not fetch HTML content from {url}")
		analysis = analyze_html(html, url)
		logger.info(f"Scraped {url}: {analysis.word_count} words, {len(analysis.outline.get('sections', []))} sections")
		if self.use_vision:
			analysis.screenshot_b64 = capture_screenshot(url, self.timeout)
		return analysis

	def validate_url(self, url: str) -> Tuple[bool, Optional[str]]:
		"""Check a URL is reachable and serves HTML."""
		parsed = urlparse.urlparse(url)
		if parsed.scheme not in ("http", "https") or not parsed.netloc:
			return False, "URL must use http or https"
		try:
			resp = self.session.get(url, timeout=self.timeout)
		except requests.RequestException as exc:
			return False, f"URL is not accessible: {exc}"
		if resp.status_code >= 400:
			return False, f"URL returned HTTP {resp.status_code}"
		content_type = resp.headers.get("content-type", "")
		if content_type and not any(t in content_type for t in HTML_TYPES):
			return False, f"URL does not serve an HTML page ({content_type})"
		return True, None

	def check_crawler_access(self, url: str) -> Dict[str, Any]:
		"""Report robots directives that ask crawlers to stay away. Failed checks never block."""
		reasons: List[str] = []
		reasons.extend(self._x_robots_reasons(url))
		reasons.extend(self._robots_txt_reasons(url))
		reasons.extend(self._meta_robots_reasons(url))
		blocked = len(reasons) > 0
		return {"blocked": blocked, "reasons": reasons, "can_proceed": not blocked}

	def _x_robots_reasons(self, url: str) -> List[str]:
		try:
			resp = self.session.head(url, timeout=self.timeout, allow_redirects=True)
		except requests.RequestException as exc:
			logger.debug(f"X-Robots-Tag check failed for {url}: {exc}")
			return []
		header = (resp.headers.get("x-robots-tag") or "").lower()
		return [f"X-Robots-Tag header ({d})" for d in ROBOTS_HEADER_DIRECTIVES if d in header]

	def _robots_txt_reasons(self, url: str) -> List[str]:
		parsed = urlparse.urlparse(url)
		robots_url = f"{parsed.scheme}://{parsed.netloc}/robots.txt"
		try:
			resp = self.session.get(robots_url, timeout=self.timeout)
		except requests.RequestException as exc:
			logger.debug(f"robots.txt check failed for {url}: {exc}")
			return []
		if resp.status_code != 200:
			return []
		parser = RobotFileParser()
		parser.parse(resp.text.splitlines())
		if not parser.can_fetch("*", url):
			return ["robots.txt restrictions"]
		return []

	def _meta_robots_reasons(self, url: str) -> List[str]:
		html = fetch_text(url, self.session, self.timeout)
		if not html:
			return []
		soup = BeautifulSoup(html, "lxml")
		reasons: List[str] = []
		for name in ROBOTS_META_NAMES:
			content = (_meta_content(soup, name=name) or "").lower()
			for directive in ROBOTS_META_DIRECTIVES:
				if directive in content:
					reasons.append(f"Meta robots tag ({name}: {directive})")
		return reasons


def capture_screenshot(url: str, timeout: int = 30) -> Optional[str]:
	"""Full-page JPEG screenshot as base64, or None when playwright is unavailable.

	Needs browser binaries: playwright install chromium --with-deps
	"""
	try:
		from playwright.sync_api import sync_playwright
	except ImportError:
		logger.warning("Playwright not installed. Install with: pip install playwright && playwright install chromium --with-deps")
		return None

	try:
		with sync_playwright() as p:
			browser = p.chromium.launch(
				headless=True,
				args=["--no-sandbox", "--disable-setuid-sandbox", "--disable-dev-shm-usage", "--disable-gpu"],
			)
			try:
				context = browser.new_context(viewport={"width": 1280, "height": 720}, user_agent=USER_AGENT_DEFAULT)
				page = context.new_page()
				page.goto(url, wait_until="networkidle", timeout=timeout * 1000)
				page.wait_for_timeout(1000)
				shot = page.screenshot(full_page=True, type="jpeg", quality=75)
			finally:
				browser.close()
		return base64.b64encode(shot).decode("utf-8")
	except Exception as exc:
		logger.warning(f"Screenshot capture failed for {url}: {exc}")
		return None
