"""
Pytest configuration and shared fixtures.

Provides an in-memory database, fake HTTP sessions, a fake LLM and scraper,
wired services and a Flask test client with a bearer-token helper.
"""
import base64
import copy
import json
from typing import Any, Dict, List, Optional

import pytest
import requests
from requests.structures import CaseInsensitiveDict

from superschema.app import create_app
from superschema.config import Config, FeatureFlags
from superschema.crawl_jobs import CrawlRegistry
from superschema.database import DatabaseManager
from superschema.export import ExportJobs
from superschema.scraper import ScrapeError, analyze_html
from superschema.services import build_services
from superschema.site_crawler import DiscoveredUrl


ARTICLE_HTML = """<!DOCTYPE html>
<html lang="en">
<head>
	<title>How to Brew Coffee</title>
	<meta name="description" content="A practical guide to brewing better coffee at home with simple tools.">
	<meta name="author" content="Ada Brewer">
	<meta property="og:site_name" content="Coffee Lab">
	<meta property="article:published_time" content="2024-03-05T10:00:00Z">
	<meta name="keywords" content="coffee, brewing, pour over">
	<script type="application/ld+json">{"@context": "https://schema.org", "@type": "WebSite", "name": "Coffee Lab"}</script>
</head>
<body>
	<p>Welcome to the lab.</p>
	<h1>How to Brew Coffee</h1>
	<p>Start with freshly ground beans and water just off the boil.</p>
	<h2>Equipment</h2>
	<ul><li>Kettle</li><li>Grinder</li></ul>
	<div class="faq">
		<dl>
			<dt>How much coffee per cup?</dt>
			<dd>Use about fifteen grams of coffee for every 250 ml of water.</dd>
		</dl>
	</div>
	<img src="/images/pour-over.jpg" alt="Pour over">
	<a href="/guides/espresso">Espresso guide</a>
	<a href="https://other.example.org/">Elsewhere</a>
	<a href="mailto:hello@coffeelab.test">Mail</a>
</body>
</html>
"""

ARTICLE_SCHEMA = {
	"@context": "https://schema.org",
	"@type": "Article",
	"headline": "How to Brew Coffee",
	"description": "A practical guide to brewing better coffee at home with simple tools and fresh beans.",
	"url": "https://coffeelab.test/guides/brew",
	"author": {"@type": "Person", "name": "Ada Brewer"},
	"datePublished": "2024-03-05T10:00:00Z",
	"keywords": ["coffee", "brewing"],
}


# Test markers
def pytest_configure(config):
	config.addinivalue_line("markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')")
	config.addinivalue_line("markers", "integration: marks tests as integration tests")


class FakeResponse:
	"""Just enough of requests.Response for the code under test."""

	def __init__(
		self,
		status_code: int = 200,
		text: str = "",
		json_data: Any = None,
		headers: Optional[Dict[str, str]] = None,
		reason: str = "OK",
	):
		self.status_code = status_code
		self._json = json_data
		self.text = json.dumps(json_data) if json_data is not None and not text else text
		self.content = self.text.encode("utf-8")
		self.headers = CaseInsensitiveDict(headers or {})
		self.encoding = "utf-8"
		self.apparent_encoding = "utf-8"
		self.reason = reason

	def json(self):
		if self._json is None:
			raise ValueError("No JSON body")
		return self._json


def html_response(html: str, status_code: int = 200) -> FakeResponse:
	return FakeResponse(status_code, html, headers={"content-type": "text/html; charset=utf-8"})


def xml_response(xml: str) -> FakeResponse:
	return FakeResponse(200, xml, headers={"content-type": "application/xml"})


class FakeSession:
	"""
	Routes requests to canned responses.

	routes maps a URL, or a (METHOD, URL) pair, to a FakeResponse, an
	exception instance to raise, or a callable taking (method, url, kwargs).
	Unknown URLs answer 404.
	"""

	def __init__(self, routes: Optional[Dict[Any, Any]] = None):
		self.routes: Dict[Any, Any] = dict(routes or {})
		self.calls: List[Dict[str, Any]] = []
		self.headers: Dict[str, str] = {}

	def request(self, method: str, url: str, **kwargs) -> FakeResponse:
		method = method.upper()
		self.calls.append({"method": method, "url": url, **kwargs})
		route = self.routes.get((method, url), self.routes.get(url))
		if route is None:
			return FakeResponse(404, "not found", headers={"content-type": "text/plain"}, reason="Not Found")
		if isinstance(route, Exception):
			raise route
		if callable(route):
			return route(method, url, kwargs)
		return route

	def get(self, url: str, **kwargs) -> FakeResponse:
		return self.request("GET", url, **kwargs)

	def head(self, url: str, **kwargs) -> FakeResponse:
		return self.request("HEAD", url, **kwargs)

	def post(self, url: str, **kwargs) -> FakeResponse:
		return self.request("POST", url, **kwargs)

	def put(self, url: str, **kwargs) -> FakeResponse:
		return self.request("PUT", url, **kwargs)

	def patch(self, url: str, **kwargs) -> FakeResponse:
		return self.request("PATCH", url, **kwargs)

	def calls_to(self, method: str, url: str) -> List[Dict[str, Any]]:
		return [c for c in self.calls if c["method"] == method and c["url"] == url]


class FakeLLM:
	"""Stands in for SchemaLLM: returns canned schemas and records calls."""

	def __init__(self, schemas: Optional[List[Dict[str, Any]]] = None):
		self.schemas = schemas if schemas is not None else [ARTICLE_SCHEMA]
		self.generate_calls: List[Any] = []
		self.refine_calls: List[Any] = []
		self.error: Optional[Exception] = None

	@property
	def configured(self) -> bool:
		return True

	def build_prompt(self, analysis, options=None):
		return "system prompt", f"user prompt for {analysis.url}"

	def generate_schemas(self, analysis, options=None):
		self.generate_calls.append((analysis.url, options))
		if self.error is not None:
			raise self.error
		return copy.deepcopy(self.schemas)

	def refine_schemas(self, schemas, url, metadata=None, refinement_count=1):
		self.refine_calls.append((url, refinement_count))
		refined = [dict(schemas[0], inLanguage="en", about={"@type": "Thing", "name": "Coffee"})] + list(schemas[1:])
		return refined, ["Added inLanguage", "Added about"]


class FakeScraper:
	"""PageScraper without the network: every URL serves ARTICLE_HTML."""

	def __init__(self, html: str = ARTICLE_HTML):
		self.html = html
		self.broken: List[str] = []
		self.blocked: List[str] = []

	def validate_url(self, url: str):
		if url in self.broken:
			return False, "URL returned HTTP 404"
		return True, None

	def scrape_url(self, url: str):
		if url in self.broken:
			raise ScrapeError(f"Could not fetch HTML content from {url}")
		return analyze_html(self.html, url)

	def check_crawler_access(self, url: str):
		blocked = url in self.blocked
		reasons = ["robots.txt restrictions"] if blocked else []
		return {"blocked": blocked, "reasons": reasons, "can_proceed": not blocked}


class FakeCrawler:
	"""SiteCrawler stand-in yielding a fixed list of URLs."""

	def __init__(self, urls: Optional[List[str]] = None, error: Optional[Exception] = None):
		self.urls = urls if urls is not None else [
			"https://coffeelab.test/",
			"https://coffeelab.test/guides/brew",
			"https://coffeelab.test/guides/espresso/",
		]
		self.error = error

	def discover_urls(self, domain: str):
		if self.error is not None:
			raise self.error
		for url in self.urls:
			path = url.split("coffeelab.test", 1)[-1] or "/"
			yield DiscoveredUrl(url=url, path=path, depth=len([s for s in path.split("/") if s]))


def make_token(user_id: str, **claims: Any) -> str:
	def encode(data: Dict[str, Any]) -> str:
		return base64.urlsafe_b64encode(json.dumps(data).encode("utf-8")).decode("ascii").rstrip("=")

	return f"{encode({'alg': 'RS256', 'typ': 'JWT'})}.{encode(dict(claims, sub=user_id))}.signature"


@pytest.fixture
def db():
	manager = DatabaseManager("sqlite://")
	manager.create_all()
	yield manager
	manager.close()


@pytest.fixture
def flags():
	return FeatureFlags(teams_enabled=False, team_invites_enabled=False, teams_beta_users=[], ga4_enabled=True)


@pytest.fixture
def team_flags():
	return FeatureFlags(teams_enabled=True, team_invites_enabled=True, teams_beta_users=[], ga4_enabled=True)


@pytest.fixture
def fake_llm():
	return FakeLLM()


@pytest.fixture
def fake_scraper():
	return FakeScraper()


@pytest.fixture
def services(db, flags, fake_llm, fake_scraper):
	svc = build_services(
		db=db,
		flags=flags,
		llm=fake_llm,
		scraper=fake_scraper,
		crawls=CrawlRegistry(crawler_factory=FakeCrawler, initial_wait=2.0, poll_interval=0.01),
		exports=ExportJobs(),
		skip_credit_check=False,
	)
	svc.generator.sleep = lambda seconds: None
	return svc


@pytest.fixture
def app(services):
	application = create_app(services=services)
	application.config["TESTING"] = True
	return application


@pytest.fixture
def client(app):
	return app.test_client()


@pytest.fixture
def auth_headers():
	def _headers(user_id: str = "user_1", **claims: Any) -> Dict[str, str]:
		claims.setdefault("email", f"{user_id}@example.test")
		return {"Authorization": f"Bearer {make_token(user_id, **claims)}"}
	return _headers


@pytest.fixture
def user(services):
	"""A provisioned user with the signup bonus."""
	return services.users.get_or_create("user_1", "user_1@example.test", first_name="Ada", last_name="Brewer")


@pytest.fixture
def no_network(monkeypatch):
	"""Fail loudly if code under test reaches for the real network."""
	def refuse(self, method, url, *args, **kwargs):
		raise AssertionError(f"Unexpected network call: {method} {url}")
	monkeypatch.setattr(requests.Session, "request", refuse)


TOKEN_KEY = "test-token-key-0123456789abcdef-0123456789"


@pytest.fixture(autouse=True)
def token_encryption_key(monkeypatch):
	"""Stored OAuth tokens are encrypted, so every test needs a key."""
	monkeypatch.setattr(Config, "HUBSPOT_ENCRYPTION_KEY", TOKEN_KEY)
	return TOKEN_KEY
