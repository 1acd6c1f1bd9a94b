"""
Google Analytics 4 integration: AI referral traffic analytics.

Measures how often people arrive from AI chat interfaces (ChatGPT, Claude,
Gemini, ...) and turns it into an AI Visibility Score (0-100):
	diversity  0-40  unique AI platforms seen, full marks at 8
	coverage   0-40  share of active pages that received AI referrals
	volume     0-20  log10 scale of AI sessions, full marks at 1000

Page paths are filtered through per-domain exclusion patterns so login pages,
callbacks and static files do not dilute coverage.
"""
import base64
import json
import math
import re
import secrets
import time
import urllib.parse as urlparse
from collections import OrderedDict
from datetime import date, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

import requests
from sqlalchemy import select

from ..config import Config
from ..database import DatabaseManager
from ..errors import BadRequestError, ConflictError, IntegrationError, NotFoundError
from ..log import get_logger
from ..models import GA4Connection, GA4DomainMapping, GA4ExclusionPattern, utcnow

logger = get_logger("ga4")

AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
TOKEN_URL = "https://oauth2.googleapis.com/token"
REVOKE_URL = "https://oauth2.googleapis.com/revoke"
DATA_API = "https://analyticsdata.googleapis.com/v1beta"
ADMIN_API = "https://analyticsadmin.googleapis.com/v1beta"
REQUIRED_SCOPES = ["https://www.googleapis.com/auth/analytics.readonly"]
STATE_MAX_AGE_S = 10 * 60
REFRESH_BUFFER = timedelta(minutes=5)

PATTERN_TYPES = ("exact", "prefix", "suffix", "regex")
PATTERN_CATEGORIES = ("auth", "callback", "static", "admin", "api", "custom")

# Humans clicking through from AI chat interfaces; GA4 already drops bot crawlers
AI_REFERRER_PATTERNS: "OrderedDict[str, Tuple[str, ...]]" = OrderedDict([
	("ChatGPT", ("chat.openai.com", "chatgpt.com", "openai.com")),
	("Claude", ("claude.ai",)),
	("Gemini", ("gemini.google.com", "bard.google.com")),
	("Perplexity", ("perplexity.ai", "www.perplexity.ai")),
	("You.com", ("you.com",)),
	("Bing Copilot", ("copilot.microsoft.com", "bing.com/chat")),
	("Meta AI", ("meta.ai",)),
	("DuckDuckGo AI", ("duck.ai", "duckduckgo.com/?q=")),
])

MAX_PLATFORMS = 8
VOLUME_SATURATION_SESSIONS = 1000


def _rule(pattern: str, pattern_type: str, category: str, description: str) -> Dict[str, Any]:
	return {
		"pattern": pattern,
		"pattern_type": pattern_type,
		"category": category,
		"description": description,
		"is_active": True,
		"is_default": True,
	}


DEFAULT_EXCLUSION_PATTERNS: List[Dict[str, Any]] = [
	# Authentication
	_rule("/login", "prefix", "auth", "Login pages (e.g., /login, /login/sso)"),
	_rule("/signup", "prefix", "auth", "Signup/registration pages"),
	_rule("/register", "prefix", "auth", "Registration pages"),
	_rule("/logout", "prefix", "auth", "Logout pages"),
	_rule("/auth/", "prefix", "auth", "Auth flow pages (e.g., /auth/verify, /auth/reset)"),
	_rule("/account/", "prefix", "auth", "Account management pages"),
	_rule("/dashboard", "prefix", "auth", "Dashboard pages (typically auth-required)"),
	_rule("/settings", "prefix", "auth", "Settings pages (typically auth-required)"),
	_rule("/profile", "prefix", "auth", "User profile pages"),
	_rule("/library", "prefix", "auth", "Library/content management pages"),
	_rule("/generate", "prefix", "auth", "Content generation pages"),
	# OAuth callbacks
	_rule("/callback", "suffix", "callback", "OAuth callback endpoints"),
	_rule("/hubspot/callback", "exact", "callback", "HubSpot OAuth callback"),
	_rule("/ga4/callback", "exact", "callback", "Google Analytics 4 OAuth callback"),
	_rule("/oauth/", "prefix", "callback", "OAuth flow pages"),
	_rule("/auth/redirect", "prefix", "callback", "Auth redirect pages"),
	# Static files
	_rule(r"\.png$", "regex", "static", "PNG images"),
	_rule(r"\.jpg$", "regex", "static", "JPG images"),
	_rule(r"\.jpeg$", "regex", "static", "JPEG images"),
	_rule(r"\.gif$", "regex", "static", "GIF images"),
	_rule(r"\.svg$", "regex", "static", "SVG images"),
	_rule(r"\.webp$", "regex", "static", "WebP images"),
	_rule(r"\.ico$", "regex", "static", "Icon files"),
	_rule(r"\.css$", "regex", "static", "CSS stylesheets"),
	_rule(r"\.js$", "regex", "static", "JavaScript files"),
	_rule(r"\.woff$", "regex", "static", "WOFF font files"),
	_rule(r"\.woff2$", "regex", "static", "WOFF2 font files"),
	_rule(r"\.ttf$", "regex", "static", "TrueType font files"),
	_rule(r"\.eot$", "regex", "static", "EOT font files"),
	_rule(r"\.pdf$", "regex", "static", "PDF documents"),
	_rule(r"\.zip$", "regex", "static", "ZIP archives"),
	_rule(r"\.mp4$", "regex", "static", "MP4 videos"),
	_rule(r"\.mp3$", "regex", "static", "MP3 audio files"),
	_rule("/favicon.ico", "exact", "static", "Favicon file"),
	_rule("/robots.txt", "exact", "static", "Robots.txt file"),
	_rule("/sitemap.xml", "exact", "static", "Sitemap XML file"),
	_rule("/manifest.json", "exact", "static", "Web app manifest"),
	# Admin and API
	_rule("/admin/", "prefix", "admin", "Admin panel pages"),
	_rule("/api/", "prefix", "api", "API endpoints"),
	_rule("/graphql", "prefix", "api", "GraphQL endpoints"),
	# Temporary token URLs
	_rule("/team/join/[a-zA-Z0-9]{6,}", "regex", "custom", "Team invite links (temporary tokens)"),
	_rule("/verify/[a-zA-Z0-9-_]{20,}", "regex", "custom", "Email verification links (temporary tokens)"),
	_rule("/reset/[a-zA-Z0-9-_]{20,}", "regex", "custom", "Password reset links (temporary tokens)"),
	_rule("/share/[a-zA-Z0-9-_]{8,}", "regex", "custom", "Shareable links (temporary tokens)"),
]


def default_pattern_stats() -> Dict[str, int]:
	stats = {c: 0 for c in PATTERN_CATEGORIES}
	for rule in DEFAULT_EXCLUSION_PATTERNS:
		stats[rule["category"]] += 1
	return stats


def identify_ai_referrer(source: str, referrer: str) -> Optional[str]:
	"""Name of the AI platform a session came from, or None."""
	if not source and not referrer:
		return None
	source = (source or "").lower()
	referrer = (referrer or "").lower()
	for name, patterns in AI_REFERRER_PATTERNS.items():
		for pattern in patterns:
			if pattern in source or pattern in referrer:
				return name
	return None


def _normalize_domain(domain: str) -> str:
	if not domain:
		return ""
	domain = re.sub(r"^https?://", "", domain)
	domain = re.sub(r"^www\.", "", domain)
	return domain.rstrip("/").lower()


class PathFilter:
	"""Decides which GA4 page paths count towards a mapped domain."""

	def __init__(self, patterns: Iterable[Dict[str, Any]], domain: str):
		self.patterns = [p for p in patterns if p.get("is_active", True)]
		self.domain = _normalize_domain(domain)

	@staticmethod
	def _with_scheme(value: str) -> str:
		return value if value.startswith("http") else f"https://{value}"

	def _extract_domain(self, value: str) -> Optional[str]:
		if value.startswith("/"):
			return None
		host = urlparse.urlparse(self._with_scheme(value)).hostname
		return _normalize_domain(host) if host else None

	def matches_domain(self, path: str) -> bool:
		# Relative paths and undeterminable hosts belong to this domain
		path_domain = self._extract_domain(path)
		if not path_domain:
			return True
		return path_domain == self.domain or path_domain.endswith(f".{self.domain}")

	def should_exclude(self, path: str) -> bool:
		if not self.matches_domain(path):
			return True
		clean = path if path.startswith("/") else (urlparse.urlparse(self._with_scheme(path)).path or path)
		return any(self.matches_pattern(clean, p) for p in self.patterns)

	@staticmethod
	def matches_pattern(path: str, rule: Dict[str, Any]) -> bool:
		pattern = rule["pattern"]
		kind = rule["pattern_type"]
		if kind == "exact":
			return path == pattern
		if kind == "prefix":
			return path.startswith(pattern)
		if kind == "suffix":
			return path.endswith(pattern)
		if kind == "regex":
			try:
				return re.search(pattern, path) is not None
			except re.error:
				return False
		return False

	def stats(self) -> Dict[str, Any]:
		by_category = {c: 0 for c in PATTERN_CATEGORIES}
		by_type = {t: 0 for t in PATTERN_TYPES}
		for p in self.patterns:
			by_category[p["category"]] = by_category.get(p["category"], 0) + 1
			by_type[p["pattern_type"]] = by_type.get(p["pattern_type"], 0) + 1
		return {"total": len(self.patterns), "by_category": by_category, "by_type": by_type}

	@staticmethod
	def suggest_pattern(path: str, category: str) -> Dict[str, str]:
		"""Pattern to offer when a user ignores path as category."""
		ext_match = re.search(r"\.([a-z0-9]+)$", path, re.IGNORECASE)
		segments = [s for s in path.split("/") if s]

		if category == "static":
			if ext_match:
				ext = ext_match.group(1)
				return {"pattern": rf"\.{ext}$", "pattern_type": "regex", "description": f"{ext.upper()} files"}
			return {"pattern": path, "pattern_type": "exact", "description": f"Static file: {path}"}

		if category == "callback":
			if path.endswith("/callback"):
				return {"pattern": "/callback", "pattern_type": "suffix", "description": "OAuth callback endpoints"}
			return {"pattern": path, "pattern_type": "exact", "description": f"Callback: {path}"}

		if category in ("auth", "admin", "api"):
			label = category.capitalize()
			if segments:
				return {
					"pattern": f"/{segments[0]}",
					"pattern_type": "prefix",
					"description": f"{label} pages starting with /{segments[0]}",
				}
			return {"pattern": path, "pattern_type": "exact", "description": f"{label} page: {path}"}

		if category == "custom":
			if re.search(r"/[a-zA-Z0-9\-_]{8,}$", path):
				base = re.sub(r"/[a-zA-Z0-9\-_]+$", "", path)
				return {
					"pattern": f"{base}/[a-zA-Z0-9-_]{{6,}}$",
					"pattern_type": "regex",
					"description": f"Dynamic URLs like {path}",
				}
			return {"pattern": path, "pattern_type": "exact", "description": f"Custom exclusion: {path}"}

		return {"pattern": path, "pattern_type": "exact", "description": f"Excluded page: {path}"}

	@staticmethod
	def test_pattern(pattern: str, pattern_type: str, sample_paths: List[str]) -> Dict[str, List[str]]:
		rule = {"pattern": pattern, "pattern_type": pattern_type}
		matches: List[str] = []
		non_matches: List[str] = []
		for path in sample_paths:
			(matches if PathFilter.matches_pattern(path, rule) else non_matches).append(path)
		return {"matches": matches, "non_matches": non_matches}


# Metrics

def _ga4_date(value: str) -> str:
	if len(value) == 8 and value.isdigit():
		return f"{value[:4]}-{value[4:6]}-{value[6:]}"
	return value


def _dimension(row: Dict[str, Any], index: int) -> str:
	values = row.get("dimensionValues") or []
	return (values[index].get("value") or "") if index < len(values) else ""


def _metric(row: Dict[str, Any], index: int) -> int:
	values = row.get("metricValues") or []
	try:
		return int(values[index].get("value") or 0) if index < len(values) else 0
	except (TypeError, ValueError):
		return 0


def aggregate_ai_traffic(rows: List[Dict[str, Any]]) -> Tuple[Dict[str, Dict[str, Any]], Dict[str, Dict[str, Any]]]:
	"""Per-platform and per-page stats from rows of (date, source, path, referrer) x (sessions, views)."""
	platforms: Dict[str, Dict[str, Any]] = {}
	pages: Dict[str, Dict[str, Any]] = {}
	platform_pages: Dict[str, set] = {}
	page_platforms: Dict[str, set] = {}

	for row in rows:
		day = _ga4_date(_dimension(row, 0))
		name = identify_ai_referrer(_dimension(row, 1), _dimension(row, 3))
		if not name:
			continue
		path = _dimension(row, 2)
		sessions = _metric(row, 0)
		stats = platforms.setdefault(name, {"name": name, "sessions": 0, "page_views": 0, "unique_pages": 0})
		stats["sessions"] += sessions
		stats["page_views"] += _metric(row, 1)
		if not path:
			continue
		platform_pages.setdefault(name, set()).add(path)
		page = pages.setdefault(path, {"path": path, "crawler_count": 0, "crawlers": [], "sessions": 0, "last_crawled": day})
		page["sessions"] += sessions
		page_platforms.setdefault(path, set()).add(name)
		if day > page["last_crawled"]:
			page["last_crawled"] = day

	for name, seen in platform_pages.items():
		platforms[name]["unique_pages"] = len(seen)
	for path, seen in page_platforms.items():
		pages[path]["crawler_count"] = len(seen)
		pages[path]["crawlers"] = sorted(seen)
	return platforms, pages


def calculate_metrics(
	traffic_rows: List[Dict[str, Any]],
	page_paths: Iterable[str],
	path_filter: Optional[PathFilter] = None,
	date_range_start: Optional[date] = None,
	date_range_end: Optional[date] = None,
) -> Dict[str, Any]:
	"""
	AI visibility metrics for one property.

	traffic_rows are GA4 runReport rows with dimensions date, sessionSource,
	pagePath, pageReferrer and metrics sessions, screenPageViews. page_paths
	are every path with traffic in the period; excluded ones are counted as
	ignored and left out of coverage.
	"""
	raw_paths = {p for p in page_paths if p}
	if path_filter is not None:
		active_paths = {p for p in raw_paths if not path_filter.should_exclude(p)}
	else:
		active_paths = set(raw_paths)
	ignored = len(raw_paths) - len(active_paths)

	platforms, pages = aggregate_ai_traffic(traffic_rows)
	top_platforms = sorted(platforms.values(), key=lambda s: s["sessions"], reverse=True)
	crawler_list = list(platforms.keys())
	ai_pages = len(pages)
	total_sessions = sum(s["sessions"] for s in top_platforms)

	diversity = min(40.0, len(crawler_list) / MAX_PLATFORMS * 40)
	non_crawled = sorted(p for p in active_paths if p not in pages)
	active_total = ai_pages + len(non_crawled)
	coverage_pct = (ai_pages / active_total * 100) if active_total else 0.0
	coverage = min(40.0, coverage_pct / 100 * 40)
	volume = 0.0
	if total_sessions > 0:
		volume = min(20.0, math.log10(total_sessions + 1) / math.log10(VOLUME_SATURATION_SESSIONS) * 20)

	top_pages = sorted(pages.values(), key=lambda p: (-p["crawler_count"], -p["sessions"]))
	return {
		"ai_visibility_score": int(round(diversity + coverage + volume)),
		"ai_diversity_score": len(crawler_list),
		"coverage_percentage": round(coverage_pct, 2),
		"total_pages": ai_pages + ignored + len(non_crawled),
		"ai_crawled_pages": ai_pages,
		"ignored_pages_count": ignored,
		"crawler_list": crawler_list,
		"top_crawlers": top_platforms[:10],
		"top_pages": top_pages,
		"non_crawled_pages": non_crawled,
		"date_range_start": date_range_start.isoformat() if date_range_start else None,
		"date_range_end": date_range_end.isoformat() if date_range_end else None,
		"score_breakdown": {
			"diversity_points": int(round(diversity)),
			"coverage_points": int(round(coverage)),
			"volume_points": int(round(volume)),
			"total_ai_sessions": total_sessions,
		},
	}


# Google APIs

def _google_error(resp: requests.Response) -> str:
	try:
		body = resp.json()
	except ValueError:
		return resp.reason or str(resp.status_code)
	err = body.get("error")
	if isinstance(err, dict):
		return err.get("message") or str(resp.status_code)
	return body.get("error_description") or err or str(resp.status_code)


class GA4Client:
	"""Analytics Data and Admin APIs over REST with a bearer token."""

	def __init__(self, access_token: str, session: Optional[requests.Session] = None, timeout: int = 30):
		self.access_token = access_token
		self.session = session or requests.Session()
		self.timeout = timeout

	def _call(self, method: str, url: str, **kwargs) -> Dict[str, Any]:
		headers = {"Authorization": f"Bearer {self.access_token}"}
		try:
			resp = self.session.request(method, url, headers=headers, timeout=self.timeout, **kwargs)
		except requests.RequestException as e:
			raise IntegrationError(f"Google Analytics request failed: {e}")
		if resp.status_code >= 400:
			raise IntegrationError(f"Google Analytics request failed: {_google_error(resp)}")
		return resp.json()

	def run_report(
		self,
		property_id: str,
		dimensions: List[str],
		metrics: List[str],
		start_date: date,
		end_date: date,
		limit: int = 10000,
	) -> List[Dict[str, Any]]:
		body = {
			"dateRanges": [{"startDate": start_date.isoformat(), "endDate": end_date.isoformat()}],
			"dimensions": [{"name": d} for d in dimensions],
			"metrics": [{"name": m} for m in metrics],
			"limit": limit,
		}
		data = self._call("POST", f"{DATA_API}/properties/{property_id}:runReport", json=body)
		return data.get("rows") or []

	def list_properties(self) -> List[Dict[str, str]]:
		properties: List[Dict[str, str]] = []
		for account in self._call("GET", f"{ADMIN_API}/accounts").get("accounts") or []:
			name = account.get("name")
			if not name:
				continue
			try:
				data = self._call("GET", f"{ADMIN_API}/properties", params={"filter": f"parent:{name}"})
			except IntegrationError as e:
				logger.warning(f"Could not list properties for {name}: {e.message}")
				continue
			for prop in data.get("properties") or []:
				if prop.get("name"):
					prop_id = prop["name"].split("/")[1]
					properties.append({"id": prop_id, "name": prop.get("displayName") or prop_id})
		return properties


class GA4OAuth:
	def __init__(
		self,
		db: DatabaseManager,
		session: Optional[requests.Session] = None,
		client_id: Optional[str] = None,
		client_secret: Optional[str] = None,
		redirect_uri: Optional[str] = None,
		now: Callable = utcnow,
		clock: Callable[[], float] = time.time,
	):
		self.db = db
		self.session = session or requests.Session()
		self.client_id = client_id if client_id is not None else Config.GOOGLE_CLIENT_ID
		self.client_secret = client_secret if client_secret is not None else Config.GOOGLE_CLIENT_SECRET
		self.redirect_uri = redirect_uri or Config.GOOGLE_REDIRECT_URI
		self.now = now
		self.clock = clock

	def generate_state(self, user_id: str) -> str:
		payload = json.dumps({"user_id": user_id, "token": secrets.token_urlsafe(32), "timestamp": int(self.clock() * 1000)})
		return base64.urlsafe_b64encode(payload.encode("utf-8")).decode("ascii").rstrip("=")

	def decode_state(self, state: str) -> str:
		"""User id carried in state; rejects malformed or stale (over 10 minutes) values."""
		try:
			padded = state + "=" * (-len(state) % 4)
			data = json.loads(base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8"))
			age_s = self.clock() - data["timestamp"] / 1000.0
			user_id = data["user_id"]
		except (ValueError, KeyError, TypeError) as e:
			raise BadRequestError("Invalid state parameter") from e
		if age_s > STATE_MAX_AGE_S:
			raise BadRequestError("Invalid state parameter")
		return user_id

	def authorize_url(self, user_id: str) -> str:
		query = urlparse.urlencode({
			"client_id": self.client_id,
			"redirect_uri": self.redirect_uri,
			"response_type": "code",
			"scope": " ".join(REQUIRED_SCOPES),
			"access_type": "offline",
			"prompt": "consent",
			"include_granted_scopes": "true",
			"state": self.generate_state(user_id),
		})
		return f"{AUTH_URL}?{query}"

	def _token_request(self, data: Dict[str, str]) -> requests.Response:
		data = dict(data, client_id=self.client_id, client_secret=self.client_secret)
		try:
			return self.session.post(TOKEN_URL, data=data, timeout=15)
		except requests.RequestException as e:
			raise IntegrationError(f"Failed to reach Google: {e}")

	def exchange_code(self, code: str) -> Dict[str, Any]:
		resp = self._token_request({"grant_type": "authorization_code", "code": code, "redirect_uri": self.redirect_uri})
		if resp.status_code >= 400:
			message = _google_error(resp)
			if "invalid_grant" in message or "invalid_grant" in resp.text:
				raise IntegrationError("Authorization code expired or already used. Please try connecting again.", 400)
			if "redirect_uri_mismatch" in resp.text:
				raise IntegrationError("OAuth redirect URI mismatch. Please contact support.", 400)
			raise IntegrationError(f"Failed to connect Google Analytics: {message}")
		tokens = resp.json()
		if not tokens.get("access_token"):
			raise IntegrationError("No access token received from Google")
		return tokens

	def refresh(self, refresh_token: str) -> Dict[str, Any]:
		resp = self._token_request({"grant_type": "refresh_token", "refresh_token": refresh_token})
		if resp.status_code >= 400:
			if "invalid_grant" in resp.text:
				raise IntegrationError("Refresh token expired or revoked. Please reconnect Google Analytics.", 401)
			raise IntegrationError(f"Failed to refresh access token: {_google_error(resp)}")
		return resp.json()

	def should_refresh(self, expires_at) -> bool:
		if expires_at is None:
			return False
		return expires_at - self.now() < REFRESH_BUFFER

	def store_connection(self, user_id: str, tokens: Dict[str, Any]) -> Dict[str, Any]:
		if not tokens.get("refresh_token"):
			raise IntegrationError("Cannot store connection without refresh token", 400)
		expires_at = None
		if tokens.get("expires_in"):
			expires_at = self.now() + timedelta(seconds=int(tokens["expires_in"]))
		with self.db.get_session() as session:
			conn = session.execute(select(GA4Connection).where(GA4Connection.user_id == user_id)).scalar_one_or_none()
			if conn is None:
				conn = GA4Connection(user_id=user_id)
				session.add(conn)
			conn.access_token = tokens["access_token"]
			conn.refresh_token = tokens["refresh_token"]
			conn.token_expires_at = expires_at
			conn.scopes = (tokens.get("scope") or "").split() or list(REQUIRED_SCOPES)
			conn.is_active = True
			conn.connected_at = self.now()
			session.flush()
			logger.info(f"Stored Google Analytics connection for {user_id}")
			return conn.to_dict()

	def connect(self, code: str, state: str, user_id: Optional[str] = None) -> Dict[str, Any]:
		state_user = self.decode_state(state)
		if user_id and state_user != user_id:
			raise BadRequestError("Invalid state parameter")
		return self.store_connection(state_user, self.exchange_code(code))

	def connection(self, user_id: str) -> Optional[Dict[str, Any]]:
		with self.db.get_session() as session:
			conn = session.execute(select(GA4Connection).where(GA4Connection.user_id == user_id)).scalar_one_or_none()
			return conn.to_dict() if conn else None

	def access_token(self, user_id: str) -> str:
		"""Stored access token, refreshed first when close to expiry."""
		with self.db.get_session() as session:
			conn = session.execute(select(GA4Connection).where(GA4Connection.user_id == user_id)).scalar_one_or_none()
			if conn is None or not conn.is_active:
				raise NotFoundError("No Google Analytics connection found. Please connect your account.")
			if not self.should_refresh(conn.token_expires_at):
				return conn.access_token
			tokens = self.refresh(conn.refresh_token)
			conn.access_token = tokens["access_token"]
			if tokens.get("refresh_token"):
				conn.refresh_token = tokens["refresh_token"]
			if tokens.get("expires_in"):
				conn.token_expires_at = self.now() + timedelta(seconds=int(tokens["expires_in"]))
			return conn.access_token

	def revoke(self, user_id: str) -> None:
		with self.db.get_session() as session:
			conn = session.execute(select(GA4Connection).where(GA4Connection.user_id == user_id)).scalar_one_or_none()
			if conn is None:
				raise NotFoundError("No Google Analytics connection found")
			try:
				self.session.post(REVOKE_URL, params={"token": conn.access_token}, timeout=15)
			except requests.RequestException as e:
				logger.warning(f"Failed to revoke token with Google (may already be revoked): {e}")
			session.delete(conn)
		logger.info(f"Disconnected Google Analytics for {user_id}")


class GA4Service:
	"""Domain mappings, exclusion patterns and AI visibility metrics."""

	def __init__(
		self,
		db: DatabaseManager,
		oauth: GA4OAuth,
		client_factory: Callable[[str], GA4Client] = GA4Client,
		today: Callable[[], date] = date.today,
	):
		self.db = db
		self.oauth = oauth
		self.client_factory = client_factory
		self.today = today

	def client(self, user_id: str) -> GA4Client:
		return self.client_factory(self.oauth.access_token(user_id))

	def list_properties(self, user_id: str) -> List[Dict[str, str]]:
		return self.client(user_id).list_properties()

	# Domain mappings

	def create_mapping(self, user_id: str, property_id: str, property_name: str, domain: str) -> Dict[str, Any]:
		"""Map a GA4 property to a domain and seed the default exclusion patterns."""
		domain = _normalize_domain(domain)
		with self.db.get_session() as session:
			conn = session.execute(select(GA4Connection).where(GA4Connection.user_id == user_id)).scalar_one_or_none()
			if conn is None:
				raise NotFoundError("No Google Analytics connection found")
			existing = session.execute(
				select(GA4DomainMapping).where(GA4DomainMapping.user_id == user_id, GA4DomainMapping.domain == domain)
			).scalar_one_or_none()
			if existing is not None:
				raise ConflictError(f"Domain {domain} is already mapped to a property")
			mapping = GA4DomainMapping(
				user_id=user_id,
				connection_id=conn.id,
				property_id=property_id,
				property_name=property_name,
				domain=domain,
			)
			session.add(mapping)
			for rule in DEFAULT_EXCLUSION_PATTERNS:
				mapping.patterns.append(GA4ExclusionPattern(
					pattern=rule["pattern"],
					pattern_type=rule["pattern_type"],
					category=rule["category"],
					description=rule["description"],
					is_active=True,
					is_default=True,
				))
			session.flush()
			logger.info(f"Mapped GA4 property {property_id} to {domain} with {len(mapping.patterns)} default exclusions")
			return mapping.to_dict()

	def mappings(self, user_id: str) -> List[Dict[str, Any]]:
		with self.db.get_session() as session:
			rows = session.execute(
				select(GA4DomainMapping).where(GA4DomainMapping.user_id == user_id).order_by(GA4DomainMapping.created_at)
			).scalars().all()
			return [r.to_dict() for r in rows]

	def delete_mapping(self, user_id: str, mapping_id: str) -> None:
		with self.db.get_session() as session:
			session.delete(self._mapping(session, user_id, mapping_id))

	# Exclusion patterns

	def patterns(self, user_id: str, mapping_id: str) -> List[Dict[str, Any]]:
		with self.db.get_session() as session:
			mapping = self._mapping(session, user_id, mapping_id)
			return [p.to_dict() for p in mapping.patterns]

	def add_pattern(
		self,
		user_id: str,
		mapping_id: str,
		pattern: str,
		pattern_type: str,
		category: str = "custom",
		description: Optional[str] = None,
	) -> Dict[str, Any]:
		_check_rule(pattern, pattern_type, category)
		with self.db.get_session() as session:
			mapping = self._mapping(session, user_id, mapping_id)
			if any(p.pattern == pattern and p.pattern_type == pattern_type for p in mapping.patterns):
				raise ConflictError("This exclusion pattern already exists")
			row = GA4ExclusionPattern(
				pattern=pattern,
				pattern_type=pattern_type,
				category=category,
				description=description,
				is_active=True,
				is_default=False,
				created_by=user_id,
			)
			mapping.patterns.append(row)
			session.flush()
			return row.to_dict()

	def update_pattern(self, user_id: str, mapping_id: str, pattern_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
		with self.db.get_session() as session:
			row = self._pattern(session, user_id, mapping_id, pattern_id)
			for key in ("pattern", "pattern_type", "category", "description", "is_active"):
				if updates.get(key) is not None:
					setattr(row, key, updates[key])
			_check_rule(row.pattern, row.pattern_type, row.category)
			session.flush()
			return row.to_dict()

	def toggle_pattern(self, user_id: str, mapping_id: str, pattern_id: str) -> Dict[str, Any]:
		with self.db.get_session() as session:
			row = self._pattern(session, user_id, mapping_id, pattern_id)
			row.is_active = not row.is_active
			return row.to_dict()

	def delete_pattern(self, user_id: str, mapping_id: str, pattern_id: str) -> None:
		with self.db.get_session() as session:
			session.delete(self._pattern(session, user_id, mapping_id, pattern_id))

	# Metrics

	def metrics(
		self,
		user_id: str,
		property_id: str,
		start: Optional[date] = None,
		end: Optional[date] = None,
	) -> Dict[str, Any]:
		end = end or self.today()
		start = start or end - timedelta(days=30)
		if start > end:
			raise BadRequestError("Start date must be before end date")
		with self.db.get_session() as session:
			mapping = session.execute(
				select(GA4DomainMapping).where(
					GA4DomainMapping.user_id == user_id, GA4DomainMapping.property_id == property_id
				)
			).scalar_one_or_none()
			if mapping is None:
				raise NotFoundError("Domain mapping not found for this property")
			domain = mapping.domain
			rules = [p.to_dict() for p in mapping.patterns]

		client = self.client(user_id)
		page_rows = client.run_report(property_id, ["pagePath"], ["screenPageViews"], start, end, limit=50000)
		traffic_rows = client.run_report(
			property_id,
			["date", "sessionSource", "pagePath", "pageReferrer"],
			["sessions", "screenPageViews"],
			start,
			end,
		)
		result = calculate_metrics(
			traffic_rows,
			[_dimension(r, 0) for r in page_rows],
			PathFilter(rules, domain),
			start,
			end,
		)
		logger.info(
			f"GA4 {property_id}: score {result['ai_visibility_score']} "
			f"({len(result['crawler_list'])} platforms, {result['ai_crawled_pages']} pages)"
		)
		return result

	@staticmethod
	def _mapping(session, user_id: str, mapping_id: str) -> GA4DomainMapping:
		mapping = session.get(GA4DomainMapping, mapping_id)
		if mapping is None or mapping.user_id != user_id:
			raise NotFoundError("Domain mapping not found")
		return mapping

	def _pattern(self, session, user_id: str, mapping_id: str, pattern_id: str) -> GA4ExclusionPattern:
		self._mapping(session, user_id, mapping_id)
		row = session.get(GA4ExclusionPattern, pattern_id)
		if row is None or row.mapping_id != mapping_id:
			raise NotFoundError("Exclusion pattern not found")
		return row


def _check_rule(pattern: str, pattern_type: str, category: str) -> None:
	if not pattern:
		raise BadRequestError("Pattern is required")
	if pattern_type not in PATTERN_TYPES:
		raise BadRequestError(f"Pattern type must be one of: {', '.join(PATTERN_TYPES)}")
	if category not in PATTERN_CATEGORIES:
		raise BadRequestError(f"Category must be one of: {', '.join(PATTERN_CATEGORIES)}")
	if pattern_type == "regex":
		try:
			re.compile(pattern)
		except re.error as e:
			raise BadRequestError(f"Invalid regular expression: {e}")
