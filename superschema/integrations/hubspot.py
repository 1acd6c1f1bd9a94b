"""
HubSpot integration.

OAuth token lifecycle (authorize, code exchange, refresh, validation) and a
small CMS client that pushes JSON-LD into blog post and page head HTML.

All calls go to api.hubapi.com; HubSpot routes to the portal's region from
the token itself, so the region is only recorded for display.
"""
import re
import secrets
import urllib.parse as urlparse
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional

import requests
from sqlalchemy import select

from ..config import Config
from ..database import DatabaseManager
from ..errors import IntegrationError, NotFoundError
from ..log import get_logger
from ..models import HubSpotConnection, utcnow

logger = get_logger("hubspot")

API_BASE = "https://api.hubapi.com"
AUTHORIZE_URL = "https://app.hubspot.com/oauth/authorize"
TOKEN_URL = f"{API_BASE}/oauth/v1/token"
BLOG_POSTS_URL = f"{API_BASE}/content/api/v2/blog-posts"
PAGES_URL = f"{API_BASE}/cms/v3/pages/site-pages"
SCOPES = ("oauth", "content")
TOKEN_TIMEOUT_S = 15
REFRESH_BUFFER = timedelta(minutes=5)

SCHEMA_MARKER = "<!-- SuperSchema -->"
SCHEMA_END_MARKER = "<!-- /SuperSchema -->"
SCHEMA_BLOCK_RE = re.compile(r"<!-- SuperSchema -->[\s\S]*?<!-- /SuperSchema -->")
STATE_RE = re.compile(r"^[A-Za-z0-9_-]+$")
REGION_RE = re.compile(r"^(na1|eu1|ap1)-")

MATCH_THRESHOLD = 0.5
MAX_MATCHES = 5


def region_from_code(code: str) -> str:
	m = REGION_RE.match(code or "")
	return m.group(1) if m else "na1"


def _error_message(resp: requests.Response, default: str) -> str:
	try:
		return resp.json().get("message") or default
	except ValueError:
		return default


class HubSpotOAuth:
	def __init__(
		self,
		db: DatabaseManager,
		session: Optional[requests.Session] = None,
		client_id: Optional[str] = None,
		client_secret: Optional[str] = None,
		redirect_uri: Optional[str] = None,
		now: Callable = utcnow,
	):
		self.db = db
		self.session = session or requests.Session()
		self.client_id = client_id if client_id is not None else Config.HUBSPOT_CLIENT_ID
		self.client_secret = client_secret if client_secret is not None else Config.HUBSPOT_CLIENT_SECRET
		self.redirect_uri = redirect_uri or Config.HUBSPOT_REDIRECT_URI
		self.now = now
		if not self.client_id or not self.client_secret:
			logger.warning("HubSpot client credentials are not configured")

	# OAuth handshake

	@staticmethod
	def generate_state() -> str:
		return secrets.token_urlsafe(32)

	@staticmethod
	def is_valid_state_format(state: Optional[str]) -> bool:
		if not state or len(state) < 32 or len(state) > 64:
			return False
		return bool(STATE_RE.match(state))

	def authorize_url(self, state: str) -> str:
		query = urlparse.urlencode({
			"client_id": self.client_id,
			"redirect_uri": self.redirect_uri,
			"scope": " ".join(SCOPES),
			"state": state,
		})
		return f"{AUTHORIZE_URL}?{query}"

	def exchange_code(self, code: str, redirect_uri: Optional[str] = None) -> Dict[str, Any]:
		region = region_from_code(code)
		try:
			resp = self.session.post(
				TOKEN_URL,
				data={
					"grant_type": "authorization_code",
					"client_id": self.client_id,
					"client_secret": self.client_secret,
					"redirect_uri": redirect_uri or self.redirect_uri,
					"code": code,
				},
				timeout=TOKEN_TIMEOUT_S,
			)
		except requests.RequestException as e:
			raise IntegrationError(f"HubSpot token exchange failed: {e}")
		if resp.status_code == 400:
			raise IntegrationError(
				f"Invalid authorization code or redirect URI: {_error_message(resp, 'bad request')}", 400
			)
		if resp.status_code == 401:
			raise IntegrationError("Invalid client credentials. Please check HubSpot Client ID and Secret.")
		if resp.status_code >= 400:
			raise IntegrationError(
				f"HubSpot token exchange failed ({resp.status_code}): {_error_message(resp, resp.reason or '')}"
			)
		tokens = resp.json()
		tokens["region"] = region
		logger.info(f"Exchanged HubSpot code (region {region})")
		return tokens

	def refresh(self, refresh_token: str) -> Dict[str, Any]:
		try:
			resp = self.session.post(
				TOKEN_URL,
				data={
					"grant_type": "refresh_token",
					"client_id": self.client_id,
					"client_secret": self.client_secret,
					"refresh_token": refresh_token,
				},
				timeout=TOKEN_TIMEOUT_S,
			)
		except requests.RequestException as e:
			raise IntegrationError(f"Failed to refresh access token: {e}")
		if resp.status_code >= 400:
			raise IntegrationError(_error_message(resp, "Failed to refresh access token"))
		return resp.json()

	def account_info(self, access_token: str) -> Dict[str, Any]:
		try:
			resp = self.session.get(f"{API_BASE}/oauth/v1/access-tokens/{access_token}", timeout=TOKEN_TIMEOUT_S)
		except requests.RequestException as e:
			raise IntegrationError(f"Failed to retrieve account information: {e}")
		if resp.status_code == 401:
			raise IntegrationError("Invalid or expired access token", 401)
		if resp.status_code == 403:
			raise IntegrationError("Insufficient permissions. Please reconnect your HubSpot account.", 403)
		if resp.status_code >= 400:
			raise IntegrationError(
				f"Failed to retrieve account information ({resp.status_code}): {_error_message(resp, resp.reason or '')}"
			)
		return resp.json()

	# Stored connections

	def store_connection(self, user_id: str, tokens: Dict[str, Any], account: Dict[str, Any]) -> Dict[str, Any]:
		"""Create or replace the user's connection to the portal in account."""
		portal_id = str(account["hub_id"])
		expires_at = self.now() + timedelta(seconds=int(tokens.get("expires_in", 1800)))
		with self.db.get_session() as session:
			conn = session.execute(
				select(HubSpotConnection).where(
					HubSpotConnection.user_id == user_id, HubSpotConnection.portal_id == portal_id
				)
			).scalar_one_or_none()
			if conn is None:
				conn = HubSpotConnection(user_id=user_id, portal_id=portal_id)
				session.add(conn)
			conn.portal_name = account.get("hub_domain")
			conn.region = tokens.get("region") or "na1"
			conn.access_token = tokens["access_token"]
			conn.refresh_token = tokens["refresh_token"]
			conn.token_expires_at = expires_at
			conn.scopes = list(account.get("scopes") or [])
			conn.is_active = True
			conn.last_validated_at = self.now()
			session.flush()
			logger.info(f"Stored HubSpot connection for portal {portal_id}")
			return conn.to_dict()

	def connect(self, user_id: str, code: str, redirect_uri: Optional[str] = None) -> Dict[str, Any]:
		tokens = self.exchange_code(code, redirect_uri)
		account = self.account_info(tokens["access_token"])
		return self.store_connection(user_id, tokens, account)

	def connections(self, user_id: str) -> List[Dict[str, Any]]:
		with self.db.get_session() as session:
			rows = session.execute(
				select(HubSpotConnection)
				.where(HubSpotConnection.user_id == user_id, HubSpotConnection.is_active.is_(True))
				.order_by(HubSpotConnection.created_at.desc())
			).scalars().all()
			return [r.to_dict() for r in rows]

	def connection_for_domain(self, user_id: str, domain: str) -> Optional[Dict[str, Any]]:
		domain = domain.lower()
		for conn in self.connections(user_id):
			if (conn.get("associated_domain") or "").lower() == domain:
				return conn
		return None

	def associate_domain(self, user_id: str, connection_id: str, domain: Optional[str]) -> Dict[str, Any]:
		with self.db.get_session() as session:
			conn = self._owned(session, user_id, connection_id)
			conn.associated_domain = domain.lower() if domain else None
			session.flush()
			return conn.to_dict()

	def ensure_fresh_token(self, user_id: str, connection_id: str) -> str:
		"""Access token for the connection, refreshed when it expires within five minutes."""
		with self.db.get_session() as session:
			conn = self._owned(session, user_id, connection_id)
			if not conn.is_active:
				raise IntegrationError("HubSpot connection is inactive. Please reconnect.", 400)
			if conn.token_expires_at - self.now() > REFRESH_BUFFER:
				return conn.access_token
			tokens = self.refresh(conn.refresh_token)
			conn.access_token = tokens["access_token"]
			if tokens.get("refresh_token"):
				conn.refresh_token = tokens["refresh_token"]
			conn.token_expires_at = self.now() + timedelta(seconds=int(tokens.get("expires_in", 1800)))
			logger.info(f"Refreshed HubSpot token for connection {connection_id}")
			return conn.access_token

	def validate_connection(self, user_id: str, connection_id: str) -> bool:
		"""Check the token still works; a failing connection is deactivated."""
		try:
			token = self.ensure_fresh_token(user_id, connection_id)
			self.account_info(token)
		except IntegrationError as e:
			logger.warning(f"HubSpot connection {connection_id} failed validation: {e.message}")
			with self.db.get_session() as session:
				self._owned(session, user_id, connection_id).is_active = False
			return False
		with self.db.get_session() as session:
			self._owned(session, user_id, connection_id).last_validated_at = self.now()
		return True

	def revoke(self, user_id: str, connection_id: str) -> None:
		with self.db.get_session() as session:
			self._owned(session, user_id, connection_id).is_active = False
		logger.info(f"Disconnected HubSpot connection {connection_id}")

	@staticmethod
	def _owned(session, user_id: str, connection_id: str) -> HubSpotConnection:
		conn = session.get(HubSpotConnection, connection_id)
		if conn is None or conn.user_id != user_id:
			raise NotFoundError("HubSpot connection not found")
		return conn


# URL matching

def _parse_match_url(url: str) -> Dict[str, str]:
	parsed = urlparse.urlparse(url if "://" in url else f"https://{url}")
	hostname = (parsed.hostname or "").lower()
	if not hostname:
		return {"subdomain": "", "domain": url.lower(), "path": "/", "full_domain": url.lower()}
	path = parsed.path + (f"?{parsed.query}" if parsed.query else "")
	path = path.rstrip("/") or "/"
	parts = hostname.split(".")
	domain, subdomain = hostname, ""
	if len(parts) >= 2:
		domain = ".".join(parts[-2:])
		subdomain = ".".join(parts[:-2])
	return {"subdomain": subdomain, "domain": domain, "path": path, "full_domain": hostname}


def normalize_match_url(url: str) -> str:
	return re.sub(r"^https?://", "", url.lower()).rstrip("/")


def url_similarity(a: str, b: str) -> float:
	"""Domain-aware similarity in [0, 1]; different base domains never match."""
	p1, p2 = _parse_match_url(a), _parse_match_url(b)
	if p1["domain"] != p2["domain"]:
		return 0.0
	if p1["full_domain"] == p2["full_domain"] and p1["path"] == p2["path"]:
		return 1.0

	if p1["subdomain"] == p2["subdomain"]:
		subdomain_score = 1.0
	elif {p1["subdomain"], p2["subdomain"]} == {"www", ""}:
		subdomain_score = 0.85
	else:
		subdomain_score = 0.3

	path1, path2 = p1["path"], p2["path"]
	if path1 == path2:
		path_score = 1.0
	elif path1.startswith(path2) or path2.startswith(path1):
		shorter, longer = sorted((path1, path2), key=len)
		path_score = 0.7 + 0.2 * (len(shorter) / len(longer))
	else:
		seg1 = [s for s in path1.split("/") if s]
		seg2 = [s for s in path2.split("/") if s]
		matching = 0
		for x, y in zip(seg1, seg2):
			if x != y:
				break
			matching += 1
		if matching:
			path_score = 0.4 + 0.3 * (matching / max(len(seg1), len(seg2)))
		else:
			path_score = 0.1

	return min(subdomain_score * 0.6 + path_score * 0.4, 1.0)


def replace_schema_block(head_html: str, schema_html: str) -> str:
	"""Swap the SuperSchema block in head_html, or append one."""
	block = f"{SCHEMA_MARKER}\n{schema_html}\n{SCHEMA_END_MARKER}"
	if SCHEMA_MARKER in head_html:
		return SCHEMA_BLOCK_RE.sub(lambda _m: block, head_html, count=1)
	return f"{head_html}\n{block}"


class HubSpotCMS:
	def __init__(self, oauth: HubSpotOAuth, session: Optional[requests.Session] = None, timeout: int = 30):
		self.oauth = oauth
		self.session = session or oauth.session
		self.timeout = timeout

	def _request(self, user_id: str, connection_id: str, method: str, url: str, failure: str, **kwargs) -> requests.Response:
		token = self.oauth.ensure_fresh_token(user_id, connection_id)
		headers = {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}
		try:
			resp = self.session.request(method, url, headers=headers, timeout=self.timeout, **kwargs)
		except requests.RequestException as e:
			raise IntegrationError(f"{failure}: {e}")
		if resp.status_code >= 400:
			message = _error_message(resp, failure)
			if method == "PATCH" and resp.status_code == 400:
				message += ". Note: Page head HTML updates may require specific HubSpot subscription tiers."
			raise IntegrationError(message)
		return resp

	def list_blog_posts(self, user_id: str, connection_id: str, limit: int = 100) -> List[Dict[str, Any]]:
		resp = self._request(
			user_id, connection_id, "GET", BLOG_POSTS_URL, "Failed to retrieve blog posts",
			params={"limit": limit, "state": "PUBLISHED"},
		)
		return [
			{
				"id": str(post.get("id")),
				"name": post.get("name") or post.get("html_title") or "",
				"slug": post.get("slug"),
				"url": post.get("url") or post.get("absolute_url") or "",
				"state": post.get("state"),
				"publish_date": post.get("publish_date"),
				"created_at": post.get("created"),
				"updated_at": post.get("updated"),
			}
			for post in resp.json().get("objects", [])
		]

	def list_pages(self, user_id: str, connection_id: str, limit: int = 100) -> List[Dict[str, Any]]:
		resp = self._request(
			user_id, connection_id, "GET", PAGES_URL, "Failed to retrieve pages", params={"limit": limit},
		)
		return [
			{
				"id": str(page.get("id")),
				"name": page.get("name") or "",
				"slug": page.get("slug"),
				"url": page.get("url") or "",
				"state": page.get("state"),
				"publish_date": page.get("publishDate"),
				"created_at": page.get("createdAt"),
				"updated_at": page.get("updatedAt"),
			}
			for page in resp.json().get("results", [])
		]

	def push_blog_schema(self, user_id: str, connection_id: str, post_id: str, schema_html: str) -> None:
		url = f"{BLOG_POSTS_URL}/{post_id}"
		current = self._request(user_id, connection_id, "GET", url, "Failed to update blog post").json()
		head_html = replace_schema_block(current.get("head_html") or "", schema_html)
		self._request(user_id, connection_id, "PUT", url, "Failed to update blog post", json={"head_html": head_html})
		logger.info(f"Pushed schema to HubSpot blog post {post_id}")

	def push_page_schema(self, user_id: str, connection_id: str, page_id: str, schema_html: str) -> None:
		self._request(
			user_id, connection_id, "PATCH", f"{PAGES_URL}/{page_id}/draft", "Failed to update page",
			json={"headHtml": schema_html},
		)
		logger.info(f"Pushed schema to HubSpot page {page_id} draft")

	def push_schema(self, user_id: str, connection_id: str, content_id: str, content_type: str, schema_html: str) -> None:
		if content_type == "blog_post":
			self.push_blog_schema(user_id, connection_id, content_id, schema_html)
		elif content_type == "page":
			self.push_page_schema(user_id, connection_id, content_id, schema_html)
		else:
			raise IntegrationError(f"Unsupported content type: {content_type}", 400)

	def match_url(self, user_id: str, connection_id: str, target_url: str) -> List[Dict[str, Any]]:
		"""Blog posts and pages whose URL resembles target_url, best first."""
		target = normalize_match_url(target_url)
		candidates = [("blog_post", p) for p in self.list_blog_posts(user_id, connection_id)]
		candidates += [("page", p) for p in self.list_pages(user_id, connection_id)]
		matches = []
		for content_type, item in candidates:
			if not item["url"]:
				continue
			confidence = url_similarity(target, normalize_match_url(item["url"]))
			if confidence > MATCH_THRESHOLD:
				matches.append({
					"content_id": item["id"],
					"content_type": content_type,
					"title": item["name"],
					"url": item["url"],
					"confidence": round(confidence, 4),
				})
		matches.sort(key=lambda m: m["confidence"], reverse=True)
		return matches[:MAX_MATCHES]
