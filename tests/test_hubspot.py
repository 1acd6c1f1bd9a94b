"""Tests for the HubSpot OAuth and CMS integration."""
from datetime import datetime, timedelta

import pytest

from conftest import FakeResponse, FakeSession
from superschema.errors import IntegrationError, NotFoundError
from superschema.integrations.hubspot import (
	API_BASE,
	BLOG_POSTS_URL,
	PAGES_URL,
	SCHEMA_END_MARKER,
	SCHEMA_MARKER,
	TOKEN_URL,
	HubSpotCMS,
	HubSpotOAuth,
	normalize_match_url,
	region_from_code,
	replace_schema_block,
	url_similarity,
)
from superschema.users import UserService

ACCOUNT_URL = f"{API_BASE}/oauth/v1/access-tokens/hs-access"
SCRIPT = '<script type="application/ld+json">{"@type": "Article"}</script>'


class Clock:
	def __init__(self):
		self.value = datetime(2024, 6, 1, 12, 0, 0)

	def __call__(self) -> datetime:
		return self.value


def token_route(method, url, kwargs):
	if kwargs["data"]["grant_type"] == "refresh_token":
		return FakeResponse(json_data={"access_token": "hs-fresh", "expires_in": 1800})
	return FakeResponse(json_data={"access_token": "hs-access", "refresh_token": "hs-refresh", "expires_in": 1800})


@pytest.fixture
def clock():
	return Clock()


@pytest.fixture
def hubspot_http():
	return FakeSession({
		("POST", TOKEN_URL): token_route,
		("GET", ACCOUNT_URL): FakeResponse(json_data={
			"hub_id": 4242,
			"hub_domain": "coffeelab.hubspot.com",
			"scopes": ["oauth", "content"],
		}),
	})


@pytest.fixture
def oauth(db, hubspot_http, clock):
	UserService(db).get_or_create("user_1", "user_1@example.test")
	return HubSpotOAuth(
		db,
		session=hubspot_http,
		client_id="hs-client",
		client_secret="hs-secret",
		redirect_uri="https://app.superschema.test/hubspot/callback",
		now=clock,
	)


@pytest.fixture
def connection(oauth):
	return oauth.connect("user_1", "eu1-abc123")


@pytest.fixture
def cms(oauth):
	return HubSpotCMS(oauth)


# URL matching

def test_url_similarity():
	assert url_similarity("coffeelab.test/blog/brew", "coffeelab.test/blog/brew") == 1.0
	assert url_similarity("coffeelab.test/blog/brew", "www.coffeelab.test/blog/brew") == pytest.approx(0.91)
	assert url_similarity("coffeelab.test/blog", "coffeelab.test/blog/brew") == pytest.approx(0.92)
	assert url_similarity("coffeelab.test/blog/a", "coffeelab.test/blog/b") == pytest.approx(0.82)
	assert url_similarity("shop.coffeelab.test/x", "coffeelab.test/y") == pytest.approx(0.22)
	assert url_similarity("coffeelab.test/blog", "other.test/blog") == 0.0


def test_normalize_match_url():
	assert normalize_match_url("HTTPS://CoffeeLab.test/Blog/") == "coffeelab.test/blog"


def test_region_from_code():
	assert region_from_code("eu1-abc") == "eu1"
	assert region_from_code("ap1-abc") == "ap1"
	assert region_from_code("abc") == "na1"


def test_replace_schema_block():
	existing = f"<meta name=\"x\">\n{SCHEMA_MARKER}\nold\n{SCHEMA_END_MARKER}\n<link rel=\"y\">"
	replaced = replace_schema_block(existing, SCRIPT)

	assert replaced == f"<meta name=\"x\">\n{SCHEMA_MARKER}\n{SCRIPT}\n{SCHEMA_END_MARKER}\n<link rel=\"y\">"
	assert replace_schema_block("<meta>", "new") == f"<meta>\n{SCHEMA_MARKER}\nnew\n{SCHEMA_END_MARKER}"


# OAuth

def test_state_format():
	state = HubSpotOAuth.generate_state()

	assert HubSpotOAuth.is_valid_state_format(state)
	assert not HubSpotOAuth.is_valid_state_format("short")
	assert not HubSpotOAuth.is_valid_state_format("a" * 32 + "!")
	assert not HubSpotOAuth.is_valid_state_format(None)


def test_authorize_url(oauth):
	url = oauth.authorize_url("state-value")

	assert url.startswith("https://app.hubspot.com/oauth/authorize?")
	assert "scope=oauth+content" in url
	assert "state=state-value" in url


def test_connect_stores_connection(oauth, connection, hubspot_http):
	assert connection["portal_id"] == "4242"
	assert connection["portal_name"] == "coffeelab.hubspot.com"
	assert connection["region"] == "eu1"
	assert connection["token_expires_at"] == "2024-06-01T12:30:00"
	assert "access_token" not in connection

	sent = hubspot_http.calls_to("POST", TOKEN_URL)[0]["data"]
	assert sent["code"] == "eu1-abc123"
	assert sent["redirect_uri"] == "https://app.superschema.test/hubspot/callback"

	assert [c["id"] for c in oauth.connections("user_1")] == [connection["id"]]
	again = oauth.connect("user_1", "eu1-def456")
	assert again["id"] == connection["id"]


@pytest.mark.parametrize("status,expected_status", [(400, 400), (401, 502), (500, 502)])
def test_exchange_code_errors(oauth, hubspot_http, status, expected_status):
	hubspot_http.routes[("POST", TOKEN_URL)] = FakeResponse(status, json_data={"message": "nope"})

	with pytest.raises(IntegrationError) as excinfo:
		oauth.exchange_code("bad-code")
	assert excinfo.value.status_code == expected_status


def test_ensure_fresh_token_refreshes_near_expiry(oauth, connection, clock):
	assert oauth.ensure_fresh_token("user_1", connection["id"]) == "hs-access"

	clock.value += timedelta(minutes=26)
	assert oauth.ensure_fresh_token("user_1", connection["id"]) == "hs-fresh"
	assert oauth.connections("user_1")[0]["token_expires_at"] == "2024-06-01T12:56:00"


def test_validate_connection(oauth, connection, hubspot_http):
	assert oauth.validate_connection("user_1", connection["id"]) is True

	hubspot_http.routes[("GET", ACCOUNT_URL)] = FakeResponse(401, json_data={"message": "expired"})
	assert oauth.validate_connection("user_1", connection["id"]) is False
	assert oauth.connections("user_1") == []


def test_associate_domain(oauth, connection):
	oauth.associate_domain("user_1", connection["id"], "CoffeeLab.test")

	assert oauth.connection_for_domain("user_1", "coffeelab.test")["id"] == connection["id"]
	assert oauth.connection_for_domain("user_1", "other.test") is None


def test_revoke_and_ownership(oauth, connection):
	with pytest.raises(NotFoundError):
		oauth.revoke("user_2", connection["id"])

	oauth.revoke("user_1", connection["id"])
	assert oauth.connections("user_1") == []
	with pytest.raises(IntegrationError) as excinfo:
		oauth.ensure_fresh_token("user_1", connection["id"])
	assert excinfo.value.status_code == 400


# CMS

def test_list_content(cms, connection, hubspot_http):
	hubspot_http.routes[("GET", BLOG_POSTS_URL)] = FakeResponse(json_data={"objects": [
		{"id": 77, "html_title": "Brew Guide", "url": "https://coffeelab.test/blog/brew", "state": "PUBLISHED"},
	]})
	hubspot_http.routes[("GET", PAGES_URL)] = FakeResponse(json_data={"results": [
		{"id": "9", "name": "Blog", "url": "https://www.coffeelab.test/blog", "publishDate": "2024-01-01"},
	]})

	posts = cms.list_blog_posts("user_1", connection["id"])
	assert posts[0]["id"] == "77"
	assert posts[0]["name"] == "Brew Guide"
	assert cms.list_pages("user_1", connection["id"])[0]["publish_date"] == "2024-01-01"

	call = hubspot_http.calls_to("GET", BLOG_POSTS_URL)[0]
	assert call["headers"]["Authorization"] == "Bearer hs-access"
	assert call["params"]["state"] == "PUBLISHED"


def test_match_url(cms, connection, hubspot_http):
	hubspot_http.routes[("GET", BLOG_POSTS_URL)] = FakeResponse(json_data={"objects": [
		{"id": 77, "name": "Brew Guide", "url": "https://coffeelab.test/blog/brew"},
		{"id": 78, "name": "Elsewhere", "url": "https://other.test/blog/brew"},
		{"id": 79, "name": "Draft", "url": ""},
	]})
	hubspot_http.routes[("GET", PAGES_URL)] = FakeResponse(json_data={"results": [
		{"id": "9", "name": "Blog", "url": "https://www.coffeelab.test/blog"},
	]})

	matches = cms.match_url("user_1", connection["id"], "https://coffeelab.test/blog/brew/")

	assert [(m["content_id"], m["content_type"]) for m in matches] == [("77", "blog_post"), ("9", "page")]
	assert matches[0]["confidence"] == 1.0
	assert matches[1]["confidence"] == pytest.approx(0.83)


def test_push_blog_schema_replaces_block(cms, connection, hubspot_http):
	post_url = f"{BLOG_POSTS_URL}/77"
	hubspot_http.routes[("GET", post_url)] = FakeResponse(json_data={
		"head_html": f"<meta>\n{SCHEMA_MARKER}\nold\n{SCHEMA_END_MARKER}",
	})
	hubspot_http.routes[("PUT", post_url)] = FakeResponse(json_data={"id": 77})

	cms.push_schema("user_1", connection["id"], "77", "blog_post", SCRIPT)

	sent = hubspot_http.calls_to("PUT", post_url)[0]["json"]
	assert sent == {"head_html": f"<meta>\n{SCHEMA_MARKER}\n{SCRIPT}\n{SCHEMA_END_MARKER}"}


def test_push_page_schema_reports_tier_errors(cms, connection, hubspot_http):
	draft_url = f"{PAGES_URL}/9/draft"
	hubspot_http.routes[("PATCH", draft_url)] = FakeResponse(400, json_data={"message": "Bad head"})

	with pytest.raises(IntegrationError, match="subscription tiers"):
		cms.push_schema("user_1", connection["id"], "9", "page", SCRIPT)
	assert hubspot_http.calls_to("PATCH", draft_url)[0]["json"] == {"headHtml": SCRIPT}


def test_push_schema_rejects_unknown_type(cms, connection):
	with pytest.raises(IntegrationError) as excinfo:
		cms.push_schema("user_1", connection["id"], "1", "landing", SCRIPT)
	assert excinfo.value.status_code == 400
