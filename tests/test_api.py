"""Tests for the Flask API surface."""
import json

import pytest

from conftest import ARTICLE_SCHEMA

URL = "https://coffeelab.test/guides/brew"


def test_health(client):
	resp = client.get("/health")
	data = resp.get_json()

	assert resp.status_code == 200
	assert data["status"] == "healthy"
	assert data["database"]["connected"] is True
	assert data["features"]["ga4_ai_analytics_enabled"] is True


def test_unknown_endpoint(client):
	resp = client.get("/api/nothing-here")

	assert resp.status_code == 404
	assert resp.get_json() == {
		"success": False,
		"error": "Endpoint not found",
		"timestamp": resp.get_json()["timestamp"],
		"path": "/api/nothing-here",
	}


@pytest.mark.parametrize("headers,message", [
	({}, "Authentication required"),
	({"Authorization": "Bearer not-a-jwt"}, "Invalid token format"),
	({"Authorization": "Basic abc"}, "Authentication required"),
])
def test_auth_required(client, headers, message):
	resp = client.get("/api/credits/balance", headers=headers)

	assert resp.status_code == 401
	assert resp.get_json()["error"] == message


def test_first_request_provisions_user(client, auth_headers, services):
	resp = client.post("/api/user/init", headers=auth_headers("new_user", given_name="Grace"))
	data = resp.get_json()["data"]

	assert resp.status_code == 200
	assert data["id"] == "new_user"
	assert data["first_name"] == "Grace"
	assert data["credit_balance"] == 2
	assert services.users.get("new_user")["email"] == "new_user@example.test"


def test_profile(client, auth_headers):
	resp = client.get("/api/user/profile", headers=auth_headers())
	data = resp.get_json()["data"]
	assert data["is_admin"] is False
	assert data["teams_enabled"] is False

	resp = client.put("/api/user/profile", headers=auth_headers(), json={"organization_name": "Coffee Lab"})
	assert resp.get_json()["data"]["organization_name"] == "Coffee Lab"


def test_generate(client, auth_headers, services):
	resp = client.post("/api/schema/generate", headers=auth_headers(), json={"url": URL, "requested_types": ["Article"]})
	body = resp.get_json()

	assert resp.status_code == 200
	assert body["success"] is True
	assert body["message"] == "Schema generated successfully"
	assert body["data"]["schemas"] == [ARTICLE_SCHEMA]
	assert body["data"]["metadata"]["credits_used"] == 1
	assert body["data"]["schema_score"]["overall_score"] == 58
	assert services.credits.get_balance("user_1") == 1

	schema_id = body["data"]["metadata"]["schema_id"]
	stored = client.get(f"/api/schema/{schema_id}", headers=auth_headers()).get_json()["data"]
	assert stored["status"] == "success"

	history = client.get("/api/schema/history?limit=5", headers=auth_headers()).get_json()["data"]
	assert history["pagination"]["total"] == 1


def test_generate_rejects_bad_urls(client, auth_headers):
	resp = client.post("/api/schema/generate", headers=auth_headers(), json={"url": "ftp://coffeelab.test/"})
	body = resp.get_json()

	assert resp.status_code == 400
	assert body["error"] == "Invalid request data"
	assert body["details"][0]["field"] == "url"


def test_generate_without_credits(client, auth_headers, services, user):
	services.credits.consume("user_1", 2, "Spent elsewhere")
	resp = client.post("/api/schema/generate", headers=auth_headers(), json={"url": URL})

	assert resp.status_code == 402
	assert resp.get_json()["error"] == "Insufficient credits"


def test_generate_inaccessible_url(client, auth_headers, fake_scraper):
	fake_scraper.broken.append(URL)
	resp = client.post("/api/schema/generate", headers=auth_headers(), json={"url": URL})

	assert resp.status_code == 400
	assert resp.get_json()["error"].startswith("URL not accessible")


def test_batch_generate(client, auth_headers, fake_scraper):
	fake_scraper.broken.append("https://coffeelab.test/broken")
	resp = client.post("/api/schema/batch-generate", headers=auth_headers(), json={
		"urls": [URL, "https://coffeelab.test/broken"],
	})
	data = resp.get_json()["data"]

	assert data["summary"] == {"total": 2, "successful": 1, "failed": 1, "credits_used": 1}
	assert data["results"][1]["url"] == "https://coffeelab.test/broken"


def test_batch_generate_stream(client, auth_headers):
	resp = client.post("/api/schema/batch-generate-stream", headers=auth_headers(), json={"urls": [URL]})

	assert resp.mimetype == "text/event-stream"
	events = [
		json.loads(line[len("data: "):])
		for line in resp.get_data(as_text=True).split("\n\n")
		if line.startswith("data: ")
	]
	assert [e["type"] for e in events] == ["progress", "progress", "complete"]
	assert events[-1]["summary"]["successful"] == 1


def test_refine_and_score(client, auth_headers):
	generated = client.post("/api/schema/generate", headers=auth_headers(), json={"url": URL}).get_json()["data"]
	schema_id = generated["metadata"]["schema_id"]

	refined = client.post("/api/schema/refine", headers=auth_headers(), json={"schema_id": schema_id}).get_json()["data"]
	assert refined["refinement_count"] == 1
	assert refined["schemas"][0]["inLanguage"] == "en"

	scored = client.post("/api/schema/score", headers=auth_headers(), json={"schemas": [ARTICLE_SCHEMA]}).get_json()["data"]
	assert scored["overall_score"] == 58


def test_validate(client, auth_headers):
	resp = client.post("/api/schema/validate", headers=auth_headers(), json={"schemas": [ARTICLE_SCHEMA]})
	assert resp.get_json()["data"]["is_valid"] is True


def test_extract_and_check_access_are_public(client, fake_scraper):
	extracted = client.post("/api/schema/extract", json={"url": URL}).get_json()["data"]
	assert extracted["schemas_found"] == 1
	assert extracted["schemas"][0]["@type"] == "WebSite"

	fake_scraper.blocked.append(URL)
	access = client.post("/api/schema/check-access", json={"url": URL}).get_json()["data"]
	assert access["blocked"] is True


def test_discover_and_cached_crawl(client, auth_headers):
	resp = client.post("/api/crawler/discover", headers=auth_headers(), json={"domain": "coffeelab.test"})
	snapshot = resp.get_json()["data"]

	assert snapshot["status"] == "completed"
	assert snapshot["total_found"] == 3
	assert snapshot["urls"][0]["url"] == "https://coffeelab.test/"

	results = client.get(f"/api/crawler/results/{snapshot['crawl_id']}", headers=auth_headers()).get_json()["data"]
	assert results["total_found"] == 3

	cached = client.get("/api/crawler/cached/coffeelab.test", headers=auth_headers()).get_json()["data"]
	assert cached["cached"] is True
	assert cached["crawl_id"] == snapshot["crawl_id"]

	missing = client.get("/api/crawler/results/crawl_0_missing", headers=auth_headers())
	assert missing.status_code == 404


def test_credits_endpoints(client, auth_headers, services):
	services.credits.seed_default_packs()

	packs = client.get("/api/credits/packs").get_json()["data"]
	assert [p["credits"] for p in packs] == [20, 50, 100, 250, 500]
	assert client.get(f"/api/credits/packs/{packs[0]['id']}").get_json()["data"]["credits"] == 20

	balance = client.get("/api/credits/balance", headers=auth_headers()).get_json()["data"]
	assert balance == {"credit_balance": 2, "paid_by": "user_1"}

	ledger = client.get("/api/credits/transactions", headers=auth_headers()).get_json()["data"]
	assert ledger["data"][0]["type"] == "bonus"


def test_grant_requires_admin(client, auth_headers, services):
	body = {"user_id": "user_1", "amount": 10}
	assert client.post("/api/credits/grant", headers=auth_headers("mallory"), json=body).status_code == 403

	client.post("/api/user/init", headers=auth_headers())
	client.post("/api/user/init", headers=auth_headers("admin"))
	services.users.set_admin("admin", True)
	resp = client.post("/api/credits/grant", headers=auth_headers("admin"), json=body)

	assert resp.status_code == 200
	assert resp.get_json()["data"]["credit_balance"] == 12


def test_library_endpoints(client, auth_headers):
	resp = client.post("/api/library/urls", headers=auth_headers(), json={
		"domain": "coffeelab.test",
		"urls": [{"url": "https://coffeelab.test/"}, {"url": URL, "path": "/guides/brew", "depth": 2}],
	})
	assert resp.status_code == 201
	assert resp.get_json()["message"] == "Saved 2 new URL(s)"

	urls = client.get("/api/library/urls", headers=auth_headers()).get_json()["data"]
	assert len(urls) == 2

	target = next(u for u in urls if u["url"] == URL)
	client.put(f"/api/library/urls/{target['id']}/hide", headers=auth_headers())
	hidden = client.get("/api/library/urls?is_hidden=true", headers=auth_headers()).get_json()["data"]
	assert [u["id"] for u in hidden] == [target["id"]]

	check = client.get(f"/api/library/check-url?url={URL}", headers=auth_headers()).get_json()["data"]
	assert check["exists"] is True
	assert client.get("/api/library/check-url", headers=auth_headers()).status_code == 400

	domains = client.get("/api/library/domains", headers=auth_headers()).get_json()["data"]
	resp = client.delete(f"/api/library/domains/{domains[0]['id']}", headers=auth_headers())
	assert resp.get_json()["message"] == "Domain and all associated URLs deleted"


def test_teams_disabled(client, auth_headers):
	resp = client.get("/api/teams/current", headers=auth_headers())

	assert resp.status_code == 404
	assert resp.get_json()["error"] == "Teams feature is not enabled"


def test_teams_enabled(client, auth_headers, services):
	services.flags.teams_enabled = True
	services.flags.team_invites_enabled = True

	current = client.get("/api/teams/current", headers=auth_headers()).get_json()["data"]
	assert current["is_owner"] is True

	invite = client.post("/api/teams/invite", headers=auth_headers()).get_json()["data"]
	info = client.get(f"/api/teams/invite/{invite['invite_token']}").get_json()["data"]
	assert info["valid"] is True

	joined = client.post(f"/api/teams/join/{invite['invite_token']}", headers=auth_headers("user_2"))
	assert joined.get_json()["data"]["team_id"] == current["id"]

	members = client.get("/api/teams/members", headers=auth_headers()).get_json()["data"]
	assert sorted(m["user_id"] for m in members) == ["user_1", "user_2"]

	used = client.get(f"/api/teams/invite/{invite['invite_token']}")
	assert used.status_code == 410


def test_ga4_gated_by_flag(client, auth_headers, services):
	resp = client.get("/api/ga4/exclusions/defaults", headers=auth_headers())
	assert resp.status_code == 200
	assert sum(resp.get_json()["data"]["stats"].values()) == 44

	services.flags.ga4_enabled = False
	resp = client.get("/api/ga4/exclusions/defaults", headers=auth_headers())
	assert resp.status_code == 404
	assert resp.get_json()["error"] == "GA4 AI analytics is not enabled"


def test_ga4_pattern_tools(client, auth_headers):
	suggested = client.post("/api/ga4/exclusions/suggest", headers=auth_headers(), json={
		"path": "/admin/users", "category": "admin",
	}).get_json()["data"]
	assert suggested["pattern"] == "/admin"

	preview = client.post("/api/ga4/exclusions/test", headers=auth_headers(), json={
		"pattern": "/blog", "pattern_type": "prefix", "sample_paths": ["/blog/a", "/about"],
	}).get_json()["data"]
	assert preview == {"matches": ["/blog/a"], "non_matches": ["/about"]}

	bad = client.post("/api/ga4/exclusions/test", headers=auth_headers(), json={
		"pattern": "/blog", "pattern_type": "glob", "sample_paths": ["/blog"],
	})
	assert bad.status_code == 400


def test_ga4_connection_status(client, auth_headers):
	data = client.get("/api/ga4/connection", headers=auth_headers()).get_json()["data"]
	assert data == {"connected": False, "connection": None}


def test_export_requires_credits_and_owned_jobs(client, auth_headers, services, user):
	assert client.get("/api/export/status/missing", headers=auth_headers()).status_code == 404

	services.credits.consume("user_1", 2, "Spent elsewhere")
	resp = client.post("/api/export/async", headers=auth_headers(), json={"base_url": "https://coffeelab.test"})
	assert resp.status_code == 402
