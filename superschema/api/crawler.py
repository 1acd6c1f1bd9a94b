"""URL discovery endpoints."""
from flask import Blueprint, g

from ..auth import require_auth
from ..errors import NotFoundError
from ..log import get_logger
from . import ok, parse_body, services
from .payloads import DiscoverRequest

crawler_bp = Blueprint("crawler", __name__)
logger = get_logger("api.crawler")


@crawler_bp.route("/discover", methods=["POST"])
@require_auth
def discover():
	"""
	Start URL discovery for a domain.

	Blocks for the first batch of URLs (or ten seconds), then returns them with
	the crawl id to poll for the rest.
	"""
	body = parse_body(DiscoverRequest)
	snapshot = services().crawls.start(body.domain, g.user_id)
	return ok(snapshot)


@crawler_bp.route("/results/<crawl_id>", methods=["GET"])
@require_auth
def results(crawl_id: str):
	result = services().crawls.get(crawl_id)
	if result is None:
		raise NotFoundError("Crawl not found")
	return ok(result.snapshot())


@crawler_bp.route("/cached/<path:domain>", methods=["GET"])
@require_auth
def cached(domain: str):
	result = services().crawls.find_cached(domain)
	if result is None:
		return ok(None, "No cached crawl found for this domain")
	return ok(result.snapshot(cached=True))
