"""Google Analytics 4 AI analytics endpoints, behind GA4_AI_ANALYTICS_ENABLED."""
from flask import Blueprint, g

from ..auth import require_auth
from ..errors import FeatureDisabledError
from ..integrations.ga4 import DEFAULT_EXCLUSION_PATTERNS, PathFilter, default_pattern_stats
from . import ok, parse_body, parse_query, services
from .payloads import (
	ExclusionPatternRequest,
	ExclusionPatternUpdate,
	GA4CallbackRequest,
	GA4MappingRequest,
	MetricsQuery,
	PatternPreviewRequest,
	SuggestPatternRequest,
)

ga4_bp = Blueprint("ga4", __name__)


@ga4_bp.before_request
def require_ga4_enabled():
	if not services().flags.ga4_enabled:
		raise FeatureDisabledError("GA4 AI analytics is not enabled")


@ga4_bp.route("/auth-url", methods=["GET"])
@require_auth
def auth_url():
	return ok({"auth_url": services().ga4_oauth.authorize_url(g.user_id)})


@ga4_bp.route("/callback", methods=["POST"])
@require_auth
def callback():
	body = parse_body(GA4CallbackRequest)
	connection = services().ga4_oauth.connect(body.code, body.state, g.user_id)
	return ok(connection, "Google Analytics connected successfully", 201)


@ga4_bp.route("/connection", methods=["GET"])
@require_auth
def connection():
	conn = services().ga4_oauth.connection(g.user_id)
	return ok({"connected": bool(conn and conn["is_active"]), "connection": conn})


@ga4_bp.route("/connection", methods=["DELETE"])
@require_auth
def disconnect():
	services().ga4_oauth.revoke(g.user_id)
	return ok(None, "Google Analytics disconnected")


@ga4_bp.route("/properties", methods=["GET"])
@require_auth
def properties():
	return ok(services().ga4.list_properties(g.user_id))


@ga4_bp.route("/domain-mapping", methods=["POST"])
@require_auth
def create_mapping():
	body = parse_body(GA4MappingRequest)
	mapping = services().ga4.create_mapping(g.user_id, body.property_id, body.property_name, body.domain)
	return ok(mapping, "Domain mapping created successfully", 201)


@ga4_bp.route("/domain-mappings", methods=["GET"])
@require_auth
def mappings():
	return ok(services().ga4.mappings(g.user_id))


@ga4_bp.route("/domain-mapping/<mapping_id>", methods=["DELETE"])
@require_auth
def delete_mapping(mapping_id: str):
	services().ga4.delete_mapping(g.user_id, mapping_id)
	return ok(None, "Domain mapping deleted successfully")


@ga4_bp.route("/domain-mapping/<mapping_id>/exclusions", methods=["GET"])
@require_auth
def exclusions(mapping_id: str):
	patterns = services().ga4.patterns(g.user_id, mapping_id)
	return ok({"patterns": patterns, "stats": PathFilter(patterns, "").stats()})


@ga4_bp.route("/domain-mapping/<mapping_id>/exclusions", methods=["POST"])
@require_auth
def add_exclusion(mapping_id: str):
	body = parse_body(ExclusionPatternRequest)
	row = services().ga4.add_pattern(
		g.user_id, mapping_id, body.pattern, body.pattern_type, body.category, body.description
	)
	return ok(row, "Exclusion pattern created", 201)


@ga4_bp.route("/domain-mapping/<mapping_id>/exclusions/<pattern_id>", methods=["PATCH"])
@require_auth
def update_exclusion(mapping_id: str, pattern_id: str):
	body = parse_body(ExclusionPatternUpdate)
	return ok(services().ga4.update_pattern(g.user_id, mapping_id, pattern_id, body.model_dump(exclude_none=True)))


@ga4_bp.route("/domain-mapping/<mapping_id>/exclusions/<pattern_id>/toggle", methods=["PATCH"])
@require_auth
def toggle_exclusion(mapping_id: str, pattern_id: str):
	return ok(services().ga4.toggle_pattern(g.user_id, mapping_id, pattern_id))


@ga4_bp.route("/domain-mapping/<mapping_id>/exclusions/<pattern_id>", methods=["DELETE"])
@require_auth
def delete_exclusion(mapping_id: str, pattern_id: str):
	services().ga4.delete_pattern(g.user_id, mapping_id, pattern_id)
	return ok(None, "Exclusion pattern deleted")


@ga4_bp.route("/exclusions/defaults", methods=["GET"])
@require_auth
def default_exclusions():
	return ok({"patterns": DEFAULT_EXCLUSION_PATTERNS, "stats": default_pattern_stats()})


@ga4_bp.route("/exclusions/suggest", methods=["POST"])
@require_auth
def suggest_exclusion():
	body = parse_body(SuggestPatternRequest)
	return ok(PathFilter.suggest_pattern(body.path, body.category))


@ga4_bp.route("/exclusions/test", methods=["POST"])
@require_auth
def test_exclusion():
	body = parse_body(PatternPreviewRequest)
	return ok(PathFilter.test_pattern(body.pattern, body.pattern_type, body.sample_paths))


@ga4_bp.route("/metrics", methods=["GET"])
@require_auth
def metrics():
	query = parse_query(MetricsQuery)
	return ok(services().ga4.metrics(g.user_id, query.property_id, query.start_date, query.end_date))
