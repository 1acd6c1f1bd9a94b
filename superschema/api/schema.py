"""Schema generation, refinement, validation and scoring endpoints."""
import json
from datetime import datetime, timezone

from flask import Blueprint, Response, g, jsonify, stream_with_context

from ..auth import optional_auth, require_auth
from ..errors import BadRequestError
from ..generator import MAX_BATCH_URLS, GenerationRequest
from ..llm import GenerationOptions
from ..log import get_logger
from ..scoring import calculate_schema_score
from ..scraper import ScrapeError
from . import ok, parse_body, parse_query, services
from .payloads import (
	BatchGenerateRequest,
	GenerateRequest,
	Pagination,
	RefineRequest,
	ScoreRequest,
	UrlRequest,
	ValidateRequest,
)

schema_bp = Blueprint("schema", __name__)
logger = get_logger("api.schema")


def _failure(result):
	body = result.to_dict()
	body["error"] = result.error_message
	return body


@schema_bp.route("/generate", methods=["POST"])
@require_auth
def generate():
	body = parse_body(GenerateRequest)
	result = services().generator.generate(GenerationRequest(
		url=body.url,
		user_id=g.user_id,
		options=GenerationOptions(requested_types=body.requested_types),
	))
	if not result.success:
		return jsonify(_failure(result)), result.error_status
	return ok(result.to_dict(), "Schema generated successfully")


@schema_bp.route("/batch-generate", methods=["POST"])
@require_auth
def batch_generate():
	body = parse_body(BatchGenerateRequest)
	options = GenerationOptions(requested_types=body.requested_types)
	requests_ = [GenerationRequest(url=u, user_id=g.user_id, options=options) for u in body.urls]
	results = services().generator.generate_batch(requests_)
	successful = sum(1 for r in results if r.success)
	return ok({
		"results": [dict(r.to_dict(), url=r.url, error=r.error_message) for r in results],
		"summary": {
			"total": len(results),
			"successful": successful,
			"failed": len(results) - successful,
			"credits_used": sum(r.credits_used for r in results),
		},
	})


@schema_bp.route("/batch-generate-stream", methods=["POST"])
@require_auth
def batch_generate_stream():
	"""
	Batch generation with progress as Server-Sent Events.

	Emits a "progress" event before and after each URL and a final
	"complete" event with the summary.
	"""
	body = parse_body(BatchGenerateRequest)
	options = GenerationOptions(requested_types=body.requested_types)
	requests_ = [GenerationRequest(url=u, user_id=g.user_id, options=options) for u in body.urls]
	generator = services().generator
	if len(requests_) > MAX_BATCH_URLS:
		raise BadRequestError(f"Maximum {MAX_BATCH_URLS} URLs allowed per batch request")

	def stream():
		try:
			for event, data in generator.iter_batch(requests_):
				payload = {k: v for k, v in data.items() if k != "result"}
				payload["type"] = event
				payload["timestamp"] = datetime.now(timezone.utc).isoformat()
				yield f"data: {json.dumps(payload)}\n\n"
		except Exception as exc:
			logger.error(f"Batch stream failed: {exc}")
			yield f"data: {json.dumps({'type': 'error', 'message': str(exc)})}\n\n"

	return Response(stream_with_context(stream()), mimetype="text/event-stream", headers={
		"Cache-Control": "no-cache",
		"Connection": "keep-alive",
		"X-Accel-Buffering": "no",
	})


@schema_bp.route("/refine", methods=["POST"])
@require_auth
def refine():
	body = parse_body(RefineRequest)
	data = services().generator.refine(g.user_id, schema_id=body.schema_id, schemas=body.schemas, url=body.url)
	return ok(data, "Schema refined successfully")


@schema_bp.route("/validate", methods=["POST"])
@require_auth
def validate():
	body = parse_body(ValidateRequest)
	return ok(services().generator.validate_schemas(body.schemas))


@schema_bp.route("/score", methods=["POST"])
@require_auth
def score():
	"""Score schemas; with schema_id the edited schemas are also saved on that generation."""
	body = parse_body(ScoreRequest)
	if body.schema_id:
		result = services().generator.rescore(g.user_id, body.schema_id, body.schemas)
	else:
		result = calculate_schema_score(body.schemas).to_dict()
	return ok(result)


@schema_bp.route("/history", methods=["GET"])
@require_auth
def history():
	query = parse_query(Pagination)
	return ok(services().generator.history(g.user_id, query.page, query.limit))


@schema_bp.route("/stats", methods=["GET"])
@require_auth
def stats():
	return ok(services().generator.stats(g.user_id))


@schema_bp.route("/insights", methods=["GET"])
@require_auth
def insights():
	return ok(services().generator.insights(g.user_id))


@schema_bp.route("/<schema_id>", methods=["GET"])
@require_auth
def get_generation(schema_id: str):
	return ok(services().generator.get_generation(g.user_id, schema_id))


@schema_bp.route("/check-access", methods=["POST"])
@optional_auth
def check_access():
	body = parse_body(UrlRequest)
	return ok(services().scraper.check_crawler_access(body.url))


@schema_bp.route("/extract", methods=["POST"])
@optional_auth
def extract():
	"""JSON-LD already present on a page, scored as-is."""
	body = parse_body(UrlRequest)
	try:
		analysis = services().scraper.scrape_url(body.url)
	except ScrapeError as e:
		raise BadRequestError(f"URL not accessible: {e}")
	existing = analysis.existing_schemas
	if not existing:
		return ok({"url": body.url, "schemas_found": 0, "schemas": []}, "No schema markup found on this page")
	return ok({
		"url": body.url,
		"schemas_found": len(existing),
		"schemas": existing,
		"schema_score": calculate_schema_score(existing).to_dict(),
	})
