"""
Bulk site export endpoints.

The async flow is start -> poll status -> download result. The streaming
flow pushes progress over Server-Sent Events and ends with the ZIP as base64.
Each exported page costs one credit; the export stops when the balance runs out.
"""
import base64
import json
import os
import queue
from typing import Any, Callable, Dict

from flask import Blueprint, Response, g, jsonify, send_file, stream_with_context

from ..auth import require_auth
from ..errors import InsufficientCreditsError, NotFoundError
from ..export import JOB_FAILED, JOB_RUNNING
from ..llm import GenerationOptions
from ..models import utcnow
from ..site_crawler import SiteCrawler
from . import parse_body, services
from .payloads import ExportRequest

export_bp = Blueprint("export", __name__)

HEARTBEAT_S = 1


def _page_charger(user_id: str) -> Callable[[str], bool]:
	svc = services()
	credit_service = svc.credits
	if svc.generator.skip_credit_check:
		return lambda url: True

	def before_page(url: str) -> bool:
		return credit_service.consume(user_id, 1, f"Bulk export: {url}")

	return before_page


def _export_kwargs(body: ExportRequest, user_id: str) -> Dict[str, Any]:
	svc = services()
	if not svc.generator.skip_credit_check and not svc.credits.has_credits(user_id):
		raise InsufficientCreditsError("Insufficient credits. Please purchase more credits to continue.")
	return {
		"crawler": SiteCrawler(max_urls=body.max_pages),
		"scraper": svc.scraper,
		"llm": svc.llm,
		"max_pages": body.max_pages,
		"rate_limit": body.rate_limit,
		"options": GenerationOptions(requested_types=body.requested_types, no_truncate=True),
		"before_page": _page_charger(user_id),
	}


def _owned_job(job_id: str) -> Dict[str, Any]:
	job = services().exports.get(job_id)
	if job is None or job["user_id"] != g.user_id:
		raise NotFoundError("Job not found")
	return job


@export_bp.route("/async", methods=["POST"])
@require_auth
def start_async():
	"""Start an export job and return its id immediately."""
	body = parse_body(ExportRequest)
	kwargs = _export_kwargs(body, g.user_id)
	job_id = services().exports.start(body.base_url, user_id=g.user_id, **kwargs)
	return jsonify({
		"success": True,
		"data": {
			"job_id": job_id,
			"status": JOB_RUNNING,
			"status_url": f"/api/export/status/{job_id}",
			"result_url": f"/api/export/result/{job_id}",
		},
		"message": "Export job started",
	}), 202


@export_bp.route("/status/<job_id>", methods=["GET"])
@require_auth
def status(job_id: str):
	_owned_job(job_id)
	return jsonify({"success": True, "data": services().exports.status(job_id)}), 200


@export_bp.route("/result/<job_id>", methods=["GET"])
@require_auth
def result(job_id: str):
	"""ZIP for a completed job, 202 while it is still running."""
	job = _owned_job(job_id)

	if job["status"] == JOB_RUNNING:
		return jsonify({
			"success": False,
			"error": "Job is still running",
			"status": JOB_RUNNING,
			"status_url": f"/api/export/status/{job_id}",
		}), 202

	if job["status"] == JOB_FAILED:
		return jsonify({"success": False, "error": job.get("error") or "Job failed", "status": JOB_FAILED}), 500

	if not job.get("zip_path") or not os.path.exists(job["zip_path"]):
		raise NotFoundError("Result file not found")

	return send_file(
		job["zip_path"],
		mimetype="application/zip",
		as_attachment=True,
		download_name=job["filename"],
	)


@export_bp.route("/stream", methods=["POST"])
@require_auth
def stream():
	"""Same request as /async, but streams progress and returns the ZIP at the end."""
	body = parse_body(ExportRequest)
	kwargs = _export_kwargs(body, g.user_id)
	exports = services().exports
	user_id = g.user_id

	def generate():
		progress_queue: "queue.Queue[Dict[str, Any]]" = queue.Queue()
		job_id = exports.start(body.base_url, user_id=user_id, **kwargs)
		job = exports.get(job_id)
		sent = 0

		def drain():
			nonlocal sent
			progress = job["progress"]
			while sent < len(progress):
				progress_queue.put(progress[sent])
				sent += 1

		try:
			while True:
				drain()
				try:
					update = progress_queue.get(timeout=HEARTBEAT_S)
					yield f"data: {json.dumps(update)}\n\n"
					continue
				except queue.Empty:
					pass

				if job["status"] == JOB_RUNNING:
					yield ": heartbeat\n\n"
					continue

				# Job finished: flush whatever progress arrived last
				drain()
				while not progress_queue.empty():
					yield f"data: {json.dumps(progress_queue.get())}\n\n"

				if job["status"] == JOB_FAILED:
					message = f"Export failed: {job.get('error')}"
					yield f"data: {json.dumps({'type': 'error', 'message': message})}\n\n"
					break

				yield f"data: {json.dumps({'type': 'complete', 'message': 'Export completed', 'summary': job['summary']})}\n\n"
				with open(job["zip_path"], "rb") as f:
					zip_b64 = base64.b64encode(f.read()).decode("utf-8")
				payload = {"type": "zip", "filename": job["filename"], "data": zip_b64, "timestamp": utcnow().isoformat()}
				yield f"data: {json.dumps(payload)}\n\n"
				break
		finally:
			# Also covers clients that disconnect mid-export
			exports.discard(job_id)

	return Response(stream_with_context(generate()), mimetype="text/event-stream", headers={
		"Cache-Control": "no-cache",
		"Connection": "keep-alive",
		"X-Accel-Buffering": "no",
	})


@export_bp.route("/jobs/<job_id>", methods=["DELETE"])
@require_auth
def delete_job(job_id: str):
	_owned_job(job_id)
	services().exports.cleanup(job_id)
	return jsonify({"success": True, "data": None, "message": "Export job removed"}), 200
