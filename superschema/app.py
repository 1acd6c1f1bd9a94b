"""
Flask application factory for the SuperSchema API.

Every route lives in a blueprint under /api; services are built once and
kept in app.extensions["superschema"].
"""
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from flask import Flask, jsonify, request
from flask_cors import CORS
from pydantic import ValidationError
from werkzeug.exceptions import HTTPException

from . import __version__
from .api import register_blueprints
from .config import Config
from .errors import ApiError
from .log import get_logger, setup_logging
from .services import Services, build_services

logger = get_logger("app")


def _timestamp() -> str:
	return datetime.now(timezone.utc).isoformat()


def error_response(message: str, status: int, details: Any = None):
	body: Dict[str, Any] = {
		"success": False,
		"error": message,
		"timestamp": _timestamp(),
		"path": request.path,
	}
	if details is not None:
		body["details"] = details
	return jsonify(body), status


def create_app(config_overrides: Optional[Dict[str, Any]] = None, services: Optional[Services] = None) -> Flask:
	setup_logging(Config.LOG_LEVEL)
	app = Flask(__name__)
	app.config.update(
		DATABASE_URL=Config.DATABASE_URL,
		CORS_ORIGINS=Config.CORS_ORIGINS,
		JSON_SORT_KEYS=False,
	)
	if config_overrides:
		app.config.update(config_overrides)

	CORS(app, origins=app.config["CORS_ORIGINS"], supports_credentials=True)

	if services is None:
		services = build_services()
		services.db.create_all()
		services.crawls.start_sweeper()
	app.extensions["superschema"] = services

	register_blueprints(app)

	@app.route("/health", methods=["GET"])
	def health():
		"""Health check endpoint"""
		db_status = services.db.check_connection()
		return jsonify({
			"status": "healthy" if db_status["connected"] else "degraded",
			"service": "SuperSchema API",
			"version": __version__,
			"timestamp": _timestamp(),
			"database": db_status,
			"openai_configured": services.llm.configured,
			"features": services.flags.as_dict(),
		}), 200 if db_status["connected"] else 503

	@app.errorhandler(ApiError)
	def handle_api_error(error: ApiError):
		if error.status_code >= 500:
			logger.error(f"{request.method} {request.path} failed: {error.message}")
		return error_response(error.message, error.status_code, error.details)

	@app.errorhandler(ValidationError)
	def handle_validation_error(error: ValidationError):
		details = [
			{"field": ".".join(str(p) for p in e["loc"]), "message": e["msg"]}
			for e in error.errors()
		]
		return error_response("Invalid request data", 400, details)

	@app.errorhandler(404)
	def not_found(error):
		return error_response("Endpoint not found", 404)

	@app.errorhandler(405)
	def method_not_allowed(error):
		return error_response("Method not allowed", 405)

	@app.errorhandler(HTTPException)
	def handle_http_exception(error: HTTPException):
		return error_response(error.description or error.name, error.code or 500)

	@app.errorhandler(500)
	def internal_error(error):
		logger.error(f"Unhandled error on {request.path}: {error}")
		return error_response("Internal server error", 500)

	@app.errorhandler(Exception)
	def unhandled_exception(error: Exception):
		logger.exception(f"Unhandled error on {request.path}: {error}")
		return error_response("Internal server error", 500)

	return app
