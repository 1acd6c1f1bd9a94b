"""HTTP API blueprints and the helpers they share."""
from typing import Any, Optional, Type, TypeVar

from flask import Flask, current_app, jsonify, request
from pydantic import BaseModel

from ..errors import FeatureDisabledError

M = TypeVar("M", bound=BaseModel)


def services():
	return current_app.extensions["superschema"]


def ok(data: Any = None, message: Optional[str] = None, status: int = 200):
	body = {"success": True, "data": data}
	if message:
		body["message"] = message
	return jsonify(body), status


def parse_body(model: Type[M]) -> M:
	"""Validate the JSON body; pydantic errors are rendered as 400 by the app."""
	return model.model_validate(request.get_json(silent=True) or {})


def parse_query(model: Type[M]) -> M:
	args = {k: v for k, v in request.args.items() if v != ""}
	return model.model_validate(args)


def require_teams(user_id: str) -> None:
	if not services().flags.teams_enabled_for(user_id):
		raise FeatureDisabledError("Teams feature is not enabled")


def register_blueprints(app: Flask) -> None:
	from .credits import credits_bp
	from .crawler import crawler_bp
	from .export import export_bp
	from .ga4 import ga4_bp
	from .hubspot import hubspot_bp
	from .library import library_bp
	from .schema import schema_bp
	from .teams import teams_bp
	from .user import user_bp

	app.register_blueprint(crawler_bp, url_prefix="/api/crawler")
	app.register_blueprint(schema_bp, url_prefix="/api/schema")
	app.register_blueprint(library_bp, url_prefix="/api/library")
	app.register_blueprint(credits_bp, url_prefix="/api/credits")
	app.register_blueprint(teams_bp, url_prefix="/api/teams")
	app.register_blueprint(hubspot_bp, url_prefix="/api/hubspot")
	app.register_blueprint(ga4_bp, url_prefix="/api/ga4")
	app.register_blueprint(export_bp, url_prefix="/api/export")
	app.register_blueprint(user_bp, url_prefix="/api/user")
