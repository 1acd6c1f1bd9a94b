"""
Request authentication.

The identity provider signs session tokens upstream; this layer only reads
the JWT payload to learn who is calling. First sight of a subject provisions
the local user row (with the signup bonus).
"""
import base64
import json
from functools import wraps
from typing import Any, Dict, Optional

from flask import current_app, g, request

from .errors import AuthError, ForbiddenError
from .log import get_logger

logger = get_logger("auth")


def decode_token(token: str) -> Dict[str, Any]:
	"""Payload of a JWT without signature verification."""
	parts = token.split(".")
	if len(parts) != 3:
		raise AuthError("Invalid token format")
	payload = parts[1] + "=" * (-len(parts[1]) % 4)
	try:
		claims = json.loads(base64.urlsafe_b64decode(payload.encode("ascii")).decode("utf-8"))
	except (ValueError, UnicodeError) as e:
		raise AuthError("Invalid token") from e
	if not isinstance(claims, dict) or not claims.get("sub"):
		raise AuthError("Invalid token: missing subject")
	return claims


def bearer_token() -> Optional[str]:
	header = request.headers.get("Authorization", "")
	if not header.startswith("Bearer "):
		return None
	return header[len("Bearer "):].strip() or None


def _authenticate() -> Dict[str, Any]:
	token = bearer_token()
	if not token:
		raise AuthError("Authentication required")
	claims = decode_token(token)
	services = current_app.extensions["superschema"]
	user = services.users.get_or_create(
		claims["sub"],
		email=claims.get("email"),
		first_name=claims.get("given_name") or claims.get("first_name"),
		last_name=claims.get("family_name") or claims.get("last_name"),
	)
	g.user_id = claims["sub"]
	g.user = user
	return user


def require_auth(view):
	@wraps(view)
	def wrapper(*args, **kwargs):
		_authenticate()
		return view(*args, **kwargs)
	return wrapper


def optional_auth(view):
	"""Authenticate when a bearer token is present, otherwise carry on anonymously."""
	@wraps(view)
	def wrapper(*args, **kwargs):
		g.user_id = None
		g.user = None
		if bearer_token():
			_authenticate()
		return view(*args, **kwargs)
	return wrapper


def require_admin(view):
	@wraps(view)
	def wrapper(*args, **kwargs):
		_authenticate()
		if not current_app.extensions["superschema"].users.is_admin(g.user_id):
			logger.warning(f"Non-admin {g.user_id} attempted {request.path}")
			raise ForbiddenError("Admin access required")
		return view(*args, **kwargs)
	return wrapper
