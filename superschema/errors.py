"""Exceptions carrying an HTTP status so routes can raise and let the app render them."""
from typing import Any, Dict, Optional


class ApiError(Exception):
	status_code = 500

	def __init__(self, message: str, status_code: Optional[int] = None, details: Optional[Dict[str, Any]] = None):
		super().__init__(message)
		self.message = message
		if status_code is not None:
			self.status_code = status_code
		self.details = details


class BadRequestError(ApiError):
	status_code = 400


class AuthError(ApiError):
	status_code = 401


class InsufficientCreditsError(ApiError):
	status_code = 402

	def __init__(self, message: str = "Insufficient credits"):
		super().__init__(message)


class ForbiddenError(ApiError):
	status_code = 403


class NotFoundError(ApiError):
	status_code = 404


class FeatureDisabledError(NotFoundError):
	pass


class ConflictError(ApiError):
	status_code = 409


class CrawlBlockedError(ApiError):
	"""The target site forbids automated crawling."""

	status_code = 403


class IntegrationError(ApiError):
	"""A third-party API (HubSpot, Google) rejected a call."""

	status_code = 502
