"""Request bodies and query strings accepted by the HTTP API."""
import urllib.parse as urlparse
from datetime import date
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

MAX_URL_LENGTH = 2048

PatternType = Literal["exact", "prefix", "suffix", "regex"]
PatternCategory = Literal["auth", "callback", "static", "admin", "api", "custom"]


def check_http_url(value: str) -> str:
	value = value.strip()
	if not value:
		raise ValueError("URL is required")
	if len(value) > MAX_URL_LENGTH:
		raise ValueError(f"URL exceeds maximum length of {MAX_URL_LENGTH} characters")
	parsed = urlparse.urlparse(value)
	if parsed.scheme not in ("http", "https") or not parsed.netloc:
		raise ValueError("URL must use http or https protocol")
	return value


class Pagination(BaseModel):
	page: int = Field(1, ge=1)
	limit: int = Field(10, ge=1, le=100)


# Crawler

class DiscoverRequest(BaseModel):
	domain: str = Field(..., min_length=1, max_length=MAX_URL_LENGTH)

	@field_validator("domain")
	@classmethod
	def strip_domain(cls, v: str) -> str:
		v = v.strip()
		if not v:
			raise ValueError("Domain is required")
		return v


# Schema generation

class GenerateRequest(BaseModel):
	url: str
	requested_types: List[str] = Field(default_factory=list, max_length=10)

	@field_validator("url")
	@classmethod
	def check_url(cls, v: str) -> str:
		return check_http_url(v)


class BatchGenerateRequest(BaseModel):
	urls: List[str] = Field(..., min_length=1)
	requested_types: List[str] = Field(default_factory=list, max_length=10)

	@field_validator("urls")
	@classmethod
	def check_urls(cls, v: List[str]) -> List[str]:
		return [check_http_url(u) for u in v]


class RefineRequest(BaseModel):
	schema_id: Optional[str] = None
	schemas: Optional[List[Dict[str, Any]]] = None
	url: Optional[str] = None


class ValidateRequest(BaseModel):
	schemas: List[Any] = Field(..., min_length=1)


class ScoreRequest(BaseModel):
	schemas: List[Dict[str, Any]] = Field(..., min_length=1)
	schema_id: Optional[str] = None


class UrlRequest(BaseModel):
	url: str

	@field_validator("url")
	@classmethod
	def check_url(cls, v: str) -> str:
		return check_http_url(v)


# Library

class LibraryUrlItem(BaseModel):
	url: str
	path: Optional[str] = None
	depth: Optional[int] = Field(None, ge=0)


class SaveUrlsRequest(BaseModel):
	domain: str = Field(..., min_length=1)
	urls: List[LibraryUrlItem] = Field(..., min_length=1)


class LibraryQuery(BaseModel):
	domain_id: Optional[str] = None
	has_schema: Optional[bool] = None
	is_hidden: Optional[bool] = None
	search: Optional[str] = Field(None, max_length=500)


class VisibilityRequest(BaseModel):
	hidden: bool


class SchemasBody(BaseModel):
	schemas: List[Dict[str, Any]] = Field(..., min_length=1)


# Users, credits, teams

class ProfileUpdate(BaseModel):
	first_name: Optional[str] = Field(None, max_length=100)
	last_name: Optional[str] = Field(None, max_length=100)
	organization_name: Optional[str] = Field(None, max_length=200)


class GrantCreditsRequest(BaseModel):
	user_id: str
	amount: int = Field(..., ge=1, le=100000)
	description: str = "Credits granted by admin"
	type: Literal["purchase", "bonus"] = "bonus"


class CreateTeamRequest(BaseModel):
	name: Optional[str] = Field(None, max_length=100)


class SwitchTeamRequest(BaseModel):
	team_id: str


# Integrations

class HubSpotCallbackRequest(BaseModel):
	code: str = Field(..., min_length=1)
	state: Optional[str] = None
	redirect_uri: Optional[str] = None


class HubSpotDomainRequest(BaseModel):
	domain: Optional[str] = None


class HubSpotPushRequest(BaseModel):
	connection_id: str
	content_id: str
	content_type: Literal["blog_post", "page"]
	schemas: List[Dict[str, Any]] = Field(..., min_length=1)


class GA4CallbackRequest(BaseModel):
	code: str = Field(..., min_length=1)
	state: str = Field(..., min_length=1)


class GA4MappingRequest(BaseModel):
	property_id: str = Field(..., min_length=1)
	property_name: str = Field(..., min_length=1)
	domain: str = Field(..., min_length=1)


class ExclusionPatternRequest(BaseModel):
	pattern: str = Field(..., min_length=1, max_length=500)
	pattern_type: PatternType
	category: PatternCategory = "custom"
	description: Optional[str] = Field(None, max_length=500)


class ExclusionPatternUpdate(BaseModel):
	pattern: Optional[str] = Field(None, min_length=1, max_length=500)
	pattern_type: Optional[PatternType] = None
	category: Optional[PatternCategory] = None
	description: Optional[str] = Field(None, max_length=500)
	is_active: Optional[bool] = None


class SuggestPatternRequest(BaseModel):
	path: str = Field(..., min_length=1)
	category: PatternCategory


class PatternPreviewRequest(BaseModel):
	pattern: str = Field(..., min_length=1)
	pattern_type: PatternType
	sample_paths: List[str] = Field(..., min_length=1, max_length=1000)


class MetricsQuery(BaseModel):
	property_id: str = Field(..., min_length=1)
	start_date: Optional[date] = None
	end_date: Optional[date] = None


# Export

class ExportRequest(BaseModel):
	base_url: str
	max_pages: int = Field(500, ge=1, le=500)
	rate_limit: float = Field(0.5, ge=0, le=10)
	requested_types: List[str] = Field(default_factory=list, max_length=10)

	@field_validator("base_url")
	@classmethod
	def check_base_url(cls, v: str) -> str:
		return check_http_url(v)
