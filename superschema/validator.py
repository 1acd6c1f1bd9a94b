"""Structural validation of JSON-LD schemas."""
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Callable, Dict, List, Optional

VALID_CONTEXTS = ["https://schema.org", "http://schema.org", "https://schema.org/", "http://schema.org/"]

KNOWN_TYPES = {
	"Article", "BlogPosting", "NewsArticle", "Product", "Organization", "LocalBusiness",
	"Person", "Event", "Recipe", "Course", "WebSite", "WebPage", "BreadcrumbList",
	"Review", "Rating", "Offer", "FAQPage", "QAPage", "ImageObject",
}
ARTICLE_TYPES = {"Article", "BlogPosting", "NewsArticle"}
BUSINESS_TYPES = {"Organization", "LocalBusiness"}

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

# Human-written dates that show up in scraped markup besides ISO 8601
DATE_FORMATS = (
	"%Y/%m/%d",
	"%m/%d/%Y",
	"%B %d, %Y",
	"%b %d, %Y",
	"%B %d %Y",
	"%b %d %Y",
	"%d %B %Y",
	"%d %b %Y",
	"%Y-%m-%d %H:%M",
	"%Y-%m-%dT%H:%M:%S%z",
	"%Y-%m-%dT%H:%M:%S.%f%z",
)


def parse_date(value: Any) -> Optional[datetime]:
	if not isinstance(value, str) or not value.strip():
		return None
	text = value.strip()
	if text.endswith("Z"):
		text = text[:-1] + "+00:00"
	parsed = _parse_date_text(text)
	if parsed is None:
		return None
	# Compare naive and aware dates on the same footing
	return parsed if parsed.tzinfo is None else parsed.astimezone(timezone.utc).replace(tzinfo=None)


def _parse_date_text(text: str) -> Optional[datetime]:
	try:
		return datetime.fromisoformat(text)
	except ValueError:
		pass
	for fmt in DATE_FORMATS:
		try:
			return datetime.strptime(text, fmt)
		except ValueError:
			continue
	# RFC 2822, e.g. "Tue, 05 Mar 2024 10:00:00 GMT"
	try:
		return parsedate_to_datetime(text)
	except (TypeError, ValueError):
		return None


def _is_url(value: Any) -> bool:
	return isinstance(value, str) and value.startswith(("http://", "https://"))


def _is_number(value: Any) -> bool:
	return isinstance(value, (int, float)) and not isinstance(value, bool)


PROPERTY_VALIDATORS: Dict[str, Callable[[Any], bool]] = {
	"url": _is_url,
	"email": lambda v: isinstance(v, str) and bool(EMAIL_RE.match(v)),
	"telephone": lambda v: isinstance(v, str) and len(v) > 0,
	"datePublished": lambda v: parse_date(v) is not None,
	"dateModified": lambda v: parse_date(v) is not None,
	"startDate": lambda v: parse_date(v) is not None,
	"endDate": lambda v: parse_date(v) is not None,
	"price": lambda v: isinstance(v, str) or _is_number(v),
	"ratingValue": lambda v: _is_number(v) and v >= 0,
	"bestRating": lambda v: _is_number(v) and v >= 0,
	"worstRating": lambda v: _is_number(v) and v >= 0,
}


@dataclass
class ValidationIssue:
	field: str
	message: str
	severity: str = "error"
	path: Optional[str] = None

	def to_dict(self) -> Dict[str, Any]:
		data = {"field": self.field, "message": self.message, "severity": self.severity}
		if self.path:
			data["path"] = self.path
		return data


@dataclass
class ValidationResult:
	is_valid: bool
	errors: List[ValidationIssue] = field(default_factory=list)
	warnings: List[ValidationIssue] = field(default_factory=list)
	schema: Optional[Dict[str, Any]] = None

	def to_dict(self) -> Dict[str, Any]:
		return {
			"is_valid": self.is_valid,
			"errors": [e.to_dict() for e in self.errors],
			"warnings": [w.to_dict() for w in self.warnings],
		}


class _Collector:
	def __init__(self):
		self.errors: List[ValidationIssue] = []
		self.warnings: List[ValidationIssue] = []

	def error(self, field_name: str, message: str, path: Optional[str] = None) -> None:
		self.errors.append(ValidationIssue(field_name, message, "error", path))

	def warn(self, field_name: str, message: str, path: Optional[str] = None) -> None:
		self.warnings.append(ValidationIssue(field_name, message, "warning", path))


def _context_ok(context: Any) -> bool:
	if isinstance(context, str):
		return context in VALID_CONTEXTS
	if isinstance(context, list):
		return any(c in VALID_CONTEXTS for c in context if isinstance(c, str))
	return False


def _check_formats(obj: Dict[str, Any], out: _Collector, prefix: str = "") -> None:
	for prop, check in PROPERTY_VALIDATORS.items():
		value = obj.get(prop)
		if value and not check(value):
			name = f"{prefix}{prop}"
			out.warn(name, f'"{prop}" has invalid format', name if prefix else None)


def _check_image(image: Any, out: _Collector) -> None:
	if isinstance(image, str):
		if not _is_url(image):
			out.warn("image", "Image should be a valid URL")
	elif isinstance(image, list):
		for index, item in enumerate(image):
			if isinstance(item, str) and not _is_url(item):
				out.warn(f"image[{index}]", "Image URL is invalid")
	elif isinstance(image, dict) and not image.get("url"):
		out.warn("image.url", "Image object should have a url property")


def _check_author(author: Any, out: _Collector) -> None:
	if not isinstance(author, dict):
		return
	if not author.get("@type"):
		out.warn("author.@type", "Author object should have @type property")
	if not author.get("name"):
		out.warn("author.name", "Author should have a name")


def _check_rating(rating: Any, out: _Collector, field_name: str) -> None:
	if not isinstance(rating, dict):
		out.warn(field_name, "Rating should be an object")
		return
	value = rating.get("ratingValue")
	if not _is_number(value):
		out.error(f"{field_name}.ratingValue", "ratingValue must be a number")
		return
	best, worst = rating.get("bestRating"), rating.get("worstRating")
	if _is_number(best) and _is_number(worst) and value and (value > best or value < worst):
		out.warn(f"{field_name}.ratingValue", "ratingValue should be between worstRating and bestRating")


def _check_business_contact(obj: Dict[str, Any], out: _Collector, prefix: str = "") -> None:
	if not obj.get("address"):
		out.warn(f"{prefix}address", "Businesses should have address information", f"{prefix}address" if prefix else None)
	if not obj.get("telephone") and not obj.get("email"):
		out.warn(
			f"{prefix}contact",
			"Businesses should have contact information (telephone or email)",
			f"{prefix}contact" if prefix else None,
		)


def _check_nested(obj: Dict[str, Any], parent: str, out: _Collector) -> None:
	# Nested objects inherit @context from the parent
	schema_type = obj.get("@type")
	if isinstance(schema_type, str) and schema_type not in KNOWN_TYPES:
		out.warn(f"{parent}.@type", f'"{schema_type}" is not a recognized Schema.org type', f"{parent}.@type")
	_check_formats(obj, out, f"{parent}.")
	if schema_type in BUSINESS_TYPES:
		_check_business_contact(obj, out, f"{parent}.")
	for key, value in obj.items():
		if isinstance(value, dict) and value.get("@type"):
			_check_nested(value, f"{parent}.{key}", out)


def _check_type_rules(schema: Dict[str, Any], out: _Collector) -> None:
	schema_type = schema.get("@type")
	if schema_type in ARTICLE_TYPES:
		if not schema.get("author"):
			out.warn("author", "Articles should have an author for better SEO")
		if not schema.get("datePublished"):
			out.warn("datePublished", "Articles should have a publication date")
		if not schema.get("image"):
			out.warn("image", "Articles should have an image for better visibility")
	elif schema_type == "Product":
		if not schema.get("image"):
			out.warn("image", "Products should have images for better visibility")
		if not schema.get("description"):
			out.warn("description", "Products should have descriptions")
		if not schema.get("offers") and not schema.get("price"):
			out.warn("offers", "Products should have offers or price information")
	elif schema_type == "Event":
		if not schema.get("location"):
			out.warn("location", "Events should have location information")
		start, end = parse_date(schema.get("startDate")), parse_date(schema.get("endDate"))
		if start and end and start >= end:
			out.error("endDate", "End date must be after start date")
	elif schema_type in BUSINESS_TYPES:
		_check_business_contact(schema, out)


def validate_schema(schema: Any) -> ValidationResult:
	out = _Collector()
	if not isinstance(schema, dict):
		out.error("schema", "Schema must be a valid object")
		return ValidationResult(False, out.errors, out.warnings)

	if not schema.get("@context"):
		out.error("@context", "@context is required for JSON-LD")
	elif not _context_ok(schema["@context"]):
		out.warn("@context", "Context should be a valid Schema.org URL")

	schema_type = schema.get("@type")
	if not schema_type:
		out.error("@type", "@type is required for JSON-LD")
	elif not isinstance(schema_type, str):
		out.error("@type", "@type must be a string")
	elif schema_type not in KNOWN_TYPES:
		out.warn("@type", f'"{schema_type}" is not a recognized Schema.org type')

	_check_formats(schema, out)
	if schema.get("image"):
		_check_image(schema["image"], out)
	if schema.get("author"):
		_check_author(schema["author"], out)
	if schema.get("aggregateRating"):
		_check_rating(schema["aggregateRating"], out, "aggregateRating")

	for key, value in schema.items():
		if isinstance(value, dict) and value.get("@type"):
			_check_nested(value, key, out)

	_check_type_rules(schema, out)

	valid = not out.errors
	return ValidationResult(valid, out.errors, out.warnings, schema if valid else None)


def validate_multiple(schemas: List[Any]) -> List[ValidationResult]:
	return [validate_schema(s) for s in schemas]


def validation_summary(results: List[ValidationResult]) -> Dict[str, Any]:
	total = len(results)
	valid = len([r for r in results if r.is_valid])
	return {
		"total_schemas": total,
		"valid_schemas": valid,
		"total_errors": sum(len(r.errors) for r in results),
		"total_warnings": sum(len(r.warnings) for r in results),
		"error_rate": (total - valid) / total if total else 0,
	}
