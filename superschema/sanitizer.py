"""Strip facts a refinement pass added without evidence in the scraped metadata."""
import copy
import re
from typing import Any, Dict, List, Optional

from .log import get_logger

logger = get_logger("sanitizer")

PROTECTED_PROPERTIES = ["author", "editor", "contributor", "creator"]

PROTECTED_ORG_PROPERTIES = [
	"address", "founder", "founders", "employee", "employees", "memberOf", "member",
	"contactPoint", "telephone", "email", "faxNumber",
]

PLACEHOLDER_PATTERNS = [
	re.compile(p, re.I) for p in [
		r"john\s+doe", r"jane\s+doe", r"example\.com", r"placeholder",
		r"\[your\s+", r"\{your\s+", r"\[company\s+", r"\{company\s+", r"lorem\s+ipsum",
	]
]
FAKE_LINK_MARKERS = ["johndoe", "janedoe", "example"]
SUSPICIOUS_DATES = ["2023-01-01", "2024-01-01", "2025-01-01"]
AUTHOR_NOT_FOUND = "[NOT FOUND - DO NOT EXTRACT FROM CONTENT - OMIT ENTIRE author PROPERTY]"


def _verified_in_metadata(prop: str, metadata: Optional[Dict[str, Any]]) -> bool:
	if not metadata:
		return False
	if prop == "author":
		author = metadata.get("author")
		return bool(author) and author != AUTHOR_NOT_FOUND
	# editor, contributor and creator are never scraped
	return False


def is_placeholder(value: Any) -> bool:
	return isinstance(value, str) and any(p.search(value) for p in PLACEHOLDER_PATTERNS)


def _sanitize_organization(
	original: Dict[str, Any],
	refined: Dict[str, Any],
	refinement_count: int,
) -> Dict[str, Any]:
	sanitized = dict(refined)
	for prop in PROTECTED_ORG_PROPERTIES:
		if refined.get(prop) and not original.get(prop):
			# Organisation details are never scraped, so nothing verifies them
			if refinement_count == 1:
				logger.warning(f"Removing unverified organization property: {prop}")
				sanitized.pop(prop, None)
			else:
				logger.info(f"Allowing organization property on refinement #{refinement_count}: {prop}")
	return sanitized


def remove_placeholder_values(schema: Dict[str, Any]) -> Dict[str, Any]:
	sanitized = copy.deepcopy(schema)

	author = sanitized.get("author")
	if isinstance(author, dict):
		if is_placeholder(author.get("name")):
			logger.warning(f"Removing placeholder author: {author.get('name')}")
			sanitized.pop("author")
		else:
			same_as = author.get("sameAs")
			links = same_as if isinstance(same_as, list) else [same_as] if same_as else []
			if any(isinstance(l, str) and any(m in l for m in FAKE_LINK_MARKERS) for l in links):
				logger.warning("Removing fake sameAs links from author")
				sanitized.pop("author")

	publisher = sanitized.get("publisher")
	if isinstance(publisher, dict) and is_placeholder(publisher.get("name")):
		logger.warning(f"Removing placeholder publisher name: {publisher.get('name')}")
		publisher.pop("name")

	published = sanitized.get("datePublished")
	if isinstance(published, str) and any(d in published for d in SUSPICIOUS_DATES):
		logger.warning(f"Potentially hallucinated date: {published}")

	return sanitized


def validate_refined_schema(
	original: Dict[str, Any],
	refined: Dict[str, Any],
	metadata: Optional[Dict[str, Any]] = None,
	refinement_count: int = 1,
) -> Dict[str, Any]:
	"""Sanitised copy of refined.

	The first refinement is strict about organisation details; later ones only
	remove protected properties and obvious placeholders.
	"""
	tier = "STRICT" if refinement_count == 1 else "RELAXED"
	logger.debug(f"Validating refinement #{refinement_count} ({tier})")
	sanitized = dict(refined)

	for prop in PROTECTED_PROPERTIES:
		if refined.get(prop) and not original.get(prop) and not _verified_in_metadata(prop, metadata):
			logger.warning(f"Removing unverified property: {prop}")
			sanitized.pop(prop, None)

	if isinstance(refined.get("publisher"), dict):
		original_publisher = original.get("publisher") if isinstance(original.get("publisher"), dict) else {}
		sanitized["publisher"] = _sanitize_organization(original_publisher, refined["publisher"], refinement_count)

	main_entity = refined.get("mainEntity")
	if isinstance(main_entity, dict) and isinstance(main_entity.get("provider"), dict):
		original_main = original.get("mainEntity") if isinstance(original.get("mainEntity"), dict) else {}
		original_provider = original_main.get("provider") if isinstance(original_main.get("provider"), dict) else {}
		sanitized["mainEntity"] = dict(
			main_entity,
			provider=_sanitize_organization(original_provider, main_entity["provider"], refinement_count),
		)

	return remove_placeholder_values(sanitized)


def validation_changes(original: Dict[str, Any], validated: Dict[str, Any]) -> List[str]:
	changes = [f"Removed unverified property: {key}" for key in original if key not in validated]
	if isinstance(original.get("publisher"), dict) and isinstance(validated.get("publisher"), dict):
		changes.extend(
			f"Removed unverified publisher property: {key}"
			for key in original["publisher"] if key not in validated["publisher"]
		)
	return changes
