"""Quality score for generated JSON-LD, plus small display helpers."""
import json
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .log import get_logger

logger = get_logger("scoring")

WEIGHTS = {"required": 0.35, "recommended": 0.25, "advanced_aeo": 0.25, "content_quality": 0.15}

RECOMMENDED_PROPERTIES = [
	"description", "url", "image", "author", "publisher", "datePublished", "dateModified",
]
AEO_PROPERTIES = [
	"keywords", "about", "mentions", "sameAs", "speakable", "inLanguage", "articleSection",
	"wordCount", "isPartOf", "mainEntityOfPage", "aggregateRating", "review",
]

SCHEMA_TYPE_NAMES = {
	"Article": "Article", "NewsArticle": "Article", "BlogPosting": "Article",
	"ScholarlyArticle": "Article", "TechArticle": "Article", "Report": "Article",
	"FAQPage": "FAQ",
	"HowTo": "HowTo",
	"Recipe": "Recipe",
	"Product": "Product",
	"Organization": "Organization", "Corporation": "Organization",
	"LocalBusiness": "Local Business", "Store": "Local Business", "Restaurant": "Local Business",
	"Event": "Event",
	"Person": "Person",
	"VideoObject": "Video",
	"Course": "Course",
	"JobPosting": "Job Posting",
	"BreadcrumbList": "Breadcrumb",
	"WebSite": "Website",
	"WebPage": "Web Page",
}
DEFAULT_TYPE_NAME = "Auto"


def round_half_up(value: float) -> int:
	return int(math.floor(value + 0.5))


def grade_for(score: int) -> str:
	if score >= 90:
		return "A"
	if score >= 80:
		return "B"
	if score >= 70:
		return "C"
	if score >= 60:
		return "D"
	return "F"


@dataclass
class SchemaScore:
	overall_score: int
	grade: str
	breakdown: Dict[str, int]
	suggestions: List[str] = field(default_factory=list)
	strengths: List[str] = field(default_factory=list)
	action_items: List[str] = field(default_factory=list)

	def to_dict(self) -> Dict[str, Any]:
		return {
			"overall_score": self.overall_score,
			"grade": self.grade,
			"breakdown": dict(self.breakdown),
			"suggestions": list(self.suggestions),
			"strengths": list(self.strengths),
			"action_items": list(self.action_items),
		}


def _content_quality(schema: Dict[str, Any]) -> int:
	points = 0
	description = schema.get("description")
	if isinstance(description, str) and description:
		points += 20 if 50 <= len(description) <= 160 else 10

	author = schema.get("author")
	if isinstance(author, (dict, list)) and author:
		points += 15
		if isinstance(author, dict) and author.get("sameAs"):
			points += 10
	elif author:
		points += 10

	publisher = schema.get("publisher")
	if isinstance(publisher, dict) and publisher:
		points += 15
		if publisher.get("logo"):
			points += 10

	image = schema.get("image")
	if image:
		points += 10
		if isinstance(image, (dict, list)):
			points += 10

	keywords = schema.get("keywords")
	if isinstance(keywords, list) and keywords:
		points += 10
	elif isinstance(keywords, str) and keywords:
		points += 5

	return min(points, 100)


def calculate_schema_score(schemas: List[Dict[str, Any]]) -> SchemaScore:
	"""Score the primary (first) schema out of 100."""
	if not schemas or not isinstance(schemas[0], dict):
		return SchemaScore(0, "F", {k: 0 for k in WEIGHTS}, suggestions=["Generate a schema to get a score"])
	schema = schemas[0]

	required = 0
	if schema.get("@context"):
		required += 33
	if schema.get("@type"):
		required += 33
	if schema.get("name") or schema.get("headline"):
		required += 34

	present_recommended = [p for p in RECOMMENDED_PROPERTIES if schema.get(p)]
	present_aeo = [p for p in AEO_PROPERTIES if schema.get(p)]
	breakdown = {
		"required": required,
		"recommended": round_half_up(len(present_recommended) / len(RECOMMENDED_PROPERTIES) * 100),
		"advanced_aeo": round_half_up(len(present_aeo) / len(AEO_PROPERTIES) * 100),
		"content_quality": _content_quality(schema),
	}
	overall = round_half_up(sum(breakdown[k] * w for k, w in WEIGHTS.items()))

	missing_recommended = [p for p in RECOMMENDED_PROPERTIES if p not in present_recommended]
	missing_aeo = [p for p in AEO_PROPERTIES if p not in present_aeo]
	suggestions = [f'Add "{p}" to strengthen the schema' for p in missing_recommended]
	strengths = []
	if required == 100:
		strengths.append("All required properties are present")
	if present_aeo:
		strengths.append(f"Uses answer engine features: {', '.join(present_aeo)}")
	action_items = []
	if required < 100:
		action_items.append("Add the missing required properties (@context, @type, name or headline)")
	if missing_aeo:
		action_items.append(f"Consider adding {', '.join(missing_aeo[:3])} for answer engine visibility")

	logger.debug(f"Schema score {overall}: {breakdown}")
	return SchemaScore(overall, grade_for(overall), breakdown, suggestions, strengths, action_items)


def get_raw_schema_type(schemas: Any) -> Optional[str]:
	if isinstance(schemas, list):
		return get_raw_schema_type(schemas[0]) if schemas else None
	if isinstance(schemas, dict):
		schema_type = schemas.get("@type")
		if isinstance(schema_type, list):
			return schema_type[0] if schema_type else None
		if isinstance(schema_type, str):
			return schema_type
	return None


def extract_schema_type(schemas: Any) -> str:
	"""Display name for the primary schema type, e.g. BlogPosting -> Article."""
	raw = get_raw_schema_type(schemas)
	if not raw:
		return DEFAULT_TYPE_NAME
	return SCHEMA_TYPE_NAMES.get(raw, raw)


def html_script_tags(schemas: List[Dict[str, Any]]) -> str:
	return "\n\n".join(
		'<script type="application/ld+json">\n' + json.dumps(schema, ensure_ascii=False, indent=2) + "\n</script>"
		for schema in schemas
	)
