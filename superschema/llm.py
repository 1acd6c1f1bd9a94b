"""
OpenAI-backed schema generation and refinement.

Prompts are built from the page outline and full extracted text. Requests use
JSON mode; token-limit 429s are retried with progressively smaller prompts.
"""
import json
import urllib.parse as urlparse
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .config import Config
from .errors import ApiError
from .log import get_logger
from .sanitizer import validate_refined_schema
from .scraper import ContentAnalysis

logger = get_logger("llm")

NON_SCHEMA_FIELDS = [
	"extracted_text", "extractedText", "rawText", "content", "raw_text", "full_text",
	"outline", "sections", "headings", "tag", "level", "evidence", "metadata",
]
VISION_MODELS = ["gpt-4o", "gpt-4-vision-preview"]
MAX_TEXT_CHARS = 60000
MAX_TEXT_CHARS_UNTRUNCATED = 80000
MAX_SECTIONS = 30
MAX_TOKEN_RETRIES = 2
AGGRESSIVE_TEXT_CHARS = 20000
AGGRESSIVE_SECTIONS = 15
FAQ_MARKERS = ["q:", "a:", "faq", "question", "answer", "q&a"]

SYSTEM_PROMPT = (
	"You are an expert schema.org structured data analyst. Generate comprehensive, accurate, "
	"machine-readable JSON-LD that lets search engines and answer engines understand the page.\n\n"
	"PAGE TYPE RULES:\n"
	"- Article: ONLY when the page has datePublished, a Person author and is clearly a blog post or news article.\n"
	"- Product/Service: when the page describes a specific product or service.\n"
	"- WebPage: the default for marketing, landing, company and informational pages.\n"
	"- FAQPage: only with explicit question and answer pairs.\n"
	"- HowTo: only with numbered step-by-step instructions.\n\n"
	"SCHEMA REQUIREMENTS:\n"
	"- Always include @context and @type.\n"
	"- Extract Organization details (name, url, logo, contactPoint, address, sameAs) when present.\n"
	"- Include BreadcrumbList, FAQPage, HowTo, Review and potentialAction only when the content supports them.\n"
	"- Add aggregateRating, reviewCount, offers or prices ONLY when explicit values are present.\n\n"
	"ACCURACY RULES:\n"
	"- NEVER invent data. Omit what is not stated in the content.\n"
	"- Use only schema.org vocabulary; nested entities are complete objects with @type.\n"
	"- Never output debug or extraction fields such as extracted_text, rawText, content, outline, tag, level or evidence.\n\n"
	"OUTPUT FORMAT:\n"
	"Return a JSON object {\"schemas\": [ ... ]} where each item has @context \"https://schema.org\"."
)

REFINE_SYSTEM_PROMPT = (
	"You are an expert in Schema.org structured data, SEO and answer engine optimisation. "
	"You return precise, valid JSON-LD.\n"
	"Anti-hallucination rules:\n"
	"- NEVER invent author names, social profiles or contact details.\n"
	"- NEVER add facts that are not in the provided metadata.\n"
	"- NEVER use placeholder values such as John Doe or example.com.\n"
	"- When uncertain about factual data, omit the property."
)


@dataclass
class GenerationOptions:
	requested_types: List[str] = field(default_factory=list)
	no_truncate: bool = False


def infer_page_type_from_url(url: str) -> Dict[str, str]:
	"""Page type hint from URL patterns, passed to the model as guidance only."""
	path = urlparse.urlparse(url).path.lower()
	rules = [
		(["/blog/", "/article/", "/post/", "/news/", "/story/"], "Article", "URL suggests blog/article section"),
		(["/product/", "/products/", "/p/"], "Product", "URL suggests product page"),
		(["/service/", "/services/"], "Service", "URL suggests service page"),
		(["/faq", "/help/", "/questions/"], "FAQPage", "URL suggests FAQ page"),
		(["/about", "/company", "/team", "/contact"], "AboutPage or WebPage", "URL suggests informational/company page"),
	]
	for patterns, likely, reason in rules:
		if any(p in path for p in patterns):
			return {"likely_type": likely, "reason": reason}
	if path in ("", "/"):
		return {"likely_type": "WebPage (Homepage)", "reason": "Homepage - likely marketing/landing page"}
	return {"likely_type": "WebPage (default)", "reason": "URL pattern suggests informational/marketing page (not Article)"}


def truncate_text_for_llm(text: str, max_chars: int) -> str:
	"""Cut text to max_chars, carrying FAQ snippets from past the cut along."""
	if len(text) <= max_chars:
		return text
	lowered = text.lower()
	faq_spans = []
	for marker in FAQ_MARKERS:
		idx = lowered.find(marker)
		if idx != -1:
			faq_spans.append((idx, idx + 500))
	if not faq_spans:
		return text[:max_chars]

	keep = min(40000, max_chars - 10000)
	head = text[:keep]
	tail_snippets = [
		text[start:end] for start, end in sorted(faq_spans)
		if start > keep and text[start:end].strip()
	]
	if not tail_snippets:
		return head
	faq_text = "\n\n".join(tail_snippets[:(max_chars - len(head)) // 500])
	combined = head + "\n\n[FAQ Content from later in page]\n\n" + faq_text
	return combined if len(combined) <= max_chars else head


def limit_outline(outline: Dict[str, Any], max_sections: Optional[int]) -> Dict[str, Any]:
	if outline.get("sections") and max_sections is not None:
		return {**outline, "sections": outline["sections"][:max_sections]}
	return outline


def build_user_prompt(
	analysis: ContentAnalysis,
	text: str,
	outline: Dict[str, Any],
	requested_types: Optional[List[str]] = None,
	note: Optional[str] = None,
) -> str:
	hint = infer_page_type_from_url(analysis.url)
	meta = outline.get("meta", {})
	parts = [
		"=== PAGE INFORMATION ===",
		f"URL: {analysis.url}",
		f"Title: {analysis.title}",
		f"\nURL Analysis Hint: {hint['likely_type']} - {hint['reason']}",
		"NOTE: Treat the hint as guidance. Do NOT classify as Article without datePublished and author.",
	]
	if meta:
		parts.append("\n=== META INFORMATION ===")
		for key, label in [
			("description", "Description"),
			("og:description", "OG Description"),
			("og:image", "OG Image (potential logo)"),
			("og:site_name", "Site Name"),
			("keywords", "Keywords"),
		]:
			if meta.get(key):
				parts.append(f"{label}: {meta[key]}")
	if analysis.author or analysis.publish_date:
		parts.append("\n=== ARTICLE METADATA ===")
		parts.append(json.dumps({
			"author": analysis.author,
			"datePublished": analysis.publish_date,
			"dateModified": analysis.modified_date,
		}, ensure_ascii=False))

	parts.append("\n=== STRUCTURED CONTENT OUTLINE ===")
	parts.append("Sections hold the page content grouped by heading with their hierarchy level.")
	parts.append("\n" + json.dumps(outline, ensure_ascii=False, indent=2))

	full_length = len(analysis.text)
	status = note or ("complete" if len(text) >= full_length else f"truncated to {len(text):,} chars (of {full_length:,} total)")
	parts.append(f"\n=== FULL EXTRACTED TEXT ({status}) ===")
	parts.append(text)

	parts.append("\n=== YOUR TASK ===")
	if requested_types:
		parts.append(f"Generate ONLY these schema types: {', '.join(requested_types)}.")
	else:
		parts.append("Generate comprehensive schema.org JSON-LD for every relevant entity on the page.")
	parts.append("Only include data explicitly present in the content. Output only schema.org properties.")
	return "\n".join(parts)


def is_token_limit_error(exc: Exception) -> bool:
	message = str(exc)
	status = getattr(exc, "status_code", None)
	looks_429 = status == 429 or "429" in message
	lowered = message.lower()
	return looks_429 and ("token" in lowered or "TPM" in message or "rate_limit" in lowered)


def strip_non_schema_fields(value: Any) -> Any:
	if isinstance(value, dict):
		return {k: strip_non_schema_fields(v) for k, v in value.items() if k not in NON_SCHEMA_FIELDS}
	if isinstance(value, list):
		return [strip_non_schema_fields(item) for item in value]
	return value


def extract_schema_list(payload: Any) -> List[Dict[str, Any]]:
	"""Accept a single schema, {"schemas": [...]} or {"@graph": [...]}."""
	if isinstance(payload, list):
		items = payload
	elif isinstance(payload, dict) and isinstance(payload.get("schemas"), list):
		items = payload["schemas"]
	elif isinstance(payload, dict) and isinstance(payload.get("@graph"), list):
		context = payload.get("@context", "https://schema.org")
		items = [dict({"@context": context}, **item) if isinstance(item, dict) and "@context" not in item else item
				 for item in payload["@graph"]]
	elif isinstance(payload, dict) and payload:
		items = [payload]
	else:
		items = []
	return [strip_non_schema_fields(item) for item in items if isinstance(item, dict)]


def fallback_schema(title: str, url: str) -> Dict[str, Any]:
	return {"@context": "https://schema.org", "@type": "WebPage", "name": title, "url": url}


class SchemaLLM:
	def __init__(
		self,
		api_key: Optional[str] = None,
		model: Optional[str] = None,
		refine_model: Optional[str] = None,
		client: Any = None,
	):
		self.api_key = api_key if api_key is not None else Config.OPENAI_API_KEY
		self.model = model or Config.OPENAI_MODEL
		self.refine_model = refine_model or Config.REFINE_MODEL
		self._client = client

	@property
	def client(self):
		if self._client is None:
			if not self.api_key:
				raise ApiError("OpenAI service is not properly configured", 503)
			from openai import OpenAI
			self._client = OpenAI(api_key=self.api_key)
		return self._client

	@property
	def configured(self) -> bool:
		return self._client is not None or bool(self.api_key)

	def _complete(self, model: str, messages: List[Dict[str, Any]], temperature: float) -> str:
		resp = self.client.chat.completions.create(
			model=model,
			messages=messages,
			response_format={"type": "json_object"},
			temperature=temperature,
		)
		return resp.choices[0].message.content or ""

	def _messages(self, user: str, screenshot_b64: Optional[str]) -> List[Dict[str, Any]]:
		messages: List[Dict[str, Any]] = [{"role": "system", "content": SYSTEM_PROMPT}]
		if screenshot_b64:
			messages.append({
				"role": "user",
				"content": [
					{"type": "text", "text": user + "\n\nUse the screenshot to fill gaps left by truncated text."},
					{"type": "image_url", "image_url": {"url": f"data:image/jpeg;base64,{screenshot_b64}"}},
				],
			})
		else:
			messages.append({"role": "user", "content": user})
		return messages

	def build_prompt(self, analysis: ContentAnalysis, options: Optional[GenerationOptions] = None) -> Tuple[str, str]:
		"""(system, user) prompt pair for a page, used for prompt dumps."""
		options = options or GenerationOptions()
		max_chars = MAX_TEXT_CHARS_UNTRUNCATED if options.no_truncate else MAX_TEXT_CHARS
		text = truncate_text_for_llm(analysis.text, max_chars)
		outline = limit_outline(analysis.outline, None if options.no_truncate else MAX_SECTIONS)
		return SYSTEM_PROMPT, build_user_prompt(analysis, text, outline, options.requested_types)

	def generate_schemas(
		self,
		analysis: ContentAnalysis,
		options: Optional[GenerationOptions] = None,
	) -> List[Dict[str, Any]]:
		options = options or GenerationOptions()
		max_chars = MAX_TEXT_CHARS_UNTRUNCATED if options.no_truncate else MAX_TEXT_CHARS
		text = truncate_text_for_llm(analysis.text, max_chars)
		outline = limit_outline(analysis.outline, None if options.no_truncate else MAX_SECTIONS)

		model = self.model
		if analysis.screenshot_b64 and model not in VISION_MODELS:
			logger.info(f"Using vision model gpt-4o instead of {model}")
			model = "gpt-4o"

		user = build_user_prompt(analysis, text, outline, options.requested_types)
		retries = 0
		while True:
			try:
				content = self._complete(model, self._messages(user, analysis.screenshot_b64), 0.2)
				break
			except Exception as exc:
				if not is_token_limit_error(exc):
					raise
				retries += 1
				if retries > MAX_TOKEN_RETRIES:
					logger.warning(f"Token limit exceeded after {MAX_TOKEN_RETRIES} retries. Using aggressive truncation.")
					text = analysis.text[:AGGRESSIVE_TEXT_CHARS]
					outline = limit_outline(analysis.outline, AGGRESSIVE_SECTIONS)
					note = f"heavily truncated to {len(text):,} chars due to token limits"
					user = build_user_prompt(analysis, text, outline, options.requested_types, note)
					content = self._complete(model, self._messages(user, analysis.screenshot_b64), 0.2)
					break
				logger.warning(f"Token limit exceeded (attempt {retries}/{MAX_TOKEN_RETRIES}). Truncating and retrying")
				text = text[:int(len(text) * 0.7)]
				sections = outline.get("sections") or []
				if sections:
					outline = {**outline, "sections": sections[:int(len(sections) * 0.7)]}
				note = f"truncated to {len(text):,} chars after token limit error"
				user = build_user_prompt(analysis, text, outline, options.requested_types, note)

		try:
			payload = json.loads(content)
		except json.JSONDecodeError:
			logger.warning(f"Failed to parse LLM JSON response for {analysis.url}, using fallback")
			return [fallback_schema(analysis.title, analysis.url)]

		schemas = extract_schema_list(payload)
		if not schemas:
			logger.warning(f"LLM returned no schemas for {analysis.url}, using fallback")
			return [fallback_schema(analysis.title, analysis.url)]
		logger.info(f"Generated {len(schemas)} schema(s): {', '.join(str(s.get('@type')) for s in schemas)}")
		return schemas

	def refine_schemas(
		self,
		schemas: List[Dict[str, Any]],
		url: str,
		metadata: Optional[Dict[str, Any]] = None,
		refinement_count: int = 1,
	) -> Tuple[List[Dict[str, Any]], List[str]]:
		"""Improve the first schema; returns (schemas, changes)."""
		if not schemas:
			return [], []
		original = schemas[0]
		context = ""
		if metadata is not None:
			verified = {
				key: metadata.get(key) or "[NOT FOUND]"
				for key in ["author", "publish_date", "modified_date", "site_name", "publisher"]
			}
			context = (
				"\n\nORIGINAL SCRAPED METADATA (for verification only):\n"
				+ json.dumps(verified, ensure_ascii=False, indent=2)
				+ "\nOnly add factual properties that exist in this metadata."
			)
		prompt = "\n".join([
			"Enhance the following JSON-LD schema to reach the highest possible quality score.",
			"",
			"CURRENT SCHEMA:",
			json.dumps(original, ensure_ascii=False, indent=2),
			"",
			f"ORIGINAL URL: {url}{context}",
			"",
			"Allowed: keywords, about, mentions, speakable, breadcrumb, isPartOf, potentialAction, inLanguage,",
			"better descriptions. Keep @context and @type unchanged and do not remove existing properties.",
			"Never add author, dates, addresses, founders, telephone or email unless verified above.",
			"",
			'Respond as {"schema": {...}, "changes": ["..."]}',
		])
		try:
			content = self._complete(
				self.refine_model,
				[{"role": "system", "content": REFINE_SYSTEM_PROMPT}, {"role": "user", "content": prompt}],
				0.3,
			)
			result = json.loads(content)
			refined = result.get("schema") if isinstance(result.get("schema"), dict) else result
			changes = result.get("changes") or ["Schema enhanced with AI improvements"]
			refined = strip_non_schema_fields(refined)
			refined = validate_refined_schema(original, refined, metadata, refinement_count)
			logger.info(f"AI refinement completed with {len(changes)} improvements")
			return [refined] + list(schemas[1:]), [str(c) for c in changes]
		except Exception as exc:
			logger.error(f"AI refinement failed, falling back to basic refinement: {exc}")
			changes: List[str] = []
			refined_list = []
			for schema in schemas:
				refined = dict(schema)
				if not refined.get("url"):
					refined["url"] = url
					changes.append('Added "url" property')
				refined_list.append(refined)
			return refined_list, changes
