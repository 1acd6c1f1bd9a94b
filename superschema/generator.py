"""
Schema generation service.

Ties the scraper, the LLM, validation, credits and scoring together and keeps
one schema_generations row per attempt. Failures are recorded on the row and
returned as an unsuccessful result. Credits are only taken once schemas pass
validation and are refunded when the result cannot be stored.
"""
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from sqlalchemy import func, select

from .config import CREDITS_PER_GENERATION, MAX_REFINEMENTS, Config, FeatureFlags
from .credits import CreditService, paginated
from .database import DatabaseManager
from .errors import ApiError, BadRequestError, InsufficientCreditsError, NotFoundError
from .library import LibraryService
from .llm import GenerationOptions, SchemaLLM
from .log import get_logger
from .models import SchemaGeneration, User
from .scoring import calculate_schema_score, extract_schema_type, html_script_tags
from .scraper import PageScraper
from .validator import validate_multiple, validation_summary

logger = get_logger("generator")

BATCH_DELAY_S = 1.0
MAX_BATCH_URLS = 10
INSIGHTS_WINDOW = 50


class GenerationError(ApiError):
	status_code = 400


@dataclass
class GenerationRequest:
	url: str
	user_id: str
	options: GenerationOptions = field(default_factory=GenerationOptions)


@dataclass
class GenerationResult:
	success: bool
	url: str
	schemas: List[Dict[str, Any]] = field(default_factory=list)
	html_script_tags: str = ""
	schema_score: Optional[Dict[str, Any]] = None
	validation_results: List[Dict[str, Any]] = field(default_factory=list)
	schema_id: Optional[str] = None
	discovered_url_id: Optional[str] = None
	processing_time_ms: int = 0
	credits_used: int = 0
	error_message: Optional[str] = None
	error_status: int = 400

	def to_dict(self) -> Dict[str, Any]:
		metadata: Dict[str, Any] = {
			"schema_id": self.schema_id,
			"url": self.url,
			"processing_time_ms": self.processing_time_ms,
			"credits_used": self.credits_used,
		}
		if self.discovered_url_id:
			metadata["discovered_url_id"] = self.discovered_url_id
		if self.error_message:
			metadata["error_message"] = self.error_message
		return {
			"success": self.success,
			"schemas": self.schemas,
			"html_script_tags": self.html_script_tags,
			"schema_score": self.schema_score,
			"validation_results": self.validation_results,
			"metadata": metadata,
		}


class SchemaGeneratorService:
	def __init__(
		self,
		db: DatabaseManager,
		scraper: Optional[PageScraper] = None,
		llm: Optional[SchemaLLM] = None,
		credits: Optional[CreditService] = None,
		library: Optional[LibraryService] = None,
		flags: Optional[FeatureFlags] = None,
		skip_credit_check: Optional[bool] = None,
		permissive: bool = False,
		sleep: Callable[[float], None] = time.sleep,
	):
		self.db = db
		self.scraper = scraper or PageScraper()
		self.llm = llm or SchemaLLM()
		self.flags = flags or FeatureFlags()
		self.credits = credits or CreditService(db, self.flags)
		self.library = library or LibraryService(db)
		self.skip_credit_check = Config.SKIP_CREDIT_CHECK if skip_credit_check is None else skip_credit_check
		# Permissive mode keeps schemas that failed strict validation
		self.permissive = permissive
		self.sleep = sleep

	def _team_id(self, user_id: str) -> Optional[str]:
		if not self.flags.teams_enabled_for(user_id):
			return None
		with self.db.get_session() as session:
			user = session.get(User, user_id)
			return user.active_team_id if user else None

	def generate(self, request: GenerationRequest) -> GenerationResult:
		started = time.time()
		generation_id: Optional[str] = None
		credits_used = 0
		try:
			ok, error = self.scraper.validate_url(request.url)
			if not ok:
				raise GenerationError(f"URL not accessible: {error}")

			if not self.skip_credit_check and not self.credits.has_credits(request.user_id, CREDITS_PER_GENERATION):
				raise InsufficientCreditsError()

			team_id = self._team_id(request.user_id)
			with self.db.get_session() as session:
				generation = SchemaGeneration(user_id=request.user_id, team_id=team_id, url=request.url, status="pending")
				session.add(generation)
				session.flush()
				generation_id = generation.id

			analysis = self.scraper.scrape_url(request.url)
			schemas = self.llm.generate_schemas(analysis, request.options)
			if not schemas:
				raise GenerationError("No schemas could be generated from the provided content")

			results = validate_multiple(schemas)
			for index, result in enumerate(results):
				if not result.is_valid:
					messages = ", ".join(e.message for e in result.errors)
					logger.warning(f"Schema {index + 1} ({schemas[index].get('@type')}) failed validation: {messages}")
			valid = [r.schema for r in results if r.is_valid]
			to_use = schemas if self.permissive else valid
			if not to_use:
				raise GenerationError("No schemas could be generated or passed validation")
			logger.info(f"Schema filtering: {len(schemas)} generated -> {len(valid)} valid")

			if not self.skip_credit_check:
				if not self.credits.consume(request.user_id, CREDITS_PER_GENERATION, f"Schema generation for {request.url}"):
					raise GenerationError("Failed to consume credits")
				credits_used = CREDITS_PER_GENERATION

			score = calculate_schema_score(to_use).to_dict()
			processing_ms = int((time.time() - started) * 1000)
			with self.db.get_session() as session:
				generation = session.get(SchemaGeneration, generation_id)
				generation.schemas = to_use
				generation.schema_type = extract_schema_type(to_use)
				generation.status = "success"
				generation.processing_time_ms = processing_ms
				generation.credits_used = credits_used
				generation.schema_score = score
				generation.content_metadata = analysis.to_dict()
				library_url = self.library.link_generation(session, request.user_id, request.url, generation, team_id)
				discovered_url_id = library_url.id

			logger.info(f"Generated {len(to_use)} schema(s) for {request.url} in {processing_ms}ms")
			return GenerationResult(
				success=True,
				url=request.url,
				schemas=to_use,
				html_script_tags=html_script_tags(to_use),
				schema_score=score,
				validation_results=[r.to_dict() for r in results],
				schema_id=generation_id,
				discovered_url_id=discovered_url_id,
				processing_time_ms=processing_ms,
				credits_used=credits_used,
			)
		except Exception as e:
			processing_ms = int((time.time() - started) * 1000)
			message = e.message if isinstance(e, ApiError) else str(e) or "Unknown error occurred"
			if generation_id:
				self._mark_failed(generation_id, message, processing_ms)
			if credits_used:
				self.credits.refund(request.user_id, credits_used, f"Refund for failed generation of {request.url}")
			logger.error(f"Schema generation failed for {request.url}: {message}")
			return GenerationResult(
				success=False,
				url=request.url,
				schema_id=generation_id,
				processing_time_ms=processing_ms,
				error_message=message,
				error_status=e.status_code if isinstance(e, ApiError) else 400,
			)

	def _mark_failed(self, generation_id: str, message: str, processing_ms: int) -> None:
		with self.db.get_session() as session:
			generation = session.get(SchemaGeneration, generation_id)
			if generation is not None:
				generation.status = "failed"
				generation.error_message = message
				generation.processing_time_ms = processing_ms

	def refine(
		self,
		user_id: str,
		schema_id: Optional[str] = None,
		schemas: Optional[List[Dict[str, Any]]] = None,
		url: Optional[str] = None,
	) -> Dict[str, Any]:
		"""
		Improve schemas with the refinement model.

		With schema_id the stored generation is refined (at most MAX_REFINEMENTS
		times) and updated in place; otherwise the given schemas are refined
		without being stored. Refinement costs no credits.
		"""
		current = 0
		metadata = None
		if schema_id:
			with self.db.get_session() as session:
				generation = self._owned_generation(session, schema_id, user_id)
				current = generation.refinement_count
				if current >= MAX_REFINEMENTS:
					raise BadRequestError(f"Maximum of {MAX_REFINEMENTS} refinements reached for this schema")
				schemas = schemas or generation.schemas
				url = url or generation.url
				metadata = generation.content_metadata
		if not schemas:
			raise BadRequestError("Request body must contain an array of schemas")
		if not url:
			raise BadRequestError("URL is required for schema refinement")

		refined, changes = self.llm.refine_schemas(schemas, url, metadata, current + 1)
		score = calculate_schema_score(refined).to_dict()
		count = current
		if schema_id:
			with self.db.get_session() as session:
				stmt = select(SchemaGeneration).where(SchemaGeneration.id == schema_id).with_for_update()
				generation = session.execute(stmt).scalar_one()
				if generation.refinement_count >= MAX_REFINEMENTS:
					raise BadRequestError(f"Maximum of {MAX_REFINEMENTS} refinements reached for this schema")
				generation.schemas = refined
				generation.schema_type = extract_schema_type(refined)
				generation.schema_score = score
				generation.refinement_count += 1
				count = generation.refinement_count
		logger.info(f"Refined schema for {url}: score {score['overall_score']}, {len(changes)} change(s)")
		return {
			"schemas": refined,
			"html_script_tags": html_script_tags(refined),
			"schema_score": score,
			"highlighted_changes": changes,
			"refinement_count": count,
			"remaining_refinements": MAX_REFINEMENTS - count,
			"metadata": {"schema_id": schema_id, "url": url, "processing_time_ms": 0, "credits_used": 0},
		}

	def rescore(self, user_id: str, schema_id: str, schemas: List[Dict[str, Any]]) -> Dict[str, Any]:
		"""Store edited schemas on a generation and recalculate its score."""
		score = calculate_schema_score(schemas).to_dict()
		with self.db.get_session() as session:
			generation = self._owned_generation(session, schema_id, user_id)
			generation.schemas = schemas
			generation.schema_type = extract_schema_type(schemas)
			generation.schema_score = score
		return score

	def validate_schemas(self, schemas: List[Any]) -> Dict[str, Any]:
		results = validate_multiple(schemas)
		summary = validation_summary(results)
		return {
			"is_valid": summary["error_rate"] == 0,
			"results": [r.to_dict() for r in results],
			"summary": summary,
		}

	def get_generation(self, user_id: str, schema_id: str) -> Dict[str, Any]:
		with self.db.get_session() as session:
			return self._owned_generation(session, schema_id, user_id).to_dict()

	def history(self, user_id: str, page: int = 1, limit: int = 10) -> Dict[str, Any]:
		with self.db.get_session() as session:
			total = session.execute(
				select(func.count()).select_from(SchemaGeneration).where(SchemaGeneration.user_id == user_id)
			).scalar_one()
			rows = session.execute(
				select(SchemaGeneration)
				.where(SchemaGeneration.user_id == user_id)
				.order_by(SchemaGeneration.created_at.desc())
				.offset((page - 1) * limit)
				.limit(limit)
			).scalars().all()
			return paginated([r.to_dict() for r in rows], page, limit, total)

	def stats(self, user_id: str) -> Dict[str, Any]:
		with self.db.get_session() as session:
			user = session.get(User, user_id)
			if user is None:
				raise NotFoundError("User not found")
			counts = dict(session.execute(
				select(SchemaGeneration.status, func.count())
				.where(SchemaGeneration.user_id == user_id)
				.group_by(SchemaGeneration.status)
			).all())
			return {
				"credit_balance": user.credit_balance,
				"total_credits_used": user.total_credits_used,
				"total_generations": sum(counts.values()),
				"successful_generations": counts.get("success", 0),
				"failed_generations": counts.get("failed", 0),
			}

	def insights(self, user_id: str) -> Dict[str, Any]:
		"""Stats plus success rate, timing and schema types over the latest generations."""
		stats = self.stats(user_id)
		recent = self.history(user_id, 1, INSIGHTS_WINDOW)["data"]

		successful = [g for g in recent if g["status"] == "success"]
		success_rate = len(successful) / len(recent) * 100 if recent else 0
		times = [g["processing_time_ms"] for g in successful if g["processing_time_ms"]]
		avg_time = sum(times) / len(times) if times else 0

		type_counts: Counter = Counter()
		for generation in recent:
			for schema in generation["schemas"]:
				schema_type = schema.get("@type") if isinstance(schema, dict) else None
				if isinstance(schema_type, str) and schema_type:
					type_counts[schema_type] += 1

		return dict(
			stats,
			success_rate=round(success_rate),
			avg_processing_time=round(avg_time),
			common_schema_types=[{"type": t, "count": c} for t, c in type_counts.most_common(5)],
			recent_activity=recent[:10],
		)

	def iter_batch(self, requests_: List[GenerationRequest]) -> Iterator[Tuple[str, Dict[str, Any]]]:
		"""Generate sequentially, yielding ("progress", ...) events and a final ("complete", ...)."""
		if len(requests_) > MAX_BATCH_URLS:
			raise BadRequestError(f"Maximum {MAX_BATCH_URLS} URLs allowed per batch request")
		total = len(requests_)
		successful = failed = credits_used = 0
		for index, request in enumerate(requests_):
			yield "progress", {
				"index": index, "url": request.url, "status": "processing", "completed": index, "total": total,
			}
			result = self.generate(request)
			credits_used += result.credits_used
			if result.success:
				successful += 1
			else:
				failed += 1
			yield "progress", {
				"index": index,
				"url": request.url,
				"status": "success" if result.success else "failed",
				"schemas": result.schemas,
				"error": result.error_message,
				"url_id": result.discovered_url_id,
				"completed": index + 1,
				"total": total,
				"result": result,
			}
			if index < total - 1:
				self.sleep(BATCH_DELAY_S)
		yield "complete", {
			"summary": {"total": total, "successful": successful, "failed": failed, "credits_used": credits_used},
		}

	def generate_batch(self, requests_: List[GenerationRequest]) -> List[GenerationResult]:
		return [data["result"] for event, data in self.iter_batch(requests_) if "result" in data]

	@staticmethod
	def _owned_generation(session, schema_id: str, user_id: str) -> SchemaGeneration:
		generation = session.get(SchemaGeneration, schema_id)
		if generation is None or generation.user_id != user_id:
			raise NotFoundError("Schema not found")
		return generation
