"""URL library: domains a user has crawled and the pages found on them."""
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from .database import DatabaseManager
from .errors import NotFoundError
from .log import get_logger
from .models import LibraryUrl, SchemaGeneration, UserDomain, utcnow
from .scoring import extract_schema_type
from .urls import domain_key, extract_path, normalize_library_url, path_depth

logger = get_logger("library")


class LibraryService:
	def __init__(self, db: DatabaseManager):
		self.db = db

	# Domains

	def save_domain(self, user_id: str, domain: str, team_id: Optional[str] = None) -> Dict[str, Any]:
		with self.db.get_session() as session:
			return self._upsert_domain(session, user_id, domain, team_id).to_dict()

	def domains(self, user_id: str) -> List[Dict[str, Any]]:
		with self.db.get_session() as session:
			rows = session.execute(
				select(UserDomain).where(UserDomain.user_id == user_id).order_by(UserDomain.last_crawled_at.desc())
			).scalars().all()
			return [r.to_dict() for r in rows]

	def delete_domain(self, user_id: str, domain_id: str) -> None:
		"""Delete a domain and every URL saved under it."""
		with self.db.get_session() as session:
			domain = self._owned(session, UserDomain, domain_id, user_id, "Domain not found")
			session.delete(domain)
		logger.info(f"Deleted domain {domain_id} for {user_id}")

	# URLs

	def save_urls(
		self,
		user_id: str,
		domain: str,
		urls: List[Dict[str, Any]],
		team_id: Optional[str] = None,
	) -> Dict[str, Any]:
		"""Save discovered URLs under domain, skipping ones already in the library."""
		with self.db.get_session() as session:
			user_domain = self._upsert_domain(session, user_id, domain, team_id)
			existing = set(session.execute(
				select(LibraryUrl.normalized_url).where(LibraryUrl.user_id == user_id)
			).scalars().all())
			added = 0
			for item in urls:
				url = item["url"]
				normalized = normalize_library_url(url)
				if normalized in existing:
					continue
				existing.add(normalized)
				path = item.get("path") or extract_path(url)
				session.add(LibraryUrl(
					user_id=user_id,
					team_id=team_id,
					domain_id=user_domain.id,
					url=url,
					normalized_url=normalized,
					path=path,
					depth=item.get("depth", path_depth(path)),
				))
				added += 1
			session.flush()
			user_domain.total_urls_discovered = len(user_domain.urls)
			user_domain.last_crawled_at = utcnow()
			logger.info(f"Saved {added} new URL(s) for {domain} ({len(urls) - added} already in library)")
			return {"domain": user_domain.to_dict(), "url_count": len(urls), "added": added}

	def list_urls(
		self,
		user_id: str,
		domain_id: Optional[str] = None,
		has_schema: Optional[bool] = None,
		is_hidden: Optional[bool] = None,
		search: Optional[str] = None,
	) -> List[Dict[str, Any]]:
		"""Library URLs, newest first. Hidden URLs are excluded unless is_hidden is given."""
		stmt = select(LibraryUrl).where(LibraryUrl.user_id == user_id)
		if domain_id:
			stmt = stmt.where(LibraryUrl.domain_id == domain_id)
		if has_schema is not None:
			stmt = stmt.where(LibraryUrl.has_schema.is_(has_schema))
		stmt = stmt.where(LibraryUrl.is_hidden.is_(bool(is_hidden)))
		if search:
			stmt = stmt.where(LibraryUrl.url.ilike(f"%{search}%"))
		with self.db.get_session() as session:
			rows = session.execute(stmt.order_by(LibraryUrl.created_at.desc())).scalars().all()
			return [r.to_dict() for r in rows]

	def set_hidden(self, user_id: str, url_id: str, hidden: bool) -> None:
		with self.db.get_session() as session:
			url = self._owned(session, LibraryUrl, url_id, user_id, "URL not found")
			url.is_hidden = hidden

	def delete_url(self, user_id: str, url_id: str) -> None:
		with self.db.get_session() as session:
			url = self._owned(session, LibraryUrl, url_id, user_id, "URL not found or does not belong to user")
			# Generations stay in history without the library link
			for generation in session.execute(
				select(SchemaGeneration).where(SchemaGeneration.discovered_url_id == url_id)
			).scalars():
				generation.discovered_url_id = None
			session.delete(url)

	def check_url_exists(self, user_id: str, url: str) -> Dict[str, Any]:
		normalized = normalize_library_url(url)
		with self.db.get_session() as session:
			row = session.execute(
				select(LibraryUrl).where(LibraryUrl.user_id == user_id, LibraryUrl.normalized_url == normalized)
			).scalar_one_or_none()
			if row is None or row.is_hidden:
				return {"exists": False, "has_schema": False}
			schema_types: List[str] = []
			if row.has_schema:
				generations = session.execute(
					select(SchemaGeneration).where(
						SchemaGeneration.discovered_url_id == row.id, SchemaGeneration.status == "success"
					)
				).scalars().all()
				schema_types = [g.schema_type or extract_schema_type(g.schemas) for g in generations]
			return {
				"exists": True,
				"url_id": row.id,
				"created_at": row.created_at.isoformat(),
				"has_schema": row.has_schema,
				"schema_types": schema_types,
			}

	# Schemas attached to URLs

	def latest_schema(self, user_id: str, url_id: str) -> Optional[Dict[str, Any]]:
		with self.db.get_session() as session:
			self._owned(session, LibraryUrl, url_id, user_id, "URL not found")
			generation = self._latest_generation(session, url_id)
			return generation.to_dict() if generation else None

	def url_schemas(self, user_id: str, url_id: str) -> List[Dict[str, Any]]:
		with self.db.get_session() as session:
			self._owned(session, LibraryUrl, url_id, user_id, "URL not found")
			rows = session.execute(
				select(SchemaGeneration)
				.where(SchemaGeneration.discovered_url_id == url_id)
				.order_by(SchemaGeneration.created_at.desc())
			).scalars().all()
			return [r.to_dict() for r in rows]

	def update_schema(self, user_id: str, url_id: str, schemas: List[Dict[str, Any]]) -> Dict[str, Any]:
		with self.db.get_session() as session:
			self._owned(session, LibraryUrl, url_id, user_id, "URL not found")
			generation = self._latest_generation(session, url_id)
			if generation is None:
				raise NotFoundError("No schema found for this URL")
			generation.schemas = schemas
			generation.schema_type = extract_schema_type(schemas)
			session.flush()
			return generation.to_dict()

	def link_generation(
		self,
		session: Session,
		user_id: str,
		url: str,
		generation: SchemaGeneration,
		team_id: Optional[str] = None,
	) -> LibraryUrl:
		"""Attach a successful generation to its library URL, saving the URL first when missing."""
		row = self._upsert_url(session, user_id, url, team_id)
		generation.discovered_url_id = row.id
		row.has_schema = True
		row.is_hidden = False
		row.last_schema_generated_at = utcnow()
		return row

	# Helpers

	def _upsert_url(self, session: Session, user_id: str, url: str, team_id: Optional[str]) -> LibraryUrl:
		normalized = normalize_library_url(url)
		row = session.execute(
			select(LibraryUrl).where(LibraryUrl.user_id == user_id, LibraryUrl.normalized_url == normalized)
		).scalar_one_or_none()
		if row is not None:
			return row
		user_domain = self._upsert_domain(session, user_id, url, team_id)
		path = extract_path(url)
		row = LibraryUrl(
			user_id=user_id,
			team_id=team_id,
			domain_id=user_domain.id,
			url=url,
			normalized_url=normalized,
			path=path,
			depth=path_depth(path),
		)
		session.add(row)
		session.flush()
		user_domain.total_urls_discovered += 1
		return row

	@staticmethod
	def _upsert_domain(session: Session, user_id: str, domain: str, team_id: Optional[str]) -> UserDomain:
		domain = domain_key(domain)
		row = session.execute(
			select(UserDomain).where(UserDomain.user_id == user_id, UserDomain.domain == domain)
		).scalar_one_or_none()
		if row is None:
			row = UserDomain(user_id=user_id, team_id=team_id, domain=domain)
			session.add(row)
		row.last_crawled_at = utcnow()
		session.flush()
		return row

	@staticmethod
	def _latest_generation(session: Session, url_id: str) -> Optional[SchemaGeneration]:
		return session.execute(
			select(SchemaGeneration)
			.where(SchemaGeneration.discovered_url_id == url_id)
			.order_by(SchemaGeneration.created_at.desc())
			.limit(1)
		).scalar_one_or_none()

	@staticmethod
	def _owned(session: Session, model, row_id: str, user_id: str, message: str):
		row = session.get(model, row_id)
		if row is None or row.user_id != user_id:
			raise NotFoundError(message)
		return row
