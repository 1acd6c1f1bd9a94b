"""
Database connection manager for SuperSchema.

SQLite is used for development and tests, Postgres in production. An
in-memory SQLite URL shares a single connection so every session sees the
same tables.
"""
import time
from contextlib import contextmanager
from typing import Any, Dict, Generator, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from .config import Config
from .log import get_logger
from .models import Base

logger = get_logger("database")


class DatabaseManager:
	"""Owns the engine and hands out transactional sessions."""

	def __init__(self, database_url: Optional[str] = None, echo: bool = False):
		self.database_url = database_url or Config.DATABASE_URL
		self.engine = self._create_engine(self.database_url, echo)
		self.SessionLocal = sessionmaker(
			autocommit=False,
			autoflush=False,
			expire_on_commit=False,
			bind=self.engine,
		)
		logger.info(f"Database engine initialized ({self.engine.dialect.name})")

	@staticmethod
	def _create_engine(url: str, echo: bool):
		if url.startswith("sqlite"):
			kwargs: Dict[str, Any] = {"connect_args": {"check_same_thread": False}}
			if url in ("sqlite://", "sqlite:///:memory:"):
				kwargs["poolclass"] = StaticPool
			return create_engine(url, echo=echo, **kwargs)
		return create_engine(
			url,
			pool_size=10,
			max_overflow=20,
			pool_pre_ping=True,  # Verify connections before using
			pool_recycle=3600,
			echo=echo,
		)

	@property
	def is_postgres(self) -> bool:
		return self.engine.dialect.name == "postgresql"

	def create_all(self) -> None:
		Base.metadata.create_all(self.engine)
		logger.info("Database tables created")

	def drop_all(self) -> None:
		Base.metadata.drop_all(self.engine)

	@contextmanager
	def get_session(self) -> Generator[Session, None, None]:
		"""
		Context manager for database sessions.

		Usage:
			with db.get_session() as session:
				user = session.get(User, user_id)

		Commits on success, rolls back and re-raises on error.
		"""
		session = self.SessionLocal()
		try:
			yield session
			session.commit()
		except Exception as e:
			session.rollback()
			logger.error(f"Database session error: {e}")
			raise
		finally:
			session.close()

	def check_connection(self) -> Dict[str, Any]:
		"""
		Check database connectivity.

		Returns:
			dict with keys: connected (bool), latency_ms (float), error (str)
		"""
		result: Dict[str, Any] = {"connected": False, "latency_ms": None, "error": None}
		try:
			start_time = time.time()
			with self.get_session() as session:
				session.execute(text("SELECT 1"))
			result["connected"] = True
			result["latency_ms"] = round((time.time() - start_time) * 1000, 2)
		except Exception as e:
			result["error"] = str(e)
			logger.error(f"Connection health check failed: {e}")
		return result

	def close(self) -> None:
		self.engine.dispose()
		logger.info("Database engine closed")
