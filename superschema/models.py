"""
Database models for SuperSchema using SQLAlchemy 2.0 style.

Models:
- User: account keyed by the auth provider subject, holds the credit balance
- CreditPack / CreditTransaction: purchasable packs and the credit ledger
- SchemaGeneration: one LLM generation for a URL, with score and refinements
- UserDomain / LibraryUrl: the URL library built from site discovery
- Team / TeamMember / TeamInvite: shared workspaces
- HubSpotConnection: OAuth tokens for a HubSpot portal, encrypted at rest
- GA4Connection / GA4DomainMapping / GA4ExclusionPattern: Google Analytics setup
"""
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import (
	Boolean,
	DateTime,
	ForeignKey,
	Integer,
	String,
	Text,
	UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.types import JSON

from .crypto import EncryptedText

JSONType = JSON().with_variant(JSONB, "postgresql")


def utcnow() -> datetime:
	return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
	return str(uuid.uuid4())


def iso(value: Optional[datetime]) -> Optional[str]:
	return value.isoformat() if value else None


class Base(DeclarativeBase):
	"""Base class for all database models."""

	pass


class User(Base):
	"""
	Application user.

	Attributes:
		id: Subject claim from the auth provider
		credit_balance: Credits available to spend
		total_credits_used: Lifetime credits consumed
		active_team_id: Team whose workspace the user is currently in
		is_admin: Admin flag stored alongside the ADMIN_USER_IDS allow list
	"""

	__tablename__ = "users"

	id: Mapped[str] = mapped_column(String(255), primary_key=True)
	email: Mapped[str] = mapped_column(String(320), nullable=False, default="")
	first_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
	last_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
	organization_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
	credit_balance: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
	total_credits_used: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
	active_team_id: Mapped[Optional[str]] = mapped_column(
		String(36), ForeignKey("teams.id", ondelete="SET NULL", use_alter=True), nullable=True
	)
	is_admin: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
	created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
	updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

	def to_dict(self) -> Dict[str, Any]:
		return {
			"id": self.id,
			"email": self.email,
			"first_name": self.first_name,
			"last_name": self.last_name,
			"organization_name": self.organization_name,
			"credit_balance": self.credit_balance,
			"total_credits_used": self.total_credits_used,
			"active_team_id": self.active_team_id,
			"is_admin": self.is_admin,
			"created_at": iso(self.created_at),
		}


class CreditPack(Base):
	__tablename__ = "credit_packs"

	id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
	name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
	credits: Mapped[int] = mapped_column(Integer, nullable=False)
	price_cents: Mapped[int] = mapped_column(Integer, nullable=False)
	savings_percentage: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
	is_popular: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
	is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
	created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

	def to_dict(self) -> Dict[str, Any]:
		return {
			"id": self.id,
			"name": self.name,
			"credits": self.credits,
			"price_cents": self.price_cents,
			"savings_percentage": self.savings_percentage,
			"is_popular": self.is_popular,
		}


class CreditTransaction(Base):
	"""Ledger entry. amount is positive for purchase/bonus/refund and negative for usage."""

	__tablename__ = "credit_transactions"

	id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
	user_id: Mapped[str] = mapped_column(String(255), ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
	type: Mapped[str] = mapped_column(String(20), nullable=False, comment="purchase | usage | refund | bonus")
	amount: Mapped[int] = mapped_column(Integer, nullable=False)
	description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
	details: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
	created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True, nullable=False)

	def to_dict(self) -> Dict[str, Any]:
		return {
			"id": self.id,
			"type": self.type,
			"amount": self.amount,
			"description": self.description,
			"created_at": iso(self.created_at),
		}


class SchemaGeneration(Base):
	__tablename__ = "schema_generations"

	id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
	user_id: Mapped[str] = mapped_column(String(255), ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
	team_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("teams.id", ondelete="SET NULL"), nullable=True)
	discovered_url_id: Mapped[Optional[str]] = mapped_column(
		String(36), ForeignKey("discovered_urls.id", ondelete="SET NULL"), index=True, nullable=True
	)
	url: Mapped[str] = mapped_column(Text, nullable=False)
	schemas: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
	schema_type: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
	status: Mapped[str] = mapped_column(String(20), default="pending", nullable=False, comment="pending | success | failed")
	error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
	processing_time_ms: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
	credits_used: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
	schema_score: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
	content_metadata: Mapped[Optional[dict]] = mapped_column(
		JSONType, nullable=True, comment="Scraped metadata used to verify refinements"
	)
	refinement_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
	created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True, nullable=False)
	updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

	def to_dict(self) -> Dict[str, Any]:
		return {
			"id": self.id,
			"url": self.url,
			"schemas": self.schemas or [],
			"schema_type": self.schema_type,
			"status": self.status,
			"error_message": self.error_message,
			"processing_time_ms": self.processing_time_ms,
			"credits_used": self.credits_used,
			"schema_score": self.schema_score,
			"refinement_count": self.refinement_count,
			"discovered_url_id": self.discovered_url_id,
			"team_id": self.team_id,
			"created_at": iso(self.created_at),
			"updated_at": iso(self.updated_at),
		}


class UserDomain(Base):
	__tablename__ = "user_domains"
	__table_args__ = (UniqueConstraint("user_id", "domain", name="uq_user_domain"),)

	id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
	user_id: Mapped[str] = mapped_column(String(255), ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
	team_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("teams.id", ondelete="SET NULL"), nullable=True)
	domain: Mapped[str] = mapped_column(String(255), index=True, nullable=False)
	last_crawled_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
	total_urls_discovered: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
	created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
	updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

	urls: Mapped[List["LibraryUrl"]] = relationship(back_populates="domain", cascade="all, delete-orphan")

	def to_dict(self) -> Dict[str, Any]:
		return {
			"id": self.id,
			"domain": self.domain,
			"last_crawled_at": iso(self.last_crawled_at),
			"total_urls_discovered": self.total_urls_discovered,
			"created_at": iso(self.created_at),
		}


class LibraryUrl(Base):
	"""A URL saved to the library from discovery. Unique per user by normalized URL."""

	__tablename__ = "discovered_urls"
	__table_args__ = (UniqueConstraint("user_id", "normalized_url", name="uq_user_normalized_url"),)

	id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
	user_id: Mapped[str] = mapped_column(String(255), ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
	team_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("teams.id", ondelete="SET NULL"), nullable=True)
	domain_id: Mapped[str] = mapped_column(String(36), ForeignKey("user_domains.id", ondelete="CASCADE"), index=True, nullable=False)
	url: Mapped[str] = mapped_column(Text, nullable=False)
	normalized_url: Mapped[str] = mapped_column(Text, nullable=False)
	path: Mapped[str] = mapped_column(Text, nullable=False, default="/")
	depth: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
	is_hidden: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
	has_schema: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
	last_schema_generated_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
	created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
	updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

	domain: Mapped[UserDomain] = relationship(back_populates="urls")

	def to_dict(self) -> Dict[str, Any]:
		return {
			"id": self.id,
			"domain_id": self.domain_id,
			"url": self.url,
			"path": self.path,
			"depth": self.depth,
			"is_hidden": self.is_hidden,
			"has_schema": self.has_schema,
			"last_schema_generated_at": iso(self.last_schema_generated_at),
			"created_at": iso(self.created_at),
		}


class Team(Base):
	__tablename__ = "teams"

	id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
	owner_id: Mapped[str] = mapped_column(String(255), ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
	name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
	created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
	updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

	members: Mapped[List["TeamMember"]] = relationship(back_populates="team", cascade="all, delete-orphan")
	invites: Mapped[List["TeamInvite"]] = relationship(back_populates="team", cascade="all, delete-orphan")

	def to_dict(self) -> Dict[str, Any]:
		return {
			"id": self.id,
			"owner_id": self.owner_id,
			"name": self.name,
			"member_count": len(self.members),
			"created_at": iso(self.created_at),
		}


class TeamMember(Base):
	__tablename__ = "team_members"
	__table_args__ = (UniqueConstraint("team_id", "user_id", name="uq_team_member"),)

	id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
	team_id: Mapped[str] = mapped_column(String(36), ForeignKey("teams.id", ondelete="CASCADE"), index=True, nullable=False)
	user_id: Mapped[str] = mapped_column(String(255), ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
	invited_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
	joined_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

	team: Mapped[Team] = relationship(back_populates="members")

	def to_dict(self) -> Dict[str, Any]:
		return {
			"id": self.id,
			"team_id": self.team_id,
			"user_id": self.user_id,
			"is_owner": self.team.owner_id == self.user_id if self.team else False,
			"joined_at": iso(self.joined_at),
		}


class TeamInvite(Base):
	__tablename__ = "team_invites"

	id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
	team_id: Mapped[str] = mapped_column(String(36), ForeignKey("teams.id", ondelete="CASCADE"), index=True, nullable=False)
	invite_token: Mapped[str] = mapped_column(String(64), unique=True, index=True, nullable=False)
	created_by: Mapped[str] = mapped_column(String(255), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
	created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
	expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
	used_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
	used_by: Mapped[Optional[str]] = mapped_column(String(255), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

	team: Mapped[Team] = relationship(back_populates="invites")

	def to_dict(self) -> Dict[str, Any]:
		return {
			"id": self.id,
			"team_id": self.team_id,
			"invite_token": self.invite_token,
			"created_by": self.created_by,
			"created_at": iso(self.created_at),
			"expires_at": iso(self.expires_at),
			"used_at": iso(self.used_at),
			"used_by": self.used_by,
		}


class HubSpotConnection(Base):
	__tablename__ = "hubspot_connections"
	__table_args__ = (UniqueConstraint("user_id", "portal_id", name="uq_hubspot_user_portal"),)

	id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
	user_id: Mapped[str] = mapped_column(String(255), ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
	portal_id: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
	portal_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
	region: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
	access_token: Mapped[str] = mapped_column(EncryptedText, nullable=False)
	refresh_token: Mapped[str] = mapped_column(EncryptedText, nullable=False)
	token_expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
	scopes: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
	associated_domain: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
	is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
	last_validated_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
	created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
	updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

	def to_dict(self) -> Dict[str, Any]:
		# Tokens never leave the server
		return {
			"id": self.id,
			"portal_id": self.portal_id,
			"portal_name": self.portal_name,
			"region": self.region,
			"scopes": self.scopes or [],
			"associated_domain": self.associated_domain,
			"is_active": self.is_active,
			"token_expires_at": iso(self.token_expires_at),
			"created_at": iso(self.created_at),
		}


class GA4Connection(Base):
	__tablename__ = "ga4_connections"

	id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
	user_id: Mapped[str] = mapped_column(
		String(255), ForeignKey("users.id", ondelete="CASCADE"), unique=True, index=True, nullable=False
	)
	team_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("teams.id", ondelete="CASCADE"), nullable=True)
	access_token: Mapped[str] = mapped_column(EncryptedText, nullable=False)
	refresh_token: Mapped[str] = mapped_column(EncryptedText, nullable=False)
	token_expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
	scopes: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
	is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
	connected_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

	def to_dict(self) -> Dict[str, Any]:
		return {
			"id": self.id,
			"is_active": self.is_active,
			"scopes": self.scopes or [],
			"token_expires_at": iso(self.token_expires_at),
			"connected_at": iso(self.connected_at),
		}


class GA4DomainMapping(Base):
	__tablename__ = "ga4_domain_mappings"
	__table_args__ = (UniqueConstraint("user_id", "domain", name="uq_ga4_user_domain"),)

	id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
	user_id: Mapped[str] = mapped_column(String(255), ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
	team_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("teams.id", ondelete="CASCADE"), nullable=True)
	connection_id: Mapped[str] = mapped_column(
		String(36), ForeignKey("ga4_connections.id", ondelete="CASCADE"), index=True, nullable=False
	)
	property_id: Mapped[str] = mapped_column(String(64), nullable=False)
	property_name: Mapped[str] = mapped_column(String(255), nullable=False)
	domain: Mapped[str] = mapped_column(String(255), nullable=False)
	is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
	created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

	patterns: Mapped[List["GA4ExclusionPattern"]] = relationship(back_populates="mapping", cascade="all, delete-orphan")

	def to_dict(self) -> Dict[str, Any]:
		return {
			"id": self.id,
			"property_id": self.property_id,
			"property_name": self.property_name,
			"domain": self.domain,
			"is_active": self.is_active,
			"created_at": iso(self.created_at),
		}


class GA4ExclusionPattern(Base):
	__tablename__ = "ga4_excluded_path_patterns"
	__table_args__ = (UniqueConstraint("mapping_id", "pattern", "pattern_type", name="uq_ga4_pattern"),)

	id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
	mapping_id: Mapped[str] = mapped_column(
		String(36), ForeignKey("ga4_domain_mappings.id", ondelete="CASCADE"), index=True, nullable=False
	)
	pattern: Mapped[str] = mapped_column(Text, nullable=False)
	pattern_type: Mapped[str] = mapped_column(String(20), nullable=False, comment="exact | prefix | suffix | regex")
	category: Mapped[str] = mapped_column(String(50), nullable=False, comment="auth | callback | static | admin | api | custom")
	description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
	is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
	is_default: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
	created_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
	created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

	mapping: Mapped[GA4DomainMapping] = relationship(back_populates="patterns")

	def to_dict(self) -> Dict[str, Any]:
		return {
			"id": self.id,
			"pattern": self.pattern,
			"pattern_type": self.pattern_type,
			"category": self.category,
			"description": self.description,
			"is_active": self.is_active,
			"is_default": self.is_default,
		}
