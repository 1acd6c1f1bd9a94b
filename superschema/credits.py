"""Credit balances, the credit ledger and credit packs."""
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from .config import FeatureFlags
from .database import DatabaseManager
from .errors import BadRequestError, NotFoundError
from .log import get_logger
from .models import CreditPack, CreditTransaction, Team, User

logger = get_logger("credits")

TRANSACTION_TYPES = ("purchase", "usage", "refund", "bonus")

DEFAULT_PACKS = [
	{"name": "Starter Pack", "credits": 20, "price_cents": 999, "savings_percentage": 0, "is_popular": False},
	{"name": "Professional Pack", "credits": 50, "price_cents": 1999, "savings_percentage": 20, "is_popular": True},
	{"name": "Business Pack", "credits": 100, "price_cents": 3499, "savings_percentage": 30, "is_popular": False},
	{"name": "Agency Pack", "credits": 250, "price_cents": 7499, "savings_percentage": 40, "is_popular": False},
	{"name": "Enterprise Pack", "credits": 500, "price_cents": 12499, "savings_percentage": 50, "is_popular": False},
]


class CreditService:
	def __init__(self, db: DatabaseManager, flags: Optional[FeatureFlags] = None):
		self.db = db
		self.flags = flags or FeatureFlags()

	def payer_id(self, session: Session, user_id: str) -> str:
		"""User whose balance pays for user_id's work: the active team's owner when teams are on."""
		if not self.flags.teams_enabled_for(user_id):
			return user_id
		user = session.get(User, user_id)
		if user is None or not user.active_team_id:
			return user_id
		team = session.get(Team, user.active_team_id)
		return team.owner_id if team else user_id

	def get_balance(self, user_id: str) -> int:
		with self.db.get_session() as session:
			payer = session.get(User, self.payer_id(session, user_id))
			if payer is None:
				raise NotFoundError("User not found")
			return payer.credit_balance

	def has_credits(self, user_id: str, amount: int = 1) -> bool:
		try:
			return self.get_balance(user_id) >= amount
		except NotFoundError:
			return False

	def consume(self, user_id: str, amount: int, description: str) -> bool:
		"""
		Atomically consume credits.

		The payer row is locked with FOR UPDATE NOWAIT before the balance is
		checked. Returns False on insufficient balance or when another
		transaction holds the lock.
		"""
		if amount <= 0:
			raise BadRequestError("Amount must be positive")
		try:
			with self.db.get_session() as session:
				payer_id = self.payer_id(session, user_id)
				stmt = select(User).where(User.id == payer_id).with_for_update(nowait=True)
				payer = session.execute(stmt).scalar_one_or_none()
				if payer is None:
					raise NotFoundError(f"User not found: {payer_id}")
				if payer.credit_balance < amount:
					logger.warning(f"Insufficient credits for {payer_id}: {payer.credit_balance} < {amount}")
					return False
				payer.credit_balance -= amount
				payer.total_credits_used += amount
				details = {"acting_user_id": user_id} if payer_id != user_id else None
				session.add(CreditTransaction(
					user_id=payer_id, type="usage", amount=-amount, description=description, details=details,
				))
		except OperationalError as e:
			logger.warning(f"Credit lock unavailable for user {user_id}: {e}")
			return False
		logger.info(f"Consumed {amount} credit(s) for {user_id}: {description}")
		return True

	def refund(self, user_id: str, amount: int, description: str) -> None:
		"""Give back credits taken by a generation that later failed."""
		with self.db.get_session() as session:
			payer = session.get(User, self.payer_id(session, user_id))
			if payer is None:
				raise NotFoundError("User not found")
			payer.credit_balance += amount
			payer.total_credits_used = max(0, payer.total_credits_used - amount)
			session.add(CreditTransaction(user_id=payer.id, type="refund", amount=amount, description=description))
		logger.info(f"Refunded {amount} credit(s) to {user_id}: {description}")

	def add_credits(self, user_id: str, amount: int, description: str, type: str = "purchase") -> int:
		"""Credit the user's own balance; returns the new balance."""
		if type not in ("purchase", "bonus"):
			raise BadRequestError(f"Invalid transaction type: {type}")
		if amount <= 0:
			raise BadRequestError("Amount must be positive")
		with self.db.get_session() as session:
			user = session.get(User, user_id)
			if user is None:
				raise NotFoundError("User not found")
			user.credit_balance += amount
			session.add(CreditTransaction(user_id=user_id, type=type, amount=amount, description=description))
			return user.credit_balance

	def list_packs(self) -> List[Dict[str, Any]]:
		with self.db.get_session() as session:
			packs = session.execute(
				select(CreditPack).where(CreditPack.is_active.is_(True)).order_by(CreditPack.credits)
			).scalars().all()
			return [p.to_dict() for p in packs]

	def get_pack(self, pack_id: str) -> Dict[str, Any]:
		with self.db.get_session() as session:
			pack = session.get(CreditPack, pack_id)
			if pack is None or not pack.is_active:
				raise NotFoundError("Credit pack not found")
			return pack.to_dict()

	def seed_default_packs(self) -> int:
		"""Insert any missing default packs; returns how many were created."""
		created = 0
		with self.db.get_session() as session:
			existing = set(session.execute(select(CreditPack.name)).scalars().all())
			for pack in DEFAULT_PACKS:
				if pack["name"] not in existing:
					session.add(CreditPack(**pack))
					created += 1
		logger.info(f"Seeded {created} credit pack(s)")
		return created

	def transactions(self, user_id: str, page: int = 1, limit: int = 10) -> Dict[str, Any]:
		with self.db.get_session() as session:
			total = session.execute(
				select(func.count()).select_from(CreditTransaction).where(CreditTransaction.user_id == user_id)
			).scalar_one()
			rows = session.execute(
				select(CreditTransaction)
				.where(CreditTransaction.user_id == user_id)
				.order_by(CreditTransaction.created_at.desc())
				.offset((page - 1) * limit)
				.limit(limit)
			).scalars().all()
			return paginated([r.to_dict() for r in rows], page, limit, total)


def paginated(items: List[Any], page: int, limit: int, total: int) -> Dict[str, Any]:
	return {
		"data": items,
		"pagination": {
			"page": page,
			"limit": limit,
			"total": total,
			"total_pages": (total + limit - 1) // limit if limit else 0,
		},
	}
