"""User provisioning and profile access."""
from typing import Any, Dict, Optional

from .config import SIGNUP_BONUS_CREDITS, Config
from .database import DatabaseManager
from .errors import NotFoundError
from .log import get_logger
from .models import CreditTransaction, User

logger = get_logger("users")

PROFILE_FIELDS = ("first_name", "last_name", "organization_name", "email")


class UserService:
	def __init__(self, db: DatabaseManager, signup_bonus: int = SIGNUP_BONUS_CREDITS):
		self.db = db
		self.signup_bonus = signup_bonus

	def get_or_create(self, user_id: str, email: Optional[str] = None, **profile: Any) -> Dict[str, Any]:
		"""Return the user, creating them with the signup bonus on first sight."""
		with self.db.get_session() as session:
			user = session.get(User, user_id)
			if user is not None:
				if email and not user.email:
					user.email = email
				return user.to_dict()
			user = User(
				id=user_id,
				email=email or "",
				first_name=profile.get("first_name"),
				last_name=profile.get("last_name"),
				credit_balance=self.signup_bonus,
				is_admin=user_id in Config.ADMIN_USER_IDS,
			)
			session.add(user)
			if self.signup_bonus:
				session.add(CreditTransaction(
					user_id=user_id, type="bonus", amount=self.signup_bonus, description="Welcome bonus credits",
				))
			session.flush()
			logger.info(f"Provisioned user {user_id} with {self.signup_bonus} credit(s)")
			return user.to_dict()

	def get(self, user_id: str) -> Dict[str, Any]:
		with self.db.get_session() as session:
			user = session.get(User, user_id)
			if user is None:
				raise NotFoundError("User not found")
			return user.to_dict()

	def update_profile(self, user_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
		with self.db.get_session() as session:
			user = session.get(User, user_id)
			if user is None:
				raise NotFoundError("User not found")
			for key in PROFILE_FIELDS:
				if key in updates and updates[key] is not None:
					setattr(user, key, updates[key])
			session.flush()
			return user.to_dict()

	def is_admin(self, user_id: str) -> bool:
		if user_id in Config.ADMIN_USER_IDS:
			return True
		with self.db.get_session() as session:
			user = session.get(User, user_id)
			return bool(user and user.is_admin)

	def set_admin(self, user_id: str, is_admin: bool) -> Dict[str, Any]:
		with self.db.get_session() as session:
			user = session.get(User, user_id)
			if user is None:
				raise NotFoundError("User not found")
			user.is_admin = is_admin
			session.flush()
			return user.to_dict()
