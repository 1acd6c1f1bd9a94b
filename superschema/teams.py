"""
Team workspaces: membership, invitations and the user's active team.

A team always contains its owner as a member. Teams hold at most
MAX_TEAM_MEMBERS members and a user belongs to at most MAX_TEAMS_PER_USER
teams.
"""
import secrets
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .config import INVITE_TTL_DAYS, MAX_TEAM_MEMBERS, MAX_TEAMS_PER_USER, Config, FeatureFlags
from .database import DatabaseManager
from .errors import ApiError, BadRequestError, ConflictError, FeatureDisabledError, ForbiddenError, NotFoundError
from .log import get_logger
from .models import Team, TeamInvite, TeamMember, User, iso, utcnow

logger = get_logger("teams")


def generate_invite_token() -> str:
	"""8 url-safe characters (48 bits of entropy)."""
	return secrets.token_urlsafe(6)


class TeamService:
	def __init__(
		self,
		db: DatabaseManager,
		flags: Optional[FeatureFlags] = None,
		client_url: Optional[str] = None,
		now: Callable[[], datetime] = utcnow,
	):
		self.db = db
		self.flags = flags or FeatureFlags()
		self.client_url = (client_url or Config.client_base_url()).rstrip("/")
		self.now = now

	# Teams

	def create_team(self, owner_id: str, name: Optional[str] = None) -> Dict[str, Any]:
		"""Create a team owned by owner_id with the owner as its first member."""
		with self.db.get_session() as session:
			if self._user_team_count(session, owner_id) >= MAX_TEAMS_PER_USER:
				raise BadRequestError(f"You have reached the maximum limit of {MAX_TEAMS_PER_USER} teams")
			team = Team(owner_id=owner_id, name=name)
			session.add(team)
			session.flush()
			session.add(TeamMember(team_id=team.id, user_id=owner_id))
			session.flush()
			logger.info(f"Created team {team.id} for {owner_id}")
			return team.to_dict()

	def get_team(self, team_id: str) -> Optional[Dict[str, Any]]:
		with self.db.get_session() as session:
			team = session.get(Team, team_id)
			return team.to_dict() if team else None

	def get_team_by_owner(self, owner_id: str) -> Optional[Dict[str, Any]]:
		with self.db.get_session() as session:
			team = session.execute(
				select(Team).where(Team.owner_id == owner_id).order_by(Team.created_at)
			).scalars().first()
			return team.to_dict() if team else None

	def delete_team(self, team_id: str, user_id: str) -> None:
		with self.db.get_session() as session:
			team = session.get(Team, team_id)
			if team is None:
				raise NotFoundError("Team not found")
			if team.owner_id != user_id:
				raise ForbiddenError("Only the team owner can delete the team")
			member_ids = [m.user_id for m in team.members]
			for user in session.execute(select(User).where(User.id.in_(member_ids))).scalars():
				if user.active_team_id == team_id:
					user.active_team_id = None
			session.delete(team)
		logger.info(f"Deleted team {team_id}")

	# Membership

	def add_member(self, team_id: str, user_id: str) -> Dict[str, Any]:
		try:
			with self.db.get_session() as session:
				if session.get(Team, team_id) is None:
					raise NotFoundError("Team not found")
				if self._member_count(session, team_id) >= MAX_TEAM_MEMBERS:
					raise BadRequestError(f"Team has reached maximum size of {MAX_TEAM_MEMBERS} members")
				if self._is_member(session, user_id, team_id):
					raise ConflictError("User is already a member of this team")
				member = TeamMember(team_id=team_id, user_id=user_id)
				session.add(member)
				session.flush()
				return member.to_dict()
		except IntegrityError:
			raise ConflictError("User is already a member of this team")

	def remove_member(self, team_id: str, user_id: str, acting_user_id: Optional[str] = None) -> None:
		"""Remove user_id from the team. Only the owner or the member themselves may do it."""
		acting_user_id = acting_user_id or user_id
		with self.db.get_session() as session:
			team = session.get(Team, team_id)
			if team is None:
				raise NotFoundError("Team not found")
			if user_id == team.owner_id:
				raise BadRequestError("Team owner cannot leave their own team")
			if acting_user_id not in (team.owner_id, user_id):
				raise ForbiddenError("Only the team owner can remove other members")
			member = session.execute(
				select(TeamMember).where(TeamMember.team_id == team_id, TeamMember.user_id == user_id)
			).scalar_one_or_none()
			if member is None:
				raise NotFoundError("Team member not found")
			session.delete(member)
			user = session.get(User, user_id)
			if user is not None and user.active_team_id == team_id:
				user.active_team_id = None
		logger.info(f"Removed {user_id} from team {team_id}")

	def members(self, team_id: str) -> List[Dict[str, Any]]:
		with self.db.get_session() as session:
			rows = session.execute(
				select(TeamMember, User)
				.join(User, User.id == TeamMember.user_id)
				.where(TeamMember.team_id == team_id)
				.order_by(TeamMember.joined_at)
			).all()
			result = []
			for member, user in rows:
				data = member.to_dict()
				data.update({
					"email": user.email,
					"first_name": user.first_name,
					"last_name": user.last_name,
				})
				result.append(data)
			return result

	def member_count(self, team_id: str) -> int:
		with self.db.get_session() as session:
			return self._member_count(session, team_id)

	def is_member(self, user_id: str, team_id: str) -> bool:
		with self.db.get_session() as session:
			return self._is_member(session, user_id, team_id)

	def is_owner(self, user_id: str, team_id: str) -> bool:
		with self.db.get_session() as session:
			team = session.get(Team, team_id)
			return bool(team and team.owner_id == user_id)

	# Invitations

	def create_invite(self, team_id: str, created_by: str) -> Dict[str, Any]:
		if not self.flags.team_invites_enabled_for(created_by):
			raise FeatureDisabledError("Team invitations are currently disabled")
		with self.db.get_session() as session:
			team = session.get(Team, team_id)
			if team is None:
				raise NotFoundError("Team not found")
			if team.owner_id != created_by:
				raise ForbiddenError("Only team owner can create invitations")
			if self._member_count(session, team_id) >= MAX_TEAM_MEMBERS:
				raise BadRequestError(f"Team has reached maximum size of {MAX_TEAM_MEMBERS} members")
			invite = TeamInvite(
				team_id=team_id,
				invite_token=generate_invite_token(),
				created_by=created_by,
				created_at=self.now(),
				expires_at=self.now() + timedelta(days=INVITE_TTL_DAYS),
			)
			session.add(invite)
			session.flush()
			logger.info(f"Created invite for team {team_id}")
			return {
				"invite_token": invite.invite_token,
				"invite_url": f"{self.client_url}/team/join/{invite.invite_token}",
				"expires_at": iso(invite.expires_at),
			}

	def validate_invite(self, token: str) -> Dict[str, Any]:
		"""Check a token; returns {"valid": False, "error": ...} or the team owner details."""
		with self.db.get_session() as session:
			invite = session.execute(
				select(TeamInvite).where(TeamInvite.invite_token == token)
			).scalar_one_or_none()
			error = self._invite_error(session, invite)
			if error:
				return {"valid": False, "error": error}
			count = self._member_count(session, invite.team_id)
			owner = session.get(User, invite.team.owner_id)
			return {
				"valid": True,
				"team_id": invite.team_id,
				"team_owner_email": owner.email if owner else None,
				"team_owner_first_name": owner.first_name if owner else None,
				"team_owner_last_name": owner.last_name if owner else None,
				"organization_name": owner.organization_name if owner else None,
				"team_member_count": count,
				"expires_at": iso(invite.expires_at),
			}

	def _invite_error(self, session: Session, invite: Optional[TeamInvite]) -> Optional[str]:
		if invite is None:
			return "Invalid invitation token"
		if invite.used_at is not None:
			return "This invitation has already been used"
		if invite.expires_at < self.now():
			return "This invitation has expired"
		if self._member_count(session, invite.team_id) >= MAX_TEAM_MEMBERS:
			return f"This team has reached maximum capacity ({MAX_TEAM_MEMBERS} members)"
		return None

	def accept_invite(self, token: str, user_id: str) -> str:
		"""Join the invite's team and make it the active team; returns the team id."""
		try:
			with self.db.get_session() as session:
				invite = session.execute(
					select(TeamInvite).where(TeamInvite.invite_token == token).with_for_update()
				).scalar_one_or_none()
				error = self._invite_error(session, invite)
				if error:
					if "maximum capacity" in error:
						raise BadRequestError(error)
					raise ApiError(error, 410)
				team_id = invite.team_id
				if self._is_member(session, user_id, team_id):
					raise ConflictError("You are already a member of this team")
				if self._user_team_count(session, user_id) >= MAX_TEAMS_PER_USER:
					raise BadRequestError(f"You have reached the maximum limit of {MAX_TEAMS_PER_USER} teams")
				session.add(TeamMember(team_id=team_id, user_id=user_id))
				invite.used_at = self.now()
				invite.used_by = user_id
				user = session.get(User, user_id)
				if user is not None:
					user.active_team_id = team_id
		except IntegrityError:
			raise ConflictError("You are already a member of this team")
		logger.info(f"User {user_id} joined team {team_id}")
		return team_id

	def invites(self, team_id: str) -> List[Dict[str, Any]]:
		with self.db.get_session() as session:
			rows = session.execute(
				select(TeamInvite).where(TeamInvite.team_id == team_id).order_by(TeamInvite.created_at.desc())
			).scalars().all()
			return [r.to_dict() for r in rows]

	def delete_invite(self, invite_id: str, user_id: str) -> None:
		with self.db.get_session() as session:
			invite = session.get(TeamInvite, invite_id)
			if invite is None:
				raise NotFoundError("Invitation not found")
			if invite.team.owner_id != user_id:
				raise ForbiddenError("Only team owner can delete invitations")
			if invite.used_at is not None:
				raise BadRequestError("Cannot delete an invitation that has already been used")
			session.delete(invite)

	def cleanup_expired_invites(self) -> int:
		with self.db.get_session() as session:
			result = session.execute(
				delete(TeamInvite).where(TeamInvite.expires_at < self.now(), TeamInvite.used_at.is_(None))
			)
			removed = result.rowcount or 0
		if removed:
			logger.info(f"Removed {removed} expired invite(s)")
		return removed

	# Active team

	def user_teams(self, user_id: str) -> List[Dict[str, Any]]:
		with self.db.get_session() as session:
			user = session.get(User, user_id)
			active = user.active_team_id if user else None
			rows = session.execute(
				select(TeamMember, Team)
				.join(Team, Team.id == TeamMember.team_id)
				.where(TeamMember.user_id == user_id)
				.order_by(TeamMember.joined_at.desc())
			).all()
			return [
				{
					"id": member.id,
					"team_id": team.id,
					"team_name": team.name,
					"user_id": user_id,
					"joined_at": iso(member.joined_at),
					"is_owner": team.owner_id == user_id,
					"is_active": team.id == active,
					"team_created_at": iso(team.created_at),
				}
				for member, team in rows
			]

	def active_team_id(self, user_id: str) -> Optional[str]:
		with self.db.get_session() as session:
			user = session.get(User, user_id)
			return user.active_team_id if user else None

	def switch_team(self, user_id: str, team_id: str) -> None:
		with self.db.get_session() as session:
			if not self._is_member(session, user_id, team_id):
				raise ForbiddenError("You are not a member of this team")
			user = session.get(User, user_id)
			if user is None:
				raise NotFoundError("User not found")
			user.active_team_id = team_id
		logger.info(f"User {user_id} switched to team {team_id}")

	def initialize_team(self, user_id: str) -> Dict[str, Any]:
		"""Active team for user_id, creating a team of one when they have none."""
		with self.db.get_session() as session:
			user = session.get(User, user_id)
			if user is None:
				raise NotFoundError("User not found")
			if user.active_team_id and session.get(Team, user.active_team_id) is not None:
				return session.get(Team, user.active_team_id).to_dict()
		team = self.get_team_by_owner(user_id) or self.create_team(user_id)
		self.switch_team(user_id, team["id"])
		return team

	# Helpers

	@staticmethod
	def _member_count(session: Session, team_id: str) -> int:
		return session.execute(
			select(func.count()).select_from(TeamMember).where(TeamMember.team_id == team_id)
		).scalar_one()

	@staticmethod
	def _is_member(session: Session, user_id: str, team_id: str) -> bool:
		return session.execute(
			select(TeamMember.id).where(TeamMember.team_id == team_id, TeamMember.user_id == user_id)
		).first() is not None

	@staticmethod
	def _user_team_count(session: Session, user_id: str) -> int:
		return session.execute(
			select(func.count()).select_from(TeamMember).where(TeamMember.user_id == user_id)
		).scalar_one()
