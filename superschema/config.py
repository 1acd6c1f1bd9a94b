"""
Configuration for SuperSchema

Loads settings from environment variables (and a .env file) with sensible
defaults. Feature flags live here too so they can be flipped without code
changes.
"""
import json
import os
from typing import Dict, List, Optional

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str = "false") -> bool:
	return os.environ.get(name, default).strip().lower() == "true"


def _env_list(name: str) -> List[str]:
	raw = os.environ.get(name, "")
	return [item.strip() for item in raw.split(",") if item.strip()]


USER_AGENT_DEFAULT = (
	"Mozilla/5.0 (compatible; SuperSchema-Crawler/1.0; +https://superschema.ai) "
	"Contact: webmaster@superschema.ai"
)
ROBOTS_USER_AGENT = "SuperSchema-Crawler"

CONFIG_DIR = os.path.expanduser("~/.superschema")
CONFIG_FILE = os.path.join(CONFIG_DIR, "config.json")
PROJECT_CONFIG_FILE = "superschema.json"

MAX_REFINEMENTS = 2
MAX_TEAM_MEMBERS = 10
MAX_TEAMS_PER_USER = 10
INVITE_TTL_DAYS = 7
CREDITS_PER_GENERATION = 1
SIGNUP_BONUS_CREDITS = 2


class Config:
	"""Application configuration."""

	# Server settings
	PORT = int(os.environ.get("PORT", "8000"))
	DEBUG = _env_bool("DEBUG")
	CLIENT_URL = os.environ.get("CLIENT_URL", "http://localhost:3000")
	CORS_ORIGINS = _env_list("CORS_ORIGINS") or ["http://localhost:3000"]

	# Database
	DATABASE_URL = os.environ.get("DATABASE_URL", "sqlite:///superschema.db")

	# OpenAI
	OPENAI_API_KEY = os.environ.get("OPENAI_API_KEY", "")
	OPENAI_MODEL = os.environ.get("OPENAI_MODEL", "gpt-4o-mini")
	REFINE_MODEL = os.environ.get("REFINE_MODEL", "gpt-4o-mini")
	USE_VISION = _env_bool("USE_VISION")

	# Access control
	ADMIN_USER_IDS = _env_list("ADMIN_USER_IDS")
	SKIP_CREDIT_CHECK = _env_bool("SKIP_CREDIT_CHECK")

	# Crawler limits
	CRAWL_MAX_URLS = int(os.environ.get("CRAWL_MAX_URLS", "500"))
	CRAWL_MAX_DEPTH = int(os.environ.get("CRAWL_MAX_DEPTH", "4"))
	CRAWL_TIMEOUT_S = float(os.environ.get("CRAWL_TIMEOUT_S", "60"))
	REQUEST_TIMEOUT_S = int(os.environ.get("REQUEST_TIMEOUT_S", "20"))

	# Integrations
	HUBSPOT_CLIENT_ID = os.environ.get("HUBSPOT_CLIENT_ID", "")
	HUBSPOT_CLIENT_SECRET = os.environ.get("HUBSPOT_CLIENT_SECRET", "")
	HUBSPOT_REDIRECT_URI = os.environ.get("HUBSPOT_REDIRECT_URI", "http://localhost:3000/hubspot/callback")
	GOOGLE_CLIENT_ID = os.environ.get("GOOGLE_CLIENT_ID", "")
	GOOGLE_CLIENT_SECRET = os.environ.get("GOOGLE_CLIENT_SECRET", "")
	GOOGLE_REDIRECT_URI = os.environ.get("GOOGLE_REDIRECT_URI", "http://localhost:3000/ga4/callback")
	# Passphrase for encrypting stored OAuth tokens, at least 32 characters
	HUBSPOT_ENCRYPTION_KEY = os.environ.get("HUBSPOT_ENCRYPTION_KEY", "")

	# Logging
	LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

	@classmethod
	def client_base_url(cls) -> str:
		"""First configured client URL, used when building links for emails and invites."""
		return cls.CLIENT_URL.split(",")[0].strip().rstrip("/")


class FeatureFlags:
	"""Rollout toggles for team and analytics features."""

	def __init__(
		self,
		teams_enabled: Optional[bool] = None,
		team_invites_enabled: Optional[bool] = None,
		teams_beta_users: Optional[List[str]] = None,
		ga4_enabled: Optional[bool] = None,
	):
		self.teams_enabled = _env_bool("ENABLE_TEAMS") if teams_enabled is None else teams_enabled
		self.team_invites_enabled = (
			_env_bool("ENABLE_TEAM_INVITES") if team_invites_enabled is None else team_invites_enabled
		)
		self.teams_beta_users = _env_list("TEAMS_BETA_USERS") if teams_beta_users is None else teams_beta_users
		self.ga4_enabled = _env_bool("GA4_AI_ANALYTICS_ENABLED") if ga4_enabled is None else ga4_enabled

	def teams_enabled_for(self, user_id: str) -> bool:
		if not self.teams_enabled:
			return False
		# Empty beta list means everybody
		if not self.teams_beta_users:
			return True
		return user_id in self.teams_beta_users

	def team_invites_enabled_for(self, user_id: str) -> bool:
		return self.teams_enabled_for(user_id) and self.team_invites_enabled

	def as_dict(self) -> Dict[str, object]:
		return {
			"teams_enabled": self.teams_enabled,
			"team_invites_enabled": self.team_invites_enabled,
			"teams_beta_users": len(self.teams_beta_users),
			"ga4_ai_analytics_enabled": self.ga4_enabled,
		}


def read_json(path: str) -> Dict:
	try:
		with open(path, "r", encoding="utf-8") as f:
			return json.load(f)
	except (OSError, ValueError):
		return {}


def resolve_openai_settings(
	api_key: Optional[str] = None,
	model: Optional[str] = None,
	project_config: Optional[str] = None,
) -> Dict[str, str]:
	"""Resolve the OpenAI key and model.

	Precedence: explicit argument, environment, project config file, user config file.
	"""
	project_cfg = read_json(project_config or PROJECT_CONFIG_FILE)
	user_cfg = read_json(CONFIG_FILE)

	resolved_key = (
		api_key
		or os.environ.get("OPENAI_API_KEY")
		or project_cfg.get("openai_api_key")
		or user_cfg.get("openai_api_key")
		or ""
	)
	resolved_model = (
		model
		or os.environ.get("OPENAI_MODEL")
		or project_cfg.get("model")
		or user_cfg.get("model")
		or "gpt-4o-mini"
	)
	return {"api_key": resolved_key, "model": resolved_model}
