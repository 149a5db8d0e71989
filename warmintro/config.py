import os
import logging
from pathlib import Path
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).parent.parent
load_dotenv(PROJECT_ROOT / ".env", override=True)

# Databases live in data/ when it exists (container volume), else the project root
_db_dir = PROJECT_ROOT / "data" if (PROJECT_ROOT / "data").is_dir() else PROJECT_ROOT
DB_PATH = os.getenv("DB_PATH", str(_db_dir / "warm_intro.db"))
LOG_DB_PATH = os.getenv("LOG_DB_PATH", str(_db_dir / "warm_intro_search_log.db"))

# --- Secrets: environment first, then GCP Secret Manager ---
GCP_PROJECT_ID = os.getenv("GCP_PROJECT_ID", "")

_SECRET_IDS = {
    "ANTHROPIC_API_KEY": "anthropic-api-key",
    "GEMINI_API_KEY": "gemini-api-key",
    "SLACK_BOT_TOKEN": "warm-intro-slack-bot-token",
    "SLACK_APP_TOKEN": "warm-intro-slack-app-token",
}


def _read_secret_manager(secret_id: str) -> str:
    from google.cloud import secretmanager
    client = secretmanager.SecretManagerServiceClient()
    path = client.secret_version_path(GCP_PROJECT_ID, secret_id, "latest")
    return client.access_secret_version(request={"name": path}).payload.data.decode("UTF-8").strip()


def _get_secret(env_var: str) -> str:
    """Env var, else Secret Manager when GCP_PROJECT_ID is set. Empty string if neither has it."""
    value = os.getenv(env_var, "")
    secret_id = _SECRET_IDS.get(env_var)
    if value or not GCP_PROJECT_ID or not secret_id:
        return value
    try:
        value = _read_secret_manager(secret_id)
    except Exception as exc:
        logger.warning("Could not read %s from Secret Manager: %s", env_var, exc)
        return ""
    logger.info("Loaded %s from Secret Manager", env_var)
    return value


ANTHROPIC_API_KEY = _get_secret("ANTHROPIC_API_KEY")
GEMINI_API_KEY = _get_secret("GEMINI_API_KEY")
SLACK_BOT_TOKEN = _get_secret("SLACK_BOT_TOKEN")
SLACK_APP_TOKEN = _get_secret("SLACK_APP_TOKEN")

# "claude", "gemini", or "local" for no provider
LLM_PROVIDER = os.getenv("LLM_PROVIDER", "claude").lower()
# "sqlite" or "memory"
STORE_BACKEND = os.getenv("STORE_BACKEND", "sqlite").lower()

# Claude models per task
ENRICHMENT_MODEL = "claude-sonnet-4-5-20250929"
INTENT_MODEL = "claude-haiku-4-5-20251001"
MESSAGE_MODEL = "claude-sonnet-4-5-20250929"

# Gemini models per task
GEMINI_ENRICHMENT_MODEL = os.getenv("GEMINI_ENRICHMENT_MODEL", "gemini-2.5-flash")
GEMINI_INTENT_MODEL = os.getenv("GEMINI_INTENT_MODEL", "gemini-2.5-flash")
GEMINI_MESSAGE_MODEL = os.getenv("GEMINI_MESSAGE_MODEL", "gemini-2.5-pro")

# Marketplace rules
MIN_CONTACTS_FOR_INTRO = 5
WEEKLY_INTRO_LIMIT = 3
MAX_INDIRECT_RESULTS = 20
MAX_QUERY_LENGTH = 500
MAX_REASON_LENGTH = 2000
DEFAULT_REQUESTER_INFO = "early-career professional"
