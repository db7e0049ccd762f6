import logging
import os
from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

ANALYSIS_MODEL = os.getenv("ANALYSIS_MODEL", "gemini-2.5-flash")
LEVEL_MODEL = os.getenv("LEVEL_MODEL", "gemini-3-pro-preview")
PROTOTYPE_MODEL = os.getenv("PROTOTYPE_MODEL", "gemini-3-pro-preview")

PROTOTYPE_TEMPERATURE = 0.2

# milliseconds, as expected by types.HttpOptions
HTTP_TIMEOUT = int(os.getenv("GEMINI_HTTP_TIMEOUT", "300000"))

PORT = int(os.getenv("PORT", "5001"))
DEV_SECRET_KEY = "dev-only-secret"


def load_secret_key():
    secret = os.getenv("FLASK_SECRET_KEY")
    if not secret:
        logger.warning("FLASK_SECRET_KEY is not set; session cookies use an insecure development key")
        return DEV_SECRET_KEY
    return secret


SECRET_KEY = load_secret_key()

# per-process cap on live browser sessions, and how long an idle one is kept
MAX_SESSIONS = int(os.getenv("MAX_SESSIONS", "200"))
SESSION_TTL = int(os.getenv("SESSION_TTL", "3600"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

API_KEY_VARS = ("GEMINI_API_KEY", "API_KEY")


def get_api_key():
    """Return the configured Gemini credential, or None when nothing is set."""
    for name in API_KEY_VARS:
        value = os.getenv(name)
        if value:
            return value
    return None


def reload_env():
    load_dotenv(override=True)
