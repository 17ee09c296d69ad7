"""Configuration management for the scan grading pipeline."""

import logging
import os
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


def get_secret(key: str, default: str = "") -> str:
    """Get a secret from the environment, falling back to a default."""
    return os.getenv(key, default)


def _get_float(key: str, default: float) -> float:
    value = get_secret(key, "")
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        raise ConfigurationError(f"{key} must be a number, got {value!r}")


def _get_int(key: str, default: int) -> int:
    value = get_secret(key, "")
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigurationError(f"{key} must be an integer, got {value!r}")


class ConfigurationError(Exception):
    """Raised when required configuration is missing or invalid."""
    pass


# --- Logging Setup ---
LOG_LEVEL = get_secret("LOG_LEVEL", "INFO").upper()

logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("scangrade")

# Base paths
BASE_DIR = Path(__file__).parent.parent
DATA_DIR = Path(os.getenv("SCANGRADE_DATA_DIR", BASE_DIR / "data"))

# Database
DATABASE_PATH = Path(os.getenv("DATABASE_PATH", DATA_DIR / "scangrade.db"))

# Folders
SCANS_FOLDER = Path(os.getenv("SCANS_FOLDER", DATA_DIR / "scans"))

# Best-effort crash recovery snapshot of the batch queue
SESSION_SNAPSHOT_PATH = Path(os.getenv("SESSION_SNAPSHOT_PATH", DATA_DIR / "batch_session.json"))
SESSION_MAX_AGE_HOURS = _get_float("SESSION_MAX_AGE_HOURS", 4)

# API Keys
ANTHROPIC_API_KEY = get_secret("ANTHROPIC_API_KEY", "")

# Claude model settings
CLAUDE_VISION_MODEL = get_secret("CLAUDE_VISION_MODEL", "claude-sonnet-4-20250514")
CLAUDE_MAX_TOKENS = 4000

# API retry settings
API_MAX_RETRIES = 3
API_RETRY_DELAY = 2  # seconds
API_TIMEOUT = _get_float("API_TIMEOUT", 120)  # seconds

# Reconciliation settings
RECONCILIATION_RUNS = _get_int("RECONCILIATION_RUNS", 3)  # independent grading passes per item
CONFIDENCE_HIGH_SPREAD = _get_float("CONFIDENCE_HIGH_SPREAD", 5)      # max spread (points) for "high"
CONFIDENCE_MEDIUM_SPREAD = _get_float("CONFIDENCE_MEDIUM_SPREAD", 15)  # max spread (points) for "medium"

# Page grouping settings
HANDWRITING_SIMILARITY_THRESHOLD = _get_float("HANDWRITING_SIMILARITY_THRESHOLD", 0.7)

# Identification settings
NAME_MATCH_HIGH = 0.9     # roster name ratio for a confident match
NAME_MATCH_MEDIUM = 0.75  # roster name ratio below which no match is made
IDENTIFY_CONCURRENCY = _get_int("IDENTIFY_CONCURRENCY", 4)

# Reporting
PASS_THRESHOLD = 60  # Percentage counted as passing in batch summaries
DEFAULT_TOPIC = "General Assessment"


def validate_config(require_api_key: bool = True) -> list[str]:
    """Validate configuration and return list of issues.

    Args:
        require_api_key: If True, treat missing API key as an error rather than a warning.

    Returns:
        List of warning strings for non-critical issues.

    Raises:
        ConfigurationError: If require_api_key is True and the key is missing.
    """
    issues = []

    if not ANTHROPIC_API_KEY:
        msg = "ANTHROPIC_API_KEY not set in environment"
        if require_api_key:
            raise ConfigurationError(
                f"{msg}. Copy .env.example to .env and add your API key."
            )
        issues.append(msg)

    if RECONCILIATION_RUNS < 1:
        issues.append(f"RECONCILIATION_RUNS must be at least 1, got {RECONCILIATION_RUNS}")

    if CONFIDENCE_HIGH_SPREAD > CONFIDENCE_MEDIUM_SPREAD:
        issues.append("CONFIDENCE_HIGH_SPREAD is larger than CONFIDENCE_MEDIUM_SPREAD")

    if not 0 <= HANDWRITING_SIMILARITY_THRESHOLD <= 1:
        issues.append(
            f"HANDWRITING_SIMILARITY_THRESHOLD must be within [0, 1], got {HANDWRITING_SIMILARITY_THRESHOLD}"
        )

    if not SCANS_FOLDER.exists():
        issues.append(f"Scans folder does not exist: {SCANS_FOLDER}")

    return issues


def get_database_url() -> str:
    """Get SQLAlchemy database URL."""
    return os.getenv("DATABASE_URL", f"sqlite:///{DATABASE_PATH}")
