"""Configuration settings for RealFocus."""

import os
import sys
from pathlib import Path
from dotenv import load_dotenv


def is_bundled() -> bool:
    """
    Check if the application is running from a PyInstaller bundle.

    Returns:
        True if running from a bundled executable, False otherwise.
    """
    return getattr(sys, 'frozen', False) and hasattr(sys, '_MEIPASS')


def get_user_data_dir() -> Path:
    """
    Get the directory for user-writable data (storage file, rules overrides).

    For development: BASE_DIR/data
    For bundled apps: A dedicated folder in the user's home directory
                      so data persists across updates.

    Returns:
        Path to the user data directory.
    """
    override = os.getenv("REALFOCUS_DATA_DIR")
    if override:
        return Path(override)

    if not is_bundled():
        return Path(__file__).parent / "data"

    if sys.platform == 'darwin':
        return Path.home() / "Library" / "Application Support" / "RealFocus"
    if sys.platform == 'win32':
        appdata = os.environ.get('APPDATA')
        if appdata:
            return Path(appdata) / "RealFocus"
        return Path.home() / "AppData" / "Roaming" / "RealFocus"
    return Path.home() / ".local" / "share" / "RealFocus"


def _env_minutes_ms(env_var: str, default_minutes: float) -> int:
    """Read a duration in minutes from the environment and return milliseconds."""
    raw = os.getenv(env_var, "")
    try:
        minutes = float(raw) if raw else default_minutes
    except ValueError:
        import logging
        logging.getLogger(__name__).warning(
            f"{env_var}={raw!r} is not a number, using {default_minutes} minutes"
        )
        minutes = default_minutes
    return int(max(minutes, 0) * 60 * 1000)


# Load environment variables from .env file (only in development)
if not is_bundled():
    _env_path = Path(__file__).parent / ".env"
    load_dotenv(_env_path)

# User data directory (for writable data like the key-value store)
USER_DATA_DIR = get_user_data_dir()


def _validate_api_key_format(key: str, key_type: str) -> bool:
    """
    Validate API key format to catch configuration errors early.

    Args:
        key: The API key to validate.
        key_type: Type of key ("openai").

    Returns:
        True if key format is valid, False otherwise.
    """
    if not key:
        return False

    if len(key) < 10:
        return False

    expected_prefixes = {
        "openai": "sk-",
    }

    if key_type in expected_prefixes:
        return key.startswith(expected_prefixes[key_type])

    return True  # Unknown key type - accept any format


def _get_api_key(env_var: str, key_type: str = "") -> str:
    """
    Get an API key from the environment.

    Args:
        env_var: Environment variable name.
        key_type: Optional key type for format validation logging.

    Returns:
        API key string, or empty string if not found.
    """
    key = os.getenv(env_var, "")
    if key and key_type and not _validate_api_key_format(key, key_type):
        # Log warning if format looks wrong (doesn't prevent usage)
        import logging
        logging.getLogger(__name__).warning(
            f"{env_var} may have invalid format for {key_type} key"
        )
    return key


# OpenAI Configuration
OPENAI_API_KEY = _get_api_key("OPENAI_API_KEY", "openai")
OPENAI_EMBEDDING_MODEL = os.getenv("OPENAI_EMBEDDING_MODEL", "text-embedding-3-small")
OPENAI_JUDGE_MODEL = os.getenv("OPENAI_JUDGE_MODEL", "gpt-4o-mini")
OPENAI_MAX_RETRIES = 2
OPENAI_RETRY_DELAY = 1.0  # Seconds, doubled on each retry

# Every network suspension point has its own timeout and a fallback value
EMBEDDING_TIMEOUT_SECONDS = 10.0
JUDGE_TIMEOUT_SECONDS = 20.0
CONTENT_EXTRACTION_TIMEOUT_SECONDS = 3.0

# Mock mode returns canned judgments by URL (zero API cost, for UI testing)
MOCK_API_ENABLED = os.getenv("MOCK_API_ENABLED", "").lower() in ("true", "1", "yes")

# Score used when the embedding provider fails; 50 lands in the judge band
EMBEDDING_FALLBACK_SCORE = 50

# Pomodoro durations (override in .env with minutes)
POMODORO_FOCUS_MS = _env_minutes_ms("POMODORO_FOCUS_MINUTES", 25)
POMODORO_SHORT_BREAK_MS = _env_minutes_ms("POMODORO_SHORT_BREAK_MINUTES", 5)
POMODORO_LONG_BREAK_MS = _env_minutes_ms("POMODORO_LONG_BREAK_MINUTES", 15)
POMODORO_LONG_BREAK_INTERVAL = 4  # Focus sessions per long break
POMODORO_ALARM_NAME = "pomodoro_timer"

# Grace period ("time control") for work searches on distracting platforms
GRACE_PERIOD_MS = 30 * 1000

# Relevance cache
CACHE_TTL_MS = 24 * 60 * 60 * 1000  # 24 hours
CACHE_MAX_BYTES = 4 * 1024 * 1024  # 4MB (leave 1MB buffer from the storage quota)
CACHE_EVICTION_TARGET = 0.8  # Evict down to 80% of the budget
CACHE_SWEEP_INTERVAL_SECONDS = 60 * 60  # Hourly expired-entry sweep

# Persistent key-value store
STORAGE_FILE = USER_DATA_DIR / "storage.json"
STORAGE_QUOTA_BYTES = 5 * 1024 * 1024
CLASSIFIER_RULES_FILE = USER_DATA_DIR / "classifier_rules.json"  # Optional overrides

# Storage keys
CACHE_KEY = "aiCache"
POMODORO_STATE_KEY = "pomodoroState"
STATISTICS_KEY = "focusStatistics"
KEYWORDS_KEY = "focusKeywords"

# Pages that are never classified
INTERNAL_URL_PREFIXES = (
    "chrome://",
    "chrome-extension://",
    "edge://",
    "moz-extension://",
    "about:",
)

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")  # Can override in .env: DEBUG, INFO, WARNING, ERROR
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
