"""
Search History Vault Configuration
Centralizes path definitions, KDF tuning and environment variable loading.
"""
import os
from pathlib import Path
from dotenv import load_dotenv

# 1. Locate the Project Root
# Assumes structure: project/src/config.py
PROJECT_ROOT = Path(__file__).resolve().parent.parent

# 2. Load .env file
load_dotenv(PROJECT_ROOT / ".env")


def _int_setting(name: str, default: int, minimum: int = 1) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from e
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got {value}")
    return value


# 3. Define Defaults
DEFAULT_DATA_DIR = PROJECT_ROOT / "data"
DEFAULT_DB_PATH = DEFAULT_DATA_DIR / "history.db"

# Envelopes do not carry the iteration count; every reader and writer of a
# store must use the same value.
DEFAULT_KDF_ITERATIONS = 100_000
DEFAULT_MAX_CONCURRENCY = min(4, os.cpu_count() or 1)

# 4. Export Configuration
# Priority: Environment Variable -> .env file -> Defaults
DB_PATH = os.getenv("HISTORY_DB_PATH", str(DEFAULT_DB_PATH))
KDF_ITERATIONS = _int_setting("HISTORY_KDF_ITERATIONS", DEFAULT_KDF_ITERATIONS)
MAX_CONCURRENCY = _int_setting("HISTORY_MAX_CONCURRENCY", DEFAULT_MAX_CONCURRENCY)
LOG_LEVEL = os.getenv("HISTORY_LOG_LEVEL", "WARNING").upper()
