"""Application configuration loaded from environment variables."""

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# Paths
DATA_DIR = Path(os.getenv("DATA_DIR", Path(__file__).parent.parent / "data"))
DB_PATH = DATA_DIR / "batches.db"
BROWSER_PROFILE_DIR = Path(os.getenv("BROWSER_PROFILE_DIR", DATA_DIR / "browser_profile"))
DEBUG_DIR = DATA_DIR / "debug"
LOG_DIR = DATA_DIR / "logs"

# Session manager
SESSION_MANAGER_HOST = os.getenv("SESSION_MANAGER_HOST", "127.0.0.1")
SESSION_MANAGER_PORT = int(os.getenv("SESSION_MANAGER_PORT", "8025"))
SESSION_MANAGER_URL = f"http://{SESSION_MANAGER_HOST}:{SESSION_MANAGER_PORT}"

# Browser
BROWSER_HEADLESS = os.getenv("BROWSER_HEADLESS", "true").lower() == "true"
BROWSER_TIMEOUT = int(os.getenv("BROWSER_TIMEOUT", "180000"))
NAVIGATION_TIMEOUT = int(os.getenv("NAVIGATION_TIMEOUT", "60000"))
BROWSER_LAUNCH_TIMEOUT = float(os.getenv("BROWSER_LAUNCH_TIMEOUT", "60"))
BROWSER_USER_AGENT = os.getenv("BROWSER_USER_AGENT", "")
VIEWPORT = {"width": 1920, "height": 1080}

# Scraping
MIN_DELAY_SECONDS = float(os.getenv("MIN_DELAY_SECONDS", "5"))
MAX_DELAY_SECONDS = float(os.getenv("MAX_DELAY_SECONDS", "10"))
PROGRESS_GRACE_SECONDS = float(os.getenv("PROGRESS_GRACE_SECONDS", "5"))
MIN_ANSWER_CHARS = int(os.getenv("MIN_ANSWER_CHARS", "1"))
GENERATION_START_TIMEOUT = 10000
GENERATION_TIMEOUT = int(os.getenv("GENERATION_TIMEOUT_MS", "120000"))
EXTRACTION_ATTEMPTS = 3

# Session store
MIN_COOKIE_STORE_BYTES = int(os.getenv("MIN_COOKIE_STORE_BYTES", "1000"))
SESSION_FLUSH_SECONDS = 3.0


def ensure_dirs():
    """Create required data directories if they don't exist."""
    DATA_DIR.mkdir(parents=True, exist_ok=True)
    DEBUG_DIR.mkdir(parents=True, exist_ok=True)
    LOG_DIR.mkdir(parents=True, exist_ok=True)
