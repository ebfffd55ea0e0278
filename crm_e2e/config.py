"""
Environment-driven settings for the CRM end-to-end suite.
Every value can be overridden with an environment variable.
"""
import os
from pathlib import Path


def _env_flag(name: str, default: str = "0") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


PROJECT_ROOT = Path(__file__).resolve().parent.parent

# Application under test
BASE_URL = os.getenv("CRM_BASE_URL", "https://support.cwit.ae").rstrip("/")

LOGIN_ROUTE = "/auth/login"
DASHBOARD_ROUTE = "/dashboard/welcome"
TICKETS_MANAGER_ROUTE = "/dashboard/tickets-manager"
TIMESHEET_ROUTE = "/dashboard/timesheet"

# Test account - never commit real credentials, set TEST_EMAIL / TEST_PASSWORD instead
TEST_EMAIL = os.getenv("TEST_EMAIL", "your-test-email@example.com")
TEST_PASSWORD = os.getenv("TEST_PASSWORD", "your-test-password")
INVALID_EMAIL = "invalid@example.com"
INVALID_PASSWORD = "wrongpassword"

# Timeouts (ms)
TIMEOUT_SHORT_MS = int(os.getenv("TIMEOUT_SHORT_MS", "2000"))
TIMEOUT_MEDIUM_MS = int(os.getenv("TIMEOUT_MEDIUM_MS", "5000"))
TIMEOUT_LONG_MS = int(os.getenv("TIMEOUT_LONG_MS", "10000"))
NAVIGATION_TIMEOUT_MS = int(os.getenv("NAVIGATION_TIMEOUT_MS", "60000"))
LOGIN_TIMEOUT_MS = int(os.getenv("LOGIN_TIMEOUT_MS", "30000"))
DEFAULT_CONTEXT_TIMEOUT_MS = int(os.getenv("DEFAULT_CONTEXT_TIMEOUT_MS", "30000"))

# Retry controller
NAV_MAX_ATTEMPTS = int(os.getenv("NAV_MAX_ATTEMPTS", "3"))
NAV_BACKOFF_BASE_S = float(os.getenv("NAV_BACKOFF_BASE_S", "2"))
NAV_CONNECTION_BACKOFF_BASE_S = float(os.getenv("NAV_CONNECTION_BACKOFF_BASE_S", "5"))
NAV_BACKOFF_CAP_S = float(os.getenv("NAV_BACKOFF_CAP_S", "60"))

# Browser
HEADLESS = _env_flag("HEADLESS", "1")
SLOW_MO_MS = int(os.getenv("PW_SLOW_MO_MS", "0"))
BROWSER_CHANNEL = os.getenv("PW_BROWSER_CHANNEL", "").strip() or None
VIEWPORT = {"width": 1920, "height": 1080}

# Network check (seconds)
NET_CHECK_TIMEOUT = float(os.getenv("NET_CHECK_TIMEOUT", "5"))
NET_CHECK_CACHE_TTL = float(os.getenv("NET_CHECK_CACHE_TTL", "300"))

# Bulk credential verification
BULK_LOGIN_BATCH_SIZE = int(os.getenv("BULK_LOGIN_BATCH_SIZE", "10"))
BULK_LOGIN_STAGGER_MS = int(os.getenv("BULK_LOGIN_STAGGER_MS", "200"))
BULK_LOGIN_BATCH_PAUSE_MS = int(os.getenv("BULK_LOGIN_BATCH_PAUSE_MS", "2000"))

# Output locations
AUTH_DIR = PROJECT_ROOT / ".auth"
AUTH_STATE_PATH = AUTH_DIR / "user.storage_state.json"
LOG_DIR = PROJECT_ROOT / "logs"
REPORTS_DIR = PROJECT_ROOT / "reports"


def url_for(route: str, base_url: str | None = None) -> str:
    """Join a route onto the base URL."""
    base = (base_url or BASE_URL).rstrip("/")
    if route.startswith("http://") or route.startswith("https://"):
        return route
    return f"{base}/{route.lstrip('/')}"
