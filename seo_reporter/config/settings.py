"""
Configuration settings for the SEO Rank Reporter.
"""

import os
from pathlib import Path
from dotenv import load_dotenv

load_dotenv()

# Base paths
BASE_DIR = Path(os.getenv("SEO_REPORTER_HOME", Path.cwd())).resolve()
DATA_DIR = BASE_DIR / "data"
LOGS_DIR = BASE_DIR / "logs"

# Create directories if they don't exist
for d in [DATA_DIR, LOGS_DIR]:
    d.mkdir(parents=True, exist_ok=True)

# Database
DATABASE_URL = os.getenv(
    "DATABASE_URL",
    f"sqlite:///{DATA_DIR / 'seo_reporter.db'}"
)

# Redis / Celery
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
CELERY_BROKER_URL = os.getenv("CELERY_BROKER_URL", REDIS_URL)
CELERY_RESULT_BACKEND = os.getenv("CELERY_RESULT_BACKEND", REDIS_URL)

# Search provider (SerpApi)
SERPAPI_API_KEY = os.getenv("SERPAPI_API_KEY", "")
SERPAPI_ENDPOINT = os.getenv("SERPAPI_ENDPOINT", "https://serpapi.com/search")
SEARCH_TIMEOUT = float(os.getenv("SEARCH_TIMEOUT", "20"))
SEARCH_RESULT_LIMIT = 100
SEARCH_LOCALE = "tw-zh"

# Provider parameters for each supported locale
SEARCH_LOCALES = {
    "tw-zh": {"location": "Taiwan", "hl": "zh-TW", "gl": "tw"},
}

# "live" queries the search provider, "simulated" draws placeholder rankings
RANKING_MODE = os.getenv("RANKING_MODE", "live" if SERPAPI_API_KEY else "simulated")
SIMULATION_SEED = int(os.environ["SIMULATION_SEED"]) if os.getenv("SIMULATION_SEED") else None
SIMULATED_RANKING_RANGE = (1, 50)

# Email delivery -- SendGrid when a key is present, SMTP otherwise
SENDGRID_API_KEY = os.getenv("SENDGRID_API_KEY", "")
SMTP_HOST = os.getenv("SMTP_HOST", "localhost")
SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
SMTP_USERNAME = os.getenv("SMTP_USERNAME", "")
SMTP_PASSWORD = os.getenv("SMTP_PASSWORD", "")
SMTP_USE_TLS = os.getenv("SMTP_USE_TLS", "true").lower() in ("1", "true", "yes")
EMAIL_TIMEOUT = float(os.getenv("EMAIL_TIMEOUT", "20"))

REPORT_CONFIG = {
    "from_email": os.getenv("REPORT_FROM_EMAIL", "reports@example.com"),
    "from_name": os.getenv("REPORT_FROM_NAME", "SEO Monitoring"),
    "subject_prefix": "SEO Report",
    "history_window_days": 30,
}

# Placeholder score ranges (inclusive). A real analyzer must stay inside them.
SCORE_RANGES = {
    "overall_score": (70, 100),
    "speed_score": (70, 100),
    "backlinks_count": (50, 550),
    "structure_issues_count": (0, 10),
}

REPORT_FREQUENCY_DAYS = {
    "daily": 1,
    "weekly": 7,
    "monthly": 30,
}

BATCH_CONFIG = {
    "throttle_seconds": float(os.getenv("BATCH_THROTTLE_SECONDS", "0")),
}

# Scheduling (Asia/Taipei wall clock)
SCHEDULE = {
    "ranking_refresh_hour": 6,
    "report_generation_hour": 8,
}

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FILE = LOGS_DIR / "seo_reporter.log"
