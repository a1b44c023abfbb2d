import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./maintenance.db")

# Redis (analytics cache + arq worker)
REDIS_URL = os.getenv("REDIS_URL")
REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
REDIS_PORT = int(os.getenv("REDIS_PORT", "6379"))
REDIS_PASSWORD = os.getenv("REDIS_PASSWORD")
REDIS_SSL = os.getenv("REDIS_SSL", "false").lower() == "true"
CACHE_ENABLED = os.getenv("CACHE_ENABLED", "true").lower() == "true"

# Contract health
EXPIRING_SOON_DAYS = int(os.getenv("EXPIRING_SOON_DAYS", "30"))

# Missed-visit sweep: a scheduled visit is missed once scheduled_date + grace has passed.
# Per-priority overrides: MISSED_VISIT_GRACE_DAYS_URGENT=0, MISSED_VISIT_GRACE_DAYS_LOW=3, ...
MISSED_VISIT_GRACE_DAYS = int(os.getenv("MISSED_VISIT_GRACE_DAYS", "1"))
MISSED_VISIT_GRACE_DAYS_BY_PRIORITY = {
    priority: int(os.environ[f"MISSED_VISIT_GRACE_DAYS_{priority.upper()}"])
    for priority in ("low", "medium", "high", "urgent")
    if os.getenv(f"MISSED_VISIT_GRACE_DAYS_{priority.upper()}")
}

# SLA: a completed visit is on time if it started within this many minutes of its slot
ON_TIME_GRACE_MINUTES = int(os.getenv("ON_TIME_GRACE_MINUTES", "60"))

# Materialization horizon in months past the current one ("through end of next month")
DEFAULT_HORIZON_MONTHS = int(os.getenv("DEFAULT_HORIZON_MONTHS", "1"))

ANALYTICS_CACHE_TTL = int(os.getenv("ANALYTICS_CACHE_TTL", "600"))  # 10 minutes

# Bounded retry for lock-wait timeouts / deadlocks
LOCK_RETRY_ATTEMPTS = int(os.getenv("LOCK_RETRY_ATTEMPTS", "3"))
LOCK_RETRY_BASE_DELAY = float(os.getenv("LOCK_RETRY_BASE_DELAY", "0.2"))
