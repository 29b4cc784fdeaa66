import os

DATABASE_URL = os.environ.get("DATABASE_URL", "postgresql://tracker:tracker@db:5432/click_tracker")
DATABASE_URL_ASYNC = DATABASE_URL.replace("postgresql://", "postgresql+asyncpg://")
SQL_ECHO = os.environ.get("SQL_ECHO", "false").lower() == "true"
REDIS_URL = os.environ.get("REDIS_URL", "redis://redis:6379/0")
BASE_URL = os.environ.get("BASE_URL", "http://localhost:8000").rstrip("/")
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

ATTRIBUTION_WINDOW_DAYS = int(os.environ.get("ATTRIBUTION_WINDOW_DAYS", 30))
CLICK_RETENTION_DAYS = int(os.environ.get("CLICK_RETENTION_DAYS", 90))
SHORT_CODE_LENGTH = int(os.environ.get("SHORT_CODE_LENGTH", 8))
SHORT_CODE_MAX_ATTEMPTS = int(os.environ.get("SHORT_CODE_MAX_ATTEMPTS", 10))
BATCH_MAX_CLICKS = int(os.environ.get("BATCH_MAX_CLICKS", 1000))
BATCH_CONCURRENCY = int(os.environ.get("BATCH_CONCURRENCY", 20))

CELERY_BROKER_URL = os.environ.get("CELERY_BROKER_URL", REDIS_URL)
CELERY_RESULT_BACKEND = os.environ.get("CELERY_RESULT_BACKEND", REDIS_URL)
CLEANUP_INTERVAL_HOURS = int(os.environ.get("CLEANUP_INTERVAL_HOURS", 24))
