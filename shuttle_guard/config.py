import os
from dotenv import load_dotenv

load_dotenv()

DATABASE_URL   = os.getenv("DATABASE_URL", "postgresql+asyncpg://shuttle:shuttle@db:5432/shuttle")
REDIS_URL      = os.getenv("REDIS_URL", "redis://redis:6379")
LOG_DIR        = os.getenv("LOG_DIR", "/logs")

TRACCAR_URL      = os.getenv("TRACCAR_URL", "http://traccar:8082")
TRACCAR_USER     = os.getenv("TRACCAR_USER", "")
TRACCAR_PASSWORD = os.getenv("TRACCAR_PASSWORD", "")
TRACCAR_TIMEOUT_SECONDS = float(os.getenv("TRACCAR_TIMEOUT_SECONDS", 30))

SYNC_INTERVAL_SECONDS = int(os.getenv("SYNC_INTERVAL_SECONDS", 900))
SYNC_LOOKBACK_HOURS   = int(os.getenv("SYNC_LOOKBACK_HOURS", 24))
SYNC_CONCURRENCY      = int(os.getenv("SYNC_CONCURRENCY", 4))

REPORT_TIMEZONE = os.getenv("REPORT_TIMEZONE", "Europe/Istanbul")

ALLOWED_DEVICES = {
    int(d) for d in os.getenv("ALLOWED_DEVICES", "").split(",") if d.isdigit()
}
