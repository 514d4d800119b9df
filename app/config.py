"""Runtime configuration read from environment variables."""
import os

# Use PostgreSQL in production (from DATABASE_URL env var), SQLite locally
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./change_control.db")

# Fix for Render/Heroku: they use postgres:// but SQLAlchemy needs postgresql://
if DATABASE_URL.startswith("postgres://"):
    DATABASE_URL = DATABASE_URL.replace("postgres://", "postgresql://", 1)

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_JSON = os.getenv("LOG_JSON", "true").lower() in ("1", "true", "yes")

CORS_ORIGINS = [origin.strip() for origin in os.getenv("CORS_ORIGINS", "*").split(",")]

# Dashboard and list sizing
RECENT_REQUESTS_LIMIT = int(os.getenv("RECENT_REQUESTS_LIMIT", "5"))
LIST_PAGE_LIMIT = int(os.getenv("LIST_PAGE_LIMIT", "50"))
