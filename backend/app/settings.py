import os

from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./tournament.db")
SQL_ECHO = os.getenv("SQL_ECHO", "false").lower() in ("true", "1", "yes")

CORS_ORIGINS = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]
_extra = os.getenv("CORS_ORIGINS", "")
if _extra:
    CORS_ORIGINS.extend(o.strip() for o in _extra.split(",") if o.strip())

# Progression cascade
PROGRESSION_LOCK_TTL_SECONDS = int(os.getenv("PROGRESSION_LOCK_TTL_SECONDS", "30"))
PROGRESSION_PERSIST_RETRIES = int(os.getenv("PROGRESSION_PERSIST_RETRIES", "3"))
DEFAULT_TIE_POLICY = os.getenv("DEFAULT_TIE_POLICY", "manual").lower()
