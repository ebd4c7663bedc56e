# smaragdus/config.py
import os
from dotenv import load_dotenv

load_dotenv()


def _bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


DATABASE_URL = os.environ.get("DATABASE_URL")
if not DATABASE_URL:
    raise RuntimeError("DATABASE_URL not set in environment")

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "change_me_long_secret")
JWT_ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "1440"))
PASSWORD_RESET_EXPIRE_MINUTES = int(os.getenv("PASSWORD_RESET_EXPIRE_MINUTES", "60"))

# empty string disables redis entirely
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")

RESEND_API_KEY = os.getenv("RESEND_API_KEY")
RESEND_API_URL = os.getenv("RESEND_API_URL", "https://api.resend.com/emails")
EMAIL_FROM_ADDRESS = os.getenv("EMAIL_FROM_ADDRESS", "noreply@smaragdusviridi.com")
ADMIN_FALLBACK_EMAIL = os.getenv("ADMIN_FALLBACK_EMAIL", "admin@smaragdusviridi.com")
SITE_URL = os.getenv("SITE_URL", "http://localhost:3000").rstrip("/")

CHAT_CHECKER_API_KEY = os.getenv("CHAT_CHECKER_API_KEY")
UNATTENDED_ALERT_THRESHOLD_MINUTES = int(os.getenv("UNATTENDED_ALERT_THRESHOLD_MINUTES", "30"))

CONTACT_AUTO_RESPONSE_ENABLED = _bool("CONTACT_AUTO_RESPONSE_ENABLED", True)
CONTACT_ADMIN_NOTIFICATION_ENABLED = _bool("CONTACT_ADMIN_NOTIFICATION_ENABLED", True)

CURRENCY_SOURCE_URL = os.getenv("CURRENCY_SOURCE_URL", "https://mig.kz/")
CURRENCY_CACHE_TTL_SECONDS = int(os.getenv("CURRENCY_CACHE_TTL_SECONDS", "3600"))

CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",") if o.strip()]
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
PORT = int(os.getenv("PORT", "8000"))

SEED_ADMIN_EMAIL = os.getenv("SEED_ADMIN_EMAIL")
