import os

try:
    from dotenv import load_dotenv
    load_dotenv()
except ImportError:
    pass  # dotenv is optional for production, but useful locally


def _env_bool(name: str, default: str = "false") -> bool:
    return os.environ.get(name, default).strip().lower() in ("1", "true", "yes", "on")


class Settings:
    # --- Database ---
    DATABASE_URL = os.environ.get("DATABASE_URL")
    DATABASE_PUBLIC_URL = os.environ.get("DATABASE_PUBLIC_URL")

    # --- Redis (Celery broker + result backend) ---
    REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379/0")

    # --- Telnyx (SMS) ---
    TELNYX_API_KEY = os.environ.get("TELNYX_API_KEY")
    TELNYX_FROM_NUMBER = os.environ.get("TELNYX_FROM_NUMBER")
    TELNYX_TEST_TO = os.environ.get("TELNYX_TEST_TO")

    # --- Environment / safety rails ---
    APP_ENV = os.environ.get("APP_ENV", "production")
    DEV_FORCE_TO = os.environ.get("DEV_FORCE_TO")
    DEBUG_TOKEN = os.environ.get("DEBUG_TOKEN")

    # --- Reminder dispatch ---
    REQUIRE_UNRESPONDED_ONLY = _env_bool("REQUIRE_UNRESPONDED_ONLY")
    REMINDER_BATCH_SIZE = int(os.environ.get("REMINDER_BATCH_SIZE", "5"))
    DEBUG_BATCH_SIZE = int(os.environ.get("DEBUG_BATCH_SIZE", "3"))
    REMINDER_CLAIM_LEASE_SECONDS = int(os.environ.get("REMINDER_CLAIM_LEASE_SECONDS", "900"))
    REMINDER_DISPATCH_INTERVAL = float(os.environ.get("REMINDER_DISPATCH_INTERVAL", "60"))
    REMINDER_TASK_TIME_LIMIT = int(os.environ.get("REMINDER_TASK_TIME_LIMIT", "120"))

    # --- Logging ---
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    def database_url(self) -> str | None:
        return self.DATABASE_URL or self.DATABASE_PUBLIC_URL

    def missing(self, *names: str) -> list[str]:
        """Return the subset of *names* that are unset or empty."""
        return [name for name in names if not getattr(self, name, None)]

    def dispatch_missing(self) -> list[str]:
        """Settings a dispatch run cannot start without (store + SMS sender)."""
        missing = [] if self.database_url() else ["DATABASE_URL"]
        return missing + self.missing("TELNYX_API_KEY", "TELNYX_FROM_NUMBER")


settings = Settings()
