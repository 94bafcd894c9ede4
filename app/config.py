from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

BASE_DIR = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=BASE_DIR / ".env", env_file_encoding="utf-8")

    # Local calendar used for "today" and the daily sweep
    TIMEZONE: str = "Asia/Kolkata"

    # Renewal scheduler (local time)
    RENEWAL_SCHEDULER_ENABLED: bool = False
    RENEWAL_SCHEDULER_HOUR: int = 9
    RENEWAL_SCHEDULER_MINUTE: int = 0
    SWEEP_SEND_DELAY: float = 0.5  # seconds between automated sends
    SWEEP_LOCK_FILE: Path | None = None  # set for multi-process deployments

    # Reminder ladder
    REMINDER_MILESTONE_DAYS: dict[int, str] = {30: "30-day", 7: "7-day"}
    REMINDER_DAILY_MAX_DAYS: int = 6  # daily reminders for days 1..N

    # Query windows (days)
    DUE_DEFAULT_DAYS: int = 30
    OVERDUE_LOOKBACK_DAYS: int = 30
    CATEGORIZED_LOOKBACK_DAYS: int = 30
    CATEGORIZED_LOOKAHEAD_DAYS: int = 90
    BULK_TOLERANCE_DAYS: int = 1
    BULK_RECONTACT_DAYS: int = 7

    # Renewal view
    PREMIUM_ESTIMATE_FACTOR: float = 1.05  # heuristic, not a quote
    FRONTEND_URL: str = "http://localhost:3000"

    # Notifications
    NOTIFY_TIMEOUT: float = 30.0
    NOTIFY_DRY_RUN: bool = False
    ADMIN_EMAIL: str = ""

    SMTP_HOST: str = "smtp.gmail.com"
    SMTP_PORT: int = 587
    SMTP_USER: str = ""
    SMTP_PASS: str = ""
    SMTP_FROM: str = ""

    TWILIO_ACCOUNT_SID: str = ""
    TWILIO_AUTH_TOKEN: str = ""
    TWILIO_PHONE_NUMBER: str = ""

    WHATSAPP_PHONE_NUMBER_ID: str = ""
    WHATSAPP_TOKEN: str = ""
    WHATSAPP_API_VERSION: str = "v22.0"

    # Paths
    POLICY_STORE_FILE: Path = BASE_DIR / "data" / "state" / "policies.json"


settings = Settings()
