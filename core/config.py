from pydantic_settings import BaseSettings, SettingsConfigDict
from pathlib import Path

# Resolve the project root .env file
_THIS_DIR = Path(__file__).resolve().parent          # core/
_PROJECT_ROOT = _THIS_DIR.parent
_ENV_FILE = _PROJECT_ROOT / ".env"

class Settings(BaseSettings):
    # Server config
    SERVER_HOST: str = "0.0.0.0"
    SERVER_PORT: int = 8000
    ENVIRONMENT: str = "development"

    # Frontend config
    FRONTEND_URL: str = "http://localhost:3000"

    # Supabase
    SUPABASE_URL: str = ""
    SUPABASE_KEY: str = ""

    # JWT Auth
    JWT_SECRET: str = ""
    JWT_ALGORITHM: str = "HS256"
    JWT_EXPIRATION_HOURS: int = 24

    # SMTP
    SMTP_HOST: str = ""
    SMTP_PORT: int = 587
    SMTP_USERNAME: str = ""
    SMTP_PASSWORD: str = ""
    SMTP_FROM_EMAIL: str = "noreply@example.com"
    SMTP_USE_TLS: bool = False  # implicit TLS (port 465); STARTTLS otherwise

    # Redis config (for rate limiting)
    REDIS_URL: str = "redis://localhost:6379"

    # Payment gateway selector (only "razorpay" is supported)
    PAYMENT_GATEWAY: str = "razorpay"
    GATEWAY_TIMEOUT_SECONDS: float = 15.0

    # Razorpay
    RAZORPAY_KEY_ID: str = ""
    RAZORPAY_KEY_SECRET: str = ""
    RAZORPAY_WEBHOOK_SECRET: str = ""

    # Amounts are in minor units (paise); Razorpay minimum is 100 paise
    DEFAULT_CURRENCY: str = "INR"
    PAYMENT_MIN_AMOUNT: int = 100

    # Appointment slots are stored as local date + time in this zone
    APPOINTMENT_TIMEZONE: str = "Asia/Kolkata"

    # Reminder jobs
    ENABLE_SCHEDULER: bool = True
    SCHEDULER_TIMEZONE: str = "Asia/Kolkata"
    REMINDER_SWEEP_INTERVAL_MINUTES: int = 15
    REMINDER_DAILY_SWEEP_HOUR: int = 9
    REMINDER_LOOKBACK_MINUTES: int = 60
    REMINDER_LOOKAHEAD_MINUTES: int = 15
    REMINDER_SWEEP_CONCURRENCY: int = 5

    model_config = SettingsConfigDict(
        env_file=str(_ENV_FILE),
        env_file_encoding="utf-8",
        extra="ignore"
    )

settings = Settings()
