# clinic_scheduler/config.py
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ===== App =====
    APP_NAME: str = "clinic_scheduler"
    ENV: str = "dev"
    # Clinic-local TZ; every date/time in the booking core is local to it
    TIMEZONE: str = "Africa/Cairo"
    LOG_LEVEL: str = "INFO"
    SQLA_LOG_LEVEL: str = "WARNING"
    UVICORN_LOG_LEVEL: str = "INFO"

    # ===== DB =====
    DATABASE_URL: str = "sqlite:///./clinic.db"

    # Pool options (ignored for SQLite)
    DB_POOL_SIZE: int = 2
    DB_MAX_OVERFLOW: int = 5
    DB_POOL_TIMEOUT: int = 30
    DB_POOL_RECYCLE: int = 1800  # 30 min

    # ===== Clinic config defaults (used when the settings row is first created) =====
    DEFAULT_SLOT_DURATION: int = 30
    DEFAULT_ADVANCE_BOOKING_DAYS: int = 30
    DEFAULT_CANCELLATION_HOURS: int = 24
    DEFAULT_MAX_PATIENTS_PER_SLOT: int = 1

    # ===== Booking rules =====
    MAX_NO_SHOWS: int = 3
    NO_SHOW_WINDOW_DAYS: int = 30
    # Patients cannot cancel inside the cancellation_hours window; staff can
    ENFORCE_CANCELLATION_DEADLINE: bool = True

    # ===== Availability cache =====
    SLOTS_CACHE_TTL: int = 300  # seconds

    # ===== Reminders =====
    REMINDER_SWEEP_ENABLED: bool = True

    # ===== Admin =====
    ADMIN_TOKEN: Optional[str] = None

    def model_post_init(self, __context) -> None:
        """
        Normalizes values coming from the environment:
          - empty TIMEZONE → UTC
          - negative thresholds → 0
        """
        if not (self.TIMEZONE or "").strip():
            self.TIMEZONE = "UTC"
        self.MAX_NO_SHOWS = max(self.MAX_NO_SHOWS, 0)
        self.NO_SHOW_WINDOW_DAYS = max(self.NO_SHOW_WINDOW_DAYS, 0)
        self.SLOTS_CACHE_TTL = max(self.SLOTS_CACHE_TTL, 0)


settings = Settings()
