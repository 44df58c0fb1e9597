from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    BOT_TOKEN: str | None = None
    TZ: str = "Asia/Ho_Chi_Minh"
    DATABASE_URL: str = "sqlite:///data.db"
    LOG_LEVEL: str = "INFO"

    EARNING_RATE_PER_HOUR: float = Field(default=2000.0, ge=0.0)  # VNĐ/giờ
    TICK_MIN_MS: int = Field(default=2000, gt=0)
    TICK_MAX_MS: int = Field(default=5000, gt=0)
    MULTIPLIER_MIN: float = Field(default=0.8, gt=0.0)
    MULTIPLIER_MAX: float = Field(default=1.2, gt=0.0)
    PULSE_MS: int = Field(default=300, ge=0)
    LOG_LIMIT: int = Field(default=30, ge=1)

    OFFLINE_CAP_HOURS: float = Field(default=24.0, gt=0.0)
    OFFLINE_MIN_CREDIT: float = Field(default=0.01, ge=0.0)
    HISTORY_DAYS: int = Field(default=7, ge=1)

    MIN_WITHDRAWAL: int = Field(default=3_000_000, ge=0)
    SETTLEMENT_DELAY_MS: int = Field(default=2500, ge=0)
    BANKS_PATH: str = "data/banks.yml"
    DAILY_SUMMARY_HOUR: int = Field(default=21, ge=0, le=23)

    model_config = SettingsConfigDict(env_file=".env")

settings = Settings()
