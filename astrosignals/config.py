# astrosignals/config.py
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="allow")

    LOG_LEVEL: str = "INFO"

    # JSON rule packs
    RULES_DIR: str = "rulesets"

    # Mahadasha count returned when the caller does not ask for one
    DASHA_MIN_PERIODS: int = 18
    AYANAMSHA: str = "Lahiri"


@lru_cache()
def get_settings() -> Settings:
    return Settings()
