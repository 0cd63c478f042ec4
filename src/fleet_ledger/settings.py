"""
Configuration for the fleet ledger.

Values are read from the environment (prefix ``FLEET_``) or a ``.env`` file.
"""

from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(env_prefix="FLEET_", env_file=".env", extra="ignore")

    app_name: str = "Fleet Ledger API"
    database_path: str = "fleet_ledger.db"
    log_level: str = "INFO"

    # Reporting
    currency_symbol: str = "R"
    report_creator: str = "Fleet Manager"
    report_layout_path: Optional[Path] = None

    # Dashboard
    top_performers_limit: int = 5
    default_trend_weeks: int = 4


settings = Settings()
