import os
from decimal import Decimal
from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

PACKAGE_DIR = Path(__file__).resolve().parent.parent
DEFAULT_TAX_TABLES_PATH = PACKAGE_DIR / "data" / "tax_tables"


class EngineSettings(BaseSettings):
    env: str = Field(default="dev", description="Deployment environment")
    engine_version: str = "2.0.0"
    engine_source: str = "payroll_engine"
    log_level: str = "INFO"
    tax_tables_path: Path = Field(default=DEFAULT_TAX_TABLES_PATH, description="Directory of versioned JSON tax tables")
    tax_table_version: str | None = Field(
        default=None, description="Pin a table version; otherwise the table effective on the as-of date is used"
    )
    overtime_threshold_hours: Decimal = Decimal("40")
    overtime_premium_factor: Decimal = Decimal("0.5")
    integrity_tolerance: Decimal = Decimal("0.02")
    block_on_validation_errors: bool = False
    otlp_endpoint: str | None = Field(default=None, description="OTLP endpoint for traces/metrics")

    model_config = SettingsConfigDict(env_prefix="PAYROLL_ENGINE_", extra="ignore")

    @field_validator("log_level")
    @classmethod
    def normalize_level(cls, value: str) -> str:
        return value.upper()


@lru_cache
def get_settings() -> EngineSettings:
    return EngineSettings(_env_file=get_settings_env_file())


def get_settings_env_file() -> str | None:
    """Resolve environment-specific env file if it exists."""
    env = os.getenv("PAYROLL_ENGINE_ENV", "dev")
    env_file = Path.cwd() / f".env.{env}"
    default_file = Path.cwd() / ".env"
    if env_file.exists():
        return str(env_file)
    if default_file.exists():
        return str(default_file)
    return None
