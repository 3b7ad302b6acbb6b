import os
from pathlib import Path

from pydantic import BaseModel, Field
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    TomlConfigSettingsSource,
)

_CONFIG_PATH = os.getenv("JOBSCHEDULER_CONFIG", "config.toml")
_ENV_PATH = os.getenv("JOBSCHEDULER_ENV", ".env")


class SchedulerSettings(BaseModel):
    enabled: bool = True
    timezone: str = "UTC"
    execution_retention_days: int = Field(default=7, ge=1)
    execution_prune_schedule: str = "0 * * * *"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_nested_delimiter="__",
        toml_file=_CONFIG_PATH,
        env_file=_ENV_PATH,
    )

    database_url: str = "sqlite:///scheduler.db"
    logs_dir: Path = Field(default=Path("logs"))
    host: str = "0.0.0.0"
    port: int = 5678
    scheduler: SchedulerSettings = Field(default_factory=SchedulerSettings)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # Source order: init args > OS env > .env > config.toml > secrets
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            TomlConfigSettingsSource(settings_cls),
            file_secret_settings,
        )


settings = Settings()
