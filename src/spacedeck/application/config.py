from pathlib import Path
from typing import Any, Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from spacedeck.domain.constants import (
    DEFAULT_QUIZ_QUEUE_LIMIT,
    DEFAULT_STUDY_QUEUE_LIMIT,
    EMA_ALPHA,
    GRADE_MIN_REVIEWS,
    GRADE_RECENT_REVIEWS,
    LOAD_ABSOLUTE,
    LOAD_MIN_TODAY,
    LOAD_RATIO,
)

CONFIG_FILES = [
    Path.home() / ".config/spacedeck/config.toml",
    Path.home() / ".spacedeck.toml",
]


class AppConfig(BaseSettings):
    """
    Configuration model for spacedeck.
    Supports loading from:
    1. Environment variables (SPACEDECK_*)
    2. Config file (~/.config/spacedeck/config.toml)
    3. Manual overrides (CLI)
    """

    model_config = SettingsConfigDict(
        env_prefix="SPACEDECK_",
        extra="ignore",
    )

    # Storage
    backend: Literal["memory", "sqlite"] = "sqlite"
    database_path: Path = Field(
        default_factory=lambda: Path.home() / ".local/share/spacedeck/spacedeck.db"
    )

    # Memory model
    parameters_file: Path | None = None
    desired_retention: float | None = Field(default=None, gt=0.0, lt=1.0)
    maximum_interval: int | None = Field(default=None, ge=1)
    learning_steps_minutes: list[float] | None = None
    relearning_steps_minutes: list[float] | None = None

    # Scoring
    ema_alpha: float = Field(default=EMA_ALPHA, gt=0.0, le=1.0)
    grade_min_reviews: int = Field(default=GRADE_MIN_REVIEWS, ge=1)
    grade_recent_reviews: int = Field(default=GRADE_RECENT_REVIEWS, ge=1)

    # Daily load
    load_min_today: int = LOAD_MIN_TODAY
    load_ratio: float = LOAD_RATIO
    load_absolute: int = LOAD_ABSOLUTE
    timezone: str = "UTC"

    # Queues
    study_queue_limit: int = Field(default=DEFAULT_STUDY_QUEUE_LIMIT, ge=1)
    quiz_queue_limit: int = Field(default=DEFAULT_QUIZ_QUEUE_LIMIT, ge=1)

    # Server
    host: str = "127.0.0.1"
    port: int = 8777
    log_level: str = "INFO"

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        from pydantic_settings import TomlConfigSettingsSource

        toml_file = next((f for f in CONFIG_FILES if f.exists()), None)

        # Later sources lose: CLI overrides beat env, env beats the file.
        if toml_file:
            return (
                init_settings,
                env_settings,
                TomlConfigSettingsSource(settings_cls, toml_file=toml_file),
            )
        return (init_settings, env_settings)

    @field_validator("database_path", "parameters_file", mode="before")
    @classmethod
    def expand_path(cls, v: Any) -> Path | None:
        if v is None or v == "":
            return None
        return Path(v).expanduser()

    @field_validator("timezone")
    @classmethod
    def check_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {v}") from e
        return v

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        return v.upper()

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


def resolve_config(cli_overrides: dict[str, Any] | None = None) -> AppConfig:
    """
    Multi-layered configuration resolution.
    1. Defaults in AppConfig
    2. ~/.config/spacedeck/config.toml (if exists)
    3. Environment variables (SPACEDECK_*)
    4. cli_overrides (passed from Typer), None values ignored
    """
    overrides = {k: v for k, v in (cli_overrides or {}).items() if v is not None}
    return AppConfig(**overrides)
