"""Settings and configuration management."""

from functools import lru_cache
from pathlib import Path

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

# YAML config search paths (checked in order, first found wins)
_YAML_SEARCH_PATHS = [
    Path("encontro.yaml"),
    Path("config/encontro.yaml"),
    Path.home() / ".config" / "encontro" / "encontro.yaml",
]


def _find_yaml_config() -> Path | None:
    """Find the first encontro.yaml in search paths."""
    for path in _YAML_SEARCH_PATHS:
        if path.is_file():
            return path
    return None


class Settings(BaseSettings):
    """Process-wide settings for the server and the headless client.

    Priority chain: init kwargs > env vars > .env file > encontro.yaml > defaults
    """

    model_config = SettingsConfigDict(
        env_prefix="ENCONTRO_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Insert the YAML file between the .env file and the defaults."""
        sources: list[PydanticBaseSettingsSource] = [
            init_settings,
            env_settings,
            dotenv_settings,
        ]

        yaml_path = _find_yaml_config()
        if yaml_path:
            sources.append(
                YamlConfigSettingsSource(
                    settings_cls,
                    yaml_file=yaml_path,
                    yaml_file_encoding="utf-8",
                )
            )

        sources.append(file_secret_settings)
        return tuple(sources)

    # Server
    host: str = Field("0.0.0.0", description="Interface the server binds to")
    port: int = Field(
        3001,
        validation_alias=AliasChoices("ENCONTRO_PORT", "PORT", "port"),
        description="Listening port",
    )
    ws_path: str = Field("/ws", description="Well-known WebSocket path")
    log_level: str = Field("INFO", description="Logging level")
    log_format: str = Field("text", description="Log format: 'text' or 'json'")

    # Session limits (process-wide, never negotiated)
    start_lookahead_ms: int = Field(
        3000, description="Delay between the all-ready edge and the ceremony start"
    )
    max_room_size: int = Field(6, description="Maximum participants per session")
    max_rooms: int = Field(50, description="Maximum concurrent sessions per process")

    # Client
    server_url: str = Field("ws://localhost:3001/ws", description="Server WebSocket URL")
    presence_send_rate_hz: float = Field(30.0, description="Presence snapshots per second")
    interpolation_delay_ms: int = Field(100, description="Playback lag for remote presence")
    state_buffer_size: int = Field(3, description="Snapshots buffered per remote participant")
    reconnect_base_delay_ms: int = Field(1000, description="First reconnect delay")
    reconnect_max_attempts: int = Field(5, description="Reconnect attempts before giving up")

    @field_validator("log_format")
    @classmethod
    def _check_log_format(cls, value: str) -> str:
        if value.lower() not in ("text", "json"):
            raise ValueError("log_format must be 'text' or 'json'")
        return value.lower()

    @field_validator("max_room_size")
    @classmethod
    def _check_room_size(cls, value: int) -> int:
        if value < 2:
            raise ValueError("max_room_size must allow at least two participants")
        return value

    @field_validator("state_buffer_size")
    @classmethod
    def _check_buffer_size(cls, value: int) -> int:
        if value < 2:
            raise ValueError("state_buffer_size must hold at least two snapshots")
        return value


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
