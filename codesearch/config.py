"""Configuration management for ai-code-search."""

from __future__ import annotations

import logging
import os
from contextvars import ContextVar
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Type

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.fields import FieldInfo
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

logger = logging.getLogger(__name__)

# config/settings.yaml sits next to the package directory
PROJECT_ROOT = Path(__file__).resolve().parent.parent
CONFIG_PATH = PROJECT_ROOT / "config" / "settings.yaml"


class ConfigurationError(RuntimeError):
    """Raised when a required setting is missing or invalid."""


class ServerConfig(BaseModel):
    """HTTP server configuration."""

    model_config = ConfigDict(extra="forbid")

    host: str = "127.0.0.1"
    port: int = 8000

    @field_validator("port")
    @classmethod
    def _check_port(cls, v: int) -> int:
        if v <= 0 or v > 65535:
            raise ValueError(f"Invalid port value: {v}")
        return v


class AgentConfig(BaseModel):
    """Which coding agent answers questions and how it is launched."""

    model_config = ConfigDict(extra="forbid")

    type: str = "cursor"
    command: Optional[str] = None
    model: Optional[str] = None
    terminate_grace: float = 3.0

    @field_validator("type")
    @classmethod
    def _normalize_type(cls, v: str) -> str:
        return (v or "").strip().lower()

    @field_validator("command", "model")
    @classmethod
    def _blank_to_none(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        return v or None


class SourcesConfig(BaseModel):
    """Local checkout cache and the catalog of clonable codebases."""

    model_config = ConfigDict(extra="forbid")

    dir: Optional[str] = None
    codebase_list_path: Optional[str] = None

    def require_dir(self) -> Path:
        if not self.dir or not self.dir.strip():
            raise ConfigurationError(
                "sources.dir is not set. Configure it in config/settings.yaml or via SOURCES__DIR "
                "(e.g. .env file or MCP client configuration)."
            )
        return Path(self.dir.strip())


class LoggingConfig(BaseModel):
    """Logging configuration."""

    model_config = ConfigDict(extra="forbid")

    level: str = "INFO"
    file: Optional[str] = "logs/codesearch.log"


# YAML section feeding the current load_settings() call
_yaml_section: ContextVar[Optional[Dict[str, Any]]] = ContextVar("codesearch_yaml_section", default=None)


class YamlSectionSettingsSource(PydanticBaseSettingsSource):
    """The `codesearch:` section of settings.yaml, ranked below env and .env."""

    def __init__(self, settings_cls: Type[BaseSettings], data: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(settings_cls)
        self._data = data if data is not None else (_yaml_section.get() or {})

    def get_field_value(self, field: FieldInfo, field_name: str) -> Tuple[Any, str, bool]:
        return self._data.get(field_name), field_name, False

    def __call__(self) -> Dict[str, Any]:
        return {k: v for k, v in self._data.items() if k in self.settings_cls.model_fields and v is not None}


class Settings(BaseSettings):
    """Main settings class with YAML and environment variable support.

    Precedence, highest first: init kwargs, environment, .env, settings.yaml.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    server: ServerConfig = Field(default_factory=ServerConfig)
    agent: AgentConfig = Field(default_factory=AgentConfig)
    sources: SourcesConfig = Field(default_factory=SourcesConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            YamlSectionSettingsSource(settings_cls),
            file_secret_settings,
        )


def _config_path() -> Path:
    override = os.environ.get("CODESEARCH_CONFIG")
    return Path(override) if override else CONFIG_PATH


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    with open(path, "r", encoding="utf-8") as f:
        full_config = yaml.safe_load(f) or {}
    if not isinstance(full_config, dict):
        raise ConfigurationError(f"Invalid settings file {path}: expected a mapping")
    section = full_config.get("codesearch", {})
    return section if isinstance(section, dict) else {}


def load_settings(path: Optional[Path] = None) -> Settings:
    """Load settings from the YAML file with the environment and .env on top."""
    config_path = path or _config_path()
    yaml_config = _load_yaml(config_path)
    if yaml_config:
        logger.debug("Loaded settings from %s", config_path)

    token = _yaml_section.set(yaml_config)
    try:
        return Settings()
    except ValueError as e:
        raise ConfigurationError(str(e)) from e
    finally:
        _yaml_section.reset(token)
