#!/usr/bin/env python3
"""
Configuration management.

Settings are loaded once from a TOML file, validated with Pydantic v2,
overlaid with ``AUTOCERT_*`` environment variables and finally with
command-line flags. The resulting ``AppConfig`` is passed explicitly to
every component that needs it.
"""

from __future__ import annotations

import asyncio
import io
import os
from pathlib import Path
from typing import Any, Dict, List, Literal, Mapping, Optional

import aiofiles
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

try:
    import tomllib  # Python 3.11+
except ImportError:
    import tomli as tomllib

from .cert_types import WebServerType
from .core import ConfigFileError, OperatingSystem

LETSENCRYPT_PRODUCTION = "https://acme-v02.api.letsencrypt.org/directory"
CONFIG_FILE_NAME = "config.toml"
USER_CONFIG_NAME = ".autocert.toml"
ENV_PREFIX = "AUTOCERT_"

_LOG_LEVELS = {"TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"}


def _dict_to_toml(data: Dict[str, Any]) -> str:
    """Simple TOML writer for flat tables of scalars."""
    lines: List[str] = []
    tables: List[str] = []

    for key, value in data.items():
        if isinstance(value, dict):
            tables.append(f"\n[{key}]\n" + _dict_to_toml(value))
        elif value is None:
            continue
        elif isinstance(value, bool):
            lines.append(f"{key} = {str(value).lower()}")
        elif isinstance(value, (int, float)):
            lines.append(f"{key} = {value}")
        else:
            escaped = str(value).replace("\\", "\\\\").replace('"', '\\"')
            lines.append(f'{key} = "{escaped}"')

    return "\n".join(lines) + "".join(tables) + "\n"


def default_directories(operating_system: Optional[OperatingSystem] = None) -> Dict[str, Path]:
    """Platform default locations for configuration, certificates and logs."""
    operating_system = operating_system or OperatingSystem.current()
    match operating_system:
        case OperatingSystem.WINDOWS:
            base = Path(os.environ.get("PROGRAMDATA", r"C:\ProgramData")) / "AutoCert"
            return {
                "config_dir": base,
                "cert_dir": base / "certs",
                "log_dir": base / "logs",
            }
        case _:
            return {
                "config_dir": Path("/etc/autocert"),
                "cert_dir": Path("/etc/autocert/certs"),
                "log_dir": Path("/var/log"),
            }


def _default_web_server() -> WebServerType:
    return WebServerType.IIS if OperatingSystem.current().is_windows else WebServerType.NGINX


class AcmeSettings(BaseModel):
    """Certificate authority account and key settings."""

    model_config = ConfigDict(extra="forbid", validate_assignment=True, str_strip_whitespace=True)

    server: str = Field(default=LETSENCRYPT_PRODUCTION, description="ACME directory URL")
    email: Optional[str] = Field(
        default=None,
        pattern=r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$",
        description="Account email address",
    )
    key_type: Literal["rsa"] = Field(default="rsa", description="Private key algorithm")
    key_size: int = Field(default=2048, ge=1024, le=8192, description="RSA key size in bits")


class WebServerSettings(BaseModel):
    """Web server integration settings."""

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    type: WebServerType = Field(default_factory=_default_web_server)
    config_path: Optional[Path] = Field(default=None, description="Main web server config file")
    web_root: Path = Field(default=Path("/var/www/html"), description="Document root")
    reload_cmd: Optional[str] = Field(default=None, description="Custom reload command")
    reload_after_configure: bool = Field(
        default=True, description="Test and reload the server after writing its config"
    )

    @field_validator("type", mode="before")
    @classmethod
    def parse_type(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip().lower()
        return v


class RenewalSettings(BaseModel):
    """Renewal policy and scheduled task settings."""

    model_config = ConfigDict(extra="forbid", validate_assignment=True, str_strip_whitespace=True)

    threshold_days: int = Field(default=30, ge=0, le=365)
    task_name: str = Field(default="autocert-renew", min_length=1, pattern=r"^[A-Za-z0-9_.-]+$")
    schedule: str = Field(default="0 2 * * *", description="Cron expression for the cron backend")
    timeout_seconds: Optional[float] = Field(default=None, gt=0, description="CA request deadline")


class AppConfig(BaseModel):
    """Complete AutoCert configuration."""

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    log_level: str = Field(default="INFO")
    config_dir: Path = Field(default_factory=lambda: default_directories()["config_dir"])
    cert_dir: Path = Field(default_factory=lambda: default_directories()["cert_dir"])
    log_dir: Path = Field(default_factory=lambda: default_directories()["log_dir"])
    acme: AcmeSettings = Field(default_factory=AcmeSettings)
    webserver: WebServerSettings = Field(default_factory=WebServerSettings)
    renewal: RenewalSettings = Field(default_factory=RenewalSettings)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.strip().upper()
        if level not in _LOG_LEVELS:
            raise ValueError(f"Unknown log level: {v}")
        return level


# Environment variable suffix -> dotted config key
_ENV_KEYS = {
    "LOG_LEVEL": "log_level",
    "CONFIG_DIR": "config_dir",
    "CERT_DIR": "cert_dir",
    "LOG_DIR": "log_dir",
    "ACME_EMAIL": "acme.email",
    "ACME_SERVER": "acme.server",
    "WEBSERVER": "webserver.type",
}


def _set_dotted(data: Dict[str, Any], dotted: str, value: Any) -> None:
    *parents, leaf = dotted.split(".")
    target = data
    for part in parents:
        target = target.setdefault(part, {})
    target[leaf] = value


class ConfigManager:
    """
    Loads and saves the AutoCert configuration file.

    Precedence, lowest first: built-in defaults, the TOML file, environment
    variables, explicit overrides passed to ``load_config``.
    """

    def __init__(
        self,
        config_path: Optional[Path] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.explicit_path = Path(config_path) if config_path else None
        self.environ = os.environ if environ is None else environ
        self.config_path: Optional[Path] = None
        self._config: Optional[AppConfig] = None

    @staticmethod
    def search_paths() -> List[Path]:
        return [
            Path.home() / USER_CONFIG_NAME,
            Path.cwd() / "autocert.toml",
            default_directories()["config_dir"] / CONFIG_FILE_NAME,
        ]

    def resolve_path(self) -> Optional[Path]:
        """Return the config file to read, or None when only defaults apply."""
        if self.explicit_path is not None:
            if not self.explicit_path.exists():
                raise ConfigFileError(
                    f"Configuration file not found: {self.explicit_path}",
                    error_code="CONFIG_NOT_FOUND",
                )
            return self.explicit_path
        for candidate in self.search_paths():
            if candidate.is_file():
                return candidate
        return None

    def _environment_overrides(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {}
        for suffix, dotted in _ENV_KEYS.items():
            value = self.environ.get(ENV_PREFIX + suffix)
            if value:
                _set_dotted(data, dotted, value)
        return data

    @staticmethod
    def _merge(base: Dict[str, Any], overlay: Mapping[str, Any]) -> Dict[str, Any]:
        merged = dict(base)
        for key, value in overlay.items():
            if value is None:
                continue
            if isinstance(value, Mapping) and isinstance(merged.get(key), dict):
                merged[key] = ConfigManager._merge(merged[key], value)
            else:
                merged[key] = value
        return merged

    async def load_config_async(self, overrides: Optional[Mapping[str, Any]] = None) -> AppConfig:
        """
        Load configuration asynchronously and validate it.

        Args:
            overrides: Nested mapping of values that take precedence over the
                file and environment; None values are ignored

        Returns:
            Validated configuration

        Raises:
            ConfigFileError: If the file cannot be read, parsed or validated
        """
        path = self.resolve_path()
        data: Dict[str, Any] = {}

        if path is not None:
            logger.debug(f"Loading configuration from {path}")
            try:
                async with aiofiles.open(path, "rb") as f:
                    content = await f.read()
                data = tomllib.load(io.BytesIO(content))
            except (OSError, tomllib.TOMLDecodeError) as e:
                raise ConfigFileError(
                    f"Failed to load configuration from {path}: {e}",
                    error_code="CONFIG_LOAD_FAILED",
                ) from e
        else:
            logger.debug("No configuration file found, using defaults")

        data = self._merge(data, self._environment_overrides())
        if overrides:
            data = self._merge(data, overrides)

        try:
            self._config = AppConfig.model_validate(data)
        except ValidationError as e:
            raise ConfigFileError(
                f"Invalid configuration: {e}",
                error_code="CONFIG_INVALID",
            ) from e

        self.config_path = path
        return self._config

    def load_config(self, overrides: Optional[Mapping[str, Any]] = None) -> AppConfig:
        """Synchronous wrapper for load_config_async."""
        return asyncio.run(self.load_config_async(overrides))

    async def save_config_async(self, config: AppConfig, path: Optional[Path] = None) -> Path:
        """
        Write a configuration as TOML.

        Args:
            config: Configuration to save
            path: Target file; defaults to ``<config_dir>/config.toml``

        Returns:
            The path written
        """
        target = path or self.explicit_path or config.config_dir / CONFIG_FILE_NAME
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            content = _dict_to_toml(config.model_dump(mode="json"))
            async with aiofiles.open(target, "w", encoding="utf-8") as f:
                await f.write(content)
        except OSError as e:
            raise ConfigFileError(
                f"Failed to save configuration to {target}: {e}",
                error_code="CONFIG_SAVE_FAILED",
            ) from e

        logger.info(f"Configuration saved to {target}")
        return target

    def save_config(self, config: AppConfig, path: Optional[Path] = None) -> Path:
        """Synchronous wrapper for save_config_async."""
        return asyncio.run(self.save_config_async(config, path))
