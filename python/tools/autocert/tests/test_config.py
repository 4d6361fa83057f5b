#!/usr/bin/env python3
"""
Tests for AutoCert configuration loading and saving.
"""

import asyncio
from pathlib import Path

import pytest
from pydantic import ValidationError

from autocert.cert_types import WebServerType
from autocert.config import (
    LETSENCRYPT_PRODUCTION,
    AcmeSettings,
    AppConfig,
    ConfigManager,
    default_directories,
)
from autocert.core import ConfigFileError, OperatingSystem


@pytest.fixture
def no_search_paths(monkeypatch):
    """Keep host config files out of the tests."""
    monkeypatch.setattr(ConfigManager, "search_paths", staticmethod(lambda: []))


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    path = tmp_path / "config.toml"
    path.write_text(
        'log_level = "debug"\n'
        f'cert_dir = "{(tmp_path / "certs").as_posix()}"\n'
        "\n[acme]\n"
        'email = "admin@example.com"\n'
        "key_size = 4096\n"
        "\n[webserver]\n"
        'type = "Apache"\n'
        "reload_after_configure = false\n"
        "\n[renewal]\n"
        "threshold_days = 14\n"
    )
    return path


def test_defaults(no_search_paths):
    config = ConfigManager(environ={}).load_config()

    assert config.log_level == "INFO"
    assert config.acme.server == LETSENCRYPT_PRODUCTION
    assert config.acme.key_type == "rsa"
    assert config.acme.key_size == 2048
    assert config.renewal.threshold_days == 30
    assert config.renewal.task_name == "autocert-renew"
    assert config.webserver.reload_after_configure is True


def test_default_directories():
    linux = default_directories(OperatingSystem.LINUX)
    assert linux["config_dir"] == Path("/etc/autocert")
    assert linux["cert_dir"] == Path("/etc/autocert/certs")
    assert linux["log_dir"] == Path("/var/log")

    windows = default_directories(OperatingSystem.WINDOWS)
    assert windows["cert_dir"] == windows["config_dir"] / "certs"


def test_load_from_file(config_file, tmp_path):
    manager = ConfigManager(config_file, environ={})
    config = manager.load_config()

    assert manager.config_path == config_file
    assert config.log_level == "DEBUG"
    assert config.cert_dir == tmp_path / "certs"
    assert config.acme.email == "admin@example.com"
    assert config.acme.key_size == 4096
    assert config.webserver.type is WebServerType.APACHE
    assert config.webserver.reload_after_configure is False
    assert config.renewal.threshold_days == 14


def test_environment_overrides_file(config_file, tmp_path):
    environ = {
        "AUTOCERT_ACME_EMAIL": "ops@example.org",
        "AUTOCERT_WEBSERVER": "nginx",
        "AUTOCERT_CERT_DIR": str(tmp_path / "env-certs"),
        "UNRELATED": "ignored",
    }
    config = ConfigManager(config_file, environ=environ).load_config()

    assert config.acme.email == "ops@example.org"
    assert config.acme.key_size == 4096
    assert config.webserver.type is WebServerType.NGINX
    assert config.cert_dir == tmp_path / "env-certs"


def test_overrides_beat_environment(config_file):
    environ = {"AUTOCERT_ACME_EMAIL": "ops@example.org", "AUTOCERT_LOG_LEVEL": "warning"}
    overrides = {"log_level": None, "acme": {"email": "cli@example.net", "key_size": None}}
    config = ConfigManager(config_file, environ=environ).load_config(overrides)

    assert config.acme.email == "cli@example.net"
    assert config.acme.key_size == 4096
    assert config.log_level == "WARNING"


def test_search_paths_order(monkeypatch, tmp_path):
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("USERPROFILE", str(home))
    monkeypatch.chdir(tmp_path)

    paths = ConfigManager.search_paths()
    assert paths[0] == home / ".autocert.toml"
    assert paths[1] == tmp_path / "autocert.toml"

    (tmp_path / "autocert.toml").write_text('log_level = "ERROR"\n')
    manager = ConfigManager(environ={})
    assert manager.resolve_path() == tmp_path / "autocert.toml"
    assert manager.load_config().log_level == "ERROR"


def test_missing_explicit_path(tmp_path):
    with pytest.raises(ConfigFileError, match="not found"):
        ConfigManager(tmp_path / "missing.toml", environ={}).load_config()


def test_malformed_toml(tmp_path):
    path = tmp_path / "config.toml"
    path.write_text("this is = = not toml")
    with pytest.raises(ConfigFileError) as excinfo:
        ConfigManager(path, environ={}).load_config()
    assert excinfo.value.error_code == "CONFIG_LOAD_FAILED"


@pytest.mark.parametrize("content", [
    'log_level = "LOUD"\n',
    "[acme]\nkey_size = 512\n",
    '[acme]\nemail = "not-an-email"\n',
    '[webserver]\ntype = "caddy"\n',
    "unknown_key = 1\n",
])
def test_invalid_values(tmp_path, content):
    path = tmp_path / "config.toml"
    path.write_text(content)
    with pytest.raises(ConfigFileError) as excinfo:
        ConfigManager(path, environ={}).load_config()
    assert excinfo.value.error_code == "CONFIG_INVALID"


def test_validate_assignment():
    settings = AcmeSettings()
    with pytest.raises(ValidationError):
        settings.key_size = 100


def test_save_and_reload(tmp_path):
    config = AppConfig(
        config_dir=tmp_path / "config",
        cert_dir=tmp_path / "certs",
        log_dir=tmp_path / "logs",
        acme=AcmeSettings(email="admin@example.com", key_size=3072),
    )
    config.webserver.type = WebServerType.NGINX
    config.renewal.schedule = "15 4 * * *"

    manager = ConfigManager(environ={})
    path = manager.save_config(config)
    assert path == tmp_path / "config" / "config.toml"

    reloaded = ConfigManager(path, environ={}).load_config()
    assert reloaded == config


def test_async_load(config_file):
    config = asyncio.run(ConfigManager(config_file, environ={}).load_config_async())
    assert config.acme.email == "admin@example.com"
