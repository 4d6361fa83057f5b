#!/usr/bin/env python3
"""
Shared fixtures for AutoCert tests.
"""

from pathlib import Path
from typing import List

import pytest
from loguru import logger

from autocert.authority import SelfSignedAuthority
from autocert.cert_io import CertificateStore
from autocert.cert_types import WebServerConfig, WebServerType
from autocert.config import AcmeSettings, AppConfig, WebServerSettings
from autocert.core import WebServerError
from autocert.webserver import WebServerConfigurator

TEST_KEY_SIZE = 1024  # smallest size current cryptography accepts


class FakeWebServer(WebServerConfigurator):
    """Configurator that records calls instead of touching a real server."""

    server_type = WebServerType.NGINX

    def __init__(self, fail_on_configure: bool = False) -> None:
        super().__init__()
        self.fail_on_configure = fail_on_configure
        self.configured: List[WebServerConfig] = []
        self.tested = 0
        self.reloaded = 0

    def configure(self, config: WebServerConfig) -> None:
        if self.fail_on_configure:
            raise WebServerError("nginx: [emerg] unexpected end of file")
        self.configured.append(config)

    def test(self) -> None:
        self.tested += 1

    def reload(self) -> None:
        self.reloaded += 1

    def get_config_path(self) -> str:
        return ""

    def is_ssl_enabled(self, domain: str) -> bool:
        return any(c.domain == domain for c in self.configured)


class RecordingAuthority:
    """Demo authority that remembers every request it fulfils."""

    def __init__(self) -> None:
        self.inner = SelfSignedAuthority(issuer_key_size=TEST_KEY_SIZE)
        self.calls = []

    def obtain(self, csr_pem, challenge, domains, account_email, token):
        self.calls.append((challenge, list(domains), account_email))
        return self.inner.obtain(csr_pem, challenge, domains, account_email, token)


@pytest.fixture
def app_config(tmp_path: Path) -> AppConfig:
    """Configuration rooted in a temporary directory."""
    return AppConfig(
        config_dir=tmp_path / "config",
        cert_dir=tmp_path / "certs",
        log_dir=tmp_path / "logs",
        acme=AcmeSettings(email="admin@example.com", key_size=TEST_KEY_SIZE),
        webserver=WebServerSettings(
            type=WebServerType.NGINX,
            web_root=tmp_path / "www",
            reload_after_configure=False,
        ),
    )


@pytest.fixture
def store(app_config: AppConfig) -> CertificateStore:
    return CertificateStore(app_config.cert_dir)


@pytest.fixture
def fake_web_server() -> FakeWebServer:
    return FakeWebServer()


@pytest.fixture
def authority() -> RecordingAuthority:
    return RecordingAuthority()


@pytest.fixture
def log_messages():
    """Collect log messages emitted during a test."""
    messages: List[str] = []
    handler_id = logger.add(lambda m: messages.append(m.record["message"]), level="DEBUG")
    yield messages
    logger.remove(handler_id)
