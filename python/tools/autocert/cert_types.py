#!/usr/bin/env python3
"""
Certificate types and data structures.

This module contains the enums and dataclasses shared by the managers,
the store, the web server configurators and the scheduler.
"""

import datetime
from dataclasses import dataclass
from enum import Enum, auto
from pathlib import Path
from typing import Optional

from .core import ConfigurationError, UnsupportedWebServer


class ChallengeType(Enum):
    """Strategies for proving domain control to the certificate authority."""
    WEBROOT = "webroot"
    STANDALONE = "standalone"
    DNS = "dns"

    @classmethod
    def from_string(cls, value: str) -> 'ChallengeType':
        """Convert string value to ChallengeType."""
        try:
            return cls(value.strip().lower())
        except ValueError:
            raise ConfigurationError(
                f"Unknown challenge type: {value!r}",
                error_code="UNKNOWN_CHALLENGE",
            ) from None

    @property
    def acme_name(self) -> str:
        """The ACME challenge identifier used for this strategy."""
        return "dns-01" if self is ChallengeType.DNS else "http-01"


class WebServerType(Enum):
    """Web servers that can be pointed at an issued certificate."""
    NGINX = "nginx"
    APACHE = "apache"
    IIS = "iis"

    @classmethod
    def from_string(cls, value: str) -> 'WebServerType':
        """Convert string value to WebServerType."""
        try:
            return cls(value.strip().lower())
        except ValueError:
            raise UnsupportedWebServer(
                f"Unsupported web server: {value!r}",
                error_code="UNSUPPORTED_WEBSERVER",
            ) from None


class InstallStage(Enum):
    """Stages an install walks through, in order."""
    IDLE = auto()
    DIRECTORY_READY = auto()
    KEY_GENERATED = auto()
    REQUEST_CREATED = auto()
    CERTIFICATE_OBTAINED = auto()
    PERSISTED = auto()
    WEB_SERVER_CONFIGURED = auto()
    DONE = auto()
    FAILED = auto()

    @property
    def failure_message(self) -> str:
        return _STAGE_FAILURES.get(self, f"{self.name.replace('_', ' ').capitalize()} failed")


_STAGE_FAILURES = {
    InstallStage.DIRECTORY_READY: "Certificate directory creation failed",
    InstallStage.KEY_GENERATED: "Private key generation failed",
    InstallStage.REQUEST_CREATED: "Certificate request creation failed",
    InstallStage.CERTIFICATE_OBTAINED: "Certificate acquisition failed",
    InstallStage.PERSISTED: "Certificate persistence failed",
    InstallStage.WEB_SERVER_CONFIGURED: "Web server configuration failed",
}


@dataclass(frozen=True, slots=True)
class CertificatePaths:
    """Immutable set of file paths for one stored certificate record."""
    directory: Path
    key_path: Path
    cert_path: Path
    chain_path: Path
    domains_path: Path

    @classmethod
    def for_directory(cls, directory: Path) -> 'CertificatePaths':
        return cls(
            directory=directory,
            key_path=directory / "key.pem",
            cert_path=directory / "cert.pem",
            chain_path=directory / "chain.pem",
            domains_path=directory / "domains.txt",
        )


@dataclass
class CertificateInfo:
    """Read-only view of a stored certificate, computed on demand."""
    domain: str
    cert_path: Path
    key_path: Path
    chain_path: Path
    expiry_date: datetime.datetime
    is_valid: bool

    def days_remaining(self, now: Optional[datetime.datetime] = None) -> int:
        now = now or datetime.datetime.now(datetime.timezone.utc)
        return (self.expiry_date - now).days


@dataclass
class WebServerConfig:
    """Parameters handed to a web server configurator for one domain."""
    server_type: WebServerType
    domain: str
    cert_path: Path
    key_path: Path
    web_root: Path
    config_path: Optional[Path] = None


@dataclass
class Task:
    """A periodic job as reported by the host scheduler."""
    name: str
    command: str
    schedule: str
    status: str = ""
    last_run: str = ""
    next_run: str = ""
