#!/usr/bin/env python3
"""
Core definitions for AutoCert: host operating system detection and the
error taxonomy shared by every component.
"""

from __future__ import annotations

import platform
from enum import Enum, auto
from typing import Any


class OperatingSystem(Enum):
    """Enum representing supported operating systems."""
    LINUX = auto()
    WINDOWS = auto()
    MACOS = auto()
    UNKNOWN = auto()

    @classmethod
    def from_platform(cls, platform_name: str) -> OperatingSystem:
        """Create OperatingSystem from platform string."""
        mapping = {
            "linux": cls.LINUX,
            "windows": cls.WINDOWS,
            "darwin": cls.MACOS,
        }
        return mapping.get(platform_name.lower(), cls.UNKNOWN)

    @classmethod
    def current(cls) -> OperatingSystem:
        """Return the operating system of the running host."""
        return cls.from_platform(platform.system())

    @property
    def is_windows(self) -> bool:
        return self is OperatingSystem.WINDOWS


class AutoCertError(Exception):
    """Base exception class for all AutoCert errors."""

    def __init__(self, message: str, error_code: str | None = None, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}

    def __str__(self) -> str:
        base_msg = self.message
        if self.details:
            details_str = ", ".join(
                f"{k}: {v}" for k, v in self.details.items())
            base_msg += f" ({details_str})"
        return base_msg


# Configuration errors are raised before any file or network I/O happens.
class ConfigurationError(AutoCertError):
    """Exception raised for invalid user input or configuration."""


class MalformedDomain(ConfigurationError):
    """A domain string is empty, contains whitespace or misplaced wildcards."""


class InvalidChallengeConfiguration(ConfigurationError):
    """More than one challenge mode was requested."""


class WildcardRequiresDNS(ConfigurationError):
    """A wildcard domain was combined with a non-DNS challenge."""


class WildcardChallengeMismatch(WildcardRequiresDNS):
    """A multi-domain set holds a wildcard but the manager was given a non-DNS challenge."""


class UnsupportedWebServer(ConfigurationError):
    """The requested web server type is unknown or ambiguous."""


class ConfigFileError(ConfigurationError):
    """The configuration file cannot be read, parsed or validated."""


class CertificateError(AutoCertError):
    """Base exception for certificate operations."""


class KeyGenerationError(CertificateError):
    """Raised when key generation fails."""


class CertificateNotFound(CertificateError):
    """Raised when the stored leaf certificate does not exist."""


class CertificateUnreadable(CertificateError):
    """Raised when the stored leaf cannot be read or holds no PEM block."""


class CertificateParseError(CertificateError):
    """Raised when the PEM payload is not a valid X.509 certificate."""


class StoreError(AutoCertError):
    """Exception raised for certificate store I/O failures."""

    def __init__(self, message: str, path: Any = None, **kwargs: Any) -> None:
        details = kwargs.pop("details", None) or {}
        if path is not None:
            details.setdefault("path", str(path))
        super().__init__(message, details=details, **kwargs)
        self.path = path


class AuthorityError(AutoCertError):
    """Exception raised when the certificate authority cannot fulfil a request."""


class OperationCancelled(AuthorityError):
    """The caller cancelled the operation or its deadline expired."""


class WebServerError(AutoCertError):
    """Exception raised for failed web server configuration, test or reload."""


class SchedulerError(AutoCertError):
    """Exception raised for failed scheduler operations."""


class BackupError(AutoCertError):
    """Exception raised for failed export or import."""


class InstallStageError(AutoCertError):
    """An install stage failed; the message names the stage."""

    def __init__(self, stage: Any, cause: BaseException) -> None:
        super().__init__(
            f"{stage.failure_message}: {cause}",
            error_code=f"STAGE_{stage.name}",
        )
        self.stage = stage
        self.cause = cause


class RenewalError(AutoCertError):
    """One or more stored certificates failed to renew."""

    def __init__(self, failures: dict[str, BaseException]) -> None:
        summary = "; ".join(f"{name}: {err}" for name, err in failures.items())
        super().__init__(
            f"{len(failures)} certificate(s) failed to renew: {summary}",
            error_code="RENEWAL_FAILED",
        )
        self.failures = failures
