"""
AutoCert: automated TLS certificate lifecycle management.

This package issues, renews and deploys certificates for one or more
domains, wires them into the host's web server and registers a periodic
renewal task with the OS scheduler.
"""

# Module metadata
__version__ = "1.0.0"
__author__ = "Max Qian"
__license__ = "GPL-3.0-or-later"

from .authority import CancellationToken, CertificateAuthority, SelfSignedAuthority
from .backup import BackupManager, BackupMetadata
from .cert_io import CertificateStore
from .cert_manager import (
    BaseCertManager, MultiDomainManager, SingleDomainManager,
    create_manager, renew_all
)
from .cert_types import (
    CertificateInfo, CertificatePaths, ChallengeType, InstallStage,
    Task, WebServerConfig, WebServerType
)
from .config import AppConfig, ConfigManager
from .core import (
    AutoCertError, ConfigurationError, MalformedDomain,
    InvalidChallengeConfiguration, WildcardRequiresDNS,
    WildcardChallengeMismatch, InstallStageError, OperationCancelled
)
from .domains import select_challenge, store_dir_name, validate_domain
from .scheduler import TaskScheduler, create_scheduler
from .webserver import WebServerConfigurator, create_configurator


def get_tool_info() -> dict:
    """
    Get metadata and information about the autocert package.

    Returns:
        Dictionary containing package metadata, capabilities, and available functions.
    """
    return {
        "name": "autocert",
        "version": __version__,
        "description": "Automated TLS certificate issuance, renewal and deployment",
        "author": __author__,
        "license": __license__,
        "supported": True,
        "platform": ["windows", "linux", "macos"],
        "functions": [
            "select_challenge",
            "store_dir_name",
            "validate_domain",
            "create_manager",
            "renew_all",
            "create_configurator",
            "create_scheduler",
        ],
        "requirements": [
            "cryptography",
            "loguru",
            "pydantic",
            "typer",
            "rich",
            "aiofiles",
        ],
        "capabilities": [
            "Single-domain, multi-domain (SAN) and wildcard certificates",
            "Webroot, standalone and DNS challenge selection",
            "Renewal within a configurable expiry threshold",
            "Nginx site configuration, test and reload",
            "Daily renewal via Task Scheduler, systemd timers or cron",
            "Backup export and import as tar.gz or zip",
        ],
        "classes": {
            "SingleDomainManager": "Lifecycle manager for one domain",
            "MultiDomainManager": "Lifecycle manager for one SAN certificate",
            "CertificateStore": "On-disk certificate layout",
            "SelfSignedAuthority": "Demo certificate authority signing locally",
            "BackupManager": "Archive export and import",
        }
    }


__all__ = [
    'AppConfig', 'ConfigManager',
    'AutoCertError', 'ConfigurationError', 'MalformedDomain',
    'InvalidChallengeConfiguration', 'WildcardRequiresDNS',
    'WildcardChallengeMismatch', 'InstallStageError', 'OperationCancelled',
    'BackupManager', 'BackupMetadata',
    'BaseCertManager', 'SingleDomainManager', 'MultiDomainManager',
    'create_manager', 'renew_all',
    'CancellationToken', 'CertificateAuthority', 'SelfSignedAuthority',
    'CertificateInfo', 'CertificatePaths', 'CertificateStore',
    'ChallengeType', 'InstallStage', 'Task', 'WebServerConfig', 'WebServerType',
    'select_challenge', 'store_dir_name', 'validate_domain',
    'TaskScheduler', 'create_scheduler',
    'WebServerConfigurator', 'create_configurator',
    'get_tool_info',
]
