#!/usr/bin/env python3
"""
Host detection: operating system, installed web servers and privileges.
"""

from __future__ import annotations

import os
import platform
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from loguru import logger

from .cert_types import WebServerType
from .core import OperatingSystem
from .utils import combined_output, run_command, which

OS_RELEASE_FILES = (Path("/etc/os-release"), Path("/usr/lib/os-release"))
_VERSION_RE = re.compile(r"(\d+(?:\.\d+)+)")


@dataclass
class OSInfo:
    type: OperatingSystem
    distribution: str = ""
    version: str = ""
    architecture: str = ""


@dataclass
class WebServerInfo:
    type: WebServerType
    binary: str
    version: str = ""
    running: bool = False


@dataclass
class SystemInfo:
    os: OSInfo
    web_servers: List[WebServerInfo] = field(default_factory=list)
    has_root: bool = False


def parse_os_release(text: str) -> Dict[str, str]:
    """Parse ``KEY=value`` lines of an os-release file."""
    values: Dict[str, str] = {}
    for line in text.splitlines():
        key, sep, value = line.strip().partition("=")
        if sep and key and not key.startswith("#"):
            values[key] = value.strip().strip('"').strip("'")
    return values


def detect_os(operating_system: Optional[OperatingSystem] = None) -> OSInfo:
    operating_system = operating_system or OperatingSystem.current()
    info = OSInfo(type=operating_system, architecture=platform.machine())

    match operating_system:
        case OperatingSystem.LINUX:
            for candidate in OS_RELEASE_FILES:
                if candidate.is_file():
                    values = parse_os_release(candidate.read_text(encoding="utf-8", errors="replace"))
                    info.distribution = values.get("ID", "")
                    info.version = values.get("VERSION_ID", "")
                    break
            else:
                if Path("/etc/debian_version").exists():
                    info.distribution = "debian"
                elif Path("/etc/redhat-release").exists():
                    info.distribution = "rhel"
        case OperatingSystem.WINDOWS:
            info.distribution = "windows"
            info.version = platform.version()
        case OperatingSystem.MACOS:
            info.distribution = "macos"
            info.version = platform.mac_ver()[0]

    return info


def has_admin_privileges(operating_system: Optional[OperatingSystem] = None) -> bool:
    """Whether the process runs as root, or as an administrator on Windows."""
    operating_system = operating_system or OperatingSystem.current()
    if operating_system.is_windows:
        return run_command(["net", "session"]).returncode == 0
    geteuid = getattr(os, "geteuid", None)
    return geteuid is not None and geteuid() == 0


def _service_running(service: str, operating_system: OperatingSystem) -> bool:
    if operating_system.is_windows:
        result = run_command(["sc", "query", service])
        return result.returncode == 0 and "RUNNING" in result.stdout
    if which("systemctl"):
        return run_command(["systemctl", "is-active", "--quiet", service]).returncode == 0
    return run_command(["pgrep", "-x", service]).returncode == 0


def _version_of(cmd: List[str]) -> str:
    # nginx -v prints to stderr
    match = _VERSION_RE.search(combined_output(run_command(cmd)))
    return match.group(1) if match else ""


def detect_web_servers(operating_system: Optional[OperatingSystem] = None) -> List[WebServerInfo]:
    """List web servers found on PATH (and IIS on Windows)."""
    operating_system = operating_system or OperatingSystem.current()
    found: List[WebServerInfo] = []

    nginx = which("nginx")
    if nginx:
        found.append(WebServerInfo(
            type=WebServerType.NGINX,
            binary=nginx,
            version=_version_of([nginx, "-v"]),
            running=_service_running("nginx", operating_system),
        ))

    for name in ("apache2", "httpd"):
        binary = which(name)
        if binary:
            found.append(WebServerInfo(
                type=WebServerType.APACHE,
                binary=binary,
                version=_version_of([binary, "-v"]),
                running=_service_running(name, operating_system),
            ))
            break

    if operating_system.is_windows and Path(r"C:\Windows\System32\inetsrv\w3wp.exe").exists():
        found.append(WebServerInfo(
            type=WebServerType.IIS,
            binary=r"C:\Windows\System32\inetsrv\w3wp.exe",
            running=_service_running("W3SVC", operating_system),
        ))

    logger.debug(f"Detected web servers: {[s.type.value for s in found]}")
    return found


def detect_system(operating_system: Optional[OperatingSystem] = None) -> SystemInfo:
    operating_system = operating_system or OperatingSystem.current()
    return SystemInfo(
        os=detect_os(operating_system),
        web_servers=detect_web_servers(operating_system),
        has_root=has_admin_privileges(operating_system),
    )
