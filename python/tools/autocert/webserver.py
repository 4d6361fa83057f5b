#!/usr/bin/env python3
"""
Web server configurators.

Each configurator points one web server at an issued certificate, tests
the resulting configuration and reloads the server. The variant is picked
once by ``create_configurator``.
"""

from __future__ import annotations

import shlex
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from loguru import logger

from .cert_types import WebServerConfig, WebServerType
from .core import OperatingSystem, WebServerError
from .utils import combined_output, run_command, which

SSL_PROTOCOLS = "TLSv1.2 TLSv1.3"
SSL_CIPHERS = (
    "ECDHE-RSA-AES256-GCM-SHA384:ECDHE-RSA-AES128-GCM-SHA256:"
    "ECDHE-RSA-AES256-SHA384:ECDHE-RSA-AES128-SHA256"
)


def site_file_name(domain: str) -> str:
    """File-system safe name for a domain's site config."""
    return domain.replace("*", "wildcard")


def check_ssl_in_config(config_file: Path, domain: str) -> bool:
    """
    Scan a config file for a server block serving ``domain`` over TLS.

    A block starts on a line containing ``server {`` and ends on a bare
    ``}`` line. The domain counts as TLS-enabled when a single block holds
    both an ``ssl_certificate`` directive and a ``server_name`` line that
    mentions the domain. The scan is textual: comments and directives
    spread over several lines are not understood.
    """
    try:
        text = config_file.read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        logger.debug(f"Cannot read {config_file}: {e}")
        return False

    in_server = has_ssl = has_domain = False
    for raw in text.splitlines():
        line = raw.strip()
        if "server {" in line:
            in_server = True
            has_ssl = has_domain = False
        elif line == "}" and in_server:
            if has_ssl and has_domain:
                return True
            in_server = False
        elif in_server:
            if "ssl_certificate" in line:
                has_ssl = True
            if "server_name" in line and domain in line:
                has_domain = True
    return False


class WebServerConfigurator(ABC):
    """Capability interface shared by every web server integration."""

    server_type: WebServerType

    def __init__(self, operating_system: Optional[OperatingSystem] = None) -> None:
        self.os = operating_system or OperatingSystem.current()

    @abstractmethod
    def configure(self, config: WebServerConfig) -> None:
        """Point the server at the certificate for ``config.domain``."""

    @abstractmethod
    def test(self) -> None:
        """Validate the server configuration; raise WebServerError if invalid."""

    @abstractmethod
    def reload(self) -> None:
        """Reload the running server."""

    @abstractmethod
    def get_config_path(self) -> str:
        """Main configuration file, or an empty string when unknown."""

    @abstractmethod
    def is_ssl_enabled(self, domain: str) -> bool:
        """Whether the server already serves ``domain`` over TLS."""

    def _run_first_available(self, commands: Sequence[Sequence[str]], action: str) -> None:
        """Run the first command whose executable exists; fail with its output."""
        for cmd in commands:
            if which(cmd[0]) is None:
                continue
            result = run_command(cmd)
            if result.returncode != 0:
                raise WebServerError(
                    f"{self.server_type.value} {action} failed: {combined_output(result)}",
                    error_code=f"{action.upper()}_FAILED",
                )
            logger.success(f"{self.server_type.value} {action} succeeded")
            return
        tried = ", ".join(cmd[0] for cmd in commands)
        raise WebServerError(
            f"{self.server_type.value} {action} failed: none of {tried} found",
            error_code="COMMAND_NOT_FOUND",
        )


@dataclass(frozen=True, slots=True)
class NginxPaths:
    """Immutable set of locations the Nginx configurator reads and writes."""
    config_candidates: Tuple[Path, ...]
    sites_available: Optional[Path]
    sites_enabled: Optional[Path]
    search_dirs: Tuple[Path, ...]

    @classmethod
    def for_os(cls, operating_system: OperatingSystem) -> NginxPaths:
        match operating_system:
            case OperatingSystem.WINDOWS:
                return cls(
                    config_candidates=(
                        Path(r"C:\nginx\conf\nginx.conf"),
                        Path(r"C:\Program Files\nginx\conf\nginx.conf"),
                    ),
                    sites_available=None,
                    sites_enabled=None,
                    search_dirs=(),
                )
            case _:
                return cls(
                    config_candidates=(
                        Path("/etc/nginx/nginx.conf"),
                        Path("/usr/local/nginx/conf/nginx.conf"),
                        Path("/usr/local/etc/nginx/nginx.conf"),
                    ),
                    sites_available=Path("/etc/nginx/sites-available"),
                    sites_enabled=Path("/etc/nginx/sites-enabled"),
                    search_dirs=(
                        Path("/etc/nginx/sites-enabled"),
                        Path("/etc/nginx/conf.d"),
                    ),
                )


class NginxConfigurator(WebServerConfigurator):
    """Writes a TLS server block per domain and manages the Nginx process."""

    server_type = WebServerType.NGINX

    def __init__(
        self,
        operating_system: Optional[OperatingSystem] = None,
        paths: Optional[NginxPaths] = None,
        binary: str = "nginx",
        reload_cmd: Optional[str] = None,
    ) -> None:
        super().__init__(operating_system)
        self.paths = paths or NginxPaths.for_os(self.os)
        self.binary = binary
        self.reload_cmd = reload_cmd
        self._config_path: Optional[Path] = None

    def find_config_path(self) -> Path:
        """
        Locate nginx.conf by probing the platform's usual locations.

        Raises:
            WebServerError: If none of the candidates exists
        """
        for candidate in self.paths.config_candidates:
            if candidate.is_file():
                logger.debug(f"Found Nginx configuration at {candidate}")
                self._config_path = candidate
                return candidate
        raise WebServerError(
            "Nginx configuration file not found",
            error_code="CONFIG_NOT_FOUND",
            details={"searched": ", ".join(str(p) for p in self.paths.config_candidates)},
        )

    def render_site_config(self, config: WebServerConfig) -> str:
        """Render the HTTP redirect and HTTPS server blocks for one domain."""
        domain = config.domain
        web_root = config.web_root.as_posix()
        return f"""# Managed by AutoCert for {domain}
server {{
    listen 80;
    server_name {domain};
    return 301 https://$server_name$request_uri;
}}

server {{
    listen 443 ssl http2;
    server_name {domain};

    ssl_certificate {config.cert_path.as_posix()};
    ssl_certificate_key {config.key_path.as_posix()};

    ssl_protocols {SSL_PROTOCOLS};
    ssl_prefer_server_ciphers on;
    ssl_ciphers {SSL_CIPHERS};
    ssl_session_cache shared:SSL:10m;
    ssl_session_timeout 10m;

    root {web_root};
    index index.html index.htm index.php;

    location / {{
        try_files $uri $uri/ =404;
    }}

    location ^~ /.well-known/acme-challenge/ {{
        default_type "text/plain";
        root {web_root};
    }}
}}
"""

    def _site_config_path(self, domain: str, conf_path: Path) -> Path:
        name = site_file_name(domain)
        if self.os.is_windows or self.paths.sites_available is None:
            return conf_path.parent / "conf.d" / f"{name}.conf"
        return self.paths.sites_available / name

    def _enable_site(self, site_path: Path) -> None:
        """Link the site into sites-enabled, replacing any previous link."""
        if self.os.is_windows or self.paths.sites_enabled is None:
            return
        self.paths.sites_enabled.mkdir(parents=True, exist_ok=True)
        link = self.paths.sites_enabled / site_path.name
        if link.is_symlink() or link.exists():
            link.unlink()
        link.symlink_to(site_path)
        logger.debug(f"Enabled site {link} -> {site_path}")

    def configure(self, config: WebServerConfig) -> None:
        conf_path = config.config_path or self._config_path or self.find_config_path()
        self._config_path = conf_path
        site_path = self._site_config_path(config.domain, conf_path)

        try:
            site_path.parent.mkdir(parents=True, exist_ok=True)
            site_path.write_text(self.render_site_config(config), encoding="utf-8")
            site_path.chmod(0o644)
            self._enable_site(site_path)
        except OSError as e:
            raise WebServerError(
                f"Failed to write Nginx site config for {config.domain}: {e}",
                error_code="SITE_WRITE_FAILED",
                details={"path": str(site_path)},
            ) from e

        logger.success(f"Nginx site config written for {config.domain}: {site_path}")

    def test(self) -> None:
        result = run_command([self.binary, "-t"])
        if result.returncode != 0:
            raise WebServerError(
                f"Nginx configuration test failed: {combined_output(result)}",
                error_code="TEST_FAILED",
            )
        logger.success("Nginx configuration test passed")

    def _reload_command(self) -> List[str]:
        if self.reload_cmd:
            return shlex.split(self.reload_cmd)
        if not self.os.is_windows and which("systemctl"):
            return ["systemctl", "reload", "nginx"]
        return [self.binary, "-s", "reload"]

    def reload(self) -> None:
        cmd = self._reload_command()
        result = run_command(cmd)
        if result.returncode != 0:
            raise WebServerError(
                f"Nginx reload failed: {combined_output(result)}",
                error_code="RELOAD_FAILED",
                details={"command": " ".join(cmd)},
            )
        logger.success("Nginx reloaded")

    def get_config_path(self) -> str:
        if self._config_path is None:
            try:
                self.find_config_path()
            except WebServerError:
                return ""
        return str(self._config_path)

    def site_config_files(self) -> List[Path]:
        """All site config files the TLS scan looks at."""
        dirs = list(self.paths.search_dirs)
        if self.os.is_windows:
            conf = self.get_config_path()
            if conf:
                dirs.append(Path(conf).parent / "conf.d")
        files: List[Path] = []
        for directory in dirs:
            if directory.is_dir():
                files.extend(sorted(p for p in directory.iterdir() if p.is_file()))
        return files

    def is_ssl_enabled(self, domain: str) -> bool:
        return any(check_ssl_in_config(path, domain) for path in self.site_config_files())


class ApacheConfigurator(WebServerConfigurator):
    """Apache integration. Automatic SSL configuration is not implemented."""

    server_type = WebServerType.APACHE

    CONFIG_CANDIDATES = (
        Path("/etc/apache2/apache2.conf"),
        Path("/etc/httpd/conf/httpd.conf"),
        Path("/usr/local/etc/httpd/httpd.conf"),
        Path(r"C:\Apache24\conf\httpd.conf"),
    )

    def configure(self, config: WebServerConfig) -> None:
        logger.warning(
            f"Apache SSL configuration is not implemented; no changes were made for {config.domain}. "
            f"Point SSLCertificateFile at {config.cert_path} and "
            f"SSLCertificateKeyFile at {config.key_path} manually."
        )

    def test(self) -> None:
        self._run_first_available(
            [["apache2ctl", "configtest"], ["httpd", "-t"]], "configuration test")

    def reload(self) -> None:
        commands: List[List[str]] = []
        if not self.os.is_windows:
            commands.append(["systemctl", "reload", "apache2"])
        commands += [["apache2ctl", "graceful"], ["httpd", "-k", "graceful"]]
        self._run_first_available(commands, "reload")

    def get_config_path(self) -> str:
        for candidate in self.CONFIG_CANDIDATES:
            if candidate.is_file():
                return str(candidate)
        return ""

    def is_ssl_enabled(self, domain: str) -> bool:
        logger.debug("TLS detection is not implemented for Apache")
        return False


class IISConfigurator(WebServerConfigurator):
    """IIS integration. Automatic certificate binding is not implemented."""

    server_type = WebServerType.IIS

    CONFIG_PATH = r"C:\Windows\System32\inetsrv\config\applicationHost.config"

    def configure(self, config: WebServerConfig) -> None:
        logger.warning(
            f"IIS certificate binding is not implemented; no changes were made for {config.domain}. "
            f"Import {config.cert_path} and bind it to the site manually."
        )

    def test(self) -> None:
        logger.info("IIS has no configuration test; skipping")

    def reload(self) -> None:
        self._run_first_available([["iisreset"]], "reload")

    def get_config_path(self) -> str:
        return self.CONFIG_PATH

    def is_ssl_enabled(self, domain: str) -> bool:
        logger.debug("TLS detection is not implemented for IIS")
        return False


def create_configurator(
    server_type: WebServerType,
    operating_system: Optional[OperatingSystem] = None,
    reload_cmd: Optional[str] = None,
) -> WebServerConfigurator:
    """Return the configurator for a web server type."""
    match server_type:
        case WebServerType.NGINX:
            return NginxConfigurator(operating_system, reload_cmd=reload_cmd)
        case WebServerType.APACHE:
            return ApacheConfigurator(operating_system)
        case WebServerType.IIS:
            return IISConfigurator(operating_system)
    raise WebServerError(f"Unsupported web server: {server_type}", error_code="UNSUPPORTED_WEBSERVER")
