#!/usr/bin/env python3
"""
AutoCert command-line interface using Typer.
"""

import shutil
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import List, NoReturn, Optional

import typer
from loguru import logger
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from . import __version__
from .authority import CancellationToken
from .backup import FORMATS, BackupManager
from .cert_io import CertificateStore
from .cert_manager import BaseCertManager, create_manager, renew_all
from .cert_types import CertificateInfo, ChallengeType, WebServerType
from .config import AppConfig, ConfigManager
from .core import AutoCertError, ConfigurationError, UnsupportedWebServer
from .domains import has_wildcard, parse_domain_list, select_challenge, validate_domain
from .logging_config import setup_logging
from .scheduler import create_scheduler
from .system import detect_system, has_admin_privileges
from .webserver import create_configurator

app = typer.Typer(
    name="autocert",
    help="Automated TLS certificate issuance, renewal and deployment",
    add_completion=False,
)
schedule_app = typer.Typer(help="Manage the scheduled renewal task", add_completion=False)
app.add_typer(schedule_app, name="schedule")
console = Console()


@dataclass
class CliState:
    config: AppConfig
    config_path: Optional[Path] = None


def _fail(error: Exception) -> NoReturn:
    console.print(f"[red]✘ Error:[/red] {escape(str(error))}")
    raise typer.Exit(code=1)


def _state(ctx: typer.Context) -> CliState:
    return ctx.obj


@app.callback()
def main(
    ctx: typer.Context,
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to config file."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
):
    """Issue, renew and deploy TLS certificates."""
    try:
        manager = ConfigManager(config)
        app_config = manager.load_config()
    except ConfigurationError as e:
        _fail(e)
    setup_logging("DEBUG" if verbose else app_config.log_level, app_config.log_dir)
    ctx.obj = CliState(config=app_config, config_path=manager.config_path)


def _resolve_domains(domain: Optional[str], domains: Optional[str]) -> List[str]:
    if domain and domains:
        raise ConfigurationError("Use either --domain or --domains, not both")
    if domains:
        return parse_domain_list(domains)
    if domain:
        return [validate_domain(domain.strip())]
    raise ConfigurationError("A domain is required (--domain or --domains)")


def _resolve_web_server(nginx: bool, apache: bool, iis: bool, default: WebServerType) -> WebServerType:
    selected = [t for t, flag in ((WebServerType.NGINX, nginx),
                                  (WebServerType.APACHE, apache),
                                  (WebServerType.IIS, iis)) if flag]
    if len(selected) > 1:
        raise UnsupportedWebServer(
            "Only one web server can be selected (--nginx, --apache or --iis)",
            error_code="MULTIPLE_WEBSERVERS",
        )
    return selected[0] if selected else default


def _apply_overrides(
    config: AppConfig,
    server_type: Optional[WebServerType] = None,
    key_size: Optional[int] = None,
    reload: Optional[bool] = None,
) -> AppConfig:
    webserver_update = {}
    if server_type is not None:
        webserver_update["type"] = server_type
    if reload is not None:
        webserver_update["reload_after_configure"] = reload
    update = {"webserver": config.webserver.model_copy(update=webserver_update)}
    if key_size is not None:
        update["acme"] = config.acme.model_copy(update={"key_size": key_size})
    return config.model_copy(update=update)


def _build_manager(
    config: AppConfig,
    domains: List[str],
    email: str,
    challenge: ChallengeType,
    webroot: Optional[Path],
) -> BaseCertManager:
    web_server = create_configurator(config.webserver.type, reload_cmd=config.webserver.reload_cmd)
    return create_manager(
        domains,
        email,
        config,
        challenge=challenge,
        webroot_path=webroot,
        web_server=web_server,
    )


def _renewal_challenge(
    domains: List[str], standalone: bool, webroot: Optional[Path], dns: bool
) -> ChallengeType:
    if not (standalone or webroot or dns) and has_wildcard(domains):
        return ChallengeType.DNS
    return select_challenge(domains, standalone=standalone, webroot=webroot, dns=dns)


def _effective_timeout(timeout: Optional[float], config: AppConfig) -> Optional[float]:
    """``--timeout`` when given, ``renewal.timeout_seconds`` otherwise."""
    if timeout is None:
        return config.renewal.timeout_seconds
    if timeout <= 0:
        raise ConfigurationError(f"--timeout must be greater than zero, got {timeout:g}")
    return timeout


def _cancellation_token(timeout: Optional[float], config: AppConfig) -> CancellationToken:
    return CancellationToken(_effective_timeout(timeout, config))


def _print_info(info: CertificateInfo) -> None:
    table = Table(title=f"Certificate: {info.domain}", show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Certificate", str(info.cert_path))
    table.add_row("Private key", str(info.key_path))
    table.add_row("Chain", str(info.chain_path) if info.chain_path.exists() else "-")
    table.add_row("Expires", info.expiry_date.strftime("%Y-%m-%d %H:%M:%S UTC"))
    table.add_row("Days remaining", str(info.days_remaining()))
    table.add_row("Valid", "[green]yes[/green]" if info.is_valid else "[red]no[/red]")
    console.print(table)


@app.command()
def install(
    ctx: typer.Context,
    domain: Optional[str] = typer.Option(None, "--domain", "-d", help="Domain to issue a certificate for."),
    domains: Optional[str] = typer.Option(None, "--domains", help="Comma-separated domains for one SAN certificate."),
    email: Optional[str] = typer.Option(None, "--email", "-e", help="Account email address."),
    webroot: Optional[Path] = typer.Option(None, "--webroot", "-w", help="Use the webroot challenge with this document root."),
    standalone: bool = typer.Option(False, "--standalone", help="Use the standalone challenge."),
    dns: bool = typer.Option(False, "--dns", help="Use the DNS challenge (required for wildcards)."),
    nginx: bool = typer.Option(False, "--nginx", help="Configure Nginx."),
    apache: bool = typer.Option(False, "--apache", help="Configure Apache."),
    iis: bool = typer.Option(False, "--iis", help="Configure IIS."),
    key_size: Optional[int] = typer.Option(None, "--key-size", help="RSA key size in bits."),
    timeout: Optional[float] = typer.Option(None, "--timeout", help="Seconds to wait for the certificate authority."),
    no_reload: bool = typer.Option(False, "--no-reload", help="Do not test and reload the web server."),
):
    """Issue a certificate and configure the web server."""
    state = _state(ctx)
    try:
        domain_list = _resolve_domains(domain, domains)
        challenge = select_challenge(domain_list, standalone=standalone, webroot=webroot, dns=dns)
        server_type = _resolve_web_server(nginx, apache, iis, state.config.webserver.type)
        config = _apply_overrides(
            state.config, server_type, key_size, False if no_reload else None)
        account_email = email or config.acme.email
        if not account_email:
            raise ConfigurationError("An account email is required (--email or acme.email)")
        token = _cancellation_token(timeout, config)

        if not has_admin_privileges():
            logger.warning("Not running as root/administrator; writing certificates or reloading the web server may fail")

        manager = _build_manager(config, domain_list, account_email, challenge, webroot)
        console.print(
            f"Issuing certificate for [bold cyan]{escape(', '.join(domain_list))}[/bold cyan] "
            f"({challenge.value}, {server_type.value})..."
        )
        paths = manager.install(token)
        info = manager.get_cert_info()
    except AutoCertError as e:
        _fail(e)

    console.print(f"[green]✔[/green] Certificate installed: {paths.cert_path}")
    console.print(f"[green]✔[/green] Private key: {paths.key_path}")
    console.print(f"[green]✔[/green] Expires: {info.expiry_date:%Y-%m-%d}")


@app.command()
def renew(
    ctx: typer.Context,
    domain: Optional[str] = typer.Option(None, "--domain", "-d", help="Renew the certificate of this domain."),
    domains: Optional[str] = typer.Option(None, "--domains", help="Renew the SAN certificate of these domains."),
    all_: bool = typer.Option(False, "--all", help="Renew every stored certificate."),
    force: bool = typer.Option(False, "--force", help="Renew even if not close to expiry."),
    email: Optional[str] = typer.Option(None, "--email", "-e", help="Account email address."),
    webroot: Optional[Path] = typer.Option(None, "--webroot", "-w", help="Use the webroot challenge."),
    standalone: bool = typer.Option(False, "--standalone", help="Use the standalone challenge."),
    dns: bool = typer.Option(False, "--dns", help="Use the DNS challenge."),
    timeout: Optional[float] = typer.Option(None, "--timeout", help="Seconds to wait for the certificate authority."),
):
    """Renew certificates that are close to expiry."""
    state = _state(ctx)
    config = state.config
    account_email = email or config.acme.email or ""

    def factory(domain_list: List[str]) -> BaseCertManager:
        challenge = _renewal_challenge(domain_list, standalone, webroot, dns)
        return _build_manager(config, domain_list, account_email, challenge, webroot)

    try:
        if all_:
            if domain or domains:
                raise ConfigurationError("--all cannot be combined with --domain or --domains")
            results = renew_all(
                CertificateStore(config.cert_dir), factory, force=force,
                timeout=_effective_timeout(timeout, config))
            if not results:
                console.print("[yellow]No certificates found[/yellow]")
            for name, renewed in results.items():
                status = "renewed" if renewed else "not due"
                console.print(f"[green]✔[/green] {escape(name)}: {status}")
            return

        domain_list = _resolve_domains(domain, domains)
        manager = factory(domain_list)
        renewed = manager.renew(_cancellation_token(timeout, config), force=force)
    except AutoCertError as e:
        _fail(e)

    if renewed:
        console.print(f"[green]✔[/green] Certificate renewed for {escape(', '.join(domain_list))}")
    else:
        console.print(f"[green]✔[/green] Certificate for {escape(domain_list[0])} is not due for renewal")


@app.command()
def info(
    ctx: typer.Context,
    domain: Optional[str] = typer.Option(None, "--domain", "-d", help="Domain of the certificate."),
    domains: Optional[str] = typer.Option(None, "--domains", help="Domains of a SAN certificate."),
):
    """Show details of a stored certificate."""
    state = _state(ctx)
    try:
        domain_list = _resolve_domains(domain, domains)
        cert_info = CertificateStore(state.config.cert_dir).load_certificate_info(domain_list)
    except AutoCertError as e:
        _fail(e)
    _print_info(cert_info)


@app.command("list")
def list_certificates(ctx: typer.Context):
    """List every stored certificate."""
    store = CertificateStore(_state(ctx).config.cert_dir)
    records = store.list_records()
    if not records:
        console.print("[yellow]No certificates found[/yellow]")
        return

    table = Table(title="Certificates")
    table.add_column("Domains", style="cyan")
    table.add_column("Expires")
    table.add_column("Days")
    table.add_column("Status")
    for domain_list in records:
        try:
            cert_info = store.load_certificate_info(domain_list)
        except AutoCertError as e:
            table.add_row(", ".join(domain_list), "-", "-", f"[red]{escape(str(e))}[/red]")
            continue
        status = "[green]valid[/green]" if cert_info.is_valid else "[red]expired[/red]"
        table.add_row(
            ", ".join(domain_list),
            f"{cert_info.expiry_date:%Y-%m-%d}",
            str(cert_info.days_remaining()),
            status,
        )
    console.print(table)


def _schedule_installed(config: AppConfig) -> bool:
    try:
        return create_scheduler().is_installed(config.renewal.task_name)
    except AutoCertError as e:
        logger.warning(f"Cannot query the scheduler: {e}")
        return False


@app.command("export")
def export_backup(
    ctx: typer.Context,
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Archive to write."),
    fmt: str = typer.Option("tar.gz", "--format", "-f", help="Archive format: tar.gz or zip."),
    domain: Optional[str] = typer.Option(None, "--domain", "-d", help="Only export this domain."),
):
    """Export certificates and configuration to an archive."""
    config = _state(ctx).config
    try:
        if fmt not in FORMATS:
            raise ConfigurationError(f"Unsupported format {fmt!r}; choose one of {', '.join(FORMATS)}")
        manager = BackupManager(config.cert_dir, config.config_dir)
        archive = manager.export(output, fmt, domain, has_schedule=_schedule_installed(config))
    except AutoCertError as e:
        _fail(e)
    console.print(f"[green]✔[/green] Backup written: {archive}")


@app.command("import")
def import_backup(
    ctx: typer.Context,
    archive: Path = typer.Argument(..., help="Archive created by 'autocert export'."),
    restore_schedule: bool = typer.Option(
        True, "--restore-schedule/--no-restore-schedule", help="Reinstall the renewal task if it was exported."),
):
    """Import certificates and configuration from an archive."""
    state = _state(ctx)
    config = state.config
    try:
        metadata = BackupManager(config.cert_dir, config.config_dir).import_archive(archive)
        console.print(f"[green]✔[/green] Backup restored from {archive}")
        if metadata.domains:
            console.print(f"  Domains: {escape(', '.join(metadata.domains))}")
        if restore_schedule and metadata.has_schedule:
            create_scheduler().install(
                config.renewal.task_name, renewal_command(state.config_path), config.renewal.schedule)
            console.print(f"[green]✔[/green] Renewal task {config.renewal.task_name} installed")
    except AutoCertError as e:
        _fail(e)


def _quote_path(path: str) -> str:
    """Double-quote a path containing whitespace; schtasks, systemd and sh all accept it."""
    return f'"{path}"' if any(c.isspace() for c in path) else path


def renewal_command(config_path: Optional[Path] = None) -> str:
    """Command line the scheduled task runs."""
    executable = shutil.which("autocert")
    if executable:
        base = _quote_path(executable)
    else:
        base = f"{_quote_path(sys.executable)} -m autocert"
    if config_path:
        base += f" --config {_quote_path(str(Path(config_path).resolve()))}"
    return f"{base} renew --all"


@schedule_app.command("install")
def schedule_install(
    ctx: typer.Context,
    name: Optional[str] = typer.Option(None, "--name", "-n", help="Task name."),
    schedule: Optional[str] = typer.Option(None, "--schedule", "-s", help="Cron expression (cron backend only)."),
    command: Optional[str] = typer.Option(None, "--command", help="Command line the task runs."),
):
    """Install the daily renewal task."""
    state = _state(ctx)
    task_name = name or state.config.renewal.task_name
    try:
        create_scheduler().install(
            task_name,
            command or renewal_command(state.config_path),
            schedule or state.config.renewal.schedule,
        )
    except AutoCertError as e:
        _fail(e)
    console.print(f"[green]✔[/green] Renewal task {escape(task_name)} installed")


@schedule_app.command("remove")
def schedule_remove(
    ctx: typer.Context,
    name: Optional[str] = typer.Option(None, "--name", "-n", help="Task name."),
):
    """Remove the renewal task."""
    task_name = name or _state(ctx).config.renewal.task_name
    try:
        create_scheduler().remove(task_name)
    except AutoCertError as e:
        _fail(e)
    console.print(f"[green]✔[/green] Renewal task {escape(task_name)} removed")


@schedule_app.command("list")
def schedule_list():
    """List scheduled tasks."""
    try:
        tasks = create_scheduler().list_tasks()
    except AutoCertError as e:
        _fail(e)
    if not tasks:
        console.print("[yellow]No scheduled tasks found[/yellow]")
        return
    table = Table(title="Scheduled tasks")
    for column in ("Name", "Schedule", "Status", "Last run", "Next run", "Command"):
        table.add_column(column)
    for task in tasks:
        table.add_row(task.name, task.schedule, task.status, task.last_run, task.next_run, escape(task.command))
    console.print(table)


@schedule_app.command("status")
def schedule_status(
    ctx: typer.Context,
    name: Optional[str] = typer.Option(None, "--name", "-n", help="Task name."),
):
    """Show whether the renewal task is installed."""
    task_name = name or _state(ctx).config.renewal.task_name
    try:
        installed = create_scheduler().is_installed(task_name)
    except AutoCertError as e:
        _fail(e)
    if installed:
        console.print(f"[green]✔[/green] Renewal task {escape(task_name)} is installed")
    else:
        console.print(f"[yellow]Renewal task {escape(task_name)} is not installed[/yellow]")


@app.command()
def detect():
    """Show the detected operating system and web servers."""
    system = detect_system()
    table = Table(title="System", show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("OS", system.os.type.name.lower())
    table.add_row("Distribution", f"{system.os.distribution} {system.os.version}".strip() or "-")
    table.add_row("Architecture", system.os.architecture or "-")
    table.add_row("Administrator", "yes" if system.has_root else "no")
    for server in system.web_servers:
        running = "running" if server.running else "stopped"
        table.add_row(server.type.value, f"{server.version or 'unknown version'} ({running}) {server.binary}")
    if not system.web_servers:
        table.add_row("Web servers", "none found")
    console.print(table)


@app.command()
def version():
    """Show the AutoCert version."""
    console.print(f"autocert {__version__}")


if __name__ == "__main__":
    app()
