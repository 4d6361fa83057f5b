#!/usr/bin/env python3
"""
Periodic renewal task scheduling.

A stateless façade over the host scheduler: Windows Task Scheduler via
``schtasks``, systemd timers on systemd hosts, and the user's crontab
everywhere else. The backend is chosen once, when the scheduler is created.
"""

from __future__ import annotations

import csv
import datetime
import io
import os
import shlex
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Optional, Tuple
from xml.sax.saxutils import escape

from loguru import logger

from .cert_types import Task
from .core import OperatingSystem, SchedulerError
from .utils import combined_output, run_command, which

UNIT_DESCRIPTION = "AutoCert Certificate Renewal"
SYSTEMD_DIR = Path("/etc/systemd/system")
SYSTEMD_RUNTIME_DIR = Path("/run/systemd/system")
CRON_MACROS = {"@hourly", "@daily", "@weekly", "@monthly", "@yearly", "@annually", "@midnight", "@reboot"}


class TaskScheduler(ABC):
    """Capability interface for registering the periodic renewal job."""

    @abstractmethod
    def install(self, name: str, command: str, schedule: str) -> None:
        """Register ``command`` to run on ``schedule`` under ``name``."""

    @abstractmethod
    def remove(self, name: str) -> None:
        """Unregister the task called ``name``."""

    @abstractmethod
    def list_tasks(self) -> List[Task]:
        """Return the tasks known to the host scheduler."""

    @abstractmethod
    def is_installed(self, name: str) -> bool:
        """Whether a task called ``name`` is registered."""

    @staticmethod
    def _check(result, action: str) -> None:
        if result.returncode != 0:
            raise SchedulerError(
                f"Failed to {action}: {combined_output(result)}",
                error_code="SCHEDULER_COMMAND_FAILED",
                details={"command": " ".join(result.args)},
            )


class WindowsScheduler(TaskScheduler):
    """Windows Task Scheduler backend driven through ``schtasks``."""

    @staticmethod
    def split_command(command: str) -> Tuple[str, str]:
        """Split a command line into the program and its argument string."""
        try:
            parts = shlex.split(command, posix=False)
        except ValueError as e:
            raise SchedulerError(
                f"Cannot parse task command {command!r}: {e}", error_code="INVALID_COMMAND") from e
        if not parts:
            raise SchedulerError("Task command is empty", error_code="INVALID_COMMAND")
        # posix=False keeps the quotes, which the Arguments element needs
        return parts[0].strip('"'), " ".join(parts[1:])

    def render_task_xml(self, name: str, command: str) -> str:
        """Render a daily, highest-privilege task definition."""
        program, arguments = self.split_command(command)
        start = datetime.datetime.now().replace(hour=2, minute=0, second=0, microsecond=0)
        return f"""<?xml version="1.0" encoding="UTF-16"?>
<Task version="1.2" xmlns="http://schemas.microsoft.com/windows/2004/02/mit/task">
  <RegistrationInfo>
    <Description>{escape(name)} - {UNIT_DESCRIPTION}</Description>
  </RegistrationInfo>
  <Triggers>
    <CalendarTrigger>
      <StartBoundary>{start.isoformat()}</StartBoundary>
      <Enabled>true</Enabled>
      <ScheduleByDay>
        <DaysInterval>1</DaysInterval>
      </ScheduleByDay>
    </CalendarTrigger>
  </Triggers>
  <Principals>
    <Principal id="Author">
      <UserId>S-1-5-18</UserId>
      <RunLevel>HighestAvailable</RunLevel>
    </Principal>
  </Principals>
  <Settings>
    <MultipleInstancesPolicy>IgnoreNew</MultipleInstancesPolicy>
    <DisallowStartIfOnBatteries>false</DisallowStartIfOnBatteries>
    <StopIfGoingOnBatteries>false</StopIfGoingOnBatteries>
    <StartWhenAvailable>true</StartWhenAvailable>
    <RunOnlyIfNetworkAvailable>true</RunOnlyIfNetworkAvailable>
    <ExecutionTimeLimit>PT1H</ExecutionTimeLimit>
    <Enabled>true</Enabled>
  </Settings>
  <Actions Context="Author">
    <Exec>
      <Command>{escape(program)}</Command>
      <Arguments>{escape(arguments)}</Arguments>
    </Exec>
  </Actions>
</Task>
"""

    def install(self, name: str, command: str, schedule: str) -> None:
        logger.debug(f"Windows tasks run daily; schedule {schedule!r} is not used")
        xml = self.render_task_xml(name, command)
        fd, tmp_name = tempfile.mkstemp(prefix="autocert-", suffix=".xml")
        try:
            with os.fdopen(fd, "w", encoding="utf-16") as f:
                f.write(xml)
            result = run_command(["schtasks", "/create", "/tn", name, "/xml", tmp_name, "/f"])
            self._check(result, f"create scheduled task {name}")
        finally:
            Path(tmp_name).unlink(missing_ok=True)
        logger.success(f"Scheduled task {name} installed")

    def remove(self, name: str) -> None:
        result = run_command(["schtasks", "/delete", "/tn", name, "/f"])
        self._check(result, f"delete scheduled task {name}")
        logger.success(f"Scheduled task {name} removed")

    def list_tasks(self) -> List[Task]:
        result = run_command(["schtasks", "/query", "/fo", "csv", "/v"])
        self._check(result, "query scheduled tasks")
        return self.parse_task_csv(result.stdout)

    @staticmethod
    def parse_task_csv(output: str) -> List[Task]:
        """Parse verbose CSV output of ``schtasks /query``."""
        tasks: List[Task] = []
        for row in csv.DictReader(io.StringIO(output)):
            name = (row.get("TaskName") or "").strip()
            # schtasks repeats the header line for every task folder
            if not name or name == "TaskName":
                continue
            tasks.append(Task(
                name=name.lstrip("\\"),
                command=(row.get("Task To Run") or "").strip(),
                schedule=(row.get("Schedule Type") or "").strip(),
                status=(row.get("Status") or "").strip(),
                last_run=(row.get("Last Run Time") or "").strip(),
                next_run=(row.get("Next Run Time") or "").strip(),
            ))
        return tasks

    def is_installed(self, name: str) -> bool:
        return run_command(["schtasks", "/query", "/tn", name]).returncode == 0


class LinuxScheduler(TaskScheduler):
    """systemd timer backend with a crontab fallback."""

    def __init__(self, use_systemd: Optional[bool] = None, unit_dir: Path = SYSTEMD_DIR) -> None:
        self.use_systemd = self.systemd_available() if use_systemd is None else use_systemd
        self.unit_dir = Path(unit_dir)
        logger.debug(f"Using {'systemd' if self.use_systemd else 'cron'} scheduler backend")

    @staticmethod
    def systemd_available() -> bool:
        """True when the host booted with systemd and systemctl is on PATH."""
        return SYSTEMD_RUNTIME_DIR.is_dir() and which("systemctl") is not None

    def install(self, name: str, command: str, schedule: str) -> None:
        if self.use_systemd:
            self._install_systemd(name, command)
        else:
            self._install_cron(name, command, schedule)
        logger.success(f"Scheduled task {name} installed")

    def remove(self, name: str) -> None:
        if self.use_systemd:
            self._remove_systemd(name)
        else:
            self._remove_cron(name)
        logger.success(f"Scheduled task {name} removed")

    def list_tasks(self) -> List[Task]:
        return self._list_systemd() if self.use_systemd else self._list_cron()

    def is_installed(self, name: str) -> bool:
        if self.use_systemd:
            return run_command(["systemctl", "is-enabled", f"{name}.timer"]).returncode == 0
        return any(self._is_tagged(line, name) for line in self._read_crontab())

    # systemd

    @staticmethod
    def render_service_unit(name: str, command: str) -> str:
        return f"""[Unit]
Description={name} - {UNIT_DESCRIPTION}
After=network-online.target
Wants=network-online.target

[Service]
Type=oneshot
ExecStart={command}
User=root
"""

    @staticmethod
    def render_timer_unit(name: str) -> str:
        return f"""[Unit]
Description={name} - {UNIT_DESCRIPTION} Timer
Requires={name}.service

[Timer]
OnCalendar=daily
RandomizedDelaySec=3600
Persistent=true

[Install]
WantedBy=timers.target
"""

    def _install_systemd(self, name: str, command: str) -> None:
        service = self.unit_dir / f"{name}.service"
        timer = self.unit_dir / f"{name}.timer"
        try:
            self.unit_dir.mkdir(parents=True, exist_ok=True)
            service.write_text(self.render_service_unit(name, command), encoding="utf-8")
            timer.write_text(self.render_timer_unit(name), encoding="utf-8")
        except OSError as e:
            raise SchedulerError(
                f"Failed to write systemd units: {e}", error_code="UNIT_WRITE_FAILED") from e

        self._check(run_command(["systemctl", "daemon-reload"]), "reload systemd")
        self._check(run_command(["systemctl", "enable", f"{name}.timer"]), f"enable {name}.timer")
        self._check(run_command(["systemctl", "start", f"{name}.timer"]), f"start {name}.timer")

    def _remove_systemd(self, name: str) -> None:
        for action in ("stop", "disable"):
            result = run_command(["systemctl", action, f"{name}.timer"])
            if result.returncode != 0:
                logger.warning(f"systemctl {action} {name}.timer: {combined_output(result)}")
        try:
            (self.unit_dir / f"{name}.timer").unlink(missing_ok=True)
            (self.unit_dir / f"{name}.service").unlink(missing_ok=True)
        except OSError as e:
            raise SchedulerError(
                f"Failed to remove systemd units: {e}", error_code="UNIT_REMOVE_FAILED") from e
        self._check(run_command(["systemctl", "daemon-reload"]), "reload systemd")

    def _list_systemd(self) -> List[Task]:
        tasks: List[Task] = []
        if not self.unit_dir.is_dir():
            return tasks
        for timer in sorted(self.unit_dir.glob("*.timer")):
            try:
                timer_text = timer.read_text(encoding="utf-8")
            except OSError as e:
                logger.warning(f"Cannot read {timer}: {e}")
                continue
            if UNIT_DESCRIPTION not in timer_text:
                continue
            name = timer.stem
            command = ""
            service = self.unit_dir / f"{name}.service"
            if service.is_file():
                command = _unit_value(service.read_text(encoding="utf-8"), "ExecStart")
            props = self._show_properties(f"{name}.timer")
            tasks.append(Task(
                name=name,
                command=command,
                schedule=_unit_value(timer_text, "OnCalendar"),
                status=props.get("ActiveState", ""),
                last_run=props.get("LastTriggerUSec", ""),
                next_run=props.get("NextElapseUSecRealtime", ""),
            ))
        return tasks

    @staticmethod
    def _show_properties(unit: str) -> dict:
        result = run_command([
            "systemctl", "show", unit,
            "--property=ActiveState,LastTriggerUSec,NextElapseUSecRealtime",
        ])
        if result.returncode != 0:
            logger.debug(f"systemctl show {unit}: {combined_output(result)}")
            return {}
        props = {}
        for line in result.stdout.splitlines():
            key, sep, value = line.partition("=")
            if sep:
                props[key.strip()] = value.strip()
        return props

    # cron

    @staticmethod
    def validate_cron_schedule(schedule: str) -> str:
        schedule = schedule.strip()
        if schedule in CRON_MACROS or len(schedule.split()) == 5:
            return schedule
        raise SchedulerError(
            f"Invalid cron schedule: {schedule!r}", error_code="INVALID_SCHEDULE")

    @staticmethod
    def _is_tagged(line: str, name: str) -> bool:
        return line.rstrip().endswith(f"# {name}")

    def _read_crontab(self, required: bool = False) -> List[str]:
        result = run_command(["crontab", "-l"])
        if result.returncode != 0:
            # crontab -l exits non-zero when the user has no crontab yet
            if required:
                self._check(result, "read crontab")
            return []
        return result.stdout.splitlines()

    def _write_crontab(self, lines: List[str]) -> None:
        content = "\n".join(lines) + "\n" if lines else ""
        self._check(run_command(["crontab", "-"], input_text=content), "write crontab")

    def _install_cron(self, name: str, command: str, schedule: str) -> None:
        schedule = self.validate_cron_schedule(schedule)
        lines = [line for line in self._read_crontab() if not self._is_tagged(line, name)]
        lines.append(f"{schedule} {command} # {name}")
        self._write_crontab(lines)

    def _remove_cron(self, name: str) -> None:
        lines = self._read_crontab(required=True)
        kept = [line for line in lines if not self._is_tagged(line, name)]
        if len(kept) == len(lines):
            logger.info(f"No crontab entry tagged {name}")
            return
        self._write_crontab(kept)

    def _list_cron(self) -> List[Task]:
        tasks: List[Task] = []
        for line in self._read_crontab():
            stripped = line.strip()
            if not stripped or stripped.startswith("#"):
                continue
            body, _, tag = stripped.partition(" # ")
            fields = body.split()
            if fields and fields[0].startswith("@"):
                schedule, command = fields[0], " ".join(fields[1:])
            elif len(fields) >= 6:
                schedule, command = " ".join(fields[:5]), " ".join(fields[5:])
            else:
                continue
            tasks.append(Task(
                name=tag.strip() or "cron-task",
                command=command,
                schedule=schedule,
                status="active",
            ))
        return tasks


def _unit_value(text: str, key: str) -> str:
    for line in text.splitlines():
        k, sep, value = line.partition("=")
        if sep and k.strip() == key:
            return value.strip()
    return ""


def create_scheduler(operating_system: Optional[OperatingSystem] = None) -> TaskScheduler:
    """Return the scheduler backend for the host operating system."""
    operating_system = operating_system or OperatingSystem.current()
    match operating_system:
        case OperatingSystem.WINDOWS:
            return WindowsScheduler()
        case OperatingSystem.LINUX | OperatingSystem.MACOS:
            return LinuxScheduler()
    raise SchedulerError(
        f"Unsupported operating system: {operating_system.name}", error_code="UNSUPPORTED_OS")
