#!/usr/bin/env python3
"""
Export and import of certificates and configuration.

Archives are ``.tar.gz`` or ``.zip`` files with this layout::

    metadata.json
    certs/<record>/<file>
    config/<file>

Both directions are best-effort per file: an unreadable or unsafe entry is
logged and skipped, the rest of the archive is still processed.
"""

import datetime
import io
import json
import platform
import tarfile
import time
import zipfile
from dataclasses import asdict, dataclass, field
from pathlib import Path, PurePosixPath
from typing import Iterator, List, Optional, Tuple

from loguru import logger

from .cert_io import CertificateStore, KEY_MODE, PUBLIC_MODE
from .config import USER_CONFIG_NAME
from .core import BackupError
from .domains import SAN_SUFFIX
from .utils import ensure_directory_exists

METADATA_NAME = "metadata.json"
BACKUP_VERSION = "1.0"
CONFIG_PATTERNS = ("*.toml", "*.yaml", "*.yml")
FORMATS = ("tar.gz", "zip")


@dataclass
class BackupMetadata:
    """Describes what an archive contains and where it came from."""
    version: str = BACKUP_VERSION
    created_at: str = ""
    platform: str = ""
    domains: List[str] = field(default_factory=list)
    has_schedule: bool = False

    @classmethod
    def from_dict(cls, data: dict) -> 'BackupMetadata':
        known = {k: data[k] for k in ("version", "created_at", "platform", "domains", "has_schedule") if k in data}
        return cls(**known)


def detect_format(path: Path) -> str:
    """Return ``tar.gz`` or ``zip`` from an archive file name."""
    name = path.name.lower()
    if name.endswith((".tar.gz", ".tgz")):
        return "tar.gz"
    if name.endswith(".zip"):
        return "zip"
    raise BackupError(
        f"Unsupported backup format: {path.name} (expected .tar.gz or .zip)",
        error_code="UNSUPPORTED_FORMAT",
    )


def _safe_relative(name: str) -> Optional[PurePosixPath]:
    """Relative archive path without parent references, or None."""
    rel = PurePosixPath(name)
    if rel.is_absolute() or ".." in rel.parts or not rel.parts:
        return None
    return rel


class BackupManager:
    """Builds and restores backup archives for one store and config directory."""

    def __init__(self, cert_dir: Path, config_dir: Path, home_dir: Optional[Path] = None) -> None:
        self.cert_dir = Path(cert_dir)
        self.config_dir = Path(config_dir)
        self.home_dir = Path(home_dir) if home_dir else Path.home()
        self.store = CertificateStore(self.cert_dir)

    def default_output(self, fmt: str = "tar.gz") -> Path:
        stamp = datetime.datetime.now().strftime("%Y%m%d-%H%M%S")
        return Path.cwd() / f"autocert-backup-{stamp}.{fmt}"

    def _collect(self, domain: Optional[str]) -> Iterator[Tuple[str, Path]]:
        """Yield ``(archive name, source path)`` for every file to export."""
        if self.cert_dir.is_dir():
            for record in sorted(self.cert_dir.iterdir()):
                if not record.is_dir():
                    continue
                if domain and record.name not in (domain, f"{domain}{SAN_SUFFIX}"):
                    continue
                for item in sorted(record.iterdir()):
                    if item.is_file():
                        yield f"certs/{record.name}/{item.name}", item

        if self.config_dir.is_dir():
            for pattern in CONFIG_PATTERNS:
                for item in sorted(self.config_dir.glob(pattern)):
                    if item.is_file():
                        yield f"config/{item.name}", item

        user_config = self.home_dir / USER_CONFIG_NAME
        if user_config.is_file():
            yield f"config/{USER_CONFIG_NAME}", user_config

    def _domains(self, domain: Optional[str]) -> List[str]:
        domains: List[str] = []
        for record in self.store.list_records():
            if domain and domain not in record:
                continue
            domains.extend(record)
        return domains

    def export(
        self,
        output: Optional[Path] = None,
        fmt: str = "tar.gz",
        domain: Optional[str] = None,
        has_schedule: bool = False,
    ) -> Path:
        """
        Write a backup archive.

        Args:
            output: Archive path; a timestamped name in the current directory by default
            fmt: ``tar.gz`` or ``zip``
            domain: Only export the record of this primary domain
            has_schedule: Recorded in the metadata for a later import

        Returns:
            Path of the written archive

        Raises:
            BackupError: If the format is unknown or the archive cannot be created
        """
        if fmt not in FORMATS:
            raise BackupError(f"Unsupported backup format: {fmt}", error_code="UNSUPPORTED_FORMAT")
        output = Path(output) if output else self.default_output(fmt)

        metadata = BackupMetadata(
            created_at=datetime.datetime.now(datetime.timezone.utc).isoformat(),
            platform=platform.system().lower(),
            domains=self._domains(domain),
            has_schedule=has_schedule,
        )

        try:
            ensure_directory_exists(output.parent)
            if fmt == "zip":
                count = self._write_zip(output, metadata, domain)
            else:
                count = self._write_tar(output, metadata, domain)
        except (OSError, tarfile.TarError, zipfile.BadZipFile) as e:
            raise BackupError(f"Failed to create backup {output}: {e}", error_code="EXPORT_FAILED") from e

        logger.success(f"Backup written to {output} ({count} files)")
        return output

    @staticmethod
    def _metadata_bytes(metadata: BackupMetadata) -> bytes:
        return json.dumps(asdict(metadata), indent=2).encode("utf-8")

    def _write_tar(self, output: Path, metadata: BackupMetadata, domain: Optional[str]) -> int:
        count = 0
        with tarfile.open(output, "w:gz") as tar:
            payload = self._metadata_bytes(metadata)
            info = tarfile.TarInfo(METADATA_NAME)
            info.size = len(payload)
            info.mtime = int(time.time())
            info.mode = PUBLIC_MODE
            tar.addfile(info, io.BytesIO(payload))

            for arcname, source in self._collect(domain):
                try:
                    tar.add(source, arcname=arcname, recursive=False)
                    count += 1
                except OSError as e:
                    logger.warning(f"Skipping {source}: {e}")
        return count

    def _write_zip(self, output: Path, metadata: BackupMetadata, domain: Optional[str]) -> int:
        count = 0
        with zipfile.ZipFile(output, "w", compression=zipfile.ZIP_DEFLATED) as zf:
            zf.writestr(METADATA_NAME, self._metadata_bytes(metadata))
            for arcname, source in self._collect(domain):
                try:
                    zf.write(source, arcname)
                    count += 1
                except OSError as e:
                    logger.warning(f"Skipping {source}: {e}")
        return count

    def _target_for(self, name: str) -> Optional[Path]:
        rel = _safe_relative(name)
        if rel is None or len(rel.parts) < 2:
            return None
        top, rest = rel.parts[0], PurePosixPath(*rel.parts[1:])
        if top == "certs":
            return self.cert_dir.joinpath(*rest.parts)
        if top == "config":
            if len(rest.parts) == 1 and rest.name.startswith("."):
                return self.home_dir / rest.name
            return self.config_dir.joinpath(*rest.parts)
        return None

    def _restore(self, name: str, data: bytes, mode: int) -> bool:
        target = self._target_for(name)
        if target is None:
            logger.warning(f"Skipping unexpected archive entry: {name}")
            return False
        if not mode:
            mode = KEY_MODE if target.name == "key.pem" else PUBLIC_MODE
        try:
            ensure_directory_exists(target.parent)
            target.write_bytes(data)
            target.chmod(mode & 0o777)
        except OSError as e:
            logger.warning(f"Failed to restore {name}: {e}")
            return False
        logger.debug(f"Restored {target}")
        return True

    def import_archive(self, archive: Path) -> BackupMetadata:
        """
        Restore certificates and configuration from a backup archive.

        Returns:
            The archive metadata (defaults when the archive has none)

        Raises:
            BackupError: If the archive is missing, unreadable or of an unknown format
        """
        archive = Path(archive)
        if not archive.is_file():
            raise BackupError(f"Backup file not found: {archive}", error_code="BACKUP_NOT_FOUND")
        fmt = detect_format(archive)

        metadata = BackupMetadata()
        restored = 0
        try:
            for name, data, mode in self._read_entries(archive, fmt):
                if name == METADATA_NAME:
                    try:
                        metadata = BackupMetadata.from_dict(json.loads(data))
                    except (ValueError, TypeError) as e:
                        logger.warning(f"Ignoring unreadable metadata: {e}")
                    continue
                if self._restore(name, data, mode):
                    restored += 1
        except (OSError, tarfile.TarError, zipfile.BadZipFile) as e:
            raise BackupError(f"Failed to read backup {archive}: {e}", error_code="IMPORT_FAILED") from e

        logger.success(f"Restored {restored} files from {archive}")
        return metadata

    @staticmethod
    def _read_entries(archive: Path, fmt: str) -> Iterator[Tuple[str, bytes, int]]:
        if fmt == "zip":
            with zipfile.ZipFile(archive) as zf:
                for info in zf.infolist():
                    if info.is_dir():
                        continue
                    yield info.filename, zf.read(info), (info.external_attr >> 16) & 0o777
        else:
            with tarfile.open(archive, "r:gz") as tar:
                for member in tar.getmembers():
                    if not member.isfile():
                        continue
                    extracted = tar.extractfile(member)
                    if extracted is None:
                        continue
                    yield member.name, extracted.read(), member.mode & 0o777
