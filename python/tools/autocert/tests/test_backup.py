#!/usr/bin/env python3
"""
Tests for backup export and import.
"""

import io
import json
import os
import stat
import sys
import tarfile
import zipfile
from pathlib import Path

import pytest

from autocert.backup import BackupManager, detect_format
from autocert.core import BackupError

posix_only = pytest.mark.skipif(sys.platform == "win32", reason="POSIX permission bits")


@pytest.fixture
def source(tmp_path: Path) -> BackupManager:
    """A populated store, config directory and home directory."""
    root = tmp_path / "source"
    certs, config, home = root / "certs", root / "config", root / "home"

    single = certs / "example.com"
    single.mkdir(parents=True)
    (single / "key.pem").write_text("KEY")
    (single / "key.pem").chmod(0o600)
    (single / "cert.pem").write_text("CERT")

    multi = certs / "a.com_san"
    multi.mkdir()
    (multi / "key.pem").write_text("KEY2")
    (multi / "cert.pem").write_text("CERT2")
    (multi / "domains.txt").write_text("a.com\nb.com")

    config.mkdir()
    (config / "config.toml").write_text('log_level = "INFO"\n')
    (config / "notes.txt").write_text("not exported")

    home.mkdir()
    (home / ".autocert.toml").write_text('log_level = "DEBUG"\n')

    return BackupManager(certs, config, home_dir=home)


@pytest.fixture
def target(tmp_path: Path) -> BackupManager:
    root = tmp_path / "target"
    return BackupManager(root / "certs", root / "config", home_dir=root / "home")


@pytest.mark.parametrize("fmt", ["tar.gz", "zip"])
def test_export_then_import(source, target, tmp_path, fmt):
    archive = source.export(tmp_path / f"backup.{fmt}", fmt=fmt, has_schedule=True)
    assert archive.is_file()

    metadata = target.import_archive(archive)

    assert metadata.version == "1.0"
    assert metadata.has_schedule is True
    assert metadata.domains == ["a.com", "b.com", "example.com"]
    assert metadata.created_at

    assert (target.cert_dir / "example.com" / "key.pem").read_text() == "KEY"
    assert (target.cert_dir / "a.com_san" / "domains.txt").read_text() == "a.com\nb.com"
    assert (target.config_dir / "config.toml").is_file()
    assert not (target.config_dir / "notes.txt").exists()
    assert (target.home_dir / ".autocert.toml").read_text() == 'log_level = "DEBUG"\n'
    assert target.store.list_records() == [["a.com", "b.com"], ["example.com"]]


@posix_only
def test_import_restores_key_mode(source, target, tmp_path):
    archive = source.export(tmp_path / "backup.tar.gz")
    target.import_archive(archive)

    key = target.cert_dir / "example.com" / "key.pem"
    assert stat.S_IMODE(os.stat(key).st_mode) == 0o600


def test_export_single_domain(source, tmp_path):
    archive = source.export(tmp_path / "one.zip", fmt="zip", domain="a.com")

    with zipfile.ZipFile(archive) as zf:
        names = set(zf.namelist())
        metadata = json.loads(zf.read("metadata.json"))

    assert "certs/a.com_san/cert.pem" in names
    assert not any(n.startswith("certs/example.com/") for n in names)
    assert metadata["domains"] == ["a.com", "b.com"]


def test_export_default_name(source, tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    archive = source.export()
    assert archive.parent == tmp_path
    assert archive.name.startswith("autocert-backup-")
    assert archive.name.endswith(".tar.gz")


def test_export_unknown_format(source, tmp_path):
    with pytest.raises(BackupError, match="Unsupported backup format"):
        source.export(tmp_path / "backup.rar", fmt="rar")


def test_import_missing_file(target, tmp_path):
    with pytest.raises(BackupError, match="not found"):
        target.import_archive(tmp_path / "absent.tar.gz")


def test_import_unknown_extension(target, tmp_path):
    archive = tmp_path / "backup.7z"
    archive.write_bytes(b"7z")
    with pytest.raises(BackupError, match="Unsupported backup format"):
        target.import_archive(archive)


def test_import_corrupt_archive(target, tmp_path):
    archive = tmp_path / "backup.zip"
    archive.write_bytes(b"definitely not a zip")
    with pytest.raises(BackupError, match="Failed to read backup"):
        target.import_archive(archive)


def test_import_skips_unsafe_entries(target, tmp_path, log_messages):
    archive = tmp_path / "evil.tar.gz"
    with tarfile.open(archive, "w:gz") as tar:
        for name, data in [
            ("../escape.txt", b"x"),
            ("/etc/passwd", b"x"),
            ("other/file.txt", b"x"),
            ("certs/example.com/cert.pem", b"CERT"),
        ]:
            info = tarfile.TarInfo(name)
            info.size = len(data)
            tar.addfile(info, io.BytesIO(data))

    metadata = target.import_archive(archive)

    assert metadata.domains == []
    assert (target.cert_dir / "example.com" / "cert.pem").read_bytes() == b"CERT"
    assert not (tmp_path / "escape.txt").exists()
    assert sum("Skipping unexpected archive entry" in m for m in log_messages) == 3


def test_detect_format():
    assert detect_format(Path("b.tar.gz")) == "tar.gz"
    assert detect_format(Path("b.TGZ")) == "tar.gz"
    assert detect_format(Path("b.zip")) == "zip"
    with pytest.raises(BackupError):
        detect_format(Path("b.tar"))
