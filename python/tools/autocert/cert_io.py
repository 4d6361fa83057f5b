#!/usr/bin/env python3
"""
Certificate store.

The store owns the on-disk layout of issued certificates::

    <root>/<dirName>/key.pem      private key, mode 0600
    <root>/<dirName>/cert.pem     leaf certificate, mode 0644
    <root>/<dirName>/chain.pem    issuer certificates, mode 0644 (optional)
    <root>/<dirName>/domains.txt  multi-domain sets only

Records are overwritten in place on renewal. Permissions are applied after
the content is written.
"""

import datetime
from pathlib import Path
from typing import List, Optional, Sequence

from cryptography.hazmat.primitives.asymmetric import rsa
from loguru import logger

from .cert_operations import key_to_pem, parse_certificate_pem, split_certificate_chain
from .cert_types import CertificateInfo, CertificatePaths
from .core import CertificateNotFound, CertificateUnreadable, StoreError
from .domains import store_dir_name
from .utils import ensure_directory_exists, write_file

KEY_MODE = 0o600
PUBLIC_MODE = 0o644
DIR_MODE = 0o755


class CertificateStore:
    """File-system store for certificate records, rooted at one directory."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def paths_for(self, domains: Sequence[str]) -> CertificatePaths:
        return CertificatePaths.for_directory(self.root / store_dir_name(domains))

    def ensure_directory(self, domains: Sequence[str]) -> CertificatePaths:
        """Create the record directory for a domain set, parents included."""
        paths = self.paths_for(domains)
        try:
            ensure_directory_exists(paths.directory, DIR_MODE)
        except OSError as e:
            raise StoreError(
                f"Failed to create certificate directory: {e}",
                path=paths.directory,
                error_code="MKDIR_FAILED",
            ) from e
        return paths

    def _write(self, path: Path, data: bytes, mode: int) -> None:
        try:
            write_file(path, data, mode)
        except OSError as e:
            raise StoreError(
                f"Failed to write {path.name}: {e}", path=path, error_code="WRITE_FAILED"
            ) from e
        logger.debug(f"Wrote {path} (mode {mode:o})")

    def save_key(self, paths: CertificatePaths, key: rsa.RSAPrivateKey) -> None:
        """Persist the private key, readable by the owner only."""
        self._write(paths.key_path, key_to_pem(key), KEY_MODE)
        logger.info(f"Private key saved to: {paths.key_path}")

    def save_certificate(self, paths: CertificatePaths, chain_pem: bytes) -> None:
        """
        Persist a PEM chain as returned by the authority.

        The first certificate becomes ``cert.pem``; any further certificates
        become ``chain.pem``. A stale ``chain.pem`` is removed when the new
        chain has no issuer certificates.
        """
        try:
            leaf, rest = split_certificate_chain(chain_pem)
        except CertificateUnreadable as e:
            raise StoreError(str(e), path=paths.cert_path, error_code="BAD_CHAIN") from e

        self._write(paths.cert_path, leaf, PUBLIC_MODE)
        if rest:
            self._write(paths.chain_path, rest, PUBLIC_MODE)
        elif paths.chain_path.exists():
            try:
                paths.chain_path.unlink()
            except OSError as e:
                raise StoreError(
                    f"Failed to remove stale chain: {e}", path=paths.chain_path
                ) from e
        logger.info(f"Certificate saved to: {paths.cert_path}")

    def save_domains_list(self, paths: CertificatePaths, domains: Sequence[str]) -> None:
        """Record multi-domain membership, one domain per line in input order."""
        self._write(paths.domains_path, "\n".join(domains).encode("utf-8"), PUBLIC_MODE)

    def load_certificate_info(
        self, domains: Sequence[str], now: Optional[datetime.datetime] = None
    ) -> CertificateInfo:
        """
        Compute the info view of the stored leaf for a domain set.

        Raises:
            CertificateNotFound: If no leaf is stored
            CertificateUnreadable: If the leaf cannot be read or decoded
            CertificateParseError: If the leaf is not a valid certificate
        """
        paths = self.paths_for(domains)
        if not paths.cert_path.exists():
            raise CertificateNotFound(
                f"Certificate not found: {paths.cert_path}", error_code="CERT_NOT_FOUND")
        try:
            data = paths.cert_path.read_bytes()
        except OSError as e:
            raise CertificateUnreadable(
                f"Failed to read certificate {paths.cert_path}: {e}",
                error_code="CERT_READ_FAILED",
            ) from e

        cert = parse_certificate_pem(data)
        expiry = cert.not_valid_after_utc
        now = now or datetime.datetime.now(datetime.timezone.utc)
        return CertificateInfo(
            domain=domains[0],
            cert_path=paths.cert_path,
            key_path=paths.key_path,
            chain_path=paths.chain_path,
            expiry_date=expiry,
            is_valid=now < expiry,
        )

    def list_records(self) -> List[List[str]]:
        """
        Return the domain set of every record in the store.

        Multi-domain records are read back from ``domains.txt``; any other
        record directory is named after its single domain.
        """
        if not self.root.is_dir():
            return []
        records = []
        for entry in sorted(self.root.iterdir()):
            if not entry.is_dir():
                continue
            paths = CertificatePaths.for_directory(entry)
            if paths.domains_path.exists():
                try:
                    text = paths.domains_path.read_text(encoding="utf-8")
                except OSError as e:
                    logger.warning(f"Skipping {entry.name}: cannot read domains list: {e}")
                    continue
                domains = [line.strip() for line in text.splitlines() if line.strip()]
                if domains:
                    records.append(domains)
                    continue
            records.append([entry.name])
        return records
