#!/usr/bin/env python3
"""
Tests for the certificate store.
"""

import datetime
import os
import stat
import sys

import pytest

from autocert.cert_io import CertificateStore
from autocert.cert_operations import create_csr, create_key, sign_with_demo_issuer
from autocert.core import CertificateNotFound, CertificateParseError, CertificateUnreadable, StoreError

KEY_SIZE = 1024

posix_only = pytest.mark.skipif(sys.platform == "win32", reason="POSIX permission bits")


@pytest.fixture(scope="module")
def issued():
    """A key and a demo chain for two domains."""
    key = create_key(KEY_SIZE)
    chain = sign_with_demo_issuer(create_csr(["a.com", "b.com"], key), key_size=KEY_SIZE)
    return key, chain


def test_paths_follow_directory_naming(store):
    single = store.paths_for(["example.com"])
    multi = store.paths_for(["a.com", "b.com"])

    assert single.directory == store.root / "example.com"
    assert single.key_path.name == "key.pem"
    assert single.cert_path.name == "cert.pem"
    assert single.chain_path.name == "chain.pem"
    assert multi.directory == store.root / "a.com_san"
    assert multi.domains_path == store.root / "a.com_san" / "domains.txt"


def test_ensure_directory_creates_parents(tmp_path):
    store = CertificateStore(tmp_path / "deep" / "certs")
    paths = store.ensure_directory(["example.com"])
    assert paths.directory.is_dir()


def test_ensure_directory_failure(tmp_path):
    blocker = tmp_path / "certs"
    blocker.write_text("not a directory")
    with pytest.raises(StoreError) as excinfo:
        CertificateStore(blocker).ensure_directory(["example.com"])
    assert excinfo.value.path == blocker / "example.com"


@posix_only
def test_file_modes(store, issued):
    key, chain = issued
    paths = store.ensure_directory(["a.com", "b.com"])
    store.save_key(paths, key)
    store.save_certificate(paths, chain)
    store.save_domains_list(paths, ["a.com", "b.com"])

    assert stat.S_IMODE(os.stat(paths.key_path).st_mode) == 0o600
    assert stat.S_IMODE(os.stat(paths.cert_path).st_mode) == 0o644
    assert stat.S_IMODE(os.stat(paths.chain_path).st_mode) == 0o644
    assert stat.S_IMODE(os.stat(paths.domains_path).st_mode) == 0o644


def test_save_certificate_splits_leaf_and_chain(store, issued):
    _, chain = issued
    paths = store.ensure_directory(["a.com", "b.com"])
    store.save_certificate(paths, chain)

    assert paths.cert_path.read_bytes().count(b"BEGIN CERTIFICATE") == 1
    assert paths.chain_path.read_bytes().count(b"BEGIN CERTIFICATE") == 1


def test_stale_chain_is_removed(store, issued):
    _, chain = issued
    paths = store.ensure_directory(["a.com", "b.com"])
    store.save_certificate(paths, chain)
    leaf_only = paths.cert_path.read_bytes()

    store.save_certificate(paths, leaf_only)
    assert paths.cert_path.exists()
    assert not paths.chain_path.exists()


def test_save_certificate_rejects_garbage(store):
    paths = store.ensure_directory(["example.com"])
    with pytest.raises(StoreError):
        store.save_certificate(paths, b"garbage")


def test_domains_list_content(store):
    paths = store.ensure_directory(["a.com", "b.com"])
    store.save_domains_list(paths, ["a.com", "b.com"])
    assert paths.domains_path.read_text() == "a.com\nb.com"


def test_load_info_not_found(store):
    with pytest.raises(CertificateNotFound):
        store.load_certificate_info(["missing.com"])


def test_load_info_unreadable(store):
    paths = store.ensure_directory(["example.com"])
    paths.cert_path.write_text("this is not PEM")
    with pytest.raises(CertificateUnreadable):
        store.load_certificate_info(["example.com"])


def test_load_info_parse_error(store):
    paths = store.ensure_directory(["example.com"])
    paths.cert_path.write_text("-----BEGIN CERTIFICATE-----\nAAAA\n-----END CERTIFICATE-----\n")
    with pytest.raises(CertificateParseError):
        store.load_certificate_info(["example.com"])


def test_load_info_validity(store, issued):
    _, chain = issued
    paths = store.ensure_directory(["a.com", "b.com"])
    store.save_certificate(paths, chain)

    info = store.load_certificate_info(["a.com", "b.com"])
    assert info.domain == "a.com"
    assert info.cert_path == paths.cert_path
    assert info.is_valid
    assert 89 <= info.days_remaining() <= 90

    later = info.expiry_date + datetime.timedelta(seconds=1)
    assert not store.load_certificate_info(["a.com", "b.com"], now=later).is_valid


def test_list_records(store):
    single = store.ensure_directory(["example.com"])
    multi = store.ensure_directory(["a.com", "b.com"])
    store.save_domains_list(multi, ["a.com", "b.com"])
    (store.root / "stray.txt").write_text("ignored")

    assert single.directory.is_dir()
    assert store.list_records() == [["a.com", "b.com"], ["example.com"]]


def test_list_records_missing_root(tmp_path):
    assert CertificateStore(tmp_path / "nowhere").list_records() == []
