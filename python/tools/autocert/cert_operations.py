#!/usr/bin/env python3
"""
Certificate operations.

This module provides key and certificate request generation, PEM chain
handling and the locally signed certificates issued by the demo authority.
"""

import base64
import binascii
import datetime
import re
from typing import List, Sequence, Tuple

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from .core import (
    CertificateParseError,
    CertificateUnreadable,
    KeyGenerationError,
)
from .utils import log_operation

DEMO_ISSUER_NAME = "AutoCert Demo Issuer"
DEFAULT_VALID_DAYS = 90

_PEM_CERT_RE = re.compile(
    rb"-----BEGIN CERTIFICATE-----\s*(.+?)\s*-----END CERTIFICATE-----",
    re.DOTALL,
)


@log_operation
def create_key(key_size: int = 2048) -> rsa.RSAPrivateKey:
    """
    Generates an RSA private key with the specified key size.

    Args:
        key_size: RSA key size in bits (default: 2048)

    Returns:
        An RSA private key object

    Raises:
        KeyGenerationError: If key generation fails
    """
    try:
        return rsa.generate_private_key(
            public_exponent=65537,
            key_size=key_size,
        )
    except Exception as e:
        raise KeyGenerationError(
            f"Failed to generate RSA key: {str(e)}", error_code="KEY_GENERATION_FAILED") from e


def key_to_pem(key: rsa.RSAPrivateKey) -> bytes:
    """Serialize a private key as an unencrypted PKCS#1 PEM block."""
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )


@log_operation
def create_csr(domains: Sequence[str], key: rsa.RSAPrivateKey) -> x509.CertificateSigningRequest:
    """
    Build a certificate signing request for a domain set.

    The subject common name is the primary domain and every domain,
    primary included, is listed as a DNS subject alternative name.

    Args:
        domains: Ordered domain set, primary first
        key: Private key the request is signed with

    Returns:
        The signed CSR
    """
    subject = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, domains[0])])
    return (
        x509.CertificateSigningRequestBuilder()
        .subject_name(subject)
        .add_extension(
            x509.SubjectAlternativeName([x509.DNSName(d) for d in domains]),
            critical=False,
        )
        .sign(key, hashes.SHA256())
    )


def csr_to_pem(csr: x509.CertificateSigningRequest) -> bytes:
    return csr.public_bytes(serialization.Encoding.PEM)


def csr_domains(csr: x509.CertificateSigningRequest) -> List[str]:
    """Return the DNS names listed in a CSR's SAN extension."""
    try:
        san = csr.extensions.get_extension_for_class(x509.SubjectAlternativeName)
    except x509.ExtensionNotFound:
        return []
    return san.value.get_values_for_type(x509.DNSName)


def certificate_domains(cert: x509.Certificate) -> List[str]:
    """Return the DNS names listed in a certificate's SAN extension."""
    try:
        san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName)
    except x509.ExtensionNotFound:
        return []
    return san.value.get_values_for_type(x509.DNSName)


def split_certificate_chain(chain_pem: bytes) -> Tuple[bytes, bytes]:
    """
    Split a PEM chain into the leaf and the remaining issuer certificates.

    Returns:
        ``(leaf_pem, rest_pem)``; ``rest_pem`` is empty for a bare leaf

    Raises:
        CertificateUnreadable: If the data holds no PEM certificate block
    """
    blocks = [m.group(0) for m in _PEM_CERT_RE.finditer(chain_pem)]
    if not blocks:
        raise CertificateUnreadable(
            "Certificate chain contains no PEM certificate", error_code="NO_PEM_BLOCK")
    leaf = blocks[0] + b"\n"
    rest = b"".join(block + b"\n" for block in blocks[1:])
    return leaf, rest


def parse_certificate_pem(data: bytes) -> x509.Certificate:
    """
    Parse the first certificate of a PEM document.

    Decoding the PEM envelope and parsing the DER payload fail with
    different errors, so callers can tell a corrupt file from a file that
    merely holds the wrong kind of data.

    Raises:
        CertificateUnreadable: If no PEM certificate block can be decoded
        CertificateParseError: If the decoded payload is not valid X.509
    """
    match = _PEM_CERT_RE.search(data)
    if match is None:
        raise CertificateUnreadable(
            "No PEM certificate block found", error_code="NO_PEM_BLOCK")
    try:
        der = base64.b64decode(b"".join(match.group(1).split()), validate=True)
    except (binascii.Error, ValueError) as e:
        raise CertificateUnreadable(
            f"Invalid PEM encoding: {e}", error_code="BAD_PEM_ENCODING") from e
    try:
        return x509.load_der_x509_certificate(der)
    except ValueError as e:
        raise CertificateParseError(
            f"Failed to parse certificate: {e}", error_code="BAD_CERTIFICATE") from e


def _demo_issuer(key_size: int) -> Tuple[rsa.RSAPrivateKey, x509.Certificate]:
    issuer_key = create_key(key_size)
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, DEMO_ISSUER_NAME)])
    now = datetime.datetime.now(datetime.timezone.utc)
    issuer_cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(issuer_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(minutes=5))
        .not_valid_after(now + datetime.timedelta(days=DEFAULT_VALID_DAYS + 1))
        .add_extension(x509.BasicConstraints(ca=True, path_length=0), critical=True)
        .add_extension(
            x509.KeyUsage(
                digital_signature=True,
                content_commitment=False,
                key_encipherment=False,
                data_encipherment=False,
                key_agreement=False,
                key_cert_sign=True,
                crl_sign=True,
                encipher_only=False,
                decipher_only=False,
            ),
            critical=True,
        )
        .sign(issuer_key, hashes.SHA256())
    )
    return issuer_key, issuer_cert


@log_operation
def sign_with_demo_issuer(
    csr: x509.CertificateSigningRequest,
    valid_days: int = DEFAULT_VALID_DAYS,
    key_size: int = 2048,
) -> bytes:
    """
    Issue a server certificate for a CSR from a throwaway local issuer.

    The leaf carries the CSR's subject, public key and DNS names, is valid
    from now for ``valid_days`` and is signed by a freshly generated issuer
    that exists only for this call.

    Returns:
        PEM chain: the leaf followed by the issuer certificate
    """
    issuer_key, issuer_cert = _demo_issuer(key_size)
    now = datetime.datetime.now(datetime.timezone.utc)
    names = csr_domains(csr)

    builder = (
        x509.CertificateBuilder()
        .subject_name(csr.subject)
        .issuer_name(issuer_cert.subject)
        .public_key(csr.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now)
        .not_valid_after(now + datetime.timedelta(days=valid_days))
        .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
        .add_extension(
            x509.KeyUsage(
                digital_signature=True,
                content_commitment=False,
                key_encipherment=True,
                data_encipherment=False,
                key_agreement=False,
                key_cert_sign=False,
                crl_sign=False,
                encipher_only=False,
                decipher_only=False,
            ),
            critical=True,
        )
        .add_extension(
            x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH]),
            critical=False,
        )
    )
    if names:
        builder = builder.add_extension(
            x509.SubjectAlternativeName([x509.DNSName(n) for n in names]),
            critical=False,
        )

    leaf = builder.sign(issuer_key, hashes.SHA256())
    return (
        leaf.public_bytes(serialization.Encoding.PEM)
        + issuer_cert.public_bytes(serialization.Encoding.PEM)
    )
