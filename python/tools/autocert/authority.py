#!/usr/bin/env python3
"""
Certificate authority client.

The authority is a pluggable strategy that turns a CSR into a signed PEM
chain after proving control of the requested domains. ``SelfSignedAuthority``
is the bundled demo strategy; it signs locally and only logs the proof a
real ACME authority would ask for.
"""

from __future__ import annotations

import threading
import time
from pathlib import Path
from typing import Any, Optional, Protocol, Sequence

from cryptography import x509
from loguru import logger

from .cert_operations import DEFAULT_VALID_DAYS, sign_with_demo_issuer
from .cert_types import ChallengeType
from .core import AuthorityError, OperationCancelled
from .domains import base_domain, is_wildcard

ACME_CHALLENGE_DIR = Path(".well-known") / "acme-challenge"
POLL_INTERVAL = 0.1


class CancellationToken:
    """Cancellation signal with an optional deadline, shared by one operation."""

    def __init__(self, timeout: Optional[float] = None) -> None:
        self._event = threading.Event()
        self._deadline = time.monotonic() + timeout if timeout is not None else None

    def cancel(self) -> None:
        self._event.set()

    @property
    def expired(self) -> bool:
        return self._deadline is not None and time.monotonic() >= self._deadline

    @property
    def cancelled(self) -> bool:
        return self._event.is_set() or self.expired

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline, or None without one."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def wait(self, seconds: float) -> bool:
        """Sleep up to ``seconds``, returning early (True) once cancelled."""
        remaining = self.remaining()
        if remaining is not None:
            seconds = min(seconds, remaining)
        return self._event.wait(seconds) or self.cancelled

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelled("Operation cancelled", error_code="CANCELLED")
        if self.expired:
            raise OperationCancelled("Operation timed out", error_code="DEADLINE_EXCEEDED")


class CertificateAuthority(Protocol):
    """Protocol for certificate fulfillment strategies."""

    def obtain(
        self,
        csr_pem: bytes,
        challenge: ChallengeType,
        domains: Sequence[str],
        account_email: str,
        token: CancellationToken,
    ) -> bytes: ...


class SelfSignedAuthority:
    """
    Demo authority that issues certificates from a throwaway local issuer.

    The domain proof a real ACME server would verify is only described in
    the log; nothing is published. Certificates are valid for ``valid_days``
    and are not trusted by any client.
    """

    def __init__(
        self,
        web_root: Optional[Path] = None,
        valid_days: int = DEFAULT_VALID_DAYS,
        issuer_key_size: int = 2048,
    ) -> None:
        self.web_root = Path(web_root) if web_root else None
        self.valid_days = valid_days
        self.issuer_key_size = issuer_key_size

    def obtain(
        self,
        csr_pem: bytes,
        challenge: ChallengeType,
        domains: Sequence[str],
        account_email: str,
        token: CancellationToken,
    ) -> bytes:
        logger.warning("Using the demo authority: the issued certificate is not publicly trusted")
        logger.info(f"Requesting certificate for {', '.join(domains)} ({account_email or 'no account email'})")

        try:
            csr = x509.load_pem_x509_csr(csr_pem)
        except ValueError as e:
            raise AuthorityError(f"Invalid certificate request: {e}", error_code="BAD_CSR") from e

        for domain in domains:
            token.raise_if_cancelled()
            self._describe_challenge(challenge, domain)

        token.raise_if_cancelled()
        chain = sign_with_demo_issuer(csr, self.valid_days, self.issuer_key_size)
        token.raise_if_cancelled()
        logger.success(f"Certificate issued for {domains[0]}")
        return chain

    def _describe_challenge(self, challenge: ChallengeType, domain: str) -> None:
        match challenge:
            case ChallengeType.WEBROOT:
                root = self.web_root or Path("<webroot>")
                logger.info(
                    f"{challenge.acme_name} for {domain}: token file would be placed in "
                    f"{root / ACME_CHALLENGE_DIR}"
                )
            case ChallengeType.STANDALONE:
                logger.info(
                    f"{challenge.acme_name} for {domain}: a temporary listener on port 80 would answer the challenge")
            case ChallengeType.DNS:
                record = f"_acme-challenge.{base_domain(domain)}"
                suffix = " (wildcard)" if is_wildcard(domain) else ""
                logger.info(f"{challenge.acme_name} for {domain}{suffix}: TXT record required at {record}")


def obtain_with_cancellation(
    authority: CertificateAuthority,
    csr_pem: bytes,
    challenge: ChallengeType,
    domains: Sequence[str],
    account_email: str,
    token: Optional[CancellationToken] = None,
) -> bytes:
    """
    Run ``authority.obtain`` on a worker thread so the caller can stop waiting.

    The worker is a daemon thread. When the token is cancelled, its deadline
    passes or the caller is interrupted, this function raises
    OperationCancelled at once and the worker is abandoned.

    Raises:
        OperationCancelled: On cancellation, timeout or keyboard interrupt
        AuthorityError: If the authority fails
    """
    token = token or CancellationToken()
    token.raise_if_cancelled()
    outcome: dict[str, Any] = {}

    def worker() -> None:
        try:
            outcome["chain"] = authority.obtain(csr_pem, challenge, list(domains), account_email, token)
        except BaseException as e:
            outcome["error"] = e

    thread = threading.Thread(target=worker, name="autocert-obtain")
    thread.daemon = True
    thread.start()

    try:
        while thread.is_alive():
            thread.join(POLL_INTERVAL)
            if thread.is_alive() and token.cancelled:
                logger.warning("Abandoning certificate request")
                token.raise_if_cancelled()
    except KeyboardInterrupt:
        token.cancel()
        raise OperationCancelled("Operation interrupted", error_code="INTERRUPTED") from None

    if "error" in outcome:
        error = outcome["error"]
        if isinstance(error, AuthorityError):
            raise error
        raise AuthorityError(f"Certificate authority failed: {error}", error_code="CA_FAILED") from error
    return outcome["chain"]

