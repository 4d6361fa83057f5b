#!/usr/bin/env python3
"""
Certificate lifecycle managers.

A manager owns one domain set and drives it through install or renewal:
directory, key, request, issuance, persistence and web server hand-off.
Each install walks the stages of ``InstallStage`` in order and stops at
the first failure; files written by earlier stages are left in place.
"""

from __future__ import annotations

import datetime
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional, Sequence

from loguru import logger

from .authority import (
    CancellationToken,
    CertificateAuthority,
    SelfSignedAuthority,
    obtain_with_cancellation,
)
from .cert_io import CertificateStore
from .cert_operations import create_csr, create_key, csr_to_pem
from .cert_types import (
    CertificateInfo,
    CertificatePaths,
    ChallengeType,
    InstallStage,
    WebServerConfig,
)
from .config import AppConfig
from .core import (
    AutoCertError,
    InstallStageError,
    MalformedDomain,
    RenewalError,
    WildcardChallengeMismatch,
    WildcardRequiresDNS,
)
from .domains import has_wildcard, validate_domain_set
from .webserver import WebServerConfigurator, create_configurator

Clock = Callable[[], datetime.datetime]


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class BaseCertManager:
    """
    Shared install, renew and info logic for one domain set.

    Collaborators default from ``config`` and can be injected: the store,
    the certificate authority and the web server configurator.
    """

    def __init__(
        self,
        domains: Sequence[str],
        email: str,
        config: AppConfig,
        challenge: ChallengeType = ChallengeType.WEBROOT,
        webroot_path: Optional[Path] = None,
        web_server: Optional[WebServerConfigurator] = None,
        authority: Optional[CertificateAuthority] = None,
        store: Optional[CertificateStore] = None,
        clock: Clock = _utcnow,
    ) -> None:
        self.domains: List[str] = validate_domain_set(list(domains))
        self.email = email
        self.config = config
        self.challenge = challenge
        self.webroot_path = Path(webroot_path) if webroot_path else config.webserver.web_root
        self.store = store or CertificateStore(config.cert_dir)
        self.authority = authority or SelfSignedAuthority(
            web_root=self.webroot_path, issuer_key_size=config.acme.key_size)
        self._web_server = web_server
        self.clock = clock

        self.state = InstallStage.IDLE
        self.failed_stage: Optional[InstallStage] = None

    @property
    def primary_domain(self) -> str:
        return self.domains[0]

    @property
    def paths(self) -> CertificatePaths:
        return self.store.paths_for(self.domains)

    @property
    def web_server(self) -> WebServerConfigurator:
        if self._web_server is None:
            self._web_server = create_configurator(
                self.config.webserver.type, reload_cmd=self.config.webserver.reload_cmd)
        return self._web_server

    def validate(self) -> None:
        """Reject a wildcard set paired with a non-DNS challenge."""
        if self.challenge is not ChallengeType.DNS and has_wildcard(self.domains):
            raise WildcardRequiresDNS(
                f"Wildcard certificate for {self.primary_domain} requires the DNS challenge",
                error_code="WILDCARD_REQUIRES_DNS",
            )

    @contextmanager
    def _stage(self, stage: InstallStage) -> Iterator[None]:
        logger.debug(f"[{self.primary_domain}] entering stage {stage.name}")
        try:
            yield
        except Exception as e:
            self.state = InstallStage.FAILED
            self.failed_stage = stage
            logger.error(f"[{self.primary_domain}] {stage.failure_message}: {e}")
            raise InstallStageError(stage, e) from e
        self.state = stage

    def install(self, token: Optional[CancellationToken] = None) -> CertificatePaths:
        """
        Issue a certificate for the domain set and hand it to the web server.

        Args:
            token: Cancels or bounds the wait for the certificate authority

        Returns:
            Paths of the stored record

        Raises:
            ConfigurationError: Before any I/O, for an invalid challenge
            InstallStageError: If any stage fails; ``stage`` names it
        """
        self.validate()
        self.state = InstallStage.IDLE
        self.failed_stage = None
        token = token or CancellationToken(self.config.renewal.timeout_seconds)
        logger.info(f"Installing certificate for {', '.join(self.domains)} ({self.challenge.value})")

        with self._stage(InstallStage.DIRECTORY_READY):
            paths = self.store.ensure_directory(self.domains)

        with self._stage(InstallStage.KEY_GENERATED):
            key = create_key(self.config.acme.key_size)
            self.store.save_key(paths, key)

        with self._stage(InstallStage.REQUEST_CREATED):
            csr_pem = csr_to_pem(create_csr(self.domains, key))

        with self._stage(InstallStage.CERTIFICATE_OBTAINED):
            chain = obtain_with_cancellation(
                self.authority, csr_pem, self.challenge, self.domains, self.email, token)

        with self._stage(InstallStage.PERSISTED):
            self.persist(paths, chain)

        with self._stage(InstallStage.WEB_SERVER_CONFIGURED):
            self.configure_web_server(paths)

        self.state = InstallStage.DONE
        logger.success(f"Certificate installed for {', '.join(self.domains)}: {paths.cert_path}")
        return paths

    def persist(self, paths: CertificatePaths, chain: bytes) -> None:
        self.store.save_certificate(paths, chain)

    def configured_domains(self) -> List[str]:
        return [self.primary_domain]

    def configure_web_server(self, paths: CertificatePaths) -> None:
        server = self.web_server
        for domain in self.configured_domains():
            server.configure(WebServerConfig(
                server_type=server.server_type,
                domain=domain,
                cert_path=paths.cert_path,
                key_path=paths.key_path,
                web_root=self.webroot_path,
                config_path=self.config.webserver.config_path,
            ))
        if self.config.webserver.reload_after_configure:
            server.test()
            server.reload()

    def get_cert_info(self) -> CertificateInfo:
        """Read the stored leaf; see CertificateStore.load_certificate_info."""
        return self.store.load_certificate_info(self.domains, now=self.clock())

    def renew(self, token: Optional[CancellationToken] = None, force: bool = False) -> bool:
        """
        Reissue the certificate when it is close to expiry.

        Args:
            token: Cancels or bounds the wait for the certificate authority
            force: Reissue regardless of the remaining validity

        Returns:
            True if a new certificate was installed, False if renewal was not due
        """
        if not force:
            info = self.get_cert_info()
            remaining = info.expiry_date - self.clock()
            threshold = datetime.timedelta(days=self.config.renewal.threshold_days)
            if remaining > threshold:
                logger.info(
                    f"Certificate for {self.primary_domain} is valid for {remaining.days} more days; "
                    f"renewal not needed"
                )
                return False
            logger.info(f"Certificate for {self.primary_domain} expires in {remaining.days} days; renewing")

        self.install(token)
        return True


class SingleDomainManager(BaseCertManager):
    """Manager for a certificate covering exactly one domain."""

    def __init__(self, domain: str, email: str, config: AppConfig, **kwargs) -> None:
        super().__init__([domain], email, config, **kwargs)

    @property
    def domain(self) -> str:
        return self.primary_domain


class MultiDomainManager(BaseCertManager):
    """
    Manager for one SAN certificate covering several domains.

    The record directory is ``<primary>_san`` and the member list is kept
    in ``domains.txt``. Every member domain is handed to the web server.
    """

    def __init__(self, domains: Sequence[str], email: str, config: AppConfig, **kwargs) -> None:
        if not domains:
            raise MalformedDomain("At least one domain is required", error_code="NO_DOMAINS")
        super().__init__(domains, email, config, **kwargs)

    def validate(self) -> None:
        if self.challenge is not ChallengeType.DNS and has_wildcard(self.domains):
            wildcards = ", ".join(d for d in self.domains if d.startswith("*."))
            raise WildcardChallengeMismatch(
                f"Wildcard domains ({wildcards}) require the DNS challenge, "
                f"got {self.challenge.value}",
                error_code="WILDCARD_CHALLENGE_MISMATCH",
            )

    def persist(self, paths: CertificatePaths, chain: bytes) -> None:
        super().persist(paths, chain)
        if len(self.domains) > 1:
            self.store.save_domains_list(paths, self.domains)

    def configured_domains(self) -> List[str]:
        for domain in self.domains:
            if domain.startswith("*."):
                logger.info(f"Configuring wildcard domain {domain}")
        return list(self.domains)


def create_manager(domains: Sequence[str], email: str, config: AppConfig, **kwargs) -> BaseCertManager:
    """Pick the single-domain manager for one domain, the multi-domain one otherwise."""
    if len(domains) == 1:
        return SingleDomainManager(domains[0], email, config, **kwargs)
    return MultiDomainManager(domains, email, config, **kwargs)


def renew_all(
    store: CertificateStore,
    factory: Callable[[List[str]], BaseCertManager],
    force: bool = False,
    timeout: Optional[float] = None,
) -> Dict[str, bool]:
    """
    Renew every record in the store.

    Args:
        store: Store to enumerate
        factory: Builds a manager for a stored domain set
        force: Reissue regardless of remaining validity
        timeout: Seconds each record may wait for the certificate authority;
            the manager's ``renewal.timeout_seconds`` applies when None

    Returns:
        Mapping of record name to whether it was reissued

    Raises:
        RenewalError: After all records were tried, if any failed
    """
    results: Dict[str, bool] = {}
    failures: Dict[str, BaseException] = {}

    for domains in store.list_records():
        name = ", ".join(domains)
        # one deadline per record, started when that record is reached
        token = CancellationToken(timeout) if timeout is not None else None
        try:
            results[name] = factory(domains).renew(token, force=force)
        except AutoCertError as e:
            logger.error(f"Renewal failed for {name}: {e}")
            failures[name] = e

    if failures:
        raise RenewalError(failures)
    return results
