#!/usr/bin/env python3
"""
Domain validation and challenge selection.

Every function here is pure: no I/O, no logging side effects that matter.
``store_dir_name`` is the only place the on-disk directory name of a
domain set is derived.
"""

from typing import Iterable, List, Optional, Sequence

from .cert_types import ChallengeType
from .core import (
    InvalidChallengeConfiguration,
    MalformedDomain,
    WildcardRequiresDNS,
)

WILDCARD_PREFIX = "*."
SAN_SUFFIX = "_san"


def is_wildcard(domain: str) -> bool:
    """Return True when the domain carries the ``*.`` wildcard prefix."""
    return domain.startswith(WILDCARD_PREFIX)


def has_wildcard(domains: Iterable[str]) -> bool:
    return any(is_wildcard(d) for d in domains)


def base_domain(domain: str) -> str:
    """Strip a leading wildcard label, ``*.example.com`` -> ``example.com``."""
    return domain[len(WILDCARD_PREFIX):] if is_wildcard(domain) else domain


def validate_domain(domain: str) -> str:
    """
    Validate a single domain string.

    Args:
        domain: Domain name, optionally with a leading ``*.`` label

    Returns:
        The domain unchanged

    Raises:
        MalformedDomain: If the domain is empty, contains whitespace,
            more than one ``*``, a ``*`` outside the leading label, or a
            wildcard without a base name
    """
    if not domain:
        raise MalformedDomain("Domain cannot be empty", error_code="EMPTY_DOMAIN")

    if any(ch.isspace() for ch in domain):
        raise MalformedDomain(
            f"Domain contains whitespace: {domain!r}", error_code="DOMAIN_WHITESPACE")

    stars = domain.count("*")
    if stars > 1:
        raise MalformedDomain(
            f"Domain contains more than one wildcard: {domain!r}",
            error_code="MULTIPLE_WILDCARDS",
        )
    if stars == 1:
        if not is_wildcard(domain):
            raise MalformedDomain(
                f"Wildcard must be the leading label: {domain!r}",
                error_code="MISPLACED_WILDCARD",
            )
        if len(domain) < 4:
            raise MalformedDomain(
                f"Invalid wildcard domain: {domain!r}", error_code="EMPTY_WILDCARD_BASE")

    return domain


def validate_domain_set(domains: Sequence[str]) -> List[str]:
    """Validate an ordered domain set. The first entry is the primary domain."""
    if not domains:
        raise MalformedDomain("At least one domain is required", error_code="NO_DOMAINS")
    return [validate_domain(d) for d in domains]


def parse_domain_list(raw: str) -> List[str]:
    """Parse comma-separated domains as given on the command line."""
    return validate_domain_set([part.strip() for part in raw.split(",")])


def store_dir_name(domains: Sequence[str]) -> str:
    """
    Derive the store directory name for a domain set.

    A single domain maps to itself; a multi-domain set maps to the primary
    domain with a ``_san`` suffix.
    """
    if not domains:
        raise MalformedDomain("At least one domain is required", error_code="NO_DOMAINS")
    primary = domains[0]
    return f"{primary}{SAN_SUFFIX}" if len(domains) > 1 else primary


def select_challenge(
    domains: Sequence[str],
    standalone: bool = False,
    webroot: Optional[object] = None,
    dns: bool = False,
) -> ChallengeType:
    """
    Pick the challenge strategy for a domain set.

    Args:
        domains: The domain set
        standalone: Standalone mode was requested
        webroot: Webroot path, when webroot mode was requested explicitly
        dns: DNS mode was requested

    Returns:
        Exactly one ChallengeType; Webroot when no mode was requested

    Raises:
        MalformedDomain: If any domain is malformed
        InvalidChallengeConfiguration: If more than one mode was requested
        WildcardRequiresDNS: If a wildcard is present without DNS mode
    """
    domains = validate_domain_set(domains)

    requested = [
        challenge
        for challenge, flag in (
            (ChallengeType.WEBROOT, webroot is not None),
            (ChallengeType.STANDALONE, standalone),
            (ChallengeType.DNS, dns),
        )
        if flag
    ]
    if len(requested) > 1:
        names = ", ".join(c.value for c in requested)
        raise InvalidChallengeConfiguration(
            f"Only one challenge mode can be used, got: {names}",
            error_code="MULTIPLE_CHALLENGES",
        )

    challenge = requested[0] if requested else ChallengeType.WEBROOT
    if challenge is not ChallengeType.DNS and has_wildcard(domains):
        raise WildcardRequiresDNS(
            "Wildcard certificates require the DNS challenge (use --dns)",
            error_code="WILDCARD_REQUIRES_DNS",
        )
    return challenge
