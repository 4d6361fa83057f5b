#!/usr/bin/env python3
"""
Tests for domain validation and challenge selection.
"""

import pytest

from autocert.cert_types import ChallengeType
from autocert.core import (
    InvalidChallengeConfiguration,
    MalformedDomain,
    WildcardRequiresDNS,
)
from autocert.domains import (
    base_domain,
    has_wildcard,
    parse_domain_list,
    select_challenge,
    store_dir_name,
    validate_domain,
)


class TestValidateDomain:
    """Tests for single domain validation."""

    @pytest.mark.parametrize("domain", ["example.com", "a.b.example.org", "*.example.com", "*.ab"])
    def test_valid(self, domain):
        assert validate_domain(domain) == domain

    def test_empty(self):
        with pytest.raises(MalformedDomain, match="empty"):
            validate_domain("")

    @pytest.mark.parametrize("domain", ["exa mple.com", "example.com ", "\texample.com", "a.com\n"])
    def test_whitespace(self, domain):
        with pytest.raises(MalformedDomain, match="whitespace"):
            validate_domain(domain)

    @pytest.mark.parametrize("domain", ["*.*.example.com", "**.example.com", "*.ex*ample.com"])
    def test_multiple_wildcards(self, domain):
        with pytest.raises(MalformedDomain, match="more than one"):
            validate_domain(domain)

    def test_misplaced_wildcard(self):
        with pytest.raises(MalformedDomain, match="leading label"):
            validate_domain("www.*.example.com")

    @pytest.mark.parametrize("domain", ["*.", "*.a"])
    def test_wildcard_without_base(self, domain):
        with pytest.raises(MalformedDomain):
            validate_domain(domain)


def test_parse_domain_list_strips_and_keeps_order():
    assert parse_domain_list(" b.com, a.com ,c.com") == ["b.com", "a.com", "c.com"]


def test_parse_domain_list_rejects_empty_entry():
    with pytest.raises(MalformedDomain):
        parse_domain_list("a.com,,b.com")


def test_wildcard_helpers():
    assert has_wildcard(["a.com", "*.b.com"])
    assert not has_wildcard(["a.com", "b.com"])
    assert base_domain("*.example.com") == "example.com"
    assert base_domain("example.com") == "example.com"


class TestStoreDirName:
    """Tests for the store directory naming rule."""

    def test_single_domain(self):
        assert store_dir_name(["example.com"]) == "example.com"

    def test_multi_domain_uses_primary_with_suffix(self):
        assert store_dir_name(["a.com", "b.com", "c.com"]) == "a.com_san"

    def test_primary_is_first_entry(self):
        assert store_dir_name(["b.com", "a.com"]) == "b.com_san"

    def test_empty(self):
        with pytest.raises(MalformedDomain):
            store_dir_name([])


class TestSelectChallenge:
    """Tests for challenge strategy selection."""

    def test_default_is_webroot(self):
        assert select_challenge(["example.com"]) is ChallengeType.WEBROOT

    def test_explicit_modes(self):
        assert select_challenge(["example.com"], webroot="/var/www") is ChallengeType.WEBROOT
        assert select_challenge(["example.com"], standalone=True) is ChallengeType.STANDALONE
        assert select_challenge(["example.com"], dns=True) is ChallengeType.DNS

    def test_more_than_one_mode(self):
        with pytest.raises(InvalidChallengeConfiguration):
            select_challenge(["example.com"], standalone=True, dns=True)
        with pytest.raises(InvalidChallengeConfiguration):
            select_challenge(["example.com"], webroot="/var/www", standalone=True)

    @pytest.mark.parametrize("kwargs", [{}, {"webroot": "/var/www"}, {"standalone": True}])
    def test_wildcard_never_gets_http_challenge(self, kwargs):
        with pytest.raises(WildcardRequiresDNS):
            select_challenge(["example.com", "*.example.com"], **kwargs)

    def test_wildcard_with_dns(self):
        assert select_challenge(["*.example.com"], dns=True) is ChallengeType.DNS

    def test_malformed_domain_is_reported_first(self):
        with pytest.raises(MalformedDomain):
            select_challenge(["bad domain.com"], standalone=True, dns=True)
