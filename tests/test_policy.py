"""Tests for the management selection policy."""

import pytest

from conftest import make_announcement
from discovery.policy import should_accept


@pytest.mark.parametrize(
    "fingerprint, host, device_id, location, expected",
    [
        # both configured: both must match
        ("ABC", "10.0.0.5", "abc", "10.0.0.5", True),
        ("ABC", "10.0.0.5", "abc", "10.0.0.6", False),
        ("ABC", "10.0.0.5", "xyz", "10.0.0.5", False),
        # fingerprint only
        ("ABC", "", " abc ", "10.9.9.9", True),
        ("ABC", "", "abd", "10.9.9.9", False),
        # host only
        ("", "10.0.0.5", "anything", "10.0.0.5", True),
        ("", "10.0.0.5", "anything", "10.0.0.50", False),
        # neither: first seen wins
        ("", "", "whatever", "192.168.1.1", True),
        ("  ", " ", "", "", True),
    ],
)
def test_precedence_table(fingerprint, host, device_id, location, expected):
    candidate = make_announcement(location, device_id)
    assert should_accept(candidate, fingerprint, host) is expected


def test_host_comparison_ignores_case_and_whitespace():
    candidate = make_announcement(" MGMT.Example.COM\n", "fp")
    assert should_accept(candidate, "", "mgmt.example.com")


def test_empty_configuration_accepts_first_candidate_after_pairing_only_that_host():
    first = make_announcement("10.10.10.1", "fp-A")
    second = make_announcement("10.10.10.2", "fp-B")

    assert should_accept(first, "", "")
    # once the first candidate is recorded as host, the host branch applies
    assert not should_accept(second, "", first.location)
