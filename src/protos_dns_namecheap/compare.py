"""Tolerant comparison of desired and live registrar record sets."""

from __future__ import annotations

from collections.abc import Sequence

from .models import ROOT_HOST, HostRecord

# Namecheap rounds and caches TTLs, so exact equality is unreliable.
TTL_TOLERANCE = 120

# Record types Namecheap uses for the parking hosts of a fresh domain.
PLACEHOLDER_TYPES = frozenset({"", "CNAME", "URL", "URL301", "FRAME"})


def normalize_value(value: str) -> str:
    """Strip the trailing root-label dot from a record value."""
    return value.removesuffix(".")


def is_default_hosts(live: Sequence[HostRecord]) -> bool:
    """Check whether the live set is the registrar's untouched placeholder pair.

    A new Namecheap domain carries exactly two parking hosts, one for the
    root and one for ``www``.
    """
    if len(live) != 2:
        return False
    if {host.name.lower() for host in live} != {ROOT_HOST, "www"}:
        return False
    return all(host.type.upper() in PLACEHOLDER_TYPES for host in live)


def hosts_match(desired: HostRecord, live: HostRecord) -> bool:
    return (
        normalize_value(desired.address) == normalize_value(live.address)
        and desired.name.lower() == live.name.lower()
        and desired.type.lower() == live.type.lower()
        and abs(desired.ttl - live.ttl) < TTL_TOLERANCE
    )


def records_equivalent(desired: Sequence[HostRecord], live: Sequence[HostRecord]) -> bool:
    """Decide whether the live record set already reflects the desired one.

    Each desired record only needs at least one matching live record; a live
    record may satisfy several desired ones. Together with the cardinality
    check this is a presence test, not a one-to-one pairing.
    """
    if not desired and is_default_hosts(live):
        return True

    if len(desired) != len(live):
        return False

    matched = sum(1 for want in desired if any(hosts_match(want, have) for have in live))
    return matched >= len(desired)
