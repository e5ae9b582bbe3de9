"""DNS verification by querying a public recursive resolver."""

from __future__ import annotations

import dns.exception
import dns.resolver
import structlog

from .compare import normalize_value
from .models import ROOT_HOST, HostRecord

logger = structlog.get_logger()

DEFAULT_RESOLVER = "8.8.8.8"

SUPPORTED_TYPES = frozenset({"A", "TXT", "MX"})


class UnsupportedRecordType(ValueError):
    """Raised when asked to resolve a record type the verifier cannot compare."""


class RecordNotFound(Exception):
    """The resolver answered, but without records for the name and type."""


class DNSQueryError(Exception):
    """The query itself failed (timeout, SERVFAIL, unreachable server)."""


def build_fqdn(host: str, domain: str) -> str:
    """Build the fully-qualified name for a registrar host entry."""
    domain = domain.rstrip(".")
    if host in ("", ROOT_HOST):
        return domain
    return f"{host}.{domain}"


def _extract_value(rdtype: str, rdata: object) -> str:
    if rdtype == "A":
        return rdata.address  # type: ignore[attr-defined]
    if rdtype == "MX":
        return rdata.exchange.to_text()  # type: ignore[attr-defined]
    # Long TXT values arrive split into 255-byte strings
    return b"".join(rdata.strings).decode(errors="replace")  # type: ignore[attr-defined]


class DNSVerifier:
    """Checks that records written to the registrar are visible in public DNS.

    Every query goes to a single fixed upstream resolver, so the answer
    reflects what clients of that resolver see rather than what the
    registrar claims.
    """

    def __init__(self, domain: str, server: str = DEFAULT_RESOLVER, timeout: float = 5.0) -> None:
        self.domain = domain
        self.server = server
        self.timeout = timeout

    def _resolver(self) -> dns.resolver.Resolver:
        resolver = dns.resolver.Resolver(configure=False)
        resolver.nameservers = [self.server]
        resolver.lifetime = self.timeout
        return resolver

    def resolve(self, fqdn: str, record_type: str) -> list[str]:
        """Resolve ``fqdn`` and return the comparable value of each answer.

        Args:
            fqdn: Fully-qualified name to query
            record_type: One of A, TXT or MX

        Returns:
            Answer values: addresses for A, unquoted text for TXT and the
            exchange host (without priority) for MX

        Raises:
            UnsupportedRecordType: If record_type is not A, TXT or MX
            RecordNotFound: If the answer section is empty or the name does not exist
            DNSQueryError: If the query fails
        """
        rdtype = record_type.upper()
        if rdtype not in SUPPORTED_TYPES:
            raise UnsupportedRecordType(f"Cannot verify record type '{record_type}'")

        try:
            answers = self._resolver().resolve(fqdn, rdtype)
        except (dns.resolver.NXDOMAIN, dns.resolver.NoAnswer) as e:
            raise RecordNotFound(f"No {rdtype} records for {fqdn}") from e
        except dns.exception.DNSException as e:
            raise DNSQueryError(f"{rdtype} query for {fqdn} via {self.server} failed: {e}") from e

        values = [_extract_value(rdtype, rdata) for rdata in answers]
        if not values:
            raise RecordNotFound(f"No {rdtype} records for {fqdn}")
        return values

    def record_is_live(self, record: HostRecord) -> bool:
        """Check whether a desired record is observable via DNS.

        Never raises; lookup failures are logged and count as not live.
        """
        fqdn = build_fqdn(record.name, self.domain)

        try:
            values = self.resolve(fqdn, record.type)
        except RecordNotFound:
            logger.info("Record not found in DNS yet", fqdn=fqdn, type=record.type)
            return False
        except (UnsupportedRecordType, DNSQueryError) as e:
            logger.warning("DNS verification error", fqdn=fqdn, type=record.type, error=str(e))
            return False

        expected = normalize_value(record.address)
        if expected in {normalize_value(value) for value in values}:
            logger.debug("Record is live", fqdn=fqdn, type=record.type, value=record.address)
            return True

        logger.info(
            "DNS verification mismatch",
            fqdn=fqdn,
            type=record.type,
            expected=record.address,
            actual=sorted(values),
        )
        return False
