"""Namecheap registrar client for the XML API."""

from __future__ import annotations

import xml.etree.ElementTree as ET
from collections.abc import Sequence
from dataclasses import dataclass, field

import httpx
import structlog

from .config import NamecheapConfig
from .models import HostRecord
from .ratelimit import RateLimiter
from .retry import retry_with_backoff

logger = structlog.get_logger()

PRODUCTION_URL = "https://api.namecheap.com/xml.response"
SANDBOX_URL = "https://api.sandbox.namecheap.com/xml.response"

# Retryable HTTP status codes
RETRYABLE_STATUS_CODES = (429, 500, 502, 503, 504)

# Registrar error numbers meaning the domain is unknown to the account
DOMAIN_NOT_FOUND_ERRORS = ("2019166", "2016166")


class NamecheapAPIError(Exception):
    """Error returned by the Namecheap API or its HTTP transport."""

    def __init__(
        self,
        message: str,
        number: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.number = number
        self.status_code = status_code


class DomainNotFoundError(NamecheapAPIError):
    """The domain does not exist in the Namecheap account."""


@dataclass
class DomainInfo:
    name: str
    nameservers: list[str] = field(default_factory=list)
    is_using_our_dns: bool = False


def _is_retryable(exc: Exception) -> bool:
    """Check if exception is retryable."""
    if isinstance(exc, httpx.TransportError):
        return True
    if isinstance(exc, NamecheapAPIError):
        return exc.status_code in RETRYABLE_STATUS_CODES
    return False


def split_domain(domain: str) -> tuple[str, str]:
    """Split a domain into Namecheap's SLD and TLD parts (``example``, ``co.uk``)."""
    sld, sep, tld = domain.strip(".").partition(".")
    if not sep or not sld or not tld:
        raise ValueError(f"Invalid domain '{domain}'")
    return sld, tld


def _strip_namespaces(root: ET.Element) -> ET.Element:
    for elem in root.iter():
        elem.tag = elem.tag.rpartition("}")[2]
    return root


def parse_response(text: str) -> ET.Element:
    """Parse an API response and return its CommandResponse element.

    Raises:
        NamecheapAPIError: If the response status is ERROR or it cannot be parsed
        DomainNotFoundError: If the error refers to an unknown domain
    """
    try:
        root = _strip_namespaces(ET.fromstring(text))
    except ET.ParseError as e:
        raise NamecheapAPIError(f"Malformed API response: {e}") from e

    if root.get("Status", "").upper() != "OK":
        error = root.find("Errors/Error")
        number = error.get("Number") if error is not None else None
        message = (error.text or "").strip() if error is not None else "Unknown API error"
        if number in DOMAIN_NOT_FOUND_ERRORS or "domain not found" in message.lower():
            raise DomainNotFoundError(message, number=number)
        raise NamecheapAPIError(message, number=number)

    command_response = root.find("CommandResponse")
    if command_response is None:
        raise NamecheapAPIError("API response without CommandResponse")
    return command_response


def host_params(hosts: Sequence[HostRecord]) -> dict[str, str]:
    """Build the indexed setHosts parameters for a full host set."""
    params: dict[str, str] = {}
    for i, host in enumerate(hosts, start=1):
        params[f"HostName{i}"] = host.name
        params[f"RecordType{i}"] = host.type.upper()
        params[f"Address{i}"] = host.address
        params[f"TTL{i}"] = str(host.ttl)
        if host.type.upper() == "MX":
            params[f"MXPref{i}"] = str(host.mx_pref)
    if any(host.type.upper() == "MX" for host in hosts):
        params["EmailType"] = "MX"
    return params


class NamecheapClient:
    """Client for the Namecheap XML API.

    Namecheap only supports replacing the complete host set of a domain, so
    the client exposes a read of all hosts and a full-set write.
    """

    def __init__(self, config: NamecheapConfig) -> None:
        self.config = config
        self.base_url = SANDBOX_URL if config.sandbox else PRODUCTION_URL
        self._client = httpx.Client(timeout=30.0)
        self._rate_limiter = RateLimiter()

    def close(self) -> None:
        """Close the HTTP client."""
        self._client.close()

    def __enter__(self) -> NamecheapClient:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def _call(self, command: str, params: dict[str, str], post: bool = False) -> ET.Element:
        payload = {
            "ApiUser": self.config.api_user,
            "ApiKey": self.config.token,
            "UserName": self.config.username,
            "ClientIp": self.config.client_ip,
            "Command": command,
            **params,
        }

        self._rate_limiter.wait()
        logger.debug("Calling Namecheap API", command=command)

        if post:
            response = self._client.post(self.base_url, data=payload)
        else:
            response = self._client.get(self.base_url, params=payload)

        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise NamecheapAPIError(
                f"{command} failed with HTTP {response.status_code}",
                status_code=response.status_code,
            ) from e

        return parse_response(response.text)

    @retry_with_backoff(
        max_retries=3,
        retryable_exceptions=(NamecheapAPIError, httpx.TransportError),
        should_retry=_is_retryable,
    )
    def get_domain_info(self, domain: str) -> DomainInfo:
        """Get registration details for a domain.

        Raises:
            DomainNotFoundError: If the account does not hold the domain
        """
        result = self._call("namecheap.domains.getInfo", {"DomainName": domain}).find(
            "DomainGetInfoResult"
        )
        if result is None:
            raise DomainNotFoundError(f"Domain '{domain}' not found")

        dns_details = result.find("DnsDetails")
        nameservers: list[str] = []
        using_our_dns = False
        if dns_details is not None:
            nameservers = [(ns.text or "").strip() for ns in dns_details.findall("Nameserver")]
            using_our_dns = dns_details.get("IsUsingOurDNS", "").lower() == "true"

        return DomainInfo(
            name=result.get("DomainName", domain),
            nameservers=nameservers,
            is_using_our_dns=using_our_dns,
        )

    @retry_with_backoff(
        max_retries=3,
        retryable_exceptions=(NamecheapAPIError, httpx.TransportError),
        should_retry=_is_retryable,
    )
    def get_hosts(self, domain: str) -> list[HostRecord]:
        """Get the complete live host set of a domain."""
        sld, tld = split_domain(domain)
        result = self._call("namecheap.domains.dns.getHosts", {"SLD": sld, "TLD": tld}).find(
            "DomainDNSGetHostsResult"
        )
        if result is None:
            raise NamecheapAPIError("getHosts response without DomainDNSGetHostsResult")

        hosts = [
            HostRecord(
                name=host.get("Name", ""),
                type=host.get("Type", ""),
                address=host.get("Address", ""),
                ttl=int(host.get("TTL") or 1800),
                mx_pref=int(host.get("MXPref") or 10),
            )
            for host in result.findall("host")
        ]
        logger.debug("Fetched registrar hosts", domain=domain, count=len(hosts))
        return hosts

    @retry_with_backoff(
        max_retries=3,
        retryable_exceptions=(NamecheapAPIError, httpx.TransportError),
        should_retry=_is_retryable,
    )
    def set_hosts(self, domain: str, hosts: Sequence[HostRecord]) -> None:
        """Replace the complete host set of a domain.

        Raises:
            NamecheapAPIError: If the registrar rejects the write
        """
        sld, tld = split_domain(domain)
        params = {"SLD": sld, "TLD": tld, **host_params(hosts)}
        result = self._call("namecheap.domains.dns.setHosts", params, post=True).find(
            "DomainDNSSetHostsResult"
        )
        if result is None or result.get("IsSuccess", "").lower() != "true":
            raise NamecheapAPIError(f"setHosts was not successful for {domain}")

        logger.info("Replaced registrar hosts", domain=domain, count=len(hosts))
