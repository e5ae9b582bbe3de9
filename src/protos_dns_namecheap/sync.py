"""One reconciliation cycle between Protos resources and Namecheap hosts."""

from __future__ import annotations

import threading
import time
from collections.abc import Iterable, Mapping, Sequence
from typing import Protocol

import structlog

from .compare import records_equivalent
from .config import SettingsConfig
from .models import DNSResource, HostRecord, ReconciliationOutcome, Resource
from .protos import STATUS_APPLIED
from .retry import backoff_delay
from .verify import SUPPORTED_TYPES, DNSVerifier

logger = structlog.get_logger()

CACHE_BUST_HOST = "protos-cache-bust"
CACHE_BUST_TTL = 60


class ResourceSource(Protocol):
    def get_resources(self) -> Mapping[str, Resource]: ...

    def set_status_batch(self, resource_ids: Iterable[str], status: str) -> int: ...


class Registrar(Protocol):
    def get_hosts(self, domain: str) -> list[HostRecord]: ...

    def set_hosts(self, domain: str, hosts: Sequence[HostRecord]) -> None: ...


class UnexpectedResourceError(TypeError):
    """A resource handed to the DNS provider is not a DNS resource."""


class VerificationStall(Exception):
    """Written records did not show up in DNS within the attempt limit."""


class PropagationInterrupted(Exception):
    """Shutdown was requested while waiting for propagation."""


def project_resources(resources: Mapping[str, Resource]) -> list[HostRecord]:
    """Project Protos DNS resources into the registrar's host record shape.

    Raises:
        UnexpectedResourceError: If any resource is not a DNS resource
    """
    hosts: list[HostRecord] = []
    for resource_id, resource in resources.items():
        if not isinstance(resource, DNSResource):
            raise UnexpectedResourceError(
                f"Resource {resource_id} has type '{resource.type}', expected 'dns'"
            )
        hosts.append(resource.to_host_record())
    return hosts


def cache_bust_record() -> HostRecord:
    """A throwaway TXT record whose value changes on every call."""
    return HostRecord(
        name=CACHE_BUST_HOST,
        type="TXT",
        address=str(time.time_ns()),
        ttl=CACHE_BUST_TTL,
    )


class Synchronizer:
    """Keeps the registrar host set converged on the Protos DNS resources.

    Each call to run_cycle is independent: both record sets are fetched
    fresh, and nothing is carried over from earlier cycles.
    """

    def __init__(
        self,
        domain: str,
        protos: ResourceSource,
        registrar: Registrar,
        verifier: DNSVerifier,
        settings: SettingsConfig,
        stop_event: threading.Event | None = None,
    ) -> None:
        self.domain = domain
        self.protos = protos
        self.registrar = registrar
        self.verifier = verifier
        self.settings = settings
        self.stop_event = stop_event or threading.Event()

    def run_cycle(self) -> ReconciliationOutcome:
        """Run a single reconciliation cycle."""
        try:
            resources = self.protos.get_resources()
            live = self.registrar.get_hosts(self.domain)
            desired = project_resources(resources)
        except Exception as e:
            logger.error("Failed to fetch records, skipping cycle", error=str(e))
            return ReconciliationOutcome(fetch_error=str(e))

        if records_equivalent(desired, live):
            logger.info("Records are in sync", domain=self.domain, count=len(desired))
            self.protos.set_status_batch(resources.keys(), STATUS_APPLIED)
            return ReconciliationOutcome(in_sync=True)

        logger.info(
            "Records are out of sync, replacing all hosts",
            domain=self.domain,
            desired=len(desired),
            live=len(live),
        )
        try:
            self.registrar.set_hosts(self.domain, desired)
        except Exception as e:
            logger.error("Failed to write hosts", domain=self.domain, error=str(e))
            return ReconciliationOutcome(write_attempted=True, write_error=str(e))

        try:
            self.await_propagation(desired)
        except VerificationStall as e:
            logger.error("Verification stalled", domain=self.domain, error=str(e))
            self._clean_write(desired)
            return ReconciliationOutcome(write_attempted=True, stalled=True)
        except PropagationInterrupted:
            logger.warning("Shutdown requested during verification", domain=self.domain)
            self._clean_write(desired)
            return ReconciliationOutcome(write_attempted=True)

        # Drop the cache-busting record again
        try:
            self.registrar.set_hosts(self.domain, desired)
        except Exception as e:
            logger.error("Failed to write final hosts", domain=self.domain, error=str(e))
            return ReconciliationOutcome(write_attempted=True, write_error=str(e), verified=True)

        self.protos.set_status_batch(resources.keys(), STATUS_APPLIED)
        logger.info("Records verified and reported", domain=self.domain, count=len(desired))
        return ReconciliationOutcome(write_attempted=True, verified=True)

    def pending_records(self, desired: Sequence[HostRecord]) -> list[HostRecord]:
        """Return the desired records that are not yet observable in DNS."""
        return [
            record
            for record in desired
            if record.type.upper() in SUPPORTED_TYPES and not self.verifier.record_is_live(record)
        ]

    def await_propagation(self, desired: Sequence[HostRecord]) -> int:
        """Block until every verifiable desired record resolves.

        While records are missing, a fresh cache-busting TXT record is added
        to the set and the whole set is rewritten, so the zone appears changed
        and stale cached answers get replaced.

        Returns:
            Number of checks performed

        Raises:
            VerificationStall: If max_verify_attempts checks all saw missing records
            PropagationInterrupted: If the stop event is set while waiting
        """
        skipped = sorted({r.type for r in desired if r.type.upper() not in SUPPORTED_TYPES})
        if skipped:
            logger.info("Skipping verification for unsupported types", types=skipped)

        max_attempts = self.settings.max_verify_attempts
        attempt = 0
        while True:
            attempt += 1
            pending = self.pending_records(desired)
            logger.info(
                "Verification attempt",
                domain=self.domain,
                attempt=attempt,
                pending=len(pending),
            )
            if not pending:
                return attempt

            if max_attempts is not None and attempt >= max_attempts:
                raise VerificationStall(
                    f"{len(pending)} record(s) not live after {attempt} attempt(s)"
                )

            try:
                self.registrar.set_hosts(self.domain, [*desired, cache_bust_record()])
            except Exception as e:
                logger.warning("Cache-busting write failed", domain=self.domain, error=str(e))

            delay = backoff_delay(
                attempt - 1,
                self.settings.verify_delay,
                self.settings.verify_max_delay,
                factor=self.settings.verify_backoff,
            )
            logger.debug("Waiting before next verification", delay=delay)
            if self.stop_event.wait(delay):
                raise PropagationInterrupted()

    def _clean_write(self, desired: Sequence[HostRecord]) -> None:
        """Best-effort write of the clean set without the cache-busting record."""
        try:
            self.registrar.set_hosts(self.domain, desired)
        except Exception as e:
            logger.error("Failed to remove cache-busting record", domain=self.domain, error=str(e))
