"""Main entry point for protos-dns-namecheap."""

from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading
from collections.abc import Callable, Sequence
from http.server import HTTPServer
from pathlib import Path
from typing import Any

import structlog
from pydantic import ValidationError

from . import __version__
from .config import DEFAULT_CONFIG_PATH, Config, load_config_auto
from .health import HealthState, start_health_server
from .models import ReconciliationOutcome
from .namecheap import DomainNotFoundError, NamecheapClient
from .protos import PROVIDER_TYPE, ProtosClient, ProviderAlreadyRegistered
from .sync import Synchronizer
from .verify import DNSVerifier

LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}


class FatalStartupError(Exception):
    """The service cannot start: registration or domain lookup failed."""


def configure_logging(level: str) -> None:
    """Configure structlog for stdout logging."""
    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            LOG_LEVELS.get(level.lower(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="protos-dns-namecheap",
        description="Namecheap DNS provider for Protos",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    commands = parser.add_subparsers(dest="command", required=True)

    start = commands.add_parser("start", help="start the Namecheap DNS service")
    start.add_argument(
        "--config",
        "-c",
        type=Path,
        help=f"Path to config file (default: {DEFAULT_CONFIG_PATH} if exists)",
    )
    start.add_argument("--username", help="Namecheap username")
    start.add_argument("--apiuser", help="Namecheap API user")
    start.add_argument("--token", help="Namecheap API token")
    start.add_argument("--domain", help="Namecheap hosted domain")
    start.add_argument("--appid", help="Protos application ID")
    start.add_argument("--protosurl", help="URL of the Protos API (default: http://protos:8080/)")
    start.add_argument(
        "--sandbox",
        action="store_true",
        default=None,
        help="Use the Namecheap sandbox API",
    )
    start.add_argument("--interval", type=int, help="Check interval in seconds (default: 30)")
    start.add_argument(
        "--loglevel",
        choices=sorted(LOG_LEVELS),
        help="Logging level (default: info)",
    )
    start.add_argument(
        "--once",
        action="store_true",
        help="Run a single cycle, deregister and exit",
    )
    return parser.parse_args(argv)


def cli_overrides(args: argparse.Namespace) -> dict[str, dict[str, Any]]:
    """Map the command line flags that were given onto config sections."""
    sections = {
        "namecheap": {
            "username": args.username,
            "api_user": args.apiuser,
            "token": args.token,
            "domain": args.domain,
            "sandbox": args.sandbox,
        },
        "protos": {"url": args.protosurl, "app_id": args.appid},
        "settings": {"interval": args.interval, "log_level": args.loglevel},
    }
    overrides: dict[str, dict[str, Any]] = {}
    for section, values in sections.items():
        given = {key: value for key, value in values.items() if value is not None}
        if given:
            overrides[section] = given
    return overrides


def make_ready_check(health: HealthState, protos: ProtosClient) -> Callable[[], bool]:
    """Readiness: a converged cycle has happened and Protos still answers.

    Namecheap is not queried, so readiness checks spend none of its API budget.
    """

    def ready() -> bool:
        return health.is_ready() and protos.health_check(timeout=2.0)

    return ready


class GracefulShutdown:
    """Handle graceful shutdown on SIGTERM/SIGINT."""

    def __init__(self) -> None:
        self.event = threading.Event()
        signal.signal(signal.SIGTERM, self._handler)
        signal.signal(signal.SIGINT, self._handler)

    @property
    def should_exit(self) -> bool:
        return self.event.is_set()

    def _handler(self, signum: int, frame: object) -> None:
        logger = structlog.get_logger()
        logger.info("Received shutdown signal", signal=signum)
        self.event.set()


class ReconciliationLoop:
    """Runs reconciliation cycles back to back for the lifetime of the process.

    Cycles never overlap: the next one starts only after the previous cycle,
    including any propagation wait, has returned.
    """

    def __init__(
        self,
        config: Config,
        protos: ProtosClient,
        registrar: NamecheapClient,
        synchronizer: Synchronizer,
        stop_event: threading.Event,
        health: HealthState | None = None,
    ) -> None:
        self.config = config
        self.protos = protos
        self.registrar = registrar
        self.synchronizer = synchronizer
        self.stop_event = stop_event
        self.health = health
        self.iteration = 0

    def start(self) -> None:
        """Register with Protos and check that the domain exists.

        Raises:
            FatalStartupError: If registration or the domain lookup fails
        """
        logger = structlog.get_logger()
        domain = self.config.namecheap.domain

        logger.info("Registering as DNS provider", protos=self.config.protos.url)
        try:
            self.protos.register_provider(PROVIDER_TYPE)
        except ProviderAlreadyRegistered:
            logger.info("Already registered as DNS provider")
        except Exception as e:
            raise FatalStartupError(f"Failed to register as DNS provider: {e}") from e

        logger.info("Checking domain", domain=domain)
        try:
            info = self.registrar.get_domain_info(domain)
        except DomainNotFoundError as e:
            raise FatalStartupError(f"Can't find domain {domain}: {e}") from e
        except Exception as e:
            raise FatalStartupError(f"Failed to look up domain {domain}: {e}") from e

        logger.info("Found domain", domain=info.name, nameservers=info.nameservers)

    def run_once(self) -> ReconciliationOutcome:
        logger = structlog.get_logger()
        self.iteration += 1
        logger.info("Starting reconciliation cycle", iteration=self.iteration)

        outcome = self.synchronizer.run_cycle()
        if self.health is not None:
            self.health.record(outcome)
        return outcome

    def run(self, once: bool = False) -> None:
        """Run cycles until the stop event is set (or once)."""
        logger = structlog.get_logger()
        interval = self.config.settings.interval

        while not self.stop_event.is_set():
            outcome = self.run_once()

            if once:
                logger.info("Single run complete, exiting")
                break

            logger.info(
                "Reconciliation cycle complete, sleeping",
                iteration=self.iteration,
                converged=outcome.converged,
                next_check_seconds=interval,
            )
            if self.stop_event.wait(interval):
                break

    def shutdown(self) -> None:
        """Deregister as DNS provider (best-effort)."""
        logger = structlog.get_logger()
        logger.info("Deregistering as DNS provider")
        try:
            self.protos.deregister_provider(PROVIDER_TYPE)
        except Exception as e:
            logger.error("Failed to deregister as DNS provider", error=str(e))


def main(argv: Sequence[str] | None = None) -> None:
    """Main entry point."""
    args = parse_args(argv)
    configure_logging(args.loglevel or "info")
    logger = structlog.get_logger()

    logger.info("protos-dns-namecheap starting", version=__version__)

    try:
        config, config_source = load_config_auto(args.config, cli_overrides(args))
        logger.info("Configuration loaded", source=config_source)
    except (ValidationError, ValueError, OSError) as e:
        # username, apiuser, token, domain and appid have no defaults
        logger.error("Failed to load configuration", error=str(e))
        sys.exit(1)

    configure_logging(config.settings.log_level)
    logger = structlog.get_logger()
    logger.info(
        "Starting with check interval",
        domain=config.namecheap.domain,
        interval=config.settings.interval,
        protos=config.protos.url,
        resolver=config.settings.resolver,
    )

    shutdown = GracefulShutdown()
    health = HealthState()
    health_server: HTTPServer | None = None

    with (
        ProtosClient(config.protos) as protos,
        NamecheapClient(config.namecheap) as namecheap,
    ):
        verifier = DNSVerifier(
            config.namecheap.domain,
            server=config.settings.resolver,
            timeout=config.settings.dns_timeout,
        )
        synchronizer = Synchronizer(
            config.namecheap.domain,
            protos,
            namecheap,
            verifier,
            config.settings,
            stop_event=shutdown.event,
        )
        loop = ReconciliationLoop(config, protos, namecheap, synchronizer, shutdown.event, health)

        try:
            loop.start()
        except FatalStartupError as e:
            logger.error("Fatal startup error", error=str(e))
            sys.exit(1)

        if config.settings.health_port:
            health_server = start_health_server(
                config.settings.health_port, health, make_ready_check(health, protos)
            )

        try:
            loop.run(once=args.once)
        finally:
            loop.shutdown()
            if health_server:
                health_server.shutdown()

    logger.info("Shutdown complete")


if __name__ == "__main__":
    main()
