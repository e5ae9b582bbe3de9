"""Shared pytest fixtures for protos-dns-namecheap tests."""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from pathlib import Path
from typing import Any

import pytest

from protos_dns_namecheap.config import (
    Config,
    NamecheapConfig,
    ProtosConfig,
    SettingsConfig,
)
from protos_dns_namecheap.models import DNSRecordValue, DNSResource, HostRecord, Resource


@pytest.fixture
def sample_config() -> Config:
    """Create a sample configuration for testing."""
    return Config(
        namecheap=NamecheapConfig(
            username="test-user",
            api_user="test-apiuser",
            token="test-token",
            domain="example.com",
        ),
        protos=ProtosConfig(
            url="http://protos.local:8080/",
            app_id="test-appid",
        ),
        settings=SettingsConfig(
            interval=60,
            verify_delay=0.0,
            max_verify_attempts=5,
        ),
    )


@pytest.fixture
def sample_config_yaml(tmp_path: Path) -> Path:
    """Create a sample YAML config file for testing."""
    config_content = """
namecheap:
  username: "test-user"
  api_user: "test-apiuser"
  token: "test-token"
  domain: "example.com"

protos:
  url: "http://protos.local:8080/"
  app_id: "test-appid"

settings:
  interval: 60
  verify_delay: 1.5
"""
    config_file = tmp_path / "config.yaml"
    config_file.write_text(config_content)
    return config_file


def dns_resource(
    resource_id: str,
    host: str = "@",
    type: str = "A",
    value: str = "1.2.3.4",
    ttl: int = 1800,
) -> DNSResource:
    return DNSResource(
        id=resource_id,
        type="dns",
        value=DNSRecordValue(host=host, type=type, value=value, ttl=ttl),
    )


class FakeProtos:
    """In-memory Protos resource source that records status reports."""

    def __init__(self, resources: Mapping[str, Resource] | None = None) -> None:
        self.resources = dict(resources or {})
        self.fail_fetch: Exception | None = None
        self.statuses: list[tuple[list[str], str]] = []

    def get_resources(self) -> Mapping[str, Resource]:
        if self.fail_fetch is not None:
            raise self.fail_fetch
        return self.resources

    def set_status_batch(self, resource_ids: Iterable[str], status: str) -> int:
        ids = sorted(resource_ids)
        self.statuses.append((ids, status))
        return len(ids)


class FakeRegistrar:
    """In-memory registrar holding one domain's host set."""

    def __init__(self, hosts: Sequence[HostRecord] | None = None) -> None:
        self.hosts = list(hosts or [])
        self.fail_fetch: Exception | None = None
        self.fail_writes: list[Exception] = []
        self.writes: list[list[HostRecord]] = []

    def get_hosts(self, domain: str) -> list[HostRecord]:
        if self.fail_fetch is not None:
            raise self.fail_fetch
        return list(self.hosts)

    def set_hosts(self, domain: str, hosts: Sequence[HostRecord]) -> None:
        self.writes.append(list(hosts))
        if self.fail_writes:
            raise self.fail_writes.pop(0)
        self.hosts = list(hosts)


class FakeVerifier:
    """Verifier that reports records live after a number of checks."""

    def __init__(self, live_after: int | None = 1) -> None:
        self.live_after = live_after
        self.checks: list[HostRecord] = []

    def record_is_live(self, record: HostRecord) -> bool:
        self.checks.append(record)
        if self.live_after is None:
            return False
        return len(self.checks) >= self.live_after


@pytest.fixture
def fake_protos() -> FakeProtos:
    return FakeProtos({"res-1": dns_resource("res-1")})


@pytest.fixture
def fake_registrar() -> FakeRegistrar:
    return FakeRegistrar()


@pytest.fixture
def namecheap_ok() -> Any:
    """Build an OK Namecheap API response around a command result."""

    def build(command: str, body: str) -> str:
        return f"""<?xml version="1.0" encoding="utf-8"?>
<ApiResponse Status="OK" xmlns="http://api.namecheap.com/xml.response">
  <Errors />
  <RequestedCommand>{command}</RequestedCommand>
  <CommandResponse Type="{command}">
    {body}
  </CommandResponse>
</ApiResponse>"""

    return build


@pytest.fixture
def namecheap_error() -> Any:
    """Build an ERROR Namecheap API response."""

    def build(number: str, message: str) -> str:
        return f"""<?xml version="1.0" encoding="utf-8"?>
<ApiResponse Status="ERROR" xmlns="http://api.namecheap.com/xml.response">
  <Errors>
    <Error Number="{number}">{message}</Error>
  </Errors>
</ApiResponse>"""

    return build
