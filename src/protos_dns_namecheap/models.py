"""Record and resource models shared by the clients and the synchronizer."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

ROOT_HOST = "@"


class HostRecord(BaseModel):
    """A single host entry in the registrar's record set.

    Live records fetched from Namecheap and the projection of Protos DNS
    resources share this shape, since the registrar only accepts whole sets.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    type: str
    address: str
    ttl: int = 1800
    mx_pref: int = 10


class DNSRecordValue(BaseModel):
    """The DNS payload of a Protos resource."""

    host: str
    type: str
    value: str
    ttl: int = 300


class DNSResource(BaseModel):
    """A desired DNS record as declared by Protos."""

    id: str
    type: Literal["dns"]
    status: str = ""
    value: DNSRecordValue

    def to_host_record(self) -> HostRecord:
        return HostRecord(
            name=self.value.host,
            type=self.value.type,
            address=self.value.value,
            ttl=self.value.ttl,
        )


class CertificateResource(BaseModel):
    id: str
    type: Literal["certificate"]
    status: str = ""
    value: dict[str, Any] = Field(default_factory=dict)


class MailResource(BaseModel):
    id: str
    type: Literal["mail"]
    status: str = ""
    value: dict[str, Any] = Field(default_factory=dict)


Resource = Annotated[
    DNSResource | CertificateResource | MailResource,
    Field(discriminator="type"),
]

resource_map_adapter: TypeAdapter[dict[str, Resource]] = TypeAdapter(dict[str, Resource])


@dataclass(frozen=True)
class ReconciliationOutcome:
    """Result of a single reconciliation cycle."""

    in_sync: bool = False
    write_attempted: bool = False
    write_error: str | None = None
    verified: bool = False
    stalled: bool = False
    fetch_error: str | None = None

    @property
    def converged(self) -> bool:
        """True when the registrar reflects the desired state."""
        return self.in_sync or self.verified
