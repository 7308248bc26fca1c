"""Resources handed to the crawler, annotated with what is known about them."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class Protocol(Enum):
    """Protocol through which a resource is reachable."""

    INVALID = "invalid"
    IPFS = "ipfs"


class ResourceType(Enum):
    """Type of a resource, as far as it is known."""

    UNDEFINED = "undefined"
    FILE = "file"
    DIRECTORY = "directory"
    UNSUPPORTED = "unsupported"
    PARTIAL = "partial"


class Source(Enum):
    """Where knowledge of a resource came from."""

    UNKNOWN = "unknown"
    DIRECTORY = "directory"
    SNIFFER = "sniffer"
    USER = "user"
    MANUAL = "manual"


@dataclass
class Resource:
    """A resource identified by protocol and identifier."""

    protocol: Protocol
    id: str

    def __str__(self) -> str:
        return f"{self.protocol.value}://{self.id}"


@dataclass
class Reference:
    """A named reference from a parent resource."""

    parent: Resource | None = None
    name: str = ""

    def __str__(self) -> str:
        if self.parent is None:
            return self.name
        return f"{self.parent}/{self.name}"


@dataclass
class AnnotatedResource:
    """A resource together with its source, reference, type and size."""

    resource: Resource
    source: Source = Source.UNKNOWN
    reference: Reference = field(default_factory=Reference)
    type: ResourceType = ResourceType.UNDEFINED
    size: int = 0

    @property
    def id(self) -> str:
        return self.resource.id

    @property
    def protocol(self) -> Protocol:
        return self.resource.protocol

    def __str__(self) -> str:
        return str(self.resource)