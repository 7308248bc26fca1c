"""Metadata extractors that enrich file documents using remote services."""

from __future__ import annotations

import asyncio
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote_plus

import httpx

from .documents import NSFW, File
from .errors import FileTooLargeError, RequestError, UnexpectedResponseError
from .resource import AnnotatedResource, Protocol

log = logging.getLogger(__name__)

KIB = 1024
MIB = 1024 * KIB
GIB = 1024 * MIB


class Extractor(ABC):
    """Extracts metadata from a resource into its document properties."""

    @abstractmethod
    async def extract(self, resource: AnnotatedResource, properties: Any) -> None:
        """Update properties with extracted metadata, raising on failure."""


def validate_max_size(resource: AnnotatedResource, max_size: int) -> None:
    """Raise FileTooLargeError when the resource is larger than max_size bytes."""
    if resource.size > max_size:
        raise FileTooLargeError(resource.size)


async def _get_json(http: httpx.AsyncClient, url: str) -> Any:
    try:
        response = await http.get(url)
    except httpx.HTTPError as exc:
        raise RequestError(exc) from exc
    if response.status_code != 200:
        raise UnexpectedResponseError(f"status {response.status_code} from {url}")
    try:
        return response.json()
    except ValueError as exc:
        raise UnexpectedResponseError(f"decoding error {exc}") from exc


@dataclass
class TikaConfig:
    """Configuration of the ipfs-tika extractor."""

    tika_extractor_url: str = "http://localhost:8081"
    request_timeout: float = 300.0
    max_file_size: int = 4 * GIB


class TikaExtractor(Extractor):
    """Extracts content and metadata using an ipfs-tika server."""

    def __init__(
        self,
        config: TikaConfig | None,
        http: httpx.AsyncClient | None,
        protocol: Any,
    ) -> None:
        self.config = config if config is not None else TikaConfig()
        self._http = http if http is not None else httpx.AsyncClient()
        self._protocol = protocol

    def extract_url(self, resource: AnnotatedResource) -> str:
        """The extraction URL for the resource's gateway URL."""
        gateway_url = self._protocol.gateway_url(resource)
        return f"{self.config.tika_extractor_url}/extract?url={quote_plus(gateway_url)}"

    async def extract(self, resource: AnnotatedResource, properties: Any) -> None:
        """Merge the server's JSON answer into the file properties."""
        validate_max_size(resource, self.config.max_file_size)

        async with asyncio.timeout(self.config.request_timeout):
            data = await _get_json(self._http, self.extract_url(resource))

        try:
            properties.merge_json(data)
        except ValueError as exc:
            raise UnexpectedResponseError(exc) from exc

        log.info("Got tika metadata for '%s'", resource)


@dataclass
class NSFWConfig:
    """Configuration of the nsfw-server extractor."""

    nsfw_server_url: str = "http://localhost:3000"
    request_timeout: float = 300.0
    max_file_size: int = 1 * GIB


_COMPATIBLE_MIMES = tuple(
    re.compile(pattern) for pattern in ("^image/jpeg", "^image/png", "^image/gif", "^image/bmp")
)


def _metadata_string(file: File, name: str) -> str:
    value = file.metadata.get(name)
    if value is None:
        return ""
    if isinstance(value, list):
        if not value:
            raise TypeError(f"empty list for field {name} of metadata")
        value = value[0]
    if not isinstance(value, str):
        raise TypeError(f"invalid type {type(value).__name__} for field {name} of metadata")
    return value


def _is_compatible(resource: AnnotatedResource, file: File) -> bool:
    if resource.protocol is not Protocol.IPFS:
        return False
    content_type = _metadata_string(file, "Content-Type")
    if not content_type:
        return False
    return any(pattern.match(content_type) for pattern in _COMPATIBLE_MIMES)


class NSFWExtractor(Extractor):
    """Classifies images using an nsfw-server."""

    def __init__(self, config: NSFWConfig | None, http: httpx.AsyncClient | None) -> None:
        self.config = config if config is not None else NSFWConfig()
        self._http = http if http is not None else httpx.AsyncClient()

    def extract_url(self, resource: AnnotatedResource) -> str:
        """The classification URL for the resource."""
        return f"{self.config.nsfw_server_url}/classify/{resource.id}"

    async def extract(self, resource: AnnotatedResource, properties: Any) -> None:
        """Set the NSFW classification of compatible image files."""
        validate_max_size(resource, self.config.max_file_size)

        if not isinstance(properties, File):
            raise TypeError(f"expected File properties, got {type(properties).__name__}")

        if not _is_compatible(resource, properties):
            return

        async with asyncio.timeout(self.config.request_timeout):
            data = await _get_json(self._http, self.extract_url(resource))

        try:
            nsfw = NSFW.from_dict(data)
        except ValueError as exc:
            raise UnexpectedResponseError(f"decoding error {exc}") from exc

        properties.nsfw = nsfw
        log.info("Got nsfw metadata for '%s'", resource)