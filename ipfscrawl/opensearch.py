"""OpenSearch-backed indexes: buffered bulk writes and batched reads."""

from __future__ import annotations

import asyncio
import json
import logging
import random
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

import httpx

from .bulkgetter import BulkGetter, GetRequest, HTTPError
from .errors import RequestError, UnexpectedResponseError
from .index import Index

log = logging.getLogger(__name__)

DEFAULT_URL = "http://localhost:9200"
DEFAULT_FLUSH_BYTES = 5 * 1024 * 1024
DEFAULT_FLUSH_INTERVAL = 30.0

_RETRY_ON_STATUS = frozenset({429, 502, 503, 504})
_MAX_RETRIES = 3
_BACKOFF_MIN = 0.1
_BACKOFF_MAX = 10.0
_BACKOFF_FACTOR = 2.0


def _backoff(attempt: int) -> float:
    """Jittered exponential backoff for the given retry attempt, counted from 1."""
    ceiling = min(_BACKOFF_MIN * _BACKOFF_FACTOR ** (attempt - 1), _BACKOFF_MAX)
    return random.uniform(_BACKOFF_MIN, max(ceiling, _BACKOFF_MIN))


class _RetryingTransport(httpx.AsyncBaseTransport):
    """Retries requests on overload statuses and timeouts."""

    def __init__(self, inner: httpx.AsyncBaseTransport, max_retries: int = _MAX_RETRIES) -> None:
        self._inner = inner
        self._max_retries = max_retries

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        attempt = 0
        while True:
            attempt += 1
            try:
                response = await self._inner.handle_async_request(request)
            except httpx.TimeoutException:
                if attempt > self._max_retries:
                    raise
                await asyncio.sleep(_backoff(attempt))
                continue
            if response.status_code not in _RETRY_ON_STATUS or attempt > self._max_retries:
                return response
            await response.aclose()
            await asyncio.sleep(_backoff(attempt))

    async def aclose(self) -> None:
        await self._inner.aclose()


async def _log_response(response: httpx.Response) -> None:
    await response.aread()
    log.debug(
        "%s %s -> %d\n%s\n%s",
        response.request.method,
        response.request.url,
        response.status_code,
        response.request.content.decode("utf-8", "replace"),
        response.text,
    )


@dataclass
class ClientConfig:
    """Configuration of the connection to OpenSearch."""

    url: str = DEFAULT_URL
    transport: httpx.AsyncBaseTransport | None = None
    debug: bool = False

    bulk_indexer_flush_bytes: int = 0
    bulk_indexer_flush_timeout: float = 0.0

    bulk_getter_batch_size: int = 0
    bulk_getter_batch_timeout: float = 0.0


def _dumps(value: Any) -> bytes:
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


class BulkIndexer:
    """Buffers index actions and sends them to the bulk endpoint.

    The buffer is flushed when it reaches flush_bytes, when flush_interval
    seconds have passed since the first buffered action, and on close.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        flush_bytes: int = 0,
        flush_interval: float = 0.0,
    ) -> None:
        self._http = http
        self.flush_bytes = flush_bytes if flush_bytes > 0 else DEFAULT_FLUSH_BYTES
        self.flush_interval = flush_interval if flush_interval > 0 else DEFAULT_FLUSH_INTERVAL
        self._buffer = bytearray()
        self._ids: list[str] = []
        self._lock = asyncio.Lock()
        self._timer: asyncio.Task | None = None

    @property
    def buffered(self) -> int:
        """Number of bytes waiting to be flushed."""
        return len(self._buffer)

    async def add(
        self, action: str, index: str, id: str, body: Mapping[str, Any] | None = None
    ) -> None:
        """Buffer one action, flushing when the buffer is full."""
        self._buffer += _dumps({action: {"_index": index, "_id": id}}) + b"\n"
        if body is not None:
            self._buffer += _dumps(body) + b"\n"
        self._ids.append(id)

        if len(self._buffer) >= self.flush_bytes:
            await self._flush_logged()
        elif self._timer is None or self._timer.done():
            self._timer = asyncio.create_task(self._flush_later())

    async def _flush_later(self) -> None:
        await asyncio.sleep(self.flush_interval)
        await self._flush_logged()

    async def _flush_logged(self) -> None:
        try:
            await self.flush()
        except Exception as exc:
            log.error("Error flushing index buffer: %s", exc)

    async def flush(self) -> list[dict[str, Any]]:
        """Send buffered actions; return the result items that failed.

        Raises RequestError when the request cannot be sent, HTTPError on an
        error status and UnexpectedResponseError on an unreadable reply.
        """
        async with self._lock:
            if not self._buffer:
                return []
            payload, self._buffer = bytes(self._buffer), bytearray()
            ids, self._ids = self._ids, []

            try:
                response = await self._http.post(
                    "/_bulk",
                    content=payload,
                    headers={"Content-Type": "application/x-ndjson"},
                )
            except httpx.HTTPError as exc:
                raise RequestError(f"error flushing index buffer: {exc}") from exc

            if response.is_error:
                raise HTTPError(response.status_code, response.text)

            try:
                result = response.json()
            except ValueError as exc:
                raise UnexpectedResponseError(f"error decoding bulk response: {exc}") from exc

            log.info("Flushed index buffer")
            return self._failures(result, ids)

    @staticmethod
    def _failures(result: Any, ids: Sequence[str]) -> list[dict[str, Any]]:
        if not isinstance(result, Mapping):
            raise UnexpectedResponseError("bulk response is not an object")
        failures = []
        for position, item in enumerate(result.get("items") or []):
            if not isinstance(item, Mapping) or not item:
                continue
            outcome = next(iter(item.values()))
            if not isinstance(outcome, Mapping):
                continue
            status = outcome.get("status", 0)
            if "error" in outcome or not isinstance(status, int) or status > 299:
                id = outcome.get("_id") or (ids[position] if position < len(ids) else "")
                log.error("Error flushing: %s (%s)", dict(outcome), id)
                failures.append(dict(outcome))
        return failures

    async def close(self) -> None:
        """Stop the flush timer and flush what is left."""
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
            try:
                await self._timer
            except asyncio.CancelledError:
                pass
        self._timer = None
        await self._flush_logged()


class OpenSearchClient:
    """Connection to OpenSearch shared by OpenSearch indexes."""

    def __init__(self, config: ClientConfig) -> None:
        if config is None:
            raise ValueError("client config cannot be None")

        transport = config.transport if config.transport is not None else httpx.AsyncHTTPTransport()
        hooks: dict[str, list[Any]] = {}
        if config.debug:
            hooks["response"] = [_log_response]
        else:
            transport = _RetryingTransport(transport)

        self.config = config
        self.http = httpx.AsyncClient(
            base_url=config.url or DEFAULT_URL, transport=transport, event_hooks=hooks
        )

        flush_bytes = config.bulk_indexer_flush_bytes
        flush_interval = config.bulk_indexer_flush_timeout
        if config.debug:
            flush_bytes, flush_interval = 1, 0.0
        self.bulk_indexer = BulkIndexer(self.http, flush_bytes, flush_interval)
        self.bulk_getter = BulkGetter(
            self.http, config.bulk_getter_batch_size, config.bulk_getter_batch_timeout
        )

    async def work(self) -> None:
        """Run the batched getter; flush pending writes when it stops."""
        try:
            await self.bulk_getter.work()
        finally:
            await self.bulk_indexer.close()

    def new_index(self, name: str) -> OpenSearchIndex:
        """Return the index with the given name."""
        return OpenSearchIndex(self, name)


def _properties(properties: Any) -> dict[str, Any]:
    to_dict = getattr(properties, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    if isinstance(properties, Mapping):
        return dict(properties)
    raise TypeError(f"cannot serialise {type(properties).__name__} as a document")


class OpenSearchIndex(Index):
    """An OpenSearch index storing documents."""

    def __init__(self, client: OpenSearchClient, name: str) -> None:
        if client is None:
            raise ValueError("client cannot be None")
        self._client = client
        self.name = name

    def __str__(self) -> str:
        return self.name

    async def index(self, id: str, properties: Any) -> None:
        """Create a document with id."""
        await self._client.bulk_indexer.add("create", self.name, id, _properties(properties))

    async def update(self, id: str, properties: Any) -> None:
        """Update the given fields of the document with id."""
        body = {"doc": _properties(properties)}
        await self._client.bulk_indexer.add("update", self.name, id, body)

    async def delete(self, id: str) -> None:
        """Delete the document with id."""
        await self._client.bulk_indexer.add("delete", self.name, id)

    async def get(self, id: str, fields: Sequence[str] = ()) -> Mapping[str, Any] | None:
        """Return the requested fields of the document, or None when it is not found."""
        request = GetRequest(index=self.name, document_id=id, fields=tuple(fields))
        return await self._client.bulk_getter.get(request)