"""Batched document lookups against an OpenSearch multi-get endpoint."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import quote

import httpx

from .errors import RequestError, UnexpectedResponseError

log = logging.getLogger(__name__)

DEFAULT_URL = "http://localhost:9200"
DEFAULT_BATCH_SIZE = 100
DEFAULT_BATCH_TIMEOUT = 0.1


class HTTPError(Exception):
    """An OpenSearch request was answered with an error status."""

    def __init__(self, status: int, body: Any = "") -> None:
        if isinstance(body, (bytes, bytearray)):
            body = bytes(body).decode("utf-8", "replace")
        super().__init__(f"HTTP Error: {status} {body}".rstrip())
        self.status = status
        self.body = body


@dataclass
class GetRequest:
    """A single document to fetch: index or alias, document id and fields."""

    index: str
    document_id: str
    fields: Sequence[str] = ()

    def __str__(self) -> str:
        return f"index: {self.index}, id: {self.document_id}"


@dataclass
class _Pending:
    request: GetRequest
    fields: tuple[str, ...]
    futures: list[asyncio.Future] = field(default_factory=list)


def _merge_fields(current: Sequence[str], extra: Sequence[str]) -> tuple[str, ...]:
    # An empty field list means every field is wanted.
    if not current or not extra:
        return ()
    return tuple(dict.fromkeys([*current, *extra]))


def _set_result(future: asyncio.Future, value: Any) -> None:
    if not future.done():
        future.set_result(value)


def _set_exception(future: asyncio.Future, error: BaseException) -> None:
    if not future.done():
        future.set_exception(error)


class BulkRequest:
    """A batch of get requests sent as one multi-get call."""

    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client
        self._entries: dict[str, _Pending] = {}
        self._aliases: dict[str, str] = {}

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def requests(self) -> dict[str, GetRequest]:
        """The requests in this batch, keyed by resolved index name and document id."""
        return {key: entry.request for key, entry in self._entries.items()}

    async def _get_aliases(self, name: str) -> Any:
        try:
            response = await self._client.get(
                f"/{quote(name, safe='')}/_alias",
                params={"allow_no_indices": "true", "expand_wildcards": "none"},
            )
        except httpx.HTTPError as exc:
            raise RequestError(f"error executing request: {exc}") from exc
        if response.is_error:
            raise HTTPError(response.status_code, response.text)
        try:
            return response.json()
        except ValueError as exc:
            raise UnexpectedResponseError(f"error decoding aliases: {exc}") from exc

    async def _resolve_alias(self, name: str) -> str:
        if name in self._aliases:
            return self._aliases[name]
        payload = await self._get_aliases(name)
        if not isinstance(payload, Mapping) or not payload:
            raise LookupError(f"index or alias {name} not found")
        index = next(iter(payload))
        self._aliases[name] = index
        return index

    async def add(self, request: GetRequest, future: asyncio.Future) -> None:
        """Add a request whose outcome is delivered through future."""
        key = await self._resolve_alias(request.index) + request.document_id
        entry = self._entries.get(key)
        if entry is None:
            self._entries[key] = _Pending(request, tuple(request.fields), [future])
        else:
            entry.fields = _merge_fields(entry.fields, tuple(request.fields))
            entry.futures.append(future)

    def request_body(self) -> dict[str, Any]:
        """The multi-get body for the requests in this batch."""
        return {
            "docs": [
                {
                    "_index": entry.request.index,
                    "_id": entry.request.document_id,
                    "_source": {"include": list(entry.fields) if entry.fields else None},
                }
                for entry in self._entries.values()
            ]
        }

    def _respond(self, entry: _Pending, doc: Mapping[str, Any]) -> None:
        if not doc.get("found"):
            for future in entry.futures:
                _set_result(future, None)
            return
        source = doc.get("_source")
        if source is None:
            source = {}
        if not isinstance(source, Mapping):
            error = UnexpectedResponseError("error decoding source: expected an object")
            for future in entry.futures:
                _set_exception(future, error)
            return
        for future in entry.futures:
            _set_result(future, dict(source))

    def process_response(self, status: int, body: bytes | str) -> None:
        """Deliver the documents in a multi-get response to the waiting requests."""
        if status == 200:
            try:
                payload = json.loads(body)
            except ValueError as exc:
                raise UnexpectedResponseError(f"error decoding body: {exc}") from exc
            docs = payload.get("docs") if isinstance(payload, Mapping) else None
            if not isinstance(docs, list):
                raise UnexpectedResponseError("error decoding body: missing docs")
            for doc in docs:
                if not isinstance(doc, Mapping):
                    raise UnexpectedResponseError("error decoding body: invalid document")
                key = f"{doc.get('_index', '')}{doc.get('_id', '')}"
                entry = self._entries.get(key)
                if entry is None:
                    raise LookupError(f"unknown key {key!r} in response to bulk request")
                self._respond(entry, doc)
            return

        if status >= 400:
            raise HTTPError(status, body)
        raise UnexpectedResponseError(f"unexpected HTTP return code: {status}")

    def _remove_cancelled(self) -> None:
        for key, entry in list(self._entries.items()):
            entry.futures = [f for f in entry.futures if not f.done()]
            if not entry.futures:
                log.debug("bulkrequest: request canceled, removing %s", entry.request)
                del self._entries[key]

    def _fail(self, error: BaseException) -> None:
        for entry in self._entries.values():
            for future in entry.futures:
                _set_exception(future, error)

    def _cancel(self) -> None:
        for entry in self._entries.values():
            for future in entry.futures:
                future.cancel()

    async def execute(self) -> None:
        """Send the batch, skipping requests whose callers have gone away."""
        self._remove_cancelled()
        if not self._entries:
            return

        log.debug("bulkrequest: performing bulk GET, %d elements", len(self._entries))
        try:
            response = await self._client.post("/_mget", json=self.request_body())
        except httpx.HTTPError as exc:
            error = RequestError(f"error executing request: {exc}")
            self._fail(error)
            raise error from exc

        try:
            self.process_response(response.status_code, response.content)
        except Exception as exc:
            self._fail(exc)
            raise

        self._fail(UnexpectedResponseError("no document returned for request"))


class BulkGetter:
    """Collects get requests into batches and executes them as multi-gets."""

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        batch_size: int = 0,
        batch_timeout: float = 0.0,
    ) -> None:
        self._client = client if client is not None else httpx.AsyncClient(base_url=DEFAULT_URL)
        self.batch_size = batch_size or DEFAULT_BATCH_SIZE
        self.batch_timeout = batch_timeout or DEFAULT_BATCH_TIMEOUT
        self._queue: asyncio.Queue[tuple[GetRequest, asyncio.Future]] = asyncio.Queue(
            maxsize=5 * self.batch_size
        )

    @property
    def pending(self) -> int:
        """Number of requests waiting to be batched."""
        return self._queue.qsize()

    async def get(self, request: GetRequest) -> dict[str, Any] | None:
        """Queue a request and wait for its document, or None when not found."""
        future = asyncio.get_running_loop().create_future()
        await self._queue.put((request, future))
        return await future

    async def work(self) -> None:
        """Process batches until an error occurs or the task is cancelled."""
        log.info("Starting worker for BulkGetter.")
        try:
            while True:
                await self.process_batch()
        except Exception as exc:
            log.warning("BulkGetter worker exiting, error: %s", exc)
            raise

    async def process_batch(self) -> None:
        """Collect one batch and execute it."""
        batch = await self.populate_batch()
        await batch.execute()

    async def populate_batch(self) -> BulkRequest:
        """Collect up to batch_size requests, stopping when none arrives in time."""
        batch = BulkRequest(self._client)
        current: asyncio.Future | None = None
        try:
            for _ in range(self.batch_size):
                try:
                    async with asyncio.timeout(self.batch_timeout):
                        request, current = await self._queue.get()
                except TimeoutError:
                    log.debug("bulkgetter: batch timeout, %d elements", len(batch))
                    break
                try:
                    await batch.add(request, current)
                except Exception as exc:
                    _set_exception(current, exc)
                    batch._fail(exc)
                    raise
                current = None
        except asyncio.CancelledError:
            if current is not None:
                current.cancel()
            batch._cancel()
            raise
        return batch