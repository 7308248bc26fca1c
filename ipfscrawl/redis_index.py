"""Redis-backed indexes: hashes of update properties and sets of known identifiers."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from datetime import datetime, timezone
from typing import Any

from redis.asyncio import Redis
from redis.asyncio.cluster import ClusterNode, RedisCluster
from redis.exceptions import RedisClusterException, RedisError

from .documents import Update, decode_references, encode_references
from .index import Index

log = logging.getLogger(__name__)

_LAST_SEEN = "l"
_REFERENCES = "r"
_DEFAULT_PORT = 6379


def _format_time(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    text = value.isoformat()
    if text.endswith("+00:00"):
        text = text[: -len("+00:00")] + "Z"
    return text


def _text(value: Any) -> str:
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).decode("utf-8")
    return str(value)


def _binary(value: Any) -> bytes:
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value)
    return str(value).encode("utf-8", "surrogateescape")


def _field_value(value: Any) -> str | bytes:
    if isinstance(value, (str, bytes)):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    raise TypeError(f"cannot store value of type {type(value).__name__} in Redis")


def flatten(properties: Any) -> list[str | bytes]:
    """Flatten properties into alternating field names and values for HSET."""
    if isinstance(properties, Update):
        args: list[str | bytes] = []
        if properties.last_seen is not None:
            args += [_LAST_SEEN, _format_time(properties.last_seen)]
        if properties.references:
            args += [_REFERENCES, encode_references(properties.references)]
        return args
    if isinstance(properties, Mapping):
        args = []
        for key, value in properties.items():
            args += [str(key), _field_value(value)]
        return args
    raise TypeError(f"cannot flatten {type(properties).__name__}")


def parse_hash(fields: Any) -> Update:
    """Decode an HGETALL reply, as mapping or flat list, into an Update."""
    if isinstance(fields, Mapping):
        pairs = list(fields.items())
    else:
        items = list(fields)
        if len(items) % 2:
            raise ValueError("odd number of elements in hash reply")
        pairs = list(zip(items[0::2], items[1::2]))

    update = Update()
    for key, value in pairs:
        name = _text(key)
        if name == _LAST_SEEN:
            update.last_seen = datetime.fromisoformat(_text(value))
        elif name == _REFERENCES:
            update.references = decode_references(_binary(value))
    return update


def _split_addr(addr: str) -> tuple[str, int]:
    host, sep, port = addr.rpartition(":")
    if not sep:
        return addr, _DEFAULT_PORT
    return host, int(port)


def _cluster_unsupported(error: BaseException) -> bool:
    text = str(error).lower()
    return any(
        marker in text
        for marker in ("cluster support disabled", "unknown command", "cluster mode is not enabled")
    )


class RedisClient:
    """Connection to a Redis node or cluster, shared by Redis indexes."""

    def __init__(self, addrs: Sequence[str], prefix: str = "") -> None:
        self.addrs = list(addrs)
        if not self.addrs:
            raise ValueError("no Redis addresses specified")
        self.prefix = prefix
        self.connection: Any = None

    async def start(self) -> None:
        """Connect as a cluster, falling back to a single node when clustering is off."""
        cluster = RedisCluster(
            startup_nodes=[ClusterNode(*_split_addr(addr)) for addr in self.addrs]
        )
        try:
            await cluster.initialize()
        except (RedisError, RedisClusterException) as exc:
            try:
                await cluster.aclose()
            except (RedisError, RedisClusterException, OSError):
                pass
            if not (_cluster_unsupported(exc) and len(self.addrs) == 1):
                raise
            log.info("Redis not a cluster, attempting single connection.")
            host, port = _split_addr(self.addrs[0])
            single = Redis(host=host, port=port)
            await single.ping()
            self.connection = single
        else:
            self.connection = cluster

    async def close(self) -> None:
        """Close the connection, if any."""
        if self.connection is None:
            return
        connection, self.connection = self.connection, None
        closer = getattr(connection, "aclose", None) or connection.close
        await closer()

    def new_index(self, name: str, prefix: str, exists_index: bool = False) -> Index:
        """Return a hash index, or a set-membership index when exists_index is true."""
        if exists_index:
            return RedisExistsIndex(self, name, prefix)
        return RedisIndex(self, name, prefix)

    async def _execute(self, *args: Any) -> Any:
        if self.connection is None:
            raise RuntimeError("Redis client not started")
        return await self.connection.execute_command(*args)


class RedisIndex(Index):
    """Stores update properties as Redis hashes."""

    def __init__(self, client: RedisClient, name: str, prefix: str) -> None:
        if not name:
            raise ValueError("name cannot be empty")
        if not prefix:
            raise ValueError("prefix cannot be empty")
        self._client = client
        self.name = name
        self.prefix = prefix

    def __str__(self) -> str:
        return self.name

    def key(self, id: str) -> str:
        """Return the Redis key for a document id."""
        return f"{self._client.prefix}{self.prefix}:{id}"

    async def _set(self, id: str, properties: Any) -> None:
        flattened = flatten(properties)
        if not flattened:
            raise ValueError("Redis cannot index without properties.")
        key = self.key(id)
        log.debug("redis %s: writing to %s", self, key)
        await self._client._execute("HSET", key, *flattened)

    async def index(self, id: str, properties: Any) -> None:
        await self._set(id, properties)

    async def update(self, id: str, properties: Any) -> None:
        await self._set(id, properties)

    async def delete(self, id: str) -> None:
        # Non-blocking equivalent of DEL.
        await self._client._execute("UNLINK", self.key(id))

    async def get(self, id: str, fields: Sequence[str] = ()) -> Mapping[str, Any] | None:
        """Return all stored fields as an update mapping; fields are ignored."""
        reply = await self._client._execute("HGETALL", self.key(id))
        if not reply:
            return None
        return parse_hash(reply).to_dict()


class RedisExistsIndex(Index):
    """Records only whether ids exist, as members of a Redis set."""

    def __init__(self, client: RedisClient, name: str, prefix: str) -> None:
        self._client = client
        self.name = name
        self.prefix = prefix
        self.key = f"{client.prefix}e:{prefix}"

    def __str__(self) -> str:
        return self.name

    async def index(self, id: str, properties: Any) -> None:
        await self._client._execute("SADD", self.key, id)

    async def update(self, id: str, properties: Any) -> None:
        await self._client._execute("SADD", self.key, id)

    async def delete(self, id: str) -> None:
        await self._client._execute("SREM", self.key, id)

    async def get(self, id: str, fields: Sequence[str] = ()) -> Mapping[str, Any] | None:
        """Return an empty mapping when id is known, None otherwise."""
        found = await self._client._execute("SISMEMBER", self.key, id)
        return {} if found else None