"""An index backed by one index and cached in another."""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Awaitable, Callable, Mapping, Sequence
from typing import Any

from .index import Index

log = logging.getLogger(__name__)

_Write = Callable[[str, Any], Awaitable[None]]


class CacheError(Exception):
    """An error from the caching index, wrapping the original error.

    When a lookup found a document but the cache failed along the way, the
    document is available as ``document``.
    """

    def __init__(self, message: str, error: BaseException, document: Any = None) -> None:
        super().__init__(message)
        self.error = error
        self.document = document


class CacheIndex(Index):
    """Wraps a backing index and caches a subset of its fields in another index."""

    def __init__(self, backing: Index, caching: Index, caching_type: Any) -> None:
        if not isinstance(caching_type, type):
            caching_type = type(caching_type)
        if not dataclasses.is_dataclass(caching_type):
            raise TypeError("caching type should be a dataclass")
        self._backing = backing
        self._caching = caching
        self._caching_type = caching_type

    def __str__(self) -> str:
        return f"'{self._backing}' through '{self._caching}'"

    def make_caching_properties(self, properties: Any) -> Any:
        """Build an instance of the caching type from the matching fields of properties."""
        if isinstance(properties, Mapping):
            from_dict = getattr(self._caching_type, "from_dict", None)
            if callable(from_dict):
                return from_dict(properties)
            values = {}
            for f in dataclasses.fields(self._caching_type):
                if not f.init:
                    continue
                for key in (f.name, f.name.replace("_", "-")):
                    if key in properties:
                        values[f.name] = properties[key]
                        break
                else:
                    raise ValueError(f"field {f.name!r} missing from properties")
            return self._caching_type(**values)

        if not dataclasses.is_dataclass(properties) or isinstance(properties, type):
            raise TypeError("properties should be a dataclass instance or a mapping")
        values = {}
        for f in dataclasses.fields(self._caching_type):
            if not f.init:
                continue
            if not hasattr(properties, f.name):
                raise ValueError(f"field {f.name!r} missing from properties")
            values[f.name] = getattr(properties, f.name)
        return self._caching_type(**values)

    async def _cache_write(self, id: str, properties: Any, write: _Write) -> None:
        caching_properties = self.make_caching_properties(properties)
        try:
            await write(id, caching_properties)
        except Exception as exc:
            raise CacheError(
                f"cache error in writing {caching_properties!r} to {id}: {exc}", exc
            ) from exc

    async def index(self, id: str, properties: Any) -> None:
        """Index in the backing index first, then in the cache."""
        await self._backing.index(id, properties)
        await self._cache_write(id, properties, self._caching.index)

    async def update(self, id: str, properties: Any) -> None:
        """Update the cache first, then the backing index."""
        await self._cache_write(id, properties, self._caching.update)
        await self._backing.update(id, properties)

    async def delete(self, id: str) -> None:
        """Delete from the cache first; the backing index is the source of truth."""
        try:
            await self._caching.delete(id)
        except Exception as exc:
            raise CacheError(f"error deleting cache: {exc}", exc) from exc
        await self._backing.delete(id)

    async def get(self, id: str, fields: Sequence[str] = ()) -> Mapping[str, Any] | None:
        """Look id up in the cache, falling back to the backing index.

        A document found only in the backing index is added to the cache.
        Cache failures raise CacheError carrying any document that was found.
        """
        cache_error: CacheError | None = None
        try:
            document = await self._caching.get(id, fields)
        except Exception as exc:
            cache_error = CacheError(f"cache error in get: {exc}", exc)
        else:
            if document is not None:
                log.info("cache %s: hit %s", self._caching, id)
                return document

        log.debug("cache %s: miss %s", self._caching, id)

        document = await self._backing.get(id, fields)

        if document is None:
            log.debug("backing %s: miss %s", self._backing, id)
            if cache_error is not None:
                raise cache_error from cache_error.error
            return None

        log.debug("backing %s: hit %s", self._backing, id)
        try:
            await self._cache_write(id, document, self._caching.index)
        except CacheError as exc:
            exc.document = document
            raise

        if cache_error is not None:
            cache_error.document = document
            raise cache_error from cache_error.error

        return document