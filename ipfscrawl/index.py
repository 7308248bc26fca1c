"""The index interface and concurrent lookup across several indexes."""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping, Sequence
from typing import Any


class Index(ABC):
    """An index which stores and retrieves document properties."""

    @abstractmethod
    async def index(self, id: str, properties: Any) -> None:
        """Store a document's properties under id."""

    @abstractmethod
    async def update(self, id: str, properties: Any) -> None:
        """Update a document's properties under id."""

    @abstractmethod
    async def get(self, id: str, fields: Sequence[str] = ()) -> Mapping[str, Any] | None:
        """Return the document's fields, or None when it is not found."""

    @abstractmethod
    async def delete(self, id: str) -> None:
        """Remove the document with id."""


async def multi_get(
    indexes: Iterable[Index], id: str, fields: Sequence[str] = ()
) -> tuple[Index, Mapping[str, Any]] | None:
    """Look id up in all indexes at once; return the first (index, document) found.

    Returns None when no index holds the document. The first error raised
    by any index is propagated; outstanding lookups are cancelled.
    """
    indexes = list(indexes)
    tasks = [asyncio.create_task(index.get(id, fields)) for index in indexes]
    owners = dict(zip(tasks, indexes))
    pending = set(tasks)
    try:
        while pending:
            done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
            for task in (t for t in tasks if t in done):
                error = task.exception()
                if error is not None:
                    raise error
                result = task.result()
                if result is not None:
                    return owners[task], result
        return None
    finally:
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)