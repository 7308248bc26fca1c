import asyncio

import pytest

from ipfscrawl.index import Index, multi_get


class FakeIndex(Index):
    def __init__(self, result=None, error=None, delay=0.0):
        self.result = result
        self.error = error
        self.delay = delay
        self.calls = []
        self.cancelled = False

    async def index(self, id, properties):
        self.calls.append(("index", id))

    async def update(self, id, properties):
        self.calls.append(("update", id))

    async def delete(self, id):
        self.calls.append(("delete", id))

    async def get(self, id, fields=()):
        self.calls.append((id, list(fields)))
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        if self.error is not None:
            raise self.error
        return self.result


@pytest.mark.asyncio
async def test_not_found():
    mock1, mock2 = FakeIndex(), FakeIndex()
    result = await multi_get([mock1, mock2], "objId", ["testField"])
    assert result is None
    assert mock1.calls == [("objId", ["testField"])]
    assert mock2.calls == [("objId", ["testField"])]


@pytest.mark.asyncio
async def test_found():
    mock1 = FakeIndex(result={"Value": 2})
    mock2 = FakeIndex()
    result = await multi_get([mock1, mock2], "objId", ["testField"])
    assert result == (mock1, {"Value": 2})


@pytest.mark.asyncio
async def test_multi_found():
    mock1 = FakeIndex(result={"Value": 1})
    mock2 = FakeIndex(result={"Value": 2})
    index, doc = await multi_get([mock1, mock2], "objId", ["testField"])
    assert index is mock1 or index is mock2
    assert doc["Value"] in (1, 2)


@pytest.mark.asyncio
async def test_error_propagates():
    failing = FakeIndex(error=RuntimeError("test"))
    other = FakeIndex()
    with pytest.raises(RuntimeError, match="test"):
        await multi_get([failing, other], "objId")


@pytest.mark.asyncio
async def test_found_cancels_slow_lookups():
    fast = FakeIndex(result={})
    slow = FakeIndex(result={"Value": 3}, delay=10)
    result = await multi_get([slow, fast], "objId")
    assert result == (fast, {})
    assert slow.cancelled is True


@pytest.mark.asyncio
async def test_no_indexes():
    assert await multi_get([], "objId") is None


def test_index_is_abstract():
    with pytest.raises(TypeError):
        Index()