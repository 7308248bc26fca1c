import asyncio
import json

import httpx
import pytest

from ipfscrawl.bulkgetter import HTTPError
from ipfscrawl.documents import Invalid, Update
from ipfscrawl.opensearch import BulkIndexer, ClientConfig, OpenSearchClient, OpenSearchIndex

BULK_OK = {"took": 30, "errors": False, "items": []}


class Recorder:
    def __init__(self, responses=None):
        self.requests = []
        self.responses = list(responses or [])

    def __call__(self, request):
        self.requests.append((request.method, request.url.path, request.content))
        if self.responses:
            return self.responses.pop(0)
        return httpx.Response(200, json=BULK_OK)


def make_client(handler, **kwargs):
    config = ClientConfig(url="http://search.test", transport=httpx.MockTransport(handler), **kwargs)
    return OpenSearchClient(config)


@pytest.mark.asyncio
async def test_index_sends_create_ndjson():
    rec = Recorder()
    idx = make_client(rec, debug=True).new_index("test")
    await idx.index("objId", {"field1": "hoi", "field2": 4})
    assert rec.requests == [
        (
            "POST",
            "/_bulk",
            b'{"create":{"_index":"test","_id":"objId"}}\n{"field1":"hoi","field2":4}\n',
        )
    ]


@pytest.mark.asyncio
async def test_update_wraps_doc():
    rec = Recorder()
    idx = make_client(rec, debug=True).new_index("test")
    await idx.update("objId", {"field1": "hoi", "field2": 4})
    assert rec.requests[0][2] == (
        b'{"update":{"_index":"test","_id":"objId"}}\n{"doc":{"field1":"hoi","field2":4}}\n'
    )


@pytest.mark.asyncio
async def test_update_omits_empty():
    rec = Recorder()
    idx = make_client(rec, debug=True).new_index("test")
    await idx.update("objId", Update())
    assert rec.requests[0][2] == b'{"update":{"_index":"test","_id":"objId"}}\n{"doc":{}}\n'


@pytest.mark.asyncio
async def test_delete_has_no_body():
    rec = Recorder()
    idx = make_client(rec, debug=True).new_index("test")
    await idx.delete("objId")
    assert rec.requests[0][2] == b'{"delete":{"_index":"test","_id":"objId"}}\n'


@pytest.mark.asyncio
async def test_dataclass_properties_serialised():
    rec = Recorder()
    idx = make_client(rec, debug=True).new_index("invalids")
    await idx.index("x", Invalid(error="unsupported type"))
    assert rec.requests[0][2].splitlines()[1] == b'{"error":"unsupported type"}'


@pytest.mark.asyncio
async def test_unsupported_properties_raise():
    idx = make_client(Recorder(), debug=True).new_index("test")
    with pytest.raises(TypeError):
        await idx.index("x", 42)


def test_string_is_name():
    idx = make_client(Recorder()).new_index("test")
    assert str(idx) == "test"
    assert isinstance(idx, OpenSearchIndex)


def test_client_requires_config():
    with pytest.raises(ValueError):
        OpenSearchClient(None)


@pytest.mark.asyncio
async def test_buffers_until_flush():
    rec = Recorder()
    http = httpx.AsyncClient(base_url="http://search.test", transport=httpx.MockTransport(rec))
    indexer = BulkIndexer(http, 1_000_000, 60.0)
    await indexer.add("delete", "test", "a")
    await indexer.add("delete", "test", "b")
    assert rec.requests == []
    assert indexer.buffered > 0
    failures = await indexer.flush()
    assert failures == []
    assert indexer.buffered == 0
    assert rec.requests[0][2].count(b"\n") == 2
    await indexer.close()


@pytest.mark.asyncio
async def test_flush_interval_timer():
    rec = Recorder()
    http = httpx.AsyncClient(base_url="http://search.test", transport=httpx.MockTransport(rec))
    indexer = BulkIndexer(http, 1_000_000, 0.05)
    await indexer.add("delete", "test", "a")
    assert indexer.buffered > 0
    await asyncio.sleep(0.3)
    assert indexer.buffered == 0
    assert rec.requests == [("POST", "/_bulk", b'{"delete":{"_index":"test","_id":"a"}}\n')]
    await indexer.close()


@pytest.mark.asyncio
async def test_flush_reports_item_failures():
    failing = {
        "errors": True,
        "items": [
            {"create": {"_index": "test", "_id": "a", "status": 201}},
            {"create": {"_index": "test", "_id": "b", "status": 409, "error": {"type": "conflict"}}},
        ],
    }
    rec = Recorder([httpx.Response(200, json=failing)])
    http = httpx.AsyncClient(base_url="http://search.test", transport=httpx.MockTransport(rec))
    indexer = BulkIndexer(http, 1_000_000, 60.0)
    await indexer.add("create", "test", "a", {})
    await indexer.add("create", "test", "b", {})
    failures = await indexer.flush()
    assert [f["_id"] for f in failures] == ["b"]


@pytest.mark.asyncio
async def test_flush_error_status_raises():
    rec = Recorder([httpx.Response(400, text="bad")])
    http = httpx.AsyncClient(base_url="http://search.test", transport=httpx.MockTransport(rec))
    indexer = BulkIndexer(http, 1_000_000, 60.0)
    await indexer.add("delete", "test", "a")
    with pytest.raises(HTTPError) as info:
        await indexer.flush()
    assert info.value.status == 400


@pytest.mark.asyncio
async def test_retries_on_unavailable():
    rec = Recorder([httpx.Response(503), httpx.Response(200, json=BULK_OK)])
    client = make_client(rec, bulk_indexer_flush_bytes=1)
    await client.new_index("test").delete("a")
    assert len(rec.requests) == 2


@pytest.mark.asyncio
async def test_work_flushes_on_stop():
    rec = Recorder()
    client = make_client(rec, bulk_getter_batch_timeout=0.01)
    await client.new_index("test").delete("a")
    assert rec.requests == []
    task = asyncio.create_task(client.work())
    await asyncio.sleep(0.05)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert rec.requests == [("POST", "/_bulk", b'{"delete":{"_index":"test","_id":"a"}}\n')]


def search_handler(found):
    seen = {}

    def handler(request):
        if request.method == "GET" and request.url.path == "/test/_alias":
            return httpx.Response(200, json={"test": {"aliases": {}}})
        if request.method == "POST" and request.url.path == "/_mget":
            seen["body"] = json.loads(request.content)
            doc = {"_index": "test", "_id": "objId", "found": found}
            if found:
                doc["_source"] = {"field1": "hoi", "field2": 4}
            return httpx.Response(200, json={"docs": [doc]})
        return httpx.Response(404)

    return handler, seen


async def run_get(found):
    handler, seen = search_handler(found)
    client = make_client(handler, debug=True, bulk_getter_batch_timeout=0.01)
    idx = client.new_index("test")
    task = asyncio.create_task(client.work())
    try:
        result = await asyncio.wait_for(idx.get("objId", ["field1", "field2"]), 2)
    finally:
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
    return result, seen


@pytest.mark.asyncio
async def test_get_found():
    result, seen = await run_get(True)
    assert result == {"field1": "hoi", "field2": 4}
    assert seen["body"]["docs"][0]["_source"]["include"] == ["field1", "field2"]


@pytest.mark.asyncio
async def test_get_not_found():
    result, seen = await run_get(False)
    assert result is None
    assert seen["body"]["docs"][0]["_id"] == "objId"