# ipfscrawl

Asyncio building blocks for indexing IPFS content. The package covers the
resources being indexed and the documents stored for them. It has metadata
extractors that call an ipfs-tika server and an nsfw-server. It also has
indexes backed by OpenSearch and Redis, a caching index that combines two
indexes, and a helper that looks a document up in several indexes at once.

## Installation

```
pip install ipfscrawl
```

To run the test suite:

```
pip install "ipfscrawl[test]"
pytest
```

## Modules

### `ipfscrawl.resource`

`Resource` is a `Protocol` (`IPFS` or `INVALID`) together with an id.

`AnnotatedResource` wraps a `Resource` and adds four things:

- a `Source`: `UNKNOWN`, `DIRECTORY`, `SNIFFER`, `USER` or `MANUAL`;
- a `Reference`: a parent resource and a name;
- a `ResourceType`: `UNDEFINED`, `FILE`, `DIRECTORY`, `UNSUPPORTED` or `PARTIAL`;
- a size in bytes.

### `ipfscrawl.documents`

These are the document types that go into indexes:

| Type | Contents |
|------|----------|
| `Document` | first-seen and last-seen times, references and size |
| `Directory` | a `Document` with a list of `Link`s |
| `File` | a `Document` with content, language, metadata, URLs and an optional `NSFW` classification |
| `Invalid` | an error message |
| `Partial` | no fields |
| `Update` | the updatable part of a document: last-seen and references |

Each type has `to_dict()`, which gives its JSON form. `Update.to_dict()`
leaves empty parts out. `File.merge_json(data)` merges a decoded JSON object
into a file and raises `ValueError` when a field has the wrong type.
`Update.from_dict()` and `NSFW.from_dict()` build objects from JSON.

`encode_references(refs)` turns a list of `DocumentReference`s into
LZ4-framed CBOR, where each reference is an array `[parent_hash, name]`.
`decode_references(data)` reverses it.

### `ipfscrawl.errors`

The package raises these errors:

- `InvalidResourceError`, with the subclasses `UnsupportedTypeError` and
  `DirectoryTooLargeError`;
- `FileTooLargeError`;
- `UnexpectedResponseError`;
- `RequestError`.

### `ipfscrawl.index`

`Index` is the abstract interface. It has four async methods: `index`,
`update`, `get` and `delete`. `get(id, fields)` returns a mapping, or `None`
when the document is not found.

`multi_get(indexes, id, fields)` queries all the indexes at once. It returns
the first `(index, document)` found, or `None` if no index has the document.
It raises the first error that any index raises, and cancels the lookups that
are still running.

### `ipfscrawl.cache`

`CacheIndex(backing, caching, caching_type)` puts a caching index in front of
a backing index. `caching_type` is a dataclass, or an instance of one, that
names the fields to cache.

- `index` writes to the backing index first.
- `update` and `delete` write to the cache first.
- `get` tries the cache. If the cache does not have the document, it falls
  back to the backing index and copies what it finds into the cache.

When the cache fails, these methods raise `CacheError`. The error carries the
original error as `.error` and, where one was found, the document as
`.document`.

### `ipfscrawl.redis_index`

`RedisClient(addrs, prefix)` connects to Redis when you call `start()`. It
tries a cluster first. If only one address is given and clustering is not
supported, it falls back to a single node.

`new_index(name, prefix, exists_index=False)` returns one of two index types:

- `RedisIndex` stores `Update` properties in one hash per document, with
  field `l` for last-seen and field `r` for the encoded references.
- `RedisExistsIndex` records only which ids exist, as members of a set. Its
  `get` returns `{}` for a known id.

### `ipfscrawl.bulkgetter`

`BulkGetter(client, batch_size=100, batch_timeout=0.1)` collects single
lookups, made with `await getter.get(GetRequest(index, document_id, fields))`,
into `_mget` requests. `work()` processes batches until an error occurs or
the task is cancelled. Index aliases are resolved through `/<name>/_alias`.
Error statuses raise `HTTPError`.

### `ipfscrawl.opensearch`

`OpenSearchClient(ClientConfig(url=...))` holds an `httpx.AsyncClient`, a
`BulkIndexer` and a `BulkGetter`.

The `BulkIndexer` buffers create, update and delete actions for `/_bulk`. It
flushes the buffer in three cases:

- when the buffer reaches a byte limit;
- when an interval has passed;
- when it is closed.

By default, requests are retried on status 429, 502, 503 and 504 and on
timeouts. With `debug=True` there are no retries: every action is flushed at
once and every response is logged.

`client.new_index(name)` returns an `OpenSearchIndex`. Run `client.work()` as
a task so that lookups are served. When `work()` stops, pending writes are
flushed.

### `ipfscrawl.extractors`

`validate_max_size(resource, max_size)` raises `FileTooLargeError` when the
resource is larger than `max_size`.

`TikaExtractor(config, http, protocol)` builds a gateway URL with
`protocol.gateway_url(resource)`. It then asks the tika server at
`/extract?url=...` and merges the answer into a `File`.

`NSFWExtractor(config, http)` classifies IPFS files whose `Content-Type`
metadata is JPEG, PNG, GIF or BMP. It sets `File.nsfw` from
`/classify/<cid>`.

Upstream failures raise `RequestError`. A non-200 status or a body that
cannot be decoded raises `UnexpectedResponseError`.

## Example

```python
import asyncio

from ipfscrawl.documents import File
from ipfscrawl.extractors import NSFWConfig, NSFWExtractor
from ipfscrawl.index import multi_get
from ipfscrawl.opensearch import ClientConfig, OpenSearchClient
from ipfscrawl.resource import AnnotatedResource, Protocol, Resource, ResourceType


async def main():
    client = OpenSearchClient(ClientConfig(url="http://localhost:9200"))
    worker = asyncio.create_task(client.work())

    files = client.new_index("ipfs_files")
    directories = client.new_index("ipfs_directories")

    cid = "QmSKboVigcD3AY4kLsob117KJcMHvMUu6vNFqk1PQzYUpp"
    found = await multi_get([files, directories], cid, ["references", "last-seen"])
    if found is None:
        resource = AnnotatedResource(Resource(Protocol.IPFS, cid), type=ResourceType.FILE)
        properties = File(metadata={"Content-Type": "image/png"})
        await NSFWExtractor(NSFWConfig(), None).extract(resource, properties)
        await files.index(cid, properties)

    worker.cancel()
    await asyncio.gather(worker, return_exceptions=True)


asyncio.run(main())
```

## What this package does not do

The package provides the parts for indexing, not the program that uses them.
It has no command-line tool and no worker that runs on its own. The caller
must do the following:

- decide, for each resource, whether to update an existing document or
  index a new one;
- stat and list resources;
- supply the object with `gateway_url()` that `TikaExtractor` needs;
- publish directory entries to queues.

No IPFS protocol client and no message-queue support are included.