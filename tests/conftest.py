"""Shared fixtures: in-memory collaborators for the registry."""

import copy
import threading

import fakeredis
import pytest

from build_registry.content_store import ContentStore
from build_registry.errors import StorageError, UploadFailure
from build_registry.lock import RedisLockStore
from build_registry.options import PublishFile
from build_registry.registry import BuildRegistry
from build_registry.storage import Action, StorageEngine


class InMemoryStorage(StorageEngine):
    """Storage engine keeping entities in dicts, one per collection."""

    def __init__(self):
        self.tables = {}
        self.batches = []
        self.fail_on_commit = False
        self._lock = threading.Lock()

    @staticmethod
    def _row_key(model, key):
        return tuple(key[name] for name in model.KEY_FIELDS)

    def get(self, model, key):
        with self._lock:
            entity = self.tables.get(model.COLLECTION, {}).get(self._row_key(model, key))
            return copy.deepcopy(entity)

    def find_all(self, model, criteria):
        with self._lock:
            rows = list(self.tables.get(model.COLLECTION, {}).values())
        for entity in rows:
            if all(getattr(entity, name) == value for name, value in criteria.items() if value):
                yield copy.deepcopy(entity)

    def execute_batch(self, operations, consistency=None):
        if self.fail_on_commit:
            raise StorageError("commit refused")

        with self._lock:
            tables = copy.deepcopy(self.tables)
            for op in operations:
                table = tables.setdefault(op.model.COLLECTION, {})
                key = self._row_key(op.model, op.row_key())
                if op.action is Action.REMOVE:
                    table.pop(key, None)
                elif op.action is Action.UPDATE:
                    if key not in table:
                        raise StorageError(f"No {op.model.COLLECTION} row for {key}")
                    table[key] = copy.deepcopy(op.entity)
                else:
                    table[key] = copy.deepcopy(op.entity)
            self.tables = tables
            self.batches.append((list(operations), consistency))

    def count(self, model):
        return len(self.tables.get(model.COLLECTION, {}))


class InMemoryContentStore(ContentStore):
    """Content store keeping uploaded objects in a dict."""

    def __init__(self, url="https://cdn.example.com/wrhs"):
        self.url = url
        self.objects = {}
        self.fail_uploads = set()
        self.missing = set()
        self.probed = []
        self._lock = threading.Lock()

    def upload(self, content, key):
        if key in self.fail_uploads:
            raise UploadFailure(f"Upload of {key} failed")
        with self._lock:
            self.objects[key] = content
        return f"{self.url}/{key}"

    def probe(self, url):
        self.probed.append(url)
        key = url[len(self.url) + 1:]
        if key in self.missing or key not in self.objects:
            return 404
        return 200

    def base_url(self):
        return self.url


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def cdns():
    return {
        "test": InMemoryContentStore("https://cdn-test.example.com/wrhs"),
        "dev": InMemoryContentStore("https://cdn-dev.example.com/wrhs"),
    }


@pytest.fixture
def lock_store():
    return RedisLockStore(client=fakeredis.FakeRedis(server=fakeredis.FakeServer(), decode_responses=True))


@pytest.fixture
def registry(storage, cdns, lock_store):
    return BuildRegistry(storage=storage, content_stores=cdns, lock_store=lock_store, limit=4)


def make_file(filename="app.js", fingerprint="abc123", content=None, extension=None):
    """A publishable file with inline content."""
    content = content if content is not None else f"/* {filename} {fingerprint} */".encode()
    return PublishFile(
        filename=filename,
        extension=extension or "." + filename.rsplit(".", 1)[-1],
        fingerprint=fingerprint,
        content=content,
        compressed=b"gz:" + content,
    )
