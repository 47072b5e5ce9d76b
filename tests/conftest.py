"""Pytest configuration and fixtures."""
import copy
import json
from datetime import datetime, timezone
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

import pytest
import pytest_asyncio
from pymongo.errors import DuplicateKeyError

from api.container import ServiceContainer
from api.models.feed_item import RawFeedItem
from api.models.source import SourceSnapshot
from api.services.collaborators import GeneratedImage, GeneratedText, PublishResult
from api.services.event_bus import EventBus, reset_event_bus
from database.connection import UniqueIndex, ensure_indexes
from database.dry_run import _normalize_sort, apply_update, match_document, sort_documents


class FakeCursor:
    """Mimics the motor cursor chain used by the repositories."""

    def __init__(self, docs: List[Dict[str, Any]]):
        self._docs = docs
        self._sort = []
        self._limit = 0

    def sort(self, key_or_list, direction=None):
        self._sort = _normalize_sort(key_or_list, direction)
        return self

    def limit(self, limit: int):
        self._limit = limit
        return self

    async def to_list(self, length: Optional[int] = None):
        docs = sort_documents(self._docs, self._sort) if self._sort else list(self._docs)
        limit = self._limit or length
        return [copy.deepcopy(doc) for doc in (docs[:limit] if limit else docs)]


class FakeCollection:
    """In-memory collection that honours unique partial indexes created on it."""

    def __init__(self, name: str):
        self.name = name
        self.docs: Dict[Any, Dict[str, Any]] = {}
        self.unique_indexes: List[UniqueIndex] = []
        self.writes = 0

    async def create_index(self, keys, unique=False, partialFilterExpression=None, name=None, **kwargs):
        if isinstance(keys, str):
            keys = [(keys, 1)]
        if unique:
            partial_field = next(iter(partialFilterExpression or {}), keys[0][0])
            self.unique_indexes.append(UniqueIndex(name or "unique", tuple(k for k, _ in keys), partial_field))
        return name or "index"

    def _check_unique(self, doc: Dict[str, Any]):
        for index in self.unique_indexes:
            if not isinstance(doc.get(index.partial_field), str):
                continue
            for other in self.docs.values():
                if other["_id"] == doc["_id"]:
                    continue
                if all(other.get(key) == doc.get(key) for key in index.keys):
                    raise DuplicateKeyError(f"E11000 duplicate key error index: {index.name}", 11000)

    def _first(self, query):
        for doc in self.docs.values():
            if match_document(doc, query):
                return doc
        return None

    async def find_one(self, query=None, *args, **kwargs):
        doc = self._first(query or {})
        return copy.deepcopy(doc) if doc is not None else None

    def find(self, query=None, *args, **kwargs):
        return FakeCursor([doc for doc in self.docs.values() if match_document(doc, query or {})])

    async def count_documents(self, query):
        return sum(1 for doc in self.docs.values() if match_document(doc, query))

    async def insert_one(self, document):
        if document["_id"] in self.docs:
            raise DuplicateKeyError("E11000 duplicate key error index: _id_", 11000)
        self._check_unique(document)
        self.docs[document["_id"]] = copy.deepcopy(document)
        self.writes += 1
        return SimpleNamespace(inserted_id=document["_id"], acknowledged=True)

    async def update_one(self, query, update, upsert=False):
        doc = self._first(query)
        if doc is None:
            if not upsert:
                return SimpleNamespace(matched_count=0, modified_count=0, upserted_id=None)
            seed = {k: v for k, v in query.items() if not k.startswith("$") and not isinstance(v, dict)}
            created = apply_update(seed, update, inserting=True)
            self._check_unique(created)
            self.docs[created["_id"]] = created
            self.writes += 1
            return SimpleNamespace(matched_count=0, modified_count=0, upserted_id=created["_id"])
        updated = apply_update(doc, update)
        self._check_unique(updated)
        self.docs[doc["_id"]] = updated
        self.writes += 1
        return SimpleNamespace(matched_count=1, modified_count=1, upserted_id=None)

    async def find_one_and_update(self, query, update, return_document=False, **kwargs):
        doc = self._first(query)
        if doc is None:
            return None
        updated = apply_update(doc, update)
        self._check_unique(updated)
        self.docs[doc["_id"]] = updated
        self.writes += 1
        return copy.deepcopy(updated if return_document else doc)


class FakeDatabase:
    """Database stand-in handing out FakeCollections by attribute or key."""

    def __init__(self):
        self._collections: Dict[str, FakeCollection] = {}

    def __getattr__(self, name: str) -> FakeCollection:
        if name.startswith("_"):
            raise AttributeError(name)
        if name not in self._collections:
            self._collections[name] = FakeCollection(name)
        return self._collections[name]

    def __getitem__(self, name: str) -> FakeCollection:
        return self.__getattr__(name)

    @property
    def total_writes(self) -> int:
        return sum(collection.writes for collection in self._collections.values())


class FakeRedis:
    """The subset of redis.asyncio used for idempotency records."""

    def __init__(self):
        self.store: Dict[str, str] = {}

    async def set(self, key, value, nx=False, ex=None):
        if nx and key in self.store:
            return None
        self.store[key] = value
        return True

    async def get(self, key):
        return self.store.get(key)

    async def delete(self, key):
        return 1 if self.store.pop(key, None) is not None else 0

    def record(self, key):
        return json.loads(self.store[key])


class StubTextGenerator:
    """Counts calls and returns a fixed article."""

    def __init__(self, success: bool = True):
        self.success = success
        self.calls = []

    async def generate_article(self, title, content, source_url=None):
        self.calls.append(title)
        if not self.success:
            return GeneratedText(success=False, error="provider unavailable")
        return GeneratedText(
            success=True,
            title=f"Rewritten: {title}",
            content=f"<p>{content}</p>",
            model="stub-model",
            prompt=f"Write about {title}",
            prompt_tokens=10,
            completion_tokens=20
        )


class StubImageGenerator:
    def __init__(self, success: bool = True):
        self.success = success
        self.calls = []

    async def generate_image(self, title, summary=None):
        self.calls.append(title)
        if not self.success:
            return GeneratedImage(success=False, error="image provider down")
        return GeneratedImage(success=True, media_id="media_1", media_url="https://cdn.example.com/media_1.png")


class StubPublishingClient:
    """Publishing client whose results are scripted per call."""

    def __init__(self, results: Optional[List[PublishResult]] = None):
        self.results = list(results or [])
        self.calls = []

    async def publish(self, target, content, metadata):
        self.calls.append({"target": target, "content": content, "metadata": metadata})
        if self.results:
            return self.results.pop(0)
        return PublishResult(
            success=True,
            external_id=f"wp_{len(self.calls)}",
            external_url=f"https://blog.example.com/?p={len(self.calls)}"
        )


@pytest.fixture(autouse=True)
def clean_event_bus():
    """Each test starts with an empty process-wide bus."""
    reset_event_bus()
    yield
    reset_event_bus()


@pytest_asyncio.fixture
async def fake_db():
    """Fake database with the production unique indexes in place."""
    db = FakeDatabase()
    await ensure_indexes(db)
    return db


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def text_generator():
    return StubTextGenerator()


@pytest.fixture
def image_generator():
    return StubImageGenerator()


@pytest.fixture
def publishing_client():
    return StubPublishingClient()


@pytest.fixture
def container(fake_db, text_generator, image_generator, publishing_client):
    """Service container over the fake database with zero backpressure delays."""
    container = ServiceContainer(
        db=fake_db,
        event_bus=EventBus(),
        text_generator=text_generator,
        image_generator=image_generator,
        publishing_clients={"wordpress": publishing_client}
    )
    container.executor.item_delay = 0.0
    container.publisher.item_delay = 0.0
    yield container
    container.close()


@pytest.fixture
def fixed_now():
    return datetime(2024, 2, 5, 10, 30, tzinfo=timezone.utc)


@pytest.fixture
def sample_source():
    return SourceSnapshot(
        id="src_tech",
        name="Tech News",
        type="rss",
        status="active",
        configuration={"auto_generate": True, "auto_image": False, "auto_publish": False}
    )


@pytest.fixture
def sample_items():
    return [
        RawFeedItem(guid="guid-1", url="https://example.com/a", title="Python 3.13 released", content="Release notes"),
        RawFeedItem(guid="guid-2", url="https://example.com/b", title="Rust in the kernel", content="Kernel news"),
    ]
