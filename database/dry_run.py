"""Write-discarding database proxy used for dry runs.

Reads go to the real database; writes land in a per-collection in-memory
overlay that later reads in the same dry run can see. Nothing is ever sent
to the real database except queries. Staged writes are checked against the
same unique indexes as real ones, so a dry run reports the same duplicates.
"""
import copy
from types import SimpleNamespace
from typing import Any, Dict, List, Optional, Tuple

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import DuplicateKeyError

from database.connection import UNIQUE_INDEXES, UniqueIndex

_MISSING = object()


def get_path(doc: Dict[str, Any], path: str) -> Any:
    """Resolve a dotted path; missing segments yield a sentinel."""
    current: Any = doc
    for part in path.split("."):
        if not isinstance(current, dict) or part not in current:
            return _MISSING
        current = current[part]
    return current


def set_path(doc: Dict[str, Any], path: str, value: Any):
    parts = path.split(".")
    current = doc
    for part in parts[:-1]:
        current = current.setdefault(part, {})
    current[parts[-1]] = value


def unset_path(doc: Dict[str, Any], path: str):
    parts = path.split(".")
    current = doc
    for part in parts[:-1]:
        current = current.get(part)
        if not isinstance(current, dict):
            return
    current.pop(parts[-1], None)


def _match_operator(value: Any, op: str, expected: Any) -> bool:
    present = value is not _MISSING
    actual = value if present else None
    if op == "$eq":
        return actual == expected
    if op == "$ne":
        return actual != expected
    if op == "$in":
        return actual in expected
    if op == "$nin":
        return actual not in expected
    if op == "$exists":
        return present == bool(expected)
    if op == "$type":
        return expected == "string" and isinstance(actual, str)
    if actual is None:
        return False
    if op == "$lt":
        return actual < expected
    if op == "$lte":
        return actual <= expected
    if op == "$gt":
        return actual > expected
    if op == "$gte":
        return actual >= expected
    raise ValueError(f"Unsupported query operator: {op}")


def match_document(doc: Dict[str, Any], query: Optional[Dict[str, Any]]) -> bool:
    """Evaluate the subset of the Mongo query language the repositories use."""
    for key, expected in (query or {}).items():
        if key == "$or":
            if not any(match_document(doc, sub) for sub in expected):
                return False
            continue
        if key == "$and":
            if not all(match_document(doc, sub) for sub in expected):
                return False
            continue

        value = get_path(doc, key)
        if isinstance(expected, dict) and expected and all(k.startswith("$") for k in expected):
            if not all(_match_operator(value, op, arg) for op, arg in expected.items()):
                return False
        elif (None if value is _MISSING else value) != expected:
            return False
    return True


def apply_update(doc: Dict[str, Any], update: Dict[str, Any], inserting: bool = False) -> Dict[str, Any]:
    """Apply $set/$inc/$unset (and $setOnInsert when inserting) to a copy of doc."""
    updated = copy.deepcopy(doc)
    for path, value in update.get("$set", {}).items():
        set_path(updated, path, value)
    for path, amount in update.get("$inc", {}).items():
        current = get_path(updated, path)
        set_path(updated, path, (0 if current is _MISSING or current is None else current) + amount)
    for path in update.get("$unset", {}):
        unset_path(updated, path)
    if inserting:
        for path, value in update.get("$setOnInsert", {}).items():
            set_path(updated, path, value)
    return updated


def sort_documents(docs: List[Dict[str, Any]], sort: List[Tuple[str, int]]) -> List[Dict[str, Any]]:
    """Stable multi-key sort; missing values sort first, as in Mongo."""
    ordered = list(docs)
    for field_name, direction in reversed(sort):
        def sort_key(doc, field_name=field_name):
            value = get_path(doc, field_name)
            missing = value is _MISSING or value is None
            return (not missing, value if not missing else 0)
        ordered.sort(key=sort_key, reverse=direction < 0)
    return ordered


def _normalize_sort(key_or_list: Any, direction: Optional[int] = None) -> List[Tuple[str, int]]:
    if isinstance(key_or_list, str):
        return [(key_or_list, direction if direction is not None else 1)]
    return list(key_or_list)


class DryRunCursor:
    """Cursor over real results merged with the overlay."""

    def __init__(self, collection: "DryRunCollection", query: Dict[str, Any]):
        self._collection = collection
        self._query = query
        self._sort: List[Tuple[str, int]] = []
        self._limit = 0

    def sort(self, key_or_list: Any, direction: Optional[int] = None) -> "DryRunCursor":
        self._sort = _normalize_sort(key_or_list, direction)
        return self

    def limit(self, limit: int) -> "DryRunCursor":
        self._limit = limit
        return self

    async def to_list(self, length: Optional[int] = None) -> List[Dict[str, Any]]:
        real_docs = await self._collection.real.find(self._query).to_list(length=None)
        docs = self._collection.merge(real_docs, self._query)
        if self._sort:
            docs = sort_documents(docs, self._sort)
        limit = self._limit or length
        return docs[:limit] if limit else docs


class DryRunCollection:
    """Collection proxy that stages writes in memory."""

    def __init__(self, real: Any, name: str, unique_indexes: Optional[List[UniqueIndex]] = None):
        self.real = real
        self.name = name
        self.unique_indexes = unique_indexes or []
        self.overlay: Dict[Any, Dict[str, Any]] = {}
        self.writes: List[Tuple[str, Any]] = []

    def merge(self, real_docs: List[Dict[str, Any]], query: Dict[str, Any]) -> List[Dict[str, Any]]:
        merged = []
        seen = set()
        for doc in real_docs:
            staged = self.overlay.get(doc.get("_id"))
            seen.add(doc.get("_id"))
            if staged is None:
                merged.append(doc)
            elif match_document(staged, query):
                merged.append(copy.deepcopy(staged))
        for doc_id, staged in self.overlay.items():
            if doc_id not in seen and match_document(staged, query):
                merged.append(copy.deepcopy(staged))
        return merged

    async def _check_unique(self, doc: Dict[str, Any]):
        for index in self.unique_indexes:
            if not isinstance(doc.get(index.partial_field), str):
                continue
            query = {key: doc.get(key) for key in index.keys}
            query["_id"] = {"$ne": doc["_id"]}
            if await self._current(query) is not None:
                raise DuplicateKeyError(f"E11000 duplicate key error collection: {self.name} index: {index.name}", 11000)

    async def _current(self, query: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        for staged in self.overlay.values():
            if match_document(staged, query):
                return copy.deepcopy(staged)
        doc = await self.real.find_one(query)
        if doc is not None and doc.get("_id") in self.overlay:
            # Shadowed by a staged version that no longer matches
            docs = await self.find(query).to_list(length=1)
            return docs[0] if docs else None
        return doc

    async def find_one(self, query: Optional[Dict[str, Any]] = None, *args, **kwargs) -> Optional[Dict[str, Any]]:
        return await self._current(query or {})

    def find(self, query: Optional[Dict[str, Any]] = None, *args, **kwargs) -> DryRunCursor:
        return DryRunCursor(self, query or {})

    async def count_documents(self, query: Dict[str, Any]) -> int:
        return len(await self.find(query).to_list(length=None))

    async def insert_one(self, document: Dict[str, Any]) -> SimpleNamespace:
        await self._check_unique(document)
        self.overlay[document["_id"]] = copy.deepcopy(document)
        self.writes.append(("insert_one", document["_id"]))
        return SimpleNamespace(inserted_id=document["_id"], acknowledged=True)

    async def update_one(self, query: Dict[str, Any], update: Dict[str, Any], upsert: bool = False) -> SimpleNamespace:
        doc = await self._current(query)
        if doc is None:
            if not upsert:
                return SimpleNamespace(matched_count=0, modified_count=0, upserted_id=None)
            seed = {k: v for k, v in query.items() if not k.startswith("$") and not isinstance(v, dict)}
            doc = apply_update(seed, update, inserting=True)
            self.overlay[doc["_id"]] = doc
            self.writes.append(("upsert", doc["_id"]))
            return SimpleNamespace(matched_count=0, modified_count=0, upserted_id=doc["_id"])
        updated = apply_update(doc, update)
        await self._check_unique(updated)
        self.overlay[doc["_id"]] = updated
        self.writes.append(("update_one", doc["_id"]))
        return SimpleNamespace(matched_count=1, modified_count=1, upserted_id=None)

    async def find_one_and_update(
        self,
        query: Dict[str, Any],
        update: Dict[str, Any],
        return_document: bool = False,
        **kwargs
    ) -> Optional[Dict[str, Any]]:
        doc = await self._current(query)
        if doc is None:
            return None
        updated = apply_update(doc, update)
        await self._check_unique(updated)
        self.overlay[doc["_id"]] = updated
        self.writes.append(("find_one_and_update", doc["_id"]))
        return copy.deepcopy(updated if return_document else doc)

    async def create_index(self, *args, **kwargs) -> str:
        return "dry_run"


class DryRunDatabase:
    """Database proxy handing out DryRunCollections."""

    def __init__(self, real_db: AsyncIOMotorDatabase):
        self._real_db = real_db
        self._collections: Dict[str, DryRunCollection] = {}

    def __getattr__(self, name: str) -> DryRunCollection:
        if name.startswith("_"):
            raise AttributeError(name)
        if name not in self._collections:
            self._collections[name] = DryRunCollection(
                self._real_db[name], name, UNIQUE_INDEXES.get(name)
            )
        return self._collections[name]

    def __getitem__(self, name: str) -> DryRunCollection:
        return self.__getattr__(name)

    @property
    def staged_writes(self) -> List[Tuple[str, str, Any]]:
        return [
            (name, operation, doc_id)
            for name, collection in self._collections.items()
            for operation, doc_id in collection.writes
        ]
