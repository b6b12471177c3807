"""Document database handles.

MongoDB (through motor) is used when reachable. Otherwise a JSON file-backed
store keeps data between restarts, and ``InMemoryDB`` backs the tests. The two
local stores mimic the small slice of the motor collection API this codebase
uses: ``find_one``, ``find(...).sort(...).to_list(n)``, ``insert_one``,
``update_one`` ($set / $push, including $each with $sort / $pull),
``delete_one`` and ``delete_many``.
"""
import asyncio
import copy
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from motor.motor_asyncio import AsyncIOMotorClient

from fitboard.config import DEFAULT_DATA_FILE

logger = logging.getLogger(__name__)

COLLECTIONS = ("users", "weights", "completed_workouts", "activities")


class _InMemoryResult:
    def __init__(self, *, matched_count: int = 0, modified_count: int = 0, deleted_count: int = 0):
        self.matched_count = matched_count
        self.modified_count = modified_count
        self.deleted_count = deleted_count


def _apply_projection(doc: Dict[str, Any], projection: Optional[Dict[str, int]]) -> Dict[str, Any]:
    # Deep copy so callers never hold references into the stored documents.
    doc = copy.deepcopy(doc)
    if not projection:
        return doc
    # Only exclusion projections like {"_id": 0, "password": 0} are used
    excluded_keys = {k for k, v in projection.items() if v == 0}
    return {k: v for k, v in doc.items() if k not in excluded_keys}


def _match_filter(doc: Dict[str, Any], query: Dict[str, Any]) -> bool:
    for key, expected in query.items():
        if isinstance(expected, dict):
            value = doc.get(key)
            gte = expected.get("$gte")
            lte = expected.get("$lte")
            within = expected.get("$in")
            if gte is not None and (value is None or value < gte):
                return False
            if lte is not None and (value is None or value > lte):
                return False
            if within is not None and value not in within:
                return False
            continue

        if doc.get(key) != expected:
            return False
    return True


def _apply_update(doc: Dict[str, Any], update: Dict[str, Any]) -> bool:
    changed = False

    update_set = update.get("$set")
    if isinstance(update_set, dict):
        doc.update(copy.deepcopy(update_set))
        changed = True

    update_push = update.get("$push")
    if isinstance(update_push, dict):
        for field, value in update_push.items():
            items = list(doc.get(field) or [])
            if isinstance(value, dict) and "$each" in value:
                items.extend(copy.deepcopy(value["$each"]))
                for sort_field, direction in reversed(list((value.get("$sort") or {}).items())):
                    items.sort(key=lambda i: i.get(sort_field) or "", reverse=direction == -1)
            else:
                items.append(copy.deepcopy(value))
            doc[field] = items
        changed = True

    update_pull = update.get("$pull")
    if isinstance(update_pull, dict):
        for field, condition in update_pull.items():
            items = list(doc.get(field) or [])
            if isinstance(condition, dict):
                kept = [i for i in items if not (isinstance(i, dict) and _match_filter(i, condition))]
            else:
                kept = [i for i in items if i != condition]
            doc[field] = kept
        changed = True

    return changed


class _InMemoryCursor:
    def __init__(self, docs: List[Dict[str, Any]], projection: Optional[Dict[str, int]]):
        self._docs = docs
        self._projection = projection
        self._sort: Optional[Tuple[str, int]] = None

    def sort(self, field: str, direction: int):
        self._sort = (field, direction)
        return self

    async def to_list(self, length: int) -> List[Dict[str, Any]]:
        docs = list(self._docs)
        if self._sort is not None:
            field, direction = self._sort
            reverse = direction == -1
            docs.sort(key=lambda d: d.get(field) or "", reverse=reverse)

        limited = docs[:length]
        return [_apply_projection(d, self._projection) for d in limited]


class _InMemoryCollection:
    def __init__(self):
        self._docs: List[Dict[str, Any]] = []

    async def find_one(self, query: Dict[str, Any], projection: Optional[Dict[str, int]] = None):
        for doc in self._docs:
            if _match_filter(doc, query):
                return _apply_projection(doc, projection)
        return None

    async def insert_one(self, doc: Dict[str, Any]):
        self._docs.append(copy.deepcopy(doc))
        return _InMemoryResult(matched_count=1)

    def find(self, query: Dict[str, Any], projection: Optional[Dict[str, int]] = None) -> _InMemoryCursor:
        matched = [d for d in self._docs if _match_filter(d, query)]
        return _InMemoryCursor(matched, projection)

    async def update_one(self, query: Dict[str, Any], update: Dict[str, Any]):
        for doc in self._docs:
            if _match_filter(doc, query):
                changed = _apply_update(doc, update)
                return _InMemoryResult(matched_count=1, modified_count=int(changed))
        return _InMemoryResult(matched_count=0)

    async def delete_one(self, query: Dict[str, Any]):
        for i, doc in enumerate(self._docs):
            if _match_filter(doc, query):
                del self._docs[i]
                return _InMemoryResult(deleted_count=1)
        return _InMemoryResult(deleted_count=0)

    async def delete_many(self, query: Dict[str, Any]):
        before = len(self._docs)
        self._docs = [d for d in self._docs if not _match_filter(d, query)]
        return _InMemoryResult(deleted_count=before - len(self._docs))


class InMemoryDB:
    def __init__(self):
        self.users = _InMemoryCollection()
        self.weights = _InMemoryCollection()
        self.completed_workouts = _InMemoryCollection()
        self.activities = _InMemoryCollection()


class FileBackedDB:
    def __init__(self, path: Path):
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = asyncio.Lock()
        self._data: Dict[str, List[Dict[str, Any]]] = {key: [] for key in COLLECTIONS}
        self._load_from_disk()

        self.users = _FileBackedCollection(self, "users")
        self.weights = _FileBackedCollection(self, "weights")
        self.completed_workouts = _FileBackedCollection(self, "completed_workouts")
        self.activities = _FileBackedCollection(self, "activities")

    def _load_from_disk(self) -> None:
        if not self._path.exists():
            return
        try:
            raw = self._path.read_text(encoding="utf-8")
            loaded = json.loads(raw) if raw.strip() else {}
            if isinstance(loaded, dict):
                for key in COLLECTIONS:
                    value = loaded.get(key)
                    if isinstance(value, list):
                        self._data[key] = value
        except (OSError, ValueError) as e:
            logger.warning("Failed to load file-backed DB (%s). Starting empty.", str(e))

    async def _save_to_disk(self) -> None:
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        payload = json.dumps(self._data, ensure_ascii=False, separators=(",", ":"))
        tmp_path.write_text(payload, encoding="utf-8")
        os.replace(tmp_path, self._path)


class _FileBackedCollection:
    def __init__(self, db: FileBackedDB, key: str):
        self._db = db
        self._key = key

    def _docs(self) -> List[Dict[str, Any]]:
        return self._db._data[self._key]

    async def find_one(self, query: Dict[str, Any], projection: Optional[Dict[str, int]] = None):
        async with self._db._lock:
            for doc in self._docs():
                if _match_filter(doc, query):
                    return _apply_projection(doc, projection)
        return None

    async def insert_one(self, doc: Dict[str, Any]):
        async with self._db._lock:
            self._docs().append(copy.deepcopy(doc))
            await self._db._save_to_disk()
        return _InMemoryResult(matched_count=1)

    def find(self, query: Dict[str, Any], projection: Optional[Dict[str, int]] = None) -> _InMemoryCursor:
        # Cursor is consumed later; keep it independent of future mutations.
        matched = [copy.deepcopy(d) for d in self._docs() if _match_filter(d, query)]
        return _InMemoryCursor(matched, projection)

    async def update_one(self, query: Dict[str, Any], update: Dict[str, Any]):
        async with self._db._lock:
            for doc in self._docs():
                if _match_filter(doc, query):
                    changed = _apply_update(doc, update)
                    if changed:
                        await self._db._save_to_disk()
                    return _InMemoryResult(matched_count=1, modified_count=int(changed))
        return _InMemoryResult(matched_count=0)

    async def delete_one(self, query: Dict[str, Any]):
        async with self._db._lock:
            for i, doc in enumerate(self._docs()):
                if _match_filter(doc, query):
                    del self._docs()[i]
                    await self._db._save_to_disk()
                    return _InMemoryResult(deleted_count=1)
        return _InMemoryResult(deleted_count=0)

    async def delete_many(self, query: Dict[str, Any]):
        async with self._db._lock:
            before = len(self._docs())
            self._db._data[self._key] = [d for d in self._docs() if not _match_filter(d, query)]
            deleted = before - len(self._db._data[self._key])
            if deleted:
                await self._db._save_to_disk()
        return _InMemoryResult(deleted_count=deleted)


async def connect(mongo_url: Optional[str], db_name: str, data_file: Optional[Path]) -> Tuple[Any, Any]:
    """Return ``(client, db)``; ``client`` is None when not on MongoDB."""
    if mongo_url:
        try:
            client = AsyncIOMotorClient(mongo_url, serverSelectionTimeoutMS=2000)
            await client.admin.command("ping")
            logger.info("Connected to MongoDB: %s / %s", mongo_url, db_name)
            return client, client[db_name]
        except Exception as e:
            logger.warning("MongoDB not available (%s). Falling back to file-backed DB.", str(e))

    path = Path(data_file) if data_file else DEFAULT_DATA_FILE
    logger.warning("Using file-backed DB at %s (data persists between restarts).", str(path))
    return None, FileBackedDB(path)
