"""
Document store interface and implementations.

The authorization core only needs single-document reads/writes plus simple
filtered queries, so any document database can sit behind DocumentStore.
Two implementations ship here:

- InMemoryDocumentStore: process-local, used by tests and the "memory" backend
- JsonDocumentStore: one JSON file per collection under a data directory,
  written atomically (temp file + move)
"""

from __future__ import annotations

import asyncio
import copy
import json
import shutil
import tempfile
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple
from uuid import uuid4

from ..utils.exceptions import DocumentNotFoundError, StoreError

ADMINS_COLLECTION = "admins"
VALETS_COLLECTION = "valets"
CLOCK_INS_COLLECTION = "clockIns"

# (field, operator, value); operators: == != < <= > >= in
Filter = Tuple[str, str, Any]
# (field, "asc" | "desc")
Ordering = Tuple[str, str]

_MISSING = object()


def _matches(doc: Dict[str, Any], flt: Filter) -> bool:
    field_name, op, value = flt
    actual = doc.get(field_name, _MISSING)
    if op == "==":
        return actual is not _MISSING and actual == value
    if op == "!=":
        return actual is _MISSING or actual != value
    if op == "in":
        return actual is not _MISSING and actual in value
    if actual is _MISSING or actual is None:
        return False
    try:
        if op == "<":
            return actual < value
        if op == "<=":
            return actual <= value
        if op == ">":
            return actual > value
        if op == ">=":
            return actual >= value
    except TypeError:
        return False
    raise ValueError(f"Unsupported filter operator: {op}")


def apply_query(
    docs: Iterable[Tuple[str, Dict[str, Any]]],
    filters: Optional[Sequence[Filter]] = None,
    ordering: Optional[Sequence[Ordering]] = None,
    limit: Optional[int] = None,
) -> List[Dict[str, Any]]:
    """Filter, order and limit (id, fields) pairs; results carry their "id" key"""
    results = [
        {**copy.deepcopy(data), "id": doc_id}
        for doc_id, data in docs
        if all(_matches(data, f) for f in (filters or ()))
    ]
    # Stable sorts applied last-key-first give multi-key ordering
    for field_name, direction in reversed(list(ordering or ())):
        present = [d for d in results if d.get(field_name) is not None]
        absent = [d for d in results if d.get(field_name) is None]
        present.sort(key=lambda d: d[field_name], reverse=(direction == "desc"))
        results = present + absent
    if limit is not None:
        results = results[:limit]
    return results


class DocumentStore(ABC):
    """Asynchronous document database consumed by the core"""

    @abstractmethod
    async def get_document(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        """Return the document's fields, or None when it does not exist"""

    @abstractmethod
    async def set_document(self, collection: str, doc_id: str, fields: Dict[str, Any]) -> None:
        """Create or fully replace a document"""

    @abstractmethod
    async def update_document(self, collection: str, doc_id: str, partial: Dict[str, Any]) -> None:
        """Merge fields into an existing document; raises DocumentNotFoundError"""

    @abstractmethod
    async def delete_document(self, collection: str, doc_id: str) -> None:
        """Delete a document; deleting a missing document is not an error"""

    @abstractmethod
    async def query_collection(
        self,
        collection: str,
        filters: Optional[Sequence[Filter]] = None,
        ordering: Optional[Sequence[Ordering]] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """Return matching documents, each including its "id" key"""

    async def add_document(self, collection: str, fields: Dict[str, Any]) -> str:
        """Create a document under a generated id and return the id"""
        doc_id = uuid4().hex
        await self.set_document(collection, doc_id, fields)
        return doc_id


class InMemoryDocumentStore(DocumentStore):
    """Dictionary-backed store; documents are copied in and out"""

    def __init__(self):
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = {}

    async def get_document(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        doc = self._collections.get(collection, {}).get(doc_id)
        return copy.deepcopy(doc) if doc is not None else None

    async def set_document(self, collection: str, doc_id: str, fields: Dict[str, Any]) -> None:
        self._collections.setdefault(collection, {})[doc_id] = copy.deepcopy(fields)

    async def update_document(self, collection: str, doc_id: str, partial: Dict[str, Any]) -> None:
        docs = self._collections.get(collection, {})
        if doc_id not in docs:
            raise DocumentNotFoundError(collection, doc_id)
        docs[doc_id].update(copy.deepcopy(partial))

    async def delete_document(self, collection: str, doc_id: str) -> None:
        self._collections.get(collection, {}).pop(doc_id, None)

    async def query_collection(
        self,
        collection: str,
        filters: Optional[Sequence[Filter]] = None,
        ordering: Optional[Sequence[Ordering]] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        docs = self._collections.get(collection, {})
        return apply_query(docs.items(), filters, ordering, limit)


class JsonDocumentStore(DocumentStore):
    """
    File-backed store: <data_dir>/<collection>.json holding {"documents": {id: fields}}.

    File I/O runs in a worker thread; a lock serializes read-modify-write
    cycles so each single-document update is atomic.
    """

    def __init__(self, data_dir: Path):
        self.data_dir = Path(data_dir)
        self._lock = threading.Lock()

    def _path(self, collection: str) -> Path:
        return self.data_dir / f"{collection}.json"

    def _load(self, collection: str) -> Dict[str, Dict[str, Any]]:
        path = self._path(collection)
        if not path.exists():
            return {}
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            raise StoreError(f"Failed to load {path}: {e}")
        return data.get("documents", {})

    def _save(self, collection: str, docs: Dict[str, Dict[str, Any]]) -> None:
        path = self._path(collection)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                mode="w", dir=str(path.parent), delete=False, encoding="utf-8"
            ) as tf:
                json.dump({"documents": docs}, tf, indent=2, ensure_ascii=False, default=str)
                temp_path = Path(tf.name)
        except OSError as e:
            raise StoreError(f"Failed to write {path}: {e}")

        try:
            shutil.move(str(temp_path), str(path))
        except OSError as e:
            if temp_path.exists():
                temp_path.unlink()
            raise StoreError(f"Failed to save {path}: {e}")

    def _get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            return self._load(collection).get(doc_id)

    def _set(self, collection: str, doc_id: str, fields: Dict[str, Any]) -> None:
        with self._lock:
            docs = self._load(collection)
            docs[doc_id] = dict(fields)
            self._save(collection, docs)

    def _update(self, collection: str, doc_id: str, partial: Dict[str, Any]) -> None:
        with self._lock:
            docs = self._load(collection)
            if doc_id not in docs:
                raise DocumentNotFoundError(collection, doc_id)
            docs[doc_id].update(partial)
            self._save(collection, docs)

    def _delete(self, collection: str, doc_id: str) -> None:
        with self._lock:
            docs = self._load(collection)
            if docs.pop(doc_id, None) is not None:
                self._save(collection, docs)

    def _query(self, collection, filters, ordering, limit) -> List[Dict[str, Any]]:
        with self._lock:
            docs = self._load(collection)
        return apply_query(docs.items(), filters, ordering, limit)

    async def get_document(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        return await asyncio.to_thread(self._get, collection, doc_id)

    async def set_document(self, collection: str, doc_id: str, fields: Dict[str, Any]) -> None:
        await asyncio.to_thread(self._set, collection, doc_id, fields)

    async def update_document(self, collection: str, doc_id: str, partial: Dict[str, Any]) -> None:
        await asyncio.to_thread(self._update, collection, doc_id, partial)

    async def delete_document(self, collection: str, doc_id: str) -> None:
        await asyncio.to_thread(self._delete, collection, doc_id)

    async def query_collection(
        self,
        collection: str,
        filters: Optional[Sequence[Filter]] = None,
        ordering: Optional[Sequence[Ordering]] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        return await asyncio.to_thread(self._query, collection, filters, ordering, limit)
