"""
Document store access

Every collection is addressed by name and every document is a plain dict.
Documents come back with their backend id under "id" (never "_id").

MongoDocumentStore is used whenever DATABASE_URL is set. Without it the app
keeps its documents in process memory (MemoryDocumentStore), which is what
local development and the tests run against.
"""

from __future__ import annotations

import copy
from typing import Any, Dict, List, Optional

import structlog
from bson import ObjectId
from fastapi.concurrency import run_in_threadpool
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.errors import DuplicateKeyError, PyMongoError

from errors import BackendError, DuplicateDocumentError

logger = structlog.get_logger(__name__)


def to_str_id(doc: Optional[dict]) -> Optional[dict]:
    if not doc:
        return doc
    d = {**doc}
    if "_id" in d:
        d["id"] = str(d.pop("_id"))
    return d


class DocumentStore:
    """Interface shared by the Mongo and in-memory stores."""

    kind = "abstract"
    name = ""

    async def create_document(self, collection: str, data: dict) -> str:
        raise NotImplementedError

    async def set_document(self, collection: str, doc_id: str, data: dict, merge: bool = False) -> None:
        raise NotImplementedError

    async def get_document(self, collection: str, doc_id: str) -> Optional[dict]:
        raise NotImplementedError

    async def get_documents(
        self,
        collection: str,
        filter_dict: Optional[dict] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[dict]:
        raise NotImplementedError

    async def count_documents(self, collection: str, filter_dict: Optional[dict] = None) -> int:
        raise NotImplementedError

    async def distinct(self, collection: str, field: str) -> List[Any]:
        raise NotImplementedError

    async def delete_documents(self, collection: str, filter_dict: Optional[dict] = None) -> int:
        raise NotImplementedError

    async def list_collection_names(self) -> List[str]:
        raise NotImplementedError

    async def ensure_unique(self, collection: str, field: str) -> None:
        """Reject writes that would give two documents in ``collection`` the same ``field``."""
        raise NotImplementedError


class MongoDocumentStore(DocumentStore):
    kind = "mongodb"

    def __init__(self, database_url: str, database_name: str, client: Optional[MongoClient] = None):
        self._client = client or MongoClient(database_url)
        self._db = self._client[database_name]
        self.name = database_name

    async def _call(self, op: str, fn, *args, **kwargs):
        try:
            return await run_in_threadpool(fn, *args, **kwargs)
        except DuplicateKeyError:
            # only writes raise it; _write maps it to DuplicateDocumentError
            raise
        except PyMongoError as e:
            logger.error("backend_call_failed", op=op, error=str(e))
            raise BackendError("Backend request failed", details={"op": op, "error": str(e)}) from e

    async def _write(self, op: str, collection: str, fn, *args, **kwargs):
        try:
            return await self._call(op, fn, *args, **kwargs)
        except DuplicateKeyError as e:
            field = next(iter((e.details or {}).get("keyPattern") or {}), "_id")
            logger.warning("duplicate_key_rejected", op=op, collection=collection, field=field)
            raise DuplicateDocumentError(collection, field) from e

    @staticmethod
    def _id_filter(doc_id: str) -> dict:
        if ObjectId.is_valid(doc_id):
            return {"_id": {"$in": [ObjectId(doc_id), doc_id]}}
        return {"_id": doc_id}

    async def create_document(self, collection: str, data: dict) -> str:
        result = await self._write("create_document", collection, self._db[collection].insert_one, dict(data))
        return str(result.inserted_id)

    async def set_document(self, collection: str, doc_id: str, data: dict, merge: bool = False) -> None:
        coll = self._db[collection]
        if merge:
            await self._write("set_document", collection, coll.update_one, {"_id": doc_id}, {"$set": data}, upsert=True)
        else:
            await self._write("set_document", collection, coll.replace_one, {"_id": doc_id}, data, upsert=True)

    async def get_document(self, collection: str, doc_id: str) -> Optional[dict]:
        doc = await self._call("get_document", self._db[collection].find_one, self._id_filter(doc_id))
        return to_str_id(doc)

    async def get_documents(self, collection, filter_dict=None, order_by=None, descending=False, limit=None):
        def run():
            cursor = self._db[collection].find(filter_dict or {})
            if order_by:
                cursor = cursor.sort(order_by, DESCENDING if descending else ASCENDING)
            if limit:
                cursor = cursor.limit(limit)
            return [to_str_id(d) for d in cursor]

        return await self._call("get_documents", run)

    async def count_documents(self, collection, filter_dict=None):
        return await self._call("count_documents", self._db[collection].count_documents, filter_dict or {})

    async def distinct(self, collection, field):
        return await self._call("distinct", self._db[collection].distinct, field)

    async def delete_documents(self, collection, filter_dict=None):
        result = await self._call("delete_documents", self._db[collection].delete_many, filter_dict or {})
        return result.deleted_count

    async def list_collection_names(self):
        return await self._call("list_collection_names", self._db.list_collection_names)

    async def ensure_unique(self, collection, field):
        await self._call("ensure_unique", self._db[collection].create_index, field, unique=True)


class MemoryDocumentStore(DocumentStore):
    """Process-local store with the same semantics as the Mongo one (equality filters only)."""

    kind = "memory"

    def __init__(self, name: str = "memory"):
        self.name = name
        self._collections: Dict[str, Dict[str, dict]] = {}
        self._unique: Dict[str, List[str]] = {}

    def _coll(self, collection: str) -> Dict[str, dict]:
        return self._collections.setdefault(collection, {})

    @staticmethod
    def _matches(doc: dict, filter_dict: Optional[dict]) -> bool:
        return all(doc.get(k) == v for k, v in (filter_dict or {}).items())

    def _check_unique(self, collection: str, doc_id: str, doc: dict) -> None:
        for field in self._unique.get(collection, []):
            value = doc.get(field)
            if value is None:
                continue
            for other_id, other in self._coll(collection).items():
                if other_id != doc_id and other.get(field) == value:
                    logger.warning("duplicate_key_rejected", collection=collection, field=field)
                    raise DuplicateDocumentError(collection, field)

    @staticmethod
    def _out(doc_id: str, doc: dict) -> dict:
        out = copy.deepcopy(doc)
        out["id"] = doc_id
        return out

    async def create_document(self, collection, data):
        doc_id = str(ObjectId())
        self._check_unique(collection, doc_id, data)
        self._coll(collection)[doc_id] = copy.deepcopy(dict(data))
        return doc_id

    async def set_document(self, collection, doc_id, data, merge=False):
        coll = self._coll(collection)
        if merge and doc_id in coll:
            merged = {**coll[doc_id], **data}
            self._check_unique(collection, doc_id, merged)
            coll[doc_id] = copy.deepcopy(merged)
        else:
            self._check_unique(collection, doc_id, data)
            coll[doc_id] = copy.deepcopy(dict(data))

    async def get_document(self, collection, doc_id):
        doc = self._coll(collection).get(doc_id)
        return self._out(doc_id, doc) if doc is not None else None

    async def get_documents(self, collection, filter_dict=None, order_by=None, descending=False, limit=None):
        rows = [
            self._out(doc_id, doc)
            for doc_id, doc in self._coll(collection).items()
            if self._matches(doc, filter_dict)
        ]
        if order_by:
            present = [r for r in rows if r.get(order_by) is not None]
            missing = [r for r in rows if r.get(order_by) is None]
            present.sort(key=lambda r: r[order_by], reverse=descending)
            # Mongo orders null lowest
            rows = present + missing if descending else missing + present
        if limit:
            rows = rows[:limit]
        return rows

    async def count_documents(self, collection, filter_dict=None):
        return sum(1 for doc in self._coll(collection).values() if self._matches(doc, filter_dict))

    async def distinct(self, collection, field):
        seen = []
        for doc in self._coll(collection).values():
            value = doc.get(field)
            if value is not None and value not in seen:
                seen.append(value)
        return seen

    async def delete_documents(self, collection, filter_dict=None):
        coll = self._coll(collection)
        doomed = [doc_id for doc_id, doc in coll.items() if self._matches(doc, filter_dict)]
        for doc_id in doomed:
            del coll[doc_id]
        return len(doomed)

    async def list_collection_names(self):
        return [name for name, docs in self._collections.items() if docs]

    async def ensure_unique(self, collection, field):
        fields = self._unique.setdefault(collection, [])
        if field not in fields:
            fields.append(field)


def create_store(database_url: Optional[str], database_name: str) -> DocumentStore:
    if database_url:
        logger.info("document_store_selected", kind="mongodb", database=database_name)
        return MongoDocumentStore(database_url, database_name)
    logger.warning("document_store_selected", kind="memory", reason="DATABASE_URL not set")
    return MemoryDocumentStore(database_name)
