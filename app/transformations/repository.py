"""Job record storage.

Two tiers of claim exclusivity:

- ``MongoTransformationRepository.claim`` is one conditional
  ``find_one_and_update``; exactly one caller wins a claim.
- ``InMemoryTransformationRepository.claim`` is a check-then-write under an
  ``asyncio.Lock``; exclusive only within a single process.

Status changes after submission go through ``update``: a partial write that
only lands when the stored record still matches ``expected``. Writers that
lose such a race leave the record alone.
"""

from __future__ import annotations

import asyncio
import copy
from enum import Enum
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from pymongo import ReturnDocument

from app.core.config import get_settings
from app.core.database import Database
from app.transformations.models import TransformationRecord, TransformationStatus


def _to_doc(record: TransformationRecord) -> Dict[str, Any]:
    doc = record.model_dump()
    doc["status"] = record.status.value
    doc["options"]["creativity_level"] = record.options.creativity_level.value
    return doc


def _from_doc(doc: Optional[Dict[str, Any]]) -> Optional[TransformationRecord]:
    if not doc:
        return None
    doc = dict(doc)
    doc.pop("_id", None)
    return TransformationRecord(**doc)


def _plain(fields: Dict[str, Any]) -> Dict[str, Any]:
    return {name: value.value if isinstance(value, Enum) else value for name, value in fields.items()}


def _claim_is_live(claimed_at: Optional[datetime], now: datetime, claim_timeout: float) -> bool:
    return claimed_at is not None and (now - claimed_at).total_seconds() < claim_timeout


class TransformationRepository:
    """Whole-record persistence for transformation jobs."""

    async def get(self, job_id: str) -> Optional[TransformationRecord]:
        raise NotImplementedError

    async def save(self, record: TransformationRecord) -> None:
        raise NotImplementedError

    async def list_all(self, limit: Optional[int] = None) -> List[TransformationRecord]:
        raise NotImplementedError

    async def list_for_owner(self, owner_id: str, limit: int = 20) -> List[TransformationRecord]:
        raise NotImplementedError

    async def claim(self, job_id: str, now: datetime, claim_timeout: float) -> Optional[TransformationRecord]:
        """
        Set ``claimed_at = now`` if the job is processing and has no live claim.

        Returns the claimed record, or None when another worker holds the claim
        (or the job is not in ``processing``).
        """
        raise NotImplementedError

    async def update(
        self, job_id: str, fields: Dict[str, Any], expected: Optional[Dict[str, Any]] = None
    ) -> bool:
        """
        Set ``fields`` on the job if every ``expected`` field still holds.

        Returns False when the job is missing or has moved on.
        """
        raise NotImplementedError

    async def record_email_open(self, job_id: str, now: datetime) -> bool:
        """Count an email open; the first open also sets ``email_opened_at``."""
        raise NotImplementedError

    async def list_feedback(self, limit: int = 50) -> List[TransformationRecord]:
        """Records carrying feedback, most recent feedback first."""
        raise NotImplementedError


class MongoTransformationRepository(TransformationRepository):
    @staticmethod
    def _collection():
        return Database.get_collection("transformations")

    async def get(self, job_id: str) -> Optional[TransformationRecord]:
        return _from_doc(await self._collection().find_one({"id": job_id}, {"_id": False}))

    async def save(self, record: TransformationRecord) -> None:
        await self._collection().replace_one({"id": record.id}, _to_doc(record), upsert=True)

    async def list_all(self, limit: Optional[int] = None) -> List[TransformationRecord]:
        cursor = self._collection().find({}, {"_id": False}).sort("created_at", -1)
        if limit:
            cursor = cursor.limit(int(limit))
        docs = await cursor.to_list(length=limit)
        return [_from_doc(doc) for doc in docs]

    async def list_for_owner(self, owner_id: str, limit: int = 20) -> List[TransformationRecord]:
        cursor = (
            self._collection()
            .find({"options.owner_id": owner_id}, {"_id": False})
            .sort("created_at", -1)
            .limit(int(limit))
        )
        docs = await cursor.to_list(length=limit)
        return [_from_doc(doc) for doc in docs]

    async def claim(self, job_id: str, now: datetime, claim_timeout: float) -> Optional[TransformationRecord]:
        expired_before = now - timedelta(seconds=claim_timeout)
        doc = await self._collection().find_one_and_update(
            {
                "id": job_id,
                "status": TransformationStatus.PROCESSING.value,
                "$or": [{"claimed_at": None}, {"claimed_at": {"$lte": expired_before}}],
            },
            {"$set": {"claimed_at": now, "updated_at": now}},
            projection={"_id": False},
            return_document=ReturnDocument.AFTER,
        )
        return _from_doc(doc)

    async def update(
        self, job_id: str, fields: Dict[str, Any], expected: Optional[Dict[str, Any]] = None
    ) -> bool:
        result = await self._collection().update_one(
            {"id": job_id, **_plain(expected or {})},
            {"$set": _plain(fields)},
        )
        return result.matched_count == 1

    async def record_email_open(self, job_id: str, now: datetime) -> bool:
        result = await self._collection().update_one(
            {"id": job_id},
            [
                {
                    "$set": {
                        "email_open_count": {"$add": [{"$ifNull": ["$email_open_count", 0]}, 1]},
                        "email_opened_at": {"$ifNull": ["$email_opened_at", now]},
                    }
                }
            ],
        )
        return result.matched_count == 1

    async def list_feedback(self, limit: int = 50) -> List[TransformationRecord]:
        cursor = (
            self._collection()
            .find({"feedback_submitted_at": {"$ne": None}}, {"_id": False})
            .sort("feedback_submitted_at", -1)
            .limit(int(limit))
        )
        docs = await cursor.to_list(length=limit)
        return [_from_doc(doc) for doc in docs]


class InMemoryTransformationRepository(TransformationRepository):
    def __init__(self):
        self._docs: Dict[str, Dict[str, Any]] = {}
        self._lock = asyncio.Lock()

    async def get(self, job_id: str) -> Optional[TransformationRecord]:
        return _from_doc(copy.deepcopy(self._docs.get(job_id)))

    async def save(self, record: TransformationRecord) -> None:
        self._docs[record.id] = copy.deepcopy(_to_doc(record))

    async def list_all(self, limit: Optional[int] = None) -> List[TransformationRecord]:
        docs = sorted(self._docs.values(), key=lambda d: d["created_at"], reverse=True)
        if limit:
            docs = docs[: int(limit)]
        return [_from_doc(copy.deepcopy(doc)) for doc in docs]

    async def list_for_owner(self, owner_id: str, limit: int = 20) -> List[TransformationRecord]:
        records = await self.list_all()
        return [r for r in records if r.options.owner_id == owner_id][: int(limit)]

    async def claim(self, job_id: str, now: datetime, claim_timeout: float) -> Optional[TransformationRecord]:
        async with self._lock:
            doc = self._docs.get(job_id)
            if not doc or doc["status"] != TransformationStatus.PROCESSING.value:
                return None
            if _claim_is_live(doc.get("claimed_at"), now, claim_timeout):
                return None
            doc["claimed_at"] = now
            doc["updated_at"] = now
            return _from_doc(copy.deepcopy(doc))

    async def update(
        self, job_id: str, fields: Dict[str, Any], expected: Optional[Dict[str, Any]] = None
    ) -> bool:
        async with self._lock:
            doc = self._docs.get(job_id)
            if not doc:
                return False
            if any(doc.get(name) != value for name, value in _plain(expected or {}).items()):
                return False
            doc.update(copy.deepcopy(_plain(fields)))
            return True

    async def record_email_open(self, job_id: str, now: datetime) -> bool:
        async with self._lock:
            doc = self._docs.get(job_id)
            if not doc:
                return False
            doc["email_open_count"] = (doc.get("email_open_count") or 0) + 1
            if doc.get("email_opened_at") is None:
                doc["email_opened_at"] = now
            return True

    async def list_feedback(self, limit: int = 50) -> List[TransformationRecord]:
        docs = [d for d in self._docs.values() if d.get("feedback_submitted_at") is not None]
        docs.sort(key=lambda d: d["feedback_submitted_at"], reverse=True)
        return [_from_doc(copy.deepcopy(doc)) for doc in docs[: int(limit)]]


def create_transformation_repository() -> TransformationRepository:
    """Build the repository selected by JOB_STORE_BACKEND."""
    backend = (get_settings().JOB_STORE_BACKEND or "mongo").strip().lower()
    if backend == "mongo":
        return MongoTransformationRepository()
    if backend == "memory":
        return InMemoryTransformationRepository()
    raise RuntimeError(f"Unsupported JOB_STORE_BACKEND: {backend}")
