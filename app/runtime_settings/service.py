"""Runtime settings provider with a TTL cache."""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from pydantic import ValidationError

from app.core.database import Database
from app.runtime_settings.models import (
    AppSettings,
    AppSettingsUpdate,
    ModelSettings,
    PromptSettings,
)

logger = logging.getLogger(__name__)

SETTINGS_DOC_ID = "app"


class SettingsStore:
    """Persistence for the single settings document."""

    async def load(self) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    async def store(self, doc: Dict[str, Any]) -> None:
        raise NotImplementedError


class MongoSettingsStore(SettingsStore):
    @staticmethod
    def _collection():
        return Database.get_collection("app_settings")

    async def load(self) -> Optional[Dict[str, Any]]:
        doc = await self._collection().find_one({"_id": SETTINGS_DOC_ID})
        if doc:
            doc.pop("_id", None)
        return doc

    async def store(self, doc: Dict[str, Any]) -> None:
        await self._collection().replace_one({"_id": SETTINGS_DOC_ID}, {"_id": SETTINGS_DOC_ID, **doc}, upsert=True)


class InMemorySettingsStore(SettingsStore):
    def __init__(self, doc: Optional[Dict[str, Any]] = None):
        self._doc = dict(doc) if doc else None

    async def load(self) -> Optional[Dict[str, Any]]:
        return dict(self._doc) if self._doc else None

    async def store(self, doc: Dict[str, Any]) -> None:
        self._doc = dict(doc)


def _merge_over_defaults(doc: Optional[Dict[str, Any]]) -> AppSettings:
    if not doc:
        return AppSettings()
    prompts = {**PromptSettings().model_dump(), **(doc.get("prompts") or {})}
    models = {**ModelSettings().model_dump(), **(doc.get("models") or {})}
    try:
        return AppSettings(
            prompts=PromptSettings(**prompts),
            models=ModelSettings(**models),
            updated_at=doc.get("updated_at") or datetime.now(timezone.utc),
        )
    except ValidationError as e:
        logger.error(f"Stored settings are invalid, using defaults: {e}")
        return AppSettings()


class AppSettingsProvider:
    """
    Serves prompts and model choices to the pipeline.

    Values are cached for ``ttl_seconds``; ``refresh()`` forces a reload and
    ``save()``/``reset()`` update the cache in place. Each process keeps its
    own cache, so edits reach other workers within one TTL.
    """

    def __init__(
        self,
        store: SettingsStore,
        ttl_seconds: float = 30,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._store = store
        self._ttl = float(ttl_seconds)
        self._clock = clock
        self._cached: Optional[AppSettings] = None
        self._cached_at = 0.0
        self._lock = asyncio.Lock()

    def _fresh(self) -> bool:
        return self._cached is not None and (self._clock() - self._cached_at) < self._ttl

    def invalidate(self) -> None:
        self._cached = None
        self._cached_at = 0.0

    async def get(self) -> AppSettings:
        if self._fresh():
            return self._cached
        return await self.refresh()

    async def refresh(self) -> AppSettings:
        async with self._lock:
            try:
                doc = await self._store.load()
            except Exception as e:
                # Serve the last known value (or defaults) rather than failing generation.
                logger.error(f"Failed to load app settings: {e}")
                return self._cached or AppSettings()
            self._cached = _merge_over_defaults(doc)
            self._cached_at = self._clock()
            return self._cached

    async def save(self, update: AppSettingsUpdate) -> AppSettings:
        current = await self.refresh()
        prompts = current.prompts.model_copy(
            update=update.prompts.model_dump(exclude_none=True) if update.prompts else {}
        )
        models = current.models.model_copy(
            update=update.models.model_dump(exclude_none=True) if update.models else {}
        )
        new_settings = AppSettings(prompts=prompts, models=models)
        await self._store.store(new_settings.model_dump(mode="json"))
        self._cached = new_settings
        self._cached_at = self._clock()
        return new_settings

    async def reset(self) -> AppSettings:
        defaults = AppSettings()
        await self._store.store(defaults.model_dump(mode="json"))
        self._cached = defaults
        self._cached_at = self._clock()
        return defaults
