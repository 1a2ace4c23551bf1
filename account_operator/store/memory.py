import asyncio
import builtins
from typing import Any

from loguru import logger

from account_operator.exceptions.store import (
    ConflictError,
    ObjectAlreadyExistsError,
    ObjectNotFoundError,
)
from account_operator.models.common import BaseObject
from account_operator.store.base import (
    ObjectStore,
    ObjectT,
    WatchCallback,
    WatchEvent,
    WatchEventType,
)
from account_operator.utils.misc import utc_now

StoreKey = tuple[str, str, str]


class InMemoryObjectStore(ObjectStore):
    def __init__(self) -> None:
        self._objects: dict[StoreKey, BaseObject] = {}
        self._lock = asyncio.Lock()
        self._callbacks: list[WatchCallback] = []
        self._next_version = 1

    def _bump(self) -> int:
        version = self._next_version
        self._next_version += 1
        return version

    def _stored(self, obj: BaseObject) -> BaseObject:
        stored = self._objects.get(obj.key)
        if stored is None:
            raise ObjectNotFoundError(obj.kind, obj.namespace, obj.name)
        if stored.metadata.resource_version != obj.metadata.resource_version:
            raise ConflictError(obj.kind, obj.namespace, obj.name)
        return stored

    async def _notify(self, event: WatchEvent) -> None:
        for callback in self._callbacks:
            try:
                await callback(event)
            except Exception as e:
                logger.error(f"Watch callback failed for {event}: {e}")

    async def get(self, model: type[ObjectT], namespace: str, name: str) -> ObjectT:
        async with self._lock:
            stored = self._objects.get((model.kind, namespace, name))
            if stored is None:
                raise ObjectNotFoundError(model.kind, namespace, name)
            return stored.model_copy(deep=True)  # type: ignore[return-value]

    async def list(
        self, model: type[ObjectT], namespace: str | None = None
    ) -> list[ObjectT]:
        async with self._lock:
            return [
                obj.model_copy(deep=True)  # type: ignore[misc]
                for (kind, obj_namespace, _), obj in self._objects.items()
                if kind == model.kind
                and (namespace is None or obj_namespace == namespace)
            ]

    async def create(self, obj: ObjectT) -> ObjectT:
        async with self._lock:
            if obj.key in self._objects:
                raise ObjectAlreadyExistsError(obj.kind, obj.namespace, obj.name)
            created = obj.model_copy(deep=True)
            created.metadata.resource_version = self._bump()
            created.metadata.creation_timestamp = utc_now()
            created.metadata.deletion_timestamp = None
            self._objects[created.key] = created
            result = created.model_copy(deep=True)
        logger.debug(f"Created {obj.kind} {obj.namespace}/{obj.name}")
        await self._notify(
            WatchEvent(WatchEventType.ADDED, obj.kind, obj.namespace, obj.name)
        )
        return result

    async def update(self, obj: ObjectT) -> ObjectT:
        async with self._lock:
            stored = self._stored(obj)
            updated = obj.model_copy(deep=True)
            # spec writes never touch status, and deletion marks are owned by the store
            if hasattr(stored, "status"):
                updated.status = stored.status.model_copy(deep=True)  # type: ignore[attr-defined]
            updated.metadata.deletion_timestamp = stored.metadata.deletion_timestamp
            updated.metadata.creation_timestamp = stored.metadata.creation_timestamp
            result, event = self._write(updated)
        await self._notify(event)
        return result

    async def update_status(self, obj: ObjectT) -> ObjectT:
        async with self._lock:
            stored = self._stored(obj)
            updated = stored.model_copy(deep=True)
            if hasattr(obj, "status"):
                updated.status = obj.status.model_copy(deep=True)  # type: ignore[attr-defined]
            result, event = self._write(updated)
        await self._notify(event)
        return result

    def _write(self, updated: ObjectT) -> tuple[ObjectT, WatchEvent]:
        """Store an already validated write. Caller holds the lock."""
        updated.metadata.resource_version = self._bump()
        key = updated.key
        if updated.is_deleting and not updated.metadata.finalizers:
            del self._objects[key]
            event_type = WatchEventType.DELETED
            logger.debug(f"Finalized and removed {key[0]} {key[1]}/{key[2]}")
        else:
            self._objects[key] = updated
            event_type = WatchEventType.MODIFIED
        return updated.model_copy(deep=True), WatchEvent(event_type, *key)

    async def delete(self, model: type[ObjectT], namespace: str, name: str) -> None:
        async with self._lock:
            key = (model.kind, namespace, name)
            stored = self._objects.get(key)
            if stored is None:
                raise ObjectNotFoundError(model.kind, namespace, name)
            if stored.metadata.finalizers:
                if stored.metadata.deletion_timestamp is None:
                    stored.metadata.deletion_timestamp = utc_now()
                    stored.metadata.resource_version = self._bump()
                event = WatchEvent(WatchEventType.MODIFIED, *key)
            else:
                del self._objects[key]
                event = WatchEvent(WatchEventType.DELETED, *key)
        logger.debug(f"Delete requested for {model.kind} {namespace}/{name}")
        await self._notify(event)

    def watch(self, callback: WatchCallback) -> None:
        self._callbacks.append(callback)

    async def load(self, objects: builtins.list[BaseObject]) -> None:
        """Seed the store, announcing every object to watchers"""
        for obj in objects:
            await self.create(obj)

    def dump(self) -> dict[StoreKey, dict[str, Any]]:
        return {key: obj.model_dump(mode="json") for key, obj in self._objects.items()}
