from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import StrEnum
from typing import Awaitable, Callable, TypeVar

from account_operator.models.common import BaseObject

ObjectT = TypeVar("ObjectT", bound=BaseObject)


class WatchEventType(StrEnum):
    ADDED = "ADDED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"


@dataclass(frozen=True)
class WatchEvent:
    type: WatchEventType
    kind: str
    namespace: str
    name: str


WatchCallback = Callable[[WatchEvent], Awaitable[None]]


class ObjectStore(ABC):
    """Contract of the control plane the reconcilers read from and write to.

    Writes carry the resource version that was read; a write against a newer stored
    version raises ConflictError. Deleting an object that still has finalizers only marks
    it for deletion, the object is removed once its last finalizer is dropped.
    """

    @abstractmethod
    async def get(self, model: type[ObjectT], namespace: str, name: str) -> ObjectT:
        pass

    @abstractmethod
    async def list(
        self, model: type[ObjectT], namespace: str | None = None
    ) -> list[ObjectT]:
        pass

    @abstractmethod
    async def create(self, obj: ObjectT) -> ObjectT:
        pass

    @abstractmethod
    async def update(self, obj: ObjectT) -> ObjectT:
        """Write metadata and spec, the stored status is kept"""
        pass

    @abstractmethod
    async def update_status(self, obj: ObjectT) -> ObjectT:
        """Write status only"""
        pass

    @abstractmethod
    async def delete(self, model: type[ObjectT], namespace: str, name: str) -> None:
        pass

    @abstractmethod
    def watch(self, callback: WatchCallback) -> None:
        pass
