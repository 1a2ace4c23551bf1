import asyncio
import uuid
from collections import defaultdict, deque
from typing import Deque, Dict, Set, Tuple, TypeVar

from loguru import logger

from .abstract_queue import AbstractQueue

T = TypeVar("T")
MaybeStr = str | None


class GroupQueue(AbstractQueue[T]):
    """
    A queue that guarantees *exclusive* processing per group.

    Every item `T` must expose the attribute named in `group_key`
    (or `group_key is None` → all items share the same group).

    Rules
    -----
    • FIFO within each group.
    • No two items with the same group key are ever handed
      to workers concurrently. A group stays locked until the
      worker holding it commits, however long that takes.
    • An item equal to one already waiting (and not yet handed out)
      in its group is coalesced instead of queued twice.
    """

    def __init__(self, group_key: MaybeStr = None):
        self.group_key = group_key
        self._queues: Dict[MaybeStr, Deque[T]] = defaultdict(deque)
        self._locked: Set[MaybeStr] = set()
        self._queue_not_empty = asyncio.Condition()

        self._current_items: Dict[str, Tuple[MaybeStr, T]] = (
            {}
        )  # worker_id -> (group, item)

    def _extract_group_key(self, item: T) -> MaybeStr:
        if self.group_key is None:
            return None
        if not hasattr(item, self.group_key):
            raise ValueError(
                f"Item {item!r} lacks attribute '{self.group_key}' required for grouping"
            )
        return getattr(item, self.group_key)

    def _get_worker_id(self) -> str:
        """Get stable worker ID based on current task"""
        task = asyncio.current_task()
        return f"worker-{id(task)}" if task else f"fallback-{uuid.uuid4()}"

    async def put(self, item: T) -> None:
        """Put a single item into its group‑FIFO."""
        group_key = self._extract_group_key(item)
        async with self._queue_not_empty:
            queue = self._queues[group_key]
            waiting = list(queue)[1:] if group_key in self._locked else list(queue)
            if item in waiting:
                return
            queue.append(item)
            self._queue_not_empty.notify_all()

    async def get(self) -> T:
        """
        Get the head item of the first *unlocked* group.
        Locks that group until `commit()` is called.
        """
        worker_id = self._get_worker_id()

        async with self._queue_not_empty:
            while True:
                for g, q in self._queues.items():
                    if not q or g in self._locked:
                        continue

                    self._locked.add(g)
                    item = q[0]  # peek without pop
                    self._current_items[worker_id] = (g, item)
                    return item

                await self._queue_not_empty.wait()

    async def commit(self) -> None:
        worker_id = self._get_worker_id()

        async with self._queue_not_empty:
            if worker_id not in self._current_items:
                logger.warning(
                    f"Worker {worker_id} attempted commit with no current item"
                )
                return

            g, item = self._current_items.pop(worker_id)
            q = self._queues.get(g)
            if q and q[0] == item:
                q.popleft()
                if not q:
                    del self._queues[g]
            else:
                logger.warning(f"Queue state mismatch for group {g}, forcing cleanup")

            self._locked.discard(g)
            self._queue_not_empty.notify_all()

    async def teardown(self) -> None:
        """
        Wait until **all items** are processed and no group is locked.
        """
        async with self._queue_not_empty:
            while any(self._queues.values()) or self._locked:
                await self._queue_not_empty.wait()

    async def is_idle(self) -> bool:
        async with self._queue_not_empty:
            return not any(self._queues.values()) and not self._locked
