import asyncio
from traceback import format_exception

from loguru import logger

from account_operator.controllers.base import Reconciler
from account_operator.core.handlers.queue.group_queue import GroupQueue
from account_operator.core.models import ReconcileRequest, ReconcileResult
from account_operator.exceptions.core import ManagerAlreadyStartedException
from account_operator.exceptions.store import ObjectNotFoundError
from account_operator.models.account import Account
from account_operator.models.account_claim import AccountClaim
from account_operator.models.account_pool import AccountPool
from account_operator.store.base import ObjectStore, WatchEvent, WatchEventType

BASE_BACKOFF_SECONDS = 1.0
MAX_BACKOFF_SECONDS = 300.0


class ReconcileManager:
    """Feeds store changes to the reconcilers through a per-object exclusive queue.

    Requests for the same object are never processed concurrently; failures are retried
    with exponential backoff and requeue requests are honoured.
    """

    def __init__(
        self,
        store: ObjectStore,
        reconcilers: list[Reconciler],
        workers: int = 10,
        base_backoff: float = BASE_BACKOFF_SECONDS,
        max_backoff: float = MAX_BACKOFF_SECONDS,
    ) -> None:
        self.store = store
        self.reconcilers = {reconciler.kind: reconciler for reconciler in reconcilers}
        self.workers = workers
        self.base_backoff = base_backoff
        self.max_backoff = max_backoff
        self.queue: GroupQueue[ReconcileRequest] = GroupQueue(group_key="group")
        self._failures: dict[str, int] = {}
        self._worker_tasks: list[asyncio.Task[None]] = []
        self._delayed: set[asyncio.Task[None]] = set()
        self._started = False

    async def enqueue(self, request: ReconcileRequest) -> None:
        if request.kind in self.reconcilers:
            await self.queue.put(request)

    def enqueue_after(self, request: ReconcileRequest, seconds: float) -> None:
        async def _later() -> None:
            await asyncio.sleep(seconds)
            await self.enqueue(request)

        task = asyncio.create_task(_later())
        self._delayed.add(task)
        task.add_done_callback(self._delayed.discard)

    async def on_event(self, event: WatchEvent) -> None:
        await self.enqueue(ReconcileRequest(event.kind, event.namespace, event.name))
        if event.kind != Account.kind:
            return

        # account changes move their claim and the pool counts along
        if event.type != WatchEventType.DELETED:
            try:
                account = await self.store.get(Account, event.namespace, event.name)
            except ObjectNotFoundError:
                account = None
            if account is not None and account.spec.claim_link:
                await self.enqueue(
                    ReconcileRequest(
                        AccountClaim.kind,
                        account.spec.claim_link_namespace,
                        account.spec.claim_link,
                    )
                )
        for pool in await self.store.list(AccountPool):
            await self.enqueue(ReconcileRequest(AccountPool.kind, pool.namespace, pool.name))

    def backoff(self, failures: int) -> float:
        return min(self.base_backoff * 2 ** (failures - 1), self.max_backoff)

    async def process(self, request: ReconcileRequest) -> None:
        reconciler = self.reconcilers[request.kind]
        with logger.contextualize(
            controller=reconciler.controller_name,
            name=request.name,
            namespace=request.namespace,
        ):
            try:
                result = await reconciler.reconcile(request.namespace, request.name)
            except Exception as exc:
                failures = self._failures.get(request.group, 0) + 1
                self._failures[request.group] = failures
                delay = self.backoff(failures)
                formatted_exception = "".join(
                    format_exception(type(exc), exc, exc.__traceback__)
                )
                logger.error(
                    f"Reconciliation failed (attempt {failures}), retrying in {delay}s: {exc}"
                )
                logger.debug(formatted_exception)
                self.enqueue_after(request, delay)
                return

            self._failures.pop(request.group, None)
            self._requeue(request, result)

    def _requeue(self, request: ReconcileRequest, result: ReconcileResult) -> None:
        if result.requeue_after:
            self.enqueue_after(request, result.requeue_after)
        elif result.requeue:
            self.enqueue_after(request, 0)

    async def _worker(self) -> None:
        while True:
            request = await self.queue.get()
            try:
                await self.process(request)
            finally:
                await self.queue.commit()

    async def start(self) -> None:
        if self._started:
            raise ManagerAlreadyStartedException("Reconcile manager already started")
        self._started = True
        self.store.watch(self.on_event)

        for reconciler in self.reconcilers.values():
            for obj in await self.store.list(reconciler.model):
                await self.enqueue(ReconcileRequest(obj.kind, obj.namespace, obj.name))

        self._worker_tasks = [
            asyncio.create_task(self._worker()) for _ in range(self.workers)
        ]
        logger.info(f"Started {self.workers} reconcile workers")

    async def wait_idle(self, poll_interval: float = 0.1) -> None:
        """Wait until nothing is queued, processing or about to be requeued immediately"""
        while True:
            await self.queue.teardown()
            await asyncio.sleep(poll_interval)
            if await self.queue.is_idle():
                return

    async def stop(self) -> None:
        tasks = [*self._worker_tasks, *self._delayed]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._worker_tasks = []
        self._delayed.clear()
        self._started = False
        logger.info("Reconcile manager stopped")
