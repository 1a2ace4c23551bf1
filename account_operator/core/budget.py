import asyncio
from dataclasses import dataclass
from typing import Protocol

from loguru import logger

from account_operator.clients.aws.client import AwsClient
from account_operator.utils.repeat import repeat_every


@dataclass(frozen=True)
class AccountBudget:
    """Snapshot of the organization account count against the configured ceiling"""

    total: int
    limit: int

    def accounts_can_be_created(self) -> bool:
        return self.total < self.limit

    @property
    def delta(self) -> int:
        return self.limit - self.total


class BudgetSource(Protocol):
    @property
    def budget(self) -> AccountBudget: ...

    def accounts_can_be_created(self) -> bool: ...


class TotalAccountWatcher:
    """Periodically counts organization accounts and publishes an immutable budget snapshot.

    Reconcilers only ever read ``budget``. Until the first successful count the budget is
    unknown and no account creation is allowed.
    """

    def __init__(self, client: AwsClient, limit: int, interval: float = 600) -> None:
        self.client = client
        self.limit = limit
        self.interval = interval
        self._budget: AccountBudget | None = None
        self._task: asyncio.Task[None] | None = None

    @property
    def budget(self) -> AccountBudget:
        if self._budget is None:
            return AccountBudget(total=self.limit, limit=self.limit)
        return self._budget

    def accounts_can_be_created(self) -> bool:
        return self.budget.accounts_can_be_created()

    async def refresh(self) -> AccountBudget:
        total = 0
        async for accounts in self.client.paginate(
            "organizations", "list_accounts", "Accounts"
        ):
            total += len(accounts)
        self._budget = AccountBudget(total=total, limit=self.limit)
        logger.info(f"Organization holds {total}/{self.limit} accounts")
        return self._budget

    async def start(self) -> None:
        @repeat_every(seconds=self.interval)
        async def refresh_budget() -> None:
            await self.refresh()

        self._task = await refresh_budget()

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None


class StaticBudget:
    """Fixed budget source, used where no organization is reachable"""

    def __init__(self, total: int, limit: int) -> None:
        self._budget = AccountBudget(total=total, limit=limit)

    @property
    def budget(self) -> AccountBudget:
        return self._budget

    def accounts_can_be_created(self) -> bool:
        return self.budget.accounts_can_be_created()
