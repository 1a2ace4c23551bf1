import asyncio

import pytest

from account_operator.core.budget import AccountBudget, StaticBudget, TotalAccountWatcher
from account_operator.tests.helpers.fakes import FakeAwsClient


class TestAccountBudget:
    def test_creation_allowed_below_limit(self) -> None:
        assert AccountBudget(total=4, limit=5).accounts_can_be_created()

    def test_creation_blocked_at_limit(self) -> None:
        budget = AccountBudget(total=5, limit=5)

        assert not budget.accounts_can_be_created()
        assert budget.delta == 0

    def test_static_budget(self) -> None:
        budget = StaticBudget(total=3, limit=10)

        assert budget.accounts_can_be_created()
        assert budget.budget.delta == 7


class TestTotalAccountWatcher:
    def test_unknown_budget_blocks_creation(self) -> None:
        watcher = TotalAccountWatcher(FakeAwsClient(), limit=10)  # type: ignore[arg-type]

        assert not watcher.accounts_can_be_created()

    @pytest.mark.asyncio
    async def test_refresh_counts_every_page(self) -> None:
        """
        Arrange: an organization listing two pages of accounts
        Act: refresh the budget
        Assert: the total covers both pages
        """
        client = FakeAwsClient()
        client.pages[("organizations", "list_accounts")] = [
            [{"Id": "1"}, {"Id": "2"}],
            [{"Id": "3"}],
        ]
        watcher = TotalAccountWatcher(client, limit=10)  # type: ignore[arg-type]

        budget = await watcher.refresh()

        assert budget == AccountBudget(total=3, limit=10)
        assert watcher.budget.delta == 7
        assert watcher.accounts_can_be_created()

    @pytest.mark.asyncio
    async def test_start_refreshes_in_background(self) -> None:
        client = FakeAwsClient()
        client.pages[("organizations", "list_accounts")] = [[{"Id": "1"}]]
        watcher = TotalAccountWatcher(client, limit=1, interval=3600)  # type: ignore[arg-type]

        await watcher.start()
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        await watcher.stop()

        assert watcher.budget == AccountBudget(total=1, limit=1)
        assert not watcher.accounts_can_be_created()
