import pytest

from account_operator.config.settings import OperatorSettings
from account_operator.controllers.accountpool.controller import AccountPoolReconciler
from account_operator.controllers.accountpool.observer import PoolObserver
from account_operator.controllers.base import ReconcilerContext
from account_operator.core.budget import AccountBudget, StaticBudget
from account_operator.core.models import ReconcileResult
from account_operator.core.state import AccountState
from account_operator.models.account import Account
from account_operator.models.account_pool import AccountPool
from account_operator.store.memory import InMemoryObjectStore
from account_operator.tests.helpers.objects import (
    OPERATOR_NAMESPACE,
    make_account,
    make_pool,
)


class TestPoolObserver:
    def test_counts_only_pool_members(self, settings: OperatorSettings) -> None:
        accounts = [
            make_account("ready", AccountState.READY, aws_account_id="1"),
            make_account("reused", AccountState.READY, reused=True),
            make_account("claimed", AccountState.READY, claimed=True, claim_link="c"),
            make_account("reserved", AccountState.CREATING, claim_link="d"),
            make_account("creating", AccountState.CREATING),
            make_account("failed", AccountState.FAILED),
            make_account("byoc", AccountState.READY, byoc=True),
            make_account("hive", AccountState.READY, account_pool="hive-pool"),
        ]

        status = PoolObserver(settings).observe(
            make_pool("default", 5), accounts, AccountBudget(total=40, limit=50)
        )

        assert status.pool_size == 5
        assert status.unclaimed_accounts == 3
        assert status.claimed_accounts == 1
        assert status.available_accounts == 1
        assert status.accounts_progressing == 2
        assert status.aws_limit_delta == 10

    def test_named_pool_ignores_default_accounts(
        self, settings: OperatorSettings
    ) -> None:
        accounts = [
            make_account("ready", AccountState.READY),
            make_account("hive", AccountState.READY, account_pool="hive-pool"),
        ]

        status = PoolObserver(settings).observe(
            make_pool("hive-pool", 1), accounts, AccountBudget(total=0, limit=1)
        )

        assert status.unclaimed_accounts == 1
        assert status.available_accounts == 1


class TestPoolReconciler:
    @pytest.mark.asyncio
    async def test_short_pool_creates_one_account(
        self, context: ReconcilerContext, store: InMemoryObjectStore
    ) -> None:
        await store.create(make_pool("hive-pool", 2))

        result = await AccountPoolReconciler(context).reconcile(
            OPERATOR_NAMESPACE, "hive-pool"
        )

        assert result == ReconcileResult.again()
        accounts = await store.list(Account)
        assert len(accounts) == 1
        assert accounts[0].spec.account_pool == "hive-pool"
        assert accounts[0].name.startswith("osd-creds-mgmt-")
        pool = await store.get(AccountPool, OPERATOR_NAMESPACE, "hive-pool")
        assert pool.status.pool_size == 2
        assert pool.status.unclaimed_accounts == 0
        assert pool.status.aws_limit_delta == 90

    @pytest.mark.asyncio
    async def test_pool_fills_up_over_reconciles(
        self, context: ReconcilerContext, store: InMemoryObjectStore
    ) -> None:
        await store.create(make_pool("hive-pool", 2))
        reconciler = AccountPoolReconciler(context)

        results = [
            await reconciler.reconcile(OPERATOR_NAMESPACE, "hive-pool")
            for _ in range(3)
        ]

        assert results == [
            ReconcileResult.again(),
            ReconcileResult.again(),
            ReconcileResult.done(),
        ]
        assert len(await store.list(Account)) == 2

    @pytest.mark.asyncio
    async def test_account_limit_blocks_replenishment(
        self, context: ReconcilerContext, store: InMemoryObjectStore
    ) -> None:
        context.budget = StaticBudget(total=100, limit=100)
        await store.create(make_pool("hive-pool", 1))

        result = await AccountPoolReconciler(context).reconcile(
            OPERATOR_NAMESPACE, "hive-pool"
        )

        assert result == ReconcileResult.after(300)
        assert await store.list(Account) == []

    @pytest.mark.asyncio
    async def test_claimed_accounts_do_not_count(
        self, context: ReconcilerContext, store: InMemoryObjectStore
    ) -> None:
        await store.create(make_pool("hive-pool", 1))
        await store.create(
            make_account(
                "taken",
                AccountState.READY,
                claimed=True,
                claim_link="claim",
                account_pool="hive-pool",
            )
        )

        result = await AccountPoolReconciler(context).reconcile(
            OPERATOR_NAMESPACE, "hive-pool"
        )

        assert result == ReconcileResult.again()
        assert len(await store.list(Account)) == 2

    @pytest.mark.asyncio
    async def test_full_pool_is_left_alone(
        self, context: ReconcilerContext, store: InMemoryObjectStore
    ) -> None:
        await store.create(make_pool("hive-pool", 1))
        await store.create(
            make_account("spare", AccountState.READY, account_pool="hive-pool")
        )

        result = await AccountPoolReconciler(context).reconcile(
            OPERATOR_NAMESPACE, "hive-pool"
        )

        assert result == ReconcileResult.done()
        assert len(await store.list(Account)) == 1

    @pytest.mark.asyncio
    async def test_missing_pool_is_ignored(self, context: ReconcilerContext) -> None:
        result = await AccountPoolReconciler(context).reconcile(
            OPERATOR_NAMESPACE, "gone"
        )

        assert result == ReconcileResult.done()
