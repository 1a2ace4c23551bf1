from account_operator.config.settings import OperatorSettings
from account_operator.core.budget import AccountBudget
from account_operator.models.account import Account
from account_operator.models.account_pool import AccountPool, AccountPoolStatus


class PoolObserver:
    """Aggregates pool account counts. Never writes anything but the pool status."""

    def __init__(self, settings: OperatorSettings) -> None:
        self.settings = settings

    def pool_accounts(self, pool: AccountPool, accounts: list[Account]) -> list[Account]:
        if self.settings.is_default_pool(pool.name):
            return [
                account
                for account in accounts
                if not account.spec.byoc
                and self.settings.is_default_pool(account.spec.account_pool)
            ]
        return [
            account
            for account in accounts
            if not account.spec.byoc and account.spec.account_pool == pool.name
        ]

    def observe(
        self, pool: AccountPool, accounts: list[Account], budget: AccountBudget
    ) -> AccountPoolStatus:
        members = self.pool_accounts(pool, accounts)
        return AccountPoolStatus(
            pool_size=pool.spec.pool_size,
            unclaimed_accounts=sum(
                1
                for account in members
                if not account.status.claimed
                and not account.spec.claim_link
                and not account.is_failed()
            ),
            claimed_accounts=sum(1 for account in members if account.status.claimed),
            available_accounts=sum(
                1
                for account in members
                if account.is_available() and not account.status.reused
            ),
            accounts_progressing=sum(
                1 for account in members if account.is_progressing()
            ),
            aws_limit_delta=budget.delta,
        )
