from loguru import logger

from account_operator.controllers.accountclaim.matcher import ACCOUNT_NAME_PREFIX
from account_operator.controllers.accountpool.observer import PoolObserver
from account_operator.controllers.base import Reconciler, ReconcilerContext
from account_operator.core.models import ReconcileResult
from account_operator.exceptions.store import ObjectNotFoundError
from account_operator.models.account import Account
from account_operator.models.account_pool import AccountPool
from account_operator.models.common import ObjectMeta
from account_operator.utils.misc import generate_short_uid

POOL_REQUEUE_SECONDS = 5 * 60


class AccountPoolReconciler(Reconciler):
    model = AccountPool
    controller_name = "accountpool"

    def __init__(self, context: ReconcilerContext) -> None:
        super().__init__(context)
        self.observer = PoolObserver(context.settings)

    async def reconcile(self, namespace: str, name: str) -> ReconcileResult:
        try:
            pool = await self.store.get(AccountPool, namespace, name)
        except ObjectNotFoundError:
            return ReconcileResult.done()
        if pool.is_deleting:
            return ReconcileResult.done()

        accounts = await self.store.list(Account)
        status = self.observer.observe(pool, accounts, self.context.budget.budget)
        if status != pool.status:
            pool.status = status
            pool = await self.store.update_status(pool)
            logger.info(
                f"Pool {pool.name}: {status.unclaimed_accounts}/{status.pool_size} unclaimed, {status.accounts_progressing} progressing"
            )

        if status.unclaimed_accounts >= status.pool_size:
            return ReconcileResult.done()
        if not self.context.budget.accounts_can_be_created():
            logger.info(f"Pool {pool.name} is short but the account limit is reached")
            return ReconcileResult.after(POOL_REQUEUE_SECONDS)

        account = Account(
            metadata=ObjectMeta(
                name=f"{ACCOUNT_NAME_PREFIX}-{generate_short_uid()}",
                namespace=self.context.namespace,
            )
        )
        account.spec.account_pool = pool.name
        account = await self.store.create(account)
        logger.info(f"Created account {account.name} to replenish pool {pool.name}")
        return ReconcileResult.again()
