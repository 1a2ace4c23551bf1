from loguru import logger

from account_operator.controllers.account.byoc import ByocAccountFlow
from account_operator.controllers.account.flow import AccountFlow
from account_operator.controllers.account.provider_managed import (
    ProviderManagedAccountFlow,
)
from account_operator.controllers.base import Reconciler, ReconcilerContext
from account_operator.core.models import ReconcileResult
from account_operator.exceptions.store import ObjectNotFoundError
from account_operator.models.account import Account


class AccountReconciler(Reconciler):
    model = Account
    controller_name = "account"

    def __init__(self, context: ReconcilerContext) -> None:
        super().__init__(context)
        self.provider_managed = ProviderManagedAccountFlow(context)
        self.byoc = ByocAccountFlow(context)

    def flow_for(self, account: Account) -> AccountFlow:
        return self.byoc if account.spec.byoc else self.provider_managed

    async def reconcile(self, namespace: str, name: str) -> ReconcileResult:
        try:
            account = await self.store.get(Account, namespace, name)
        except ObjectNotFoundError:
            logger.debug("Account no longer exists")
            return ReconcileResult.done()
        return await self.flow_for(account).reconcile(account)
