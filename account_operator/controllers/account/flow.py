from abc import ABC, abstractmethod

from botocore.exceptions import ClientError
from loguru import logger

from account_operator.clients.aws.client import AwsClient
from account_operator.clients.aws.sts import (
    AssumedRoleCredentials,
    default_assume_policy,
    default_match_policy,
    handle_role_assumption,
)
from account_operator.controllers.account.regions import (
    OPT_IN_REQUEUE_SECONDS,
    RegionInitializer,
)
from account_operator.controllers.base import ReconcilerContext
from account_operator.core.models import ReconcileResult
from account_operator.core.state import AccountState, set_condition, transition
from account_operator.exceptions.aws import AwsProviderError
from account_operator.models.account import Account
from account_operator.models.account_claim import AccountClaim
from account_operator.store.base import ObjectStore
from account_operator.utils.misc import minutes_since, utc_now

CAPACITY_REQUEUE_SECONDS = 5 * 60


class AccountFlow(ABC):
    """Steps every account variant shares: finalizers, status writes and failure reporting."""

    def __init__(self, context: ReconcilerContext) -> None:
        self.context = context
        self.regions = RegionInitializer(context.settings.aws, context.sleep)

    @property
    def store(self) -> ObjectStore:
        return self.context.store

    @abstractmethod
    def uses_finalizer(self, account: Account) -> bool:
        pass

    @abstractmethod
    async def reconcile_active(self, account: Account) -> ReconcileResult:
        pass

    @abstractmethod
    async def finalize(self, account: Account) -> None:
        """Release whatever the account holds before its finalizer is dropped"""
        pass

    async def reconcile(self, account: Account) -> ReconcileResult:
        if account.is_deleting:
            if account.has_finalizer():
                await self.finalize(account)
                account.remove_finalizer()
                await self.store.update(account)
                logger.info("Removed account finalizer")
            return ReconcileResult.done()

        if self.uses_finalizer(account) and account.add_finalizer():
            account = await self.store.update(account)

        if account.is_failed():
            logger.info(f"Account {account.name} is failed. Ignoring.")
            return ReconcileResult.done()

        if account.status.state is None:
            account = await self.set_state(account, AccountState.PENDING, "AccountPending")

        try:
            return await self.reconcile_active(account)
        except ClientError as e:
            return await self.handle_provider_error(account, e)

    async def set_state(
        self,
        account: Account,
        state: AccountState,
        reason: str = "",
        message: str = "",
    ) -> Account:
        transition(account.kind, account.status, state, reason, message)
        updated = await self.store.update_status(account)
        logger.info(f"Account moved to state {state}")
        return updated

    async def set_condition(
        self, account: Account, condition_type: str, reason: str, message: str
    ) -> Account:
        set_condition(account.status.conditions, condition_type, reason, message)
        return await self.store.update_status(account)

    async def fail(self, account: Account, reason: str, message: str) -> ReconcileResult:
        logger.error(f"Account failed ({reason}): {message}")
        await self.set_state(account, AccountState.FAILED, reason, message)
        return ReconcileResult.done()

    async def handle_provider_error(
        self, account: Account, error: ClientError
    ) -> ReconcileResult:
        code = AwsProviderError.error_code(error) or "ClientError"
        if AwsProviderError.is_transient(error):
            logger.warning(f"Transient provider error {code}, retrying: {error}")
            raise error
        if AwsProviderError.is_capacity(error):
            logger.warning(f"Provider capacity reached ({code}), retrying later")
            await self.set_condition(account, "AccountLimitReached", code, str(error))
            return ReconcileResult.after(CAPACITY_REQUEUE_SECONDS)
        return await self.fail(account, code, str(error))

    async def get_claim(self, account: Account) -> AccountClaim:
        return await self.store.get(
            AccountClaim, account.spec.claim_link_namespace, account.spec.claim_link
        )

    async def assume_account_role(
        self, client: AwsClient, account: Account, role_name: str, role_id: str = ""
    ) -> AssumedRoleCredentials:
        return await handle_role_assumption(
            client,
            account.spec.aws_account_id,
            role_name,
            expected_role_id=role_id,
            assume_policy=default_assume_policy(self.context.sleep),
            match_policy=default_match_policy(self.context.sleep),
        )

    async def start_initialization(self, account: Account) -> ReconcileResult:
        account.status.region_init_started = utc_now()
        await self.set_state(
            account, AccountState.INITIALIZING_REGIONS, "InitializingRegions"
        )
        return ReconcileResult.again()

    async def initialize_regions(
        self, account: Account, credentials: AssumedRoleCredentials
    ) -> ReconcileResult:
        """Warm every region up, then mark the account ready"""
        timeout = 2 * self.context.settings.aws.wait_time_minutes + 1
        if minutes_since(account.status.region_init_started) > timeout:
            return await self.fail(
                account,
                "RegionInitializationTimeout",
                f"Region initialization pending for longer than {timeout} minutes",
            )

        try:
            await self.regions.initialize(credentials, self.regions_for(account))
        except ClientError as e:
            if AwsProviderError.is_opt_in_required(e):
                logger.info("Account not ready for region initialization yet, requeuing")
                return ReconcileResult.after(OPT_IN_REQUEUE_SECONDS)
            raise

        return await self.mark_ready(account)

    def regions_for(self, account: Account) -> list[str]:
        settings = self.context.settings
        regions = list(account.spec.regions or settings.aws.supported_regions)
        if settings.feature_flags.opt_in_regions and not account.spec.byoc:
            regions.extend(
                region
                for region in settings.feature_flags.opt_in_region_list
                if region not in regions
            )
        return regions

    async def mark_ready(self, account: Account) -> ReconcileResult:
        transition(account.kind, account.status, AccountState.READY, "AccountReady")
        if account.spec.claim_link:
            account.status.claimed = True
        await self.store.update_status(account)
        logger.info("Account initialization completed successfully")
        return ReconcileResult.done()
