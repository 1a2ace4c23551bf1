from loguru import logger

from account_operator.clients.aws.sts import (
    default_assume_policy,
    default_match_policy,
    handle_role_assumption,
)
from account_operator.controllers.account.byoc import byoc_role_name
from account_operator.controllers.account.iam import delete_role, write_secret
from account_operator.controllers.accountclaim.matcher import (
    MatchOutcome,
    PoolMatcher,
)
from account_operator.controllers.base import Reconciler, ReconcilerContext
from account_operator.core.models import ReconcileResult
from account_operator.core.state import ClaimState, transition
from account_operator.exceptions.core import ClaimValidationError
from account_operator.exceptions.store import ConflictError, ObjectNotFoundError
from account_operator.models.account import Account
from account_operator.models.account_claim import AccountClaim
from account_operator.models.common import IAM_USER_ID_LABEL, ObjectMeta
from account_operator.models.secret import Secret
from account_operator.teardown.engine import ResourceTeardown
from account_operator.utils.misc import generate_short_uid

CLAIM_REQUEUE_SECONDS = 30
NO_CAPACITY_REQUEUE_SECONDS = 5 * 60
NO_ACCOUNTS_AVAILABLE = "NoAccountsAvailable"
INVALID_ACCOUNT_CLAIM = "InvalidAccountClaim"
RETRYABLE_ERROR_REASONS = frozenset({NO_ACCOUNTS_AVAILABLE})


def validate_claim(claim: AccountClaim) -> None:
    if not claim.spec.byoc:
        return
    if not claim.spec.byoc_aws_account_id:
        raise ClaimValidationError("BYOC claim is missing the AWS account ID")
    if claim.spec.manual_sts_mode:
        if not claim.spec.sts_role_arn:
            raise ClaimValidationError("Manual STS claim is missing the role ARN")
    elif not claim.spec.byoc_secret_ref.name:
        raise ClaimValidationError("BYOC claim is missing the credentials secret")


def credentials_secret_ref(claim: AccountClaim) -> tuple[str, str]:
    ref = claim.spec.aws_credential_secret
    return ref.name or f"{claim.name}-aws-credentials", ref.namespace or claim.namespace


class AccountClaimReconciler(Reconciler):
    model = AccountClaim
    controller_name = "accountclaim"

    def __init__(self, context: ReconcilerContext) -> None:
        super().__init__(context)
        self.matcher = PoolMatcher(context.store, context.settings)

    async def reconcile(self, namespace: str, name: str) -> ReconcileResult:
        try:
            claim = await self.store.get(AccountClaim, namespace, name)
        except ObjectNotFoundError:
            logger.debug("Claim no longer exists")
            return ReconcileResult.done()

        if claim.is_deleting:
            return await self.finalize(claim)

        if claim.add_finalizer():
            claim = await self.store.update(claim)

        try:
            validate_claim(claim)
        except ClaimValidationError as e:
            if claim.status.state != ClaimState.ERROR:
                await self.set_state(claim, ClaimState.ERROR, INVALID_ACCOUNT_CLAIM, str(e))
            logger.warning(f"Invalid account claim: {e}")
            return ReconcileResult.done()

        match claim.status.state:
            case None:
                claim = await self.set_state(
                    claim, ClaimState.PENDING, "AccountClaimPending"
                )
            case ClaimState.ERROR:
                reason = claim.status.conditions[-1].reason if claim.status.conditions else ""
                if reason not in RETRYABLE_ERROR_REASONS:
                    logger.info(f"Claim is in error ({reason}). Ignoring.")
                    return ReconcileResult.done()
                claim = await self.set_state(claim, ClaimState.PENDING, "Retrying")
            case ClaimState.READY:
                return ReconcileResult.done()

        if claim.is_bound():
            return await self.follow_account(claim)
        if claim.spec.byoc:
            return await self.create_byoc_account(claim)
        return await self.assign(claim)

    async def set_state(
        self, claim: AccountClaim, state: ClaimState, reason: str, message: str = ""
    ) -> AccountClaim:
        transition(claim.kind, claim.status, state, reason, message)
        updated = await self.store.update_status(claim)
        logger.info(f"Claim moved to state {state}")
        return updated

    async def assign(self, claim: AccountClaim) -> ReconcileResult:
        result = await self.matcher.match(claim)
        claim = result.claim
        match result.outcome:
            case MatchOutcome.BOUND:
                return await self.follow_account(claim, result.account)
            case MatchOutcome.RESERVED:
                assert result.account is not None
                await self.set_state(
                    claim,
                    ClaimState.PENDING_ACCOUNT,
                    "PendingAccount",
                    f"Waiting for account {result.account.name}",
                )
                return ReconcileResult.after(CLAIM_REQUEUE_SECONDS)
            case _:
                pool = self.matcher.target_pool(claim)
                await self.set_state(
                    claim,
                    ClaimState.ERROR,
                    NO_ACCOUNTS_AVAILABLE,
                    f"no accounts available in pool {pool}",
                )
                return ReconcileResult.after(NO_CAPACITY_REQUEUE_SECONDS)

    async def create_byoc_account(self, claim: AccountClaim) -> ReconcileResult:
        account = await self.matcher.find_linked(claim)
        if account is None:
            account = Account(
                metadata=ObjectMeta(
                    name=f"byoc-{generate_short_uid()}",
                    namespace=self.context.namespace,
                )
            )
            account.spec.byoc = True
            account.spec.aws_account_id = claim.spec.byoc_aws_account_id
            account.spec.legal_entity = claim.spec.legal_entity.model_copy()
            account.spec.claim_link = claim.name
            account.spec.claim_link_namespace = claim.namespace
            account.spec.manual_sts_mode = claim.spec.manual_sts_mode
            account.spec.regions = list(claim.spec.regions)
            account = await self.store.create(account)
            logger.info(f"Created BYOC account {account.name}")

        claim = await self.matcher.link_claim(claim, account)
        await self.set_state(
            claim,
            ClaimState.IN_PROGRESS,
            "BYOCAccountCreated",
            f"Waiting for account {account.name}",
        )
        return ReconcileResult.after(CLAIM_REQUEUE_SECONDS)

    async def follow_account(
        self, claim: AccountClaim, account: Account | None = None
    ) -> ReconcileResult:
        if account is None:
            try:
                account = await self.store.get(
                    Account, self.context.namespace, claim.spec.account_link
                )
            except ObjectNotFoundError:
                await self.set_state(
                    claim,
                    ClaimState.ERROR,
                    "AccountNotFound",
                    f"Account {claim.spec.account_link} does not exist",
                )
                return ReconcileResult.done()

        if account.is_failed():
            await self.set_state(
                claim,
                ClaimState.ERROR,
                "AccountFailed",
                f"Account {account.name} failed",
            )
            return ReconcileResult.done()

        if not (
            account.is_ready()
            and account.status.claimed
            and account.is_claimed_by(claim.name, claim.namespace)
        ):
            logger.debug(f"Waiting for account {account.name} to become ready")
            return ReconcileResult.after(CLAIM_REQUEUE_SECONDS)

        if not claim.spec.byoc and account.spec.iam_user_secret:
            await self.copy_credentials(claim, account)
        await self.set_state(
            claim, ClaimState.READY, "AccountClaimed", f"Account {account.name} is ready"
        )
        return ReconcileResult.done()

    async def copy_credentials(self, claim: AccountClaim, account: Account) -> None:
        source = await self.store.get(
            Secret, account.namespace, account.spec.iam_user_secret
        )
        name, namespace = credentials_secret_ref(claim)
        await write_secret(self.store, name, namespace, source.data)
        logger.info(f"Wrote account credentials to secret {namespace}/{name}")

    async def finalize(self, claim: AccountClaim) -> ReconcileResult:
        if other := claim.other_finalizers():
            logger.info(f"Claim still carries finalizers {other}, waiting")
            return ReconcileResult.done()
        if not claim.has_finalizer():
            return ReconcileResult.done()

        if claim.is_bound():
            try:
                account = await self.store.get(
                    Account, self.context.namespace, claim.spec.account_link
                )
            except ObjectNotFoundError:
                account = None
            if account is not None and self.owns(claim, account):
                if account.spec.byoc:
                    await self.release_byoc_account(claim, account)
                else:
                    await self.release_pool_account(account)

        if not claim.spec.byoc:
            await self.delete_credentials(claim)
        claim.remove_finalizer()
        await self.store.update(claim)
        logger.info("Removed claim finalizer")
        return ReconcileResult.done()

    @staticmethod
    def owns(claim: AccountClaim, account: Account) -> bool:
        if account.is_claimed_by(claim.name, claim.namespace):
            return True
        # link already cleared by an interrupted release
        return not account.spec.claim_link and account.status.claimed

    async def release_pool_account(self, account: Account) -> None:
        """Tear the account down and hand it back to the pool for reuse"""
        ready = account.is_ready()
        if ready and account.has_aws_account_id():
            aws = self.settings.aws
            operator = await self.context.clients.operator_client()
            credentials = await handle_role_assumption(
                operator,
                account.spec.aws_account_id,
                aws.operator_access_role,
                assume_policy=default_assume_policy(self.context.sleep),
                match_policy=default_match_policy(self.context.sleep),
            )
            await ResourceTeardown(
                credentials.client(aws.default_region), account.spec.aws_account_id
            ).run()

        try:
            if account.spec.claim_link:
                account.spec.claim_link = ""
                account.spec.claim_link_namespace = ""
                account = await self.store.update(account)
            account.status.claimed = False
            account.status.reused = account.status.reused or ready
            await self.store.update_status(account)
        except ConflictError:
            logger.warning("account CR modified during reset: Conflict")
            raise
        logger.info(f"Account {account.name} returned to the pool")

    async def release_byoc_account(self, claim: AccountClaim, account: Account) -> None:
        if not account.spec.manual_sts_mode and IAM_USER_ID_LABEL in account.metadata.labels:
            customer = await self.context.clients.from_secret(
                claim.spec.byoc_secret_ref.name, claim.spec.byoc_secret_ref.namespace
            )
            await delete_role(
                customer, byoc_role_name(self.settings.aws.byoc_access_role, account)
            )
        await self.store.delete(Account, account.namespace, account.name)
        logger.info(f"Deleted BYOC account {account.name}")

    async def delete_credentials(self, claim: AccountClaim) -> None:
        name, namespace = credentials_secret_ref(claim)
        try:
            await self.store.delete(Secret, namespace, name)
        except ObjectNotFoundError:
            pass
