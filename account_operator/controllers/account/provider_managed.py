from typing import Any

from botocore.exceptions import ClientError
from loguru import logger

from account_operator.clients.aws.client import AwsClient
from account_operator.controllers.account.flow import (
    CAPACITY_REQUEUE_SECONDS,
    AccountFlow,
)
from account_operator.controllers.account.iam import owner_tags, provision_iam_user
from account_operator.controllers.account.regions import RegionOptIn
from account_operator.controllers.base import ReconcilerContext, entered_at
from account_operator.core.models import ReconcileResult
from account_operator.core.retry import RetryPolicy
from account_operator.core.state import AccountState
from account_operator.exceptions.aws import (
    AccountCreationFailedError,
    AccountLimitExceededError,
    AwsProviderError,
    InternalFailureError,
)
from account_operator.models.account import Account
from account_operator.models.common import IAM_USER_ID_LABEL
from account_operator.teardown.engine import ResourceTeardown
from account_operator.utils.misc import (
    format_account_email,
    generate_short_uid,
    minutes_since,
)

CREATION_POLL_DELAY = 10
CREATION_POLL_ATTEMPTS = 6
SUPPORT_CASE_REQUEUE_SECONDS = 60

CREATE_STATUS_IN_PROGRESS = "IN_PROGRESS"
CREATE_STATUS_SUCCEEDED = "SUCCEEDED"
FAILURE_ACCOUNT_LIMIT_EXCEEDED = "ACCOUNT_LIMIT_EXCEEDED"
FAILURE_INTERNAL = "INTERNAL_FAILURE"


class CreationInProgress(Exception):
    def __init__(self, status: dict[str, Any]):
        self.status = status
        super().__init__(f"Account creation {status.get('Id')} still in progress")


def creation_failure(failure_reason: str) -> AwsProviderError:
    if failure_reason == FAILURE_ACCOUNT_LIMIT_EXCEEDED:
        return AccountLimitExceededError("Organization account limit exceeded")
    if failure_reason == FAILURE_INTERNAL:
        return InternalFailureError("Provider reported an internal failure")
    return AccountCreationFailedError(
        "Account creation failed", code=failure_reason or None
    )


class ProviderManagedAccountFlow(AccountFlow):
    """Accounts created by the operator inside its own organization."""

    def __init__(self, context: ReconcilerContext) -> None:
        super().__init__(context)
        self.opt_in = RegionOptIn(context.settings.aws, context.settings.feature_flags)

    def uses_finalizer(self, account: Account) -> bool:
        return not account.spec.manual_sts_mode

    async def reconcile_active(self, account: Account) -> ReconcileResult:
        operator = await self.context.clients.operator_client()
        match account.status.state:
            case AccountState.PENDING:
                return await self.request_creation(operator, account)
            case AccountState.CREATING:
                return await self.poll_creation(operator, account)
            case AccountState.PENDING_VERIFICATION:
                return await self.verify(operator, account)
            case AccountState.OPTING_IN_REGIONS | AccountState.OPT_IN_REGIONS_ENABLED:
                return await self.enable_regions(operator, account)
            case AccountState.INITIALIZING_REGIONS:
                return await self.initialize(operator, account)
            case AccountState.READY:
                return await self.claim_if_linked(account)
        return ReconcileResult.done()

    async def request_creation(
        self, operator: AwsClient, account: Account
    ) -> ReconcileResult:
        if account.has_aws_account_id():
            await self.set_state(
                account,
                AccountState.CREATING,
                "AccountCreating",
                "AWS account already created",
            )
            return ReconcileResult.again()

        if not self.context.budget.accounts_can_be_created():
            logger.info(
                "AWS account limit reached. This is a limit enforced by the operator configuration to prevent runaway account creation"
            )
            await self.set_condition(
                account,
                "AccountLimitReached",
                "AccountLimitReached",
                f"Account limit of {self.context.budget.budget.limit} reached",
            )
            return ReconcileResult.after(CAPACITY_REQUEUE_SECONDS)

        aws = self.context.settings.aws
        email = format_account_email(
            aws.account_email_prefix, account.name, aws.account_email_domain
        )
        logger.info(f"Creating AWS account {account.name}")
        response = await operator.create_account(
            AccountName=account.name, Email=email
        )
        account.status.create_request_id = response["CreateAccountStatus"]["Id"]
        account = await self.set_state(
            account, AccountState.CREATING, "AccountCreating", "Account creation requested"
        )
        return await self.poll_creation(operator, account)

    async def poll_creation(self, operator: AwsClient, account: Account) -> ReconcileResult:
        if account.has_aws_account_id():
            return await self.created(account)

        wait_time = self.context.settings.aws.wait_time_minutes
        started = entered_at(account.status.conditions, AccountState.CREATING)
        if minutes_since(started) > wait_time:
            return await self.fail(
                account,
                "CreationTimeout",
                f"Creation pending for longer than {wait_time} minutes",
            )

        if not account.status.create_request_id:
            await self.set_state(
                account,
                AccountState.PENDING,
                "AccountPending",
                "No account creation request in flight",
            )
            return ReconcileResult.again()

        status = await self.wait_for_creation(operator, account.status.create_request_id)
        state = status.get("State")
        if state == CREATE_STATUS_IN_PROGRESS:
            return ReconcileResult.after(CREATION_POLL_DELAY)
        if state == CREATE_STATUS_SUCCEEDED:
            account.spec.aws_account_id = status["AccountId"]
            account = await self.store.update(account)
            logger.info(f"AWS account created with ID {account.spec.aws_account_id}")
            await self.tag_account(operator, account.spec.aws_account_id)
            return await self.created(account)

        error = creation_failure(status.get("FailureReason", ""))
        if AwsProviderError.is_capacity(error):
            account.status.create_request_id = ""
            await self.set_state(account, AccountState.PENDING, error.reason, str(error))
            return ReconcileResult.after(CAPACITY_REQUEUE_SECONDS)
        return await self.fail(account, error.code or error.reason, str(error))

    async def wait_for_creation(self, operator: AwsClient, request_id: str) -> dict[str, Any]:
        async def describe() -> dict[str, Any]:
            response = await operator.describe_create_account_status(
                CreateAccountRequestId=request_id
            )
            status = response["CreateAccountStatus"]
            if status.get("State") == CREATE_STATUS_IN_PROGRESS:
                raise CreationInProgress(status)
            return status

        policy = RetryPolicy(
            max_attempts=CREATION_POLL_ATTEMPTS,
            delay=CREATION_POLL_DELAY,
            sleep=self.context.sleep,
        )
        try:
            return await policy.run(
                describe,
                should_retry=lambda e: isinstance(e, CreationInProgress),
                operation=f"account creation {request_id}",
            )
        except CreationInProgress as e:
            return e.status

    async def tag_account(self, operator: AwsClient, account_id: str) -> None:
        try:
            await operator.tag_resource(
                ResourceId=account_id,
                Tags=owner_tags(self.context.settings.application.shard_name),
            )
        except ClientError as e:
            logger.warning(f"Failed tagging account {account_id}: {e}")

    async def created(self, account: Account) -> ReconcileResult:
        await self.set_state(
            account, AccountState.PENDING_VERIFICATION, "AccountPendingVerification"
        )
        return ReconcileResult.again()

    async def verify(self, operator: AwsClient, account: Account) -> ReconcileResult:
        if not account.status.support_case_id:
            accounts = await self.store.list(Account)
            open_cases = sum(
                1
                for other in accounts
                if other.status.state == AccountState.PENDING_VERIFICATION
                and other.status.support_case_id
            )
            if open_cases >= self.context.settings.aws.support_case_limit:
                logger.info(f"{open_cases} support cases already open, waiting")
                return ReconcileResult.after(SUPPORT_CASE_REQUEUE_SECONDS)

            account_id = account.spec.aws_account_id
            response = await operator.create_case(
                subject=f"Add account {account_id} to Enterprise Support",
                serviceCode="customer-account",
                categoryCode="other-account-issues",
                severityCode="urgent",
                issueType="customer-service",
                language="en",
                communicationBody=f"Please add account {account_id} to Enterprise Support",
            )
            account.status.support_case_id = response["caseId"]
            await self.store.update_status(account)
            logger.info(f"Opened support case {account.status.support_case_id}")
            return ReconcileResult.after(SUPPORT_CASE_REQUEUE_SECONDS)

        response = await operator.describe_cases(
            caseIdList=[account.status.support_case_id], includeResolvedCases=True
        )
        cases = response.get("cases", [])
        if not cases or cases[0].get("status") != "resolved":
            return ReconcileResult.after(SUPPORT_CASE_REQUEUE_SECONDS)

        logger.info(f"Support case {account.status.support_case_id} resolved")
        if self.opt_in.enabled:
            if not self.opt_in.has_slot(await self.store.list(Account)):
                return self.opt_in.requeue()
            await self.set_state(
                account, AccountState.OPTING_IN_REGIONS, "OptingInRegions"
            )
            return ReconcileResult.again()
        return await self.start_initialization(account)

    async def enable_regions(self, operator: AwsClient, account: Account) -> ReconcileResult:
        if account.status.state == AccountState.OPT_IN_REGIONS_ENABLED:
            return await self.start_initialization(account)

        if await self.opt_in.step(operator, account):
            await self.set_state(
                account, AccountState.OPT_IN_REGIONS_ENABLED, "OptInRegionsEnabled"
            )
            return ReconcileResult.again()
        await self.store.update_status(account)
        return self.opt_in.requeue()

    async def initialize(self, operator: AwsClient, account: Account) -> ReconcileResult:
        if IAM_USER_ID_LABEL not in account.metadata.labels:
            account.metadata.labels[IAM_USER_ID_LABEL] = generate_short_uid()
            await self.store.update(account)
            return ReconcileResult.again()

        aws = self.context.settings.aws
        credentials = await self.assume_account_role(
            operator, account, aws.operator_access_role
        )
        if not account.spec.iam_user_secret:
            secret_name = await provision_iam_user(
                credentials.client(aws.default_region),
                self.store,
                account,
                self.context.settings.application.shard_name,
            )
            account.spec.iam_user_secret = secret_name
            account = await self.store.update(account)

        return await self.initialize_regions(account, credentials)

    async def claim_if_linked(self, account: Account) -> ReconcileResult:
        if account.spec.claim_link and not account.status.claimed:
            account.status.claimed = True
            await self.store.update_status(account)
            logger.info(f"Account claimed by {account.spec.claim_link}")
        return ReconcileResult.done()

    async def finalize(self, account: Account) -> None:
        if not account.has_aws_account_id():
            return
        operator = await self.context.clients.operator_client()
        credentials = await self.assume_account_role(
            operator, account, self.context.settings.aws.operator_access_role
        )
        await ResourceTeardown(
            credentials.client(self.context.settings.aws.default_region),
            account.spec.aws_account_id,
        ).run()
