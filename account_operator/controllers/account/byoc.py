from loguru import logger

from account_operator.clients.aws.client import AwsClient
from account_operator.clients.aws.sts import (
    AssumedRoleCredentials,
    RoleHop,
    assume_role_chain,
    default_assume_policy,
)
from account_operator.controllers.account.flow import AccountFlow
from account_operator.controllers.account.iam import (
    create_admin_role,
    delete_role,
    owner_tags,
)
from account_operator.core.models import ReconcileResult
from account_operator.core.state import AccountState
from account_operator.exceptions.aws import CredentialsProviderError
from account_operator.models.account import Account
from account_operator.models.account_claim import AccountClaim
from account_operator.models.common import IAM_USER_ID_LABEL
from account_operator.utils.misc import generate_short_uid

STS_INITIALIZATION_SESSION_NAME = "RH-Account-Initialization"


def byoc_role_name(role_prefix: str, account: Account) -> str:
    return f"{role_prefix}-{account.metadata.labels[IAM_USER_ID_LABEL]}"


class ByocAccountFlow(AccountFlow):
    """Customer supplied accounts: no creation or verification, access through a role."""

    def uses_finalizer(self, account: Account) -> bool:
        return not account.spec.manual_sts_mode

    async def reconcile_active(self, account: Account) -> ReconcileResult:
        match account.status.state:
            case AccountState.PENDING:
                return await self.setup(account)
            case AccountState.CREATING:
                return await self.start_initialization(account)
            case AccountState.INITIALIZING_REGIONS:
                credentials = await self.account_credentials(account)
                return await self.initialize_regions(account, credentials)
        return ReconcileResult.done()

    def role_name(self, account: Account) -> str:
        return byoc_role_name(self.context.settings.aws.byoc_access_role, account)

    async def setup(self, account: Account) -> ReconcileResult:
        if not account.has_aws_account_id():
            return await self.fail(
                account, "InvalidAccount", "BYOC account has no AWS account ID"
            )

        if not account.spec.manual_sts_mode:
            if IAM_USER_ID_LABEL not in account.metadata.labels:
                account.metadata.labels[IAM_USER_ID_LABEL] = generate_short_uid()
                await self.store.update(account)
                return ReconcileResult.again()

            claim = await self.get_claim(account)
            operator = await self.context.clients.operator_client()
            customer = await self.context.clients.from_secret(
                claim.spec.byoc_secret_ref.name, claim.spec.byoc_secret_ref.namespace
            )
            role_id = await self.replace_access_role(operator, customer, account)
            # the operator only proceeds once the new role definition is the one being assumed
            await self.assume_account_role(
                operator, account, self.role_name(account), role_id
            )

        account.status.claimed = True
        await self.set_state(
            account, AccountState.CREATING, "AccountCreating", "BYOC account"
        )
        return ReconcileResult.again()

    async def replace_access_role(
        self, operator: AwsClient, customer: AwsClient, account: Account
    ) -> str:
        role_name = self.role_name(account)
        if await delete_role(customer, role_name):
            logger.info(f"Deleted stale role {role_name}")

        identity = await operator.get_caller_identity()
        principals = [identity["Arn"]]
        if sre_access_arn := self.context.settings.aws.sre_access_arn:
            principals.append(sre_access_arn)

        return await create_admin_role(
            customer,
            role_name,
            principals,
            owner_tags(self.context.settings.application.shard_name),
        )

    async def account_credentials(self, account: Account) -> AssumedRoleCredentials:
        operator = await self.context.clients.operator_client()
        if account.spec.manual_sts_mode:
            claim = await self.get_claim(account)
            return await self.sts_credentials(operator, claim)
        return await self.assume_account_role(operator, account, self.role_name(account))

    async def sts_credentials(
        self, operator: AwsClient, claim: AccountClaim
    ) -> AssumedRoleCredentials:
        jump_role = self.context.settings.aws.sts_jump_role
        if not jump_role:
            raise CredentialsProviderError("STS jump role is not configured")
        return await assume_role_chain(
            operator,
            [
                RoleHop(role_arn=jump_role),
                RoleHop(
                    role_arn=claim.spec.sts_role_arn,
                    external_id=claim.spec.sts_external_id,
                    session_name=STS_INITIALIZATION_SESSION_NAME,
                ),
            ],
            default_assume_policy(self.context.sleep),
        )

    async def finalize(self, account: Account) -> None:
        """The owning claim tears BYOC accounts down"""
