import json

import pytest

from account_operator.controllers.account.iam import (
    ADMIN_ACCESS_POLICY_ARN,
    create_admin_role,
    delete_role,
    provision_iam_user,
)
from account_operator.log.sensitive import sensitive_log_filter
from account_operator.models.common import IAM_USER_ID_LABEL
from account_operator.models.secret import Secret
from account_operator.store.memory import InMemoryObjectStore
from account_operator.tests.helpers.fakes import FakeAwsClient, client_error
from account_operator.tests.helpers.objects import OPERATOR_NAMESPACE, make_account


@pytest.fixture
def account():
    return make_account("acct", labels={IAM_USER_ID_LABEL: "x1y2z3"})


def new_key(client: FakeAwsClient) -> None:
    client.create_access_key.return_value = {
        "AccessKey": {
            "AccessKeyId": "AKIANEWKEY",
            "SecretAccessKey": "brand-new-secret-access-key",
        }
    }


class TestProvisionIamUser:
    @pytest.mark.asyncio
    async def test_creates_missing_user(
        self, aws_client: FakeAwsClient, store: InMemoryObjectStore, account
    ) -> None:
        aws_client.get_user.side_effect = client_error("NoSuchEntity", "GetUser")
        new_key(aws_client)

        secret_name = await provision_iam_user(aws_client, store, account, "shard-a")

        aws_client.create_user.assert_awaited_once_with(
            UserName="osdManagedAdmin-x1y2z3",
            Tags=[{"Key": "owner", "Value": "shard-a"}],
        )
        aws_client.attach_user_policy.assert_awaited_once_with(
            UserName="osdManagedAdmin-x1y2z3", PolicyArn=ADMIN_ACCESS_POLICY_ARN
        )
        secret = await store.get(Secret, OPERATOR_NAMESPACE, secret_name)
        assert secret_name == "acct-secret"
        assert secret.access_key_id == "AKIANEWKEY"
        assert secret.secret_access_key == "brand-new-secret-access-key"
        assert "brand-new-secret-access-key" not in sensitive_log_filter.mask_string(
            "key brand-new-secret-access-key"
        )

    @pytest.mark.asyncio
    async def test_existing_user_keys_are_rotated(
        self, aws_client: FakeAwsClient, store: InMemoryObjectStore, account
    ) -> None:
        aws_client.list_access_keys.return_value = {
            "AccessKeyMetadata": [{"AccessKeyId": "AKIAOLD1"}, {"AccessKeyId": "AKIAOLD2"}]
        }
        new_key(aws_client)

        await provision_iam_user(aws_client, store, account, "shard-a")

        aws_client.create_user.assert_not_awaited()
        assert aws_client.delete_access_key.await_count == 2
        aws_client.tag_user.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_unexpected_errors_propagate(
        self, aws_client: FakeAwsClient, store: InMemoryObjectStore, account
    ) -> None:
        aws_client.get_user.side_effect = client_error("AccessDenied", "GetUser")

        with pytest.raises(Exception, match="AccessDenied"):
            await provision_iam_user(aws_client, store, account, "shard-a")

        aws_client.create_access_key.assert_not_awaited()


class TestRoles:
    @pytest.mark.asyncio
    async def test_create_admin_role_trusts_principals(
        self, aws_client: FakeAwsClient
    ) -> None:
        aws_client.create_role.return_value = {"Role": {"RoleId": "AROANEWROLE"}}

        role_id = await create_admin_role(
            aws_client, "BYOCAdminAccess-x1y2z3", ["arn:aws:iam::1:role/sre"], []
        )

        assert role_id == "AROANEWROLE"
        document = json.loads(
            aws_client.create_role.call_args.kwargs["AssumeRolePolicyDocument"]
        )
        assert document["Statement"][0]["Principal"] == {
            "AWS": ["arn:aws:iam::1:role/sre"]
        }

    @pytest.mark.asyncio
    async def test_delete_missing_role(self, aws_client: FakeAwsClient) -> None:
        aws_client.get_role.side_effect = client_error("NoSuchEntity", "GetRole")

        assert not await delete_role(aws_client, "gone")
        aws_client.delete_role.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_delete_role_detaches_policies(self, aws_client: FakeAwsClient) -> None:
        aws_client.get_role.return_value = {"Role": {"RoleId": "AROA1"}}
        aws_client.list_attached_role_policies.return_value = {
            "AttachedPolicies": [
                {"PolicyName": "AdministratorAccess", "PolicyArn": ADMIN_ACCESS_POLICY_ARN}
            ]
        }

        assert await delete_role(aws_client, "BYOCAdminAccess-x1y2z3")
        aws_client.detach_role_policy.assert_awaited_once_with(
            RoleName="BYOCAdminAccess-x1y2z3", PolicyArn=ADMIN_ACCESS_POLICY_ARN
        )
        aws_client.delete_role.assert_awaited_once_with(
            RoleName="BYOCAdminAccess-x1y2z3"
        )
