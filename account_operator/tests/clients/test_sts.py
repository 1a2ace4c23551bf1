from unittest.mock import AsyncMock

import pytest
from botocore.exceptions import ClientError

from account_operator.clients.aws.sts import (
    RoleHop,
    assume_role,
    assume_role_chain,
    default_assume_policy,
    default_match_policy,
    handle_role_assumption,
    role_arn,
)
from account_operator.core.retry import RetryPolicy
from account_operator.exceptions.aws import AssumedRoleMismatchError
from account_operator.log.sensitive import sensitive_log_filter
from account_operator.tests.helpers.fakes import (
    FakeAwsClient,
    assume_role_response,
    client_error,
)


class TestAssumeRole:
    @pytest.mark.asyncio
    async def test_retries_until_role_can_be_assumed(
        self, aws_client: FakeAwsClient
    ) -> None:
        """
        Arrange: a role that can only be assumed on the third call
        Act: assume it
        Assert: credentials are returned after two sleeps and their secrets are redacted
        """
        sleep = AsyncMock()
        aws_client.assume_role.side_effect = [
            client_error("AccessDenied", "AssumeRole"),
            client_error("AccessDenied", "AssumeRole"),
            assume_role_response(),
        ]

        credentials = await assume_role(
            aws_client,  # type: ignore[arg-type]
            "arn:aws:iam::123456789012:role/Admin",
            external_id="ext-id",
            policy=default_assume_policy(sleep),
        )

        assert credentials.access_key_id == "ASIAFAKEACCESSKEY"
        assert aws_client.assume_role.await_count == 3
        assert sleep.await_count == 2
        request = aws_client.assume_role.await_args.kwargs
        assert request["ExternalId"] == "ext-id"
        assert request["DurationSeconds"] == 3600
        assert "fake-session-token" not in sensitive_log_filter.mask_string(
            "token fake-session-token", full_hide=True
        )

    @pytest.mark.asyncio
    async def test_raises_last_error_when_attempts_are_exhausted(
        self, aws_client: FakeAwsClient
    ) -> None:
        aws_client.assume_role.side_effect = client_error("AccessDenied", "AssumeRole")

        with pytest.raises(ClientError):
            await assume_role(
                aws_client,  # type: ignore[arg-type]
                "arn:aws:iam::123456789012:role/Admin",
                policy=RetryPolicy(max_attempts=4, delay=0.5, sleep=AsyncMock()),
            )

        assert aws_client.assume_role.await_count == 4


class TestHandleRoleAssumption:
    @pytest.mark.asyncio
    async def test_waits_for_the_expected_role_id(self, aws_client: FakeAwsClient) -> None:
        sleep = AsyncMock()
        aws_client.assume_role.side_effect = [
            assume_role_response("AROAOLDROLE"),
            assume_role_response("AROAOLDROLE"),
            assume_role_response("AROANEWROLE"),
        ]

        credentials = await handle_role_assumption(
            aws_client,  # type: ignore[arg-type]
            "123456789012",
            "BYOCAdminAccess-abc123",
            expected_role_id="AROANEWROLE",
            assume_policy=default_assume_policy(sleep),
            match_policy=default_match_policy(sleep),
        )

        assert credentials.assumed_role_id.startswith("AROANEWROLE")
        # linear backoff between mismatches
        assert [call.args[0] for call in sleep.await_args_list] == [1.0, 2.0]
        assert aws_client.assume_role.await_args.kwargs["RoleArn"] == role_arn(
            "123456789012", "BYOCAdminAccess-abc123"
        )

    @pytest.mark.asyncio
    async def test_mismatch_after_every_attempt_raises(
        self, aws_client: FakeAwsClient
    ) -> None:
        aws_client.assume_role.return_value = assume_role_response("AROAOLDROLE")

        with pytest.raises(AssumedRoleMismatchError):
            await handle_role_assumption(
                aws_client,  # type: ignore[arg-type]
                "123456789012",
                "BYOCAdminAccess-abc123",
                expected_role_id="AROANEWROLE",
                match_policy=default_match_policy(AsyncMock()),
            )

        assert aws_client.assume_role.await_count == 10

    @pytest.mark.asyncio
    async def test_without_expected_id_any_role_is_accepted(
        self, aws_client: FakeAwsClient
    ) -> None:
        credentials = await handle_role_assumption(
            aws_client,  # type: ignore[arg-type]
            "123456789012",
            "OrganizationAccountAccessRole",
        )

        assert credentials.session_token == "fake-session-token"


class TestAssumeRoleChain:
    @pytest.mark.asyncio
    async def test_each_hop_is_assumed_in_order(self, aws_client: FakeAwsClient) -> None:
        hops = [
            RoleHop(role_arn="arn:aws:iam::777777777777:role/jump"),
            RoleHop(
                role_arn="arn:aws:iam::123456789012:role/customer",
                external_id="ext",
                session_name="RH-Account-Initialization",
            ),
        ]

        await assume_role_chain(aws_client, hops)  # type: ignore[arg-type]

        requests = [call.kwargs for call in aws_client.assume_role.await_args_list]
        assert [r["RoleArn"] for r in requests] == [hop.role_arn for hop in hops]
        assert "ExternalId" not in requests[0]
        assert requests[1]["ExternalId"] == "ext"
        assert requests[1]["RoleSessionName"] == "RH-Account-Initialization"

    @pytest.mark.asyncio
    async def test_empty_chain_raises(self, aws_client: FakeAwsClient) -> None:
        with pytest.raises(ValueError):
            await assume_role_chain(aws_client, [])  # type: ignore[arg-type]
