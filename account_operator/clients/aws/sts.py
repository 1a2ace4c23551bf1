import asyncio
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from loguru import logger

from account_operator.clients.aws.client import GLOBAL_REGION, AwsClient
from account_operator.core.retry import Backoff, RetryPolicy, SleepFunc
from account_operator.exceptions.aws import AssumedRoleMismatchError
from account_operator.log.sensitive import sensitive_log_filter

SESSION_DURATION_SECONDS = 3600
DEFAULT_SESSION_NAME = "awsAccountOperator"
ASSUME_ROLE_ATTEMPTS = 100
ASSUME_ROLE_DELAY = 0.5
ROLE_MATCH_ATTEMPTS = 10
ROLE_MATCH_DELAY = 1.0


@dataclass(frozen=True)
class AssumedRoleCredentials:
    """Temporary credentials, owned by the call that produced them and never persisted"""

    access_key_id: str
    secret_access_key: str
    session_token: str
    expiration: datetime | None
    assumed_role_id: str
    arn: str

    @classmethod
    def from_response(cls, response: dict[str, Any]) -> "AssumedRoleCredentials":
        credentials = response["Credentials"]
        assumed_role_user = response.get("AssumedRoleUser", {})
        return cls(
            access_key_id=credentials["AccessKeyId"],
            secret_access_key=credentials["SecretAccessKey"],
            session_token=credentials["SessionToken"],
            expiration=credentials.get("Expiration"),
            assumed_role_id=assumed_role_user.get("AssumedRoleId", ""),
            arn=assumed_role_user.get("Arn", ""),
        )

    def client(self, region: str | None = None) -> AwsClient:
        return AwsClient.from_keys(
            self.access_key_id,
            self.secret_access_key,
            self.session_token,
            region or GLOBAL_REGION,
        )


@dataclass(frozen=True)
class RoleHop:
    role_arn: str
    external_id: str = ""
    session_name: str = DEFAULT_SESSION_NAME


def role_arn(account_id: str, role_name: str) -> str:
    return f"arn:aws:iam::{account_id}:role/{role_name}"


def default_assume_policy(sleep: SleepFunc = asyncio.sleep) -> RetryPolicy:
    return RetryPolicy(
        max_attempts=ASSUME_ROLE_ATTEMPTS, delay=ASSUME_ROLE_DELAY, sleep=sleep
    )


def default_match_policy(sleep: SleepFunc = asyncio.sleep) -> RetryPolicy:
    return RetryPolicy(
        max_attempts=ROLE_MATCH_ATTEMPTS,
        delay=ROLE_MATCH_DELAY,
        backoff=Backoff.LINEAR,
        sleep=sleep,
    )


def role_id_matches(expected_role_id: str, assumed_role_id: str) -> bool:
    return bool(re.search(re.escape(expected_role_id), assumed_role_id))


async def assume_role(
    client: AwsClient,
    role_arn: str,
    external_id: str = "",
    session_name: str = DEFAULT_SESSION_NAME,
    policy: RetryPolicy | None = None,
) -> AssumedRoleCredentials:
    """Assume ``role_arn`` with the caller's credentials.

    Any error is retried (freshly created roles and policies take a while to propagate);
    when every attempt fails the last error is raised.
    """
    policy = policy or default_assume_policy()
    request: dict[str, Any] = {
        "RoleArn": role_arn,
        "RoleSessionName": session_name,
        "DurationSeconds": SESSION_DURATION_SECONDS,
    }
    if external_id:
        request["ExternalId"] = external_id

    logger.info(f"Creating STS credentials for {role_arn}")

    async def _assume() -> dict[str, Any]:
        return await client.assume_role(**request)

    try:
        response = await policy.run(_assume, operation=f"assume role {role_arn}")
    except Exception as e:
        logger.error(f"Error while getting STS credentials for {role_arn}: {e}")
        raise

    credentials = AssumedRoleCredentials.from_response(response)
    sensitive_log_filter.hide_sensitive_strings(
        credentials.secret_access_key, credentials.session_token
    )
    return credentials


async def handle_role_assumption(
    client: AwsClient,
    account_id: str,
    role_name: str,
    expected_role_id: str = "",
    session_name: str = DEFAULT_SESSION_NAME,
    assume_policy: RetryPolicy | None = None,
    match_policy: RetryPolicy | None = None,
) -> AssumedRoleCredentials:
    """Assume ``role_name`` in ``account_id`` using the operator's credentials.

    When ``expected_role_id`` is given the assumed role ID must contain it. A freshly
    replaced role can still resolve to its previous definition for a while, so on a
    mismatch the whole assume-role call is repeated with a linearly growing delay.
    """
    arn = role_arn(account_id, role_name)
    match_policy = match_policy or default_match_policy()

    async def _assume_expected() -> AssumedRoleCredentials:
        credentials = await assume_role(
            client, arn, session_name=session_name, policy=assume_policy
        )
        if expected_role_id and not role_id_matches(
            expected_role_id, credentials.assumed_role_id
        ):
            logger.info(
                f"Assumed role {credentials.assumed_role_id} does not match role ID {expected_role_id} yet"
            )
            raise AssumedRoleMismatchError(
                arn, expected_role_id, credentials.assumed_role_id
            )
        return credentials

    return await match_policy.run(
        _assume_expected,
        should_retry=lambda e: isinstance(e, AssumedRoleMismatchError),
        operation=f"assume role {arn}",
    )


async def assume_role_chain(
    client: AwsClient,
    hops: list[RoleHop],
    policy: RetryPolicy | None = None,
) -> AssumedRoleCredentials:
    """Assume each hop with the credentials of the previous one"""
    if not hops:
        raise ValueError("At least one role is required to build a credential chain")

    current = client
    credentials: AssumedRoleCredentials | None = None
    for hop in hops:
        credentials = await assume_role(
            current, hop.role_arn, hop.external_id, hop.session_name, policy
        )
        current = credentials.client(client.region)

    assert credentials is not None
    return credentials
