import json

from botocore.exceptions import ClientError
from loguru import logger

from account_operator.clients.aws.client import AwsClient
from account_operator.exceptions.aws import AwsProviderError
from account_operator.exceptions.store import ObjectNotFoundError
from account_operator.log.sensitive import sensitive_log_filter
from account_operator.models.account import Account
from account_operator.models.common import IAM_USER_ID_LABEL, ObjectMeta
from account_operator.models.secret import (
    AWS_ACCESS_KEY_ID,
    AWS_SECRET_ACCESS_KEY,
    Secret,
)
from account_operator.store.base import ObjectStore

IAM_USER_NAME = "osdManagedAdmin"
ADMIN_ACCESS_POLICY_ARN = "arn:aws:iam::aws:policy/AdministratorAccess"
BYOC_ROLE_DESCRIPTION = "AdminAccess for BYOC"


def owner_tags(shard_name: str) -> list[dict[str, str]]:
    return [{"Key": "owner", "Value": shard_name}]


def iam_user_name(account: Account) -> str:
    return f"{IAM_USER_NAME}-{account.metadata.labels[IAM_USER_ID_LABEL]}"


def iam_user_secret_name(account: Account) -> str:
    return f"{account.name}-secret"


async def provision_iam_user(
    client: AwsClient, store: ObjectStore, account: Account, shard_name: str
) -> str:
    """Create (or recycle) the admin IAM user and store a fresh access key.

    Returns the name of the secret holding the key.
    """
    user_name = iam_user_name(account)
    try:
        await client.get_user(UserName=user_name)
        logger.info(f"IAM user {user_name} exists, rotating its access keys")
        keys = await client.list_access_keys(UserName=user_name)
        for key in keys.get("AccessKeyMetadata", []):
            await client.delete_access_key(
                UserName=user_name, AccessKeyId=key["AccessKeyId"]
            )
        await client.tag_user(UserName=user_name, Tags=owner_tags(shard_name))
    except ClientError as e:
        if not AwsProviderError.is_no_such_entity(e):
            raise
        logger.info(f"Creating IAM user {user_name}")
        await client.create_user(UserName=user_name, Tags=owner_tags(shard_name))

    await client.attach_user_policy(
        UserName=user_name, PolicyArn=ADMIN_ACCESS_POLICY_ARN
    )
    response = await client.create_access_key(UserName=user_name)
    access_key = response["AccessKey"]
    sensitive_log_filter.hide_sensitive_strings(access_key["SecretAccessKey"])

    secret_name = iam_user_secret_name(account)
    await write_secret(
        store,
        secret_name,
        account.namespace,
        {
            AWS_ACCESS_KEY_ID: access_key["AccessKeyId"],
            AWS_SECRET_ACCESS_KEY: access_key["SecretAccessKey"],
        },
    )
    return secret_name


async def write_secret(
    store: ObjectStore, name: str, namespace: str, data: dict[str, str]
) -> Secret:
    try:
        secret = await store.get(Secret, namespace, name)
    except ObjectNotFoundError:
        return await store.create(
            Secret(metadata=ObjectMeta(name=name, namespace=namespace), data=data)
        )
    secret.data = dict(data)
    return await store.update(secret)


async def get_existing_role(client: AwsClient, role_name: str) -> dict | None:
    try:
        response = await client.get_role(RoleName=role_name)
    except ClientError as e:
        if AwsProviderError.is_no_such_entity(e):
            logger.info(f"{role_name} role does not yet exist")
            return None
        raise
    return response.get("Role")


async def delete_role(client: AwsClient, role_name: str) -> bool:
    """Detach every managed policy and delete the role, returning False if it was absent"""
    if await get_existing_role(client, role_name) is None:
        return False

    policies = await client.list_attached_role_policies(RoleName=role_name)
    for policy in policies.get("AttachedPolicies", []):
        logger.info(f"Detaching policy {policy['PolicyName']} from role {role_name}")
        await client.detach_role_policy(
            RoleName=role_name, PolicyArn=policy["PolicyArn"]
        )
    logger.info(f"Deleting role {role_name}")
    await client.delete_role(RoleName=role_name)
    return True


async def create_admin_role(
    client: AwsClient,
    role_name: str,
    principals: list[str],
    tags: list[dict[str, str]],
) -> str:
    """Create the admin-access role trusted by ``principals`` and return its role ID"""
    assume_role_policy = {
        "Version": "2012-10-17",
        "Statement": [
            {
                "Effect": "Allow",
                "Action": ["sts:AssumeRole"],
                "Principal": {"AWS": principals},
            }
        ],
    }
    logger.info(f"Creating role {role_name}")
    response = await client.create_role(
        RoleName=role_name,
        Description=BYOC_ROLE_DESCRIPTION,
        AssumeRolePolicyDocument=json.dumps(assume_role_policy),
        Tags=tags,
    )
    await client.attach_role_policy(
        RoleName=role_name, PolicyArn=ADMIN_ACCESS_POLICY_ARN
    )
    return response["Role"]["RoleId"]
