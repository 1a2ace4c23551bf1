from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, AsyncIterator, Awaitable, Callable

from aiobotocore.client import AioBaseClient
from aiobotocore.credentials import AioCredentials
from aiobotocore.session import AioSession

from account_operator.clients.aws.paginator import AsyncPaginator

GLOBAL_REGION = "us-east-1"

Operation = Callable[..., Awaitable[dict[str, Any]]]


def _operation(service: str, name: str, global_service: bool = False) -> Operation:
    async def call(
        self: "AwsClient", region: str | None = None, **kwargs: Any
    ) -> dict[str, Any]:
        if global_service:
            region = GLOBAL_REGION
        return await self.call(service, name, region=region, **kwargs)

    call.__name__ = name
    call.__qualname__ = f"AwsClient.{name}"
    call.__doc__ = f"Forward ``{service}.{name}``"
    return call


class AwsClient:
    """
    Thin forwarding layer over aiobotocore service clients.

    Every operation takes the provider's request shape as keyword arguments and returns the
    response dict. Errors propagate unchanged as `botocore.exceptions.ClientError`.
    """

    def __init__(self, session: AioSession, region: str = GLOBAL_REGION) -> None:
        self.session = session
        self.region = region

    @classmethod
    def from_keys(
        cls,
        access_key_id: str,
        secret_access_key: str,
        session_token: str | None = None,
        region: str = GLOBAL_REGION,
    ) -> "AwsClient":
        session = AioSession()
        setattr(
            session,
            "_credentials",
            AioCredentials(access_key_id, secret_access_key, token=session_token),
        )
        return cls(session, region)

    @asynccontextmanager
    async def client(
        self, service: str, region: str | None = None
    ) -> AsyncIterator[AioBaseClient]:
        async with self.session.create_client(
            service, region_name=region or self.region
        ) as client:
            yield client

    async def call(
        self, service: str, operation: str, region: str | None = None, **kwargs: Any
    ) -> dict[str, Any]:
        async with self.client(service, region) as client:
            return await getattr(client, operation)(**kwargs)

    async def paginate(
        self,
        service: str,
        operation: str,
        list_param: str,
        region: str | None = None,
        batch_size: int | None = None,
        **kwargs: Any,
    ) -> AsyncGenerator[list[Any], None]:
        async with self.client(service, region) as client:
            paginator = AsyncPaginator(client, operation, list_param)
            async for batch in paginator.paginate(batch_size=batch_size, **kwargs):
                yield batch

    # organizations
    create_account = _operation("organizations", "create_account", True)
    describe_create_account_status = _operation(
        "organizations", "describe_create_account_status", True
    )
    tag_resource = _operation("organizations", "tag_resource", True)

    # sts
    assume_role = _operation("sts", "assume_role")
    get_caller_identity = _operation("sts", "get_caller_identity")

    # iam
    create_role = _operation("iam", "create_role", True)
    get_role = _operation("iam", "get_role", True)
    delete_role = _operation("iam", "delete_role", True)
    list_attached_role_policies = _operation(
        "iam", "list_attached_role_policies", True
    )
    attach_role_policy = _operation("iam", "attach_role_policy", True)
    detach_role_policy = _operation("iam", "detach_role_policy", True)
    create_user = _operation("iam", "create_user", True)
    get_user = _operation("iam", "get_user", True)
    tag_user = _operation("iam", "tag_user", True)
    attach_user_policy = _operation("iam", "attach_user_policy", True)
    list_access_keys = _operation("iam", "list_access_keys", True)
    create_access_key = _operation("iam", "create_access_key", True)
    delete_access_key = _operation("iam", "delete_access_key", True)

    # s3
    list_buckets = _operation("s3", "list_buckets")
    delete_objects = _operation("s3", "delete_objects")
    delete_bucket = _operation("s3", "delete_bucket")

    # route53
    change_resource_record_sets = _operation(
        "route53", "change_resource_record_sets", True
    )
    delete_hosted_zone = _operation("route53", "delete_hosted_zone", True)

    # ec2
    delete_volume = _operation("ec2", "delete_volume")
    delete_snapshot = _operation("ec2", "delete_snapshot")
    describe_vpc_endpoint_service_configurations = _operation(
        "ec2", "describe_vpc_endpoint_service_configurations"
    )
    delete_vpc_endpoint_service_configurations = _operation(
        "ec2", "delete_vpc_endpoint_service_configurations"
    )
    describe_images = _operation("ec2", "describe_images")
    run_instances = _operation("ec2", "run_instances")
    describe_instances = _operation("ec2", "describe_instances")
    terminate_instances = _operation("ec2", "terminate_instances")

    # support
    create_case = _operation("support", "create_case", True)
    describe_cases = _operation("support", "describe_cases", True)

    # account regions
    enable_region = _operation("account", "enable_region", True)
    get_region_opt_status = _operation("account", "get_region_opt_status", True)

