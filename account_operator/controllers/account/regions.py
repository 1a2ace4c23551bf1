import asyncio
from typing import Any

from loguru import logger

from account_operator.clients.aws.client import AwsClient
from account_operator.clients.aws.sts import AssumedRoleCredentials
from account_operator.config.settings import AwsSettings, FeatureFlags
from account_operator.core.models import ReconcileResult
from account_operator.core.retry import RetryPolicy, SleepFunc
from account_operator.core.state import AccountState
from account_operator.exceptions.aws import AwsProviderError
from account_operator.models.account import Account, RegionOptInStatus
from account_operator.utils.misc import utc_now

OPT_IN_REQUEUE_SECONDS = 60
INSTANCE_POLL_ATTEMPTS = 30
INSTANCE_POLL_DELAY = 5
INSTANCE_TAG_KEY = "aws-account-operator"

REGION_ENABLED_STATUSES = ("ENABLED", "ENABLED_BY_DEFAULT")


class InstanceNotRunningError(AwsProviderError):
    reason = "InstanceNotRunning"


class RegionInitializer:
    """Activates regions by launching and terminating a minimal instance in each."""

    def __init__(self, settings: AwsSettings, sleep: SleepFunc = asyncio.sleep) -> None:
        self.settings = settings
        self.poll_policy = RetryPolicy(
            max_attempts=INSTANCE_POLL_ATTEMPTS, delay=INSTANCE_POLL_DELAY, sleep=sleep
        )

    async def initialize(
        self, credentials: AssumedRoleCredentials, regions: list[str]
    ) -> None:
        """Initialize every region concurrently and raise the first error, if any"""
        logger.info(f"Initializing {len(regions)} regions")
        results = await asyncio.gather(
            *(self.initialize_region(credentials.client(region), region) for region in regions),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, BaseException) and not isinstance(result, Exception):
                raise result
        errors = [result for result in results if isinstance(result, Exception)]
        # opt-in errors take precedence, the caller requeues on them
        errors.sort(key=lambda e: not AwsProviderError.is_opt_in_required(e))
        if errors:
            raise errors[0]

    async def initialize_region(self, client: AwsClient, region: str) -> None:
        image_id = await self.newest_image(client)
        response = await client.run_instances(
            ImageId=image_id,
            InstanceType=self.settings.instance_type,
            MinCount=1,
            MaxCount=1,
            TagSpecifications=[
                {
                    "ResourceType": "instance",
                    "Tags": [{"Key": INSTANCE_TAG_KEY, "Value": "region-init"}],
                }
            ],
        )
        instance_id = response["Instances"][0]["InstanceId"]
        logger.debug(f"Launched instance {instance_id} in {region}")
        try:
            await self.poll_policy.run(
                lambda: self._ensure_running(client, instance_id),
                should_retry=lambda e: isinstance(e, InstanceNotRunningError),
                operation=f"wait for {instance_id} in {region}",
            )
        finally:
            await client.terminate_instances(InstanceIds=[instance_id])
            logger.debug(f"Terminated instance {instance_id} in {region}")

    async def newest_image(self, client: AwsClient) -> str:
        response = await client.describe_images(
            Owners=[self.settings.ami_owner],
            Filters=[
                {"Name": "state", "Values": ["available"]},
                {"Name": "architecture", "Values": ["x86_64"]},
            ],
        )
        images: list[dict[str, Any]] = response.get("Images", [])
        if not images:
            raise AwsProviderError(
                f"No images available from owner {self.settings.ami_owner}"
            )
        newest = max(images, key=lambda image: image.get("CreationDate", ""))
        return newest["ImageId"]

    @staticmethod
    async def _ensure_running(client: AwsClient, instance_id: str) -> None:
        response = await client.describe_instances(InstanceIds=[instance_id])
        for reservation in response.get("Reservations", []):
            for instance in reservation.get("Instances", []):
                if instance.get("State", {}).get("Name") == "running":
                    return
        raise InstanceNotRunningError(f"Instance {instance_id} is not running yet")


class RegionOptIn:
    """Enables opt-in regions with bounded concurrency, one step per reconciliation."""

    def __init__(self, settings: AwsSettings, feature_flags: FeatureFlags) -> None:
        self.settings = settings
        self.feature_flags = feature_flags

    @property
    def enabled(self) -> bool:
        return self.feature_flags.opt_in_regions and bool(
            self.feature_flags.opt_in_region_list
        )

    def has_slot(self, accounts: list[Account]) -> bool:
        """Whether another account may start enabling regions"""
        enabling = sum(
            1
            for account in accounts
            if account.status.state == AccountState.OPTING_IN_REGIONS
        )
        return enabling < self.settings.opt_in_account_limit

    async def step(self, client: AwsClient, account: Account) -> bool:
        """Advance enablement, returning True once every region is enabled"""
        account_id = account.spec.aws_account_id
        statuses = account.status.opt_in_regions

        for region, status in statuses.items():
            if status.status in REGION_ENABLED_STATUSES:
                continue
            response = await client.get_region_opt_status(
                AccountId=account_id, RegionName=region
            )
            status.status = response.get("RegionOptStatus", status.status)

        enabling = sum(
            1 for status in statuses.values() if status.status not in REGION_ENABLED_STATUSES
        )
        for region in self.feature_flags.opt_in_region_list:
            if enabling >= self.settings.opt_in_region_batch_size:
                break
            if region in statuses:
                continue
            response = await client.get_region_opt_status(
                AccountId=account_id, RegionName=region
            )
            current = response.get("RegionOptStatus", "DISABLED")
            if current not in REGION_ENABLED_STATUSES and current != "ENABLING":
                await client.enable_region(AccountId=account_id, RegionName=region)
                current = "ENABLING"
                logger.info(f"Requested enablement of region {region}")
            statuses[region] = RegionOptInStatus(status=current, request_time=utc_now())
            if current not in REGION_ENABLED_STATUSES:
                enabling += 1

        return all(
            region in statuses and statuses[region].status in REGION_ENABLED_STATUSES
            for region in self.feature_flags.opt_in_region_list
        )

    @staticmethod
    def requeue() -> ReconcileResult:
        return ReconcileResult.after(OPT_IN_REQUEUE_SECONDS)
