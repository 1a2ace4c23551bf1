import asyncio
from typing import Any, Awaitable, Callable

from botocore.exceptions import ClientError
from loguru import logger

from account_operator.clients.aws.client import AwsClient
from account_operator.exceptions.aws import AwsProviderError, TeardownError

S3_DELETE_BATCH_SIZE = 1000
ROUTE53_CHANGE_BATCH_SIZE = 100
APEX_RECORD_TYPES = ("NS", "SOA")

Category = Callable[[], Awaitable[int]]


class ResourceTeardown:
    """Deletes leftover resources of an account before it is handed out again.

    Categories are independent: every one is attempted, failures are collected and
    reported together. Running against an empty account issues no delete calls.
    """

    def __init__(self, client: AwsClient, account_id: str) -> None:
        self.client = client
        self.account_id = account_id

    @property
    def categories(self) -> dict[str, Category]:
        return {
            "buckets": self.delete_buckets,
            "hosted_zones": self.delete_hosted_zones,
            "volumes": self.delete_volumes,
            "snapshots": self.delete_snapshots,
            "vpc_endpoint_services": self.delete_vpc_endpoint_services,
        }

    async def run(self) -> dict[str, int]:
        names = list(self.categories)
        results = await asyncio.gather(
            *(category() for category in self.categories.values()),
            return_exceptions=True,
        )

        deleted: dict[str, int] = {}
        failures: dict[str, Exception] = {}
        for name, result in zip(names, results):
            if isinstance(result, Exception):
                logger.error(
                    f"Failed cleaning up {name} in account {self.account_id}: {result}"
                )
                failures[name] = result
            elif isinstance(result, BaseException):
                raise result
            else:
                deleted[name] = result

        if failures:
            raise TeardownError(self.account_id, failures)
        logger.info(f"Cleaned up account {self.account_id}: {deleted}")
        return deleted

    async def delete_buckets(self) -> int:
        response = await self.client.list_buckets()
        buckets = [bucket["Name"] for bucket in response.get("Buckets", [])]
        for bucket in buckets:
            await self._empty_bucket(bucket)
            await self._ignore_missing(self.client.delete_bucket(Bucket=bucket))
        return len(buckets)

    async def _empty_bucket(self, bucket: str) -> None:
        async for objects in self.client.paginate(
            "s3",
            "list_objects_v2",
            "Contents",
            batch_size=S3_DELETE_BATCH_SIZE,
            Bucket=bucket,
        ):
            keys = [{"Key": obj["Key"]} for obj in objects]
            if not keys:
                continue
            response = await self.client.delete_objects(
                Bucket=bucket, Delete={"Objects": keys, "Quiet": True}
            )
            # the bucket is only deleted once every object is gone
            if errors := response.get("Errors"):
                raise AwsProviderError(
                    f"Failed deleting {len(errors)} objects from bucket {bucket}",
                    code=errors[0].get("Code"),
                )

    async def delete_hosted_zones(self) -> int:
        count = 0
        async for zones in self.client.paginate(
            "route53", "list_hosted_zones", "HostedZones"
        ):
            for zone in zones:
                await self._empty_hosted_zone(zone["Id"], zone["Name"])
                await self._ignore_missing(
                    self.client.delete_hosted_zone(Id=zone["Id"])
                )
                count += 1
        return count

    async def _empty_hosted_zone(self, zone_id: str, zone_name: str) -> None:
        async for record_sets in self.client.paginate(
            "route53",
            "list_resource_record_sets",
            "ResourceRecordSets",
            batch_size=ROUTE53_CHANGE_BATCH_SIZE,
            HostedZoneId=zone_id,
        ):
            changes = [
                {"Action": "DELETE", "ResourceRecordSet": record_set}
                for record_set in record_sets
                if not _is_apex_record(record_set, zone_name)
            ]
            if changes:
                await self.client.change_resource_record_sets(
                    HostedZoneId=zone_id, ChangeBatch={"Changes": changes}
                )

    async def delete_volumes(self) -> int:
        count = 0
        async for volumes in self.client.paginate("ec2", "describe_volumes", "Volumes"):
            for volume in volumes:
                await self._ignore_missing(
                    self.client.delete_volume(VolumeId=volume["VolumeId"])
                )
                count += 1
        return count

    async def delete_snapshots(self) -> int:
        count = 0
        async for snapshots in self.client.paginate(
            "ec2", "describe_snapshots", "Snapshots", OwnerIds=["self"]
        ):
            for snapshot in snapshots:
                await self._ignore_missing(
                    self.client.delete_snapshot(SnapshotId=snapshot["SnapshotId"])
                )
                count += 1
        return count

    async def delete_vpc_endpoint_services(self) -> int:
        service_ids: list[str] = []
        request: dict[str, Any] = {}
        while True:
            response = await self.client.describe_vpc_endpoint_service_configurations(
                **request
            )
            service_ids.extend(
                config["ServiceId"]
                for config in response.get("ServiceConfigurations", [])
            )
            if not response.get("NextToken"):
                break
            request["NextToken"] = response["NextToken"]

        if service_ids:
            response = await self.client.delete_vpc_endpoint_service_configurations(
                ServiceIds=service_ids
            )
            if unsuccessful := response.get("Unsuccessful"):
                raise AwsProviderError(
                    f"Failed deleting endpoint service configurations: {unsuccessful}"
                )
        return len(service_ids)

    @staticmethod
    async def _ignore_missing(call: Awaitable[Any]) -> None:
        try:
            await call
        except ClientError as e:
            if not AwsProviderError.is_no_such_entity(e):
                raise
            logger.debug(f"Resource already deleted: {e}")


def _is_apex_record(record_set: dict[str, Any], zone_name: str) -> bool:
    return (
        record_set.get("Type") in APEX_RECORD_TYPES
        and record_set.get("Name", "").rstrip(".") == zone_name.rstrip(".")
    )
