from loguru import logger

from account_operator.clients.aws.client import AwsClient
from account_operator.clients.aws.sts import AssumedRoleCredentials
from account_operator.config.settings import AwsSettings
from account_operator.exceptions.aws import CredentialsProviderError
from account_operator.exceptions.store import ObjectNotFoundError
from account_operator.log.sensitive import sensitive_log_filter
from account_operator.models.secret import Secret
from account_operator.store.base import ObjectStore


class AwsClientBuilder:
    """Builds provider clients from static keys, stored secrets or assumed-role credentials."""

    def __init__(self, store: ObjectStore, settings: AwsSettings) -> None:
        self.store = store
        self.settings = settings

    def from_static(
        self,
        access_key_id: str,
        secret_access_key: str,
        session_token: str | None = None,
        region: str | None = None,
    ) -> AwsClient:
        if not (access_key_id and secret_access_key):
            raise CredentialsProviderError(
                "Both aws_access_key_id and aws_secret_access_key are required for static credentials"
            )
        sensitive_log_filter.hide_sensitive_strings(secret_access_key)
        return AwsClient.from_keys(
            access_key_id,
            secret_access_key,
            session_token,
            region or self.settings.default_region,
        )

    def from_credentials(
        self, credentials: AssumedRoleCredentials, region: str | None = None
    ) -> AwsClient:
        return credentials.client(region or self.settings.default_region)

    async def from_secret(
        self, name: str, namespace: str, region: str | None = None
    ) -> AwsClient:
        try:
            secret = await self.store.get(Secret, namespace, name)
        except ObjectNotFoundError as e:
            raise CredentialsProviderError(
                f"Credentials secret {namespace}/{name} not found"
            ) from e
        logger.debug(f"Building provider client from secret {namespace}/{name}")
        return self.from_static(
            secret.access_key_id, secret.secret_access_key, region=region
        )

    async def operator_client(self, region: str | None = None) -> AwsClient:
        if self.settings.access_key_id and self.settings.secret_access_key:
            return self.from_static(
                self.settings.access_key_id,
                self.settings.secret_access_key,
                region=region,
            )
        return await self.from_secret(
            self.settings.operator_secret_name,
            self.settings.operator_namespace,
            region,
        )
