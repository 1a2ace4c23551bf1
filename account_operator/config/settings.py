from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import SettingsConfigDict

from account_operator.config.base import BaseOperatorModel, BaseOperatorSettings

LogLevelType = Literal["ERROR", "WARNING", "INFO", "DEBUG", "CRITICAL"]

DEFAULT_SUPPORTED_REGIONS = [
    "us-east-1",
    "us-east-2",
    "us-west-1",
    "us-west-2",
    "ca-central-1",
    "eu-central-1",
    "eu-west-1",
    "eu-west-2",
    "eu-west-3",
    "eu-north-1",
    "ap-northeast-1",
    "ap-northeast-2",
    "ap-south-1",
    "ap-southeast-1",
    "ap-southeast-2",
    "sa-east-1",
]


class ApplicationSettings(BaseOperatorModel):
    log_level: LogLevelType = "INFO"
    max_concurrent_reconciles: int = Field(default=10, ge=1)
    shard_name: str = "aws-account-operator"


class AwsSettings(BaseOperatorModel):
    default_region: str = "us-east-1"
    operator_namespace: str = "aws-account-operator"
    operator_secret_name: str = "aws-account-operator-credentials"
    operator_access_role: str = "OrganizationAccountAccessRole"
    byoc_access_role: str = "BYOCAdminAccess"
    access_key_id: str | None = Field(
        default=None, json_schema_extra={"sensitive": True}
    )
    secret_access_key: str | None = Field(
        default=None, json_schema_extra={"sensitive": True}
    )
    account_limit: int = 4800
    account_email_prefix: str = "aws-account-operator"
    account_email_domain: str = "example.com"
    supported_regions: list[str] = Field(
        default_factory=lambda: list(DEFAULT_SUPPORTED_REGIONS)
    )
    ami_owner: str = "amazon"
    instance_type: str = "t3.micro"
    sre_access_arn: str = ""
    sts_jump_role: str = ""
    wait_time_minutes: int = Field(default=25, ge=1)
    support_case_limit: int = 20
    opt_in_region_batch_size: int = 6
    opt_in_account_limit: int = 9
    budget_refresh_interval: int = 600


class FeatureFlags(BaseOperatorModel):
    opt_in_regions: bool = False
    opt_in_region_list: list[str] = Field(default_factory=list)


class AccountPoolConfig(BaseOperatorModel):
    default: bool = False
    create_on_demand: bool = False


class OperatorSettings(BaseOperatorSettings):
    application: ApplicationSettings = Field(default_factory=ApplicationSettings)
    aws: AwsSettings = Field(default_factory=AwsSettings)
    feature_flags: FeatureFlags = Field(default_factory=FeatureFlags)
    account_pools: dict[str, AccountPoolConfig] = Field(default_factory=dict)

    @model_validator(mode="after")
    def validate_default_pool(self) -> "OperatorSettings":
        defaults = [name for name, pool in self.account_pools.items() if pool.default]
        if self.account_pools and len(defaults) != 1:
            raise ValueError(
                f"Exactly one account pool must be marked default, found {len(defaults)}"
            )
        return self

    @property
    def default_pool_name(self) -> str:
        for name, pool in self.account_pools.items():
            if pool.default:
                return name
        return ""

    def is_default_pool(self, pool_name: str) -> bool:
        return pool_name == "" or pool_name == self.default_pool_name

    def pool_config(self, pool_name: str) -> AccountPoolConfig:
        if self.is_default_pool(pool_name):
            return self.account_pools.get(
                self.default_pool_name,
                AccountPoolConfig(default=True, create_on_demand=True),
            )
        return self.account_pools.get(pool_name, AccountPoolConfig())


def load_settings(config_path: str = "./config.yaml") -> OperatorSettings:
    class FileOperatorSettings(OperatorSettings):
        model_config = SettingsConfigDict(yaml_file=config_path)

    return FileOperatorSettings()
