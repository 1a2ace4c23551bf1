from datetime import datetime
from typing import ClassVar

from pydantic import BaseModel, Field

from account_operator.core.state import AccountState
from account_operator.models.common import (
    BaseObject,
    Condition,
    LegalEntity,
)


class RegionOptInStatus(BaseModel):
    status: str = "ENABLING"
    request_time: datetime | None = None


class AccountSpec(BaseModel):
    aws_account_id: str = ""
    iam_user_secret: str = ""
    byoc: bool = False
    claim_link: str = ""
    claim_link_namespace: str = ""
    legal_entity: LegalEntity = Field(default_factory=LegalEntity)
    manual_sts_mode: bool = False
    account_pool: str = ""
    regions: list[str] = Field(default_factory=list)


class AccountStatus(BaseModel):
    state: AccountState | None = None
    claimed: bool = False
    reused: bool = False
    support_case_id: str = ""
    create_request_id: str = ""
    region_init_started: datetime | None = None
    opt_in_regions: dict[str, RegionOptInStatus] = Field(default_factory=dict)
    conditions: list[Condition] = Field(default_factory=list)


class Account(BaseObject):
    kind: ClassVar[str] = "Account"

    spec: AccountSpec = Field(default_factory=AccountSpec)
    status: AccountStatus = Field(default_factory=AccountStatus)

    def is_claimed_by(self, name: str, namespace: str) -> bool:
        return (
            self.spec.claim_link == name and self.spec.claim_link_namespace == namespace
        )

    def is_failed(self) -> bool:
        return self.status.state == AccountState.FAILED

    def is_ready(self) -> bool:
        return self.status.state == AccountState.READY

    def is_available(self) -> bool:
        """Ready, unclaimed and not reserved for a claim"""
        return self.is_ready() and not self.status.claimed and not self.spec.claim_link

    def is_progressing(self) -> bool:
        return self.status.state not in (AccountState.READY, AccountState.FAILED)

    def has_aws_account_id(self) -> bool:
        return bool(self.spec.aws_account_id)
