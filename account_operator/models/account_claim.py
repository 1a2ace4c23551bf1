from typing import ClassVar

from pydantic import BaseModel, Field

from account_operator.core.state import ClaimState
from account_operator.models.common import (
    BaseObject,
    Condition,
    LegalEntity,
    ObjectReference,
)


class AccountClaimSpec(BaseModel):
    legal_entity: LegalEntity = Field(default_factory=LegalEntity)
    account_link: str = ""
    account_pool: str = ""
    aws_credential_secret: ObjectReference = Field(default_factory=ObjectReference)
    byoc: bool = False
    byoc_aws_account_id: str = ""
    byoc_secret_ref: ObjectReference = Field(default_factory=ObjectReference)
    manual_sts_mode: bool = False
    sts_role_arn: str = ""
    sts_external_id: str = ""
    regions: list[str] = Field(default_factory=list)


class AccountClaimStatus(BaseModel):
    state: ClaimState | None = None
    conditions: list[Condition] = Field(default_factory=list)


class AccountClaim(BaseObject):
    kind: ClassVar[str] = "AccountClaim"

    spec: AccountClaimSpec = Field(default_factory=AccountClaimSpec)
    status: AccountClaimStatus = Field(default_factory=AccountClaimStatus)

    def is_bound(self) -> bool:
        return bool(self.spec.account_link)
