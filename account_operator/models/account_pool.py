from typing import ClassVar

from pydantic import BaseModel, Field

from account_operator.models.common import BaseObject


class AccountPoolSpec(BaseModel):
    pool_size: int = 0


class AccountPoolStatus(BaseModel):
    pool_size: int = 0
    unclaimed_accounts: int = 0
    claimed_accounts: int = 0
    available_accounts: int = 0
    accounts_progressing: int = 0
    aws_limit_delta: int = 0


class AccountPool(BaseObject):
    kind: ClassVar[str] = "AccountPool"

    spec: AccountPoolSpec = Field(default_factory=AccountPoolSpec)
    status: AccountPoolStatus = Field(default_factory=AccountPoolStatus)
