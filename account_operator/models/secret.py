from typing import ClassVar

from pydantic import Field

from account_operator.models.common import BaseObject

AWS_ACCESS_KEY_ID = "aws_access_key_id"
AWS_SECRET_ACCESS_KEY = "aws_secret_access_key"


class Secret(BaseObject):
    kind: ClassVar[str] = "Secret"

    data: dict[str, str] = Field(default_factory=dict)

    @property
    def access_key_id(self) -> str:
        return self.data.get(AWS_ACCESS_KEY_ID, "")

    @property
    def secret_access_key(self) -> str:
        return self.data.get(AWS_SECRET_ACCESS_KEY, "")
