from datetime import datetime
from typing import ClassVar

from pydantic import BaseModel, Field

from account_operator.utils.misc import utc_now

OPERATOR_FINALIZER = "finalizer.aws.managed.openshift.com"
IAM_USER_ID_LABEL = "iamUserId"


class ObjectMeta(BaseModel):
    name: str
    namespace: str = ""
    resource_version: int = 0
    finalizers: list[str] = Field(default_factory=list)
    labels: dict[str, str] = Field(default_factory=dict)
    deletion_timestamp: datetime | None = None
    creation_timestamp: datetime | None = None


class LegalEntity(BaseModel):
    name: str = ""
    id: str = ""

    def matches(self, other: "LegalEntity") -> bool:
        return bool(self.id) and self.id == other.id


class ObjectReference(BaseModel):
    name: str = ""
    namespace: str = ""


class Condition(BaseModel):
    type: str
    status: str = "True"
    reason: str = ""
    message: str = ""
    last_transition_time: datetime = Field(default_factory=utc_now)


class BaseObject(BaseModel):
    """A versioned control-plane object keyed by namespace and name."""

    kind: ClassVar[str] = ""

    metadata: ObjectMeta

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str:
        return self.metadata.namespace

    @property
    def key(self) -> tuple[str, str, str]:
        return self.kind, self.metadata.namespace, self.metadata.name

    @property
    def is_deleting(self) -> bool:
        return self.metadata.deletion_timestamp is not None

    def has_finalizer(self, finalizer: str = OPERATOR_FINALIZER) -> bool:
        return finalizer in self.metadata.finalizers

    def add_finalizer(self, finalizer: str = OPERATOR_FINALIZER) -> bool:
        if self.has_finalizer(finalizer):
            return False
        self.metadata.finalizers.append(finalizer)
        return True

    def remove_finalizer(self, finalizer: str = OPERATOR_FINALIZER) -> bool:
        if not self.has_finalizer(finalizer):
            return False
        self.metadata.finalizers.remove(finalizer)
        return True

    def other_finalizers(self, finalizer: str = OPERATOR_FINALIZER) -> list[str]:
        return [f for f in self.metadata.finalizers if f != finalizer]
