import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import ClassVar

from account_operator.clients.aws.builder import AwsClientBuilder
from account_operator.config.settings import OperatorSettings
from account_operator.core.budget import BudgetSource
from account_operator.core.models import ReconcileResult
from account_operator.core.retry import SleepFunc
from account_operator.models.common import BaseObject, Condition
from account_operator.store.base import ObjectStore


@dataclass
class ReconcilerContext:
    """Collaborators shared by every reconciler"""

    store: ObjectStore
    settings: OperatorSettings
    clients: AwsClientBuilder
    budget: BudgetSource
    sleep: SleepFunc = field(default=asyncio.sleep, repr=False)

    @property
    def namespace(self) -> str:
        return self.settings.aws.operator_namespace


class Reconciler(ABC):
    model: ClassVar[type[BaseObject]]
    controller_name: ClassVar[str]

    def __init__(self, context: ReconcilerContext) -> None:
        self.context = context

    @property
    def kind(self) -> str:
        return self.model.kind

    @property
    def store(self) -> ObjectStore:
        return self.context.store

    @property
    def settings(self) -> OperatorSettings:
        return self.context.settings

    @abstractmethod
    async def reconcile(self, namespace: str, name: str) -> ReconcileResult:
        pass


def entered_at(conditions: list[Condition], condition_type: str) -> datetime | None:
    for condition in reversed(conditions):
        if condition.type == condition_type:
            return condition.last_transition_time
    return None
