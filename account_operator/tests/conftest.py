from typing import Generator
from unittest.mock import AsyncMock, MagicMock

import pytest

from account_operator.clients.aws.builder import AwsClientBuilder
from account_operator.clients.aws.sts import AssumedRoleCredentials
from account_operator.config.settings import (
    AccountPoolConfig,
    AwsSettings,
    OperatorSettings,
)
from account_operator.controllers.base import ReconcilerContext
from account_operator.core.budget import StaticBudget
from account_operator.log.sensitive import SensitiveLogFilter
from account_operator.store.memory import InMemoryObjectStore
from account_operator.tests.helpers.fakes import FakeAwsClient


@pytest.fixture(autouse=True)
def reset_compiled_patterns() -> Generator[None, None, None]:
    """Redaction patterns are class level, keep them from leaking between tests."""
    original_patterns = SensitiveLogFilter.compiled_patterns.copy()
    yield
    SensitiveLogFilter.compiled_patterns = original_patterns


@pytest.fixture
def settings() -> OperatorSettings:
    return OperatorSettings(
        aws=AwsSettings(
            supported_regions=["us-east-1", "eu-west-1"],
            sre_access_arn="arn:aws:iam::888888888888:role/sre",
            sts_jump_role="arn:aws:iam::777777777777:role/jump",
        ),
        account_pools={
            "default": AccountPoolConfig(default=True, create_on_demand=True),
            "hive-pool": AccountPoolConfig(),
        },
    )


@pytest.fixture
def store() -> InMemoryObjectStore:
    return InMemoryObjectStore()


@pytest.fixture
def aws_client(monkeypatch: pytest.MonkeyPatch) -> FakeAwsClient:
    """The operator client. Assumed-role credentials resolve to the same fake."""
    client = FakeAwsClient()
    monkeypatch.setattr(
        AssumedRoleCredentials, "client", lambda self, region=None: client
    )
    return client


@pytest.fixture
def customer_client() -> FakeAwsClient:
    return FakeAwsClient()


@pytest.fixture
def clients(
    aws_client: FakeAwsClient, customer_client: FakeAwsClient
) -> MagicMock:
    builder = MagicMock(spec=AwsClientBuilder)
    builder.operator_client = AsyncMock(return_value=aws_client)
    builder.from_secret = AsyncMock(return_value=customer_client)
    return builder


@pytest.fixture
def budget() -> StaticBudget:
    return StaticBudget(total=10, limit=100)


@pytest.fixture
def sleep() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def context(
    store: InMemoryObjectStore,
    settings: OperatorSettings,
    clients: MagicMock,
    budget: StaticBudget,
    sleep: AsyncMock,
) -> ReconcilerContext:
    return ReconcilerContext(
        store=store, settings=settings, clients=clients, budget=budget, sleep=sleep
    )
