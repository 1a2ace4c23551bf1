from typing import Any, AsyncGenerator
from unittest.mock import MagicMock

import pytest

from account_operator.clients.aws.paginator import AsyncPaginator


def fake_client(pages: list[dict[str, Any]]) -> MagicMock:
    requests: list[dict[str, Any]] = []

    async def paginate(**kwargs: Any) -> AsyncGenerator[dict[str, Any], None]:
        requests.append(kwargs)
        for page in pages:
            yield page

    paginator = MagicMock()
    paginator.paginate = paginate
    client = MagicMock()
    client.get_paginator.return_value = paginator
    client.requests = requests
    return client


class TestAsyncPaginator:
    @pytest.mark.asyncio
    async def test_batches_across_pages(self) -> None:
        """
        Arrange: three pages of 2, 3 and 1 items
        Act: paginate with a batch size of 4
        Assert: batches are regrouped to the requested size with the remainder last
        """
        client = fake_client(
            [{"Buckets": [1, 2]}, {"Buckets": [3, 4, 5]}, {"Buckets": [6]}]
        )
        paginator = AsyncPaginator(client, "list_buckets", "Buckets")

        batches = [batch async for batch in paginator.paginate(batch_size=4)]

        assert batches == [[1, 2, 3, 4], [5, 6]]
        client.get_paginator.assert_called_once_with("list_buckets")

    @pytest.mark.asyncio
    async def test_default_arguments_are_merged(self) -> None:
        client = fake_client([{"Snapshots": []}])
        paginator = AsyncPaginator(
            client, "describe_snapshots", "Snapshots", OwnerIds=["self"]
        )

        batches = [batch async for batch in paginator.paginate(MaxResults=5)]

        assert batches == []
        assert client.requests == [{"OwnerIds": ["self"], "MaxResults": 5}]
