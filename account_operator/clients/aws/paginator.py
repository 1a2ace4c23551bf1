from collections import deque
from typing import Any, AsyncGenerator, List, Optional

from loguru import logger


class AsyncPaginator:
    """
    Asynchronously paginates a provider list operation and yields the results in batches.

    Default pagination arguments given at construction are merged with the ones passed to
    `paginate`; resources are buffered so every batch but the last has `batch_size` items.
    """

    _BATCH_SIZE = 100
    __slots__ = ("client", "method_name", "list_param", "paginator_kwargs")

    def __init__(
        self,
        client: Any,
        method_name: str,
        list_param: str,
        **paginator_kwargs: Any,
    ):
        self.client = client
        self.method_name = method_name
        self.list_param = list_param
        self.paginator_kwargs = paginator_kwargs

    @property
    def service_name(self) -> str:
        try:
            return self.client.meta.service_model.service_name
        except AttributeError:
            return self.client.__class__.__name__

    @property
    def region_name(self) -> str:
        try:
            return self.client.meta.region_name
        except AttributeError:
            return "unknown"

    async def _pages(self, **kwargs: Any) -> AsyncGenerator[List[Any], None]:
        paginator = self.client.get_paginator(self.method_name)
        paginator_args = {**self.paginator_kwargs, **kwargs}
        page_count = 1
        async for page in paginator.paginate(**paginator_args):
            resources = page.get(self.list_param, [])
            logger.debug(
                f"Queried {len(resources)} {self.list_param} from {self.service_name} in {self.region_name} in page {page_count}"
            )
            yield resources
            page_count += 1

    async def paginate(
        self, *, batch_size: Optional[int] = None, **kwargs: Any
    ) -> AsyncGenerator[List[Any], None]:
        batch_size = batch_size or self._BATCH_SIZE
        buffer: deque[Any] = deque()

        async for resources in self._pages(**kwargs):
            buffer.extend(resources)
            while len(buffer) >= batch_size:
                yield [buffer.popleft() for _ in range(batch_size)]
        if buffer:
            yield list(buffer)
