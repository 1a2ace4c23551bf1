import asyncio
from functools import wraps
from traceback import format_exception
from typing import Any, Callable, Coroutine

from loguru import logger

NoArgsNoReturnAsyncFuncT = Callable[[], Coroutine[Any, Any, None]]
NoArgsReturnTaskFuncT = Callable[[], Coroutine[Any, Any, "asyncio.Task[None]"]]
NoArgsNoReturnDecorator = Callable[[NoArgsNoReturnAsyncFuncT], NoArgsReturnTaskFuncT]


def repeat_every(
    seconds: float,
    wait_first: bool = False,
    raise_exceptions: bool = False,
    max_repetitions: int | None = None,
) -> NoArgsNoReturnDecorator:
    """
    This function returns a decorator that modifies a coroutine function so it is periodically re-executed after its first call.

    Calling the decorated function schedules the loop and returns the background task so the caller can cancel it.

    Parameters
    ----------
    seconds: float
        The number of seconds to wait between repeated calls
    wait_first: bool (default False)
        If True, the function will wait for a single period before the first call
    raise_exceptions: bool (default False)
        If True, errors raised by the decorated function stop the loop and are raised from the task.
        Otherwise, exceptions are just logged and the execution continues to repeat.
    max_repetitions: Optional[int] (default None)
        The maximum number of times to call the repeated function. If `None`, the function is repeated forever.
    """

    def decorator(func: NoArgsNoReturnAsyncFuncT) -> NoArgsReturnTaskFuncT:
        @wraps(func)
        async def wrapped() -> "asyncio.Task[None]":
            repetitions = 0

            async def loop() -> None:
                nonlocal repetitions

                if wait_first:
                    await asyncio.sleep(seconds)
                while max_repetitions is None or repetitions < max_repetitions:
                    # count the repetition even if an exception is raised
                    repetitions += 1
                    try:
                        await func()
                    except Exception as exc:
                        formatted_exception = "".join(
                            format_exception(type(exc), exc, exc.__traceback__)
                        )
                        logger.error(formatted_exception)
                        if raise_exceptions:
                            raise exc
                    await asyncio.sleep(seconds)

            return asyncio.ensure_future(loop())

        return wrapped

    return decorator
