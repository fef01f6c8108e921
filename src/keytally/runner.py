import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Sequence, TypeVar

import structlog

logger = structlog.get_logger()

T = TypeVar("T")

DEFAULT_CONCURRENCY = 8


@dataclass(frozen=True, slots=True)
class TaskError:
    """
    placeholder stored in a result slot when the task at that
    index raised.
    """

    error: "str"


class BoundedRunner(Generic[T]):
    """
    BoundedRunner executes a list of coroutine factories with at most
    `concurrency` of them in flight at any time.

    Workers share a single cursor into the task list. Each worker claims
    the next index, awaits the task and writes the outcome into the slot
    at that index, so results keep the input order no matter which task
    finishes first. A failing task only fills its own slot with a
    TaskError; the remaining tasks keep running.
    """

    def __init__(self, concurrency: "int" = DEFAULT_CONCURRENCY) -> "None":
        if concurrency < 1:
            raise ValueError(f"concurrency must be at least 1, got {concurrency}")
        self._concurrency = concurrency

    @property
    def concurrency(self) -> "int":
        return self._concurrency

    async def run(
        self,
        tasks: "Sequence[Callable[[], Awaitable[T]]]",
    ) -> "list[T | TaskError]":
        """
        runs every task and returns their results in input order.
        """
        total = len(tasks)
        if total == 0:
            return []

        results: "list[T | TaskError | None]" = [None] * total
        cursor = 0

        async def _worker() -> "None":
            nonlocal cursor
            # claiming happens between awaits, so no two workers
            # can take the same index
            while cursor < total:
                index = cursor
                cursor += 1
                try:
                    results[index] = await tasks[index]()
                except Exception as exc:
                    logger.warning("runner_task_failed", index=index, error=str(exc))
                    results[index] = TaskError(error=str(exc))

        workers = min(self._concurrency, total)
        await asyncio.gather(*(_worker() for _ in range(workers)))
        return results  # type: ignore[return-value]
