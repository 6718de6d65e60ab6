"""
Caller-side retry for store operations.

The store itself never retries. Code that wants retries (the CLI, batch
scripts) wraps an operation here: it is re-issued with exponential backoff for
as long as its result carries a retryable ``NetworkError``.
"""

from __future__ import annotations

from typing import Awaitable, Callable, TypeVar

from tenacity import AsyncRetrying, retry_if_result, stop_after_attempt, wait_exponential

from sipoma_store.domain.results import Result
from sipoma_store.errors import NetworkError

T = TypeVar("T")


def _is_transient(result: Result) -> bool:
    return isinstance(result.error, NetworkError) and result.error.retryable


async def retry_network(
    operation: Callable[[], Awaitable[Result[T]]],
    attempts: int = 3,
    min_wait: float = 1.0,
    max_wait: float = 10.0,
) -> Result[T]:
    """
    Run ``operation`` until it stops failing with a transient network error.

    Returns the last result; after the final attempt a ``NetworkError`` is
    returned as-is, never raised.
    """
    retrying = AsyncRetrying(
        stop=stop_after_attempt(attempts),
        wait=wait_exponential(multiplier=1, min=min_wait, max=max_wait),
        retry=retry_if_result(_is_transient),
        retry_error_callback=lambda state: state.outcome.result(),
    )

    async def _attempt() -> Result[T]:
        return await operation()

    return await retrying(_attempt)


__all__ = ["retry_network"]
