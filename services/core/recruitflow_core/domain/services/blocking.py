"""Bounded execution of blocking calls to external collaborators."""

from concurrent.futures import Executor, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Any, Callable, Optional, TypeVar

from recruitflow_core.domain.errors import TransientDispatchError

T = TypeVar("T")

# Shared pool for one-off calls made outside a sweep
_pool = ThreadPoolExecutor(max_workers=8, thread_name_prefix="recruitflow-io")


def run_with_timeout(
    fn: Callable[..., T],
    *args: Any,
    timeout: float,
    executor: Optional[Executor] = None,
) -> T:
    """Run ``fn(*args)`` on a worker thread and wait at most ``timeout``.

    Exceptions raised by ``fn`` propagate unchanged. The worker thread of a
    timed-out call is abandoned, not interrupted.

    Raises:
        TransientDispatchError: If the call did not finish in time.
    """
    future = (executor or _pool).submit(fn, *args)
    try:
        return future.result(timeout=timeout)
    except FutureTimeoutError as e:
        future.cancel()
        name = getattr(fn, "__qualname__", repr(fn))
        raise TransientDispatchError(f"{name} timed out after {timeout}s") from e
