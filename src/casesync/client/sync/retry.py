"""Retry logic with exponential backoff and network-aware waiting.

This module provides:
- call_with_timeout: Bound a remote call by a timeout
- retry_with_backoff: Exponential backoff retry of transient failures
- wait_for_network: Wait for network connectivity to be restored
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, TypeVar

from casesync.core.errors import TransientError

if TYPE_CHECKING:
    from casesync.client.sync.types import RemoteDataSource

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Default retry configuration
DEFAULT_MAX_RETRIES = 5
DEFAULT_INITIAL_BACKOFF = 1.0  # seconds
DEFAULT_MAX_BACKOFF = 60.0  # seconds
DEFAULT_BACKOFF_MULTIPLIER = 2.0
DEFAULT_TIMEOUT = 60.0  # seconds per attempt

# Network-aware retry configuration
NETWORK_CHECK_INTERVAL = 5.0  # seconds between network checks


async def call_with_timeout(func: Callable[[], Awaitable[T]], timeout: float = DEFAULT_TIMEOUT) -> T:
    """Await a call, turning a timeout into a TransientError.

    Args:
        func: Coroutine factory to call.
        timeout: Timeout in seconds.

    Returns:
        Result of the call.
    """
    try:
        return await asyncio.wait_for(func(), timeout)
    except TimeoutError as e:
        raise TransientError(f"Remote call timed out after {timeout:.0f}s") from e


async def retry_with_backoff(
    func: Callable[[], Awaitable[T]],
    max_retries: int = DEFAULT_MAX_RETRIES,
    initial_backoff: float = DEFAULT_INITIAL_BACKOFF,
    max_backoff: float = DEFAULT_MAX_BACKOFF,
    backoff_multiplier: float = DEFAULT_BACKOFF_MULTIPLIER,
    timeout: float = DEFAULT_TIMEOUT,
    retryable_exceptions: tuple[type[Exception], ...] = (TransientError,),
) -> T:
    """Execute a remote call with exponential backoff retry.

    Each attempt is bounded by the timeout. Exceptions outside
    retryable_exceptions propagate immediately.

    Args:
        func: Coroutine factory to call.
        max_retries: Maximum number of retry attempts.
        initial_backoff: Initial backoff time in seconds.
        max_backoff: Maximum backoff time in seconds.
        backoff_multiplier: Multiplier for each retry.
        timeout: Timeout of each attempt in seconds.
        retryable_exceptions: Tuple of exception types to retry on.

    Returns:
        Result of the call.

    Raises:
        The last exception if all retries fail.
    """
    backoff = initial_backoff

    for attempt in range(max_retries + 1):
        try:
            return await call_with_timeout(func, timeout)
        except retryable_exceptions as e:
            if attempt == max_retries:
                logger.error(f"All {max_retries} retries failed: {e}")
                raise

            logger.warning(
                f"Attempt {attempt + 1}/{max_retries + 1} failed: {e}. "
                f"Retrying in {backoff:.1f}s..."
            )
            await asyncio.sleep(backoff)
            backoff = min(backoff * backoff_multiplier, max_backoff)

    raise RuntimeError("Unexpected retry loop exit")


async def wait_for_network(
    remote: RemoteDataSource,
    check_interval: float = NETWORK_CHECK_INTERVAL,
    on_waiting: Callable[[], None] | None = None,
    on_restored: Callable[[], None] | None = None,
) -> None:
    """Wait indefinitely for the remote store to become reachable.

    Polls the remote health check every check_interval seconds.

    Args:
        remote: Remote store to probe.
        check_interval: Seconds between health check attempts (default: 5s).
        on_waiting: Optional callback when starting to wait.
        on_restored: Optional callback when network is restored.
    """
    logger.info(
        f"Network appears down. Waiting for connectivity "
        f"(checking every {check_interval}s)..."
    )

    if on_waiting:
        on_waiting()

    attempts = 0
    while True:
        await asyncio.sleep(check_interval)
        attempts += 1

        if await remote.health_check():
            logger.info(f"Network restored after {attempts * check_interval:.0f}s")
            if on_restored:
                on_restored()
            return

        if attempts % 12 == 0:  # Log every minute (12 * 5s)
            logger.info(
                f"Still waiting for network... ({attempts * check_interval:.0f}s elapsed)"
            )
