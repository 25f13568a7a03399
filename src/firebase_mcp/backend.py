"""Runs blocking Admin SDK calls off the event loop with a timeout and bounded retry."""

import asyncio
import functools
import logging
from typing import Any, Callable, TypeVar

from .config import BackendConfig
from .errors import ErrorCategory, ToolError, classify_error

logger = logging.getLogger(__name__)

T = TypeVar("T")


class BackendTimeoutError(TimeoutError):
    """Raised when a backend call does not finish within the configured timeout."""
    pass


class BackendRunner:
    """
    Executes SDK calls in worker threads.

    Each attempt is bounded by `timeout`. Idempotent calls that fail with a
    network-class error are retried with exponential backoff, at most
    `max_retries` times. Non-idempotent calls are attempted exactly once.
    """

    def __init__(
        self,
        timeout: float = 30.0,
        max_retries: int = 3,
        initial_backoff: float = 0.5,
        max_backoff: float = 8.0,
        backoff_factor: float = 2.0,
    ):
        self.timeout = timeout
        self.max_retries = max_retries
        self.initial_backoff = initial_backoff
        self.max_backoff = max_backoff
        self.backoff_factor = backoff_factor

    @classmethod
    def from_config(cls, config: BackendConfig) -> "BackendRunner":
        return cls(
            timeout=config.timeout,
            max_retries=config.max_retries,
            initial_backoff=config.initial_backoff,
            max_backoff=config.max_backoff,
        )

    async def _attempt(self, func: Callable[[], T]) -> T:
        try:
            return await asyncio.wait_for(asyncio.to_thread(func), timeout=self.timeout)
        except asyncio.TimeoutError:
            # The worker thread keeps running; its result is discarded.
            raise BackendTimeoutError(f"Firebase call timed out after {self.timeout:g}s")

    async def call(self, func: Callable[..., T], *args: Any, idempotent: bool = True, **kwargs: Any) -> T:
        """
        Run func(*args, **kwargs) in a worker thread.

        Args:
            func: Blocking SDK callable
            idempotent: Whether the call is safe to repeat on transient failure

        Returns:
            Whatever func returns

        Raises:
            BackendTimeoutError on timeout, or the SDK's exception
        """
        bound = functools.partial(func, *args, **kwargs)
        attempts = self.max_retries + 1 if idempotent else 1
        delay = self.initial_backoff

        for attempt in range(1, attempts + 1):
            try:
                return await self._attempt(bound)
            except ToolError:
                raise
            except Exception as e:
                if attempt == attempts or classify_error(e).category != ErrorCategory.NETWORK:
                    raise
                logger.warning(
                    "Transient backend failure (attempt %d/%d), retrying in %.1fs: %s",
                    attempt, attempts, delay, e,
                )
                await asyncio.sleep(delay)
                delay = min(delay * self.backoff_factor, self.max_backoff)

        raise RuntimeError("unreachable")  # pragma: no cover
