"""Remote call policy shared by the agent use cases.

Every provider call made by a use case goes through RemoteCallPolicy: a
per-call deadline, bounded retry with exponential backoff for transient
failures, and a circuit breaker shared by all calls.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from ...core.exceptions import RemoteTimeoutError
from ...core.resilience import CircuitBreaker, retry_async, with_timeout

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RemotePolicyConfig:
    """Tuning for provider calls.

    Attributes:
        timeout: Deadline for a single attempt, in seconds
        max_attempts: Attempts per call, including the first one
        initial_backoff: Delay before the first retry, in seconds
        max_backoff: Upper bound for a single retry delay
    """

    timeout: float = 30.0
    max_attempts: int = 3
    initial_backoff: float = 1.0
    max_backoff: float = 20.0


class RemoteCallPolicy:
    """Apply deadline, retry and circuit breaking to provider calls.

    Example:
        policy = RemoteCallPolicy(RemotePolicyConfig(timeout=10))
        store_id = await policy.call(
            "create_knowledge_store", provider.create_knowledge_store, "KB"
        )
    """

    def __init__(
        self,
        config: Optional[RemotePolicyConfig] = None,
        circuit: Optional[CircuitBreaker] = None,
    ):
        self.config = config or RemotePolicyConfig()
        self.circuit = circuit or CircuitBreaker(name="assistant-provider")

    async def call(
        self,
        operation: str,
        func: Callable[..., Awaitable[T]],
        *args,
        retry: bool = True,
        **kwargs,
    ) -> T:
        """Run one provider operation under the policy.

        Args:
            operation: Operation name used in errors and logs
            func: Provider coroutine function
            retry: Set False for calls that must not be repeated
        """
        timeout = self.config.timeout

        async def attempt() -> T:
            try:
                return await self.circuit.call(
                    with_timeout, func, timeout, *args, **kwargs
                )
            except asyncio.TimeoutError as e:
                raise RemoteTimeoutError(
                    f"{operation} exceeded {timeout}s",
                    operation=operation,
                    timeout_seconds=timeout,
                    cause=e,
                )

        return await retry_async(
            attempt,
            max_attempts=self.config.max_attempts if retry else 1,
            initial_delay=self.config.initial_backoff,
            max_delay=self.config.max_backoff,
        )
