"""
Retry decorator for outbound adapter calls.
"""

import asyncio
import functools
import random
from dataclasses import dataclass
from typing import Any, Optional, Callable, Awaitable, Tuple, Type

from shared.logging import get_logger


@dataclass(frozen=True)
class RetryConfig:
    """Backoff policy for a retried call."""
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 60.0
    jitter: bool = True
    backoff_strategy: str = "exponential"


# Store and generator adapters retry transport failures quickly; the circuit
# breaker takes over once a dependency keeps failing.
ADAPTER_RETRY = RetryConfig(max_attempts=3, base_delay=0.2, max_delay=2.0)


class RetryError(Exception):
    """Exception raised when all retry attempts are exhausted."""
    def __init__(self, message: str, last_exception: Exception, attempts: int):
        super().__init__(message)
        self.last_exception = last_exception
        self.attempts = attempts


def retry_on_exception(exceptions: Tuple[Type[BaseException], ...] = (Exception,),
                       config: Optional[RetryConfig] = None,
                       sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep) -> Callable:
    """Retry an async function on the given exceptions, raising ``RetryError`` when attempts run out."""
    config = config or RetryConfig()
    if config.max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    def decorator(func: Callable[..., Awaitable[Any]]) -> Callable[..., Awaitable[Any]]:
        name = getattr(func, "__name__", "call")
        logger = get_logger(f"facts.retry.{name}")

        @functools.wraps(func)
        async def wrapper(*args, **kwargs) -> Any:
            attempt = 1
            while True:
                try:
                    result = await func(*args, **kwargs)
                except exceptions as e:
                    if attempt >= config.max_attempts:
                        logger.error(
                            "All retry attempts exhausted",
                            attempts=attempt,
                            function=name,
                            error=str(e)
                        )
                        raise RetryError(
                            f"{name} failed after {attempt} attempts",
                            last_exception=e,
                            attempts=attempt
                        ) from e

                    delay = backoff_delay(attempt, config)
                    logger.warning("Retrying after failure", attempt=attempt, delay=round(delay, 3), function=name, error=str(e))
                    await sleep(delay)
                    attempt += 1
                    continue

                if attempt > 1:
                    logger.info("Retry succeeded", attempt=attempt, function=name)
                return result

        return wrapper

    return decorator


def backoff_delay(attempt: int, config: RetryConfig) -> float:
    """Delay before the attempt following ``attempt``."""
    if config.backoff_strategy == "exponential":
        delay = config.base_delay * (2 ** (attempt - 1))
    elif config.backoff_strategy == "linear":
        delay = config.base_delay * attempt
    else:
        delay = config.base_delay

    delay = min(delay, config.max_delay)

    if config.jitter:
        delay += random.uniform(-0.1 * delay, 0.1 * delay)

    return max(0.0, delay)
