from __future__ import annotations

import functools
import logging
import random
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar('T')


class ConfigError(Exception):
    """Missing or invalid external identifier, credential or settings value."""

    status_code = 400

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class MissingTokenError(ConfigError):
    status_code = 401


class UpstreamError(RuntimeError):
    """Non-2xx response (or transport failure) from the Graph API."""

    def __init__(self, message: str, status: Optional[int] = None, body: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.status = status
        self.body = body

    @property
    def transient(self) -> bool:
        # status None means the request never got a response (timeout, reset)
        return self.status is None or self.status == 429 or 500 <= self.status < 600


class PersistenceError(RuntimeError):
    pass


class ValidationError(PersistenceError):
    def __init__(self, message: str, field: Optional[str] = None, value: Any = None):
        self.message = message
        self.field = field
        self.value = value
        super().__init__(message)


@dataclass
class RetryConfig:
    max_retries: int = 2
    initial_delay: float = 0.5
    max_delay: float = 8.0
    exponential_base: float = 2.0
    jitter: bool = True
    retryable_exceptions: tuple = (Exception,)
    should_retry: Optional[Callable[[BaseException], bool]] = None


class RetryHandler:
    def __init__(self, config: Optional[RetryConfig] = None, sleep: Callable[[float], None] = time.sleep) -> None:
        self.config = config or RetryConfig()
        self._sleep = sleep

    def execute(self, func: Callable[..., T], *args, **kwargs) -> T:
        last_exception: Optional[BaseException] = None
        for attempt in range(self.config.max_retries + 1):
            try:
                return func(*args, **kwargs)
            except self.config.retryable_exceptions as e:
                if self.config.should_retry is not None and not self.config.should_retry(e):
                    raise
                last_exception = e
                if attempt < self.config.max_retries:
                    delay = self._calculate_delay(attempt)
                    logger.warning(
                        "Retry attempt %d/%d after %.2fs: %s",
                        attempt + 1, self.config.max_retries, delay, e,
                    )
                    self._sleep(delay)
                else:
                    logger.error("Max retries (%d) exceeded: %s", self.config.max_retries, e)
        raise last_exception or Exception("Retry failed")

    def _calculate_delay(self, attempt: int) -> float:
        delay = self.config.initial_delay * (self.config.exponential_base ** attempt)
        delay = min(delay, self.config.max_delay)
        if self.config.jitter:
            delay = delay * (0.5 + random.random() * 0.5)
        return delay


def retry_with_backoff(
    max_retries: int = 2,
    initial_delay: float = 0.5,
    max_delay: float = 8.0,
    retryable_exceptions: tuple = (Exception,),
    should_retry: Optional[Callable[[BaseException], bool]] = None,
):
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(func)
        def wrapper(*args, **kwargs) -> T:
            config = RetryConfig(
                max_retries=max_retries,
                initial_delay=initial_delay,
                max_delay=max_delay,
                retryable_exceptions=retryable_exceptions,
                should_retry=should_retry,
            )
            return RetryHandler(config).execute(func, *args, **kwargs)
        return wrapper
    return decorator


def is_transient_upstream(exc: BaseException) -> bool:
    return isinstance(exc, UpstreamError) and exc.transient
