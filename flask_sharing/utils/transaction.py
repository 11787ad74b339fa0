"""
Transaction helpers for the sharing store.

Only transient store failures (lost connections, lock timeouts, deadlocks)
are retried, a bounded number of times with exponential backoff and jitter.
Every mutation in the sharing core is guarded by its expected prior state,
so replaying it after a rollback cannot apply it twice.
"""

import logging
import random
import time
from dataclasses import dataclass
from functools import wraps
from typing import Callable, Optional

from sqlalchemy.exc import (
    DBAPIError,
    DisconnectionError,
    OperationalError,
    SQLAlchemyError,
    TimeoutError as PoolTimeoutError,
)

from ..const import (
    DEFAULT_STORE_RETRY_ATTEMPTS,
    DEFAULT_STORE_RETRY_DELAY,
    LOGMSG_ERR_STORE_GAVE_UP,
    LOGMSG_WAR_STORE_RETRY,
    MAX_STORE_RETRY_DELAY,
)
from ..exceptions import StoreUnavailable

log = logging.getLogger(__name__)

_retryable_messages = (
    "deadlock detected",
    "deadlock found",
    "lock wait timeout",
    "connection lost",
    "server has gone away",
    "connection reset",
    "database is locked",
    "could not serialize access",
)


@dataclass
class RetryPolicy:
    attempts: int = DEFAULT_STORE_RETRY_ATTEMPTS
    base_delay: float = DEFAULT_STORE_RETRY_DELAY
    max_delay: float = MAX_STORE_RETRY_DELAY

    @classmethod
    def from_config(cls, config) -> "RetryPolicy":
        return cls(
            attempts=max(1, int(config.get("SHARING_STORE_RETRY_ATTEMPTS", cls.attempts))),
            base_delay=float(config.get("SHARING_STORE_RETRY_DELAY", cls.base_delay)),
        )

    def delay(self, attempt: int) -> float:
        """Exponential backoff with jitter, capped"""
        delay = self.base_delay * (2 ** (attempt - 1))
        delay *= random.uniform(0.5, 1.5)
        return min(delay, self.max_delay)


def is_retryable_db_error(error: Exception) -> bool:
    if isinstance(error, (OperationalError, DisconnectionError, PoolTimeoutError)):
        return True
    if isinstance(error, DBAPIError) and error.connection_invalidated:
        return True
    error_str = str(error).lower()
    return any(message in error_str for message in _retryable_messages)


def retry_on_transient(func: Optional[Callable] = None):
    """
    Decorator for manager methods that talk to the store.

    The decorated object must expose ``repository`` (with ``rollback()``)
    and ``retry_policy``. Domain errors propagate untouched; transient store
    errors roll the session back and replay the call, then raise
    ``StoreUnavailable`` once the policy is exhausted.
    """

    def decorator(f):
        @wraps(f)
        def wrapper(self, *args, **kwargs):
            policy = self.retry_policy
            attempt = 1
            while True:
                try:
                    return f(self, *args, **kwargs)
                except SQLAlchemyError as e:
                    self.repository.rollback()
                    if not is_retryable_db_error(e):
                        raise
                    if attempt >= policy.attempts:
                        log.error(
                            LOGMSG_ERR_STORE_GAVE_UP.format(f.__name__, attempt, e)
                        )
                        raise StoreUnavailable() from e
                    delay = policy.delay(attempt)
                    log.warning(
                        LOGMSG_WAR_STORE_RETRY.format(
                            f.__name__, attempt, policy.attempts, delay, e
                        )
                    )
                    time.sleep(delay)
                    attempt += 1

        return wrapper

    if func is not None:
        return decorator(func)
    return decorator
