import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from order_tracking.domain.exceptions import StorageError

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def with_storage_retries(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    retry_delay: float = 0.2,
) -> T:
    """
    Run a whole unit-of-work operation, retrying transient StorageError.

    Backoff doubles after every failed attempt. Domain errors (validation,
    conflict, not found) pass through untouched.
    """
    attempts = max(1, max_attempts)
    last_error: StorageError | None = None
    for attempt in range(attempts):
        try:
            return await operation()
        except StorageError as e:
            last_error = e
            logger.warning(f"Storage error (attempt {attempt + 1}/{attempts}): {e}")

        if attempt < attempts - 1:
            await asyncio.sleep(retry_delay * (2 ** attempt))

    logger.error(f"Storage operation failed after {attempts} attempts")
    raise last_error
