"""
Timeout and error wrapping for calls that reach the backing store.

Every remote-bound awaitable goes through remote_call so that a slow or failed
store surfaces as RemoteError. Cancellation of the awaiting task is never
swallowed: asyncio.CancelledError is not an Exception subclass and passes
through untouched.
"""

import asyncio
import logging
from typing import Any, Awaitable, Optional

from keepsake.core.errors import KeepsakeError, RemoteError

logger = logging.getLogger(__name__)


async def remote_call(
    awaitable: Awaitable[Any],
    operation: str,
    timeout: Optional[float] = None,
    step: Optional[int] = None,
) -> Any:
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except KeepsakeError:
        raise
    except asyncio.TimeoutError as e:
        logger.error(f"Remote call {operation} timed out after {timeout}s (step={step})")
        raise RemoteError(f"{operation} timed out after {timeout}s", operation, step) from e
    except Exception as e:
        logger.error(f"Remote call {operation} failed (step={step}): {e}")
        raise RemoteError(f"{operation} failed: {e}", operation, step) from e


def effective_timeout(timeout: Optional[float], default: Optional[float]) -> Optional[float]:
    """Per-call timeout, falling back to default only when none was given (0 is a real value)."""
    return default if timeout is None else timeout
