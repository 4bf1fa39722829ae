"""
Email transport contract.

A transport owns its own network timeout; callers only add a hard upper
bound on top of it through ``guarded_send``.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Protocol

import httpx

from checkin_notifier.features.email_delivery.domain import TransportResult
from checkin_notifier.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

SendFn = Callable[[], Awaitable[TransportResult]]


class EmailTransport(Protocol):
    provider: str

    async def send(
        self, to: str, subject: str, html: str, text: str | None = None
    ) -> TransportResult: ...


async def guarded_send(send_fn: SendFn, timeout: float | None = None) -> TransportResult:
    """
    Invoke a send callable and always come back with a TransportResult.

    A hang past ``timeout`` or a raised exception becomes a failed result;
    timeouts are marked retryable.
    """
    try:
        if timeout:
            result = await asyncio.wait_for(send_fn(), timeout=timeout)
        else:
            result = await send_fn()
    except (TimeoutError, httpx.TimeoutException) as e:
        logger.warning("Email transport timed out", timeout=timeout, error=str(e))
        return TransportResult.failed(f"Transport timeout after {timeout}s", retryable=True)
    except Exception as e:
        logger.warning(
            "Email transport raised", error=str(e), error_type=type(e).__name__
        )
        return TransportResult.failed(f"{type(e).__name__}: {e}")

    if not isinstance(result, TransportResult):
        return TransportResult.failed(f"Transport returned unexpected value: {result!r}")
    return result
