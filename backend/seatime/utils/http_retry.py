"""Bounded HTTP retry for the position provider.

Retries only transient failures (429, 5xx, connect errors, timeouts). Client
errors (401, 403, 404, 422) indicate auth/config problems and are raised
immediately. The sum of all delays is capped so a single poll can never
outlast a scheduler tick.

Usage:
    from seatime.utils.http_retry import retry_request

    resp = retry_request(client.get, url, headers=headers, delays=[1, 2])
"""
from __future__ import annotations

import logging
import time
from typing import Any, Callable

import httpx

logger = logging.getLogger(__name__)

# Status codes safe to retry (transient server issues)
RETRYABLE_STATUS_CODES: frozenset[int] = frozenset({429, 500, 502, 503, 504})

# Exceptions that indicate transient network issues
_RETRYABLE_EXCEPTIONS = (httpx.TransportError,)

DEFAULT_DELAYS: list[float] = [1.0, 2.0]

# Hard ceiling on total sleep across all attempts (seconds)
MAX_TOTAL_DELAY: float = 30.0


def retry_request(
    request_fn: Callable[..., httpx.Response],
    *args: Any,
    delays: list[float] | None = None,
    max_total_delay: float = MAX_TOTAL_DELAY,
    **kwargs: Any,
) -> httpx.Response:
    """Execute an httpx request function with bounded retry on transient failures.

    Args:
        request_fn: Bound method like ``client.get``.
        *args: Positional args forwarded to request_fn (typically the URL).
        delays: Backoff delays in seconds, one per retry. Default [1, 2].
        max_total_delay: Ceiling on the summed sleep; once reached, the last
            response/exception is surfaced instead of sleeping again.
        **kwargs: Keyword args forwarded to request_fn.

    Returns:
        httpx.Response with status < 400.

    Raises:
        httpx.HTTPStatusError: Non-retryable status, or retryable status after
            retries are exhausted.
        httpx.TransportError: Network/timeout error after retries are exhausted.
    """
    if delays is None:
        delays = DEFAULT_DELAYS

    slept = 0.0
    for attempt in range(1 + len(delays)):
        last_attempt = attempt >= len(delays)
        try:
            resp = request_fn(*args, **kwargs)
        except _RETRYABLE_EXCEPTIONS as exc:
            delay = None if last_attempt else delays[attempt]
            if delay is None or slept + delay > max_total_delay:
                raise
            logger.warning(
                "%s for %s — retrying in %.1fs (attempt %d/%d)",
                type(exc).__name__, _url_for_log(args), delay, attempt + 1, len(delays),
            )
            time.sleep(delay)
            slept += delay
            continue

        if resp.status_code < 400:
            return resp
        if resp.status_code not in RETRYABLE_STATUS_CODES or last_attempt:
            resp.raise_for_status()

        delay = delays[attempt]
        if resp.status_code == 429:
            retry_after = resp.headers.get("Retry-After")
            if retry_after:
                try:
                    delay = max(delay, float(retry_after))
                except (ValueError, TypeError):
                    pass
        if slept + delay > max_total_delay:
            # Retry-After beyond our budget; the next tick tries again
            resp.raise_for_status()

        logger.warning(
            "HTTP %d from %s — retrying in %.1fs (attempt %d/%d)",
            resp.status_code, _url_for_log(args), delay, attempt + 1, len(delays),
        )
        time.sleep(delay)
        slept += delay

    raise RuntimeError("retry_request exhausted retries without result")


def _url_for_log(args: tuple) -> str:
    """Extract a loggable URL from request args."""
    if args and isinstance(args[0], (str, httpx.URL)):
        return str(args[0])[:120]
    return "<unknown>"
