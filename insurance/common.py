"""Shared HTTP helper for oracle feeds."""

from __future__ import annotations

from typing import Any, Mapping

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

DEFAULT_TIMEOUT_SECONDS = 30.0
_DEFAULT_WAIT = wait_exponential(min=1, max=16)
_DEFAULT_STOP = stop_after_attempt(5)
_RETRYABLE = retry_if_exception_type((httpx.TransportError, httpx.HTTPStatusError))


Headers = Mapping[str, str] | None
Params = Mapping[str, Any] | None


@retry(wait=_DEFAULT_WAIT, stop=_DEFAULT_STOP, retry=_RETRYABLE, reraise=True)
async def fetch_json(
    url: str,
    *,
    headers: Headers = None,
    params: Params = None,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
) -> Any:
    """GET ``url`` and return the decoded JSON payload.

    Transport failures and error statuses are retried with exponential
    backoff; the final failure is re-raised to the caller.
    """

    async with httpx.AsyncClient(timeout=timeout) as client:
        response = await client.get(url, headers=headers, params=params)

    response.raise_for_status()
    return response.json()


__all__ = ["fetch_json", "DEFAULT_TIMEOUT_SECONDS"]
