"""
HTTP helpers for provider clients.

Provider clients build their primary/fallback callables on top of
fetch_json, which turns HTTP failures into typed provider errors the
cache layer can account for.
"""
import logging
from typing import Any, Dict, Optional

import requests
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
)

from app.cache.errors import (
    FailureKind,
    FatalProviderError,
    RateLimitedError,
    TransientProviderError,
    kind_for_status,
)
from config.settings import settings

logger = logging.getLogger("upstream")


def cache_key(namespace: str, **params: Any) -> str:
    """
    Build a cache key from a namespace and the request's parameters.

    None values are left out and parameters are sorted, so the same
    logical request always maps to the same key.
    """
    parts = [f"{k}={params[k]}" for k in sorted(params) if params[k] is not None]
    if not parts:
        return namespace
    return f"{namespace}:" + ":".join(parts)


@retry(
    stop=stop_after_attempt(settings.upstream_max_attempts),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type((requests.ConnectionError, requests.Timeout)),
    reraise=True,
)
def _get(url: str, params: Optional[Dict[str, Any]], headers: Optional[Dict[str, str]], timeout: float):
    return requests.get(url, params=params, headers=headers, timeout=timeout)


def fetch_json(
    url: str,
    params: Optional[Dict[str, Any]] = None,
    headers: Optional[Dict[str, str]] = None,
    timeout: Optional[float] = None,
    provider: Optional[str] = None,
) -> Any:
    """
    GET a JSON document from a provider.

    Connection errors and timeouts are retried with exponential backoff.

    Raises:
        RateLimitedError: HTTP 429
        TransientProviderError: 5xx, exhausted retries, or invalid JSON
        FatalProviderError: Other 4xx responses
    """
    timeout = settings.upstream_timeout if timeout is None else timeout
    try:
        response = _get(url, params, headers, timeout)
    except (requests.ConnectionError, requests.Timeout) as e:
        raise TransientProviderError(f"Request to {url} failed: {e}", provider) from e

    if response.status_code >= 400:
        message = f"HTTP {response.status_code} from {url}"
        kind = kind_for_status(response.status_code)
        if kind is FailureKind.RATE_LIMITED:
            retry_after = response.headers.get("Retry-After")
            if retry_after:
                message += f" (retry after {retry_after}s)"
            raise RateLimitedError(message, provider)
        if kind is FailureKind.TRANSIENT:
            raise TransientProviderError(message, provider)
        raise FatalProviderError(message, provider)

    try:
        return response.json()
    except ValueError as e:
        logger.warning(f"Invalid JSON from {url}: {e}")
        raise TransientProviderError(f"Invalid JSON from {url}", provider) from e
