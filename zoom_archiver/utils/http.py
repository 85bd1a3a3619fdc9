"""Helpers turning ``requests`` responses into archiver errors."""

import logging
from typing import Any, Optional

import requests

from zoom_archiver.errors import UpstreamError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30


def _retry_after(response: requests.Response) -> Optional[float]:
    value = response.headers.get("Retry-After")
    if not value:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        return None


def check_response(response: requests.Response) -> requests.Response:
    """Raise ``UpstreamError`` for any non-2xx response.

    5xx and 429 are retryable; every other status is not.

    Args:
        response: Response to check.

    Returns:
        The response, unchanged, when it is a success.
    """
    status = response.status_code
    if 200 <= status < 300:
        return response

    code = None
    message = response.reason or f"HTTP {status}"
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        code = body.get("code")
        message = body.get("message") or body.get("reason") or message

    raise UpstreamError(
        message,
        status=status,
        retryable=status >= 500 or status == 429,
        code=code,
        retry_after=_retry_after(response) if status == 429 else None,
    )


def request_once(session: requests.Session, method: str, url: str, **kwargs: Any) -> requests.Response:
    """Send one request, mapping network failures to a retryable ``UpstreamError``."""
    kwargs.setdefault("timeout", DEFAULT_TIMEOUT)
    try:
        response = session.request(method, url, **kwargs)
    except (requests.ConnectionError, requests.Timeout) as e:
        raise UpstreamError(f"Network error calling {url}: {e}", status=None, retryable=True) from e
    return check_response(response)
