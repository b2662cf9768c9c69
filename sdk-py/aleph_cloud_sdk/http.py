"""
HTTP helpers shared by the managers (requests based)
"""

import logging
import time
from typing import Any, Callable, Dict, Optional, TypeVar

import requests

from .errors import InvalidResponse

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30

T = TypeVar("T")


def new_session() -> requests.Session:
    session = requests.Session()
    session.headers.update({"Content-Type": "application/json"})
    return session


def get_json(
    session: requests.Session,
    url: str,
    timeout: float = DEFAULT_TIMEOUT,
    params: Optional[Dict[str, Any]] = None,
) -> Any:
    """GET a URL and decode its JSON body, raising on HTTP errors."""
    response = session.get(url, params=params, timeout=timeout)
    response.raise_for_status()
    return response.json()


def post_json(
    session: requests.Session,
    url: str,
    payload: Any = None,
    headers: Optional[Dict[str, str]] = None,
    timeout: float = DEFAULT_TIMEOUT,
    data: Optional[str] = None,
) -> requests.Response:
    """POST a JSON payload (or a pre-serialized body) and return the raw response."""
    if data is not None:
        return session.post(url, data=data, headers=headers, timeout=timeout)
    return session.post(url, json=payload, headers=headers, timeout=timeout)


def with_retries(
    fn: Callable[[], T],
    retries: int,
    delay: float,
    label: str = "request",
) -> T:
    """
    Call fn, retrying on failure with a fixed delay.

    Args:
        fn: Zero-argument callable performing an idempotent request
        retries: Additional attempts after the first one
        delay: Seconds to sleep between attempts
        label: Name used in log lines

    Returns:
        The first successful result. The last error is raised when every
        attempt failed.
    """
    attempt = 0
    while True:
        try:
            return fn()
        except (requests.RequestException, InvalidResponse, ValueError, KeyError) as e:
            if attempt >= retries:
                raise
            attempt += 1
            logger.debug("%s failed (%s), retry %d/%d", label, e, attempt, retries)
            time.sleep(delay)
