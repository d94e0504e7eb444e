"""Health checks run before any load is generated."""

from __future__ import annotations

import logging
import time

import requests

logger = logging.getLogger(__name__)


class ServiceUnavailableError(RuntimeError):
    """A target service did not report healthy in time."""


def is_healthy(base_url: str, timeout: float = 2) -> bool:
    """Return True when ``GET {base_url}/health`` answers 200."""
    try:
        response = requests.get(f"{base_url.rstrip('/')}/health", timeout=timeout)
    except requests.RequestException:
        return False
    return response.status_code == 200


def wait_for_services(*base_urls: str, timeout: float = 30, interval: float = 1) -> None:
    """
    Poll every service's health endpoint until all are ready.

    Raises:
        ServiceUnavailableError: If any service is still unhealthy when
            *timeout* seconds have passed.
    """
    pending = list(dict.fromkeys(base_urls))
    deadline = time.monotonic() + timeout
    while True:
        pending = [url for url in pending if not is_healthy(url)]
        if not pending:
            logger.info("All target services healthy")
            return
        if time.monotonic() >= deadline:
            raise ServiceUnavailableError(
                f"Services not healthy after {timeout:g}s: {', '.join(pending)}"
            )
        time.sleep(interval)
