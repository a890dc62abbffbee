"""
Target reachability probe.

Usable as a run's setup hook: checks that the target answers before virtual
users start and forwards the outcome to every iteration as setup data. An
unreachable target is reported, not raised, so the run still proceeds.
"""

import logging
from datetime import UTC, datetime
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx

from loadbench.config import settings

logger = logging.getLogger(__name__)

USER_AGENT = "loadbench/0.1 (setup probe)"


async def probe_target(
    base_url: str,
    *,
    timeout_seconds: Optional[float] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> Dict[str, Any]:
    """
    Issue one GET against `base_url`.

    Args:
        base_url: Target address
        timeout_seconds: Request timeout (defaults to REQUEST_TIMEOUT_MS)
        client: Optional client to reuse (tests inject a mock transport)

    Returns:
        Dict with `available` (HTTP 200), `status` (None when the request
        failed), `checked_at` (ISO timestamp), `base_url` and, on failure,
        `error`.
    """
    if timeout_seconds is None:
        timeout_seconds = settings.REQUEST_TIMEOUT_MS / 1000.0

    result: Dict[str, Any] = {
        "available": False,
        "status": None,
        "checked_at": datetime.now(UTC).isoformat(),
        "base_url": base_url,
    }

    owns_client = client is None
    if client is None:
        client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_seconds),
            headers={"User-Agent": USER_AGENT},
            follow_redirects=True,
        )
    try:
        response = await client.get(base_url, timeout=timeout_seconds)
        result["status"] = response.status_code
        result["available"] = response.status_code == 200
        logger.info("Target probe %s: HTTP %d", base_url, response.status_code)
    except httpx.TimeoutException:
        result["error"] = "timeout"
        logger.warning("Target probe %s timed out after %.1fs", base_url, timeout_seconds)
    except httpx.HTTPError as e:
        result["error"] = type(e).__name__
        logger.warning("Target probe %s failed: %s", base_url, e)
    finally:
        if owns_client:
            await client.aclose()

    return result


def make_probe_setup(
    base_url: Optional[str] = None,
    *,
    timeout_seconds: Optional[float] = None,
) -> Callable[[], Awaitable[Dict[str, Any]]]:
    """
    Build a setup hook that probes `base_url` (defaults to BASE_URL).

    Raises:
        ValueError: If no base URL is given or configured
    """
    url = base_url or settings.BASE_URL
    if not url:
        raise ValueError("a base URL is required to probe the target")

    async def setup() -> Dict[str, Any]:
        return await probe_target(url, timeout_seconds=timeout_seconds)

    return setup
