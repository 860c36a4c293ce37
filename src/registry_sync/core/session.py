"""aiohttp session creation and request execution with 429 backoff."""

import asyncio
import logging
from typing import Any

import aiohttp

from ..exceptions import RegistryConnectionError
from .types import RegistryConfig

logger = logging.getLogger(__name__)

TOO_MANY_REQUESTS = 429


async def create_session(config: RegistryConfig | None = None) -> aiohttp.ClientSession:
    """Create a client session for registry traffic.

    Only connect and per-read timeouts are set; a total timeout would cut
    off large blob streams. Bodies are never transparently decompressed:
    blobs are relayed as the exact bytes their digest covers, whatever
    Content-Encoding a registry or storage backend advertises.
    """
    config = config or RegistryConfig()
    timeout = aiohttp.ClientTimeout(
        total=None, sock_connect=config.timeout, sock_read=config.timeout
    )
    return aiohttp.ClientSession(
        timeout=timeout,
        headers={"Accept-Encoding": "identity"},
        auto_decompress=False,
    )


async def send_request(
    session: aiohttp.ClientSession,
    method: str,
    url: str,
    *,
    retries: int = 3,
    backoff: float = 1.0,
    **kwargs: Any,
) -> aiohttp.ClientResponse:
    """Issue a request, retrying on HTTP 429 with linear backoff.

    The caller owns the returned response and must release or close it.
    Requests with a streaming body must pass ``retries=0`` since the body
    cannot be replayed.

    Raises:
        RegistryConnectionError: If the request cannot be sent at all
    """
    attempt = 0
    while True:
        try:
            resp = await session.request(method, url, **kwargs)
        except aiohttp.ClientError as e:
            raise RegistryConnectionError(f"{method} {url} failed: {e}") from e

        if resp.status != TOO_MANY_REQUESTS or attempt >= retries:
            return resp

        attempt += 1
        resp.close()
        delay = backoff * attempt
        logger.warning(
            "Rate limited on %s %s, retrying in %.1fs (%d/%d)",
            method,
            url,
            delay,
            attempt,
            retries,
        )
        await asyncio.sleep(delay)
