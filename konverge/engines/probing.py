"""
The health endpoint of the manager for the external probes.

The manager is healthy when it is running and all its informers are synced:
the reconcilers can only be trusted with complete caches. The response body
is the same JSON in both cases, for the diagnostics of the unhealthy states.
"""
import asyncio
import logging
import urllib.parse
from typing import Any, Callable, Dict, Optional, Tuple

import aiohttp.web

logger = logging.getLogger(__name__)

DEFAULT_HOST = 'localhost'
DEFAULT_PORT = 80


def parse_endpoint(endpoint: str) -> Tuple[str, int, str]:
    """ Split the endpoint URL into the host, the port, and the path to serve. """
    parts = urllib.parse.urlsplit(endpoint)
    if parts.scheme != 'http':
        raise Exception(f"Unsupported scheme: {endpoint}")
    return parts.hostname or DEFAULT_HOST, parts.port or DEFAULT_PORT, parts.path or '/'


def get_health(cache: Any, *, running: bool) -> Tuple[int, Dict[str, Any]]:
    informers: Dict[str, bool] = {str(informer.resource): informer.synced for informer in cache.informers}
    synced = all(informers.values())
    data = {'running': running, 'synced': synced, 'informers': informers}
    return (200 if running and synced else 503), data


async def health_reporter(
        endpoint: str,
        *,
        cache: Any,
        running: Callable[[], bool],
        ready_flag: Optional[asyncio.Event] = None,  # for the tests only
) -> None:
    """
    Serve the health status over HTTP until cancelled.

    The cancellation happens when the manager stops. The server is cleaned up
    even then, so that the port is released for the next managers.
    """
    host, port, path = parse_endpoint(endpoint)

    async def handle(request: aiohttp.web.Request) -> aiohttp.web.Response:
        status, data = get_health(cache, running=running())
        return aiohttp.web.json_response(data, status=status)

    app = aiohttp.web.Application()
    app.router.add_get(path, handle)
    runner = aiohttp.web.AppRunner(app, handle_signals=False)
    await runner.setup()
    try:
        site = aiohttp.web.TCPSite(runner, host, port)
        await site.start()
        logger.debug(f"Serving the health status at http://{host}:{port}{path}")
        if ready_flag is not None:
            ready_flag.set()
        await asyncio.Event().wait()
    finally:
        await asyncio.shield(runner.cleanup())
