"""
Watching and streaming the watch-events of one resource.

The store's watch transport yields an initial listing, then an unbounded
stream of changes since the listing's version. The streams are disconnected
from time to time: by timeouts, by network issues, by the store's restarts.
Then, the watch is resumed from the last seen version. If the version is
too old (the store has forgotten it: "410 Gone"), the listing is repeated.

The listing is simulated as a pseudo-stream of events with type ``None``,
followed by a `Bookmark.LISTED` marker -- even if nothing was listed.
The consumer (the cache) uses it to reconcile its state with the listing,
and to declare the resource as synced.
"""
import asyncio
import enum
import logging
from typing import AsyncIterator, Optional, Union, cast

from konverge.clients import api, errors
from konverge.structs import bodies, configuration, references

logger = logging.getLogger(__name__)

HTTP_GONE_CODE = 410
KNOWN_EVENT_TYPES = frozenset({'ADDED', 'MODIFIED', 'DELETED'})


class Bookmark(enum.Enum):
    """ The markers injected into the stream of the raw events. """
    LISTED = enum.auto()  # all the listed objects are yielded, the changes follow


WatchItem = Union[Bookmark, bodies.RawEvent]


async def infinite_watch(
        *,
        transport: api.WatchTransport,
        settings: configuration.ManagerSettings,
        resource: references.Resource,
        namespace: references.Namespace,
        _iterations: Optional[int] = None,  # for the tests only
) -> AsyncIterator[WatchItem]:
    """
    List & watch the resource over and over, as one endless stream.

    Every round starts with a new listing. A round ends when the version
    of the listing expires, or when the listing itself fails. The rounds
    are paced by the reconnect backoff. Only the fatal errors escape.
    """
    scope = _describe(namespace)
    logger.debug(f"Starting the watch-stream for {resource} {scope}.")
    try:
        rounds = 0
        while _iterations is None or rounds < _iterations:
            rounds += 1
            async for item in continuous_watch(transport=transport, settings=settings,
                                               resource=resource, namespace=namespace):
                yield item
            await asyncio.sleep(settings.watching.reconnect_backoff)
    finally:
        logger.debug(f"Stopping the watch-stream for {resource} {scope}.")


async def continuous_watch(
        *,
        transport: api.WatchTransport,
        settings: configuration.ManagerSettings,
        resource: references.Resource,
        namespace: references.Namespace,
) -> AsyncIterator[WatchItem]:
    """
    One round: the listing, then the changes for as long as the version is valid.
    """
    try:
        objs, version = await transport.list_objs(resource, namespace)
    except (ConnectionError, asyncio.TimeoutError) as e:
        logger.warning(f"Listing {resource} has failed, will retry: {e!r}")
        return

    for obj in objs:
        yield {'type': None, 'object': obj}
    yield Bookmark.LISTED

    # The transport's streams end on their own (server-side timeouts, disconnects).
    # Each new stream continues from the latest version seen in the previous ones,
    # after the same pause as between the rounds, even if the stream fails instantly.
    while True:
        try:
            async for raw_input in transport.watch_objs(resource, namespace, version):
                event_type = raw_input['type']
                if event_type == 'ERROR':
                    raw_error = cast(bodies.RawError, raw_input['object'])
                    if raw_error.get('code') == HTTP_GONE_CODE:
                        logger.debug(f"Restarting the watch-stream for {resource} {_describe(namespace)}.")
                        return
                    raise errors.WatchingError(f"Error in the watch-stream: {raw_error}")

                if event_type not in KNOWN_EVENT_TYPES:
                    logger.warning(f"Ignoring an unsupported event type: {raw_input!r}")
                    continue

                raw_event = cast(bodies.RawEvent, raw_input)
                version = raw_event['object'].get('metadata', {}).get('resourceVersion', version)
                yield raw_event

        except (ConnectionError, asyncio.TimeoutError) as e:
            logger.debug(f"The watch-stream for {resource} is disconnected: {e!r}")

        await asyncio.sleep(settings.watching.reconnect_backoff)


def _describe(namespace: references.Namespace) -> str:
    return f'in {namespace!r}' if namespace is not None else 'cluster-wide'
