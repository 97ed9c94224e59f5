import asyncio
import logging

import async_timeout
import pytest

from konverge.clients.errors import WatchingError
from konverge.reactor.watching import Bookmark, continuous_watch, infinite_watch


class SequencedTransport:
    """ A transport which lists nothing, and streams the predefined raw inputs. """

    def __init__(self, *streams, listing_errors=0):
        super().__init__()
        self.streams = list(streams)
        self.listing_errors = listing_errors
        self.listings = 0
        self.watches = []

    async def list_objs(self, resource, namespace):
        self.listings += 1
        if self.listing_errors:
            self.listing_errors -= 1
            raise ConnectionError("listing failed")
        return [{'metadata': {'name': 'listed'}}], '100'

    async def watch_objs(self, resource, namespace, since=None):
        self.watches.append(since)
        stream = self.streams.pop(0) if self.streams else []
        for raw_input in stream:
            if isinstance(raw_input, BaseException):
                raise raw_input
            yield raw_input
        if not self.streams:
            await asyncio.Event().wait()


async def collect(stream, count):
    items = []
    async with async_timeout.timeout(1):  # extra test safety
        async for item in stream:
            items.append(item)
            if len(items) >= count:
                break
    await stream.aclose()
    return items


async def test_listing_is_followed_by_the_bookmark(settings, resource):
    transport = SequencedTransport()
    stream = continuous_watch(transport=transport, settings=settings, resource=resource, namespace=None)
    items = await collect(stream, 2)
    assert items == [
        {'type': None, 'object': {'metadata': {'name': 'listed'}}},
        Bookmark.LISTED,
    ]


async def test_watching_continues_from_the_listed_version(settings, resource):
    transport = SequencedTransport([
        {'type': 'ADDED', 'object': {'metadata': {'name': 'a', 'resourceVersion': '101'}}},
        {'type': 'MODIFIED', 'object': {'metadata': {'name': 'a', 'resourceVersion': '102'}}},
    ])
    stream = continuous_watch(transport=transport, settings=settings, resource=resource, namespace=None)
    items = await collect(stream, 4)
    assert [item['type'] for item in items[2:]] == ['ADDED', 'MODIFIED']
    assert transport.watches == ['100']


async def test_reconnects_resume_from_the_last_seen_version(settings, resource):
    transport = SequencedTransport(
        [{'type': 'ADDED', 'object': {'metadata': {'name': 'a', 'resourceVersion': '101'}}},
         ConnectionError("disconnected")],
        [{'type': 'DELETED', 'object': {'metadata': {'name': 'a', 'resourceVersion': '105'}}}],
    )
    stream = continuous_watch(transport=transport, settings=settings, resource=resource, namespace=None)
    items = await collect(stream, 4)
    assert [item['type'] for item in items[2:]] == ['ADDED', 'DELETED']
    assert transport.watches == ['100', '101']
    assert transport.listings == 1


async def test_gone_versions_restart_the_listing(settings, resource):
    transport = SequencedTransport(
        [{'type': 'ERROR', 'object': {'code': 410}}],
    )
    stream = infinite_watch(transport=transport, settings=settings, resource=resource, namespace=None)
    items = await collect(stream, 4)
    assert items[1] is Bookmark.LISTED
    assert items[2] == {'type': None, 'object': {'metadata': {'name': 'listed'}}}
    assert items[3] is Bookmark.LISTED
    assert transport.listings == 2


async def test_other_errors_are_fatal(settings, resource):
    transport = SequencedTransport(
        [{'type': 'ERROR', 'object': {'code': 500, 'message': 'boo'}}],
    )
    stream = infinite_watch(transport=transport, settings=settings, resource=resource, namespace=None)
    with pytest.raises(WatchingError, match=r"Error in the watch-stream"):
        await collect(stream, 10)


async def test_unknown_events_are_ignored(settings, resource, assert_logs, caplog):
    caplog.set_level(logging.DEBUG)
    transport = SequencedTransport([
        {'type': 'BOOKMARK', 'object': {'metadata': {'resourceVersion': '101'}}},
        {'type': 'ADDED', 'object': {'metadata': {'name': 'a', 'resourceVersion': '102'}}},
    ])
    stream = continuous_watch(transport=transport, settings=settings, resource=resource, namespace=None)
    items = await collect(stream, 3)
    assert items[2]['type'] == 'ADDED'
    assert_logs([r"Ignoring an unsupported event type"])


async def test_listing_failures_are_retried(settings, resource, assert_logs, caplog):
    caplog.set_level(logging.DEBUG)
    transport = SequencedTransport(listing_errors=1)
    stream = infinite_watch(transport=transport, settings=settings, resource=resource, namespace=None)
    items = await collect(stream, 2)
    assert items[1] is Bookmark.LISTED
    assert transport.listings == 2
    assert_logs([r"Listing .* has failed, will retry"])


async def test_iterations_are_limited_in_tests(settings, resource):
    transport = SequencedTransport(
        [{'type': 'ERROR', 'object': {'code': 410}}],
        [{'type': 'ERROR', 'object': {'code': 410}}],
    )
    stream = infinite_watch(transport=transport, settings=settings, resource=resource,
                            namespace=None, _iterations=2)
    items = []
    async with async_timeout.timeout(1):  # extra test safety
        async for item in stream:
            items.append(item)
    assert items.count(Bookmark.LISTED) == 2
    assert transport.listings == 2


class InstantlyFailingTransport:
    """ A transport whose watch-streams fail before yielding or awaiting anything. """

    def __init__(self):
        super().__init__()
        self.watches = 0

    async def list_objs(self, resource, namespace):
        return [], '100'

    async def watch_objs(self, resource, namespace, since=None):
        self.watches += 1
        raise ConnectionError("refused")
        yield  # makes it an async generator


async def test_reconnects_are_paced_by_the_backoff(settings, resource):
    settings.watching.reconnect_backoff = 0.1
    transport = InstantlyFailingTransport()
    ticks = 0

    async def ticker():
        nonlocal ticks
        while True:
            ticks += 1
            await asyncio.sleep(0.01)

    async def consume():
        async for _ in continuous_watch(transport=transport, settings=settings,
                                        resource=resource, namespace=None):
            pass

    ticker_task = asyncio.create_task(ticker())
    watcher_task = asyncio.create_task(consume())
    await asyncio.sleep(0.35)
    watcher_task.cancel()
    ticker_task.cancel()
    await asyncio.wait([watcher_task, ticker_task])

    assert 2 <= transport.watches <= 5
    assert ticks >= 10
