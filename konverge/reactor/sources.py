"""
Sources: where the events come from.

A source connects an event handler (with its predicates) to some delivery
mechanism: the cache's watch-stream of one kind, or an externally fed channel.
Starting a source only registers the handler; it returns as soon as
the registration succeeds or fails. The events are delivered later,
in the background, by the delivery task of the mechanism.
"""
import asyncio
import logging
from typing import Any, Callable, Hashable, List, Optional

from typing_extensions import Protocol, runtime_checkable

from konverge.reactor import caching, eventhandlers, predicates, queueing
from konverge.structs import configuration, events, primitives
from konverge.utilities import aiotasks

logger = logging.getLogger(__name__)


@runtime_checkable
class Source(Protocol):

    def start(
            self,
            handler: eventhandlers.EventHandler,
            queue: queueing.WorkQueue,
            *predicates: predicates.Predicate,
    ) -> None:
        ...


@runtime_checkable
class SyncingSource(Source, Protocol):
    """ A source that needs some time to get ready after it is started. """

    async def wait_for_sync(self, stop: Optional[primitives.Flag] = None) -> bool:
        ...


class Dispatcher:
    """
    The filtering & routing of the events of a source to a handler & a queue.
    """

    def __init__(
            self,
            handler: eventhandlers.EventHandler,
            queue: queueing.WorkQueue,
            *predicates: predicates.Predicate,
    ) -> None:
        super().__init__()
        self.handler = handler
        self.queue = queue
        self.predicates = predicates

    def __call__(self, event: events.Event) -> None:
        if predicates.check(event, *self.predicates):
            self.handler.handle(self.queue, event)


class KindSource:
    """
    The events of the objects of one kind, as seen by the shared cache.
    """

    def __init__(self, __type: Hashable) -> None:
        super().__init__()
        if __type is None:
            raise configuration.ConfigurationError("must specify KindSource.type")
        self.type = __type
        self._cache: Optional[caching.Cache] = None

    def __repr__(self) -> str:
        return f'{self.__class__.__name__}({self.type!r})'

    def inject_cache(self, cache: caching.Cache) -> None:
        self._cache = cache

    def start(
            self,
            handler: eventhandlers.EventHandler,
            queue: queueing.WorkQueue,
            *predicates: predicates.Predicate,
    ) -> None:
        if self._cache is None:
            raise configuration.ConfigurationError(
                "must inject a cache into KindSource before starting it")
        informer = self._cache.informer_for(self.type)
        informer.add_handler(Dispatcher(handler, queue, *predicates))

    async def wait_for_sync(self, stop: Optional[primitives.Flag] = None) -> bool:
        if self._cache is None:
            raise configuration.ConfigurationError(
                "must inject a cache into KindSource before waiting for it")
        return await self._cache.informer_for(self.type).wait_for_sync(stop)


class ChannelSource:
    """
    The generic events fed from outside of the store: webhooks, timers, etc.

    The channel is an asyncio queue of the objects (or of generic events).
    The source reads it in its own task until the injected stop-flag is raised.
    One channel can feed many handlers: every item is delivered to all of them.
    """

    def __init__(self, channel: "asyncio.Queue[Any]") -> None:
        super().__init__()
        if channel is None:
            raise configuration.ConfigurationError("must specify ChannelSource.channel")
        self.channel = channel
        self._stop: Optional[primitives.Flag] = None
        self._dispatchers: List[Dispatcher] = []
        self._task: Optional[aiotasks.Task] = None

    def __repr__(self) -> str:
        return f'{self.__class__.__name__}({self.channel!r})'

    def inject_stop(self, stop: Optional[primitives.Flag]) -> None:
        self._stop = stop

    def start(
            self,
            handler: eventhandlers.EventHandler,
            queue: queueing.WorkQueue,
            *predicates: predicates.Predicate,
    ) -> None:
        self._dispatchers.append(Dispatcher(handler, queue, *predicates))
        if self._task is None:
            self._task = aiotasks.create_guarded_task(
                name="channel source", logger=logger, finishable=True, cancellable=True,
                coro=self._deliver())

    async def _deliver(self) -> None:
        stopper = asyncio.create_task(primitives.wait_flag(self._stop))
        try:
            while True:
                getter = asyncio.create_task(self.channel.get())
                await asyncio.wait([getter, stopper], return_when=asyncio.FIRST_COMPLETED)
                if not getter.done():
                    getter.cancel()
                    break

                item = getter.result()
                event = item if isinstance(item, events.GenericEvent) else events.GenericEvent(object=item)
                for dispatcher in list(self._dispatchers):
                    try:
                        dispatcher(event)
                    except Exception as e:
                        logger.exception(f"A channel event handler has failed: {e!r}")
        finally:
            stopper.cancel()


class SourceFunc:
    """
    A source made of a plain function with the same signature as `Source.start`.
    """

    def __init__(self, fn: Callable[..., None]) -> None:
        super().__init__()
        self.fn = fn

    def start(
            self,
            handler: eventhandlers.EventHandler,
            queue: queueing.WorkQueue,
            *predicates: predicates.Predicate,
    ) -> None:
        self.fn(handler, queue, *predicates)
