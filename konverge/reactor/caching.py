"""
The watch-backed in-memory mirror of the store's objects.

An informer is one list+watch stream of one resource, plus the latest known
states of its objects, plus the handlers to notify of the changes. A cache
is a collection of informers, one per watched kind, shared by all controllers
of a manager: no matter how many controllers watch the same kind, there is
only one watch-stream and one copy of the objects.

The informers convert the raw watch-events into the high-level events:
the old state of an updated object comes from the cache, not from the store.
On re-listing (after the store has forgotten the stream's version), the new
listing is compared to the cached state, and the differences are delivered
as if they were seen in the stream. The deletions that happened while
disconnected are only detected this way, so their final states are unknown.

All the objects' mutations and all the handlers' calls happen in the informer's
own delivery task, one event at a time, so the per-object order is preserved.
The handlers are synchronous and should be fast: a slow handler slows down
the delivery of all events of this kind (but not of other kinds).

The reads never go to the network. Before the initial listing is complete,
the reads fail: an empty or partial cache is indistinguishable from
an absent object, which would mislead the reconcilers.
"""
import asyncio
import logging
from typing import Callable, Collection, Dict, Hashable, Iterable, List, \
                   Mapping, Optional, Set, Tuple

from konverge.clients import api, errors
from konverge.reactor import watching
from konverge.structs import bodies, configuration, events, \
                             primitives, references, schemes
from konverge.utilities import aiotasks

EventCallback = Callable[[events.Event], None]
FieldExtractor = Callable[[bodies.Body], Iterable[str]]
FieldSelector = Tuple[str, str]


class CacheNotSyncedError(Exception):
    """ Raised when reading a kind whose initial listing is not complete yet. """


class Informer:

    def __init__(
            self,
            *,
            transport: api.WatchTransport,
            resource: references.Resource,
            settings: configuration.ManagerSettings,
            namespace: references.Namespace = None,
            logger: Optional[aiotasks.Logger] = None,
    ) -> None:
        super().__init__()
        self.transport = transport
        self.resource = resource
        self.settings = settings
        self.namespace = namespace
        self.logger = logger if logger is not None else logging.getLogger(__name__)
        self._objects: Dict[references.ObjectKey, bodies.Body] = {}
        self._callbacks: List[EventCallback] = []
        self._extractors: Dict[str, FieldExtractor] = {}
        self._indexes: Dict[str, Dict[str, Set[references.ObjectKey]]] = {}
        self._synced = asyncio.Event()

    def __repr__(self) -> str:
        return f'<{self.__class__.__name__} for {self.resource}: {len(self._objects)} objects>'

    @property
    def synced(self) -> bool:
        return self._synced.is_set()

    def add_handler(self, callback: EventCallback) -> None:
        """
        Subscribe to the events of this kind, starting with the existing objects.

        The objects already known are delivered as synthetic creation events
        before the live changes. There is no suspension point in between,
        so no change can sneak in: nothing is missed, nothing is duplicated.
        """
        for body in list(self._objects.values()):
            self._call(callback, events.CreateEvent(object=body))
        self._callbacks.append(callback)

    def index_field(self, name: str, extractor: FieldExtractor) -> None:
        if name in self._extractors:
            raise configuration.ConfigurationError(
                f"The field index {name!r} is already registered for {self.resource}.")
        self._extractors[name] = extractor
        self._indexes[name] = {}
        for key, body in self._objects.items():
            self._index(name, key, body)

    async def wait_for_sync(self, stop: Optional[primitives.Flag] = None) -> bool:
        """
        Wait until the initial listing is delivered, or until stopped.

        Returns ``True`` if synced, ``False`` if stopped before that.
        """
        if self._synced.is_set():
            return True
        synced_waiter = asyncio.create_task(self._synced.wait())
        stop_waiter = asyncio.create_task(primitives.wait_flag(stop))
        try:
            await asyncio.wait([synced_waiter, stop_waiter], return_when=asyncio.FIRST_COMPLETED)
        finally:
            synced_waiter.cancel()
            stop_waiter.cancel()
            await asyncio.wait([synced_waiter, stop_waiter])
        return self._synced.is_set()

    def get(self, key: references.ObjectKey) -> bodies.Body:
        self._ensure_synced()
        try:
            return self._objects[key]
        except KeyError:
            raise errors.NotFoundError(f"{self.resource.kind or self.resource} {key} is not found.",
                                       code=404) from None

    def list(
            self,
            namespace: references.Namespace = None,
            labels: Optional[bodies.Labels] = None,
            field: Optional[FieldSelector] = None,
    ) -> List[bodies.Body]:
        self._ensure_synced()
        if field is not None:
            name, value = field
            if name not in self._indexes:
                raise configuration.ConfigurationError(
                    f"The field index {name!r} is not registered for {self.resource}.")
            keys: Collection[references.ObjectKey] = self._indexes[name].get(value, set())
        else:
            keys = list(self._objects)
        return [
            self._objects[key] for key in keys
            if key in self._objects
            and (namespace is None or key.namespace == namespace)
            and bodies.match_labels(self._objects[key], labels)
        ]

    async def run(self, stop: Optional[primitives.Flag] = None) -> None:
        """
        Watch the resource and deliver the changes until stopped.
        """
        tasks: List[aiotasks.Task] = [
            aiotasks.create_guarded_task(
                name=f"watcher of {self.resource}", logger=self.logger,
                coro=self._watch()),
        ]
        if self.settings.watching.resync_period is not None:
            tasks.append(aiotasks.create_guarded_task(
                name=f"resyncer of {self.resource}", logger=self.logger,
                coro=self._resync(self.settings.watching.resync_period)))
        stopper = asyncio.create_task(primitives.wait_flag(stop))
        try:
            done, _ = await aiotasks.wait([stopper] + tasks, return_when=asyncio.FIRST_COMPLETED)
        finally:
            await aiotasks.stop([stopper] + tasks, title=f"informer of {self.resource}",
                                logger=self.logger, quiet=True, cancelled=True)
        await aiotasks.reraise(done)

    async def _watch(self) -> None:
        listing: Dict[references.ObjectKey, bodies.Body] = {}
        async for raw_event in watching.infinite_watch(
            transport=self.transport,
            settings=self.settings,
            resource=self.resource,
            namespace=self.namespace,
        ):
            if raw_event is watching.Bookmark.LISTED:
                self._replace(listing)
                listing = {}
                if not self._synced.is_set():
                    self.logger.debug(f"The cache of {self.resource} is synced: {len(self._objects)} objects.")
                    self._synced.set()
            elif isinstance(raw_event, dict) and raw_event['type'] is None:
                body = raw_event['object']
                listing[bodies.get_key(body)] = body
            elif isinstance(raw_event, dict):
                self._apply(raw_event)

    async def _resync(self, period: float) -> None:
        while True:
            await asyncio.sleep(period)
            if self._synced.is_set():
                for body in list(self._objects.values()):
                    self._deliver(events.UpdateEvent(old=body, new=body))

    def _replace(self, listing: Mapping[references.ObjectKey, bodies.Body]) -> None:
        for key in [key for key in self._objects if key not in listing]:
            old = self._forget(key)
            self._deliver(events.DeleteEvent(object=old, final_state_unknown=True))
        for key, body in listing.items():
            old = self._objects.get(key)
            self._store(key, body)
            if old is None:
                self._deliver(events.CreateEvent(object=body))
            elif _changed(old, body):
                self._deliver(events.UpdateEvent(old=old, new=body))

    def _apply(self, raw_event: bodies.RawEvent) -> None:
        body = raw_event['object']
        key = bodies.get_key(body)
        if raw_event['type'] == 'DELETED':
            if key in self._objects:
                self._forget(key)
            self._deliver(events.DeleteEvent(object=body))
        else:
            old = self._objects.get(key)
            self._store(key, body)
            if old is None:
                self._deliver(events.CreateEvent(object=body))
            else:
                self._deliver(events.UpdateEvent(old=old, new=body))

    def _store(self, key: references.ObjectKey, body: bodies.Body) -> None:
        self._unindex(key)
        self._objects[key] = body
        for name in self._extractors:
            self._index(name, key, body)

    def _forget(self, key: references.ObjectKey) -> bodies.Body:
        self._unindex(key)
        return self._objects.pop(key)

    def _index(self, name: str, key: references.ObjectKey, body: bodies.Body) -> None:
        for value in self._extractors[name](body):
            self._indexes[name].setdefault(value, set()).add(key)

    def _unindex(self, key: references.ObjectKey) -> None:
        for index in self._indexes.values():
            for value in [value for value, keys in index.items() if key in keys]:
                index[value].discard(key)
                if not index[value]:
                    del index[value]

    def _deliver(self, event: events.Event) -> None:
        for callback in list(self._callbacks):
            self._call(callback, event)

    def _call(self, callback: EventCallback, event: events.Event) -> None:
        try:
            callback(event)
        except Exception as e:
            self.logger.exception(f"An event handler of {self.resource} has failed: {e!r}")

    def _ensure_synced(self) -> None:
        if not self._synced.is_set():
            raise CacheNotSyncedError(f"The cache of {self.resource} is not synced yet.")


class Cache:
    """
    The shared informers of all kinds watched by one manager.

    The informers are created on demand, when a kind is first requested.
    If the cache is already running, a new informer starts immediately;
    otherwise, all of them start when the cache starts.
    """

    def __init__(
            self,
            transport: api.WatchTransport,
            *,
            scheme: schemes.Scheme,
            mapper: api.Mapper,
            settings: Optional[configuration.ManagerSettings] = None,
            namespace: references.Namespace = None,
            logger: Optional[aiotasks.Logger] = None,
    ) -> None:
        super().__init__()
        self.transport = transport
        self.scheme = scheme
        self.mapper = mapper
        self.settings = settings if settings is not None else configuration.ManagerSettings()
        self.namespace = namespace
        self.logger = logger if logger is not None else logging.getLogger(__name__)
        self._informers: Dict[references.Kind, Informer] = {}
        self._tasks: List[aiotasks.Task] = []
        self._running = False
        self._stop: Optional[primitives.Flag] = None
        self._failed = asyncio.Event()

    @property
    def informers(self) -> Collection[Informer]:
        return list(self._informers.values())

    @property
    def synced(self) -> bool:
        return all(informer.synced for informer in self._informers.values())

    def informer_for(self, __type: Hashable) -> Informer:
        kind = self.scheme.kind_for(__type)
        try:
            return self._informers[kind]
        except KeyError:
            pass

        resource = self.mapper.resource_for(kind)
        informer = Informer(
            transport=self.transport,
            resource=resource,
            settings=self.settings,
            namespace=self.namespace if resource.namespaced else None,
            logger=self.logger,
        )
        self._informers[kind] = informer
        if self._running:
            self._spawn(informer)
        return informer

    def index_field(self, __type: Hashable, name: str, extractor: FieldExtractor) -> None:
        self.informer_for(__type).index_field(name, extractor)

    async def start(self, stop: Optional[primitives.Flag] = None) -> None:
        """
        Run all the informers, the existing and the future ones, until stopped.

        A fatal failure of any informer (not a disconnect, which is retried)
        stops the whole cache with that error.
        """
        if self._running:
            raise RuntimeError("The cache is already started.")
        self._running = True
        self._stop = stop
        for informer in list(self._informers.values()):
            self._spawn(informer)

        stopper = asyncio.create_task(primitives.wait_flag(stop))
        failure = asyncio.create_task(self._failed.wait())
        try:
            await asyncio.wait([stopper, failure], return_when=asyncio.FIRST_COMPLETED)
        finally:
            self._running = False
            await aiotasks.stop([stopper, failure], title="cache waiters", quiet=True)
            await aiotasks.stop(self._tasks, title="cache", logger=self.logger, cancelled=True)
        await aiotasks.reraise(self._tasks)

    async def wait_for_sync(self, stop: Optional[primitives.Flag] = None, *types: Hashable) -> bool:
        informers = [self.informer_for(t) for t in types] if types else self.informers
        for informer in informers:
            if not await informer.wait_for_sync(stop):
                return False
        return True

    async def get(self, __type: Hashable, key: references.ObjectKey) -> bodies.Body:
        return self.informer_for(__type).get(key)

    async def list(
            self,
            __type: Hashable,
            namespace: references.Namespace = None,
            labels: Optional[bodies.Labels] = None,
            field: Optional[FieldSelector] = None,
    ) -> List[bodies.Body]:
        return self.informer_for(__type).list(namespace=namespace, labels=labels, field=field)

    def _spawn(self, informer: Informer) -> None:
        task = aiotasks.create_guarded_task(
            name=f"informer of {informer.resource}", logger=self.logger, finishable=True,
            coro=informer.run(self._stop))
        task.add_done_callback(self._check_failure)
        self._tasks.append(task)

    def _check_failure(self, task: aiotasks.Task) -> None:
        if not task.cancelled() and task.exception() is not None:
            self._failed.set()


def _changed(old: bodies.Body, new: bodies.Body) -> bool:
    old_version = bodies.get_version(old)
    new_version = bodies.get_version(new)
    if old_version is not None and new_version is not None:
        return old_version != new_version
    return old != new
