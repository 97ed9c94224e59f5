"""
The controllers: the scheduling of the reconciliations of one kind.

A controller owns a work queue, a set of watches (the sources with their
event handlers and predicates), and a reconciler. The watches put the keys
into the queue; the workers take the keys from the queue and reconcile them,
at most ``max_concurrent_reconciles`` at a time.

The same key is never reconciled by two workers at once: this is guaranteed
by the queue (a key is "processing" until it is done), not by any locks here.
Different keys are reconciled in parallel with no coordination.

The result of every reconciliation decides the fate of the key:

* An error: the key is retried with a growing per-key backoff.
* ``requeue_after``: the key is retried after this delay, the backoff is reset.
* ``requeue``: the key is retried with a growing per-key backoff.
* Nothing: the backoff is reset, the key waits for the next event.
"""
import asyncio
import dataclasses
import enum
import logging
from typing import Any, List, Optional, Tuple

from konverge.clients import api
from konverge.engines import loggers
from konverge.reactor import eventhandlers, injection, predicates, \
                             queueing, reconciling, sources, throttling
from konverge.structs import configuration, credentials, primitives, references, schemes
from konverge.utilities import aiotasks


class ControllerState(enum.Enum):
    CREATED = 'created'
    WAITING_FOR_SYNC = 'waiting-for-sync'
    RUNNING = 'running'
    STOPPED = 'stopped'


class SyncError(Exception):
    """ Raised when the caches of the controller's sources are not synced. """


@dataclasses.dataclass(frozen=True)
class Watch:
    source: sources.Source
    handler: eventhandlers.EventHandler
    predicates: Tuple[predicates.Predicate, ...]


class Controller:

    def __init__(
            self,
            *,
            name: str,
            reconciler: reconciling.Reconciler,
            max_concurrent_reconciles: Optional[int] = None,
            queue: Optional[queueing.WorkQueue] = None,
            settings: Optional[configuration.ManagerSettings] = None,
            logger: Optional[aiotasks.Logger] = None,
    ) -> None:
        super().__init__()
        if not name:
            raise configuration.ConfigurationError("must specify Name for Controller")
        if reconciler is None:
            raise configuration.ConfigurationError("must specify Reconciler")

        self.settings = settings if settings is not None else configuration.ManagerSettings()
        if max_concurrent_reconciles is None:
            max_concurrent_reconciles = self.settings.controllers.max_concurrent_reconciles
        if max_concurrent_reconciles < 1:
            raise configuration.ConfigurationError(
                f"max_concurrent_reconciles must be positive, got {max_concurrent_reconciles!r}")

        self.name = name
        self.reconciler = reconciler
        self.max_concurrent_reconciles = max_concurrent_reconciles
        self.queue = queue if queue is not None else queueing.WorkQueue(
            name=name,
            rate_limiter=throttling.default_rate_limiter(self.settings),
        )
        self.logger = logger if logger is not None else logging.getLogger(__name__)
        self._state = ControllerState.CREATED
        self._watches: List[Watch] = []
        self._scheme: Optional[schemes.Scheme] = None
        self._config: Optional[credentials.Config] = None
        self._client: Optional[api.Client] = None
        self._cache: Optional[Any] = None
        self._stop: Optional[primitives.Flag] = None

    def __repr__(self) -> str:
        return f'<{self.__class__.__name__} {self.name!r}: {self._state.value}>'

    @property
    def state(self) -> ControllerState:
        return self._state

    def inject_scheme(self, scheme: schemes.Scheme) -> None:
        self._scheme = scheme

    def inject_config(self, config: credentials.Config) -> None:
        self._config = config

    def inject_client(self, client: api.Client) -> None:
        self._client = client

    def inject_cache(self, cache: Any) -> None:
        self._cache = cache

    def watch(
            self,
            source: sources.Source,
            handler: eventhandlers.EventHandler,
            *predicates: predicates.Predicate,
    ) -> None:
        """
        Feed the queue from the source, via the predicates and the event handler.

        Before the controller is started, the watch is only remembered.
        Once started, the source is started immediately (with no sync-waiting).
        """
        if self._state is ControllerState.STOPPED:
            raise RuntimeError(f"Controller {self.name!r} is stopped and cannot watch anymore.")
        watch = Watch(source=source, handler=handler, predicates=predicates)
        if self._state is not ControllerState.CREATED:
            self._start_watch(watch)
        self._watches.append(watch)

    async def start(self, stop: Optional[primitives.Flag] = None) -> None:
        """
        Run the controller until the stop-flag is raised.

        The workers are only started when all the sources are synced,
        i.e. when the reconcilers can rely on the caches being complete.
        """
        if self._state is not ControllerState.CREATED:
            raise RuntimeError(f"Controller {self.name!r} is already started.")
        self._stop = stop
        self._state = ControllerState.WAITING_FOR_SYNC
        try:
            injection.inject(self.reconciler, scheme=self._scheme, config=self._config,
                             client=self._client, cache=self._cache)
            for watch in self._watches:
                self._start_watch(watch)
            if not await self._wait_for_sync(stop):
                raise SyncError("failed to wait for caches to sync")
        except BaseException:
            self._state = ControllerState.STOPPED
            self.queue.shutdown()
            raise

        self.logger.info(f"Starting {self.max_concurrent_reconciles} workers of controller {self.name!r}.")
        self._state = ControllerState.RUNNING
        workers = [
            aiotasks.create_guarded_task(
                name=f"worker #{index} of {self.name!r}", logger=self.logger, finishable=True,
                coro=self._worker())
            for index in range(self.max_concurrent_reconciles)
        ]
        try:
            await primitives.wait_flag(stop)
            self.logger.info(f"Stopping the workers of controller {self.name!r}.")
            self.queue.shutdown()
            await aiotasks.wait(workers)
        finally:
            self.queue.shutdown()
            await aiotasks.stop(workers, title=f"workers of {self.name!r}", logger=self.logger, quiet=True)
            self._state = ControllerState.STOPPED
        await aiotasks.reraise(workers)

    def _start_watch(self, watch: Watch) -> None:
        for obj in (watch.source, watch.handler) + watch.predicates:
            injection.inject(obj, scheme=self._scheme, config=self._config,
                             client=self._client, cache=self._cache, stop=self._stop)
        watch.source.start(watch.handler, self.queue, *watch.predicates)

    async def _wait_for_sync(self, stop: Optional[primitives.Flag]) -> bool:
        waiters = [
            watch.source.wait_for_sync(stop)
            for watch in self._watches
            if isinstance(watch.source, sources.SyncingSource)
        ]
        try:
            results = await asyncio.wait_for(asyncio.gather(*waiters),
                                             timeout=self.settings.controllers.sync_timeout)
        except asyncio.TimeoutError:
            return False
        return all(results)

    async def _worker(self) -> None:
        while True:
            key, shutdown = await self.queue.get()
            if shutdown:
                break
            try:
                await self._process(key)
            finally:
                self.queue.done(key)

    async def _process(self, key: references.ObjectKey) -> None:
        logger = loggers.ObjectLogger(key=key, controller=self.name, logger=self.logger)
        try:
            result = await reconciling.reconcile(self.reconciler, key, settings=self.settings)
        except Exception as e:
            self.queue.add_rate_limited(key)
            logger.exception(f"Reconciler has failed: {e}")
            return

        if result.requeue_after > 0:
            self.queue.forget(key)
            self.queue.add_after(key, result.requeue_after)
            logger.debug(f"Reconciled; requeued after {result.requeue_after}s.")
        elif result.requeue:
            self.queue.add_rate_limited(key)
            logger.debug("Reconciled; requeued with the backoff.")
        else:
            self.queue.forget(key)
            logger.debug("Reconciled successfully.")
