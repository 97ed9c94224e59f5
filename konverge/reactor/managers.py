"""
The manager: the shared dependencies and the lifecycle of all components.

The manager creates the process-wide singletons once: the scheme, the mapper,
the store's client, and the cache. The components (controllers and any other
long-running runnables) get them injected when they are added -- but only
those of them which the components declare as needed.

When started, the manager runs the cache and all components as separate tasks,
and waits until the stop-flag is raised or any component fails fatally.
Either way, all the components are then stopped (via the manager's own
internal stop-flag, which is raised in both cases), and awaited.
The first fatal error, if any, is re-raised to the caller.
"""
import asyncio
import enum
import logging
from typing import Any, Callable, List, Optional

from typing_extensions import Protocol, runtime_checkable

from konverge.clients import api, delegating, mapping
from konverge.engines import probing
from konverge.reactor import caching, controllers, injection, reconciling
from konverge.structs import configuration, credentials, primitives, schemes
from konverge.utilities import aiotasks

MapperProvider = Callable[[credentials.Config], api.Mapper]
ClientFactory = Callable[[credentials.Config, api.Mapper], api.Client]
CacheFactory = Callable[..., caching.Cache]


class ManagerState(enum.Enum):
    NOT_STARTED = 'not-started'
    RUNNING = 'running'
    STOPPED = 'stopped'


@runtime_checkable
class Runnable(Protocol):

    async def start(self, stop: Optional[primitives.Flag]) -> None:
        """ Run until the stop-flag is raised; raise on fatal errors. """


class RunnableFunc:
    """
    A runnable made of a plain function, which accepts the stop-flag.
    """

    def __init__(self, fn: Callable[[Optional[primitives.Flag]], Any]) -> None:
        super().__init__()
        self.fn = fn

    def __repr__(self) -> str:
        return f'{self.__class__.__name__}({self.fn!r})'

    async def start(self, stop: Optional[primitives.Flag]) -> None:
        await reconciling.invoke(self.fn, stop)


def default_mapper_provider(config: credentials.Config) -> api.Mapper:
    if isinstance(config.store, api.Mapper):
        return config.store
    return mapping.StaticMapper()


def default_client_factory(config: credentials.Config, mapper: api.Mapper) -> api.Client:
    if not isinstance(config.store, api.Client):
        raise configuration.ConfigurationError(
            f"Config has no store client for {config.server!r}: specify it or a client factory.")
    return config.store


def default_cache_factory(
        config: credentials.Config,
        *,
        scheme: schemes.Scheme,
        mapper: api.Mapper,
        settings: configuration.ManagerSettings,
        logger: Optional[aiotasks.Logger] = None,
) -> caching.Cache:
    if not isinstance(config.store, api.WatchTransport):
        raise configuration.ConfigurationError(
            f"Config has no watch transport for {config.server!r}: specify it or a cache factory.")
    return caching.Cache(config.store, scheme=scheme, mapper=mapper, settings=settings, logger=logger)


class Manager:

    def __init__(
            self,
            config: Optional[credentials.Config],
            *,
            scheme: Optional[schemes.Scheme] = None,
            mapper_provider: Optional[MapperProvider] = None,
            client_factory: Optional[ClientFactory] = None,
            cache_factory: Optional[CacheFactory] = None,
            settings: Optional[configuration.ManagerSettings] = None,
            logger: Optional[aiotasks.Logger] = None,
    ) -> None:
        super().__init__()
        if config is None:
            raise configuration.ConfigurationError("must specify Config")

        mapper_provider = mapper_provider if mapper_provider is not None else default_mapper_provider
        client_factory = client_factory if client_factory is not None else default_client_factory
        cache_factory = cache_factory if cache_factory is not None else default_cache_factory

        self.settings = settings if settings is not None else configuration.ManagerSettings()
        self.logger = logger if logger is not None else logging.getLogger(__name__)
        self._config = config
        self._scheme = scheme if scheme is not None else schemes.Scheme()
        self._mapper = mapper_provider(config)
        writer = client_factory(config, self._mapper)
        self._cache = cache_factory(config, scheme=self._scheme, mapper=self._mapper,
                                    settings=self.settings, logger=self.logger)
        self._client = delegating.DelegatingClient(reader=self._cache, writer=writer)

        self._state = ManagerState.NOT_STARTED
        self._runnables: List[Runnable] = []
        self._tasks: List[aiotasks.Task] = []
        self._errors: List[BaseException] = []
        self._stop: Optional[asyncio.Event] = None

    def __repr__(self) -> str:
        return f'<{self.__class__.__name__} for {self._config.server!r}: {self._state.value}>'

    @property
    def state(self) -> ManagerState:
        return self._state

    @property
    def config(self) -> credentials.Config:
        return self._config

    @property
    def scheme(self) -> schemes.Scheme:
        return self._scheme

    @property
    def mapper(self) -> api.Mapper:
        return self._mapper

    @property
    def client(self) -> api.Client:
        return self._client

    @property
    def cache(self) -> caching.Cache:
        return self._cache

    @property
    def field_indexer(self) -> caching.Cache:
        return self._cache

    def set_fields(self, obj: object) -> None:
        """ Inject the manager's dependencies wanted by the object. """
        injection.inject(obj, scheme=self._scheme, config=self._config,
                         client=self._client, cache=self._cache)

    def add(self, runnable: Runnable) -> None:
        """
        Add a component: inject the dependencies, and start it if already running.
        """
        if self._state is ManagerState.STOPPED:
            raise RuntimeError("The manager is stopped; no components can be added.")
        self.set_fields(runnable)
        self._runnables.append(runnable)
        if self._state is ManagerState.RUNNING:
            self._spawn(runnable)

    def new_controller(
            self,
            name: str,
            reconciler: reconciling.Reconciler,
            max_concurrent_reconciles: Optional[int] = None,
    ) -> controllers.Controller:
        controller = controllers.Controller(
            name=name,
            reconciler=reconciler,
            max_concurrent_reconciles=max_concurrent_reconciles,
            settings=self.settings,
            logger=self.logger,
        )
        self.add(controller)
        return controller

    async def start(self, stop: Optional[primitives.Flag] = None) -> None:
        """
        Run the cache and all the components until stopped or failed.

        The first fatal error of the components is re-raised. When the stop
        is requested before the controllers' caches are synced, the controllers
        fail to sync, but it is a normal shutdown: their sync errors are ignored.
        """
        if self._state is not ManagerState.NOT_STARTED:
            raise RuntimeError("The manager is already started; it cannot be started twice.")
        self._state = ManagerState.RUNNING
        self._stop = asyncio.Event()

        cache_task = aiotasks.create_guarded_task(
            name="cache", logger=self.logger, finishable=True,
            coro=self._cache.start(self._stop))
        cache_task.add_done_callback(self._check_failure)
        self._tasks.append(cache_task)
        for runnable in list(self._runnables):
            self._spawn(runnable)

        extra_tasks: List[aiotasks.Task] = []
        if self.settings.probing.endpoint is not None:
            extra_tasks.append(aiotasks.create_guarded_task(
                name="health reporter", logger=self.logger, cancellable=True,
                coro=probing.health_reporter(
                    self.settings.probing.endpoint,
                    cache=self._cache,
                    running=lambda: self._state is ManagerState.RUNNING)))

        requested = False
        stopper = asyncio.create_task(primitives.wait_flag(stop))
        failure = asyncio.create_task(self._stop.wait())
        try:
            await asyncio.wait([stopper, failure], return_when=asyncio.FIRST_COMPLETED)
            requested = stopper.done()
            if requested:
                self.logger.info("The manager is stopping by request.")
            else:
                self.logger.info("The manager is stopping due to a failure.")
        finally:
            self._stop.set()
            await aiotasks.stop([stopper, failure], title="stop-flag waiters", quiet=True)
            await aiotasks.stop(extra_tasks, title="auxiliary", logger=self.logger, quiet=True)
            try:
                await aiotasks.settle(self._tasks, title="component", logger=self.logger,
                                      timeout=self.settings.process.stop_timeout)
            finally:
                self._state = ManagerState.STOPPED

        fatal = [error for error in self._errors
                 if not (requested and isinstance(error, controllers.SyncError))]
        if fatal:
            raise fatal[0]

    def _spawn(self, runnable: Runnable) -> None:
        task = aiotasks.create_guarded_task(
            name=f"component {runnable!r}", logger=self.logger, finishable=True,
            coro=runnable.start(self._stop))
        task.add_done_callback(self._check_failure)
        self._tasks.append(task)

    def _check_failure(self, task: aiotasks.Task) -> None:
        if not task.cancelled() and task.exception() is not None:
            self._errors.append(task.exception())
            if self._stop is not None:
                self._stop.set()
