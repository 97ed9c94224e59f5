"""
The main konverge module for all the exported functions & classes.
"""
# isort: skip_file

# Unlike all other places, where we import other modules and refer
# the functions via the modules, this is the framework's top-level interface,
# as it is seen by the users. So, we export the individual functions.

from konverge.clients.api import (
    Reader,
    Writer,
    Client,
    Mapper,
    WatchTransport,
)
from konverge.clients.delegating import (
    DelegatingClient,
)
from konverge.clients.errors import (
    StoreError,
    NotFoundError,
    ConflictError,
    MappingError,
    WatchingError,
)
from konverge.clients.mapping import (
    StaticMapper,
)
from konverge.engines.loggers import (
    LogFormat,
    ObjectLogger,
    configure,
)
from konverge.reactor.caching import (
    Cache,
    CacheNotSyncedError,
    Informer,
)
from konverge.reactor.controllers import (
    Controller,
    ControllerState,
    SyncError,
)
from konverge.reactor.eventhandlers import (
    EventHandler,
    EnqueueHandler,
    EnqueueOwnerHandler,
    EnqueueMappedHandler,
    EventHandlerFuncs,
)
from konverge.reactor.injection import (
    InjectionError,
    WantsScheme,
    WantsConfig,
    WantsClient,
    WantsCache,
    WantsStop,
)
from konverge.reactor.managers import (
    Manager,
    ManagerState,
    Runnable,
    RunnableFunc,
)
from konverge.reactor.predicates import (
    Predicate,
    Funcs,
    ResourceVersionChanged,
    GenerationChanged,
    LabelsMatch,
    all_of,
    any_of,
    not_,
)
from konverge.reactor.queueing import (
    WorkQueue,
)
from konverge.reactor.reconciling import (
    Result,
    Reconciler,
    ReconcilerFunc,
)
from konverge.reactor.sources import (
    Source,
    KindSource,
    ChannelSource,
    SourceFunc,
)
from konverge.reactor.throttling import (
    RateLimiter,
    ExponentialFailureRateLimiter,
    BucketRateLimiter,
    MaxOfRateLimiter,
    default_rate_limiter,
)
from konverge.structs.configuration import (
    ConfigurationError,
    ManagerSettings,
)
from konverge.structs.credentials import (
    Config,
    ConnectionInfo,
)
from konverge.structs.events import (
    Event,
    CreateEvent,
    UpdateEvent,
    DeleteEvent,
    GenericEvent,
)
from konverge.structs.references import (
    Kind,
    Resource,
    ObjectKey,
)
from konverge.structs.schemes import (
    Scheme,
    SchemeError,
)

__all__ = [
    'Reader', 'Writer', 'Client', 'Mapper', 'WatchTransport',
    'DelegatingClient',
    'StoreError', 'NotFoundError', 'ConflictError', 'MappingError', 'WatchingError',
    'StaticMapper',
    'LogFormat', 'ObjectLogger', 'configure',
    'Cache', 'CacheNotSyncedError', 'Informer',
    'Controller', 'ControllerState', 'SyncError',
    'EventHandler', 'EnqueueHandler', 'EnqueueOwnerHandler',
    'EnqueueMappedHandler', 'EventHandlerFuncs',
    'InjectionError', 'WantsScheme', 'WantsConfig', 'WantsClient', 'WantsCache', 'WantsStop',
    'Manager', 'ManagerState', 'Runnable', 'RunnableFunc',
    'Predicate', 'Funcs', 'ResourceVersionChanged', 'GenerationChanged', 'LabelsMatch',
    'all_of', 'any_of', 'not_',
    'WorkQueue',
    'Result', 'Reconciler', 'ReconcilerFunc',
    'Source', 'KindSource', 'ChannelSource', 'SourceFunc',
    'RateLimiter', 'ExponentialFailureRateLimiter', 'BucketRateLimiter',
    'MaxOfRateLimiter', 'default_rate_limiter',
    'ConfigurationError', 'ManagerSettings',
    'Config', 'ConnectionInfo',
    'Event', 'CreateEvent', 'UpdateEvent', 'DeleteEvent', 'GenericEvent',
    'Kind', 'Resource', 'ObjectKey',
    'Scheme', 'SchemeError',
]
