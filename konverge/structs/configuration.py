"""
The tunable knobs of a manager and all of its components.

The settings are grouped by the concern they affect: the watching,
the queueing, the controllers, the execution of the sync reconcilers,
the health probes, the process lifecycle. All of them have usable defaults;
the applications change only what they need, usually before the start::

    settings = konverge.ManagerSettings()
    settings.watching.resync_period = 600
    settings.controllers.max_concurrent_reconciles = 5
    manager = konverge.Manager(config, settings=settings)
"""
import concurrent.futures
import dataclasses
from dataclasses import field
from typing import Optional


class ConfigurationError(Exception):
    """ Raised when a component is set up with missing or invalid arguments. """


@dataclasses.dataclass
class WatchingSettings:

    reconnect_backoff: float = 0.1
    """
    The pause between the list-and-watch rounds, in seconds.
    """

    resync_period: Optional[float] = None
    """
    How often should the cached objects be re-delivered to the handlers
    as update events with no actual changes (``old is new``).

    This is an explicit periodic refresh, which allows the reconcilers to
    catch the drift of the external state that is not seen in the store.
    Measured in seconds. ``None`` disables the re-delivery.
    """


@dataclasses.dataclass
class QueueingSettings:

    base_delay: float = 0.005
    """
    The first retry delay of a failed key, in seconds. It doubles with every
    consecutive failure of the same key until the key is forgotten.
    """

    max_delay: float = 1000.0
    """
    The ceiling of the per-key retry delay, in seconds.
    """

    bucket_qps: float = 10.0
    """
    The overall rate of the rate-limited additions, regardless of the keys.
    """

    bucket_burst: int = 100
    """
    How many rate-limited additions can happen at once without the overall delay.
    """


@dataclasses.dataclass
class ControllerSettings:

    max_concurrent_reconciles: int = 1
    """
    The default number of the worker loops of a controller.
    The controllers can override it individually.
    """

    sync_timeout: Optional[float] = None
    """
    How long a controller waits for its caches to sync before it fails.
    ``None`` means waiting until the stop-flag is raised.
    """


@dataclasses.dataclass
class ExecutionSettings:
    executor: concurrent.futures.Executor = field(default_factory=concurrent.futures.ThreadPoolExecutor)
    """
    Where the sync reconcilers run, so that the event loop is never blocked.
    """

    pool_size: Optional[int] = None

    @property
    def max_workers(self) -> Optional[int]:
        """ The size of the default thread pool, if it was set explicitly. """
        return self.pool_size

    @max_workers.setter
    def max_workers(self, value: int) -> None:
        if value < 1:
            raise ValueError("Can't set max_workers below 1.")
        self.pool_size = value
        self.executor = concurrent.futures.ThreadPoolExecutor(max_workers=value)


@dataclasses.dataclass
class ProbingSettings:

    endpoint: Optional[str] = None
    """
    Where to serve the health status, e.g. ``http://0.0.0.0:8080/healthz``.
    ``None`` disables the health reporting.
    """


@dataclasses.dataclass
class ProcessSettings:

    stop_timeout: Optional[float] = None
    """
    How long to wait for the components to exit gracefully after the stop.
    After that, they are cancelled. ``None`` means waiting as long as needed.
    """


@dataclasses.dataclass
class ManagerSettings:
    watching: WatchingSettings = field(default_factory=WatchingSettings)
    queueing: QueueingSettings = field(default_factory=QueueingSettings)
    controllers: ControllerSettings = field(default_factory=ControllerSettings)
    execution: ExecutionSettings = field(default_factory=ExecutionSettings)
    probing: ProbingSettings = field(default_factory=ProbingSettings)
    process: ProcessSettings = field(default_factory=ProcessSettings)
