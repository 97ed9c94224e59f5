"""
Injection of the manager's shared dependencies into the components.

The components (controllers, sources, event handlers, predicates, and
the users' own runnables) declare which dependencies they need by
implementing the capability methods: ``inject_scheme()``, ``inject_config()``,
``inject_client()``, ``inject_cache()``, ``inject_stop()``. No inheritance is
needed: the capabilities are detected structurally, and only the declared
ones are injected.

A component can reject a dependency by raising from the capability method
(e.g. when it cannot resolve its kinds in the injected scheme). Then,
the component is not added or started, and the error is re-raised
to the adding/starting code as `InjectionError`.
"""
from typing import Any, Optional

from typing_extensions import Protocol, runtime_checkable

from konverge.clients import api
from konverge.structs import credentials, primitives, schemes


class InjectionError(Exception):
    """ Raised when a component rejects an injected dependency. """


@runtime_checkable
class WantsScheme(Protocol):
    def inject_scheme(self, scheme: schemes.Scheme) -> None: ...


@runtime_checkable
class WantsConfig(Protocol):
    def inject_config(self, config: credentials.Config) -> None: ...


@runtime_checkable
class WantsClient(Protocol):
    def inject_client(self, client: api.Client) -> None: ...


@runtime_checkable
class WantsCache(Protocol):
    # The cache's type is not imported to avoid the circular imports.
    def inject_cache(self, cache: Any) -> None: ...


@runtime_checkable
class WantsStop(Protocol):
    def inject_stop(self, stop: Optional[primitives.Flag]) -> None: ...


def inject(
        obj: object,
        *,
        scheme: Optional[schemes.Scheme] = None,
        config: Optional[credentials.Config] = None,
        client: Optional[api.Client] = None,
        cache: Optional[Any] = None,
        stop: Optional[primitives.Flag] = None,
) -> None:
    """
    Inject only those dependencies that are available and are wanted by the object.

    The stop-flag is injected only if given: it is only known at start time.
    """
    try:
        if scheme is not None and isinstance(obj, WantsScheme):
            obj.inject_scheme(scheme)
        if config is not None and isinstance(obj, WantsConfig):
            obj.inject_config(config)
        if client is not None and isinstance(obj, WantsClient):
            obj.inject_client(client)
        if cache is not None and isinstance(obj, WantsCache):
            obj.inject_cache(cache)
        if stop is not None and isinstance(obj, WantsStop):
            obj.inject_stop(stop)
    except InjectionError:
        raise
    except Exception as e:
        raise InjectionError(f"Failed to inject the dependencies into {obj!r}: {e}") from e
