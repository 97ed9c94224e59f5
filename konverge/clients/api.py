"""
The contracts of the external collaborators: the store's client & transport.

The framework does not implement any wire protocol. Instead, it expects
the objects implementing these protocols to be provided by the users
(usually, from a client library of the specific store). The protocols are
structural: no inheritance is needed, only the same-named methods.

See :mod:`konverge.testing` for an in-memory implementation of all of them.
"""
from typing import AsyncIterator, Collection, Optional, Tuple

from typing_extensions import Protocol, runtime_checkable

from konverge.structs import bodies, references


@runtime_checkable
class Reader(Protocol):

    async def get(
            self,
            resource: references.Resource,
            key: references.ObjectKey,
    ) -> bodies.Body:
        """ Fetch one object or raise :class:`konverge.clients.errors.NotFoundError`. """

    async def list(
            self,
            resource: references.Resource,
            namespace: references.Namespace = None,
            labels: Optional[bodies.Labels] = None,
    ) -> Collection[bodies.Body]:
        """ Fetch all objects in the namespace (or everywhere), optionally by labels. """


@runtime_checkable
class Writer(Protocol):

    async def create(self, resource: references.Resource, body: bodies.Body) -> bodies.Body:
        ...

    async def update(self, resource: references.Resource, body: bodies.Body) -> bodies.Body:
        ...

    async def delete(self, resource: references.Resource, key: references.ObjectKey) -> None:
        ...


@runtime_checkable
class Client(Reader, Writer, Protocol):
    pass


@runtime_checkable
class Mapper(Protocol):

    def resource_for(self, kind: references.Kind) -> references.Resource:
        """ Resolve the kind or raise :class:`konverge.clients.errors.MappingError`. """


@runtime_checkable
class WatchTransport(Protocol):
    """
    The list+watch protocol of the store.

    The listing returns the objects and the version of the listing, since
    which the watch-stream continues. The watch-stream yields the raw events::

        {'type': 'ADDED' | 'MODIFIED' | 'DELETED', 'object': {...}}
        {'type': 'ERROR', 'object': {'code': 410, ...}}

    The 410 error means that the version is too old and a re-listing is needed.
    The connection errors just end the stream; the framework reconnects.
    """

    async def list_objs(
            self,
            resource: references.Resource,
            namespace: references.Namespace,
    ) -> Tuple[Collection[bodies.RawBody], Optional[str]]:
        ...

    def watch_objs(
            self,
            resource: references.Resource,
            namespace: references.Namespace,
            since: Optional[str] = None,
    ) -> AsyncIterator[bodies.RawInput]:
        ...
