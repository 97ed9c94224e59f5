"""
An in-memory object store for testing the controllers and the reconcilers.

It implements all the external contracts at once: the client (reading and
writing the objects), the mapper (the kinds to the resources), and the watch
transport (the listings and the watch-streams with the resumable versions).
It is good enough to run a manager with real controllers against it::

    store = FakeStore()
    manager = Manager(Config(server='memory://', store=store))

The store can also simulate the troubles of the real stores: the disconnects
of the watch-streams (the watchers reconnect and continue from the last seen
version, nothing is lost), and the expiration of the versions (the watchers
must re-list the objects, and can miss some events in between).
"""
import asyncio
import copy
import itertools
from typing import AsyncIterator, Collection, Dict, Iterable, List, \
                   Optional, Tuple, Union

from konverge.clients import errors, mapping
from konverge.structs import bodies, references

_ResourceKey = Tuple[str, str]  # group, plural


class _Disconnect:
    pass


class _Watcher:
    def __init__(self, resource_key: _ResourceKey, namespace: references.Namespace) -> None:
        super().__init__()
        self.resource_key = resource_key
        self.namespace = namespace
        self.queue: "asyncio.Queue[Union[bodies.RawInput, _Disconnect]]" = asyncio.Queue()

    def matches(self, resource_key: _ResourceKey, body: bodies.Body) -> bool:
        return (self.resource_key == resource_key and
                (self.namespace is None or self.namespace == bodies.get_namespace(body)))


class FakeStore:

    def __init__(
            self,
            resources: Iterable[references.Resource] = (),
            *,
            namespaced: bool = True,
    ) -> None:
        super().__init__()
        self._mapper = mapping.StaticMapper(resources, namespaced=namespaced)
        self._objects: Dict[_ResourceKey, Dict[references.ObjectKey, bodies.RawBody]] = {}
        self._history: List[Tuple[int, _ResourceKey, bodies.RawInput]] = []
        self._watchers: List[_Watcher] = []
        self._version = 0
        self._expired = 0
        self._uids = itertools.count(1)

    def __repr__(self) -> str:
        total = sum(len(objs) for objs in self._objects.values())
        return f'<{self.__class__.__name__}: {total} objects, version {self._version}>'

    @property
    def watchers(self) -> int:
        return len(self._watchers)

    def resource_for(self, kind: references.Kind) -> references.Resource:
        return self._mapper.resource_for(kind)

    async def get(
            self,
            resource: references.Resource,
            key: references.ObjectKey,
    ) -> bodies.Body:
        try:
            return copy.deepcopy(self._objects_of(resource)[key])
        except KeyError:
            raise errors.NotFoundError(f"{resource} {key} is not found.", code=404) from None

    async def list(
            self,
            resource: references.Resource,
            namespace: references.Namespace = None,
            labels: Optional[bodies.Labels] = None,
    ) -> Collection[bodies.Body]:
        return [
            copy.deepcopy(body) for key, body in self._objects_of(resource).items()
            if (namespace is None or key.namespace == namespace) and bodies.match_labels(body, labels)
        ]

    async def create(self, resource: references.Resource, body: bodies.Body) -> bodies.Body:
        objects = self._objects_of(resource)
        key = bodies.get_key(body)
        if key in objects:
            raise errors.ConflictError(f"{resource} {key} already exists.", code=409)
        stored: bodies.RawBody = copy.deepcopy(dict(body))  # type: ignore
        stored.setdefault('metadata', {})
        stored['metadata'].setdefault('uid', f'uid-{next(self._uids)}')
        stored['metadata']['generation'] = 1
        objects[key] = stored
        self._emit(resource, 'ADDED', stored)
        return copy.deepcopy(stored)

    async def update(self, resource: references.Resource, body: bodies.Body) -> bodies.Body:
        objects = self._objects_of(resource)
        key = bodies.get_key(body)
        try:
            existing = objects[key]
        except KeyError:
            raise errors.NotFoundError(f"{resource} {key} is not found.", code=404) from None
        version = bodies.get_version(body)
        if version is not None and version != bodies.get_version(existing):
            raise errors.ConflictError(f"{resource} {key} has been modified meanwhile.", code=409)
        stored: bodies.RawBody = copy.deepcopy(dict(body))  # type: ignore
        stored.setdefault('metadata', {})
        stored['metadata']['uid'] = existing.get('metadata', {}).get('uid', '')
        generation = bodies.get_generation(existing) or 1
        spec_changed = stored.get('spec') != existing.get('spec')
        stored['metadata']['generation'] = generation + 1 if spec_changed else generation
        objects[key] = stored
        self._emit(resource, 'MODIFIED', stored)
        return copy.deepcopy(stored)

    async def delete(self, resource: references.Resource, key: references.ObjectKey) -> None:
        objects = self._objects_of(resource)
        try:
            body = objects.pop(key)
        except KeyError:
            raise errors.NotFoundError(f"{resource} {key} is not found.", code=404) from None
        self._emit(resource, 'DELETED', body)

    async def list_objs(
            self,
            resource: references.Resource,
            namespace: references.Namespace,
    ) -> Tuple[Collection[bodies.RawBody], Optional[str]]:
        objs = [
            copy.deepcopy(body) for key, body in self._objects_of(resource).items()
            if namespace is None or key.namespace == namespace
        ]
        return objs, str(self._version)

    async def watch_objs(
            self,
            resource: references.Resource,
            namespace: references.Namespace,
            since: Optional[str] = None,
    ) -> AsyncIterator[bodies.RawInput]:
        since_version = int(since) if since else self._version
        if since_version < self._expired:
            yield {'type': 'ERROR', 'object': {'code': 410, 'reason': 'Expired',
                                               'message': f"Version {since} is too old."}}
            return

        watcher = _Watcher(_resource_key(resource), namespace)
        for version, resource_key, raw_input in self._history:
            if version > since_version and watcher.matches(resource_key, raw_input['object']):
                watcher.queue.put_nowait(raw_input)
        self._watchers.append(watcher)
        try:
            while True:
                item = await watcher.queue.get()
                if isinstance(item, _Disconnect):
                    break
                yield item
        finally:
            self._watchers.remove(watcher)

    def disconnect(self) -> None:
        """ End all the current watch-streams; the history is preserved for resuming. """
        for watcher in self._watchers:
            watcher.queue.put_nowait(_Disconnect())

    def expire(self) -> None:
        """ Forget the history: the watchers have to re-list to continue. """
        self._expired = self._version
        self._history.clear()
        for watcher in self._watchers:
            watcher.queue.put_nowait({'type': 'ERROR', 'object': {'code': 410, 'reason': 'Expired'}})

    def drop(self, resource: references.Resource, key: references.ObjectKey) -> None:
        """
        Remove an object as if its deletion event was lost in transit.

        The watchers do not see the deletion until they re-list (see `expire`).
        """
        del self._objects_of(resource)[key]
        self._version += 1

    def _objects_of(self, resource: references.Resource) -> Dict[references.ObjectKey, bodies.RawBody]:
        return self._objects.setdefault(_resource_key(resource), {})

    def _emit(self, resource: references.Resource, event_type: str, body: bodies.RawBody) -> None:
        self._version += 1
        body['metadata']['resourceVersion'] = str(self._version)
        raw_input: bodies.RawInput = {'type': event_type, 'object': copy.deepcopy(body)}  # type: ignore
        resource_key = _resource_key(resource)
        self._history.append((self._version, resource_key, raw_input))
        for watcher in self._watchers:
            if watcher.matches(resource_key, body):
                watcher.queue.put_nowait(raw_input)


def _resource_key(resource: references.Resource) -> _ResourceKey:
    return resource.group, resource.plural
