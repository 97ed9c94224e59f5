"""
Event handlers: the mapping of the events to the keys to reconcile.

A handler gets one event at a time and puts zero, one, or many keys into
the queue. The keys are not necessarily of the event's object, nor even
of the same kind: e.g., a change of a child object can trigger
the reconciliation of its owner (the parent).

The handlers do not reconcile anything themselves: the queue de-duplicates
the keys, so a storm of events for one object ends with one reconciliation.
"""
from typing import Callable, Hashable, Iterable, Optional

from konverge.reactor import queueing
from konverge.structs import bodies, events, references, schemes

KeysMapper = Callable[[bodies.Body], Iterable[references.ObjectKey]]


class EventHandler:
    """
    The base class for the handlers: one method per event kind, all no-op.
    """

    def create(self, queue: queueing.WorkQueue, event: events.CreateEvent) -> None:
        pass

    def update(self, queue: queueing.WorkQueue, event: events.UpdateEvent) -> None:
        pass

    def delete(self, queue: queueing.WorkQueue, event: events.DeleteEvent) -> None:
        pass

    def generic(self, queue: queueing.WorkQueue, event: events.GenericEvent) -> None:
        pass

    def handle(self, queue: queueing.WorkQueue, event: events.Event) -> None:
        """ Dispatch the event to the method of its kind. """
        if isinstance(event, events.CreateEvent):
            self.create(queue, event)
        elif isinstance(event, events.UpdateEvent):
            self.update(queue, event)
        elif isinstance(event, events.DeleteEvent):
            self.delete(queue, event)
        elif isinstance(event, events.GenericEvent):
            self.generic(queue, event)
        else:
            raise TypeError(f"Unsupported event: {event!r}")


class EnqueueHandler(EventHandler):
    """
    Reconcile the event's own object.

    For updates, both the old and the new objects are enqueued: they are
    usually the same key (de-duplicated), but not if the object was renamed.
    """

    def create(self, queue: queueing.WorkQueue, event: events.CreateEvent) -> None:
        queue.add(event.key)

    def update(self, queue: queueing.WorkQueue, event: events.UpdateEvent) -> None:
        queue.add(bodies.get_key(event.old))
        queue.add(bodies.get_key(event.new))

    def delete(self, queue: queueing.WorkQueue, event: events.DeleteEvent) -> None:
        queue.add(event.key)

    def generic(self, queue: queueing.WorkQueue, event: events.GenericEvent) -> None:
        queue.add(event.key)


class EnqueueOwnerHandler(EventHandler):
    """
    Reconcile the owners of the event's object, if they are of the owner type.

    The owners are assumed to be in the same namespace as the owned object
    (or cluster-scoped for cluster-scoped objects). Only the group & kind
    are compared, not the version: the owner references can use any version.

    With ``is_controller=True``, only the controlling owner is considered
    (at most one per object); otherwise, all owners of the type are.
    """

    def __init__(self, owner_type: Hashable, *, is_controller: bool = False) -> None:
        super().__init__()
        self.owner_type = owner_type
        self.is_controller = is_controller
        self._owner_kind: Optional[references.Kind] = None

    def __repr__(self) -> str:
        return f'{self.__class__.__name__}({self.owner_type!r}, is_controller={self.is_controller!r})'

    def inject_scheme(self, scheme: schemes.Scheme) -> None:
        self._owner_kind = scheme.kind_for(self.owner_type)

    def create(self, queue: queueing.WorkQueue, event: events.CreateEvent) -> None:
        self._enqueue_owners(queue, event.object)

    def update(self, queue: queueing.WorkQueue, event: events.UpdateEvent) -> None:
        self._enqueue_owners(queue, event.old)
        self._enqueue_owners(queue, event.new)

    def delete(self, queue: queueing.WorkQueue, event: events.DeleteEvent) -> None:
        self._enqueue_owners(queue, event.object)

    def generic(self, queue: queueing.WorkQueue, event: events.GenericEvent) -> None:
        self._enqueue_owners(queue, event.object)

    def _enqueue_owners(self, queue: queueing.WorkQueue, body: bodies.Body) -> None:
        for key in self.get_owner_keys(body):
            queue.add(key)

    def get_owner_keys(self, body: bodies.Body) -> Iterable[references.ObjectKey]:
        if self._owner_kind is None:
            raise RuntimeError(f"{self!r} has no scheme injected to resolve the owner type.")
        namespace = bodies.get_namespace(body)
        for ref in references.iter_owner_references(body):
            if self.is_controller and not ref.controller:
                continue
            if ref.kind.group != self._owner_kind.group or ref.kind.kind != self._owner_kind.kind:
                continue
            yield references.ObjectKey(namespace=namespace, name=ref.name)


class EnqueueMappedHandler(EventHandler):
    """
    Reconcile the keys as mapped by an arbitrary function from the objects.

    For updates, the keys of both the old and the new objects are enqueued.
    """

    def __init__(self, to_keys: KeysMapper) -> None:
        super().__init__()
        self.to_keys = to_keys

    def create(self, queue: queueing.WorkQueue, event: events.CreateEvent) -> None:
        self._enqueue(queue, event.object)

    def update(self, queue: queueing.WorkQueue, event: events.UpdateEvent) -> None:
        self._enqueue(queue, event.old)
        self._enqueue(queue, event.new)

    def delete(self, queue: queueing.WorkQueue, event: events.DeleteEvent) -> None:
        self._enqueue(queue, event.object)

    def generic(self, queue: queueing.WorkQueue, event: events.GenericEvent) -> None:
        self._enqueue(queue, event.object)

    def _enqueue(self, queue: queueing.WorkQueue, body: bodies.Body) -> None:
        for key in self.to_keys(body):
            queue.add(key)


class EventHandlerFuncs(EventHandler):
    """
    A handler made of separate functions per event kind; the missing ones are no-op.
    """

    def __init__(
            self,
            *,
            create: Optional[Callable[[queueing.WorkQueue, events.CreateEvent], None]] = None,
            update: Optional[Callable[[queueing.WorkQueue, events.UpdateEvent], None]] = None,
            delete: Optional[Callable[[queueing.WorkQueue, events.DeleteEvent], None]] = None,
            generic: Optional[Callable[[queueing.WorkQueue, events.GenericEvent], None]] = None,
    ) -> None:
        super().__init__()
        self.create_fn = create
        self.update_fn = update
        self.delete_fn = delete
        self.generic_fn = generic

    def create(self, queue: queueing.WorkQueue, event: events.CreateEvent) -> None:
        if self.create_fn is not None:
            self.create_fn(queue, event)

    def update(self, queue: queueing.WorkQueue, event: events.UpdateEvent) -> None:
        if self.update_fn is not None:
            self.update_fn(queue, event)

    def delete(self, queue: queueing.WorkQueue, event: events.DeleteEvent) -> None:
        if self.delete_fn is not None:
            self.delete_fn(queue, event)

    def generic(self, queue: queueing.WorkQueue, event: events.GenericEvent) -> None:
        if self.generic_fn is not None:
            self.generic_fn(queue, event)
