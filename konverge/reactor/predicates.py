"""
Predicates: the filters of the events before they are mapped to the keys.

A predicate is any callable that accepts an event and returns a boolean.
Multiple predicates of one source are combined with logical AND.
The predicates must be pure and fast: they run in the cache's delivery task.

The classes here are the commonly used ones; plain functions work as well::

    controller.watch(source, handler, lambda event: event.key.namespace == 'prod')
"""
from typing import Callable, Optional

from konverge.structs import bodies, events

Predicate = Callable[[events.Event], bool]


def check(event: events.Event, *predicates: Predicate) -> bool:
    return all(predicate(event) for predicate in predicates)


class Funcs:
    """
    Separate filters per event kind; the missing ones let the events through.
    """

    def __init__(
            self,
            *,
            create: Optional[Callable[[events.CreateEvent], bool]] = None,
            update: Optional[Callable[[events.UpdateEvent], bool]] = None,
            delete: Optional[Callable[[events.DeleteEvent], bool]] = None,
            generic: Optional[Callable[[events.GenericEvent], bool]] = None,
    ) -> None:
        super().__init__()
        self.create = create
        self.update = update
        self.delete = delete
        self.generic = generic

    def __call__(self, event: events.Event) -> bool:
        if isinstance(event, events.CreateEvent):
            return self.create is None or self.create(event)
        elif isinstance(event, events.UpdateEvent):
            return self.update is None or self.update(event)
        elif isinstance(event, events.DeleteEvent):
            return self.delete is None or self.delete(event)
        elif isinstance(event, events.GenericEvent):
            return self.generic is None or self.generic(event)
        else:
            raise TypeError(f"Unsupported event: {event!r}")


class ResourceVersionChanged(Funcs):
    """
    Skip the updates that change nothing, e.g. the periodic re-deliveries.
    """

    def __init__(self) -> None:
        super().__init__(update=self._check)

    @staticmethod
    def _check(event: events.UpdateEvent) -> bool:
        old_version = bodies.get_version(event.old)
        new_version = bodies.get_version(event.new)
        if old_version is None or new_version is None:
            return True
        return old_version != new_version


class GenerationChanged(Funcs):
    """
    Skip the updates of the metadata & status, i.e. when the spec is the same.

    The generation is only incremented by the store on the spec's changes.
    Objects without the generation are not filtered.
    """

    def __init__(self) -> None:
        super().__init__(update=self._check)

    @staticmethod
    def _check(event: events.UpdateEvent) -> bool:
        old_generation = bodies.get_generation(event.old)
        new_generation = bodies.get_generation(event.new)
        if old_generation is None or new_generation is None:
            return True
        return old_generation != new_generation


class LabelsMatch:
    """
    Only the objects with all the specified labels (with the exact values).

    For the updates, either the old or the new state must match:
    otherwise, an object would never be reconciled when it loses the labels.
    """

    def __init__(self, labels: bodies.Labels) -> None:
        super().__init__()
        self.labels = dict(labels)

    def __repr__(self) -> str:
        return f'{self.__class__.__name__}({self.labels!r})'

    def __call__(self, event: events.Event) -> bool:
        if isinstance(event, events.UpdateEvent):
            return (bodies.match_labels(event.old, self.labels) or
                    bodies.match_labels(event.new, self.labels))
        return bodies.match_labels(event.body, self.labels)


def all_of(*predicates: Predicate) -> Predicate:
    def all_of_fn(event: events.Event) -> bool:
        return all(predicate(event) for predicate in predicates)
    return all_of_fn


def any_of(*predicates: Predicate) -> Predicate:
    def any_of_fn(event: events.Event) -> bool:
        return any(predicate(event) for predicate in predicates)
    return any_of_fn


def not_(predicate: Predicate) -> Predicate:
    def not_fn(event: events.Event) -> bool:
        return not predicate(event)
    return not_fn
