"""
The events as delivered from the sources to the event handlers.

The raw watch-events of the store (``ADDED``/``MODIFIED``/``DELETED``) are
converted by the cache into these high-level events, which carry the objects
as they are known to the cache: e.g., an update event has both the old and
the new states, even though the store only sends the new one.

The generic event is never produced by the cache: it is for the sources
fed from outside of the store (webhooks, timers, polling, etc).
"""
import dataclasses
from typing import Union

from konverge.structs import bodies, references


@dataclasses.dataclass(frozen=True)
class CreateEvent:
    object: bodies.Body

    @property
    def body(self) -> bodies.Body:
        return self.object

    @property
    def key(self) -> references.ObjectKey:
        return bodies.get_key(self.object)


@dataclasses.dataclass(frozen=True)
class UpdateEvent:
    old: bodies.Body
    new: bodies.Body

    @property
    def body(self) -> bodies.Body:
        return self.new

    @property
    def key(self) -> references.ObjectKey:
        return bodies.get_key(self.new)


@dataclasses.dataclass(frozen=True)
class DeleteEvent:
    object: bodies.Body
    final_state_unknown: bool = False
    """
    Set if the deletion was not seen in the watch-stream, but was detected
    on re-listing: the object is the last state known to the cache,
    which can be outdated (the actual final state is never seen).
    """

    @property
    def body(self) -> bodies.Body:
        return self.object

    @property
    def key(self) -> references.ObjectKey:
        return bodies.get_key(self.object)


@dataclasses.dataclass(frozen=True)
class GenericEvent:
    object: bodies.Body

    @property
    def body(self) -> bodies.Body:
        return self.object

    @property
    def key(self) -> references.ObjectKey:
        return bodies.get_key(self.object)


Event = Union[CreateEvent, UpdateEvent, DeleteEvent, GenericEvent]
