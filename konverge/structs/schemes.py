"""
A scheme: the registry of the object kinds known to the framework.

The users refer to the watched and owning types in their own terms:
as `Kind` instances, or as any hashable aliases registered in the scheme
(e.g. kind names like ``"ReplicaSet"``, or the users' own model classes).
The scheme resolves them to the canonical `Kind` once, at setup time.
"""
from typing import Dict, Hashable, Iterator, Optional

from konverge.structs import references


class SchemeError(LookupError):
    """ Raised when a type cannot be resolved to a known kind. """


class Scheme:

    def __init__(self) -> None:
        super().__init__()
        self._kinds: Dict[Hashable, references.Kind] = {}

    def __repr__(self) -> str:
        return f'<{self.__class__.__name__}: {sorted(set(map(str, self._kinds.values())))!r}>'

    def __iter__(self) -> Iterator[references.Kind]:
        return iter(set(self._kinds.values()))

    def __contains__(self, __type: Hashable) -> bool:
        try:
            self.kind_for(__type)
        except SchemeError:
            return False
        else:
            return True

    def register(self, kind: references.Kind, *aliases: Hashable) -> None:
        """
        Register a kind, optionally with extra aliases to refer to it.

        The plain kind name (e.g. ``"Pod"``) is registered as an alias too,
        unless it is already taken by another kind of another group/version.
        """
        self._kinds[kind] = kind
        self._kinds.setdefault(kind.kind, kind)
        for alias in aliases:
            existing = self._kinds.get(alias)
            if existing is not None and existing != kind:
                raise SchemeError(f"The alias {alias!r} is already registered for {existing}.")
            self._kinds[alias] = kind

    def kind_for(self, __type: Hashable) -> references.Kind:
        """
        Resolve a user-side type to a kind.

        A `Kind` resolves to itself even if not registered: the scheme is
        only needed to resolve the aliases, the kinds are always explicit.
        """
        if isinstance(__type, references.Kind):
            return __type
        if isinstance(__type, references.Resource):
            if __type.kind is None:
                raise SchemeError(f"The resource {__type} has no kind to resolve.")
            return references.Kind(group=__type.group, version=__type.version, kind=__type.kind)
        try:
            return self._kinds[__type]
        except KeyError:
            raise SchemeError(f"The type {__type!r} is not registered in the scheme.") from None

    def get(self, __type: Hashable) -> Optional[references.Kind]:
        try:
            return self.kind_for(__type)
        except SchemeError:
            return None
