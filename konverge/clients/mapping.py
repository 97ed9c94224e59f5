"""
Mapping of the declared kinds to the store's resources.

The store's discovery is out of the framework's scope: the mapper gets
the resources either explicitly, or guesses them from the kinds' names
(as the lowercased plural: ``ReplicaSet`` -> ``replicasets``),
which is sufficient for most of the conventional naming schemes.
"""
from typing import Dict, Iterable

from konverge.clients import errors
from konverge.structs import references


class StaticMapper:

    def __init__(
            self,
            resources: Iterable[references.Resource] = (),
            *,
            guess: bool = True,
            namespaced: bool = True,
    ) -> None:
        super().__init__()
        self._guess = guess
        self._namespaced = namespaced
        self._resources: Dict[references.Kind, references.Resource] = {}
        for resource in resources:
            self.add(resource)

    def add(self, resource: references.Resource) -> None:
        if resource.kind is None:
            raise errors.MappingError(f"The resource {resource} has no kind to map from.")
        kind = references.Kind(group=resource.group, version=resource.version, kind=resource.kind)
        self._resources[kind] = resource

    def resource_for(self, kind: references.Kind) -> references.Resource:
        try:
            return self._resources[kind]
        except KeyError:
            pass
        if not self._guess or not kind.kind:
            raise errors.MappingError(f"No resource is known for {kind}.")
        return references.Resource(
            group=kind.group,
            version=kind.version,
            plural=pluralize(kind.kind),
            kind=kind.kind,
            namespaced=self._namespaced,
        )


def pluralize(kind: str) -> str:
    lowered = kind.lower()
    if lowered.endswith(('s', 'x', 'z', 'ch', 'sh')):
        return f'{lowered}es'
    elif lowered.endswith('y') and lowered[-2:-1] not in 'aeiou':
        return f'{lowered[:-1]}ies'
    else:
        return f'{lowered}s'
