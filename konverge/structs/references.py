"""
References to the kinds of objects, to their API resources, and to objects.

There are three levels of referencing in the framework:

* A `Kind` is what the users declare in their code: an API group, a version,
  and a kind name as seen in the objects' ``apiVersion`` & ``kind`` fields.
* A `Resource` is what the watch transport needs to open a watch: the same
  group & version plus the plural name and the scope of the resource.
  It is resolved from a `Kind` by a mapper, usually once per type.
* An `ObjectKey` is what the controllers reconcile: a namespace and a name.
  It is deliberately free of any type information: a reconciler works on
  one single kind, so the type is implied by the controller.
"""
import dataclasses
from typing import Any, Iterator, List, Mapping, NamedTuple, Optional, Tuple

Namespace = Optional[str]  # None means the cluster scope or all namespaces


class ObjectKey(NamedTuple):
    """
    A key of a single logical object to reconcile.

    Used as-is in the work queues, so it must be hashable and comparable.
    Nothing but the namespace and the name should ever be put into it:
    all other fields would break the de-duplication of the pending work.
    """
    namespace: Namespace
    name: str

    def __str__(self) -> str:
        return f'{self.namespace}/{self.name}' if self.namespace else self.name


@dataclasses.dataclass(frozen=True)
class Kind:
    """
    A kind of objects as declared in their ``apiVersion`` & ``kind`` fields.

    The core API group is an empty string, so that ``apiVersion`` is just
    the version (e.g. ``"v1"``), as it is in the objects.
    """

    group: str
    version: str
    kind: str

    def __str__(self) -> str:
        return f'{self.kind}.{self.version}.{self.group}' if self.group else f'{self.kind}.{self.version}'

    @property
    def api_version(self) -> str:
        return f'{self.group}/{self.version}' if self.group else self.version

    @classmethod
    def from_body(cls, body: Mapping[str, Any]) -> "Kind":
        group, version = parse_api_version(body.get('apiVersion', ''))
        return cls(group=group, version=version, kind=body.get('kind', ''))


@dataclasses.dataclass(frozen=True)
class Resource:
    """
    A reference to a very specific resource of the remote store.

    It is the wire-level descriptor needed by the watch transport and
    the client. The kind is remembered for logging and for reverse mapping.
    """

    group: str
    version: str
    plural: str
    kind: Optional[str] = None
    namespaced: bool = True

    def __str__(self) -> str:
        return f'{self.plural}.{self.version}.{self.group}' if self.group else f'{self.plural}.{self.version}'

    @property
    def api_version(self) -> str:
        return f'{self.group}/{self.version}' if self.group else self.version


class OwnerReference(NamedTuple):
    """ A parsed entry of ``metadata.ownerReferences`` of a child object. """
    kind: Kind
    name: str
    uid: Optional[str]
    controller: bool


def parse_api_version(api_version: str) -> Tuple[str, str]:
    """
    Split the ``apiVersion`` field into the group & the version.

    The core API has no group: ``"v1"`` is parsed as ``("", "v1")``.
    """
    group, _, version = api_version.rpartition('/')
    return group, version


def iter_owner_references(body: Mapping[str, Any]) -> Iterator[OwnerReference]:
    refs: List[Mapping[str, Any]] = body.get('metadata', {}).get('ownerReferences', None) or []
    for ref in refs:
        group, version = parse_api_version(ref.get('apiVersion', ''))
        yield OwnerReference(
            kind=Kind(group=group, version=version, kind=ref.get('kind', '')),
            name=ref['name'],
            uid=ref.get('uid'),
            controller=bool(ref.get('controller', False)),
        )
