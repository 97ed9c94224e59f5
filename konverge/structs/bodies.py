"""
All the structures coming from/to the remote object store.

The objects are dicts or dict-like mappings, as decoded from the store's
wire format. The framework only relies on a few metadata fields: the name,
the namespace, the resource version, the generation, the labels, and
the owner references. All other fields are the users' business.

The typed dicts below declare only those fields which the framework reads;
the reconcilers are free to use any other fields of the same dicts.
"""
from typing import Any, List, Mapping, Optional, Union

from typing_extensions import Literal, TypedDict

from konverge.structs import references

Labels = Mapping[str, str]

# The listed objects are re-streamed as events of no type (``None``).
RawInputType = Literal[None, 'ADDED', 'MODIFIED', 'DELETED', 'ERROR']
RawEventType = Literal[None, 'ADDED', 'MODIFIED', 'DELETED']


class RawOwnerReference(TypedDict, total=False):
    apiVersion: str
    kind: str
    name: str
    uid: str
    controller: bool


class RawMeta(TypedDict, total=False):
    uid: str
    name: str
    namespace: str
    labels: Labels
    annotations: Mapping[str, str]
    ownerReferences: List[RawOwnerReference]
    resourceVersion: str
    generation: int
    deletionTimestamp: str


class RawBody(TypedDict, total=False):
    apiVersion: str
    kind: str
    metadata: RawMeta
    spec: Mapping[str, Any]
    status: Mapping[str, Any]


# The in-stream errors reported by the store, e.g. "410 Gone" for expired versions.
class RawError(TypedDict, total=False):
    code: int
    reason: str
    message: str


# Whatever the transport yields, errors included.
class RawInput(TypedDict, total=True):
    type: RawInputType
    object: Union[RawBody, RawError]


# Only the changes of the objects, after the errors are handled.
class RawEvent(TypedDict, total=True):
    type: RawEventType
    object: RawBody


Body = Mapping[str, Any]


def get_name(body: Body) -> str:
    return body.get('metadata', {}).get('name', '')


def get_namespace(body: Body) -> Optional[str]:
    return body.get('metadata', {}).get('namespace') or None


def get_key(body: Body) -> references.ObjectKey:
    return references.ObjectKey(namespace=get_namespace(body), name=get_name(body))


def get_version(body: Body) -> Optional[str]:
    return body.get('metadata', {}).get('resourceVersion')


def get_generation(body: Body) -> Optional[int]:
    return body.get('metadata', {}).get('generation')


def get_labels(body: Body) -> Labels:
    return body.get('metadata', {}).get('labels', None) or {}


def match_labels(body: Body, labels: Optional[Labels]) -> bool:
    """ Check the equality-based label selector; no selector matches all. """
    if not labels:
        return True
    actual = get_labels(body)
    return all(key in actual and actual[key] == value for key, value in labels.items())
