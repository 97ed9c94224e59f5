"""
The connection information for the remote object store.

The framework does not talk to the store itself: all the actual talking
is done by the store's client and watch transport, which are external.
The config is only the root of the dependencies: the factories of
the clients and the caches get it and build their objects from it.
"""
import dataclasses
from typing import Any, Mapping, Optional


@dataclasses.dataclass(frozen=True)
class ConnectionInfo:
    """
    A single endpoint with specific credentials and connection flags to use.
    """
    server: str  # e.g. "https://localhost:443"
    store: Optional[Any] = None  # an already connected store object, if any
    default_namespace: Optional[str] = None  # used for cluster objects' namespace-scoped requests
    token: Optional[str] = None
    insecure: Optional[bool] = None
    extras: Mapping[str, Any] = dataclasses.field(default_factory=dict)


Config = ConnectionInfo
