"""
Object store errors.

The underlying store's client library can be anything. We cannot rely on
embedding its exceptions all over the code in the framework. Hence, we have
our own hierarchy of exceptions, which the store's adapters must raise
(with the underlying errors chained as the causes).

Some selected reasons of the errors are made into their own classes,
so that they could be intercepted and handled in other places of the framework
or in the reconcilers. All other reasons are raised as the base error class.
"""
from typing import Any, Mapping, Optional


class StoreError(Exception):

    def __init__(
            self,
            message: Optional[str] = None,
            *,
            code: Optional[int] = None,
            details: Optional[Mapping[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self._code = code
        self._details = details

    @property
    def code(self) -> Optional[int]:
        return self._code

    @property
    def details(self) -> Optional[Mapping[str, Any]]:
        return self._details


class NotFoundError(StoreError):
    pass


class ConflictError(StoreError):
    pass


class MappingError(StoreError):
    """ Raised when a kind cannot be mapped to a resource of the store. """


class WatchingError(StoreError):
    """
    Raised when an unexpected error happens in the watch-stream.
    """
