"""
Reconcilers and their invocation.

A reconciler is the users' convergence logic for one kind: given a key,
it reads the desired state, compares it with the actual state, and acts.
It must be idempotent: it can be called any number of times for the same key,
including when nothing has changed.

The reconcilers can be sync or async, including their partials and wrappers.
The sync ones run in the settings' executor, off the event loop.
"""
import asyncio
import contextvars
import dataclasses
import functools
import inspect
from typing import Any, Callable, Coroutine, Optional, TypeVar, Union

from typing_extensions import Protocol, runtime_checkable

from konverge.structs import configuration, references

# A sync function returns the result, an async one returns a coroutine of it.
_R = TypeVar('_R')
SyncOrAsync = Union[_R, Coroutine[None, None, _R]]

Invokable = Callable[..., SyncOrAsync[Optional[object]]]


@dataclasses.dataclass(frozen=True)
class Result:
    """
    What to do with the key after the reconciliation.

    With ``requeue_after`` set, the key is reconciled again after the delay,
    regardless of ``requeue``. With only ``requeue`` set, the key is
    re-added with the rate limiting (i.e. with a growing backoff).
    Otherwise, the key is done until the next change of the object.
    """
    requeue: bool = False
    requeue_after: float = 0


@runtime_checkable
class Reconciler(Protocol):

    def reconcile(self, key: references.ObjectKey) -> SyncOrAsync[Optional[Result]]:
        ...


class ReconcilerFunc:
    """
    A reconciler made of a plain function, sync or async.
    """

    def __init__(self, fn: Callable[[references.ObjectKey], SyncOrAsync[Optional[Result]]]) -> None:
        super().__init__()
        self.fn = fn

    def __repr__(self) -> str:
        return f'{self.__class__.__name__}({self.fn!r})'

    @property
    def reconcile(self) -> Callable[[references.ObjectKey], SyncOrAsync[Optional[Result]]]:
        return self.fn


async def reconcile(
        reconciler: Reconciler,
        key: references.ObjectKey,
        *,
        settings: Optional[configuration.ManagerSettings] = None,
) -> Result:
    """
    Reconcile one key and interpret the result: ``None`` means "all is fine".
    """
    result = await invoke(reconciler.reconcile, key, settings=settings)
    if result is None:
        return Result()
    elif isinstance(result, Result):
        return result
    else:
        raise TypeError(f"Reconcilers must return a Result or None, got {result!r}.")


async def invoke(
        fn: Invokable,
        *args: Any,
        settings: Optional[configuration.ManagerSettings] = None,
) -> Any:
    """
    Call a sync or async function without blocking the event loop.

    The sync functions get the caller's context variables. If cancelled
    while the thread is busy, the cancellation is delayed until the thread
    finishes, and only then re-raised: the thread itself cannot be stopped,
    and it must not keep occupying the pool unnoticed.
    """
    if is_async_fn(fn):
        result = await fn(*args)  # type: ignore
    else:
        context = contextvars.copy_context()
        call = functools.partial(context.run, fn, *args)
        loop = asyncio.get_running_loop()
        executor = settings.execution.executor if settings is not None else None
        future = loop.run_in_executor(executor, call)
        postponed: Optional[asyncio.CancelledError] = None
        while not future.done():
            try:
                await asyncio.shield(future)
            except asyncio.CancelledError as e:
                postponed = e
        if postponed is not None:
            raise postponed
        result = future.result()

    return result


def is_async_fn(
        fn: Optional[Invokable],
) -> bool:
    if fn is None:
        return False
    elif isinstance(fn, functools.partial):
        return is_async_fn(fn.func)
    elif hasattr(fn, '__wrapped__'):
        return is_async_fn(fn.__wrapped__)
    else:
        return inspect.iscoroutinefunction(fn)
