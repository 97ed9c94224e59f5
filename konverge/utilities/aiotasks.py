"""
Orchestration of the background tasks: the informers, the workers, the components.

All long-running activities of the framework run as separate asyncio tasks,
which are started in one place and awaited (or stopped) in another, often much
later. These helpers make the errors visible as soon as they happen, and make
the stopping sequences uniform: ask nicely first, then cancel.

Only tasks are supported, not arbitrary awaitables: the tasks are cancelled,
and the other awaitables are not necessarily cancellable.
"""
import asyncio
import logging
from typing import TYPE_CHECKING, Any, Collection, Coroutine, Optional, Set, Tuple, Union

# Tasks & futures are generic only for the type checkers, not at runtime.
if TYPE_CHECKING:
    Future = asyncio.Future[Any]
    Task = asyncio.Task[Any]
else:
    Future = asyncio.Future
    Task = asyncio.Task

Logger = Union[logging.Logger, logging.LoggerAdapter]


async def guard(
        coro: Coroutine[Any, Any, Any],
        name: str,
        *,
        finishable: bool = False,
        cancellable: bool = False,
        logger: Optional[Logger] = None,
) -> None:
    """
    Log the outcome of a background task the moment it happens.

    The failures are logged with the traceback and re-raised, so that whoever
    awaits the task later still gets the error. The exits are warnings unless
    the task is expected to finish (e.g. a worker on the queue's shutdown).
    The cancellations are logged unless the task is expected to be cancelled.
    """
    title = name[:1].upper() + name[1:]
    try:
        await coro
    except asyncio.CancelledError:
        if logger is not None and not cancellable:
            logger.debug(f"{title} is cancelled.")
        raise
    except Exception as e:
        if logger is not None:
            logger.exception(f"{title} has failed: {e}")
        raise
    else:
        if logger is not None and not finishable:
            logger.warning(f"{title} has finished unexpectedly.")


def create_guarded_task(
        coro: Coroutine[Any, Any, Any],
        name: str,
        *,
        finishable: bool = False,
        cancellable: bool = False,
        logger: Optional[Logger] = None,
) -> Task:
    """ Start a named background task with its outcome logged, see :func:`guard`. """
    return asyncio.create_task(
        guard(coro, name, finishable=finishable, cancellable=cancellable, logger=logger),
        name=name,
    )


async def wait(
        tasks: Collection[Task],
        *,
        timeout: Optional[float] = None,
        return_when: Any = asyncio.ALL_COMPLETED,
) -> Tuple[Set[Task], Set[Task]]:
    """
    Same as :func:`asyncio.wait`, but an empty collection is fine (and instant).
    """
    if not tasks:
        return set(), set()
    return await asyncio.wait(tasks, timeout=timeout, return_when=return_when)


async def stop(
        tasks: Collection[Task],
        *,
        title: str,
        quiet: bool = False,
        cancelled: bool = False,
        logger: Optional[Logger] = None,
) -> Tuple[Set[Task], Set[Task]]:
    """
    Cancel the tasks and wait until they are actually finished.

    There is no timeout: the tasks are either finished, or this routine itself
    is cancelled while waiting (which is logged and re-raised). With ``cancelled``,
    the caller declares that it is already in the cancelling mode, so a repeated
    cancellation is logged as such; the behaviour is the same.
    """
    title = title[:1].upper() + title[1:]

    if not tasks:
        if logger is not None and not quiet:
            logger.debug(f"{title} tasks stopping is skipped: no tasks given.")
        return set(), set()

    for task in tasks:
        task.cancel()

    try:
        done, pending = await wait(tasks)
    except asyncio.CancelledError:
        if logger is not None:
            left = [task for task in tasks if not task.done()]
            why = 'double-cancelling at stopping' if cancelled else 'cancelling at stopping'
            logger.debug(f"{title} tasks are not stopped: {why}; tasks left: {left!r}")
        raise

    if logger is not None and not quiet:
        why = 'cancelling normally' if cancelled else 'finishing normally'
        logger.debug(f"{title} tasks are stopped: {why}.")
    return done, pending


async def settle(
        tasks: Collection[Task],
        *,
        title: str,
        timeout: Optional[float] = None,
        logger: Optional[Logger] = None,
) -> Set[Task]:
    """
    Let the tasks exit on their own for some time, then cancel the stuck ones.

    The tasks must be already asked to exit by other means (e.g. a stop-flag).
    ``None`` as the timeout means waiting for as long as needed. Returns those
    tasks which did not exit in time and had to be cancelled.
    """
    try:
        _, pending = await wait(tasks, timeout=timeout)
        if pending and logger is not None:
            logger.warning(f"{title[:1].upper() + title[1:]} tasks did not exit in time,"
                           f" cancelling: {sorted(task.get_name() for task in pending)!r}")
        return pending
    finally:
        await stop(tasks, title=title, logger=logger, quiet=True, cancelled=True)


async def reraise(
        tasks: Collection[Task],
) -> None:
    """
    Escalate the first error of the finished tasks; the cancellations are not errors.
    """
    for task in tasks:
        if task.done() and not task.cancelled():
            exc = task.exception()
            if exc is not None:
                raise exc
