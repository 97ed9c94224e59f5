"""
The stop-flags of the managers, the controllers, the caches, the sources.

A flag is one-shot and level-triggered: once raised, it stays raised.
Besides the asyncio events & futures, the thread-level events & futures are
accepted too, so that a manager running in a thread can be stopped from
another thread (e.g. by the application which embeds it, or by the tests).
"""
import asyncio
import concurrent.futures
import threading
from typing import Any, Dict, Optional, Set, Union

from konverge.utilities import aiotasks

Flag = Union[aiotasks.Future, asyncio.Event, concurrent.futures.Future, threading.Event]


async def wait_flag(
        flag: Optional[Flag],
) -> Any:
    """
    Wait until the flag is raised; a missing flag is never raised.
    """
    if flag is None:
        await asyncio.Event().wait()
    elif isinstance(flag, asyncio.Future):
        return await asyncio.shield(flag)  # the caller's cancellation must not cancel the flag
    elif isinstance(flag, concurrent.futures.Future):
        return await asyncio.shield(asyncio.wrap_future(flag))  # never cancel the flag itself
    elif isinstance(flag, asyncio.Event):
        return await flag.wait()
    elif isinstance(flag, threading.Event):
        return await _wait_threading_event(flag)
    else:
        raise TypeError(f"Unsupported type of a flag: {flag!r}")


async def raise_flag(
        flag: Optional[Flag],
) -> None:
    if flag is None:
        return
    elif isinstance(flag, (asyncio.Future, concurrent.futures.Future)):
        if not flag.done():
            flag.set_result(None)
    elif isinstance(flag, (asyncio.Event, threading.Event)):
        flag.set()
    else:
        raise TypeError(f"Unsupported type of a flag: {flag!r}")


def check_flag(
        flag: Optional[Flag],
) -> Optional[bool]:
    """
    Check if the flag is raised; ``None`` for a missing flag.
    """
    if flag is None:
        return None
    elif isinstance(flag, (asyncio.Future, concurrent.futures.Future)):
        return flag.done()
    elif isinstance(flag, (asyncio.Event, threading.Event)):
        return flag.is_set()
    else:
        raise TypeError(f"Unsupported type of a flag: {flag!r}")


# One waiter thread per threading flag, shared by all coroutines waiting for it.
# The thread exits only when the flag is raised, so it must not be multiplied.
_watchers_lock = threading.Lock()
_watchers: Dict[threading.Event, Set[aiotasks.Future]] = {}


async def _wait_threading_event(flag: threading.Event) -> bool:
    if flag.is_set():
        return True
    future: aiotasks.Future = asyncio.get_running_loop().create_future()
    with _watchers_lock:
        futures = _watchers.get(flag)
        if futures is None:
            futures = _watchers[flag] = set()
            thread = threading.Thread(target=_watch_threading_event, args=(flag,),
                                      name=f'flag waiter {id(flag):#x}', daemon=True)
            thread.start()
        futures.add(future)
    try:
        return await future
    finally:
        with _watchers_lock:
            futures.discard(future)


def _watch_threading_event(flag: threading.Event) -> None:
    flag.wait()
    with _watchers_lock:
        futures = list(_watchers.pop(flag, ()))
    for future in futures:
        try:
            future.get_loop().call_soon_threadsafe(_resolve, future)
        except RuntimeError:
            pass  # the loop is closed, nobody waits anymore


def _resolve(future: aiotasks.Future) -> None:
    if not future.done():
        future.set_result(True)
