import asyncio
import io
import logging
import re
import time

import pytest

from konverge.engines.loggers import ObjectPrefixingTextFormatter, configure
from konverge.reactor.caching import Cache
from konverge.structs.configuration import ManagerSettings
from konverge.structs.references import Kind, ObjectKey, Resource
from konverge.structs.schemes import Scheme
from konverge.testing import FakeStore


def pytest_configure(config):
    # Warnings from the testing tools out of our control should not fail the tests.
    config.addinivalue_line('filterwarnings', 'ignore:.*async_timeout.*:DeprecationWarning')


@pytest.fixture()
def kind():
    """ The kind used in the tests. Usually stored in a fake store, so it does not matter. """
    return Kind('konverge.dev', 'v1', 'KonvergeExample')


@pytest.fixture()
def owner_kind():
    return Kind('konverge.dev', 'v1', 'KonvergeOwner')


@pytest.fixture()
def resource(kind):
    """ The resource of the kind used in the tests. """
    return Resource('konverge.dev', 'v1', 'konvergeexamples', kind=kind.kind, namespaced=True)


@pytest.fixture()
def owner_resource(owner_kind):
    return Resource('konverge.dev', 'v1', 'konvergeowners', kind=owner_kind.kind, namespaced=True)


@pytest.fixture()
def settings():
    settings = ManagerSettings()
    settings.watching.reconnect_backoff = 0.01
    settings.queueing.base_delay = 0.01
    settings.queueing.max_delay = 0.1
    return settings


@pytest.fixture()
def scheme(kind, owner_kind):
    scheme = Scheme()
    scheme.register(kind)
    scheme.register(owner_kind)
    return scheme


@pytest.fixture()
def store(resource, owner_resource):
    return FakeStore([resource, owner_resource])


@pytest.fixture()
def cache(store, scheme, settings):
    return Cache(store, scheme=scheme, mapper=store, settings=settings)


@pytest.fixture()
def stop():
    return asyncio.Event()


@pytest.fixture()
async def cache_task(cache, stop):
    """ A running cache, stopped after the test. """
    task = asyncio.create_task(cache.start(stop))
    try:
        yield task
    finally:
        stop.set()
        await asyncio.wait_for(task, timeout=1.0)


@pytest.fixture()
def make_body(kind):
    """ A function to make the objects' bodies of the tested kind. """
    def make_body_fn(name, namespace='ns', *, labels=None, owners=(), spec=None):
        metadata = {'name': name}
        if namespace is not None:
            metadata['namespace'] = namespace
        if labels is not None:
            metadata['labels'] = dict(labels)
        if owners:
            metadata['ownerReferences'] = list(owners)
        return {
            'apiVersion': kind.api_version,
            'kind': kind.kind,
            'metadata': metadata,
            'spec': spec if spec is not None else {},
        }
    return make_body_fn


@pytest.fixture()
def eventually():
    """
    A function to wait until a condition is met (or to fail on timeout).

    The framework's activities happen in the background tasks, so the tests
    have to give them some time to proceed before checking the outcomes.
    """
    async def eventually_fn(condition, timeout=1.0, interval=0.01):
        __traceback_hide__ = True
        deadline = time.monotonic() + timeout
        while not condition():
            if time.monotonic() > deadline:
                raise AssertionError(f"The condition is not met in {timeout}s.")
            await asyncio.sleep(interval)
    return eventually_fn


@pytest.fixture()
def key():
    return ObjectKey('ns', 'name1')



@pytest.fixture()
def timer():
    return Timer()


class Timer:
    """
    A stopwatch for the code blocks, both sync and async::

        async with timer:
            await queue.get()
        assert timer.seconds < 0.5

    While inside the block, ``seconds`` is the time elapsed so far.
    """

    def __init__(self):
        super().__init__()
        self.started = None
        self.stopped = None

    def __repr__(self):
        return f'<Timer: {self.seconds}s>'

    @property
    def seconds(self):
        if self.started is None:
            return None
        return (self.stopped or time.perf_counter()) - self.started

    def __enter__(self):
        self.started, self.stopped = time.perf_counter(), None
        return self

    def __exit__(self, *_):
        self.stopped = time.perf_counter()

    async def __aenter__(self):
        return self.__enter__()

    async def __aexit__(self, *exc_info):
        self.__exit__(*exc_info)


@pytest.fixture()
def logstream(caplog):
    """
    The final formatted log output, with the objects' prefixes, as a text stream.

    The records in ``caplog`` are not formatted by our formatters, so the
    prefixes can only be checked in a stream of a real handler.
    """
    root = logging.getLogger()
    existing = root.handlers[:]
    configure(verbose=True)  # the levels of all loggers, as in the real apps
    for extra in [h for h in root.handlers if h not in existing]:
        root.removeHandler(extra)  # only the stderr output, not needed here

    stream = io.StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(ObjectPrefixingTextFormatter('prefix %(message)s'))
    root.addHandler(handler)
    try:
        with caplog.at_level(logging.DEBUG):
            yield stream
    finally:
        root.removeHandler(handler)


@pytest.fixture()
def assert_logs(caplog):
    """
    A function to check that the messages are logged in the given order.

    Every pattern must match some message, each one after the previous match.
    Unrelated messages in between are ignored. No message may match any of
    the ``prohibited`` patterns.
    """
    def assert_logs_fn(patterns, prohibited=()):
        __traceback_hide__ = True
        messages = list(caplog.messages)

        for pattern in prohibited:
            offending = [message for message in messages if re.search(pattern, message)]
            if offending:
                raise AssertionError(f"Prohibited pattern {pattern!r} is logged: {offending!r}")

        position = 0
        for pattern in patterns:
            for idx in range(position, len(messages)):
                if re.search(pattern, messages[idx]):
                    position = idx + 1
                    break
            else:
                raise AssertionError(f"Pattern {pattern!r} is not logged after #{position}: {messages!r}")

    return assert_logs_fn
