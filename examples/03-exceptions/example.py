import asyncio
import collections

import konverge
from konverge.testing import FakeStore

EXAMPLE = konverge.Kind(group='konverge.dev', version='v1', kind='KonvergeExample')

attempts: "collections.Counter[konverge.ObjectKey]" = collections.Counter()


class MyException(Exception):
    pass


def eventual_success_with_few_failures(key: konverge.ObjectKey) -> konverge.Result:
    attempts[key] += 1
    if attempts[key] < 4:  # 1, 2, 3 fail with a growing backoff, 4 succeeds
        raise MyException("An error that is supposed to be recoverable.")
    return konverge.Result(requeue_after=2.0)  # and check again in 2 seconds


async def main() -> None:
    settings = konverge.ManagerSettings()
    settings.queueing.base_delay = 0.1
    settings.queueing.max_delay = 1.0

    store = FakeStore()
    manager = konverge.Manager(konverge.Config(server='memory://', store=store), settings=settings)
    controller = manager.new_controller('examples', konverge.ReconcilerFunc(eventual_success_with_few_failures))
    controller.watch(konverge.KindSource(EXAMPLE), konverge.EnqueueHandler())

    await store.create(store.resource_for(EXAMPLE), {
        'apiVersion': EXAMPLE.api_version,
        'kind': EXAMPLE.kind,
        'metadata': {'namespace': 'default', 'name': 'kex-1'},
    })

    stop = asyncio.Event()
    asyncio.get_running_loop().call_later(5.0, stop.set)
    await manager.start(stop)
    print(f"Attempts: {dict(attempts)}")


if __name__ == '__main__':
    konverge.configure(verbose=True)
    asyncio.run(main())
