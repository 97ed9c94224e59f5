import asyncio

import konverge
from konverge.testing import FakeStore

EXAMPLE = konverge.Kind(group='konverge.dev', version='v1', kind='KonvergeExample')


def reconcile(key: konverge.ObjectKey) -> None:
    print(f"And here we are! Reconciling: {key}")


async def main() -> None:
    store = FakeStore()
    manager = konverge.Manager(konverge.Config(server='memory://', store=store))
    controller = manager.new_controller('examples', konverge.ReconcilerFunc(reconcile))
    controller.watch(konverge.KindSource(EXAMPLE), konverge.EnqueueHandler())

    resource = store.resource_for(EXAMPLE)
    await store.create(resource, {
        'apiVersion': EXAMPLE.api_version,
        'kind': EXAMPLE.kind,
        'metadata': {'namespace': 'default', 'name': 'kex-1'},
    })

    stop = asyncio.Event()
    asyncio.get_running_loop().call_later(1.0, stop.set)
    await manager.start(stop)


if __name__ == '__main__':
    konverge.configure(verbose=True)
    asyncio.run(main())
