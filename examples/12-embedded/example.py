import asyncio
import contextlib
import threading
import time

import konverge
from konverge.testing import FakeStore

EXAMPLE = konverge.Kind(group='konverge.dev', version='v1', kind='KonvergeExample')


class GreetingReconciler:
    def __init__(self, store: FakeStore) -> None:
        super().__init__()
        self.store = store
        self.known = set()

    async def reconcile(self, key: konverge.ObjectKey) -> None:
        try:
            await self.store.get(self.store.resource_for(EXAMPLE), key)
        except konverge.NotFoundError:
            if key in self.known:
                self.known.discard(key)
                print(f"Good bye, {key.name}!")
        else:
            if key not in self.known:
                self.known.add(key)
                print(f"Hello, {key.name}!")


def konverge_thread(
        store: FakeStore,
        loop: asyncio.AbstractEventLoop,
        ready_flag: threading.Event,
        stop_flag: threading.Event,
) -> None:
    asyncio.set_event_loop(loop)
    with contextlib.closing(loop):

        konverge.configure(verbose=True)  # log formatting

        manager = konverge.Manager(konverge.Config(server='memory://', store=store))
        controller = manager.new_controller('greetings', GreetingReconciler(store))
        controller.watch(konverge.KindSource(EXAMPLE), konverge.EnqueueHandler())
        loop.call_soon(ready_flag.set)
        loop.run_until_complete(manager.start(stop_flag))


def main(steps: int = 3) -> None:

    # The store is not thread-safe: all its calls go through the manager's loop.
    store = FakeStore()
    loop = asyncio.new_event_loop()

    # Start the manager and let it initialise.
    print("Starting the main app.")
    ready_flag = threading.Event()
    stop_flag = threading.Event()
    thread = threading.Thread(target=konverge_thread, kwargs=dict(
        store=store,
        loop=loop,
        stop_flag=stop_flag,
        ready_flag=ready_flag,
    ))
    thread.start()
    ready_flag.wait()

    # The manager is active: run the app's activity.
    resource = store.resource_for(EXAMPLE)
    for step in range(steps):
        print(f"Do the main app activity here. Step {step+1}/{steps}.")
        body = {
            'apiVersion': EXAMPLE.api_version,
            'kind': EXAMPLE.kind,
            'metadata': {'namespace': 'default', 'name': f'konverge-example-{step}'},
        }
        asyncio.run_coroutine_threadsafe(store.create(resource, body), loop).result()
        time.sleep(1.0)
        key = konverge.ObjectKey('default', f'konverge-example-{step}')
        asyncio.run_coroutine_threadsafe(store.delete(resource, key), loop).result()
        time.sleep(1.0)

    # Ask the manager to terminate gracefully.
    print("Exiting the main app.")
    stop_flag.set()
    thread.join()


if __name__ == '__main__':
    main()
