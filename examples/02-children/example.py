import asyncio

import konverge
from konverge.testing import FakeStore

PARENT = konverge.Kind(group='konverge.dev', version='v1', kind='KonvergeExample')
CHILD = konverge.Kind(group='konverge.dev', version='v1', kind='KonvergeChild')


class ParentReconciler:
    """
    Ensure every parent has exactly one child, re-created if deleted.
    """

    def inject_client(self, client: konverge.Client) -> None:
        self.client = client

    def inject_config(self, config: konverge.Config) -> None:
        self.mapper = config.store

    async def reconcile(self, key: konverge.ObjectKey) -> konverge.Result:
        parents = self.mapper.resource_for(PARENT)
        children = self.mapper.resource_for(CHILD)
        try:
            parent = await self.client.get(parents, key)
        except konverge.NotFoundError:
            return konverge.Result()  # deleted meanwhile; the children are garbage

        # The cache lags behind the writes: a just created child can be unseen yet.
        child_key = konverge.ObjectKey(key.namespace, f"{key.name}-child")
        try:
            await self.client.get(children, child_key)
        except konverge.NotFoundError:
            pass
        else:
            return konverge.Result()

        # Make it our child: the namespace, the name, the owner references.
        doc = {
            'apiVersion': CHILD.api_version,
            'kind': CHILD.kind,
            'metadata': {
                'namespace': child_key.namespace,
                'name': child_key.name,
                'ownerReferences': [{
                    'apiVersion': PARENT.api_version,
                    'kind': PARENT.kind,
                    'name': parent['metadata']['name'],
                    'uid': parent['metadata']['uid'],
                    'controller': True,
                }],
            },
            'spec': {'field': parent.get('spec', {}).get('field', 'default-value')},
        }
        try:
            await self.client.create(children, doc)
        except konverge.ConflictError:
            pass  # created already, the cache has not seen it yet
        else:
            print(f"Created a child for {key}.")
        return konverge.Result()


async def main() -> None:
    store = FakeStore()
    manager = konverge.Manager(konverge.Config(server='memory://', store=store))
    controller = manager.new_controller('parents', ParentReconciler())
    controller.watch(konverge.KindSource(PARENT), konverge.EnqueueHandler(),
                     konverge.GenerationChanged())
    controller.watch(konverge.KindSource(CHILD), konverge.EnqueueOwnerHandler(PARENT, is_controller=True))

    async def simulate(stop: asyncio.Event) -> None:
        await store.create(store.resource_for(PARENT), {
            'apiVersion': PARENT.api_version,
            'kind': PARENT.kind,
            'metadata': {'namespace': 'default', 'name': 'kex-1'},
            'spec': {'field': 'value'},
        })
        await asyncio.sleep(0.5)
        print("Deleting the child; it will be re-created.")
        await store.delete(store.resource_for(CHILD), konverge.ObjectKey('default', 'kex-1-child'))
        await asyncio.sleep(0.5)
        stop.set()

    stop = asyncio.Event()
    await asyncio.gather(manager.start(stop), simulate(stop))


if __name__ == '__main__':
    konverge.configure(verbose=True)
    asyncio.run(main())
