import asyncio

import pytest

from konverge.clients.api import Client, Mapper, WatchTransport
from konverge.clients.errors import ConflictError, NotFoundError
from konverge.structs.references import Kind, ObjectKey
from konverge.testing import FakeStore


async def collect(stream, count):
    items = []
    async for item in stream:
        items.append(item)
        if len(items) >= count:
            break
    await stream.aclose()
    return items


def test_protocols(store):
    assert isinstance(store, Client)
    assert isinstance(store, Mapper)
    assert isinstance(store, WatchTransport)


def test_mapping(store, kind, resource):
    assert store.resource_for(kind) == resource


def test_mapping_guesses_the_unknown_kinds(store):
    resource = store.resource_for(Kind('unknown.dev', 'v1', 'Policy'))
    assert resource.plural == 'policies'
    assert resource.namespaced


async def test_creation(store, resource, make_body):
    created = await store.create(resource, make_body('name1'))
    assert created['metadata']['uid']
    assert created['metadata']['generation'] == 1
    assert created['metadata']['resourceVersion'] == '1'
    fetched = await store.get(resource, ObjectKey('ns', 'name1'))
    assert fetched == created


async def test_creation_conflicts(store, resource, make_body):
    await store.create(resource, make_body('name1'))
    with pytest.raises(ConflictError) as err:
        await store.create(resource, make_body('name1'))
    assert err.value.code == 409


async def test_stored_objects_are_isolated(store, resource, make_body):
    created = await store.create(resource, make_body('name1'))
    created['spec']['x'] = 1
    fetched = await store.get(resource, ObjectKey('ns', 'name1'))
    assert fetched['spec'] == {}


async def test_updates_bump_the_generation_on_spec_changes(store, resource, make_body):
    created = await store.create(resource, make_body('name1'))
    updated1 = await store.update(resource, dict(created, status={'ok': True}))
    updated2 = await store.update(resource, dict(updated1, spec={'x': 1}))
    assert updated1['metadata']['generation'] == 1
    assert updated2['metadata']['generation'] == 2
    assert updated2['metadata']['uid'] == created['metadata']['uid']
    assert int(updated2['metadata']['resourceVersion']) > int(updated1['metadata']['resourceVersion'])


async def test_updates_of_outdated_versions_conflict(store, resource, make_body):
    created = await store.create(resource, make_body('name1'))
    await store.update(resource, dict(created, spec={'x': 1}))
    with pytest.raises(ConflictError):
        await store.update(resource, dict(created, spec={'x': 2}))


async def test_updates_of_absent_objects(store, resource, make_body):
    with pytest.raises(NotFoundError):
        await store.update(resource, make_body('name1'))


async def test_deletion(store, resource, make_body):
    await store.create(resource, make_body('name1'))
    await store.delete(resource, ObjectKey('ns', 'name1'))
    with pytest.raises(NotFoundError) as err:
        await store.get(resource, ObjectKey('ns', 'name1'))
    assert err.value.code == 404
    with pytest.raises(NotFoundError):
        await store.delete(resource, ObjectKey('ns', 'name1'))


async def test_listing(store, resource, owner_resource, make_body):
    await store.create(resource, make_body('name1', labels={'app': 'x'}))
    await store.create(resource, make_body('name2', namespace='other', labels={'app': 'y'}))
    await store.create(owner_resource, make_body('owner1'))

    all_names = {obj['metadata']['name'] for obj in await store.list(resource)}
    ns_names = {obj['metadata']['name'] for obj in await store.list(resource, 'ns')}
    x_names = {obj['metadata']['name'] for obj in await store.list(resource, labels={'app': 'x'})}
    assert all_names == {'name1', 'name2'}
    assert ns_names == {'name1'}
    assert x_names == {'name1'}

    objs, version = await store.list_objs(resource, None)
    assert len(objs) == 2
    assert version == '3'


async def test_watching_from_a_version(store, resource, owner_resource, make_body):
    await store.create(resource, make_body('name1'))
    _, version = await store.list_objs(resource, None)
    await store.create(owner_resource, make_body('owner1'))
    await store.create(resource, make_body('name2'))
    await store.delete(resource, ObjectKey('ns', 'name1'))

    items = await collect(store.watch_objs(resource, None, version), 2)
    assert [(item['type'], item['object']['metadata']['name']) for item in items] == [
        ('ADDED', 'name2'),
        ('DELETED', 'name1'),
    ]


async def test_watching_of_a_namespace(store, resource, make_body):
    stream = store.watch_objs(resource, 'ns')
    task = asyncio.create_task(collect(stream, 1))
    await asyncio.sleep(0.01)
    assert store.watchers == 1

    await store.create(resource, make_body('name1', namespace='other'))
    await store.create(resource, make_body('name2'))
    items = await asyncio.wait_for(task, timeout=1)
    assert items[0]['object']['metadata']['name'] == 'name2'
    assert store.watchers == 0


async def test_disconnects_end_the_streams(store, resource):
    task = asyncio.create_task(collect(store.watch_objs(resource, None), 10))
    await asyncio.sleep(0.01)
    store.disconnect()
    items = await asyncio.wait_for(task, timeout=1)
    assert items == []


async def test_expiration(store, resource, make_body):
    await store.create(resource, make_body('name1'))
    task = asyncio.create_task(collect(store.watch_objs(resource, None, '1'), 1))
    await asyncio.sleep(0.01)
    store.expire()
    items = await asyncio.wait_for(task, timeout=1)
    assert items[0]['type'] == 'ERROR'
    assert items[0]['object']['code'] == 410

    items = await collect(store.watch_objs(resource, None, '0'), 1)
    assert items[0]['type'] == 'ERROR'
    assert items[0]['object']['code'] == 410


async def test_drops_are_silent(store, resource, make_body):
    await store.create(resource, make_body('name1'))
    task = asyncio.create_task(collect(store.watch_objs(resource, None), 1))
    await asyncio.sleep(0.01)
    store.drop(resource, ObjectKey('ns', 'name1'))
    await asyncio.sleep(0.01)
    assert not task.done()
    assert await store.list(resource) == []
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task


def test_repr(store):
    assert repr(store) == '<FakeStore: 0 objects, version 0>'


def test_cluster_scoped_stores(resource):
    store = FakeStore([resource], namespaced=False)
    assert store.resource_for(Kind('unknown.dev', 'v1', 'Node')).namespaced is False
