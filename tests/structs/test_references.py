import pytest

from konverge.structs.references import Kind, ObjectKey, OwnerReference, Resource, \
                                        iter_owner_references, parse_api_version


def test_key_is_hashable_and_comparable():
    key1 = ObjectKey('ns', 'name')
    key2 = ObjectKey(namespace='ns', name='name')
    assert key1 == key2
    assert hash(key1) == hash(key2)
    assert len({key1, key2}) == 1


@pytest.mark.parametrize('namespace, name, expected', [
    ('ns', 'name', 'ns/name'),
    (None, 'name', 'name'),
])
def test_key_rendering(namespace, name, expected):
    assert str(ObjectKey(namespace, name)) == expected


@pytest.mark.parametrize('api_version, expected', [
    ('v1', ('', 'v1')),
    ('apps/v1', ('apps', 'v1')),
    ('konverge.dev/v1beta1', ('konverge.dev', 'v1beta1')),
    ('', ('', '')),
])
def test_api_version_parsing(api_version, expected):
    assert parse_api_version(api_version) == expected


def test_kind_api_version_of_core_group():
    kind = Kind('', 'v1', 'Pod')
    assert kind.api_version == 'v1'
    assert str(kind) == 'Pod.v1'


def test_kind_api_version_of_named_group():
    kind = Kind('apps', 'v1', 'Deployment')
    assert kind.api_version == 'apps/v1'
    assert str(kind) == 'Deployment.v1.apps'


def test_kind_from_body():
    kind = Kind.from_body({'apiVersion': 'apps/v1', 'kind': 'ReplicaSet'})
    assert kind == Kind('apps', 'v1', 'ReplicaSet')


def test_resource_rendering():
    resource = Resource('apps', 'v1', 'deployments', kind='Deployment')
    assert resource.api_version == 'apps/v1'
    assert str(resource) == 'deployments.v1.apps'
    assert resource.namespaced


def test_owner_references_are_parsed():
    body = {'metadata': {'ownerReferences': [
        {'apiVersion': 'apps/v1', 'kind': 'Deployment', 'name': 'dep', 'uid': 'u1', 'controller': True},
        {'apiVersion': 'v1', 'kind': 'ConfigMap', 'name': 'cm'},
    ]}}
    refs = list(iter_owner_references(body))
    assert refs == [
        OwnerReference(kind=Kind('apps', 'v1', 'Deployment'), name='dep', uid='u1', controller=True),
        OwnerReference(kind=Kind('', 'v1', 'ConfigMap'), name='cm', uid=None, controller=False),
    ]


@pytest.mark.parametrize('body', [
    {},
    {'metadata': {}},
    {'metadata': {'ownerReferences': None}},
    {'metadata': {'ownerReferences': []}},
])
def test_owner_references_are_absent(body):
    assert list(iter_owner_references(body)) == []
