import pytest

from konverge.structs.references import Kind, Resource
from konverge.structs.schemes import Scheme, SchemeError

DEPLOYMENT = Kind('apps', 'v1', 'Deployment')


class MyModel:
    pass


def test_kinds_resolve_to_themselves_even_if_unregistered():
    scheme = Scheme()
    assert scheme.kind_for(DEPLOYMENT) is DEPLOYMENT


def test_resources_with_kinds_resolve_to_kinds():
    scheme = Scheme()
    resource = Resource('apps', 'v1', 'deployments', kind='Deployment')
    assert scheme.kind_for(resource) == DEPLOYMENT


def test_resources_without_kinds_fail():
    scheme = Scheme()
    with pytest.raises(SchemeError):
        scheme.kind_for(Resource('apps', 'v1', 'deployments'))


def test_kind_names_are_registered_as_aliases():
    scheme = Scheme()
    scheme.register(DEPLOYMENT)
    assert scheme.kind_for('Deployment') == DEPLOYMENT
    assert 'Deployment' in scheme


def test_explicit_aliases():
    scheme = Scheme()
    scheme.register(DEPLOYMENT, MyModel, 'deploy')
    assert scheme.kind_for(MyModel) == DEPLOYMENT
    assert scheme.kind_for('deploy') == DEPLOYMENT
    assert list(scheme) == [DEPLOYMENT]


def test_conflicting_aliases_fail():
    scheme = Scheme()
    scheme.register(DEPLOYMENT, MyModel)
    with pytest.raises(SchemeError, match=r"already registered"):
        scheme.register(Kind('apps', 'v1', 'ReplicaSet'), MyModel)


def test_unknown_types_fail():
    scheme = Scheme()
    with pytest.raises(SchemeError, match=r"not registered"):
        scheme.kind_for(MyModel)
    assert scheme.get(MyModel) is None
    assert MyModel not in scheme
