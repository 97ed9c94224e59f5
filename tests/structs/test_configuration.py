import concurrent.futures

import pytest

from konverge.structs.configuration import ManagerSettings


def test_defaults():
    settings = ManagerSettings()
    assert settings.watching.reconnect_backoff == 0.1
    assert settings.watching.resync_period is None
    assert settings.queueing.base_delay == 0.005
    assert settings.queueing.max_delay == 1000.0
    assert settings.controllers.max_concurrent_reconciles == 1
    assert settings.controllers.sync_timeout is None
    assert settings.probing.endpoint is None
    assert settings.process.stop_timeout is None
    assert isinstance(settings.execution.executor, concurrent.futures.ThreadPoolExecutor)


def test_settings_are_not_shared():
    settings1 = ManagerSettings()
    settings2 = ManagerSettings()
    settings1.watching.reconnect_backoff = 5
    assert settings2.watching.reconnect_backoff == 0.1


def test_max_workers_recreates_the_executor():
    settings = ManagerSettings()
    executor = settings.execution.executor
    settings.execution.max_workers = 3
    assert settings.execution.max_workers == 3
    assert settings.execution.executor is not executor


def test_max_workers_below_one():
    settings = ManagerSettings()
    with pytest.raises(ValueError):
        settings.execution.max_workers = 0
