import threading
import time

import pytest

from axedash.config import Configuration
from axedash.errors import SchedulerAlreadyRunning, SchedulerNotRunning
from axedash.scheduler import Scheduler, build_tasks, effective_interval

from conftest import base_config


class FakeStore:
    def __init__(self, config):
        self.config = config
        self.loads = 0

    def load(self):
        self.loads += 1
        return self.config

    def get(self):
        return self.config


class FakeCollectors:
    def __init__(self):
        self.device_ticks = []
        self.pool_ticks = []
        self.first_tick = threading.Event()
        self.fail = False

    def collect_devices(self, stop_event=None):
        self.device_ticks.append(time.monotonic())
        self.first_tick.set()
        if self.fail:
            raise RuntimeError("collector exploded")

    def collect_pools(self, stop_event=None):
        self.pool_ticks.append(time.monotonic())

    def collect_nodes(self, stop_event=None):
        pass


def make_config(**overrides):
    return Configuration.from_dict(base_config(**overrides))


@pytest.fixture
def scheduler():
    store = FakeStore(make_config())
    s = Scheduler(store, FakeCollectors())
    yield s
    s.stop()


def test_effective_interval():
    assert effective_interval(None) == 300
    assert effective_interval(0) == 300
    assert effective_interval(-5) == 300
    assert effective_interval(0.2) == 1
    assert effective_interval(60) == 60


def test_build_tasks_skips_disabled_or_empty_classes():
    names = [t.name for t in build_tasks(make_config(), FakeCollectors())]
    assert names == ["AxeOS Miners Collection"]

    config = make_config(
        mining_core_enabled=True,
        mining_core_url=[{"pool": "http://pool:4000"}],
        cryptNodesEnabled=True,
        cryptoNodes=[],
    )
    names = [t.name for t in build_tasks(config, FakeCollectors())]
    assert names == ["AxeOS Miners Collection", "Mining Core Pools Collection"]

    assert build_tasks(make_config(axeos_instances=[]), FakeCollectors()) == []


def test_task_runs_immediately_on_start(scheduler):
    scheduler.start()
    assert scheduler.collectors.first_tick.wait(2)
    assert scheduler.is_running()
    assert scheduler.store.loads == 1


def test_stop_interrupts_wait_and_joins_threads(scheduler):
    scheduler.start()
    scheduler.collectors.first_tick.wait(2)
    threads = [t.thread for t in scheduler.tasks]

    started = time.monotonic()
    scheduler.stop()
    assert time.monotonic() - started < 2
    assert not scheduler.is_running()
    assert all(not t.is_alive() for t in threads)
    assert len(scheduler.collectors.device_ticks) == 1


def test_stop_when_stopped_is_noop(scheduler):
    scheduler.stop()
    scheduler.start()
    scheduler.stop()
    scheduler.stop()
    assert not scheduler.is_running()


def test_start_twice_raises(scheduler):
    scheduler.start()
    with pytest.raises(SchedulerAlreadyRunning):
        scheduler.start()


def test_restart_when_stopped_raises(scheduler):
    with pytest.raises(SchedulerNotRunning):
        scheduler.restart()


def test_restart_picks_up_new_task_set(scheduler):
    scheduler.start()
    assert len(scheduler.tasks) == 1
    scheduler.store.config = make_config(
        mining_core_enabled=True,
        mining_core_url=[{"pool": "http://pool:4000"}],
    )
    scheduler.restart()
    assert [t.name for t in scheduler.tasks] == ["AxeOS Miners Collection", "Mining Core Pools Collection"]
    assert scheduler.is_running()


def test_task_repeats_on_interval():
    store = FakeStore(make_config(collection_interval_seconds=1))
    collectors = FakeCollectors()
    s = Scheduler(store, collectors)
    s.start()
    try:
        deadline = time.monotonic() + 5
        while len(collectors.device_ticks) < 2 and time.monotonic() < deadline:
            time.sleep(0.05)
    finally:
        s.stop()
    assert len(collectors.device_ticks) >= 2
    assert collectors.device_ticks[1] - collectors.device_ticks[0] >= 0.9


def test_failing_tick_is_recorded_and_task_survives(scheduler):
    scheduler.collectors.fail = True
    scheduler.start()
    scheduler.collectors.first_tick.wait(2)
    deadline = time.monotonic() + 2
    while not scheduler.tasks[0].runs and time.monotonic() < deadline:
        time.sleep(0.01)

    status = scheduler.status("Europe/Berlin")
    assert status["running"] is True
    task = status["tasks"][0]
    assert task["name"] == "AxeOS Miners Collection"
    assert task["interval"] == 300
    assert task["runs"] == 1
    assert task["lastError"] == "collector exploded"
    assert task["lastRun"] is not None
    assert scheduler.tasks[0].thread.is_alive()


def test_status_when_stopped(scheduler):
    assert scheduler.status() == {"running": False, "tasks": []}
