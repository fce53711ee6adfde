import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

import pytz

from axedash.config import DEFAULT_COLLECTION_INTERVAL
from axedash.errors import SchedulerAlreadyRunning, SchedulerNotRunning

logger = logging.getLogger(__name__)


def effective_interval(seconds):
    if not seconds or seconds <= 0:
        return DEFAULT_COLLECTION_INTERVAL
    return max(int(seconds), 1)


@dataclass
class Task:
    name: str
    interval: int
    fn: Callable
    runs: int = 0
    last_run: Optional[datetime] = None
    last_error: Optional[str] = None
    thread: Optional[threading.Thread] = field(default=None, repr=False)


def build_tasks(config, collectors):
    interval = effective_interval(config.collection_interval_seconds)
    tasks = []
    if config.devices:
        tasks.append(Task("AxeOS Miners Collection", interval, collectors.collect_devices))
    if config.mining_core_enabled and config.pools:
        tasks.append(Task("Mining Core Pools Collection", interval, collectors.collect_pools))
    if config.crypto_nodes_enabled and config.nodes:
        tasks.append(Task("Crypto Nodes Collection", interval, collectors.collect_nodes))
    return tasks


class Scheduler:
    """Runs one collection thread per task until stop() is called.

    A task executes immediately, then once per interval. Ticks of the same
    task never overlap; different tasks run in parallel. stop() sets the
    shared stop event and joins every thread, so no collector outlives it.
    """

    def __init__(self, store, collectors):
        self.store = store
        self.collectors = collectors
        self.tasks = []
        self._stop_event = None
        self._lock = threading.Lock()

    def start(self):
        with self._lock:
            if self._stop_event is not None:
                raise SchedulerAlreadyRunning("scheduler already running")
            config = self.store.load()
            stop_event = threading.Event()
            self.tasks = build_tasks(config, self.collectors)
            for task in self.tasks:
                task.thread = threading.Thread(target=self._run_task, args=(task, stop_event),
                                               name=f"task-{task.name}", daemon=True)
            self._stop_event = stop_event
            for task in self.tasks:
                task.thread.start()
        logger.info(f"Scheduler started with {len(self.tasks)} tasks")

    def stop(self):
        with self._lock:
            if self._stop_event is None:
                return
            logger.info("Stopping scheduler...")
            self._stop_event.set()
            for task in self.tasks:
                task.thread.join()
            self._stop_event = None
            self.tasks = []
        logger.info("Scheduler stopped")

    def restart(self):
        if not self.is_running():
            raise SchedulerNotRunning("scheduler is not running")
        self.stop()
        self.start()

    def is_running(self):
        with self._lock:
            return self._stop_event is not None

    def _execute(self, task, stop_event):
        try:
            task.fn(stop_event)
            task.last_error = None
        except Exception as e:
            task.last_error = str(e)
            logger.error(f"Error in task {task.name}: {e}")
        task.runs += 1
        task.last_run = datetime.now(pytz.utc)

    def _run_task(self, task, stop_event):
        logger.info(f"Started task: {task.name} (interval: {task.interval}s)")
        self._execute(task, stop_event)
        while not stop_event.wait(task.interval):
            self._execute(task, stop_event)
        logger.info(f"Stopped task: {task.name}")

    def status(self, timezone="UTC"):
        try:
            tz = pytz.timezone(timezone)
        except pytz.UnknownTimeZoneError:
            tz = pytz.utc
        with self._lock:
            running = self._stop_event is not None
            tasks = list(self.tasks)
        return {
            "running": running,
            "tasks": [
                {
                    "name": t.name,
                    "interval": t.interval,
                    "runs": t.runs,
                    "lastRun": t.last_run.astimezone(tz).strftime("%Y-%m-%d %H:%M:%S") if t.last_run else None,
                    "lastError": t.last_error,
                }
                for t in tasks
            ],
        }
