import logging
import os
import signal
import sys
import threading

from flask import Flask

from axedash.auth import JwtService
from axedash.bootmode import BootModeGate
from axedash.bootstrap import create_bootstrap_app
from axedash.collectors import Collectors
from axedash.config import DEFAULT_PORT, ConfigStore, config_files_exist
from axedash.errors import AxedashError, SchedulerNotRunning
from axedash.metrics import MetricsSink
from axedash.remote import RemoteClient
from axedash.routes import create_app
from axedash.rpc import NodeRegistry
from axedash.scheduler import Scheduler
from axedash.systems import SystemsView

logging.basicConfig(level=logging.INFO, format='%(asctime)s [%(levelname)s] [%(name)s] %(message)s', handlers=[logging.StreamHandler(sys.stdout)])
logger = logging.getLogger("axedash")

BASE_DIR = os.getcwd()
CONFIG_DIR = os.environ.get("AXEDASH_CONFIG_DIR", os.path.join(BASE_DIR, "config"))
DATA_DIR = os.environ.get("AXEDASH_DATA_DIR", os.path.join(BASE_DIR, "data"))


class Runtime:
    """Owns every long-lived collaborator of one server process."""

    def __init__(self, config_dir, data_dir):
        self.config_dir = config_dir
        self.data_dir = data_dir
        self.client = RemoteClient()
        self.store = ConfigStore(config_dir)
        self.registry = NodeRegistry(config_dir, self.client)
        self.systems = SystemsView(self.client, self.registry)
        self.jwt_service = None
        self.sink = None
        self.scheduler = None
        self.gate = None
        self._collection_lock = threading.Lock()

    def initialize(self):
        """Build the normal application. Used at startup and by the boot gate."""
        self.jwt_service = JwtService.from_config_dir(self.config_dir)
        config = self.store.load()
        self.apply_collection_settings(config)
        return create_app(self)

    def apply_collection_settings(self, config):
        with self._collection_lock:
            if not config.data_collection_enabled:
                if self.scheduler is not None and self.scheduler.is_running():
                    self.scheduler.stop()
                    logger.info("Data collection disabled")
                return
            if self.sink is None:
                sink = MetricsSink(self.data_dir)
                sink.init_db()
                collectors = Collectors(self.store, sink, self.client, self.registry)
                self.sink, self.scheduler = sink, Scheduler(self.store, collectors)
            try:
                self.scheduler.restart()
            except SchedulerNotRunning:
                self.scheduler.start()
        logger.info("Data collection enabled and scheduler started")

    def on_config_change(self, config):
        # node credentials may have changed alongside the node list
        self.registry.reset()
        self.apply_collection_settings(config)

    def start(self):
        bootstrap_app = create_bootstrap_app(self.config_dir)
        normal_app = None
        if config_files_exist(self.config_dir):
            normal_app = self.initialize()
        else:
            logger.info("Configuration files missing. Starting in bootstrap mode...")
        self.gate = BootModeGate(self.config_dir, bootstrap_app, self.initialize, normal_app=normal_app)
        return self.gate

    def port(self):
        if os.environ.get("PORT", "").isdigit():
            return int(os.environ["PORT"])
        config = self.store.get()
        return config.web_server_port if config else DEFAULT_PORT

    def shutdown(self):
        if self.scheduler is not None:
            self.scheduler.stop()


def main():
    logger.info(f"Config directory: {CONFIG_DIR}")
    logger.info(f"Data directory: {DATA_DIR}")
    runtime = Runtime(CONFIG_DIR, DATA_DIR)
    try:
        gate = runtime.start()
    except AxedashError as e:
        logger.critical(f"FAILED TO START SERVER: {e}")
        sys.exit(1)

    signal.signal(signal.SIGTERM, lambda signum, frame: sys.exit(0))
    server = Flask(__name__)
    server.wsgi_app = gate
    port = runtime.port()
    logger.info(f"Server running on http://localhost:{port}")
    try:
        server.run(host='0.0.0.0', port=port, threaded=True)
    finally:
        logger.info("Shutdown signal received, gracefully shutting down...")
        runtime.shutdown()
        logger.info("Server stopped gracefully")


if __name__ == '__main__':
    main()
