import enum
import logging
import threading

from flask import Response, json

from axedash.config import config_files_exist

logger = logging.getLogger(__name__)


class ServerMode(enum.Enum):
    BOOTSTRAP = "bootstrap"
    NORMAL = "normal"


class BootModeGate:
    """WSGI entry point that switches from the setup app to the full app.

    ``initializer`` builds the normal WSGI app and may raise; it runs at most
    once successfully. The mode and its handler are swapped together as one
    tuple, under the same lock that serializes initialization, so concurrent
    requests during the switch either wait for it or see the finished state.
    """

    def __init__(self, config_dir, bootstrap_app, initializer, normal_app=None):
        self.config_dir = config_dir
        self.initializer = initializer
        self._lock = threading.Lock()
        if normal_app is not None:
            self._state = (ServerMode.NORMAL, normal_app)
        else:
            self._state = (ServerMode.BOOTSTRAP, bootstrap_app)

    @property
    def mode(self):
        return self._state[0]

    def _promote(self):
        with self._lock:
            mode, handler = self._state
            if mode is ServerMode.NORMAL:
                return handler
            logger.info("Configuration files detected. Switching to normal mode...")
            handler = self.initializer()
            self._state = (ServerMode.NORMAL, handler)
        logger.info("Successfully switched to normal mode!")
        return handler

    def __call__(self, environ, start_response):
        mode, handler = self._state
        if mode is ServerMode.BOOTSTRAP and config_files_exist(self.config_dir):
            try:
                handler = self._promote()
            except Exception as e:
                logger.error(f"Error initializing normal mode: {e}")
                body = json.dumps({"message": "Failed to initialize server", "error": str(e)})
                return Response(body, status=500, mimetype="application/json")(environ, start_response)
        return handler(environ, start_response)
