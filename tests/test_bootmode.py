import threading
import time

from werkzeug.test import Client

from axedash.bootmode import BootModeGate, ServerMode

from conftest import write_config_dir


def text_app(body):
    def app(environ, start_response):
        start_response("200 OK", [("Content-Type", "text/plain")])
        return [body.encode()]
    return app


class CountingInitializer:
    def __init__(self, delay=0.0):
        self.calls = 0
        self.delay = delay
        self.fail = False
        self._lock = threading.Lock()

    def __call__(self):
        with self._lock:
            self.calls += 1
        if self.fail:
            raise RuntimeError("bad jwt key")
        time.sleep(self.delay)
        return text_app("normal")


def test_serves_bootstrap_until_files_exist(tmp_path):
    init = CountingInitializer()
    gate = BootModeGate(str(tmp_path), text_app("setup"), init)

    assert Client(gate).get("/").get_data(as_text=True) == "setup"
    assert gate.mode is ServerMode.BOOTSTRAP
    assert init.calls == 0

    write_config_dir(tmp_path)
    assert Client(gate).get("/").get_data(as_text=True) == "normal"
    assert gate.mode is ServerMode.NORMAL


def test_starts_in_normal_mode_when_handler_given(tmp_path):
    init = CountingInitializer()
    gate = BootModeGate(str(tmp_path), text_app("setup"), init, normal_app=text_app("normal"))
    assert gate.mode is ServerMode.NORMAL
    assert Client(gate).get("/").get_data(as_text=True) == "normal"
    assert init.calls == 0


def test_concurrent_requests_initialize_once(tmp_path):
    init = CountingInitializer(delay=0.2)
    gate = BootModeGate(str(tmp_path), text_app("setup"), init)
    write_config_dir(tmp_path)

    start = threading.Barrier(100)
    bodies = []
    lock = threading.Lock()

    def hit():
        client = Client(gate)
        start.wait()
        body = client.get("/").get_data(as_text=True)
        with lock:
            bodies.append(body)

    threads = [threading.Thread(target=hit) for _ in range(100)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert init.calls == 1
    assert bodies == ["normal"] * 100
    assert gate.mode is ServerMode.NORMAL


def test_initializer_failure_answers_500_and_stays_in_bootstrap(tmp_path):
    init = CountingInitializer()
    init.fail = True
    gate = BootModeGate(str(tmp_path), text_app("setup"), init)
    write_config_dir(tmp_path)

    response = Client(gate).get("/")
    assert response.status_code == 500
    assert response.get_json()["message"] == "Failed to initialize server"
    assert "bad jwt key" in response.get_json()["error"]
    assert gate.mode is ServerMode.BOOTSTRAP

    init.fail = False
    assert Client(gate).get("/").get_data(as_text=True) == "normal"
    assert init.calls == 2
