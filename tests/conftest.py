import json
import os

import pytest

from axedash.auth import hash_password

JWT_KEY = "0123456789abcdef0123456789abcdef"


def base_config(**overrides):
    config = {
        "axeos_dashboard_version": 3.0,
        "title": "Test Farm",
        "web_server_port": 3000,
        "disable_authentication": True,
        "disable_settings": False,
        "disable_configurations": False,
        "axeos_instances": [
            {"Rig-1": "http://10.0.0.1"},
            {"Rig-2": "http://10.0.0.2"},
            {"Rig-3": "http://10.0.0.3"},
        ],
        "mining_core_enabled": False,
        "mining_core_url": [],
        "cryptNodesEnabled": False,
        "cryptoNodes": [],
        "data_collection_enabled": False,
    }
    config.update(overrides)
    return config


def write_config_dir(path, config=None, access=None, jwt_key=JWT_KEY, expires_in="1h"):
    os.makedirs(path, exist_ok=True)
    files = {
        "config.json": config if config is not None else base_config(),
        "access.json": access if access is not None else {"admin": hash_password("secret")},
        "jsonWebTokenKey.json": {"jsonWebTokenKey": jwt_key, "expiresIn": expires_in},
    }
    for name, data in files.items():
        with open(os.path.join(path, name), "w") as f:
            json.dump(data, f)
    return str(path)


def read_config(path):
    with open(os.path.join(path, "config.json")) as f:
        return json.load(f)


class FakeResponse:
    def __init__(self, status_code=200, body=None, content=None, reason="OK"):
        self.status_code = status_code
        self.reason = reason
        if content is None:
            content = json.dumps(body).encode() if body is not None else b""
        self.content = content
        self.text = content.decode(errors="replace")

    def json(self):
        return json.loads(self.content)


@pytest.fixture
def config_dir(tmp_path):
    return write_config_dir(tmp_path / "config")
