import json
import logging
import os
import tempfile
import threading
from collections import namedtuple
from dataclasses import dataclass, field
from types import MappingProxyType

from axedash.errors import ConfigIOError, ConfigNotFound, ConfigParseError

logger = logging.getLogger(__name__)

CONFIG_FILE = "config.json"
ACCESS_FILE = "access.json"
JWT_KEY_FILE = "jsonWebTokenKey.json"
RPC_CONFIG_FILE = "rpcConfig.json"
REQUIRED_FILES = (CONFIG_FILE, ACCESS_FILE, JWT_KEY_FILE)

DEFAULT_PORT = 3000
DEFAULT_COOKIE_MAX_AGE = 3600
DEFAULT_COLLECTION_INTERVAL = 300
DEFAULT_RETENTION_DAYS = 30

DEFAULT_API_PATHS = {
    "instanceInfo": "/api/system/info",
    "instanceRestart": "/api/system/restart",
    "instanceSettings": "/api/system",
    "pools": "/api/pools",
    "statisticsDashboard": "/api/system/statistics/dashboard",
}

Peer = namedtuple("Peer", ["name", "url"])
NodePeer = namedtuple("NodePeer", ["node_id", "name", "node_type", "algo"])


def _freeze(value):
    if isinstance(value, dict):
        return MappingProxyType({k: _freeze(v) for k, v in value.items()})
    if isinstance(value, list):
        return tuple(_freeze(v) for v in value)
    return value


def thaw(value):
    """Mutable, JSON-serializable copy of a frozen configuration value."""
    if isinstance(value, (dict, MappingProxyType)):
        return {k: thaw(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [thaw(v) for v in value]
    return value


def _positive_int(data, key, default):
    value = data.get(key)
    if value is None:
        return default
    if isinstance(value, bool):
        raise ConfigParseError(f"{key} must be a number, got {value!r}")
    try:
        value = int(value)
    except (TypeError, ValueError):
        raise ConfigParseError(f"{key} must be a number, got {value!r}")
    return value if value > 0 else default


def _bool(data, key):
    value = data.get(key, False)
    if value is None:
        return False
    if not isinstance(value, bool):
        raise ConfigParseError(f"{key} must be true or false, got {value!r}")
    return value


def _peers(data, key):
    """Flatten a list of {name: url} maps into unique Peer tuples."""
    raw = data.get(key) or []
    if isinstance(raw, dict):
        raw = [raw]
    if not isinstance(raw, list):
        raise ConfigParseError(f"{key} must be a list of name/url maps")
    peers = []
    seen = set()
    for entry in raw:
        if not isinstance(entry, dict):
            raise ConfigParseError(f"{key} entries must be name/url maps, got {entry!r}")
        for name, url in entry.items():
            if not isinstance(url, str):
                raise ConfigParseError(f"{key}: url for {name!r} must be a string")
            if name in seen:
                raise ConfigParseError(f"{key}: duplicate peer name {name!r}")
            seen.add(name)
            peers.append(Peer(name, url.rstrip("/")))
    return tuple(peers)


def _node_peers(data):
    # Items are either {"Nodes": [...], "NodeDisplayFields": ...} groups or
    # bare node objects carrying their own NodeDisplayFields.
    raw = data.get("cryptoNodes") or []
    if not isinstance(raw, list):
        raise ConfigParseError("cryptoNodes must be a list")
    nodes = []
    display_fields = None
    seen = set()
    for item in raw:
        if not isinstance(item, dict):
            continue
        if "NodeDisplayFields" in item:
            display_fields = item["NodeDisplayFields"]
        members = item.get("Nodes") if "Nodes" in item else [item]
        if not isinstance(members, list):
            continue
        for node in members:
            if not isinstance(node, dict) or not isinstance(node.get("NodeId"), str):
                continue
            node_id = node["NodeId"]
            if node_id in seen:
                raise ConfigParseError(f"cryptoNodes: duplicate node id {node_id!r}")
            seen.add(node_id)
            nodes.append(NodePeer(
                node_id,
                node.get("NodeName") or node_id,
                node.get("NodeType") or "",
                node.get("NodeAlgo") or "",
            ))
    return tuple(nodes), display_fields


@dataclass(frozen=True)
class Configuration:
    web_server_port: int = DEFAULT_PORT
    version: float = 0
    title: str = ""
    devices: tuple = ()
    pools: tuple = ()
    nodes: tuple = ()
    mining_core_enabled: bool = False
    crypto_nodes_enabled: bool = False
    disable_authentication: bool = False
    disable_settings: bool = False
    disable_configurations: bool = False
    cookie_max_age: int = DEFAULT_COOKIE_MAX_AGE
    data_collection_enabled: bool = False
    collection_interval_seconds: int = DEFAULT_COLLECTION_INTERVAL
    data_retention_days: int = DEFAULT_RETENTION_DAYS
    timezone: str = "UTC"
    api_paths: MappingProxyType = field(default_factory=lambda: MappingProxyType(dict(DEFAULT_API_PATHS)))
    display_fields: object = None
    mining_core_display_fields: object = None
    node_display_fields: object = None
    raw: MappingProxyType = field(default_factory=lambda: MappingProxyType({}))

    @classmethod
    def from_dict(cls, data):
        if not isinstance(data, dict):
            raise ConfigParseError("configuration must be a JSON object")

        api_overrides = data.get("axeos_api") or {}
        if not isinstance(api_overrides, dict):
            raise ConfigParseError("axeos_api must be an object")
        api_paths = dict(DEFAULT_API_PATHS)
        api_paths.update({k: v for k, v in api_overrides.items() if isinstance(v, str)})

        version = data.get("axeos_dashboard_version", 0)
        if not isinstance(version, (int, float)) or isinstance(version, bool):
            raise ConfigParseError(f"axeos_dashboard_version must be a number, got {version!r}")

        nodes, node_display_fields = _node_peers(data)
        return cls(
            web_server_port=_positive_int(data, "web_server_port", DEFAULT_PORT),
            version=version,
            title=str(data.get("title") or ""),
            devices=_peers(data, "axeos_instances"),
            pools=_peers(data, "mining_core_url"),
            nodes=nodes,
            mining_core_enabled=_bool(data, "mining_core_enabled"),
            crypto_nodes_enabled=_bool(data, "cryptNodesEnabled"),
            disable_authentication=_bool(data, "disable_authentication"),
            disable_settings=_bool(data, "disable_settings"),
            disable_configurations=_bool(data, "disable_configurations"),
            cookie_max_age=_positive_int(data, "cookie_max_age", DEFAULT_COOKIE_MAX_AGE),
            data_collection_enabled=_bool(data, "data_collection_enabled"),
            collection_interval_seconds=_positive_int(data, "collection_interval_seconds", DEFAULT_COLLECTION_INTERVAL),
            data_retention_days=_positive_int(data, "data_retention_days", DEFAULT_RETENTION_DAYS),
            timezone=str(data.get("timezone") or "UTC"),
            api_paths=MappingProxyType(api_paths),
            display_fields=_freeze(data.get("display_fields")),
            mining_core_display_fields=_freeze(data.get("mining_core_display_fields")),
            node_display_fields=_freeze(node_display_fields),
            raw=_freeze(data),
        )

    def api_path(self, name):
        return self.api_paths.get(name, "")

    def find_device(self, name):
        for peer in self.devices:
            if peer.name == name:
                return peer
        return None

    def as_dict(self):
        """Mutable copy of the on-disk document with the applied defaults."""
        data = thaw(self.raw)
        data.update({
            "web_server_port": self.web_server_port,
            "cookie_max_age": self.cookie_max_age,
            "collection_interval_seconds": self.collection_interval_seconds,
            "data_retention_days": self.data_retention_days,
        })
        return data


def config_files_exist(config_dir):
    return all(os.path.isfile(os.path.join(config_dir, name)) for name in REQUIRED_FILES)


def read_json(path):
    try:
        with open(path, "r") as f:
            return json.load(f)
    except FileNotFoundError:
        raise ConfigNotFound(f"{path} not found")
    except json.JSONDecodeError as e:
        raise ConfigParseError(f"error parsing {path}: {e}")
    except OSError as e:
        raise ConfigIOError(f"error reading {path}: {e}")


def write_json_atomic(path, data, indent=4):
    directory = os.path.dirname(path) or "."
    try:
        fd, tmp_path = tempfile.mkstemp(prefix=".tmp-", dir=directory)
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(data, f, indent=indent)
            os.replace(tmp_path, path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise
    except (OSError, TypeError, ValueError) as e:
        raise ConfigIOError(f"error writing {path}: {e}")


class ConfigStore:
    """Holds the current Configuration snapshot for the process.

    The snapshot is swapped as a whole under a lock held only for the
    reference assignment, so readers never wait on disk access and never see
    a half-applied update. Merges are serialized among themselves.
    """

    def __init__(self, config_dir):
        self.config_dir = config_dir
        self.path = os.path.join(config_dir, CONFIG_FILE)
        self._config = None
        self._lock = threading.Lock()
        self._merge_lock = threading.Lock()

    def load(self):
        logger.info(f"Loading configuration from: {self.path}")
        config = Configuration.from_dict(read_json(self.path))
        with self._lock:
            self._config = config
        logger.info("Configuration loaded successfully")
        return config

    def get(self):
        with self._lock:
            return self._config

    def merge(self, patch):
        if not isinstance(patch, dict):
            raise ConfigParseError("configuration update must be a JSON object")
        with self._merge_lock:
            current = read_json(self.path)
            if not isinstance(current, dict):
                raise ConfigParseError(f"{self.path} does not hold a JSON object")
            current.update(patch)
            # Reject a bad patch before anything reaches the disk.
            Configuration.from_dict(current)
            write_json_atomic(self.path, current)
            logger.info(f"Configuration updated: {', '.join(sorted(patch)) or 'no keys'}")
            return self.load()
