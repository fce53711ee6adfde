import logging
import os
import threading
from collections import namedtuple

from axedash.config import RPC_CONFIG_FILE, read_json
from axedash.errors import ConfigParseError, PeerUnreachable

logger = logging.getLogger(__name__)

DEFAULT_RPC_PORT = 8332

RpcEndpoint = namedtuple("RpcEndpoint", ["node_id", "address", "port", "auth"])


def _endpoint(entry):
    # rpcConfig.json written by hand uses NodeId/NodeRPCAddress/...,
    # the setup form writes id/rpcIp/rpcPort/rpcAuth.
    node_id = entry.get("NodeId") or entry.get("id")
    address = entry.get("NodeRPCAddress") or entry.get("rpcIp")
    if not node_id or not address:
        return None
    port = entry.get("NodeRPCPort") or entry.get("rpcPort") or DEFAULT_RPC_PORT
    try:
        port = int(port)
    except (TypeError, ValueError):
        raise ConfigParseError(f"invalid RPC port for node {node_id!r}: {port!r}")
    auth = entry.get("NodeRPAuth") or entry.get("rpcAuth") or ""
    return RpcEndpoint(node_id, address, port, auth)


class NodeRegistry:
    """RPC credentials for crypto nodes, kept apart from config.json."""

    def __init__(self, config_dir, client):
        self.path = os.path.join(config_dir, RPC_CONFIG_FILE)
        self.client = client
        self._endpoints = None
        self._lock = threading.Lock()

    def load(self):
        data = read_json(self.path)
        entries = data.get("cryptoNodes", []) if isinstance(data, dict) else []
        endpoints = {}
        for entry in entries:
            if isinstance(entry, dict):
                endpoint = _endpoint(entry)
                if endpoint:
                    endpoints[endpoint.node_id] = endpoint
        with self._lock:
            self._endpoints = endpoints
        logger.info(f"Loaded RPC settings for {len(endpoints)} node(s)")
        return endpoints

    def reset(self):
        with self._lock:
            self._endpoints = None

    def _get_endpoints(self):
        with self._lock:
            endpoints = self._endpoints
        if endpoints is None:
            endpoints = self.load()
        return endpoints

    def node_ids(self):
        return list(self._get_endpoints())

    def endpoint(self, node_id):
        endpoint = self._get_endpoints().get(node_id)
        if endpoint is None:
            raise PeerUnreachable(f"node ID '{node_id}' not found in {RPC_CONFIG_FILE}")
        return endpoint

    def call(self, node_id, method, params=()):
        endpoint = self.endpoint(node_id)
        url = f"http://{endpoint.address}:{endpoint.port}"
        return self.client.rpc(url, endpoint.auth, method, params)
