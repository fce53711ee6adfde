import logging

from axedash.aggregator import STATUS_ERROR, fan_out, gather
from axedash.config import thaw

logger = logging.getLogger(__name__)

NODE_METHODS = {
    "blockchainInfo": "getblockchaininfo",
    "networkTotals": "getnettotals",
    "balance": "getbalance",
    "networkInfo": "getnetworkinfo",
}


class SystemsView:
    """Live fan-out over every configured device, pool and node."""

    def __init__(self, client, registry=None):
        self.client = client
        self.registry = registry

    def devices(self, config):
        path = config.api_path("instanceInfo")

        def fetch(url, timeout):
            return self.client.get_json(url, path, timeout=timeout)

        miners = []
        for outcome in fan_out(config.devices, fetch, timeout=self.client.timeout):
            if outcome.ok and isinstance(outcome.payload, dict):
                data = dict(outcome.payload)
                data["id"] = outcome.name
                miners.append(data)
            else:
                message = outcome.message if not outcome.ok else "unexpected payload shape"
                miners.append({"id": outcome.name, "hostname": outcome.name, "status": STATUS_ERROR, "message": message})
        return miners

    def pools(self, config):
        if not config.mining_core_enabled or not config.pools:
            return []
        path = config.api_path("pools")

        def fetch(url, timeout):
            return self.client.get_json(url, path, timeout=timeout)

        instances = []
        for outcome in fan_out(config.pools, fetch, timeout=self.client.timeout):
            entry = {"instanceName": outcome.name, "status": outcome.status, "pools": []}
            if not outcome.ok:
                entry["message"] = outcome.message
            else:
                raw = outcome.payload.get("pools") if isinstance(outcome.payload, dict) else None
                entry["pools"] = [p for p in raw or [] if isinstance(p, dict)]
            instances.append(entry)
        return instances

    def node(self, node, display_fields=None):
        calls = {
            key: (lambda method=method: self.registry.call(node.node_id, method))
            for key, method in NODE_METHODS.items()
        }
        try:
            results = gather(calls)
        except Exception as e:
            logger.error(f"Failed to fetch data for node {node.node_id}: {e}")
            return {
                "id": node.name,
                "nodeId": node.node_id,
                "nodeType": node.node_type,
                "status": STATUS_ERROR,
                "message": str(e),
            }
        data = {
            "id": node.name,
            "nodeId": node.node_id,
            "nodeType": node.node_type,
            "nodeAlgo": node.algo,
            "status": "online",
            "displayFields": thaw(display_fields),
        }
        data.update(results)
        return data

    def nodes(self, config):
        if not config.crypto_nodes_enabled or not config.nodes or self.registry is None:
            return []
        by_id = {node.node_id: node for node in config.nodes}

        def fetch(node_id, timeout):
            return self.node(by_id[node_id], config.node_display_fields)

        # node() never raises, so every outcome carries a node document
        outcomes = fan_out([(n.node_id, n.node_id) for n in config.nodes], fetch)
        return [o.payload if o.ok else {"id": o.name, "nodeId": o.name, "status": STATUS_ERROR, "message": o.message}
                for o in outcomes]

    def systems_info(self, config):
        return {
            "minerData": self.devices(config),
            "displayFields": thaw(config.display_fields),
            "miningCoreData": self.pools(config),
            "miningCoreDisplayFields": thaw(config.mining_core_display_fields),
            "cryptoNodeData": self.nodes(config) if config.crypto_nodes_enabled else None,
            "disable_settings": config.disable_settings,
            "disable_configurations": config.disable_configurations,
            "disable_authentication": config.disable_authentication,
            "mining_core_enabled": config.mining_core_enabled,
        }
