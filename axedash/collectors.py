import logging
import math

from axedash.errors import AxedashError
from axedash.metrics import DeviceMetric, NodeMetric, PoolMetric, parse_ts

logger = logging.getLogger(__name__)


def _number(data, *keys, cast=float, default=0):
    """First of ``keys`` holding a finite number, cast; ``default`` otherwise."""
    if not isinstance(data, dict):
        return default
    for key in keys:
        value = data.get(key)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            try:
                if math.isfinite(value):
                    return cast(value)
            except (OverflowError, ValueError):
                continue
    return default


def _text(data, key):
    value = data.get(key) if isinstance(data, dict) else None
    if value is None or isinstance(value, (dict, list)):
        return ""
    return str(value)


def device_metric(name, data):
    return DeviceMetric(
        peer_id=name,
        peer_name=name,
        hashrate=_number(data, "hashRate"),
        temperature=_number(data, "temp"),
        power=_number(data, "power"),
        fan_speed=_number(data, "fanSpeed", "fanspeed", cast=int),
        best_diff=_text(data, "bestDiff"),
        shares_accepted=_number(data, "sharesAccepted", cast=int),
        shares_rejected=_number(data, "sharesRejected", cast=int),
        frequency=_number(data, "frequency", cast=int),
        voltage=_number(data, "voltage"),
        core_voltage=_number(data, "coreVoltage"),
    )


def _last_block_time(value):
    if not isinstance(value, str):
        return None
    # Mining Core reports ISO-8601 such as 2024-05-01T12:00:00.123Z
    try:
        return parse_ts(value[:19].replace("T", " "))
    except ValueError:
        return None


def pool_metric(name, data):
    # /api/pools answers {"pools": [...]}; a single-pool payload is accepted too
    pools = data.get("pools") if isinstance(data, dict) else None
    if not isinstance(pools, list):
        pools = [data] if isinstance(data, dict) else []
    pools = [p for p in pools if isinstance(p, dict)]

    metric = PoolMetric(peer_id=name, peer_name=name)
    for pool in pools:
        stats = pool.get("poolStats") if isinstance(pool.get("poolStats"), dict) else pool
        network = pool.get("networkStats") if isinstance(pool.get("networkStats"), dict) else pool
        metric.pool_hashrate += _number(stats, "poolHashrate")
        metric.pool_workers += _number(stats, "connectedMiners", "poolWorkers", cast=int)
        metric.blocks_found += _number(pool, "totalBlocks", cast=int)
        if not metric.network_difficulty:
            metric.network_hashrate = _number(network, "networkHashrate")
            metric.network_difficulty = _number(network, "networkDifficulty")
        last = _last_block_time(pool.get("lastPoolBlockTime"))
        if last and (metric.last_block_time is None or last > metric.last_block_time):
            metric.last_block_time = last
    return metric


def node_metric(node, blockchain_info, network_info):
    difficulty = _number(blockchain_info, "difficulty")
    if not difficulty and isinstance(blockchain_info, dict):
        # multi-algo chains (DigiByte) report a per-algorithm map
        difficulties = blockchain_info.get("difficulties")
        if isinstance(difficulties, dict) and difficulties:
            difficulty = _number(difficulties, node.algo, *difficulties)
    return NodeMetric(
        peer_id=node.node_id,
        peer_name=node.name,
        block_height=_number(blockchain_info, "blocks", cast=int),
        connections=_number(network_info, "connections", cast=int),
        difficulty=difficulty,
        network_hashrate=_number(blockchain_info, "networkhashps"),
    )


class Collectors:
    """Write-side counterpart of SystemsView: one sample per peer per tick."""

    def __init__(self, store, sink, client, registry=None):
        self.store = store
        self.sink = sink
        self.client = client
        self.registry = registry

    def _run(self, kind, peers, collect_one, stop_event):
        collected = 0
        for peer in peers:
            if stop_event is not None and stop_event.is_set():
                logger.info(f"Stopping {kind} collection early, scheduler is shutting down")
                break
            try:
                collect_one(peer)
                collected += 1
            except AxedashError as e:
                logger.error(f"Failed to collect {kind} metrics from {peer[0]}: {e}")
            except Exception as e:
                logger.exception(f"Unexpected error collecting {kind} metrics from {peer[0]}: {e}")
        return collected

    def collect_devices(self, stop_event=None):
        config = self.store.get()
        path = config.api_path("instanceInfo")

        def collect_one(peer):
            data = self.client.get_json(peer.url, path)
            self.sink.insert_device_metric(device_metric(peer.name, data))
            logger.info(f"Collected device metrics from {peer.name}")

        return self._run("device", config.devices, collect_one, stop_event)

    def collect_pools(self, stop_event=None):
        config = self.store.get()
        path = config.api_path("pools")

        def collect_one(peer):
            data = self.client.get_json(peer.url, path)
            self.sink.insert_pool_metric(pool_metric(peer.name, data))
            logger.info(f"Collected pool metrics from {peer.name}")

        return self._run("pool", config.pools, collect_one, stop_event)

    def collect_nodes(self, stop_event=None):
        config = self.store.get()
        if self.registry is None:
            return 0

        def collect_one(node):
            blockchain_info = self.registry.call(node.node_id, "getblockchaininfo")
            network_info = self.registry.call(node.node_id, "getnetworkinfo")
            self.sink.insert_node_metric(node_metric(node, blockchain_info, network_info))
            logger.info(f"Collected node metrics from {node.node_id}")

        return self._run("node", config.nodes, collect_one, stop_event)
