"""SQLite metrics store.

Append-only tables for device, pool and node samples written by the
scheduler's collectors, plus range queries for the dashboard charts and a
delete-older-than purge. Timestamps are stored as UTC text
("YYYY-MM-DD HH:MM:SS") so range filters compare lexically.
"""

import logging
import os
import sqlite3
import threading
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timedelta
from typing import Optional

import pytz

from axedash.errors import SinkWriteError

logger = logging.getLogger(__name__)

DB_FILE = "metrics.db"
TS_FORMAT = "%Y-%m-%d %H:%M:%S"
DEFAULT_QUERY_LIMIT = 1000


def utcnow():
    return datetime.now(pytz.utc)


def format_ts(value):
    if value is None:
        return None
    if isinstance(value, str):
        return value
    if value.tzinfo is None:
        value = pytz.utc.localize(value)
    return value.astimezone(pytz.utc).strftime(TS_FORMAT)


def parse_ts(value):
    if not value:
        return None
    return pytz.utc.localize(datetime.strptime(value, TS_FORMAT))


@dataclass
class DeviceMetric:
    peer_id: str
    peer_name: str
    timestamp: datetime = field(default_factory=utcnow)
    hashrate: float = 0.0
    temperature: float = 0.0
    power: float = 0.0
    fan_speed: int = 0
    best_diff: str = ""
    shares_accepted: int = 0
    shares_rejected: int = 0
    frequency: int = 0
    voltage: float = 0.0
    core_voltage: float = 0.0


@dataclass
class PoolMetric:
    peer_id: str
    peer_name: str
    timestamp: datetime = field(default_factory=utcnow)
    pool_hashrate: float = 0.0
    pool_workers: int = 0
    network_hashrate: float = 0.0
    network_difficulty: float = 0.0
    last_block_time: Optional[datetime] = None
    blocks_found: int = 0


@dataclass
class NodeMetric:
    peer_id: str
    peer_name: str
    timestamp: datetime = field(default_factory=utcnow)
    block_height: int = 0
    connections: int = 0
    difficulty: float = 0.0
    network_hashrate: float = 0.0


TABLES = {
    "devices": ("device_metrics", DeviceMetric),
    "pools": ("pool_metrics", PoolMetric),
    "nodes": ("node_metrics", NodeMetric),
}

SCHEMA = """
CREATE TABLE IF NOT EXISTS device_metrics (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    timestamp TEXT NOT NULL,
    peer_id TEXT NOT NULL,
    peer_name TEXT NOT NULL,
    hashrate REAL,
    temperature REAL,
    power REAL,
    fan_speed INTEGER,
    best_diff TEXT,
    shares_accepted INTEGER,
    shares_rejected INTEGER,
    frequency INTEGER,
    voltage REAL,
    core_voltage REAL
);
CREATE INDEX IF NOT EXISTS idx_device_peer_ts ON device_metrics(peer_id, timestamp);

CREATE TABLE IF NOT EXISTS pool_metrics (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    timestamp TEXT NOT NULL,
    peer_id TEXT NOT NULL,
    peer_name TEXT NOT NULL,
    pool_hashrate REAL,
    pool_workers INTEGER,
    network_hashrate REAL,
    network_difficulty REAL,
    last_block_time TEXT,
    blocks_found INTEGER
);
CREATE INDEX IF NOT EXISTS idx_pool_peer_ts ON pool_metrics(peer_id, timestamp);

CREATE TABLE IF NOT EXISTS node_metrics (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    timestamp TEXT NOT NULL,
    peer_id TEXT NOT NULL,
    peer_name TEXT NOT NULL,
    block_height INTEGER,
    connections INTEGER,
    difficulty REAL,
    network_hashrate REAL
);
CREATE INDEX IF NOT EXISTS idx_node_peer_ts ON node_metrics(peer_id, timestamp);
"""


class MetricsSink:
    def __init__(self, data_dir):
        self.data_dir = data_dir
        self.path = os.path.join(data_dir, DB_FILE)
        self._write_lock = threading.Lock()

    def _connect(self):
        conn = sqlite3.connect(self.path, timeout=5)
        conn.row_factory = sqlite3.Row
        return conn

    def init_db(self):
        os.makedirs(self.data_dir, exist_ok=True)
        conn = self._connect()
        try:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.executescript(SCHEMA)
            conn.commit()
        finally:
            conn.close()
        logger.info(f"SQLite initialized at: {self.path}")

    def _insert(self, table, metric):
        row = asdict(metric)
        row["timestamp"] = format_ts(row["timestamp"])
        if "last_block_time" in row:
            row["last_block_time"] = format_ts(row["last_block_time"])
        columns = ", ".join(row)
        placeholders = ", ".join("?" for _ in row)
        with self._write_lock:
            try:
                conn = self._connect()
                try:
                    with conn:
                        conn.execute(f"INSERT INTO {table} ({columns}) VALUES ({placeholders})", tuple(row.values()))
                finally:
                    conn.close()
            except (sqlite3.Error, OverflowError, ValueError, TypeError) as e:
                raise SinkWriteError(f"failed to insert into {table}: {e}")

    def insert_device_metric(self, metric):
        self._insert("device_metrics", metric)

    def insert_pool_metric(self, metric):
        self._insert("pool_metrics", metric)

    def insert_node_metric(self, metric):
        self._insert("node_metrics", metric)

    def query(self, kind, peer_id, start=None, end=None, limit=DEFAULT_QUERY_LIMIT):
        """Samples for one peer between ``start`` and ``end``, newest first."""
        if kind not in TABLES:
            raise ValueError(f"unknown metric kind {kind!r}")
        table, model = TABLES[kind]
        names = [f.name for f in fields(model)]
        sql = f"SELECT {', '.join(names)} FROM {table} WHERE peer_id = ?"
        args = [peer_id]
        if start is not None:
            sql += " AND timestamp >= ?"
            args.append(format_ts(start))
        if end is not None:
            sql += " AND timestamp <= ?"
            args.append(format_ts(end))
        sql += " ORDER BY timestamp DESC, id DESC LIMIT ?"
        args.append(int(limit))

        conn = self._connect()
        try:
            rows = conn.execute(sql, args).fetchall()
        finally:
            conn.close()

        metrics = []
        for row in rows:
            values = dict(row)
            values["timestamp"] = parse_ts(values["timestamp"])
            if "last_block_time" in values:
                values["last_block_time"] = parse_ts(values["last_block_time"])
            metrics.append(model(**values))
        return metrics

    def purge(self, older_than_days):
        cutoff = format_ts(utcnow() - timedelta(days=older_than_days))
        deleted = 0
        with self._write_lock:
            try:
                conn = self._connect()
                try:
                    with conn:
                        for table, _ in TABLES.values():
                            deleted += conn.execute(f"DELETE FROM {table} WHERE timestamp < ?", (cutoff,)).rowcount
                finally:
                    conn.close()
            except sqlite3.Error as e:
                raise SinkWriteError(f"failed to purge metrics: {e}")
        logger.info(f"Purged {deleted} metric rows older than {older_than_days} days")
        return deleted
