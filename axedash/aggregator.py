import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Any

from axedash.errors import PeerError
from axedash.remote import DEFAULT_TIMEOUT

logger = logging.getLogger(__name__)

MAX_WORKERS = 32
STATUS_OK = "OK"
STATUS_ERROR = "Error"


@dataclass(frozen=True)
class PeerOutcome:
    name: str
    payload: Any = None
    status: str = STATUS_OK
    message: str = ""

    @property
    def ok(self):
        return self.status != STATUS_ERROR

    @classmethod
    def failed(cls, name, error):
        return cls(name, status=STATUS_ERROR, message=str(error) or error.__class__.__name__)


def fan_out(peers, fetch, timeout=DEFAULT_TIMEOUT, max_workers=MAX_WORKERS):
    """Call ``fetch(url, timeout)`` once per ``(name, url)`` peer, concurrently.

    Returns exactly one PeerOutcome per peer, in completion order. A peer
    whose fetch raises is reported with status "Error"; it never aborts the
    other peers.
    """
    peers = list(peers)
    if not peers:
        return []

    outcomes = []
    with ThreadPoolExecutor(max_workers=min(len(peers), max_workers)) as executor:
        futures = {executor.submit(fetch, url, timeout): name for name, url in peers}
        for future in as_completed(futures):
            name = futures[future]
            try:
                outcomes.append(PeerOutcome(name, payload=future.result()))
            except Exception as e:
                logger.warning(f"Peer {name} failed: {e}")
                outcomes.append(PeerOutcome.failed(name, e))
    return outcomes


def gather(calls, max_workers=MAX_WORKERS):
    """Run named zero-argument callables concurrently, all-or-nothing.

    Returns ``{name: result}`` when every call succeeds, otherwise raises a
    PeerError whose message joins every failure.
    """
    if not calls:
        return {}

    results = {}
    errors = {}
    with ThreadPoolExecutor(max_workers=min(len(calls), max_workers)) as executor:
        futures = {executor.submit(fn): name for name, fn in calls.items()}
        for future in as_completed(futures):
            name = futures[future]
            try:
                results[name] = future.result()
            except Exception as e:
                errors[name] = e

    if errors:
        # keep submission order so the message is stable
        raise PeerError("; ".join(f"{name}: {errors[name]}" for name in calls if name in errors))
    return results
