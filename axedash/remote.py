import logging

import requests

from axedash.errors import PeerBadPayload, PeerBadStatus, PeerUnreachable

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10
RPC_TIMEOUT = 30
RPC_ID = "axedash"
HEADERS = {"User-Agent": "axedash/1.0", "Accept": "application/json"}


def join_url(base_url, path):
    if not path:
        return base_url
    return base_url.rstrip("/") + "/" + path.lstrip("/")


class RemoteClient:
    """Issues one bounded-timeout call to one remote peer.

    Holds no per-peer state, so a single instance is shared by every
    aggregate request and every collector thread.
    """

    def __init__(self, timeout=DEFAULT_TIMEOUT, rpc_timeout=RPC_TIMEOUT):
        self.timeout = timeout
        self.rpc_timeout = rpc_timeout

    def _send(self, method, url, timeout=None, **kwargs):
        try:
            return requests.request(method, url, headers=HEADERS, timeout=timeout or self.timeout, **kwargs)
        except requests.RequestException as e:
            raise PeerUnreachable(f"{method} {url} failed: {e}")

    def call(self, method, url, payload=None, timeout=None):
        kwargs = {"json": payload} if payload is not None else {}
        r = self._send(method, url, timeout=timeout, **kwargs)
        if not 200 <= r.status_code < 300:
            raise PeerBadStatus(f"{r.status_code} {r.reason or ''}".strip(), status_code=r.status_code)
        if not r.content or not r.content.strip():
            return None
        try:
            return r.json()
        except ValueError as e:
            raise PeerBadPayload(f"invalid JSON from {url}: {e}")

    def get_json(self, base_url, path="", timeout=None):
        return self.call("GET", join_url(base_url, path), timeout=timeout)

    def rpc(self, url, auth, method, params=(), timeout=None):
        body = {"jsonrpc": "2.0", "id": RPC_ID, "method": method, "params": list(params)}
        user, _, password = (auth or "").partition(":")
        logger.debug(f"Sending RPC request to {url} - Method: {method}")
        try:
            r = requests.post(url, json=body, auth=(user, password), headers=HEADERS,
                              timeout=timeout or self.rpc_timeout)
        except requests.RequestException as e:
            raise PeerUnreachable(f"RPC request to {url} failed: {e}")

        # bitcoind answers a rejected rpcauth with an empty 401
        if not r.content or not r.content.strip():
            raise PeerBadPayload(
                f"empty response from RPC server. Check RPC credentials (rpcauth) "
                f"and rpcallowip in node config. Status: {r.status_code}"
            )
        try:
            reply = r.json()
        except ValueError:
            raise PeerBadPayload(f"failed to parse RPC response: {r.text[:200]}")
        if not isinstance(reply, dict):
            raise PeerBadPayload(f"unexpected RPC response shape: {r.text[:200]}")

        error = reply.get("error")
        if error:
            if isinstance(error, dict):
                raise PeerBadStatus(f"RPC error {error.get('code')}: {error.get('message')}")
            raise PeerBadStatus(f"RPC error: {error}")
        if not 200 <= r.status_code < 300:
            raise PeerBadStatus(f"{r.status_code} {r.reason or ''}".strip(), status_code=r.status_code)
        return reply.get("result")
