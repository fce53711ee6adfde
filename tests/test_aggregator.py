import threading

import pytest

from axedash.aggregator import STATUS_ERROR, PeerOutcome, fan_out, gather
from axedash.errors import PeerBadStatus, PeerError, PeerUnreachable

PEERS = [("a", "http://a"), ("b", "http://b"), ("c", "http://c")]


def test_one_outcome_per_peer_despite_failures():
    def fetch(url, timeout):
        if url == "http://b":
            raise PeerBadStatus("500 Internal Server Error", status_code=500)
        return {"url": url}

    outcomes = {o.name: o for o in fan_out(PEERS, fetch)}
    assert sorted(outcomes) == ["a", "b", "c"]
    assert outcomes["a"].ok and outcomes["a"].payload == {"url": "http://a"}
    assert outcomes["b"].status == STATUS_ERROR
    assert "500" in outcomes["b"].message
    assert outcomes["c"].ok


def test_all_peers_failing():
    def fetch(url, timeout):
        raise PeerUnreachable(f"{url} down")

    outcomes = fan_out(PEERS, fetch)
    assert len(outcomes) == 3
    assert all(not o.ok for o in outcomes)


def test_empty_peer_list():
    assert fan_out([], lambda url, timeout: None) == []


def test_peers_are_queried_concurrently():
    barrier = threading.Barrier(len(PEERS), timeout=5)

    def fetch(url, timeout):
        barrier.wait()
        return url

    assert all(o.ok for o in fan_out(PEERS, fetch))


def test_timeout_is_passed_to_fetch():
    seen = []
    fan_out(PEERS[:1], lambda url, timeout: seen.append(timeout), timeout=7)
    assert seen == [7]


def test_failed_outcome_without_message_uses_class_name():
    outcome = PeerOutcome.failed("x", PeerUnreachable())
    assert outcome.message == "PeerUnreachable"


def test_gather_returns_every_result():
    assert gather({"one": lambda: 1, "two": lambda: 2}) == {"one": 1, "two": 2}


def test_gather_joins_failures_in_submission_order():
    def fail(message):
        def call():
            raise PeerUnreachable(message)
        return call

    with pytest.raises(PeerError) as excinfo:
        gather({"a": lambda: 1, "b": fail("boom"), "c": fail("bad")})
    assert str(excinfo.value) == "b: boom; c: bad"
