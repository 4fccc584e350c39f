import threading
import time

import pytest

from true_north.throttle import LatestValueThrottle


def test_only_latest_value_is_delivered():
    received = []
    throttle = LatestValueThrottle(received.append)
    for value in range(10):
        throttle.offer(value)
    assert throttle.flush()
    assert received == [9]
    assert throttle.discarded == 9
    assert throttle.delivered == 1


def test_flush_without_pending_value_is_a_no_op():
    received = []
    throttle = LatestValueThrottle(received.append)
    assert not throttle.flush()
    throttle.offer("a")
    throttle.flush()
    assert not throttle.flush()
    assert received == ["a"]


def test_rejects_non_positive_interval():
    with pytest.raises(ValueError):
        LatestValueThrottle(print, interval=0.0)


def test_background_thread_delivers_at_most_one_value_per_tick():
    received = []
    done = threading.Event()

    def consumer(value):
        received.append(value)
        if value == "last":
            done.set()

    throttle = LatestValueThrottle(consumer, interval=0.01)
    throttle.start()
    try:
        for value in range(1000):
            throttle.offer(value)
        throttle.offer("last")
        assert done.wait(timeout=2.0)
    finally:
        throttle.stop()
    assert received[-1] == "last"
    assert len(received) < 1001
    assert throttle.delivered + throttle.discarded == 1001


def test_consumer_errors_do_not_stop_the_thread():
    calls = []

    def consumer(value):
        calls.append(value)
        if value == "bad":
            raise RuntimeError("boom")

    throttle = LatestValueThrottle(consumer, interval=0.01)
    throttle.start()
    try:
        throttle.offer("bad")
        deadline = time.time() + 2.0
        while "bad" not in calls and time.time() < deadline:
            time.sleep(0.005)
        throttle.offer("good")
        while "good" not in calls and time.time() < deadline:
            time.sleep(0.005)
    finally:
        throttle.stop()
    assert calls == ["bad", "good"]
