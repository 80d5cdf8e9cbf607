import logging
import threading
from concurrent.futures import ThreadPoolExecutor

from itsm_realtime.realtime import NotificationHub, OutboundBuffer, Session, encode_message


def make_session(user_id: int, capacity: int = 16) -> Session:
    return Session(user_id=user_id, username=f"user{user_id}", buffer=OutboundBuffer(capacity))


def received(session: Session) -> list:
    return session.buffer.drain_nowait()


# =============================================================================
# MEMBERSHIP
# =============================================================================

def test_register_and_unregister_track_count():
    hub = NotificationHub()
    a, b = make_session(1), make_session(2)

    hub.register(a)
    hub.register(b)
    assert hub.active_session_count() == 2

    hub.unregister(a)
    assert hub.active_session_count() == 1
    assert a.buffer.closed
    assert not b.buffer.closed


def test_double_unregister_is_noop():
    hub = NotificationHub()
    a = make_session(1)
    hub.register(a)

    hub.unregister(a)
    hub.unregister(a)

    assert hub.active_session_count() == 0


def test_unregister_unknown_session_is_noop():
    hub = NotificationHub()
    hub.register(make_session(1))
    stranger = make_session(2)

    hub.unregister(stranger)

    assert hub.active_session_count() == 1
    assert not stranger.buffer.closed


def test_sessions_of_same_user_are_distinct():
    hub = NotificationHub()
    hub.register(make_session(7))
    hub.register(make_session(7))

    assert hub.active_session_count() == 2


def test_register_logs_active_count(caplog):
    hub = NotificationHub()
    with caplog.at_level(logging.INFO, logger="itsm_realtime.realtime.hub"):
        hub.register(make_session(4))
    assert "user_id=4" in caplog.text
    assert "active=1" in caplog.text


# =============================================================================
# DELIVERY
# =============================================================================

def test_broadcast_delivers_same_bytes_to_everyone():
    hub = NotificationHub()
    sessions = [make_session(i) for i in (1, 2, 3)]
    for s in sessions:
        hub.register(s)

    hub.broadcast({"type": "ticket_updated", "id": 42})

    frames = [received(s) for s in sessions]
    assert all(f == [b'{"type":"ticket_updated","id":42}'] for f in frames)
    # Encoded once, shared by reference
    assert frames[0][0] is frames[1][0] is frames[2][0]


def test_send_to_user_targets_only_that_user():
    hub = NotificationHub()
    a1, a2, b = make_session(1), make_session(1), make_session(2)
    for s in (a1, a2, b):
        hub.register(s)

    hub.send_to_user(1, "hi")

    assert received(a1) == [b'"hi"']
    assert received(a2) == [b'"hi"']
    assert received(b) == []


def test_send_to_user_without_sessions_is_noop():
    hub = NotificationHub()
    other = make_session(2)
    hub.register(other)

    hub.send_to_user(99, {"type": "x"})

    assert received(other) == []
    assert hub.active_session_count() == 1


def test_send_to_users_encodes_once():
    calls = []

    def counting_encoder(message):
        calls.append(message)
        return encode_message(message)

    hub = NotificationHub(encoder=counting_encoder)
    sessions = [make_session(uid) for uid in (1, 1, 2, 2, 3)]
    for s in sessions:
        hub.register(s)

    hub.send_to_users([1, 2], {"type": "all"})

    assert len(calls) == 1
    assert [len(received(s)) for s in sessions] == [1, 1, 1, 1, 0]


def test_per_session_order_is_fifo():
    hub = NotificationHub()
    s = make_session(1)
    hub.register(s)

    for n in range(5):
        hub.broadcast(n)

    assert received(s) == [b"0", b"1", b"2", b"3", b"4"]


def test_pydantic_models_are_encoded_as_json():
    from itsm_realtime.models import Announcement, EventType, RealtimeEvent

    hub = NotificationHub()
    s = make_session(1)
    hub.register(s)

    hub.broadcast(RealtimeEvent(
        type=EventType.ANNOUNCEMENT,
        payload=Announcement(title="Maintenance", message="Tonight 22:00")
    ))

    (frame,) = received(s)
    assert frame.startswith(b'{"type":"announcement","payload":{"title":"Maintenance"')


def test_encode_failure_abandons_delivery(caplog):
    def broken_encoder(message):
        raise ValueError("cannot encode")

    hub = NotificationHub(encoder=broken_encoder)
    s = make_session(1)
    hub.register(s)

    with caplog.at_level(logging.ERROR, logger="itsm_realtime.realtime.hub"):
        hub.broadcast({"type": "x"})

    assert received(s) == []
    assert hub.active_session_count() == 1
    assert "Failed to encode" in caplog.text


def test_unserializable_message_is_dropped():
    hub = NotificationHub()
    s = make_session(1)
    hub.register(s)

    hub.broadcast({"bad": object()})

    assert received(s) == []


# =============================================================================
# EVICTION
# =============================================================================

def test_full_buffer_evicts_within_same_call(caplog):
    hub = NotificationHub()
    slow = make_session(1, capacity=1)
    fast = make_session(2, capacity=10)
    hub.register(slow)
    hub.register(fast)

    hub.broadcast("first")
    assert hub.active_session_count() == 2

    with caplog.at_level(logging.WARNING, logger="itsm_realtime.realtime.hub"):
        hub.broadcast("second")

    assert hub.active_session_count() == 1
    assert slow.buffer.closed
    assert "evicted" in caplog.text
    assert received(fast) == [b'"first"', b'"second"']
    assert received(slow) == [b'"first"']


def test_evicted_session_never_receives_again():
    hub = NotificationHub()
    slow = make_session(1, capacity=1)
    hub.register(slow)

    hub.send_to_user(1, "a")
    hub.send_to_user(1, "b")  # overflow, evicted
    received(slow)

    hub.send_to_user(1, "c")
    hub.broadcast("d")
    hub.send_to_users([1], "e")

    assert received(slow) == []
    assert hub.active_session_count() == 0


def test_unregister_after_eviction_is_noop():
    hub = NotificationHub()
    slow = make_session(1, capacity=1)
    hub.register(slow)
    hub.broadcast(1)
    hub.broadcast(2)

    hub.unregister(slow)

    assert hub.active_session_count() == 0


# =============================================================================
# SCENARIOS
# =============================================================================

def test_end_to_end_targeting_scenario():
    hub = NotificationHub()
    a, b, c = make_session(1), make_session(1), make_session(2)
    for s in (a, b, c):
        hub.register(s)

    hub.send_to_user(1, "hi")
    assert received(a) == [b'"hi"']
    assert received(b) == [b'"hi"']
    assert received(c) == []

    hub.send_to_users([1, 2], "all")
    assert received(a) == [b'"all"']
    assert received(b) == [b'"all"']
    assert received(c) == [b'"all"']

    hub.unregister(b)
    hub.broadcast("bye")
    assert received(a) == [b'"bye"']
    assert received(c) == [b'"bye"']
    assert received(b) == []
    assert b.buffer.closed


class GuardedBuffer(OutboundBuffer):
    """Records any offer made after the buffer was closed."""

    violations = []

    def offer(self, message):
        if self.closed:
            GuardedBuffer.violations.append(message)
        return super().offer(message)


def test_concurrent_stress_keeps_count_consistent():
    GuardedBuffer.violations = []
    hub = NotificationHub()
    kept = []
    kept_lock = threading.Lock()

    def worker(i):
        session = Session(user_id=i % 50, username=f"u{i}", buffer=GuardedBuffer(capacity=10_000))
        hub.register(session)
        if i % 3 == 0:
            hub.broadcast({"n": i})
        elif i % 3 == 1:
            hub.send_to_user(i % 50, {"n": i})
        else:
            hub.send_to_users([i % 50, (i + 1) % 50], {"n": i})
        assert hub.active_session_count() >= 0
        if i % 2 == 0:
            hub.unregister(session)
            hub.unregister(session)
        else:
            with kept_lock:
                kept.append(session)

    with ThreadPoolExecutor(max_workers=64) as pool:
        # Raises TimeoutError on deadlock, re-raises worker exceptions
        list(pool.map(worker, range(1000), timeout=60))

    assert GuardedBuffer.violations == []
    assert len(kept) == 500
    assert hub.active_session_count() == 500
    assert not any(s.buffer.closed for s in kept)


def test_concurrent_broadcast_with_churn_has_no_torn_state():
    rounds = 3
    hub = NotificationHub()
    stable = [make_session(1000 + i, capacity=100_000) for i in range(10)]
    for s in stable:
        hub.register(s)
    stop = threading.Event()

    def churn():
        while not stop.is_set():
            s = make_session(1, capacity=100_000)
            hub.register(s)
            hub.unregister(s)

    def blast():
        for n in range(500):
            hub.broadcast(n)

    for _ in range(rounds):
        churners = [threading.Thread(target=churn) for _ in range(4)]
        for t in churners:
            t.start()
        blasters = [threading.Thread(target=blast) for _ in range(4)]
        for t in blasters:
            t.start()
        for t in blasters:
            t.join(timeout=30)
        stop.set()
        for t in churners:
            t.join(timeout=30)
        stop.clear()
        assert not any(t.is_alive() for t in churners + blasters)

    assert hub.active_session_count() == len(stable)
    assert all(len(s.buffer) == rounds * 4 * 500 for s in stable)
