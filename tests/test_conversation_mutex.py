import threading
import time

import pytest

from orderflow.services.conversation_mutex import ConversationBusyError, InMemoryConversationMutex


def test_same_conversation_is_serialized():
    mutex = InMemoryConversationMutex(timeout_seconds=2)
    events = []

    def worker(name):
        with mutex.hold(1, "905551112233"):
            events.append(f"{name}-in")
            time.sleep(0.05)
            events.append(f"{name}-out")

    threads = [threading.Thread(target=worker, args=(name,)) for name in ("a", "b")]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(events) == 4
    assert events[0].endswith("-in") and events[1].endswith("-out")
    assert events[0][0] == events[1][0]
    assert mutex.active_keys() == 0


def test_busy_conversation_times_out():
    mutex = InMemoryConversationMutex(timeout_seconds=0.05)
    held = threading.Event()
    release = threading.Event()

    def holder():
        with mutex.hold(1, "905551112233"):
            held.set()
            release.wait(2)

    thread = threading.Thread(target=holder)
    thread.start()
    held.wait(2)
    try:
        with pytest.raises(ConversationBusyError):
            with mutex.hold(1, "905551112233"):
                pass
        with mutex.hold(1, "905550000000"):
            assert mutex.active_keys() == 2
    finally:
        release.set()
        thread.join()

    assert mutex.active_keys() == 0
