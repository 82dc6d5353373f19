import threading
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from app.core.exceptions import IncompleteUploadError, UploadNotFoundError
from app.core.session import UploadRegistry, UploadSession


def make_session(upload_id="u1", total_chunks=4):
    return UploadSession(
        upload_id=upload_id,
        filename="file.bin",
        total_size=total_chunks * 10,
        chunk_size=10,
        total_chunks=total_chunks,
    )


def test_create_and_contains():
    registry = UploadRegistry()
    registry.create(make_session())
    assert "u1" in registry
    assert "other" not in registry
    assert len(registry) == 1


def test_create_duplicate_rejected():
    registry = UploadRegistry()
    registry.create(make_session())
    with pytest.raises(ValueError):
        registry.create(make_session())


def test_mutate_unknown_id():
    registry = UploadRegistry()
    with pytest.raises(UploadNotFoundError):
        with registry.mutate("missing"):
            pass


def test_mark_received_ignores_out_of_range():
    session = make_session(total_chunks=2)
    session.mark_received(0)
    session.mark_received(0)
    session.mark_received(5)
    assert session.received_chunks == {0}
    assert not session.is_complete()
    session.mark_received(1)
    assert session.is_complete()


def test_get_returns_snapshot():
    registry = UploadRegistry()
    registry.create(make_session(total_chunks=3))
    with registry.mutate("u1") as session:
        session.mark_received(2)
    progress = registry.get("u1")
    assert progress.received == [2]
    assert progress.missing == [0, 1]

    with registry.mutate("u1") as session:
        session.mark_received(0)
    assert progress.received == [2]


def test_remove_returns_session_once():
    registry = UploadRegistry()
    registry.create(make_session())
    session = registry.remove("u1")
    assert session.upload_id == "u1"
    assert "u1" not in registry
    with pytest.raises(UploadNotFoundError):
        registry.remove("u1")


def test_restore_puts_removed_session_back():
    registry = UploadRegistry()
    registry.create(make_session())
    with registry.mutate("u1") as session:
        session.mark_received(1)
    session = registry.remove("u1")

    registry.restore(session)
    assert "u1" in registry
    assert registry.get("u1").received == [1]
    with pytest.raises(ValueError):
        registry.restore(session)
    assert registry.remove("u1") is session


def test_failed_precondition_keeps_session():
    registry = UploadRegistry()
    registry.create(make_session(total_chunks=2))

    def require_complete(session):
        if not session.is_complete():
            raise IncompleteUploadError(len(session.received_chunks), session.total_chunks)

    with pytest.raises(IncompleteUploadError):
        registry.remove("u1", precondition=require_complete)
    assert "u1" in registry

    with registry.mutate("u1") as session:
        session.mark_received(0)
        session.mark_received(1)
    assert registry.remove("u1", precondition=require_complete).is_complete()


def test_mutation_of_one_session_does_not_block_another():
    registry = UploadRegistry()
    registry.create(make_session("slow"))
    registry.create(make_session("fast"))
    entered = threading.Event()
    release = threading.Event()

    def hold_slow():
        with registry.mutate("slow"):
            entered.set()
            release.wait(timeout=5)

    thread = threading.Thread(target=hold_slow)
    thread.start()
    try:
        assert entered.wait(timeout=5)
        start = time.monotonic()
        with registry.mutate("fast") as session:
            session.mark_received(1)
        registry.remove("fast")
        assert time.monotonic() - start < 1
    finally:
        release.set()
        thread.join()


def test_remove_waits_for_in_flight_mutation():
    registry = UploadRegistry()
    registry.create(make_session())
    entered = threading.Event()
    release = threading.Event()

    def mutate():
        with registry.mutate("u1") as session:
            entered.set()
            release.wait(timeout=5)
            session.mark_received(3)

    thread = threading.Thread(target=mutate)
    thread.start()
    assert entered.wait(timeout=5)
    with ThreadPoolExecutor(max_workers=1) as pool:
        future = pool.submit(registry.remove, "u1")
        time.sleep(0.05)
        assert not future.done()
        release.set()
        removed = future.result(timeout=5)
    thread.join()
    assert removed.received_chunks == {3}


def test_concurrent_marks_are_not_lost():
    total = 50
    for _ in range(5):
        registry = UploadRegistry()
        registry.create(make_session(total_chunks=total))

        def mark(index):
            with registry.mutate("u1") as session:
                session.mark_received(index)

        with ThreadPoolExecutor(max_workers=16) as pool:
            list(pool.map(mark, [i % total for i in range(total * 4)]))

        assert registry.get("u1").received == list(range(total))


def test_concurrent_remove_succeeds_once():
    for _ in range(20):
        registry = UploadRegistry()
        registry.create(make_session())
        barrier = threading.Barrier(8)

        def attempt():
            barrier.wait()
            try:
                registry.remove("u1")
                return True
            except UploadNotFoundError:
                return False

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(lambda _: attempt(), range(8)))
        assert results.count(True) == 1
