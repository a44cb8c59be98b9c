"""Tests for per-key locking."""

from __future__ import annotations

import threading

from segment_match.locks import Generations, KeyedLocks


def test_locks_are_dropped_when_released() -> None:
    locks = KeyedLocks()
    with locks.hold(("list", 1, 15.0)):
        assert len(locks) == 1
        with locks.hold(("list", 1, 15.0)):
            assert len(locks) == 1
    assert len(locks) == 0


def test_different_keys_do_not_block() -> None:
    locks = KeyedLocks()
    holding = threading.Event()
    release = threading.Event()

    def hold_first() -> None:
        with locks.hold("a"):
            holding.set()
            release.wait(timeout=5)

    worker = threading.Thread(target=hold_first)
    worker.start()
    assert holding.wait(timeout=5)
    try:
        acquired = threading.Event()

        def take_other() -> None:
            with locks.hold("b"):
                acquired.set()

        other = threading.Thread(target=take_other)
        other.start()
        assert acquired.wait(timeout=5)
        other.join(timeout=5)
    finally:
        release.set()
        worker.join(timeout=5)


def test_same_key_is_serialised() -> None:
    locks = KeyedLocks()
    active = []
    overlaps = []
    guard = threading.Lock()

    def work() -> None:
        with locks.hold("entry"):
            with guard:
                active.append(1)
                if len(active) > 1:
                    overlaps.append(True)
            threading.Event().wait(0.01)
            with guard:
                active.pop()

    threads = [threading.Thread(target=work) for _ in range(5)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=5)
    assert overlaps == []
    assert len(locks) == 0


def test_hold_all_takes_keys_once_in_sorted_order() -> None:
    locks = KeyedLocks()
    with locks.hold_all([("segment", 2), ("activity", 1), ("segment", 2)]):
        assert len(locks) == 2
    assert len(locks) == 0


def test_generations_flag_a_bump_after_the_snapshot() -> None:
    generations = Generations()
    sources = [("segment", 1), ("routes",)]
    seen = generations.snapshot(sources)

    with generations.unchanged(sources, seen) as current:
        assert current
    with generations.bump(("segment", 2)):
        pass
    with generations.unchanged(sources, seen) as current:
        assert current

    with generations.bump(("routes",)):
        pass
    with generations.unchanged(sources, seen) as current:
        assert not current
    assert generations.snapshot(sources) == (0, 1)


def test_writer_waits_for_eviction_in_progress() -> None:
    locks = KeyedLocks()
    generations = Generations(locks)
    key = ("segment", 1)
    seen = generations.snapshot([key])
    evicting = threading.Event()
    release = threading.Event()
    results = []

    def evict() -> None:
        with generations.bump(key):
            evicting.set()
            release.wait(timeout=5)

    def write() -> None:
        with generations.unchanged([key], seen) as current:
            results.append(current)

    evictor = threading.Thread(target=evict)
    evictor.start()
    assert evicting.wait(timeout=5)
    writer = threading.Thread(target=write)
    writer.start()
    writer.join(timeout=0.2)
    try:
        assert results == []
    finally:
        release.set()
        evictor.join(timeout=5)
        writer.join(timeout=5)
    assert results == [False]
    assert len(locks) == 0
