from __future__ import annotations

import threading

import pytest

from passkey_rp.challenges import REGISTRATION, ChallengeGenerator, InMemorySessionStore


def test_challenges_are_long_and_unique():
    generator = ChallengeGenerator()
    challenges = [generator.generate() for _ in range(1000)]
    assert all(len(challenge) >= 16 for challenge in challenges)
    assert len(set(challenges)) == len(challenges)


def test_generator_honours_configured_size():
    assert len(ChallengeGenerator(48).generate()) == 48


def test_generator_rejects_short_challenges():
    with pytest.raises(ValueError):
        ChallengeGenerator(8)


def test_pop_is_single_use():
    store = InMemorySessionStore()
    store.set("s1", REGISTRATION, b"challenge")
    assert store.get("s1", REGISTRATION) == b"challenge"
    assert store.pop("s1", REGISTRATION) == b"challenge"
    assert store.pop("s1", REGISTRATION) is None
    assert store.get("s1", REGISTRATION) is None


def test_entries_are_scoped_per_session():
    store = InMemorySessionStore()
    store.set("s1", REGISTRATION, b"one")
    store.set("s2", REGISTRATION, b"two")
    store.delete("s1", REGISTRATION)
    assert store.get("s1", REGISTRATION) is None
    assert store.get("s2", REGISTRATION) == b"two"


def test_expired_entries_are_not_returned(monkeypatch):
    from passkey_rp import challenges

    now = [100.0]
    monkeypatch.setattr(challenges.time, "monotonic", lambda: now[0])
    store = InMemorySessionStore(ttl=10)
    store.set("s1", REGISTRATION, b"challenge")
    now[0] = 111.0
    assert store.pop("s1", REGISTRATION) is None


def test_concurrent_pop_hands_out_challenge_once():
    store = InMemorySessionStore()
    store.set("s1", REGISTRATION, b"challenge")
    results = []
    barrier = threading.Barrier(8)

    def worker():
        barrier.wait()
        results.append(store.pop("s1", REGISTRATION))

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    assert results.count(b"challenge") == 1
