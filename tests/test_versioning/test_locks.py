"""按实体加锁测试"""

import threading

import pytest

from yhistory.versioning import KeyedLockRegistry, held_lock_keys, hold_for_transaction


class TestKeyedLockRegistry:
    """KeyedLockRegistry 测试"""

    def test_acquire_release(self):
        locks = KeyedLockRegistry()
        assert locks.acquire("a", timeout=1)
        assert "a" in locks
        locks.release("a")
        assert "a" not in locks
        assert len(locks) == 0

    def test_reentrant(self):
        locks = KeyedLockRegistry()
        assert locks.acquire("a", timeout=1)
        assert locks.acquire("a", timeout=1)
        locks.release("a")
        assert "a" in locks
        locks.release("a")
        assert len(locks) == 0

    def test_other_thread_times_out(self):
        locks = KeyedLockRegistry()
        locks.acquire("a")
        results = []

        thread = threading.Thread(target=lambda: results.append(locks.acquire("a", timeout=0.05)))
        thread.start()
        thread.join()

        assert results == [False]
        locks.release("a")
        assert len(locks) == 0

    def test_different_keys_do_not_block(self):
        locks = KeyedLockRegistry()
        locks.acquire("a")
        results = []

        def worker():
            results.append(locks.acquire("b", timeout=0.5))
            locks.release("b")

        thread = threading.Thread(target=worker)
        thread.start()
        thread.join()

        assert results == [True]
        locks.release("a")

    def test_release_unknown_key(self):
        with pytest.raises(RuntimeError):
            KeyedLockRegistry().release("missing")


class TestHoldForTransaction:
    """锁绑定到 session 事务的测试"""

    def test_released_on_commit(self, session):
        locks = KeyedLockRegistry()
        session.connection()
        assert hold_for_transaction(session, locks, ("Article", "1"), timeout=1)
        assert held_lock_keys(session) == [("Article", "1")]

        session.commit()

        assert held_lock_keys(session) == []
        assert len(locks) == 0

    def test_released_on_rollback(self, session):
        locks = KeyedLockRegistry()
        session.connection()
        hold_for_transaction(session, locks, ("Article", "1"), timeout=1)

        session.rollback()

        assert len(locks) == 0

    def test_kept_across_savepoint(self, session):
        locks = KeyedLockRegistry()
        session.connection()
        with session.begin_nested():
            hold_for_transaction(session, locks, ("Article", "1"), timeout=1)

        assert ("Article", "1") in locks
        session.commit()
        assert ("Article", "1") not in locks
