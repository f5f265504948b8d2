"""按实体加锁

KeyedLockRegistry 为每个实体键提供一把可重入锁，不同实体互不阻塞。
锁的条目按引用计数管理，没有持有者时自动回收。

hold_for_transaction() 把锁绑定到 session 的最外层事务：
事务提交或回滚时由 after_transaction_end 监听器释放，出错路径也不例外。
"""

import threading
from typing import Dict, Hashable, List, Optional, Tuple

from sqlalchemy import event
from sqlalchemy.orm import Session, SessionTransaction

from yhistory.log import get_logger

logger = get_logger()

HELD_LOCKS_INFO_KEY = "yhistory.held_entity_locks"


class _LockEntry:
    __slots__ = ("lock", "refs")

    def __init__(self):
        self.lock = threading.RLock()
        self.refs = 0


class KeyedLockRegistry:
    """按键分配的可重入锁集合

    使用示例:
        locks = KeyedLockRegistry()
        if locks.acquire(("Article", "125"), timeout=5):
            try:
                ...
            finally:
                locks.release(("Article", "125"))
    """

    def __init__(self):
        self._mutex = threading.Lock()
        self._entries: Dict[Hashable, _LockEntry] = {}

    def acquire(self, key: Hashable, timeout: Optional[float] = None) -> bool:
        """获取键对应的锁

        Args:
            key: 实体键
            timeout: 最长等待秒数，None 表示一直等待

        Returns:
            是否拿到锁
        """
        with self._mutex:
            entry = self._entries.get(key)
            if entry is None:
                entry = self._entries[key] = _LockEntry()
            entry.refs += 1

        if timeout is None:
            acquired = entry.lock.acquire()
        else:
            acquired = entry.lock.acquire(timeout=max(timeout, 0))

        if not acquired:
            self._unref(key, entry)
        return acquired

    def release(self, key: Hashable) -> None:
        """释放键对应的锁，必须由持有锁的线程调用"""
        with self._mutex:
            entry = self._entries.get(key)
        if entry is None:
            raise RuntimeError(f"释放未持有的实体锁: {key!r}")
        entry.lock.release()
        self._unref(key, entry)

    def _unref(self, key: Hashable, entry: _LockEntry) -> None:
        with self._mutex:
            entry.refs -= 1
            if entry.refs == 0 and self._entries.get(key) is entry:
                del self._entries[key]

    def __len__(self) -> int:
        """当前仍有持有者或等待者的键数量"""
        with self._mutex:
            return len(self._entries)

    def __contains__(self, key: Hashable) -> bool:
        with self._mutex:
            return key in self._entries


def hold_for_transaction(
    session: Session,
    locks: KeyedLockRegistry,
    key: Hashable,
    timeout: Optional[float] = None,
) -> bool:
    """获取实体锁并持有到 session 最外层事务结束

    调用前 session 应已开启事务（例如先调用 ``session.connection()``）。
    """
    if not locks.acquire(key, timeout):
        return False
    held: List[Tuple[KeyedLockRegistry, Hashable]] = session.info.setdefault(HELD_LOCKS_INFO_KEY, [])
    held.append((locks, key))
    return True


def held_lock_keys(session: Session) -> List[Hashable]:
    return [key for _, key in session.info.get(HELD_LOCKS_INFO_KEY, ())]


@event.listens_for(Session, "after_transaction_end")
def _release_entity_locks(session: Session, transaction: SessionTransaction) -> None:
    if transaction.parent is not None:
        return
    held = session.info.pop(HELD_LOCKS_INFO_KEY, None)
    if not held:
        return
    for locks, key in reversed(held):
        locks.release(key)
    logger.debug(f"Released {len(held)} entity lock(s) at transaction end")
