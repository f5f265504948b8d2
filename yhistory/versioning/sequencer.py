"""版本号分配

next_number() 返回大于该实体所有已记录版本号（包括已软删除的）的最小整数，没有记录时为 1。

直接读最大值再加一存在竞态，必须在持有实体锁的同一事务中读取并插入，
reserve() 负责这一点：

1. PostgreSQL 先拿事务级咨询锁（pg_try_advisory_xact_lock，轮询直到超时），
   跨进程串行化同一实体的写入；其他支持 FOR UPDATE 的数据库锁住最新一行
2. 再拿进程内的实体锁，持有到 session 最外层事务结束
3. 行锁路径直接使用加锁读到的最大版本号；其余情况在同一事务中读取最大版本号

不同实体的键不同，互不阻塞。唯一约束是最后一道防线。
"""

import hashlib
import time
from typing import Optional

from sqlalchemy import func, select, text
from sqlalchemy import exc as sa_exc
from sqlalchemy.orm import Session

from yhistory.exceptions import ConcurrencyError, ErrorCode, translate_db_error
from yhistory.log import get_logger
from .locks import KeyedLockRegistry, hold_for_transaction
from .models import Version

logger = get_logger()

# 不支持 SELECT ... FOR UPDATE 的方言
_NO_ROW_LOCK_DIALECTS = frozenset({"sqlite"})


def advisory_lock_key(versioned_type: str, versioned_id: str) -> int:
    """实体键的稳定 64 位有符号哈希，用作 PostgreSQL 咨询锁的键"""
    digest = hashlib.blake2b(f"{versioned_type}\x1f{versioned_id}".encode("utf-8"), digest_size=8).digest()
    return int.from_bytes(digest, "big", signed=True)


class VersionSequencer:
    """按实体分配连续的版本号

    Args:
        lock_timeout: 等待实体锁的最长时间（秒）
        poll_interval: 轮询数据库咨询锁的间隔（秒）
        locks: 进程内实体锁集合，多个 sequencer 可以共享
    """

    def __init__(
        self,
        lock_timeout: float = 10.0,
        poll_interval: float = 0.05,
        locks: Optional[KeyedLockRegistry] = None,
    ):
        self.lock_timeout = lock_timeout
        self.poll_interval = poll_interval
        self.locks = locks if locks is not None else KeyedLockRegistry()

    @classmethod
    def from_settings(cls, settings, locks: Optional[KeyedLockRegistry] = None) -> "VersionSequencer":
        """从 VersioningSettings 创建"""
        return cls(
            lock_timeout=settings.lock_timeout,
            poll_interval=settings.lock_poll_interval,
            locks=locks,
        )

    def next_number(self, session: Session, versioned_type: str, versioned_id: str) -> int:
        """读取下一个版本号（不加锁）

        已软删除的版本也计入，版本号永不复用。
        """
        stmt = (
            select(func.max(Version.version_number))
            .where(
                Version.versioned_type == versioned_type,
                Version.versioned_id == versioned_id,
            )
            .execution_options(include_deleted=True)
        )
        current = session.execute(stmt).scalar()
        return (current or 0) + 1

    def reserve(self, session: Session, versioned_type: str, versioned_id: str) -> int:
        """加锁后读取下一个版本号

        锁一直持有到 session 最外层事务结束，调用方应在同一事务中插入版本。

        Raises:
            ConcurrencyError: 等待实体锁超时或数据库报告锁冲突
            StorageError: 存储不可用
        """
        locked = self.lock_entity(session, versioned_type, versioned_id)
        if locked is not None:
            return locked + 1
        try:
            return self.next_number(session, versioned_type, versioned_id)
        except sa_exc.SQLAlchemyError as e:
            raise translate_db_error(e, versioned_type=versioned_type, versioned_id=versioned_id) from e

    def lock_entity(self, session: Session, versioned_type: str, versioned_id: str) -> Optional[int]:
        """获取实体锁并持有到 session 最外层事务结束

        Returns:
            行锁路径下被锁住的最新版本号；没有行可锁或未使用行锁时为 None

        Raises:
            ConcurrencyError: 等待实体锁超时或数据库报告锁冲突
            StorageError: 存储不可用
        """
        deadline = time.monotonic() + self.lock_timeout
        extra = {"versioned_type": versioned_type, "versioned_id": versioned_id}
        locked = None

        try:
            # 开启事务；SQLite 下 BEGIN IMMEDIATE 在这里拿到数据库写锁
            connection = session.connection()
            dialect = connection.dialect.name

            if dialect == "postgresql":
                self._acquire_advisory_lock(session, versioned_type, versioned_id, deadline)
            elif dialect not in _NO_ROW_LOCK_DIALECTS:
                locked = self._lock_latest_row(session, versioned_type, versioned_id)
        except sa_exc.SQLAlchemyError as e:
            raise translate_db_error(e, **extra) from e

        remaining = max(deadline - time.monotonic(), 0)
        if not hold_for_transaction(session, self.locks, (versioned_type, versioned_id), remaining):
            logger.warning(f"Timed out waiting for entity lock {versioned_type}#{versioned_id}")
            raise ConcurrencyError(
                f"等待实体锁超时: {versioned_type}#{versioned_id}",
                code=ErrorCode.LOCK_TIMEOUT,
                **extra
            )
        return locked

    def _acquire_advisory_lock(
        self,
        session: Session,
        versioned_type: str,
        versioned_id: str,
        deadline: float,
    ) -> None:
        lock_key = advisory_lock_key(versioned_type, versioned_id)
        stmt = text("SELECT pg_try_advisory_xact_lock(:lock_key)")
        while True:
            if session.execute(stmt, {"lock_key": lock_key}).scalar():
                return
            if time.monotonic() >= deadline:
                logger.warning(f"Timed out waiting for advisory lock {versioned_type}#{versioned_id}")
                raise ConcurrencyError(
                    f"等待实体锁超时: {versioned_type}#{versioned_id}",
                    code=ErrorCode.LOCK_TIMEOUT,
                    versioned_type=versioned_type,
                    versioned_id=versioned_id,
                )
            time.sleep(self.poll_interval)

    def _lock_latest_row(self, session: Session, versioned_type: str, versioned_id: str) -> Optional[int]:
        # REPEATABLE READ 下普通读可能仍是快照旧值，加锁读拿到的是最新提交的行
        stmt = (
            select(Version.version_number)
            .where(
                Version.versioned_type == versioned_type,
                Version.versioned_id == versioned_id,
            )
            .order_by(Version.version_number.desc())
            .limit(1)
            .with_for_update()
            .execution_options(include_deleted=True)
        )
        return session.execute(stmt).scalar()
