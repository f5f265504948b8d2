"""数据库异常翻译

把 SQLAlchemy / DBAPI 异常映射到版本化异常体系：

    IntegrityError                          -> VersionValidationError(DUPLICATE_VERSION)
    死锁 / 锁等待 / 序列化失败 / database is locked -> ConcurrencyError
    其他 DBAPIError / SQLAlchemyError       -> StorageError
"""

from typing import Any, Optional

from sqlalchemy import exc as sa_exc

from yhistory.log import get_logger
from .exceptions import (
    ErrorCode,
    VersioningException,
    VersionValidationError,
    ConcurrencyError,
    StorageError,
)

logger = get_logger()


# PostgreSQL SQLSTATE: serialization_failure / deadlock_detected / lock_not_available
CONCURRENCY_SQLSTATES = frozenset({"40001", "40P01", "55P03"})

# 其他驱动只能按错误消息识别
CONCURRENCY_MESSAGE_MARKERS = (
    "database is locked",
    "database table is locked",
    "deadlock",
    "lock wait timeout",
    "could not serialize",
    "could not obtain lock",
    "serialization failure",
)


def _sqlstate(error: sa_exc.DBAPIError) -> Optional[str]:
    """取驱动异常上的 SQLSTATE（psycopg2 为 pgcode，psycopg 3 为 sqlstate）"""
    orig = getattr(error, "orig", None)
    if orig is None:
        return None
    return getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)


def is_concurrency_failure(error: BaseException) -> bool:
    """判断数据库异常是否属于锁冲突或序列化失败"""
    if not isinstance(error, sa_exc.DBAPIError):
        return False
    if _sqlstate(error) in CONCURRENCY_SQLSTATES:
        return True
    text = str(getattr(error, "orig", None) or error).lower()
    return any(marker in text for marker in CONCURRENCY_MESSAGE_MARKERS)


def translate_db_error(error: BaseException, **extra: Any) -> VersioningException:
    """把数据库异常转换为版本化异常

    已经是 VersioningException 的原样返回。调用方负责 ``raise ... from error``。

    Args:
        error: 捕获到的异常
        **extra: 附加上下文，如 versioned_type / versioned_id

    Returns:
        对应的版本化异常实例
    """
    if isinstance(error, VersioningException):
        return error

    if isinstance(error, sa_exc.IntegrityError):
        logger.warning(f"Version integrity violation: {error.orig}")
        return VersionValidationError(
            "版本号或变更集重复",
            code=ErrorCode.DUPLICATE_VERSION,
            details=[str(error.orig)],
            **extra
        )

    if is_concurrency_failure(error):
        logger.warning(f"Version write conflict: {getattr(error, 'orig', error)}")
        return ConcurrencyError(
            "写入版本时发生锁冲突或序列化失败",
            code=ErrorCode.SERIALIZATION_FAILURE,
            details=[str(getattr(error, "orig", error))],
            **extra
        )

    logger.error(f"Version storage failure: {error}")
    return StorageError(details=[str(error)], **extra)
