"""异常处理模块

提供版本化异常类、数据库异常翻译和 FastAPI 异常处理器。

使用示例:
    from yhistory.exceptions import ConcurrencyError, VersionValidationError

    try:
        store.record(article, change_set, actor_id=7)
    except ConcurrencyError:
        ...  # 可以整体重试
"""

from .exceptions import (
    ErrorCode,
    ErrorCodeType,
    VersioningException,
    VersionValidationError,
    ConcurrencyError,
    StorageError,
    RegistryFrozenError,
)

from .translate import (
    translate_db_error,
    is_concurrency_failure,
)

from .handlers import (
    register_exception_handlers,
    versioning_exception_handler,
)

__all__ = [
    "ErrorCode",
    "ErrorCodeType",
    "VersioningException",
    "VersionValidationError",
    "ConcurrencyError",
    "StorageError",
    "RegistryFrozenError",
    "translate_db_error",
    "is_concurrency_failure",
    "register_exception_handlers",
    "versioning_exception_handler",
]
