"""版本化异常类定义

定义版本历史引擎使用的异常类体系。

分类:
    - VersionValidationError: 缺少必要数据或违反唯一约束，不自动重试
    - ConcurrencyError: 等待实体锁超时或序列化失败，调用方可以整体重试 record()
    - StorageError: 存储不可达或 I/O 错误，原样向上传播
"""

import copy
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from fastapi import status


class ErrorCode(str, Enum):
    """错误代码枚举

    继承自 str，可以直接作为字符串使用。
    """

    # ==================== 通用错误 ====================
    VERSIONING_ERROR = "VERSIONING_ERROR"

    # ==================== 验证相关 (422) ====================
    VALIDATION_ERROR = "VALIDATION_ERROR"
    EMPTY_CHANGE_SET = "EMPTY_CHANGE_SET"
    MISSING_ENTITY = "MISSING_ENTITY"
    DUPLICATE_VERSION = "DUPLICATE_VERSION"
    IMMUTABLE_VERSION = "IMMUTABLE_VERSION"

    # ==================== 并发相关 (409) ====================
    LOCK_TIMEOUT = "LOCK_TIMEOUT"
    SERIALIZATION_FAILURE = "SERIALIZATION_FAILURE"

    # ==================== 存储相关 (503) ====================
    STORAGE_ERROR = "STORAGE_ERROR"

    # ==================== 注册表相关 ====================
    REGISTRY_FROZEN = "REGISTRY_FROZEN"


# 类型别名，支持枚举和字符串
ErrorCodeType = Union[str, ErrorCode]


class VersioningException(Exception):
    """版本化异常基类

    所有版本化异常都继承此类。

    属性:
        message: 错误消息
        code: 错误代码（ErrorCode 枚举或字符串）
        status_code: 对应的 HTTP 状态码，宿主应用转换响应时使用
        details: 详细错误信息列表
        extra: 额外的上下文信息（如 versioned_type、versioned_id）
        retryable: 调用方是否可以重试整个操作

    使用示例:
        raise VersioningException(
            "版本记录失败",
            extra={"versioned_type": "Article", "versioned_id": "125"}
        )
    """

    retryable: bool = False

    def __init__(
        self,
        message: str,
        code: ErrorCodeType = ErrorCode.VERSIONING_ERROR,
        status_code: int = status.HTTP_400_BAD_REQUEST,
        details: Optional[List[str]] = None,
        **extra: Any
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or []
        self.extra = extra
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """转换为字典格式"""
        return {
            "message": self.message,
            "code": self.code,
            "status_code": self.status_code,
            "retryable": self.retryable,
            "details": copy.deepcopy(self.details),
            "extra": copy.deepcopy(self.extra)
        }

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"code={self.code!r}, "
            f"status_code={self.status_code})"
        )


class VersionValidationError(VersioningException):
    """版本数据验证异常

    缺少实体引用、变更集为空、版本号或变更集配对重复、
    试图修改已创建的版本时抛出。

    使用示例:
        raise VersionValidationError("变更集为空", code=ErrorCode.EMPTY_CHANGE_SET)
    """

    def __init__(
        self,
        message: str = "版本数据验证失败",
        code: ErrorCodeType = ErrorCode.VALIDATION_ERROR,
        details: Optional[List[str]] = None,
        **extra: Any
    ):
        super().__init__(
            message=message,
            code=code,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details=details,
            **extra
        )


class ConcurrencyError(VersioningException):
    """并发异常

    分配版本号时等待实体锁超时，或数据库报告死锁/序列化失败。
    抛出时不会留下任何部分写入的数据，调用方可以整体重试。
    """

    retryable = True

    def __init__(
        self,
        message: str = "分配版本号时发生并发冲突",
        code: ErrorCodeType = ErrorCode.LOCK_TIMEOUT,
        details: Optional[List[str]] = None,
        **extra: Any
    ):
        super().__init__(
            message=message,
            code=code,
            status_code=status.HTTP_409_CONFLICT,
            details=details,
            **extra
        )


class StorageError(VersioningException):
    """存储异常

    底层存储不可达或 I/O 失败。对当前操作致命，对进程无影响。
    """

    def __init__(
        self,
        message: str = "版本存储不可用",
        code: ErrorCodeType = ErrorCode.STORAGE_ERROR,
        details: Optional[List[str]] = None,
        **extra: Any
    ):
        super().__init__(
            message=message,
            code=code,
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            details=details,
            **extra
        )


class RegistryFrozenError(VersioningException):
    """注册表已冻结

    VersionRegistry 在启动完成后只读，之后再声明版本化类型时抛出。
    """

    def __init__(
        self,
        message: str = "版本化注册表已冻结，不能再声明新的类型",
        code: ErrorCodeType = ErrorCode.REGISTRY_FROZEN,
        details: Optional[List[str]] = None,
        **extra: Any
    ):
        super().__init__(
            message=message,
            code=code,
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            details=details,
            **extra
        )
