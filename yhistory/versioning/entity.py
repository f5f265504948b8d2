"""实体引用

版本记录通过 (类型名, 标识) 引用任意实体，不要求实体继承任何基类。

实体可以实现 Versionable 协议来自定义类型名、标识和所属账户；
未实现时按 SQLAlchemy mapper 的主键（或 ``id`` 属性）推断。
"""

from dataclasses import dataclass
from typing import Any, Optional, Protocol, Tuple, runtime_checkable

import sqlalchemy as sa


@runtime_checkable
class Versionable(Protocol):
    """可版本化实体协议"""

    def type_name(self) -> str:
        ...

    def identity(self) -> Any:
        ...

    def owning_account(self) -> Any:
        ...


@dataclass(frozen=True)
class EntityRef:
    """实体的类型化引用

    标识统一存为字符串，versions.versioned_id 列不关心实体主键的具体类型。
    """
    type_name: str
    identity: Optional[str]
    account_id: Optional[str] = None

    @property
    def has_identity(self) -> bool:
        return self.identity is not None

    @property
    def key(self) -> Tuple[str, Optional[str]]:
        return (self.type_name, self.identity)

    def __str__(self) -> str:
        return f"{self.type_name}#{self.identity}"


def to_identity(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, (tuple, list)):
        if all(part is None for part in value):
            return None
        return ",".join("" if part is None else str(part) for part in value)
    return str(value)


def _extract_primary_key(obj: Any) -> Any:
    """从对象中提取主键值，复合主键返回元组"""
    mapper = sa.inspect(obj.__class__, raiseerr=False)
    if mapper is not None and hasattr(mapper, "primary_key_from_instance"):
        values = mapper.primary_key_from_instance(obj)
        return values[0] if len(values) == 1 else tuple(values)
    return getattr(obj, "id", None)


def resolve_entity(obj: Any, account_attribute: str = "account_id") -> EntityRef:
    """把实体对象解析为 EntityRef

    Args:
        obj: 实体对象、实现 Versionable 的对象或 EntityRef
        account_attribute: 未实现 Versionable 时读取所属账户的属性名

    Returns:
        EntityRef
    """
    if isinstance(obj, EntityRef):
        return obj

    if isinstance(obj, Versionable):
        return EntityRef(
            type_name=obj.type_name(),
            identity=to_identity(obj.identity()),
            account_id=to_identity(obj.owning_account()),
        )

    return EntityRef(
        type_name=type(obj).__name__,
        identity=to_identity(_extract_primary_key(obj)),
        account_id=to_identity(getattr(obj, account_attribute, None)),
    )
