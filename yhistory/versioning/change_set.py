"""变更集

一次实体修改中各属性的 (旧值, 新值) 对。不可变，按属性插入顺序迭代。

值在构造时被规整为 JSON 标量，序列化形式为 ``{attribute: [old, new]}``，
与 version_change_sets.object_changes 列一致。
"""

import datetime
import decimal
import enum
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple, Union


def normalize_value(value: Any) -> Any:
    """把属性值规整为 JSON 标量

    None/bool/int/float/str 原样保留，日期时间转 ISO 字符串，
    枚举取其 value，其余一律 ``str()``。
    """
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, (datetime.datetime, datetime.date, datetime.time)):
        return value.isoformat()
    if isinstance(value, enum.Enum):
        return normalize_value(value.value)
    if isinstance(value, (decimal.Decimal, uuid.UUID)):
        return str(value)
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


@dataclass(frozen=True)
class AttributeChange:
    """单个属性的变化"""
    old: Any
    new: Any

    def as_pair(self) -> List[Any]:
        return [self.old, self.new]


ChangeInput = Union[AttributeChange, Tuple[Any, Any], List[Any]]


class ChangeSet(Mapping[str, AttributeChange]):
    """属性名 -> AttributeChange 的不可变映射

    使用示例:
        changes = ChangeSet({"title": ("Old", "New"), "body": (None, "text")})
        changes["title"].new      # "New"
        list(changes)             # ["title", "body"]
        changes.to_dict()         # {"title": ["Old", "New"], "body": [None, "text"]}
    """

    __slots__ = ("_changes",)

    def __init__(self, changes: Optional[Union[Mapping[str, ChangeInput], Iterable[Tuple[str, ChangeInput]]]] = None):
        items = changes.items() if isinstance(changes, Mapping) else (changes or ())
        normalized: Dict[str, AttributeChange] = {}
        for name, change in items:
            if not isinstance(name, str) or not name:
                raise ValueError(f"属性名必须是非空字符串: {name!r}")
            if isinstance(change, AttributeChange):
                old, new = change.old, change.new
            else:
                old, new = change
            normalized[name] = AttributeChange(normalize_value(old), normalize_value(new))
        object.__setattr__(self, "_changes", normalized)

    def __setattr__(self, key, value):
        raise AttributeError("ChangeSet 不可修改")

    def __getitem__(self, name: str) -> AttributeChange:
        return self._changes[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._changes)

    def __len__(self) -> int:
        return len(self._changes)

    def __eq__(self, other) -> bool:
        if isinstance(other, ChangeSet):
            return list(self._changes.items()) == list(other._changes.items())
        return NotImplemented

    def __hash__(self) -> int:
        return hash(tuple(self._changes.items()))

    def __repr__(self) -> str:
        return f"ChangeSet({self.to_dict()!r})"

    @property
    def attribute_names(self) -> List[str]:
        return list(self._changes)

    @property
    def is_empty(self) -> bool:
        return not self._changes

    def to_dict(self) -> Dict[str, List[Any]]:
        """序列化为 ``{attribute: [old, new]}``"""
        return {name: change.as_pair() for name, change in self._changes.items()}

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "ChangeSet":
        """从序列化形式还原，保持键顺序"""
        if not data:
            return cls()
        return cls((name, tuple(pair)) for name, pair in data.items())
