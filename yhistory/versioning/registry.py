"""版本化类型注册表

启动时声明哪些实体类型参与版本化，以及每个类型的属性白名单（on）
和黑名单（except_），之后 freeze() 变为只读。

注册表是显式传递的对象，不是模块级全局变量::

    registry = VersionRegistry()

    @registry.versioned(on=["title", "body"])
    class Article(Base):
        ...

    registry.declare("Comment", except_=["spam_score"])
    registry.freeze()

    tracker = VersionTracker(registry, store)

注册表只保存策略，把策略应用到具体变更集是 VersionTracker 的职责。
"""

import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Optional, Union

from yhistory.exceptions import RegistryFrozenError
from yhistory.log import get_logger

logger = get_logger()

TypeOrName = Union[str, type]


def type_name_of(type_or_name: TypeOrName) -> str:
    if isinstance(type_or_name, str):
        return type_or_name
    return type_or_name.__name__


def _as_frozenset(names: Optional[Iterable[str]]) -> Optional[FrozenSet[str]]:
    if names is None:
        return None
    if isinstance(names, str):
        return frozenset([names])
    return frozenset(names)


@dataclass(frozen=True)
class VersioningPolicy:
    """单个类型的版本化策略"""
    type_name: str
    on: Optional[FrozenSet[str]] = None
    except_: Optional[FrozenSet[str]] = None

    def permits(self, attribute_name: str) -> bool:
        if self.on is not None and attribute_name not in self.on:
            return False
        if self.except_ is not None and attribute_name in self.except_:
            return False
        return True

    def filter(self, attribute_names: Iterable[str]) -> List[str]:
        """按策略筛选属性名，保持原顺序"""
        return [name for name in attribute_names if self.permits(name)]


class VersionRegistry:
    """版本化类型注册表"""

    def __init__(self):
        self._policies: Dict[str, VersioningPolicy] = {}
        self._frozen = False
        self._lock = threading.Lock()

    # ==================== 声明 ====================

    def declare(
        self,
        type_or_name: TypeOrName,
        on: Optional[Iterable[str]] = None,
        except_: Optional[Iterable[str]] = None,
    ) -> VersioningPolicy:
        """声明一个参与版本化的类型

        Args:
            type_or_name: 实体类或类型名
            on: 属性白名单，None 表示不限制
            except_: 属性黑名单，None 表示不限制

        Raises:
            RegistryFrozenError: 注册表已冻结
        """
        type_name = type_name_of(type_or_name)
        policy = VersioningPolicy(type_name, _as_frozenset(on), _as_frozenset(except_))

        with self._lock:
            if self._frozen:
                raise RegistryFrozenError(versioned_type=type_name)
            if type_name in self._policies:
                logger.warning(f"Versioned type {type_name} declared twice, the later policy wins")
            self._policies[type_name] = policy

        logger.debug(f"Declared versioned type {type_name} (on={policy.on}, except={policy.except_})")
        return policy

    def versioned(
        self,
        on: Optional[Iterable[str]] = None,
        except_: Optional[Iterable[str]] = None,
    ) -> Callable[[type], type]:
        """类装饰器形式的 declare"""
        def decorator(cls: type) -> type:
            self.declare(cls, on=on, except_=except_)
            return cls
        return decorator

    def freeze(self) -> "VersionRegistry":
        """冻结注册表，之后只读"""
        with self._lock:
            self._frozen = True
        logger.info(f"Version registry frozen with {len(self._policies)} type(s)")
        return self

    @property
    def is_frozen(self) -> bool:
        return self._frozen

    # ==================== 查询 ====================

    def policy(self, type_or_name: TypeOrName) -> Optional[VersioningPolicy]:
        return self._policies.get(type_name_of(type_or_name))

    def is_versioned(self, type_or_name: TypeOrName) -> bool:
        return type_name_of(type_or_name) in self._policies

    def allowed_attributes(self, type_or_name: TypeOrName) -> Optional[FrozenSet[str]]:
        policy = self.policy(type_or_name)
        return policy.on if policy is not None else None

    def denied_attributes(self, type_or_name: TypeOrName) -> Optional[FrozenSet[str]]:
        policy = self.policy(type_or_name)
        return policy.except_ if policy is not None else None

    @property
    def versioned_types(self) -> FrozenSet[str]:
        return frozenset(self._policies)

    def __contains__(self, type_or_name: Any) -> bool:
        return isinstance(type_or_name, (str, type)) and self.is_versioned(type_or_name)

    def __len__(self) -> int:
        return len(self._policies)
