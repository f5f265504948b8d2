"""版本化引擎

- ChangeSet: 一次修改的属性变化
- describe / derive_change_type: 版本描述和变更类型
- diff_text: 属性级文本差异
- VersionSequencer: 按实体分配连续版本号
- VersionStore: 记录、查询和级联删除版本
- VersionRegistry: 参与版本化的类型及其属性策略
- VersionTracker: 挂到 SQLAlchemy session 上自动记录版本

使用示例:
    from yhistory.versioning import VersionRegistry, VersionStore, VersionTracker

    registry = VersionRegistry()
    registry.declare(Article, on=["title", "body"])
    registry.freeze()

    store = VersionStore(SessionLocal)
    VersionTracker(registry, store).install(SessionLocal)
"""

from .change_set import AttributeChange, ChangeSet, normalize_value
from .current_actor import (
    actor_scope,
    clear_current_actor_id,
    get_current_actor_id,
    set_current_actor_id,
)
from .description import (
    ChangeType,
    derive_change_type,
    describe,
    describe_destroyed,
    humanize,
    titleize,
    to_sentence,
)
from .diff import DiffSpan, TextDiff, diff_text
from .entity import EntityRef, Versionable, resolve_entity, to_identity
from .locks import KeyedLockRegistry, held_lock_keys, hold_for_transaction
from .models import Version, VersionChangeSet
from .registry import VersionRegistry, VersioningPolicy
from .retry import retry_on_conflict
from .sequencer import VersionSequencer, advisory_lock_key
from .store import VersionStore
from .tracking import VersionTracker

__all__ = [
    "AttributeChange",
    "ChangeSet",
    "normalize_value",
    "actor_scope",
    "clear_current_actor_id",
    "get_current_actor_id",
    "set_current_actor_id",
    "ChangeType",
    "derive_change_type",
    "describe",
    "describe_destroyed",
    "humanize",
    "titleize",
    "to_sentence",
    "DiffSpan",
    "TextDiff",
    "diff_text",
    "EntityRef",
    "Versionable",
    "resolve_entity",
    "to_identity",
    "KeyedLockRegistry",
    "held_lock_keys",
    "hold_for_transaction",
    "Version",
    "VersionChangeSet",
    "VersionRegistry",
    "VersioningPolicy",
    "retry_on_conflict",
    "VersionSequencer",
    "advisory_lock_key",
    "VersionStore",
    "VersionTracker",
]
