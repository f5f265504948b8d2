"""ORM 变更追踪

VersionTracker 把 VersionStore 接到 SQLAlchemy session 上：

- before_flush: 收集已注册类型的新建/修改对象的属性变化（按注册表的 on/except
  策略过滤，去掉主键和簿记列），以及被删除或被软删除（deleted_at 由空变为有值）
  对象的级联请求
- before_commit: 先 flush 一次，确保所有修改都被收集，再为每个对象记录一个版本，
  并对被删除的实体执行级联删除
- 事务回滚时丢弃未记录的变化

flush 过程中不能再 flush，所以收集和记录分在两个事件里。

使用示例:
    registry = VersionRegistry()
    registry.declare(Article, except_=["view_count"])
    registry.freeze()

    store = VersionStore(SessionLocal)
    VersionTracker(registry, store).install(SessionLocal)

    with db_session_scope() as session:
        article = session.get(Article, 125)
        article.title = "New title"
    # 提交时自动生成 "Changed title"
"""

from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

import sqlalchemy as sa
from sqlalchemy import and_, event, select
from sqlalchemy.orm import Session, SessionTransaction, sessionmaker
from sqlalchemy.orm.attributes import NO_VALUE

from yhistory.log import get_logger
from .change_set import ChangeSet
from .current_actor import ActorId, get_current_actor_id
from .entity import EntityRef, Versionable, resolve_entity
from .registry import VersionRegistry, VersioningPolicy
from .store import VersionStore

logger = get_logger()

PENDING_INFO_KEY = "yhistory.pending_versions"
PENDING_DELETES_INFO_KEY = "yhistory.pending_cascades"

# 默认不进入变更集的簿记列
DEFAULT_IGNORED_ATTRIBUTES = ("created_at", "updated_at", "deleted_at")


class _PendingChange:
    """一个对象在当前事务中累积的属性变化"""

    __slots__ = ("obj", "created", "changes")

    def __init__(self, obj: Any, created: bool):
        self.obj = obj
        self.created = created
        self.changes: Dict[str, List[Any]] = {}

    def merge(self, name: str, old: Any, new: Any) -> None:
        # 同一事务内多次 flush：保留最早的旧值和最新的新值
        if name in self.changes:
            old = self.changes[name][0]
        if old == new:
            self.changes.pop(name, None)
            return
        self.changes[name] = [old, new]


def _type_name(obj: Any) -> str:
    if isinstance(obj, Versionable):
        return obj.type_name()
    return type(obj).__name__


class VersionTracker:
    """把版本记录挂到 SQLAlchemy session 事件上

    Args:
        registry: 版本化类型注册表（建议已冻结）
        store: 版本存储
        actor_provider: 没有 logged_user_id 时获取操作人的函数，默认读 ContextVar
        ignored_attributes: 不进入变更集的属性名
        cascade_deletes: 实体删除时是否级联删除其版本
        hard_delete: 实体被物理删除时，是否也物理删除其版本（默认软删除）
        soft_delete_attribute: 宿主实体的软删除标记列，由空变为有值时软删除其版本
    """

    def __init__(
        self,
        registry: VersionRegistry,
        store: VersionStore,
        actor_provider: Callable[[], Optional[ActorId]] = get_current_actor_id,
        ignored_attributes: Sequence[str] = DEFAULT_IGNORED_ATTRIBUTES,
        cascade_deletes: bool = True,
        hard_delete: bool = False,
        soft_delete_attribute: str = "deleted_at",
    ):
        self.registry = registry
        self.store = store
        self.actor_provider = actor_provider
        self.ignored_attributes = frozenset(ignored_attributes)
        self.cascade_deletes = cascade_deletes
        self.hard_delete = hard_delete
        self.soft_delete_attribute = soft_delete_attribute
        self._targets: List[Any] = []

    @classmethod
    def from_settings(
        cls,
        registry: VersionRegistry,
        store: VersionStore,
        settings,
        **kwargs
    ) -> "VersionTracker":
        """从 VersioningSettings 创建"""
        kwargs.setdefault("hard_delete", not settings.soft_delete_cascade)
        return cls(registry, store, **kwargs)

    # ==================== 安装 ====================

    def install(self, target: Union[Session, sessionmaker, type]) -> "VersionTracker":
        """注册事件监听器

        Args:
            target: Session 实例、sessionmaker 或 Session 类
        """
        event.listen(target, "before_flush", self._before_flush)
        event.listen(target, "before_commit", self._before_commit)
        event.listen(target, "after_transaction_end", self._after_transaction_end)
        self._targets.append(target)
        logger.debug(f"VersionTracker installed on {target!r}")
        return self

    def uninstall(self) -> None:
        """移除所有已注册的监听器"""
        for target in self._targets:
            event.remove(target, "before_flush", self._before_flush)
            event.remove(target, "before_commit", self._before_commit)
            event.remove(target, "after_transaction_end", self._after_transaction_end)
        self._targets.clear()

    # ==================== 收集 ====================

    def _policy_for(self, obj: Any) -> Optional[VersioningPolicy]:
        return self.registry.policy(_type_name(obj))

    def _eligible_attributes(self, obj: Any, policy: VersioningPolicy) -> List[str]:
        mapper = sa.inspect(obj).mapper
        primary_keys = {mapper.get_property_by_column(column).key for column in mapper.primary_key}
        names = [
            attr.key
            for attr in mapper.column_attrs
            if attr.key not in primary_keys and attr.key not in self.ignored_attributes
        ]
        return policy.filter(names)

    def _pending(self, session: Session, obj: Any, created: bool) -> _PendingChange:
        pending: Dict[int, _PendingChange] = session.info.setdefault(PENDING_INFO_KEY, {})
        entry = pending.get(id(obj))
        if entry is None:
            entry = pending[id(obj)] = _PendingChange(obj, created)
        return entry

    def _before_flush(self, session: Session, flush_context, instances) -> None:
        for obj in session.new:
            policy = self._policy_for(obj)
            if policy is None:
                continue
            state = sa.inspect(obj)
            entry = self._pending(session, obj, created=True)
            for name in self._eligible_attributes(obj, policy):
                value = state.dict.get(name)
                if value is not None:
                    entry.merge(name, None, value)

        for obj in session.dirty:
            policy = self._policy_for(obj)
            if policy is None or not session.is_modified(obj, include_collections=False):
                continue
            if self._is_soft_deleted(session, obj):
                self._queue_cascade(session, obj, hard=False)
                continue
            entry = self._pending(session, obj, created=False)
            for name, (old, new) in self._changed_values(
                session, obj, self._eligible_attributes(obj, policy)
            ).items():
                entry.merge(name, old, new)

        for obj in session.deleted:
            if self._policy_for(obj) is None:
                continue
            self._queue_cascade(session, obj, hard=self.hard_delete)

    def _changed_values(self, session: Session, obj: Any, names: Sequence[str]) -> Dict[str, List[Any]]:
        """属性名 -> [旧值, 新值]，只包含有变化的属性

        对过期后未读取就赋值的属性，SQLAlchemy 不会加载旧值，
        此时从数据库按主键读出当前事务中的值作为旧值。
        """
        state = sa.inspect(obj)
        changes: Dict[str, List[Any]] = {}
        unloaded: List[str] = []
        for name in names:
            history = state.attrs[name].history
            if not history.has_changes():
                continue
            new = history.added[0] if history.added else None
            if not history.deleted and state.committed_state.get(name, None) is NO_VALUE:
                unloaded.append(name)
                changes[name] = [None, new]
                continue
            changes[name] = [history.deleted[0] if history.deleted else None, new]

        if unloaded:
            for name, old in self._load_persisted_values(session, obj, unloaded).items():
                changes[name][0] = old
        return changes

    def _load_persisted_values(self, session: Session, obj: Any, names: Sequence[str]) -> Dict[str, Any]:
        state = sa.inspect(obj)
        mapper = state.mapper
        if state.identity is None:
            return {}
        columns = [mapper.get_property(name).columns[0] for name in names]
        criteria = and_(*(column == value for column, value in zip(mapper.primary_key, state.identity)))
        # Core 语句不经过 ORM 事件，软删除过滤不会介入
        row = session.connection().execute(select(*columns).where(criteria)).first()
        if row is None:
            return {}
        return dict(zip(names, row))

    def _is_soft_deleted(self, session: Session, obj: Any) -> bool:
        """软删除标记是否在本次 flush 中由空变为有值"""
        name = self.soft_delete_attribute
        if name not in sa.inspect(obj).mapper.column_attrs:
            return False
        change = self._changed_values(session, obj, [name]).get(name)
        return change is not None and change[0] is None and change[1] is not None

    def _queue_cascade(self, session: Session, obj: Any, hard: bool) -> None:
        # 实体已删除，本事务中尚未记录的变化一并丢弃
        session.info.get(PENDING_INFO_KEY, {}).pop(id(obj), None)
        if not self.cascade_deletes:
            return
        ref = resolve_entity(obj, self.store.account_attribute)
        if ref.has_identity:
            session.info.setdefault(PENDING_DELETES_INFO_KEY, []).append((ref, hard))

    # ==================== 记录 ====================

    def _actor_for(self, obj: Any) -> Optional[ActorId]:
        logged_user_id = getattr(obj, "logged_user_id", None)
        if logged_user_id is not None:
            return logged_user_id
        return self.actor_provider()

    def _before_commit(self, session: Session) -> None:
        # SAVEPOINT 提交也会触发 before_commit，只在最外层事务提交时记录
        if session.in_nested_transaction():
            return
        # 先把尚未 flush 的修改收集进来
        session.flush()

        pending: Dict[int, _PendingChange] = session.info.pop(PENDING_INFO_KEY, {})
        cascades: List[Tuple[EntityRef, bool]] = session.info.pop(PENDING_DELETES_INFO_KEY, [])

        for entry in pending.values():
            change_set = ChangeSet(entry.changes)
            if change_set.is_empty:
                continue
            self.store.record(
                entry.obj,
                change_set,
                self._actor_for(entry.obj),
                created=entry.created,
                session=session,
            )

        for ref, hard in cascades:
            self.store.cascade_delete(ref.type_name, ref.identity, hard=hard, session=session)

    def _after_transaction_end(self, session: Session, transaction: SessionTransaction) -> None:
        if transaction.parent is not None:
            return
        # 提交后这里已经为空；回滚时丢弃未记录的变化
        dropped = session.info.pop(PENDING_INFO_KEY, None)
        session.info.pop(PENDING_DELETES_INFO_KEY, None)
        if dropped:
            logger.debug(f"Dropped {len(dropped)} pending version(s) on rollback")
