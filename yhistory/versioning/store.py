"""版本存储

VersionStore 负责创建、持久化和查询版本记录，保证每个变更集恰好产生一个版本。

record() 的步骤:
    1. 变更集为空或实体没有标识 -> VersionValidationError，不写任何数据
    2. 从实体读取所属账户（没有则为 None）
    3. 生成描述并推导 change_type
    4. VersionSequencer.reserve() 在实体锁内分配版本号
    5. 在同一个 SAVEPOINT 中插入版本和变更集，要么都成功，要么都不写入

使用示例:
    store = VersionStore(session_factory, VersionSequencer(lock_timeout=5))

    # 自己开 session 并提交
    version = store.record(article, ChangeSet({"title": ("Old", "New")}), actor_id=7)

    # 加入宿主的 session，由宿主提交
    with db_session_scope() as session:
        store.record(article, changes, actor_id=7, session=session)
"""

from contextlib import contextmanager
from datetime import datetime
from typing import Any, Callable, Generator, List, Mapping, Optional, Union

import sqlalchemy as sa
from sqlalchemy import delete, func, select, update
from sqlalchemy import exc as sa_exc
from sqlalchemy.orm import Session, selectinload

from yhistory.exceptions import (
    ErrorCode,
    VersionValidationError,
    translate_db_error,
)
from yhistory.log import get_logger
from .change_set import ChangeSet
from .description import describe, derive_change_type
from .entity import EntityRef, to_identity, resolve_entity
from .models import Version, VersionChangeSet
from .registry import TypeOrName, type_name_of
from .sequencer import VersionSequencer

logger = get_logger()


class VersionStore:
    """版本存储

    Args:
        session_factory: 不传 session 时用来创建 session，通常是 sessionmaker
        sequencer: 版本号分配器
        account_attribute: 实体上表示所属账户的属性名
    """

    def __init__(
        self,
        session_factory: Optional[Callable[..., Session]] = None,
        sequencer: Optional[VersionSequencer] = None,
        account_attribute: str = "account_id",
    ):
        self.session_factory = session_factory
        self.sequencer = sequencer or VersionSequencer()
        self.account_attribute = account_attribute

    @classmethod
    def from_settings(cls, settings, session_factory: Optional[Callable[..., Session]] = None) -> "VersionStore":
        """从 VersioningSettings 创建"""
        return cls(
            session_factory=session_factory,
            sequencer=VersionSequencer.from_settings(settings),
            account_attribute=settings.account_attribute,
        )

    # ==================== session 管理 ====================

    @contextmanager
    def _session_scope(self, session: Optional[Session] = None, **extra: Any) -> Generator[Session, None, None]:
        """传入 session 时直接使用（由调用方提交），否则自己创建并提交"""
        if session is not None:
            yield session
            return

        if self.session_factory is None:
            raise RuntimeError("VersionStore 没有 session_factory，调用时必须传入 session")

        # 提交后返回的版本对象仍需可读
        own_session = self.session_factory(expire_on_commit=False)
        try:
            yield own_session
            own_session.commit()
        except sa_exc.SQLAlchemyError as e:
            own_session.rollback()
            raise translate_db_error(e, **extra) from e
        except Exception:
            own_session.rollback()
            raise
        finally:
            own_session.close()

    # ==================== 写入 ====================

    def record(
        self,
        entity: Any,
        change_set: Union[ChangeSet, Mapping[str, Any]],
        actor_id: Any = None,
        *,
        created: bool = False,
        description: Optional[str] = None,
        session: Optional[Session] = None,
    ) -> Version:
        """为实体的一次修改记录版本

        Args:
            entity: 实体对象、实现 Versionable 的对象或 EntityRef
            change_set: 变更集，也可以是 ``{attribute: (old, new)}``
            actor_id: 操作人，不做默认值推断
            created: 实体是否刚被创建
            description: 显式描述，如 ``"Destroyed Article #125"``，不传则自动生成
            session: 宿主 session，传入时由宿主负责提交

        Returns:
            已持久化的 Version

        Raises:
            VersionValidationError: 变更集为空、实体没有标识或版本号重复
            ConcurrencyError: 等待实体锁超时或序列化失败，可整体重试
            StorageError: 存储不可用
        """
        if not isinstance(change_set, ChangeSet):
            change_set = ChangeSet(change_set)

        ref = resolve_entity(entity, self.account_attribute)
        extra = {"versioned_type": ref.type_name, "versioned_id": ref.identity}

        if change_set.is_empty:
            raise VersionValidationError("变更集为空，不生成版本", code=ErrorCode.EMPTY_CHANGE_SET, **extra)
        if not ref.has_identity:
            raise VersionValidationError("实体没有标识，无法记录版本", code=ErrorCode.MISSING_ENTITY, **extra)

        description = description or describe(ref, change_set.attribute_names, created=created)
        change_type = derive_change_type(description)

        with self._session_scope(session, **extra) as active:
            version_number = self.sequencer.reserve(active, ref.type_name, ref.identity)
            version = Version(
                versioned_type=ref.type_name,
                versioned_id=ref.identity,
                version_number=version_number,
                change_type=change_type.value if change_type else None,
                description=description,
                actor_id=to_identity(actor_id),
                account_id=ref.account_id,
            )
            version.change_set_record = VersionChangeSet(object_changes=change_set.to_dict())

            try:
                with active.begin_nested():
                    active.add(version)
            except sa_exc.SQLAlchemyError as e:
                raise translate_db_error(e, version_number=version_number, **extra) from e

        logger.debug(f"Recorded {version.title} ({description})")
        return version

    def cascade_delete(
        self,
        versioned_type: TypeOrName,
        versioned_id: Any,
        *,
        hard: bool = False,
        session: Optional[Session] = None,
    ) -> int:
        """删除实体的全部版本及其变更集

        默认软删除（保留历史，只是对常规查询隐藏），hard=True 时物理删除。
        整个操作在一个 SAVEPOINT 中完成，不会留下孤立的变更集。

        Returns:
            受影响的版本数量
        """
        type_name = type_name_of(versioned_type)
        identity = to_identity(versioned_id)
        extra = {"versioned_type": type_name, "versioned_id": identity}

        with self._session_scope(session, **extra) as active:
            self.sequencer.lock_entity(active, type_name, identity)
            try:
                with active.begin_nested():
                    if hard:
                        affected = self._hard_delete(active, type_name, identity)
                    else:
                        affected = self._soft_delete(active, type_name, identity)
            except sa_exc.SQLAlchemyError as e:
                raise translate_db_error(e, **extra) from e

        logger.info(
            f"Cascade {'hard' if hard else 'soft'} deleted {affected} version(s) of {type_name}#{identity}"
        )
        return affected

    def _version_rows(self, session: Session, type_name: str, identity: str):
        stmt = (
            select(Version.id, Version.deleted_at)
            .where(Version.versioned_type == type_name, Version.versioned_id == identity)
            .execution_options(include_deleted=True)
        )
        return session.execute(stmt).all()

    def _soft_delete(self, session: Session, type_name: str, identity: str) -> int:
        rows = self._version_rows(session, type_name, identity)
        all_ids = [row.id for row in rows]
        live_ids = [row.id for row in rows if row.deleted_at is None]
        if not all_ids:
            return 0

        now = datetime.now()
        if live_ids:
            session.execute(
                update(Version)
                .where(Version.id.in_(live_ids))
                .values(deleted_at=now)
                .execution_options(synchronize_session=False)
            )
        # 单独软删除过的版本，其变更集也一并标记
        session.execute(
            update(VersionChangeSet)
            .where(VersionChangeSet.version_id.in_(all_ids), VersionChangeSet.deleted_at.is_(None))
            .values(deleted_at=now)
            .execution_options(synchronize_session=False)
        )
        _sync_identity_map(session, all_ids, expunge=False)
        return len(live_ids)

    def _hard_delete(self, session: Session, type_name: str, identity: str) -> int:
        all_ids = [row.id for row in self._version_rows(session, type_name, identity)]
        if not all_ids:
            return 0

        session.execute(
            delete(VersionChangeSet)
            .where(VersionChangeSet.version_id.in_(all_ids))
            .execution_options(synchronize_session=False)
        )
        session.execute(
            delete(Version)
            .where(Version.id.in_(all_ids))
            .execution_options(synchronize_session=False)
        )
        _sync_identity_map(session, all_ids, expunge=True)
        return len(all_ids)

    # ==================== 查询 ====================

    def _entity_query(self, versioned_type: TypeOrName, versioned_id: Any, include_deleted: bool):
        stmt = (
            select(Version)
            .where(
                Version.versioned_type == type_name_of(versioned_type),
                Version.versioned_id == to_identity(versioned_id),
            )
            .options(selectinload(Version.change_set_record))
        )
        if include_deleted:
            return stmt.execution_options(include_deleted=True)
        return stmt.where(Version.deleted_at.is_(None))

    def list_for_entity(
        self,
        versioned_type: TypeOrName,
        versioned_id: Any,
        include_deleted: bool = False,
        session: Optional[Session] = None,
    ) -> List[Version]:
        """实体的全部版本，按版本号升序"""
        stmt = self._entity_query(versioned_type, versioned_id, include_deleted).order_by(
            Version.version_number.asc()
        )
        with self._session_scope(session) as active:
            return list(active.scalars(stmt))

    def versions_of(self, entity: Any, include_deleted: bool = False, session: Optional[Session] = None) -> List[Version]:
        """按实体对象查询全部版本"""
        ref: EntityRef = resolve_entity(entity, self.account_attribute)
        return self.list_for_entity(ref.type_name, ref.identity, include_deleted, session=session)

    def latest(
        self,
        versioned_type: TypeOrName,
        versioned_id: Any,
        session: Optional[Session] = None,
    ) -> Optional[Version]:
        """最新的未删除版本，没有则返回 None"""
        stmt = (
            self._entity_query(versioned_type, versioned_id, include_deleted=False)
            .order_by(Version.version_number.desc())
            .limit(1)
        )
        with self._session_scope(session) as active:
            return active.scalars(stmt).first()

    def get(
        self,
        versioned_type: TypeOrName,
        versioned_id: Any,
        version_number: int,
        include_deleted: bool = False,
        session: Optional[Session] = None,
    ) -> Optional[Version]:
        """按版本号获取版本"""
        stmt = self._entity_query(versioned_type, versioned_id, include_deleted).where(
            Version.version_number == version_number
        )
        with self._session_scope(session) as active:
            return active.scalars(stmt).first()

    def count(
        self,
        versioned_type: TypeOrName,
        versioned_id: Any,
        include_deleted: bool = False,
        session: Optional[Session] = None,
    ) -> int:
        """实体的版本数量"""
        stmt = select(func.count(Version.id)).where(
            Version.versioned_type == type_name_of(versioned_type),
            Version.versioned_id == to_identity(versioned_id),
        )
        if include_deleted:
            stmt = stmt.execution_options(include_deleted=True)
        else:
            stmt = stmt.where(Version.deleted_at.is_(None))
        with self._session_scope(session) as active:
            return active.execute(stmt).scalar() or 0


def _sync_identity_map(session: Session, version_ids: List[int], expunge: bool) -> None:
    """批量语句绕过了 identity map，这里让 session 中已加载的版本对象跟上"""
    ids = set(version_ids)
    for key, obj in list(session.identity_map.items()):
        cls, pk = key[0], key[1]
        if cls is Version:
            matched = pk[0] in ids
        elif cls is VersionChangeSet:
            matched = sa.inspect(obj).dict.get("version_id") in ids
        else:
            continue
        if not matched or obj not in session:
            continue
        if expunge:
            session.expunge(obj)
        else:
            session.expire(obj, ["deleted_at"])
