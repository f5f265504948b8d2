"""版本表模型

- versions: 每次实体修改一行，(versioned_type, versioned_id, version_number) 唯一
- version_change_sets: 变更数据，version_id 唯一，与版本一一对应

版本创建后只允许设置 deleted_at（软删除），其他列的修改在 flush 时被拒绝。
"""

from datetime import datetime
from functools import cached_property
from typing import Any, Dict, Optional

import sqlalchemy as sa
from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
    event,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from yhistory.exceptions import ErrorCode, VersionValidationError
from yhistory.orm.id_model import Base
from .change_set import ChangeSet
from .description import ChangeType, titleize
from .diff import TextDiff, diff_text


class Version(Base):
    """实体的一次历史状态变化"""
    __tablename__ = "versions"
    __table_args__ = (
        UniqueConstraint(
            "versioned_type", "versioned_id", "version_number",
            name="uq_versions_entity_number",
        ),
        CheckConstraint("version_number >= 1", name="ck_versions_number_positive"),
        Index("ix_versions_entity", "versioned_type", "versioned_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    versioned_type: Mapped[str] = mapped_column(String(255), nullable=False)
    versioned_id: Mapped[str] = mapped_column(String(255), nullable=False)
    version_number: Mapped[int] = mapped_column(Integer, nullable=False)
    change_type: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    actor_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    account_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.now)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    change_set_record: Mapped["VersionChangeSet"] = relationship(
        "VersionChangeSet",
        back_populates="version",
        uselist=False,
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    @property
    def changes(self) -> ChangeSet:
        """变更集"""
        if self.change_set_record is None:
            return ChangeSet()
        return ChangeSet.from_dict(self.change_set_record.object_changes)

    @property
    def change_type_enum(self) -> Optional[ChangeType]:
        return ChangeType(self.change_type) if self.change_type else None

    @cached_property
    def attribute_diffs(self) -> Dict[str, TextDiff]:
        """每个属性的文本差异

        首次访问时计算并缓存在实例上，不落库。迭代顺序与变更集一致。
        """
        return {
            name: diff_text(change.old, change.new)
            for name, change in self.changes.items()
        }

    @property
    def title(self) -> str:
        """简短标题，如 ``"Article #125 v6"``"""
        return f"{titleize(self.versioned_type)} #{self.versioned_id} v{self.version_number}"

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "versioned_type": self.versioned_type,
            "versioned_id": self.versioned_id,
            "version_number": self.version_number,
            "change_type": self.change_type,
            "description": self.description,
            "actor_id": self.actor_id,
            "account_id": self.account_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "deleted_at": self.deleted_at.isoformat() if self.deleted_at else None,
            "object_changes": self.changes.to_dict(),
        }

    def __repr__(self) -> str:
        return (
            f"<Version {self.versioned_type}#{self.versioned_id} "
            f"v{self.version_number} {self.change_type or 'unknown'}>"
        )


class VersionChangeSet(Base):
    """版本的变更数据，每个版本恰好一行"""
    __tablename__ = "version_change_sets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    version_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("versions.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    object_changes: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    version: Mapped[Version] = relationship("Version", back_populates="change_set_record")


# 除软删除标记外，版本记录不可修改
_MUTABLE_COLUMNS = frozenset({"deleted_at"})


def _reject_changes(mapper, connection, target) -> None:
    state = sa.inspect(target)
    changed = [
        attr.key
        for attr in mapper.column_attrs
        if attr.key not in _MUTABLE_COLUMNS and state.attrs[attr.key].history.has_changes()
    ]
    if changed:
        raise VersionValidationError(
            f"版本记录创建后不可修改: {', '.join(changed)}",
            code=ErrorCode.IMMUTABLE_VERSION,
            attributes=changed,
        )


event.listen(Version, "before_update", _reject_changes)
event.listen(VersionChangeSet, "before_update", _reject_changes)
