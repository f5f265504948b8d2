"""软删除查询过滤

为 ORM SELECT 自动追加 ``deleted_at IS NULL``，只作用于带该列的表。
通过 ``execution_options(include_deleted=True)`` 可查询到已软删除的行。

使用示例:
    from yhistory.orm import activate_soft_delete_filter

    activate_soft_delete_filter()

    session.scalars(select(Version))                                      # 只有未删除的版本
    session.scalars(select(Version).execution_options(include_deleted=True))  # 全部
"""

from dataclasses import dataclass
from typing import List, Optional, Union

from sqlalchemy import Table, event
from sqlalchemy.orm import FromStatement, ORMExecuteState, Session
from sqlalchemy.sql import Alias, CompoundSelect, Join, Select, Subquery, TableClause
from sqlalchemy.sql.elements import TextClause


@dataclass
class IgnoredTable:
    """不参与软删除过滤的表

    表名和 schema 都匹配才算命中。
    """
    name: str
    table_schema: Optional[str] = None

    def match_name(self, table: Table) -> bool:
        return self.name == table.name and self.table_schema == table.schema


class SoftDeleteRewriter:
    """SELECT 语句重写器

    支持普通表、JOIN、子查询、UNION 和别名表。
    """

    def __init__(
            self,
            deleted_field_name: str = "deleted_at",
            disable_soft_delete_option_name: str = "include_deleted",
            ignored_tables: List[IgnoredTable] = None,
    ):
        self.ignored_tables = ignored_tables or []
        self.deleted_field_name = deleted_field_name
        self.disable_soft_delete_option_name = disable_soft_delete_option_name

    def rewrite_statement(self, stmt):
        if isinstance(stmt, Select):
            return self.rewrite_select(stmt)

        if isinstance(stmt, CompoundSelect):
            return self.rewrite_compound_select(stmt)

        if isinstance(stmt, FromStatement):
            if isinstance(stmt.element, Select):
                stmt.element = self.rewrite_select(stmt.element)
            return stmt

        return stmt

    def rewrite_select(self, stmt: Select) -> Select:
        if stmt.get_execution_options().get(self.disable_soft_delete_option_name):
            return stmt

        for from_obj in stmt.get_final_froms():
            stmt = self._analyze_from(stmt, from_obj)

        return stmt

    def rewrite_compound_select(self, stmt: CompoundSelect) -> CompoundSelect:
        for i in range(len(stmt.selects)):
            stmt.selects[i] = self.rewrite_select(stmt.selects[i])
        return stmt

    def _rewrite_subquery(self, subquery: Subquery) -> None:
        if isinstance(subquery.element, CompoundSelect):
            subquery.element = self.rewrite_compound_select(subquery.element)
        elif isinstance(subquery.element, Select):
            subquery.element = self.rewrite_select(subquery.element)

    def _rewrite_join(self, stmt: Select, join_obj: Join) -> Select:
        for side in (join_obj.left, join_obj.right):
            stmt = self._analyze_from(stmt, side)
        return stmt

    def _analyze_from(self, stmt: Select, from_obj) -> Select:
        if isinstance(from_obj, Table):
            return self._rewrite_from_table(stmt, from_obj, from_obj)

        if isinstance(from_obj, Join):
            return self._rewrite_join(stmt, from_obj)

        if isinstance(from_obj, Subquery):
            self._rewrite_subquery(from_obj)
            return stmt

        if isinstance(from_obj, Alias):
            # aliased(Version) 生成的是表别名，过滤条件要写在别名的列上
            if isinstance(from_obj.element, Table):
                return self._rewrite_from_table(stmt, from_obj.element, from_obj)
            if isinstance(from_obj.element, Subquery):
                self._rewrite_subquery(from_obj.element)
            return stmt

        if isinstance(from_obj, (TableClause, TextClause)):
            return stmt

        return stmt

    def _rewrite_from_table(
        self,
        stmt: Select,
        table: Table,
        selectable: Union[Table, Alias],
    ) -> Select:
        if any(ignored.match_name(table) for ignored in self.ignored_tables):
            return stmt

        column_obj = selectable.columns.get(self.deleted_field_name)
        if column_obj is None:
            return stmt

        return stmt.filter(column_obj.is_(None))


# 全局重写器实例，为 None 时过滤不生效
global_rewriter: Optional[SoftDeleteRewriter] = None


def _do_orm_execute(orm_execute_state: ORMExecuteState) -> None:
    if global_rewriter is None:
        return
    if (
        not orm_execute_state.is_select
        or orm_execute_state.is_column_load
        or orm_execute_state.is_relationship_load
    ):
        return
    if orm_execute_state.execution_options.get(global_rewriter.disable_soft_delete_option_name):
        return
    orm_execute_state.statement = global_rewriter.rewrite_statement(orm_execute_state.statement)


def activate_soft_delete_filter(
    deleted_field_name: str = "deleted_at",
    disable_soft_delete_option_name: str = "include_deleted",
    ignored_tables: List[IgnoredTable] = None
) -> SoftDeleteRewriter:
    """激活软删除查询过滤

    可以重复调用，后一次的参数生效，监听器只注册一次。
    """
    global global_rewriter

    global_rewriter = SoftDeleteRewriter(
        deleted_field_name=deleted_field_name,
        disable_soft_delete_option_name=disable_soft_delete_option_name,
        ignored_tables=ignored_tables,
    )
    if not event.contains(Session, "do_orm_execute", _do_orm_execute):
        event.listen(Session, "do_orm_execute", _do_orm_execute)
    return global_rewriter


def deactivate_soft_delete_filter() -> None:
    """停用软删除查询过滤"""
    global global_rewriter
    global_rewriter = None


def is_soft_delete_active() -> bool:
    return global_rewriter is not None
