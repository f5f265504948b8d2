"""ORM 模块

- Base: 声明基类
- db_manager / init_database / db_session_scope: 引擎和会话管理
- activate_soft_delete_filter: 软删除查询过滤
"""

from .id_model import Base

from .db_session import (
    DatabaseManager,
    db_manager,
    init_database,
    create_engine_from_settings,
    get_engine,
    get_session_factory,
    db_session_scope,
    with_db_session,
)

from .soft_delete import (
    IgnoredTable,
    SoftDeleteRewriter,
    activate_soft_delete_filter,
    deactivate_soft_delete_filter,
    is_soft_delete_active,
)

__all__ = [
    "Base",
    "DatabaseManager",
    "db_manager",
    "init_database",
    "create_engine_from_settings",
    "get_engine",
    "get_session_factory",
    "db_session_scope",
    "with_db_session",
    "IgnoredTable",
    "SoftDeleteRewriter",
    "activate_soft_delete_filter",
    "deactivate_soft_delete_filter",
    "is_soft_delete_active",
]
