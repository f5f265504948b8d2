"""
数据库会话管理模块

提供数据库引擎创建、会话管理等功能。

公开 API:
- db_manager: 数据库管理器单例
- init_database(): 初始化数据库连接
- create_engine_from_settings(): 按配置创建引擎（不修改单例）
- get_engine() / get_session_factory()
- db_session_scope(): 上下文管理器，自动提交或回滚
- with_db_session(): 装饰器方式管理 session
"""

import logging
import os
from contextlib import contextmanager
from functools import wraps
from typing import Any, Callable, Generator, Optional, TypeVar

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from yhistory.log import get_logger

_logger = get_logger("yhistory.orm.session")

T = TypeVar('T')

__all__ = [
    'DatabaseManager',
    'db_manager',
    'init_database',
    'create_engine_from_settings',
    'get_engine',
    'get_session_factory',
    'db_session_scope',
    'with_db_session',
]


def _install_sqlite_transaction_hooks(engine: Engine, begin_statement: str) -> None:
    """让 pysqlite 交给 SQLAlchemy 控制事务

    pysqlite 默认自己决定何时 BEGIN，SAVEPOINT 和事务隔离都会失效。
    关闭驱动的事务管理后，由 begin 事件显式发出 BEGIN 语句。
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql(begin_statement)


def create_engine_from_settings(
    database_url: str = None,
    echo: bool = False,
    pool_size: int = 5,
    max_overflow: int = 10,
    pool_timeout: int = 30,
    pool_recycle: int = 3600,
    pool_pre_ping: bool = True,
    sqlite_begin: str = "BEGIN IMMEDIATE",
    config: Any = None,
    logger: logging.Logger = None,
) -> Engine:
    """创建数据库引擎

    Args:
        database_url: 数据库连接URL（如果提供 config 则忽略）
        echo: 是否输出SQL语句
        pool_size: 连接池大小
        max_overflow: 最大溢出连接数
        pool_timeout: 连接超时时间，SQLite 下同时作为等待写锁的 busy timeout
        pool_recycle: 连接回收时间
        pool_pre_ping: 连接前是否ping
        sqlite_begin: SQLite 开启事务的语句
        config: 数据库配置对象（DatabaseSettings）
        logger: 日志记录器

    Returns:
        Engine 对象

    使用示例:
        engine = create_engine_from_settings(config=settings.database)
    """
    if config is not None:
        database_url = getattr(config, "url", database_url)
        echo = getattr(config, "echo", echo)
        pool_size = getattr(config, "pool_size", pool_size)
        max_overflow = getattr(config, "max_overflow", max_overflow)
        pool_timeout = getattr(config, "pool_timeout", pool_timeout)
        pool_recycle = getattr(config, "pool_recycle", pool_recycle)
        pool_pre_ping = getattr(config, "pool_pre_ping", pool_pre_ping)
        sqlite_begin = getattr(config, "sqlite_begin", sqlite_begin)

    if not database_url:
        raise ValueError("database_url 是必需的，请通过参数或 config 提供")

    if logger is None:
        logger = _logger

    logger.info(f"数据库配置URL: {database_url}")

    if not database_url.startswith("sqlite"):
        engine = create_engine(
            database_url,
            echo=echo,
            pool_pre_ping=pool_pre_ping,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_timeout=pool_timeout,
            pool_recycle=pool_recycle
        )
        logger.info("数据库引擎创建成功")
        return engine

    db_path = database_url.split(":///", 1)[-1] if ":///" in database_url else ""
    is_memory_db = db_path in ("", ":memory:")

    if is_memory_db:
        # 内存数据库：所有 session 共用一个连接
        engine = create_engine(
            database_url,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        logger.info("SQLite内存数据库引擎创建成功（StaticPool）")
    else:
        logger.info(f"SQLite文件数据库路径: {os.path.abspath(db_path)}")
        engine = create_engine(
            database_url,
            echo=echo,
            connect_args={
                "check_same_thread": False,
                "timeout": pool_timeout,
            },
            poolclass=QueuePool,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_timeout=pool_timeout,
            pool_pre_ping=pool_pre_ping,
            pool_recycle=pool_recycle
        )
        logger.info(
            f"SQLite文件数据库引擎创建成功（QueuePool, pool_size={pool_size}, max_overflow={max_overflow}）"
        )

    if engine.dialect.driver == "pysqlite":
        _install_sqlite_transaction_hooks(engine, sqlite_begin)

    return engine


class DatabaseManager:
    """数据库管理器（单例）

    使用示例:
        from yhistory.orm import db_manager

        db_manager.init(database_url="sqlite:///./history.db")
        engine = db_manager.engine
        session = db_manager.session_factory()
    """
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        if self._initialized:
            return
        self._engine: Optional[Engine] = None
        self._session_factory: Optional[sessionmaker] = None
        self._initialized = True

    @property
    def engine(self) -> Engine:
        """获取数据库引擎（只读）

        Raises:
            RuntimeError: 数据库未初始化时
        """
        if self._engine is None:
            raise RuntimeError("数据库未初始化，请先调用 init_database()")
        return self._engine

    @property
    def session_factory(self) -> sessionmaker:
        if self._session_factory is None:
            raise RuntimeError("数据库未初始化，请先调用 init_database()")
        return self._session_factory

    @property
    def is_initialized(self) -> bool:
        return self._engine is not None

    def init(self, database_url: str = None, config: Any = None, **engine_options):
        """初始化数据库连接

        Returns:
            tuple: (engine, session_factory)
        """
        self._engine = create_engine_from_settings(
            database_url=database_url, config=config, **engine_options
        )
        self._session_factory = sessionmaker(
            autoflush=True,
            bind=self._engine,
        )
        _logger.info("数据库session工厂创建成功")
        return self._engine, self._session_factory

    def dispose(self):
        """释放连接池并重置状态"""
        if self._engine is not None:
            self._engine.dispose()
        self._engine = None
        self._session_factory = None


db_manager = DatabaseManager()


def init_database(database_url: str = None, config: Any = None, **engine_options):
    """初始化数据库连接

    db_manager.init() 的便捷包装函数。

    Returns:
        tuple: (engine, session_factory)
    """
    return db_manager.init(database_url=database_url, config=config, **engine_options)


def get_engine() -> Engine:
    return db_manager.engine


def get_session_factory() -> sessionmaker:
    return db_manager.session_factory


@contextmanager
def db_session_scope(
    session_factory: Callable[[], Session] = None,
    auto_commit: bool = True
) -> Generator[Session, None, None]:
    """session 上下文管理器

    正常退出时提交（auto_commit=True），异常时回滚，最后关闭 session。

    Args:
        session_factory: session 工厂，不传则使用 db_manager 的工厂
        auto_commit: 是否自动提交，默认 True

    使用示例:
        with db_session_scope() as session:
            session.add(article)
        # 自动提交，VersionTracker 在提交前记录版本
    """
    factory = session_factory or db_manager.session_factory
    session = factory()
    try:
        yield session
        if auto_commit:
            session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def with_db_session(session_factory: Callable[[], Session] = None, auto_commit: bool = True):
    """数据库 session 装饰器

    session 作为第一个参数注入。

    使用示例:
        @with_db_session()
        def rename_article(session, article_id, title):
            article = session.get(Article, article_id)
            article.title = title
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        def wrapper(*args, **kwargs) -> T:
            with db_session_scope(session_factory, auto_commit=auto_commit) as session:
                return func(session, *args, **kwargs)
        return wrapper
    return decorator
