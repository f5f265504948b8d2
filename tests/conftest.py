"""
Pytest 公共配置和 Fixtures

提供测试所需的公共资源：
- SQLite 数据库引擎（文件库，支持多线程并发）
- session 工厂
- 已冻结的版本化注册表
"""

import os
import tempfile

import pytest
from sqlalchemy.orm import sessionmaker

from yhistory.orm import Base, create_engine_from_settings, activate_soft_delete_filter
from yhistory.versioning import VersionRegistry, VersionSequencer, VersionStore

from tests.helpers.versioned_models import Article, BlogPost


# ==================== Pytest Hook ====================

def pytest_configure(config):
    """全局激活软删除查询过滤（监听器只注册一次）"""
    activate_soft_delete_filter()


# ==================== 数据库 Fixtures ====================

@pytest.fixture
def db_path():
    """临时 SQLite 文件路径"""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield os.path.join(tmpdir, "history.db")


@pytest.fixture
def engine(db_path):
    """SQLite 文件数据库引擎，带 BEGIN IMMEDIATE 事务处理"""
    engine = create_engine_from_settings(
        database_url=f"sqlite:///{db_path}",
        pool_size=10,
        max_overflow=10,
        pool_timeout=30,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    """session 工厂"""
    return sessionmaker(bind=engine)


@pytest.fixture
def session(session_factory):
    """单个 session，测试结束时关闭"""
    session = session_factory()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def store(session_factory):
    """版本存储"""
    return VersionStore(session_factory, VersionSequencer(lock_timeout=5))


@pytest.fixture
def registry():
    """已冻结的注册表：Article 忽略 view_count，BlogPost 全部属性"""
    registry = VersionRegistry()
    registry.declare(Article, except_=["view_count"])
    registry.declare(BlogPost)
    return registry.freeze()


@pytest.fixture
def article(session_factory):
    """已持久化的文章"""
    with session_factory() as session:
        article = Article(title="Hello", body="first line\n", account_id=42)
        session.add(article)
        session.commit()
        session.refresh(article)
        session.expunge(article)
    return article
