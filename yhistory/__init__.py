"""yhistory - 实体版本历史引擎

为可变实体生成有序、不可变的版本日志：每个版本记录改了什么、谁改的，
以及一段可读的描述。

快速开始:
    from yhistory.orm import Base, init_database, db_session_scope
    from yhistory.versioning import VersionRegistry, VersionStore, VersionTracker

    engine, SessionLocal = init_database("sqlite:///./app.db")
    Base.metadata.create_all(engine)

    registry = VersionRegistry()
    registry.declare(Article)
    registry.freeze()

    store = VersionStore(SessionLocal)
    VersionTracker(registry, store).install(SessionLocal)
"""

__version__ = "0.1.0"

from .exceptions import (
    ConcurrencyError,
    ErrorCode,
    RegistryFrozenError,
    StorageError,
    VersioningException,
    VersionValidationError,
)
from .versioning import (
    ChangeSet,
    Version,
    VersionRegistry,
    VersionSequencer,
    VersionStore,
    VersionTracker,
)

__all__ = [
    "__version__",
    "ConcurrencyError",
    "ErrorCode",
    "RegistryFrozenError",
    "StorageError",
    "VersioningException",
    "VersionValidationError",
    "ChangeSet",
    "Version",
    "VersionRegistry",
    "VersionSequencer",
    "VersionStore",
    "VersionTracker",
]
