"""当前操作人

ContextVar 保存当前请求/任务的操作人标识。版本存储本身不读取它，
只有边界组件（VersionTracker、ActorMiddleware）把它当作 actor_id 的默认来源。

使用示例:
    from yhistory.versioning import actor_scope

    with actor_scope(7):
        session.commit()   # 此期间记录的版本 actor_id == "7"
"""

from contextlib import contextmanager
from contextvars import ContextVar
from typing import Generator, Optional, Union

ActorId = Union[int, str]

_current_actor_id_var: ContextVar[Optional[ActorId]] = ContextVar(
    'yhistory_current_actor_id', default=None
)


def set_current_actor_id(actor_id: Optional[ActorId]) -> None:
    """设置当前操作人"""
    _current_actor_id_var.set(actor_id)


def get_current_actor_id() -> Optional[ActorId]:
    """获取当前操作人，没有则返回 None"""
    return _current_actor_id_var.get()


def clear_current_actor_id() -> None:
    """清除当前操作人"""
    _current_actor_id_var.set(None)


@contextmanager
def actor_scope(actor_id: Optional[ActorId]) -> Generator[None, None, None]:
    """在代码块内临时设置操作人，退出时恢复原值"""
    token = _current_actor_id_var.set(actor_id)
    try:
        yield
    finally:
        _current_actor_id_var.reset(token)
