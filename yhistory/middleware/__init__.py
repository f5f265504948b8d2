"""中间件模块

- ActorMiddleware: 把请求的操作人写入 ContextVar，供 VersionTracker 使用
"""

from .current_actor import ActorMiddleware

__all__ = [
    "ActorMiddleware",
]
