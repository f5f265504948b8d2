"""当前操作人中间件

从请求中取出操作人标识存入 ContextVar，请求结束后清理。
配合 VersionTracker，请求中提交的修改会自动带上 actor_id。

使用示例:
    from fastapi import FastAPI
    from yhistory.middleware import ActorMiddleware

    app = FastAPI()
    app.add_middleware(
        ActorMiddleware,
        actor_id_getter=lambda request: request.headers.get("X-User-ID"),
        skip_paths=["/health"],
    )
"""

from typing import Callable, List, Optional

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from yhistory.log import get_logger
from yhistory.versioning.current_actor import (
    ActorId,
    clear_current_actor_id,
    set_current_actor_id,
)

logger = get_logger()


class ActorMiddleware(BaseHTTPMiddleware):
    """当前操作人追踪中间件

    Args:
        app: FastAPI/Starlette 应用实例
        actor_id_getter: 从 Request 获取操作人标识的函数
        skip_paths: 跳过追踪的路径列表，会与默认列表合并
    """

    DEFAULT_SKIP_PATHS = [
        "/docs",
        "/redoc",
        "/openapi.json",
        "/health",
    ]

    def __init__(
        self,
        app,
        actor_id_getter: Callable[[Request], Optional[ActorId]],
        skip_paths: Optional[List[str]] = None,
    ):
        super().__init__(app)
        self.actor_id_getter = actor_id_getter
        self.skip_paths = set(self.DEFAULT_SKIP_PATHS)
        if skip_paths:
            self.skip_paths.update(skip_paths)

    def _should_skip(self, path: str) -> bool:
        if path in self.skip_paths:
            return True
        return any(path.startswith(skip_path + "/") for skip_path in self.skip_paths)

    def _get_actor_id(self, request: Request) -> Optional[ActorId]:
        try:
            return self.actor_id_getter(request)
        except Exception as e:
            # 取不到操作人时按匿名请求处理
            logger.warning(f"Failed to resolve actor for {request.url.path}: {e}")
            return None

    async def dispatch(self, request: Request, call_next) -> Response:
        if self._should_skip(request.url.path):
            return await call_next(request)

        actor_id = self._get_actor_id(request)
        if actor_id is not None:
            set_current_actor_id(actor_id)

        try:
            return await call_next(request)
        finally:
            clear_current_actor_id()
