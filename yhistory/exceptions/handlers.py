"""FastAPI 异常处理器

宿主应用使用 FastAPI 时，把版本化异常转换为统一的 JSON 响应。
"""

import os

from fastapi import Request
from fastapi.responses import JSONResponse

from yhistory.log import get_logger
from .exceptions import VersioningException

logger = get_logger()


async def versioning_exception_handler(
    request: Request,
    exc: VersioningException
) -> JSONResponse:
    """版本化异常处理器

    Args:
        request: FastAPI 请求对象
        exc: 版本化异常实例

    Returns:
        JSON 响应
    """
    request_id = getattr(request.state, "request_id", "unknown")

    logger.warning(
        f"Versioning exception occurred: {exc.code} - {exc.message}",
        extra={
            "request_id": request_id,
            "path": request.url.path,
            "method": request.method,
            "error_code": exc.code,
            "status_code": exc.status_code,
        }
    )

    content = {
        "status": "error",
        "message": exc.message,
        "msg_details": exc.details,
        "error_code": exc.code,
        "retryable": exc.retryable,
        "data": {},
    }

    is_debug = os.getenv("DEBUG", "false").lower() == "true"
    if is_debug and exc.extra:
        content["debug_info"] = exc.extra

    return JSONResponse(status_code=exc.status_code, content=content)


def register_exception_handlers(app) -> None:
    """注册版本化异常处理器到 FastAPI 应用

    使用示例:
        from fastapi import FastAPI
        from yhistory.exceptions import register_exception_handlers

        app = FastAPI()
        register_exception_handlers(app)
    """
    app.add_exception_handler(VersioningException, versioning_exception_handler)
    logger.info("Versioning exception handlers registered")
