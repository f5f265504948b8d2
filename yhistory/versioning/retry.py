"""冲突重试装饰器

引擎本身从不重试。调用方可以用 retry_on_conflict 包装整段操作
（例如整个 record() 或整个宿主事务），遇到可重试的 ConcurrencyError 时按指数退避重试。
"""

import time
from functools import wraps
from typing import Callable, Tuple, Type, TypeVar

from yhistory.exceptions import ConcurrencyError
from yhistory.log import get_logger

logger = get_logger("yhistory.versioning.retry")

T = TypeVar('T')


def retry_on_conflict(
    max_retries: int = 3,
    retry_delay: float = 0.1,
    retry_on: Tuple[Type[Exception], ...] = (ConcurrencyError,),
    backoff_multiplier: float = 2.0,
    max_delay: float = 10.0
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """遇到并发冲突时重试的装饰器

    Args:
        max_retries: 最大重试次数（不包括首次尝试）
        retry_delay: 初始重试间隔（秒）
        retry_on: 需要重试的异常类型元组
        backoff_multiplier: 退避乘数
        max_delay: 最大延迟时间（秒）

    使用示例:
        @retry_on_conflict(max_retries=5)
        def save_title(article_id, title):
            with db_session_scope() as session:
                session.get(Article, article_id).title = title
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        def wrapper(*args, **kwargs) -> T:
            current_delay = retry_delay

            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)
                except retry_on as e:
                    if attempt >= max_retries:
                        logger.error(
                            f"重试 {max_retries} 次后仍失败. "
                            f"异常: {type(e).__name__}: {e}"
                        )
                        raise

                    actual_delay = min(current_delay, max_delay)
                    logger.warning(
                        f"版本写入冲突 (尝试 {attempt + 1}/{max_retries + 1}), "
                        f"{actual_delay:.2f}s 后重试. "
                        f"异常: {type(e).__name__}: {e}"
                    )
                    time.sleep(actual_delay)
                    current_delay *= backoff_multiplier

            raise RuntimeError("Unexpected state in retry_on_conflict")

        return wrapper

    return decorator
