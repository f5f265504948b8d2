"""当前操作人中间件测试

测试覆盖：
- ContextVar 操作：set/get/clear 以及 actor_scope
- ActorMiddleware 中间件
- 路径跳过逻辑
- 与 VersionTracker 配合记录 actor_id
"""

import pytest
from fastapi import FastAPI, Request
from fastapi.testclient import TestClient

from yhistory.middleware import ActorMiddleware
from yhistory.versioning import (
    VersionTracker,
    actor_scope,
    clear_current_actor_id,
    get_current_actor_id,
    set_current_actor_id,
)

from tests.helpers.versioned_models import Article


def _header_actor(request: Request):
    return request.headers.get("X-User-ID")


def _build_app(actor_id_getter=_header_actor, skip_paths=None) -> FastAPI:
    app = FastAPI()
    app.add_middleware(ActorMiddleware, actor_id_getter=actor_id_getter, skip_paths=skip_paths)

    @app.get("/whoami")
    def whoami():
        return {"actor_id": get_current_actor_id()}

    @app.get("/health")
    def health():
        return {"actor_id": get_current_actor_id()}

    @app.get("/internal/ping")
    def internal_ping():
        return {"actor_id": get_current_actor_id()}

    return app


# ==================== ContextVar 操作测试 ====================

class TestContextVarOperations:
    """ContextVar 操作测试"""

    def test_set_get_clear(self):
        """测试设置、获取和清除操作人"""
        clear_current_actor_id()
        set_current_actor_id(123)
        assert get_current_actor_id() == 123

        clear_current_actor_id()
        assert get_current_actor_id() is None

    def test_actor_scope_restores(self):
        """测试 actor_scope 退出后恢复原值"""
        set_current_actor_id("outer")
        with actor_scope("inner"):
            assert get_current_actor_id() == "inner"
        assert get_current_actor_id() == "outer"
        clear_current_actor_id()

    def test_actor_scope_restores_on_error(self):
        """测试异常时也恢复原值"""
        clear_current_actor_id()
        with pytest.raises(ValueError):
            with actor_scope(7):
                raise ValueError("boom")
        assert get_current_actor_id() is None


# ==================== 中间件测试 ====================

class TestActorMiddleware:
    """ActorMiddleware 测试"""

    def test_actor_from_header(self):
        """测试从请求头读取操作人"""
        client = TestClient(_build_app())
        response = client.get("/whoami", headers={"X-User-ID": "42"})
        assert response.json() == {"actor_id": "42"}

    def test_anonymous_request(self):
        """测试没有操作人时为 None"""
        client = TestClient(_build_app())
        assert client.get("/whoami").json() == {"actor_id": None}

    def test_default_skip_paths(self):
        """测试默认跳过 /health"""
        client = TestClient(_build_app())
        response = client.get("/health", headers={"X-User-ID": "42"})
        assert response.json() == {"actor_id": None}

    def test_custom_skip_paths(self):
        """测试自定义跳过路径（包括子路径）"""
        client = TestClient(_build_app(skip_paths=["/internal"]))
        response = client.get("/internal/ping", headers={"X-User-ID": "42"})
        assert response.json() == {"actor_id": None}

    def test_getter_error_is_anonymous(self):
        """测试 getter 抛异常时按匿名请求处理"""
        def broken_getter(request):
            raise KeyError("user")

        client = TestClient(_build_app(actor_id_getter=broken_getter))
        response = client.get("/whoami")
        assert response.status_code == 200
        assert response.json() == {"actor_id": None}

    def test_requests_are_isolated(self):
        """测试前一个请求的操作人不会泄漏到下一个请求"""
        client = TestClient(_build_app())
        assert client.get("/whoami", headers={"X-User-ID": "1"}).json() == {"actor_id": "1"}
        assert client.get("/whoami").json() == {"actor_id": None}


# ==================== 与 VersionTracker 集成 ====================

class TestTrackerIntegration:
    """请求中提交的修改带上操作人"""

    def test_actor_recorded(self, registry, store, session_factory, article):
        tracker = VersionTracker(registry, store).install(session_factory)
        app = _build_app()

        @app.put("/articles/{article_id}")
        def rename(article_id: int, title: str):
            with session_factory() as session:
                session.get(Article, article_id).title = title
                session.commit()
            return {"ok": True}

        try:
            client = TestClient(app)
            response = client.put(f"/articles/{article.id}", params={"title": "Renamed"}, headers={"X-User-ID": "7"})
            assert response.status_code == 200
        finally:
            tracker.uninstall()

        version = store.latest("Article", article.id)
        assert version.actor_id == "7"
        assert version.description == "Changed title"
