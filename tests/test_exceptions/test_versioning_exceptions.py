"""版本化异常测试

测试异常类、数据库异常翻译和 FastAPI 异常处理器。
"""

import sqlite3

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import exc as sa_exc

from yhistory.exceptions import (
    ConcurrencyError,
    ErrorCode,
    RegistryFrozenError,
    StorageError,
    VersioningException,
    VersionValidationError,
    is_concurrency_failure,
    register_exception_handlers,
    translate_db_error,
)


class _PgError(Exception):
    """模拟 psycopg2 异常（带 pgcode）"""

    def __init__(self, message, pgcode):
        super().__init__(message)
        self.pgcode = pgcode


def _dbapi_error(error_class, orig):
    return error_class("INSERT INTO versions ...", {}, orig)


class TestExceptionClasses:
    """异常类属性"""

    def test_status_codes(self):
        assert VersionValidationError().status_code == 422
        assert ConcurrencyError().status_code == 409
        assert StorageError().status_code == 503
        assert RegistryFrozenError().status_code == 500

    def test_retryable(self):
        assert ConcurrencyError().retryable
        assert not VersionValidationError().retryable
        assert not StorageError().retryable

    def test_inheritance(self):
        for exc_class in (VersionValidationError, ConcurrencyError, StorageError, RegistryFrozenError):
            assert issubclass(exc_class, VersioningException)

    def test_to_dict(self):
        exc = VersionValidationError(
            "变更集为空",
            code=ErrorCode.EMPTY_CHANGE_SET,
            details=["no attributes"],
            versioned_type="Article",
        )
        data = exc.to_dict()

        assert data["code"] == "EMPTY_CHANGE_SET"
        assert data["status_code"] == 422
        assert data["retryable"] is False
        assert data["details"] == ["no attributes"]
        assert data["extra"] == {"versioned_type": "Article"}

    def test_repr(self):
        assert "ConcurrencyError" in repr(ConcurrencyError())

    def test_error_code_is_str(self):
        assert ErrorCode.LOCK_TIMEOUT == "LOCK_TIMEOUT"


class TestTranslateDbError:
    """数据库异常翻译"""

    def test_integrity_error(self):
        error = _dbapi_error(
            sa_exc.IntegrityError,
            sqlite3.IntegrityError("UNIQUE constraint failed: versions.version_number"),
        )
        result = translate_db_error(error, versioned_type="Article", versioned_id="1")

        assert isinstance(result, VersionValidationError)
        assert result.code == ErrorCode.DUPLICATE_VERSION
        assert result.extra == {"versioned_type": "Article", "versioned_id": "1"}

    def test_sqlite_locked(self):
        error = _dbapi_error(sa_exc.OperationalError, sqlite3.OperationalError("database is locked"))

        assert is_concurrency_failure(error)
        result = translate_db_error(error)
        assert isinstance(result, ConcurrencyError)
        assert result.code == ErrorCode.SERIALIZATION_FAILURE
        assert result.retryable

    @pytest.mark.parametrize("pgcode", ["40001", "40P01", "55P03"])
    def test_postgres_sqlstate(self, pgcode):
        error = _dbapi_error(sa_exc.OperationalError, _PgError("conflict", pgcode))
        assert isinstance(translate_db_error(error), ConcurrencyError)

    def test_other_errors_are_storage_errors(self):
        error = _dbapi_error(sa_exc.OperationalError, sqlite3.OperationalError("disk I/O error"))

        assert not is_concurrency_failure(error)
        result = translate_db_error(error)
        assert isinstance(result, StorageError)
        assert result.status_code == 503

    def test_versioning_exception_passthrough(self):
        original = ConcurrencyError()
        assert translate_db_error(original) is original

    def test_non_dbapi_error(self):
        assert not is_concurrency_failure(ValueError("database is locked"))


class TestExceptionHandlers:
    """FastAPI 异常处理器"""

    @pytest.fixture
    def client(self):
        app = FastAPI()
        register_exception_handlers(app)

        @app.get("/conflict")
        def conflict():
            raise ConcurrencyError("等待实体锁超时", versioned_type="Article", versioned_id="1")

        @app.get("/invalid")
        def invalid():
            raise VersionValidationError(
                "变更集为空",
                code=ErrorCode.EMPTY_CHANGE_SET,
                details=["change set has no attributes"],
            )

        return TestClient(app)

    def test_concurrency_response(self, client, monkeypatch):
        monkeypatch.delenv("DEBUG", raising=False)
        response = client.get("/conflict")

        assert response.status_code == 409
        body = response.json()
        assert body["status"] == "error"
        assert body["error_code"] == "LOCK_TIMEOUT"
        assert body["retryable"] is True
        assert body["data"] == {}
        assert "debug_info" not in body

    def test_validation_response(self, client):
        response = client.get("/invalid")

        assert response.status_code == 422
        body = response.json()
        assert body["message"] == "变更集为空"
        assert body["msg_details"] == ["change set has no attributes"]
        assert body["retryable"] is False

    def test_debug_info(self, client, monkeypatch):
        monkeypatch.setenv("DEBUG", "true")
        body = client.get("/conflict").json()
        assert body["debug_info"] == {"versioned_type": "Article", "versioned_id": "1"}
