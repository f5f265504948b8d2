"""日志工具测试"""

import logging

import pytest

from yhistory.config import ConfigLoader, LoggingSettings
from yhistory.log import (
    MicrosecondFormatter,
    create_formatter,
    get_logger,
    setup_logger,
    setup_root_logger,
)


@pytest.fixture
def root_logger_state():
    """保存并恢复根日志器，避免影响其他测试"""
    root = logging.getLogger()
    handlers, level, propagate = list(root.handlers), root.level, root.propagate
    yield root
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)
    root.propagate = propagate


class TestGetLogger:
    """get_logger 名称推断"""

    def test_infers_module_name(self):
        assert get_logger().name == __name__

    def test_short_name_gets_prefix(self):
        assert get_logger("versioning").name == "yhistory.versioning"

    def test_dotted_name_unchanged(self):
        assert get_logger("sqlalchemy.engine").name == "sqlalchemy.engine"
        assert get_logger("yhistory").name == "yhistory"


class TestFormatter:
    """格式化器"""

    def test_microseconds(self):
        formatter = MicrosecondFormatter(fmt="%(asctime)s")
        record = logging.LogRecord("t", logging.INFO, __file__, 1, "msg", None, None)
        record.created = 1700000000.123456
        formatted = formatter.formatTime(record)
        assert formatted.endswith(".123456")

    def test_create_formatter(self):
        assert isinstance(create_formatter(), MicrosecondFormatter)
        assert type(create_formatter(use_microseconds=False)) is logging.Formatter


class TestSetupLogger:
    """setup_logger / setup_root_logger"""

    def test_file_handler(self, tmp_path):
        log_file = tmp_path / "logs" / "history.log"
        logger = setup_logger("yhistory.test_file", level="DEBUG", log_file=str(log_file), console=False)
        try:
            logger.debug("版本已记录")
            for handler in logger.handlers:
                handler.flush()
            assert "版本已记录" in log_file.read_text(encoding="utf-8")
            assert logger.level == logging.DEBUG
        finally:
            for handler in logger.handlers:
                handler.close()
            logger.handlers.clear()

    def test_handlers_replaced(self):
        logger = setup_logger("yhistory.test_replace")
        logger = setup_logger("yhistory.test_replace")
        assert len(logger.handlers) == 1
        logger.handlers.clear()

    def test_root_from_config(self, root_logger_state):
        root = setup_root_logger(config=LoggingSettings(level="WARNING", enable_console=True))
        assert root is logging.getLogger()
        assert root.level == logging.WARNING
        assert len(root.handlers) == 1

    def test_root_from_config_path(self, root_logger_state, tmp_path):
        config_path = tmp_path / "settings.yaml"
        config_path.write_text("logging:\n  level: ERROR\n", encoding="utf-8")
        ConfigLoader.clear_cache()

        root = setup_root_logger(config_path=str(config_path))
        assert root.level == logging.ERROR
        ConfigLoader.clear_cache()
