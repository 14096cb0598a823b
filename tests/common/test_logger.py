# tests/common/test_logger.py
"""
Unit тесты для модуля логирования (src/common/logger.py).
"""

import json
import sys
import logging
from unittest.mock import MagicMock, patch

import pytest

from src.common.constants import TypeMsg
from src.common.logger import (
    ColoredFormatter,
    JsonFormatter,
    _get_caller_info,
    get_logger,
    log_debug,
    log_error,
    log_info,
    log_warning,
)


def _record(level: int = logging.INFO, msg: str = "Test message") -> logging.LogRecord:
    return logging.LogRecord(
        name="test_logger",
        level=level,
        pathname="test.py",
        lineno=10,
        msg=msg,
        args=(),
        exc_info=None,
    )


class TestJsonFormatter:
    """Тесты для JsonFormatter."""

    def test_format_basic_record(self) -> None:
        """Базовая запись сериализуется в JSON."""
        result = json.loads(JsonFormatter().format(_record()))

        assert result["level"] == "INFO"
        assert result["message"] == "Test message"
        assert result["logger"] == "test_logger"
        assert result["timestamp"].endswith("Z")

    def test_format_with_extra_data(self) -> None:
        """Контекст брони попадает в поле extra."""
        record = _record(logging.WARNING, "Warning message")
        record.extra_data = {"booking_id": "b-1", "stage": 10}

        result = json.loads(JsonFormatter().format(record))

        assert result["extra"] == {"booking_id": "b-1", "stage": 10}

    def test_format_with_exception(self) -> None:
        """Трейсбек пишется в поле exception."""
        try:
            raise ValueError("boom")
        except ValueError:
            record = _record(logging.ERROR, "failed")
            record.exc_info = sys.exc_info()

        result = json.loads(JsonFormatter().format(record))

        assert "ValueError: boom" in result["exception"]


class TestColoredFormatter:
    """Тесты для ColoredFormatter."""

    def test_includes_level_and_context(self) -> None:
        record = _record()
        record.extra_data = {
            "caller_function": "create",
            "caller_module": "src.core.bookings.service",
            "caller_line": 42,
            "booking_id": "b-1",
        }

        result = ColoredFormatter().format(record)

        assert "[INFO]" in result
        assert "src.core.bookings.service.create():42" in result
        assert "booking_id=b-1" in result
        assert "Test message" in result


class TestGetLogger:
    """Тесты для get_logger."""

    def test_logger_is_cached(self) -> None:
        assert get_logger("test_cached") is get_logger("test_cached")

    def test_logger_does_not_propagate(self) -> None:
        logger = get_logger("test_propagate")

        assert logger.propagate is False
        assert logger.handlers


class TestCallerInfo:
    """Тесты для _get_caller_info."""

    def test_points_to_calling_function(self) -> None:
        info = _get_caller_info()

        assert info["caller_function"] == "test_points_to_calling_function"
        assert info["caller_module"] == __name__


class TestLogHelpers:
    """Тесты асинхронных функций логирования."""

    @pytest.mark.asyncio
    async def test_log_info_uses_type_msg_level(self) -> None:
        logger = MagicMock()
        with patch("src.common.logger.get_logger", return_value=logger):
            await log_info("Выплата этапа 10", type_msg=TypeMsg.WARNING, extra={"booking_id": "b-1"})

        level, message = logger.log.call_args.args
        assert level == logging.WARNING
        assert message == "Выплата этапа 10"
        assert logger.log.call_args.kwargs["extra"]["extra_data"]["booking_id"] == "b-1"

    @pytest.mark.asyncio
    async def test_log_debug_and_warning_levels(self) -> None:
        logger = MagicMock()
        with patch("src.common.logger.get_logger", return_value=logger):
            await log_debug("debug")
            await log_warning("warning")

        levels = [call.args[0] for call in logger.log.call_args_list]
        assert levels == [logging.DEBUG, logging.WARNING]

    @pytest.mark.asyncio
    async def test_log_error_passes_exc_info(self) -> None:
        logger = MagicMock()
        with patch("src.common.logger.get_logger", return_value=logger):
            await log_error("Ошибка", exc_info=True)

        assert logger.log.call_args.args[0] == logging.ERROR
        assert logger.log.call_args.kwargs["exc_info"] is True

    @pytest.mark.asyncio
    async def test_caller_is_recorded(self) -> None:
        logger = MagicMock()
        with patch("src.common.logger.get_logger", return_value=logger):
            await log_info("hello")

        extra = logger.log.call_args.kwargs["extra"]["extra_data"]
        assert extra["caller_function"] == "test_caller_is_recorded"
