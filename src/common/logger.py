# src/common/logger.py
"""
Модуль структурированного логирования.
Поддерживает JSON и цветной текстовый формат, ротацию файлов и отдельный файл ошибок.
"""

from __future__ import annotations

import inspect
import json
import logging
import os
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

from src.common.constants import TypeMsg

DEFAULT_LOGGER = "carpool"

# Файловые хендлеры общие для всех логгеров
_FILE_HANDLER: logging.Handler | None = None
_ERROR_HANDLER: logging.Handler | None = None

_LOGGING_INITIALIZED: bool = False


# =============================================================================
# ФОРМАТТЕРЫ
# =============================================================================

class JsonFormatter(logging.Formatter):
    """Форматтер для JSON логов."""

    def format(self, record: logging.LogRecord) -> str:
        """Форматирует запись лога в JSON."""
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        extra_data = getattr(record, "extra_data", None)
        if extra_data:
            log_data["extra"] = extra_data

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, ensure_ascii=False, default=str)


class ColoredFormatter(logging.Formatter):
    """Цветной форматтер для консоли (разработка)."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"
    GRAY = "\033[90m"

    def format(self, record: logging.LogRecord) -> str:
        """Форматирует запись лога с цветом и контекстом."""
        color = self.COLORS.get(record.levelname, self.GRAY)
        timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")

        extra_data = dict(getattr(record, "extra_data", None) or {})
        caller_func = extra_data.pop("caller_function", None)
        caller_module = extra_data.pop("caller_module", None)
        caller_line = extra_data.pop("caller_line", None)

        caller_info = ""
        if caller_func:
            caller_info = f" {self.GRAY}[{caller_module}.{caller_func}():{caller_line}]{self.RESET}"

        # Бизнес-контекст (booking_id, trip_id, ...) выводим в конце строки
        context = ""
        if extra_data:
            pairs = " ".join(f"{key}={value}" for key, value in extra_data.items())
            context = f" {self.GRAY}{pairs}{self.RESET}"

        message = (
            f"{timestamp} {color}[{record.levelname}]{self.RESET}{caller_info} "
            f"{record.getMessage()}{context}"
        )

        if record.exc_info:
            message += "\n" + self.formatException(record.exc_info)

        return message


# =============================================================================
# ЛОГГЕР
# =============================================================================

_loggers: dict[str, logging.Logger] = {}


def _read_logging_settings() -> dict[str, Any]:
    """Читает настройки логирования, с дефолтами если конфиг недоступен."""
    defaults: dict[str, Any] = {
        "level": "DEBUG",
        "format": "colored",
        "to_file": False,
        "file_path": "logs/app.log",
        "max_bytes": 10485760,
        "backup_count": 5,
    }
    try:
        from src.config import settings

        values = {
            "level": settings.logging.LOG_LEVEL,
            "format": settings.logging.LOG_FORMAT,
            "to_file": settings.logging.LOG_TO_FILE,
            "file_path": settings.logging.LOG_FILE_PATH,
            "max_bytes": settings.logging.LOG_MAX_BYTES,
            "backup_count": settings.logging.LOG_BACKUP_COUNT,
        }
    except Exception:
        return defaults

    # Защита от MagicMock в тестах
    for key, default in defaults.items():
        if not isinstance(values[key], type(default)):
            values[key] = default
    return values


def _make_formatter(log_format: str) -> logging.Formatter:
    return JsonFormatter() if log_format == "json" else ColoredFormatter()


def setup_logging() -> None:
    """
    Инициализирует систему логирования.
    Идемпотентна, вызывается при старте приложения.
    """
    global _LOGGING_INITIALIZED

    if _LOGGING_INITIALIZED:
        return
    _LOGGING_INITIALIZED = True

    get_logger(DEFAULT_LOGGER)

    logging.getLogger("asyncpg").setLevel(logging.WARNING)
    logging.getLogger("redis").setLevel(logging.WARNING)
    logging.getLogger("aio_pika").setLevel(logging.WARNING)
    logging.getLogger("aiormq").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


def get_logger(name: str = DEFAULT_LOGGER) -> logging.Logger:
    """
    Возвращает настроенный логгер (кэшируется по имени).

    Args:
        name: Имя логгера

    Returns:
        Настроенный логгер
    """
    if name in _loggers:
        return _loggers[name]

    cfg = _read_logging_settings()

    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, cfg["level"].upper(), logging.DEBUG))

    if logger.handlers:
        _loggers[name] = logger
        return logger

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(_make_formatter(cfg["format"]))
    logger.addHandler(console_handler)

    if cfg["to_file"]:
        global _FILE_HANDLER, _ERROR_HANDLER

        log_path = Path(cfg["file_path"])
        log_path.parent.mkdir(parents=True, exist_ok=True)

        if _FILE_HANDLER is None:
            # SERVICE_NAME разделяет логи процессов воркеров
            service_name = os.getenv("SERVICE_NAME")
            file_name = f"{log_path.stem}_{service_name}.log" if service_name else log_path.name
            _FILE_HANDLER = RotatingFileHandler(
                log_path.parent / file_name,
                maxBytes=cfg["max_bytes"],
                backupCount=cfg["backup_count"],
                encoding="utf-8",
            )
            _FILE_HANDLER.setFormatter(_make_formatter(cfg["format"]))

        if _ERROR_HANDLER is None:
            _ERROR_HANDLER = RotatingFileHandler(
                log_path.parent / "error.log",
                maxBytes=cfg["max_bytes"],
                backupCount=cfg["backup_count"],
                encoding="utf-8",
            )
            _ERROR_HANDLER.setLevel(logging.ERROR)
            _ERROR_HANDLER.setFormatter(JsonFormatter())

        logger.addHandler(_FILE_HANDLER)
        logger.addHandler(_ERROR_HANDLER)

    logger.propagate = False

    _loggers[name] = logger
    return logger


# =============================================================================
# ВСПОМОГАТЕЛЬНЫЕ ФУНКЦИИ ЛОГИРОВАНИЯ
# =============================================================================

def _get_caller_info() -> dict[str, Any]:
    """
    Информация о коде, вызвавшем функцию логирования.

    Стек: [0] _get_caller_info, [1] log_* функция, [2+] вызывающий код.
    Обёртки log_debug/log_warning добавляют ещё один уровень, их пропускаем.
    """
    frame = inspect.currentframe()
    try:
        caller = frame.f_back if frame else None
        while caller is not None and caller.f_globals.get("__name__") == __name__:
            caller = caller.f_back
        if caller is None:
            return {}

        module = caller.f_globals.get("__name__", "unknown")
        return {
            "caller_function": caller.f_code.co_name,
            "caller_module": module,
            "caller_line": caller.f_lineno,
        }
    finally:
        del frame


def _emit(
    level: int,
    message: str,
    logger_name: str,
    extra: dict[str, Any] | None,
    exc_info: bool = False,
) -> None:
    logger = get_logger(logger_name)
    record_extra = {"extra_data": {**_get_caller_info(), **(extra or {})}}
    logger.log(level, message, extra=record_extra, exc_info=exc_info)


_LEVELS = {
    TypeMsg.DEBUG: logging.DEBUG,
    TypeMsg.INFO: logging.INFO,
    TypeMsg.WARNING: logging.WARNING,
    TypeMsg.ERROR: logging.ERROR,
    TypeMsg.CRITICAL: logging.CRITICAL,
}


async def log_info(
    message: str,
    *,
    type_msg: TypeMsg = TypeMsg.INFO,
    logger_name: str = DEFAULT_LOGGER,
    extra: dict[str, Any] | None = None,
) -> None:
    """
    Асинхронное логирование с уровнем из `type_msg`.

    Args:
        message: Сообщение для логирования
        type_msg: Уровень сообщения
        logger_name: Имя логгера
        extra: Контекст (booking_id, trip_id, stage, ...)
    """
    _emit(_LEVELS.get(type_msg, logging.INFO), message, logger_name, extra)


async def log_debug(
    message: str,
    logger_name: str = DEFAULT_LOGGER,
    extra: dict[str, Any] | None = None,
) -> None:
    """Логирование DEBUG уровня."""
    _emit(logging.DEBUG, message, logger_name, extra)


async def log_warning(
    message: str,
    logger_name: str = DEFAULT_LOGGER,
    extra: dict[str, Any] | None = None,
) -> None:
    """Логирование WARNING уровня."""
    _emit(logging.WARNING, message, logger_name, extra)


async def log_error(
    message: str,
    logger_name: str = DEFAULT_LOGGER,
    extra: dict[str, Any] | None = None,
    exc_info: bool = False,
) -> None:
    """
    Логирование ERROR уровня.

    Args:
        message: Сообщение об ошибке
        logger_name: Имя логгера
        extra: Контекст
        exc_info: Включать ли трейсбек исключения
    """
    _emit(logging.ERROR, message, logger_name, extra, exc_info=exc_info)
