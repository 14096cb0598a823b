# tests/conftest.py
"""
Общие фикстуры и настройки для тестов.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock

import pytest

# Устанавливаем переменные окружения перед импортом модулей
os.environ.setdefault("DB_PASSWORD", "test_password")
os.environ.setdefault("REDIS_PASSWORD", "")
os.environ.setdefault("PAYMENT_GATEWAY_API_KEY", "test_gateway_key")
os.environ.setdefault("CACHE_BACKEND", "memory")

from support.fakes import FrozenClock  # noqa: E402
from support.world import BookingWorld  # noqa: E402


# =============================================================================
# ФИКСТУРЫ КОНФИГУРАЦИИ
# =============================================================================

@pytest.fixture(scope="session")
def project_root() -> Path:
    """Корневая директория проекта."""
    return Path(__file__).parent.parent


@pytest.fixture(scope="session")
def config_path(project_root: Path) -> Path:
    """Путь к файлу конфигурации."""
    return project_root / "config" / "config.json"


@pytest.fixture
def mock_config() -> dict[str, Any]:
    """Мок конфигурации для тестов."""
    return {
        "PROJECT_NAME": "carpool_test",
        "VERSION": "1.0.0-test",
        "ENVIRONMENT": "test",
        "LOG_LEVEL": "DEBUG",
        "LOG_FORMAT": "colored",
        "LOG_TO_FILE": False,
        "DB_HOST": "localhost",
        "DB_PORT": 5432,
        "DB_NAME": "carpool_test",
        "DB_USER": "postgres",
        "HOLD_MINUTES": 10,
        "DISPUTE_WINDOW_HOURS": 48,
        "PARTIAL_REFUND_PERCENT": 40,
        "STAGE_10_PERCENT": 10,
        "EXPIRY_INTERVAL": 30,
    }


@pytest.fixture
def temp_config_file(tmp_path: Path, mock_config: dict[str, Any]) -> Path:
    """Создаёт временный файл конфигурации."""
    config_file = tmp_path / "config.json"
    config_file.write_text(json.dumps(mock_config, ensure_ascii=False, indent=2))
    return config_file


# =============================================================================
# ФИКСТУРЫ ИНФРАСТРУКТУРЫ (МОКИ)
# =============================================================================

@pytest.fixture
def mock_db() -> AsyncMock:
    """Мок менеджера базы данных."""
    db = AsyncMock()
    db.fetchrow = AsyncMock(return_value=None)
    db.fetch = AsyncMock(return_value=[])
    db.execute = AsyncMock(return_value="UPDATE 1")
    db.fetchval = AsyncMock(return_value=None)
    return db


@pytest.fixture
def mock_redis() -> AsyncMock:
    """Мок клиента Redis."""
    redis = AsyncMock()
    redis.get_json = AsyncMock(return_value=None)
    redis.set_json = AsyncMock(return_value=True)
    redis.delete = AsyncMock(return_value=1)
    return redis


@pytest.fixture
def mock_event_bus() -> AsyncMock:
    """Мок шины событий."""
    event_bus = AsyncMock()
    event_bus.publish = AsyncMock(return_value=None)
    event_bus.is_connected = True
    return event_bus


# =============================================================================
# ДВИЖОК БРОНИРОВАНИЙ В ПАМЯТИ
# =============================================================================

@pytest.fixture
def clock() -> FrozenClock:
    """Управляемые часы: 2026-03-01 08:00 UTC."""
    return FrozenClock()


@pytest.fixture
def world(clock: FrozenClock) -> BookingWorld:
    """Движок с поездкой Istanbul -> Bolu -> Ankara на 4 места по 150."""
    world = BookingWorld(clock)
    world.add_trip()
    return world
