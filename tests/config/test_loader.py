# tests/config/test_loader.py
"""
Unit тесты для загрузчика конфигурации (src/config/loader.py).
"""

import json
from decimal import Decimal
from pathlib import Path

import pytest
from pydantic import ValidationError as PydanticValidationError

from src.config.loader import (
    CacheSettings,
    CancellationSettings,
    DatabaseSettings,
    LoggingSettings,
    RedisSettings,
    Settings,
    get_config_path,
    get_project_root,
    load_config_json,
)


class TestPaths:
    """Определение путей."""

    def test_project_root_contains_config(self, project_root: Path) -> None:
        assert get_project_root() == project_root

    def test_config_path_default(self, config_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("CONFIG_PATH", raising=False)
        assert get_config_path() == config_path

    def test_config_path_override(self, temp_config_file: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("CONFIG_PATH", str(temp_config_file))
        assert get_config_path() == temp_config_file

    def test_missing_file_raises(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("CONFIG_PATH", str(tmp_path / "absent.json"))
        with pytest.raises(FileNotFoundError):
            load_config_json()


class TestProjectConfig:
    """Поставляемый config/config.json."""

    def test_all_sections_load(self, config_path: Path) -> None:
        data = json.loads(config_path.read_text(encoding="utf-8"))
        assert data["HOLD_MINUTES"] == 15
        assert data["DISPUTE_WINDOW_HOURS"] == 24

    def test_defaults_match_business_rules(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("CONFIG_PATH", raising=False)
        settings = Settings.from_config_json()

        assert settings.booking.HOLD_MINUTES == 15
        assert settings.booking.APPROVAL_TIMEOUT_MINUTES == 1440
        assert settings.booking.MAX_SEATS == 8
        assert settings.cancellation.PARTIAL_REFUND_PERCENT == 50
        assert settings.payouts.COMMISSION_PERCENT == Decimal("10")
        assert settings.payouts.STAGE_10_PERCENT == Decimal("10")
        assert settings.schedulers.BATCH_SIZE == 200


class TestFromConfigJson:
    """Сборка Settings из временного файла."""

    def test_sections_from_flat_keys(self, temp_config_file: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("CONFIG_PATH", str(temp_config_file))
        monkeypatch.delenv("COMPONENT_MODE", raising=False)

        settings = Settings.from_config_json()

        assert settings.system.PROJECT_NAME == "carpool_test"
        assert settings.database.DB_NAME == "carpool_test"
        assert settings.booking.HOLD_MINUTES == 10
        assert settings.booking.DISPUTE_WINDOW_HOURS == 48
        assert settings.cancellation.PARTIAL_REFUND_PERCENT == 40
        assert settings.schedulers.EXPIRY_INTERVAL == 30
        # Не заданные ключи берут значения по умолчанию
        assert settings.booking.CODE_ATTEMPTS == 10

    def test_prefixed_sections(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        config_file = tmp_path / "config.json"
        config_file.write_text(json.dumps({
            "CACHE_BACKEND": "redis",
            "CACHE_SEGMENT_QUOTE_TTL": 60,
            "GATEWAY_BASE_URL": "https://pay.example.com",
            "GATEWAY_TIMEOUT": 5,
        }))
        monkeypatch.setenv("CONFIG_PATH", str(config_file))
        monkeypatch.delenv("CACHE_BACKEND", raising=False)
        monkeypatch.delenv("PAYMENT_GATEWAY_URL", raising=False)

        settings = Settings.from_config_json()

        assert settings.cache.BACKEND == "redis"
        assert settings.cache.SEGMENT_QUOTE_TTL == 60
        assert settings.payment_gateway.BASE_URL == "https://pay.example.com"
        assert settings.payment_gateway.TIMEOUT == 5.0

    def test_env_overrides(self, temp_config_file: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("CONFIG_PATH", str(temp_config_file))
        monkeypatch.setenv("DB_HOST", "db.internal")
        monkeypatch.setenv("PAYMENT_GATEWAY_API_KEY", "sk_live")
        monkeypatch.setenv("CACHE_BACKEND", "memory")
        monkeypatch.setenv("COMPONENT_MODE", "migrate")

        settings = Settings.from_config_json()

        assert settings.database.DB_HOST == "db.internal"
        assert settings.payment_gateway.API_KEY == "sk_live"
        assert settings.cache.BACKEND == "memory"
        assert settings.system.COMPONENT_MODE == "migrate"

    def test_comment_keys_ignored(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        config_file = tmp_path / "config.json"
        config_file.write_text(json.dumps({"_comment_x": "текст", "LOG_LEVEL": "INFO"}))
        monkeypatch.setenv("CONFIG_PATH", str(config_file))

        assert Settings.from_config_json().logging.LOG_LEVEL == "INFO"


class TestSectionValidation:
    """Валидаторы секций."""

    def test_unknown_log_format(self) -> None:
        with pytest.raises(PydanticValidationError):
            LoggingSettings(LOG_FORMAT="xml")

    def test_unknown_cache_backend(self) -> None:
        with pytest.raises(PydanticValidationError):
            CacheSettings(BACKEND="memcached")

    def test_refund_thresholds_order(self) -> None:
        with pytest.raises(PydanticValidationError):
            CancellationSettings(NO_REFUND_BEFORE_HOURS=30, PARTIAL_REFUND_BEFORE_HOURS=24)

    def test_password_from_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("DB_PASSWORD", "secret")
        monkeypatch.setenv("REDIS_PASSWORD", "r3d1s")

        assert DatabaseSettings(DB_PASSWORD="").DB_PASSWORD == "secret"
        assert RedisSettings(REDIS_PASSWORD="").REDIS_PASSWORD == "r3d1s"

    def test_dsn_and_url(self) -> None:
        db = DatabaseSettings(DB_USER="u", DB_PASSWORD="p", DB_HOST="h", DB_PORT=5433, DB_NAME="n")
        redis = RedisSettings(REDIS_PASSWORD="x", REDIS_HOST="r", REDIS_PORT=6380, REDIS_DB=2)

        assert db.dsn == "postgresql://u:p@h:5433/n"
        assert redis.url == "redis://:x@r:6380/2"
