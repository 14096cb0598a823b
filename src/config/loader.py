# src/config/loader.py
"""
Загрузчик конфигурации проекта.
Единственный источник истины: config/config.json.
Секретные данные переопределяются из переменных окружения.
"""

from __future__ import annotations

import json
import os
from decimal import Decimal
from functools import lru_cache
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# =============================================================================
# ОПРЕДЕЛЕНИЕ ПУТЕЙ
# =============================================================================

def get_project_root() -> Path:
    """Возвращает корневую директорию проекта."""
    return Path(__file__).parent.parent.parent


def get_config_path() -> Path:
    """Возвращает путь к файлу конфигурации (можно переопределить CONFIG_PATH)."""
    override = os.getenv("CONFIG_PATH")
    if override:
        return Path(override)
    return get_project_root() / "config" / "config.json"


def load_config_json() -> dict[str, Any]:
    """Загружает config.json и возвращает словарь."""
    config_path = get_config_path()
    if not config_path.exists():
        raise FileNotFoundError(f"Файл конфигурации не найден: {config_path}")

    with open(config_path, "r", encoding="utf-8") as f:
        return json.load(f)


# =============================================================================
# PYDANTIC МОДЕЛИ КОНФИГУРАЦИИ
# =============================================================================

class SystemSettings(BaseModel):
    """Системные настройки."""
    PROJECT_NAME: str = "carpool_booking"
    VERSION: str = "1.0.0"
    DEBUG: bool = True
    ENVIRONMENT: str = "development"
    COMPONENT_MODE: str = "workers"


class LoggingSettings(BaseModel):
    """Настройки логирования."""
    LOG_LEVEL: str = "DEBUG"
    LOG_TO_FILE: bool = False
    LOG_FILE_PATH: str = "logs/app.log"
    LOG_FORMAT: str = "colored"
    LOG_MAX_BYTES: int = 10485760
    LOG_BACKUP_COUNT: int = 5

    @field_validator("LOG_FORMAT")
    @classmethod
    def check_format(cls, v: str) -> str:
        if v not in ("colored", "json"):
            raise ValueError(f"Неизвестный формат логов: {v}")
        return v


class DatabaseSettings(BaseModel):
    """Настройки PostgreSQL."""
    DB_HOST: str = "localhost"
    DB_PORT: int = 5432
    DB_NAME: str = "carpool"
    DB_USER: str = "postgres"
    DB_PASSWORD: str = ""
    DB_MIN_POOL_SIZE: int = 5
    DB_MAX_POOL_SIZE: int = 20
    DB_COMMAND_TIMEOUT: int = 60
    DB_RETRY_ATTEMPTS: int = 3
    DB_RETRY_DELAY: float = 1.0

    @field_validator("DB_PASSWORD", mode="before")
    @classmethod
    def get_from_env(cls, v: str) -> str:
        """Получает пароль из переменных окружения."""
        if not v:
            return os.getenv("DB_PASSWORD", "")
        return v

    @property
    def dsn(self) -> str:
        """Возвращает DSN для подключения к PostgreSQL."""
        return (
            f"postgresql://{self.DB_USER}:{self.DB_PASSWORD}"
            f"@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"
        )


class RedisSettings(BaseModel):
    """Настройки Redis."""
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_PASSWORD: str = ""
    REDIS_NAMESPACE: str = "carpool"
    REDIS_MAX_CONNECTIONS: int = 50

    @field_validator("REDIS_PASSWORD", mode="before")
    @classmethod
    def get_from_env(cls, v: str) -> str:
        """Получает пароль из переменных окружения."""
        if not v:
            return os.getenv("REDIS_PASSWORD", "")
        return v

    @property
    def url(self) -> str:
        """Возвращает URL для подключения к Redis."""
        auth = f":{self.REDIS_PASSWORD}@" if self.REDIS_PASSWORD else ""
        return f"redis://{auth}{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"


class CacheSettings(BaseModel):
    """Настройки key-value кэша."""
    BACKEND: str = "memory"
    SEGMENT_QUOTE_TTL: int = 600
    MEMORY_MAX_ITEMS: int = 10000

    @field_validator("BACKEND")
    @classmethod
    def check_backend(cls, v: str) -> str:
        if v not in ("redis", "memory"):
            raise ValueError(f"Неизвестный бэкенд кэша: {v}")
        return v


class RabbitMQSettings(BaseModel):
    """Настройки RabbitMQ."""
    RABBITMQ_HOST: str = "localhost"
    RABBITMQ_PORT: int = 5672
    RABBITMQ_USER: str = "guest"
    RABBITMQ_PASSWORD: str = "guest"
    RABBITMQ_VHOST: str = "/"
    RABBITMQ_EXCHANGE: str = "carpool.events"

    @field_validator("RABBITMQ_PASSWORD", mode="before")
    @classmethod
    def get_from_env(cls, v: str) -> str:
        """Получает пароль из переменных окружения."""
        env_pass = os.getenv("RABBITMQ_PASSWORD", "")
        if env_pass:
            return env_pass
        return v

    @property
    def url(self) -> str:
        """Возвращает URL для подключения к RabbitMQ."""
        return (
            f"amqp://{self.RABBITMQ_USER}:{self.RABBITMQ_PASSWORD}"
            f"@{self.RABBITMQ_HOST}:{self.RABBITMQ_PORT}{self.RABBITMQ_VHOST}"
        )


class PaymentGatewaySettings(BaseModel):
    """Настройки платёжного провайдера."""
    BASE_URL: str = "http://localhost:8087"
    API_KEY: str = ""
    TIMEOUT: float = 15.0
    CURRENCY: str = "EUR"

    @field_validator("API_KEY", mode="before")
    @classmethod
    def get_from_env(cls, v: str) -> str:
        """Получает ключ API из переменных окружения."""
        if not v:
            return os.getenv("PAYMENT_GATEWAY_API_KEY", "")
        return v


class BookingSettings(BaseModel):
    """Правила жизненного цикла бронирования."""
    HOLD_MINUTES: int = 15
    APPROVAL_TIMEOUT_MINUTES: int = 1440
    DISPUTE_WINDOW_HOURS: int = 24
    AUTO_COMPLETE_DELAY_MINUTES: int = 60
    ARRIVAL_FALLBACK_HOURS: int = 6
    MAX_SEATS: int = 8
    CODE_ATTEMPTS: int = 10
    DISPUTE_REASON_MAX_LENGTH: int = 500


class CancellationSettings(BaseModel):
    """Тарифы возврата при отмене (по часам до отправления)."""
    NO_REFUND_BEFORE_HOURS: float = 2
    PARTIAL_REFUND_BEFORE_HOURS: float = 24
    PARTIAL_REFUND_PERCENT: int = 50
    FULL_REFUND_PERCENT: int = 100

    @model_validator(mode="after")
    def check_thresholds(self) -> "CancellationSettings":
        """Порог частичного возврата не может быть раньше порога без возврата."""
        if self.PARTIAL_REFUND_BEFORE_HOURS < self.NO_REFUND_BEFORE_HOURS:
            raise ValueError("PARTIAL_REFUND_BEFORE_HOURS < NO_REFUND_BEFORE_HOURS")
        return self


class PayoutSettings(BaseModel):
    """Настройки выплат водителям."""
    COMMISSION_PERCENT: Decimal = Decimal("10")
    STAGE_10_PERCENT: Decimal = Decimal("10")
    CURRENCY: str = "EUR"


class SchedulerSettings(BaseModel):
    """Интервалы фоновых задач (секунды)."""
    EXPIRY_INTERVAL: int = 300
    SETTLEMENT_INTERVAL: int = 300
    BATCH_SIZE: int = 200


# =============================================================================
# ГЛАВНЫЙ КЛАСС НАСТРОЕК
# =============================================================================

class Settings(BaseSettings):
    """
    Главный класс настроек приложения.
    Агрегирует все секции конфигурации.
    """
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    system: SystemSettings = Field(default_factory=SystemSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    rabbitmq: RabbitMQSettings = Field(default_factory=RabbitMQSettings)
    payment_gateway: PaymentGatewaySettings = Field(default_factory=PaymentGatewaySettings)
    booking: BookingSettings = Field(default_factory=BookingSettings)
    cancellation: CancellationSettings = Field(default_factory=CancellationSettings)
    payouts: PayoutSettings = Field(default_factory=PayoutSettings)
    schedulers: SchedulerSettings = Field(default_factory=SchedulerSettings)

    @classmethod
    def from_config_json(cls) -> "Settings":
        """
        Создаёт объект Settings из config.json.
        Секреты и адреса сервисов переопределяются из переменных окружения.
        """
        config_data = load_config_json()

        # Фильтруем комментарии (ключи, начинающиеся с _comment_)
        data = {k: v for k, v in config_data.items() if not k.startswith("_comment_")}

        def section(model: type[BaseModel]) -> dict[str, Any]:
            return {name: data[name] for name in model.model_fields if name in data}

        database = section(DatabaseSettings)
        for key in ("DB_HOST", "DB_PORT", "DB_NAME", "DB_USER", "DB_PASSWORD"):
            if os.getenv(key):
                database[key] = os.environ[key]

        redis = section(RedisSettings)
        for key in ("REDIS_HOST", "REDIS_PORT", "REDIS_PASSWORD"):
            if os.getenv(key):
                redis[key] = os.environ[key]

        rabbitmq = section(RabbitMQSettings)
        for key in ("RABBITMQ_HOST", "RABBITMQ_PORT", "RABBITMQ_USER", "RABBITMQ_PASSWORD"):
            if os.getenv(key):
                rabbitmq[key] = os.environ[key]

        system = section(SystemSettings)
        if os.getenv("COMPONENT_MODE"):
            system["COMPONENT_MODE"] = os.environ["COMPONENT_MODE"]

        # Префиксы в config.json: CACHE_, GATEWAY_, чтобы не путать плоские ключи
        cache = {k[len("CACHE_"):]: v for k, v in data.items() if k.startswith("CACHE_")}
        if os.getenv("CACHE_BACKEND"):
            cache["BACKEND"] = os.environ["CACHE_BACKEND"]

        gateway = {k[len("GATEWAY_"):]: v for k, v in data.items() if k.startswith("GATEWAY_")}
        if os.getenv("PAYMENT_GATEWAY_API_KEY"):
            gateway["API_KEY"] = os.environ["PAYMENT_GATEWAY_API_KEY"]
        if os.getenv("PAYMENT_GATEWAY_URL"):
            gateway["BASE_URL"] = os.environ["PAYMENT_GATEWAY_URL"]

        return cls(
            system=SystemSettings(**system),
            logging=LoggingSettings(**section(LoggingSettings)),
            database=DatabaseSettings(**database),
            redis=RedisSettings(**redis),
            cache=CacheSettings(**cache),
            rabbitmq=RabbitMQSettings(**rabbitmq),
            payment_gateway=PaymentGatewaySettings(**gateway),
            booking=BookingSettings(**section(BookingSettings)),
            cancellation=CancellationSettings(**section(CancellationSettings)),
            payouts=PayoutSettings(**section(PayoutSettings)),
            schedulers=SchedulerSettings(**section(SchedulerSettings)),
        )


@lru_cache()
def get_settings() -> Settings:
    """
    Возвращает синглтон настроек приложения.
    Использует кэширование для производительности.
    """
    from dotenv import load_dotenv

    # Загружаем .env файл
    env_path = get_project_root() / ".env"
    if env_path.exists():
        load_dotenv(env_path)

    return Settings.from_config_json()


# Экспорт синглтона для удобного импорта
settings = get_settings()
