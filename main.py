#!/usr/bin/env python3
# main.py
"""
Главная точка входа движка бронирований.
Запускает планировщики или только применяет схему БД.
"""

from __future__ import annotations

import argparse
import asyncio
import signal

from src.config import settings
from src.common.logger import setup_logging, log_info, log_error
from src.common.constants import TypeMsg
from src.infra.database import init_db, close_db
from src.infra.redis_client import close_redis
from src.infra.event_bus import init_event_bus, close_event_bus


# Глобальный флаг для graceful shutdown
_shutdown_event: asyncio.Event | None = None


def setup_signal_handlers() -> asyncio.Event:
    """Настраивает обработчики сигналов для graceful shutdown."""
    global _shutdown_event
    _shutdown_event = asyncio.Event()

    def signal_handler(sig: int) -> None:
        """Обработчик сигналов SIGINT и SIGTERM."""
        if _shutdown_event and not _shutdown_event.is_set():
            print(f"\nПолучен сигнал остановки (sig={sig}), завершаем работу...")
            _shutdown_event.set()

    try:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, lambda s=sig: signal_handler(s))
    except NotImplementedError:
        # Windows не поддерживает add_signal_handler
        signal.signal(signal.SIGINT, lambda s, f: signal_handler(s))
        signal.signal(signal.SIGTERM, lambda s, f: signal_handler(s))
    return _shutdown_event


async def init_infrastructure() -> None:
    """Инициализирует подключения к PostgreSQL и RabbitMQ."""
    await log_info("Инициализация инфраструктуры...", type_msg=TypeMsg.INFO)

    await init_db()
    await log_info("PostgreSQL подключён", type_msg=TypeMsg.DEBUG)

    await init_event_bus()
    await log_info("RabbitMQ подключён", type_msg=TypeMsg.DEBUG)

    await log_info("Инфраструктура инициализирована", type_msg=TypeMsg.INFO)


async def close_infrastructure() -> None:
    """Закрывает все подключения."""
    await log_info("Закрытие подключений...", type_msg=TypeMsg.INFO)

    await close_event_bus()
    await close_redis()
    await close_db()

    await log_info("Подключения закрыты", type_msg=TypeMsg.INFO)


async def main(mode: str = "workers") -> None:
    """
    Запуск приложения.

    Args:
        mode: "workers" - планировщики истечения и расчётов,
              "migrate" - только применить migrations/init.sql
    """
    setup_logging()
    await log_info(
        f"Старт {settings.system.PROJECT_NAME} v{settings.system.VERSION} "
        f"({settings.system.ENVIRONMENT}), режим: {mode}",
        type_msg=TypeMsg.INFO,
    )

    if mode == "migrate":
        await init_db()
        await close_db()
        await log_info("Схема БД применена", type_msg=TypeMsg.INFO)
        return

    from src.worker.runner import run_workers

    stop_event = setup_signal_handlers()
    try:
        await init_infrastructure()
        await run_workers(init_infra=False, stop_event=stop_event)
    except Exception as e:
        await log_error(f"Критическая ошибка запуска: {e}", exc_info=True)
        raise
    finally:
        await close_infrastructure()


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Движок бронирований и выплат")
    parser.add_argument(
        "mode",
        nargs="?",
        default=settings.system.COMPONENT_MODE,
        choices=["workers", "migrate"],
    )
    return parser.parse_args()


if __name__ == "__main__":
    try:
        asyncio.run(main(parse_args().mode))
    except KeyboardInterrupt:
        pass
