# src/worker/runner.py
"""
Запускалка планировщиков: истечение броней и расчёты.
"""

from __future__ import annotations

import asyncio
from typing import List, Optional

from src.worker.base import BaseWorker
from src.worker.expiry import ExpiryWorker
from src.worker.settlement import SettlementWorker
from src.core.engine import BookingEngine, build_engine
from src.infra.cache import create_cache
from src.infra.database import init_db, close_db, get_db
from src.infra.redis_client import close_redis
from src.infra.event_bus import init_event_bus, close_event_bus, get_event_bus
from src.infra.payment_gateway import HttpPaymentGateway, create_payment_gateway
from src.common.logger import log_info, log_error
from src.common.constants import TypeMsg
from src.config import settings


def create_workers(engine: BookingEngine) -> List[BaseWorker]:
    """Воркеры с интервалами из конфига."""
    cfg = settings.schedulers
    return [
        ExpiryWorker(engine.bookings, interval=cfg.EXPIRY_INTERVAL, batch_size=cfg.BATCH_SIZE),
        SettlementWorker(
            engine.bookings,
            engine.payouts,
            engine.reconciliation,
            interval=cfg.SETTLEMENT_INTERVAL,
            batch_size=cfg.BATCH_SIZE,
        ),
    ]


async def run_workers(
    init_infra: bool = True,
    stop_event: Optional[asyncio.Event] = None,
) -> None:
    """
    Запускает ExpiryWorker и SettlementWorker.

    Args:
        init_infra: Если True, инициализирует инфраструктуру (БД, кэш, RabbitMQ).
                    При запуске через main.py передаётся False.
        stop_event: Событие остановки (если None, работа до отмены задачи)
    """
    await log_info("Запуск планировщиков...", type_msg=TypeMsg.INFO)

    if init_infra:
        await log_info("Инициализация инфраструктуры для воркеров...", type_msg=TypeMsg.DEBUG)
        db = await init_db()
        event_bus = await init_event_bus()
    else:
        db = get_db()
        event_bus = get_event_bus()

    gateway = create_payment_gateway()
    cache = await create_cache()
    engine = build_engine(db, gateway, event_bus=event_bus, cache=cache)
    workers = create_workers(engine)

    try:
        for worker in workers:
            await worker.start()

        await log_info(f"Запущено {len(workers)} воркеров", type_msg=TypeMsg.INFO)

        if stop_event is not None:
            await stop_event.wait()
        else:
            while True:
                await asyncio.sleep(1)

    except asyncio.CancelledError:
        await log_info("Получен сигнал остановки", type_msg=TypeMsg.INFO)
    except Exception as e:
        await log_error(f"Критическая ошибка: {e}", exc_info=True)
    finally:
        for worker in workers:
            await worker.stop()

        if isinstance(gateway, HttpPaymentGateway):
            await gateway.close()

        if init_infra:
            await close_event_bus()
            await close_redis()
            await close_db()

        await log_info("Воркеры остановлены", type_msg=TypeMsg.INFO)


def main() -> None:
    """Точка входа."""
    try:
        asyncio.run(run_workers())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
