# create_db.py
"""
Создаёт базу данных из настроек, если её ещё нет.
"""

import asyncio

import asyncpg

from src.config import settings
from src.common.constants import TypeMsg
from src.common.logger import log_error, log_info, setup_logging


async def create_db() -> None:
    db_name = settings.database.DB_NAME
    try:
        # Подключаемся к служебной БД postgres, чтобы создать новую
        sys_conn = await asyncpg.connect(
            user=settings.database.DB_USER,
            password=settings.database.DB_PASSWORD,
            host=settings.database.DB_HOST,
            port=settings.database.DB_PORT,
            database="postgres",
        )
        try:
            exists = await sys_conn.fetchval("SELECT 1 FROM pg_database WHERE datname = $1", db_name)
            if not exists:
                await log_info(f"Создание базы {db_name}...", type_msg=TypeMsg.INFO)
                await sys_conn.execute(f'CREATE DATABASE "{db_name}"')
                await log_info("База создана", type_msg=TypeMsg.INFO)
            else:
                await log_info(f"База {db_name} уже существует", type_msg=TypeMsg.INFO)
        finally:
            await sys_conn.close()

    except (OSError, asyncpg.PostgresError) as e:
        await log_error(f"Не удалось создать базу {db_name}: {e}")
        raise


if __name__ == "__main__":
    setup_logging()
    asyncio.run(create_db())
