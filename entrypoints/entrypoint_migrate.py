#!/usr/bin/env python3
# entrypoint_migrate.py
"""
Точка входа для применения схемы БД (migrations/init.sql).
"""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path

# Добавляем корневую директорию проекта в путь
project_root = Path(__file__).parent.parent.resolve()
sys.path.insert(0, str(project_root))

from main import main


if __name__ == "__main__":
    asyncio.run(main(mode="migrate"))
