# src/core/bookings/codes.py
"""
Коды посадки: QR (BK-XXXXXXXXXXXX) и PNR (6 символов).
"""

from __future__ import annotations

import re
import secrets
import string

from src.common.exceptions import ValidationError

CODE_ALPHABET = string.ascii_uppercase + string.digits

QR_PREFIX = "BK-"
QR_LENGTH = 12
PNR_LENGTH = 6

PNR_PATTERN = re.compile(r"^[A-Z0-9]{6}$")


def _random_code(length: int) -> str:
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


def generate_qr_code() -> str:
    """QR код брони: BK- и 12 символов base36."""
    return QR_PREFIX + _random_code(QR_LENGTH)


def generate_pnr_code() -> str:
    """PNR: 6 символов base36."""
    return _random_code(PNR_LENGTH)


def normalize_pnr(raw: str | None) -> str:
    """
    Приводит введённый PNR к каноническому виду.

    Raises:
        ValidationError: код не соответствует ^[A-Z0-9]{6}$ после нормализации
    """
    code = (raw or "").strip().upper()
    if not PNR_PATTERN.match(code):
        raise ValidationError("Некорректный PNR код", pnr=raw)
    return code
