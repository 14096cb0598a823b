# src/infra/payment_gateway.py
"""
Клиент платёжного провайдера.

Ошибки транспорта и отказы провайдера не выбрасываются наружу,
а возвращаются как неуспешный результат: решение принимает вызывающий сервис.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Optional

import httpx

from src.common.constants import PayoutAccountStatus, TypeMsg
from src.common.logger import log_error, log_info
from src.common.money import percent_of, to_money


@dataclass
class ChargeResult:
    """Результат списания с пассажира."""
    success: bool
    payment_id: Optional[str] = None
    error_message: Optional[str] = None


@dataclass
class RefundResult:
    """Результат возврата."""
    success: bool
    refund_id: Optional[str] = None
    error_message: Optional[str] = None


@dataclass
class PayoutResult:
    """Результат перевода водителю."""
    success: bool
    transfer_id: Optional[str] = None
    error_message: Optional[str] = None


@dataclass
class AccountResult:
    """Результат регистрации платёжного аккаунта водителя."""
    success: bool
    account_id: Optional[str] = None
    status: PayoutAccountStatus = PayoutAccountStatus.PENDING
    error_message: Optional[str] = None


def charge_idempotency_key(booking_id: str, attempt: int) -> str:
    """
    Ключ списания: свой для каждой попытки оплаты брони.
    Повтор одного запроса не спишет деньги дважды, а новая попытка
    не получит ответ провайдера на прежнюю.
    """
    return f"booking-{booking_id}-charge-{attempt}"


def refund_idempotency_key(payment_id: str) -> str:
    """Ключ возврата: по платежу делается не больше одного возврата."""
    return f"refund-{payment_id}"


class PaymentGateway(ABC):
    """Интерфейс платёжного провайдера."""

    def __init__(self, commission_percent: Decimal = Decimal("10")) -> None:
        self._commission_percent = commission_percent

    def calculate_commission(self, amount: Decimal) -> Decimal:
        """Комиссия платформы с суммы бронирования (по умолчанию 10%)."""
        return percent_of(amount, self._commission_percent)

    @abstractmethod
    async def charge(
        self,
        payer_id: str,
        amount: Decimal,
        payment_token: str,
        reference: str,
        idempotency_key: str,
    ) -> ChargeResult:
        """Списывает `amount` с пассажира. Повтор с тем же ключом возвращает прежний ответ."""

    @abstractmethod
    async def refund(
        self,
        payment_id: str,
        amount: Decimal,
        reason: str,
        idempotency_key: str,
    ) -> RefundResult:
        """Возвращает `amount` по ранее проведённому платежу. Повтор с тем же ключом не создаёт второй возврат."""

    @abstractmethod
    async def release_payout(
        self,
        provider_account_id: str,
        amount: Decimal,
        idempotency_key: str,
    ) -> PayoutResult:
        """Переводит `amount` водителю. Повтор с тем же ключом не создаёт второй перевод."""

    @abstractmethod
    async def register_payout_account(
        self,
        driver_id: str,
        iban: str,
        holder_name: str,
    ) -> AccountResult:
        """Регистрирует платёжный аккаунт водителя у провайдера."""


class HttpPaymentGateway(PaymentGateway):
    """
    Реализация поверх REST API провайдера.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float = 15.0,
        currency: str = "EUR",
        commission_percent: Decimal = Decimal("10"),
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(commission_percent)
        self._currency = currency
        self._client = client or httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            headers={"Authorization": f"Bearer {api_key}"},
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def _post(
        self,
        path: str,
        payload: dict[str, Any],
        headers: dict[str, str] | None = None,
    ) -> tuple[dict[str, Any] | None, str | None]:
        """
        POST к провайдеру.

        Returns:
            (данные, None) при успехе или (None, текст ошибки)
        """
        try:
            response = await self._client.post(path, json=payload, headers=headers)
            response.raise_for_status()
            return response.json(), None
        except httpx.HTTPStatusError as e:
            message = _error_message(e.response)
            await log_error(
                f"Платёжный провайдер вернул {e.response.status_code} на {path}: {message}",
            )
            return None, message
        except (httpx.HTTPError, ValueError) as e:
            await log_error(f"Ошибка запроса к платёжному провайдеру {path}: {e}")
            return None, str(e) or e.__class__.__name__

    async def charge(
        self,
        payer_id: str,
        amount: Decimal,
        payment_token: str,
        reference: str,
        idempotency_key: str,
    ) -> ChargeResult:
        data, error = await self._post("/v1/charges", {
            "payer_id": payer_id,
            "amount": str(to_money(amount)),
            "currency": self._currency,
            "payment_token": payment_token,
            "reference": reference,
        }, headers={"Idempotency-Key": idempotency_key})
        if data is None:
            return ChargeResult(success=False, error_message=error)

        await log_info(f"Платёж проведён: {reference}", type_msg=TypeMsg.DEBUG)
        return ChargeResult(success=True, payment_id=str(data.get("id")))

    async def refund(
        self,
        payment_id: str,
        amount: Decimal,
        reason: str,
        idempotency_key: str,
    ) -> RefundResult:
        data, error = await self._post("/v1/refunds", {
            "payment_id": payment_id,
            "amount": str(to_money(amount)),
            "reason": reason,
        }, headers={"Idempotency-Key": idempotency_key})
        if data is None:
            return RefundResult(success=False, error_message=error)
        return RefundResult(success=True, refund_id=str(data.get("id")))

    async def release_payout(
        self,
        provider_account_id: str,
        amount: Decimal,
        idempotency_key: str,
    ) -> PayoutResult:
        data, error = await self._post("/v1/payouts", {
            "account_id": provider_account_id,
            "amount": str(to_money(amount)),
            "currency": self._currency,
        }, headers={"Idempotency-Key": idempotency_key})
        if data is None:
            return PayoutResult(success=False, error_message=error)
        return PayoutResult(success=True, transfer_id=str(data.get("id")))

    async def register_payout_account(
        self,
        driver_id: str,
        iban: str,
        holder_name: str,
    ) -> AccountResult:
        data, error = await self._post("/v1/accounts", {
            "external_id": driver_id,
            "iban": iban,
            "holder_name": holder_name,
        })
        if data is None:
            return AccountResult(success=False, error_message=error)

        try:
            status = PayoutAccountStatus(data.get("status", "pending"))
        except ValueError:
            status = PayoutAccountStatus.PENDING
        return AccountResult(success=True, account_id=str(data.get("id")), status=status)


def _error_message(response: httpx.Response) -> str:
    """Текст ошибки из ответа провайдера."""
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict):
            return str(error.get("message") or error)
        return str(error or body.get("message") or body)
    return str(body)


def create_payment_gateway() -> HttpPaymentGateway:
    """Создаёт HTTP клиент провайдера по настройкам."""
    from src.config import settings

    return HttpPaymentGateway(
        base_url=settings.payment_gateway.BASE_URL,
        api_key=settings.payment_gateway.API_KEY,
        timeout=settings.payment_gateway.TIMEOUT,
        currency=settings.payment_gateway.CURRENCY,
        commission_percent=settings.payouts.COMMISSION_PERCENT,
    )
