# tests/infra/test_payment_gateway.py
"""
Тесты HTTP клиента платёжного провайдера.
Провайдер подменяется httpx.MockTransport.
"""

from __future__ import annotations

import json
from decimal import Decimal

import httpx
import pytest

from src.common.constants import PayoutAccountStatus
from src.infra.payment_gateway import (
    HttpPaymentGateway,
    charge_idempotency_key,
    refund_idempotency_key,
)

from support.provider import ReplayingProvider


class Recorder:
    """Обработчик MockTransport, запоминающий запросы."""

    def __init__(self, status: int = 200, body: dict | str | None = None) -> None:
        self.status = status
        self.body = body if body is not None else {"id": "obj_1"}
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if isinstance(self.body, str):
            return httpx.Response(self.status, text=self.body)
        return httpx.Response(self.status, json=self.body)

    @property
    def last_json(self) -> dict:
        return json.loads(self.requests[-1].content)


def _gateway(handler) -> HttpPaymentGateway:
    client = httpx.AsyncClient(base_url="https://pay.test", transport=httpx.MockTransport(handler))
    return HttpPaymentGateway(base_url="https://pay.test", api_key="sk_test", client=client)


class TestCommission:
    def test_default_ten_percent(self) -> None:
        gateway = HttpPaymentGateway(base_url="https://pay.test", api_key="k")
        assert gateway.calculate_commission(Decimal("300.00")) == Decimal("30.00")
        assert gateway.calculate_commission(Decimal("100.01")) == Decimal("10.00")

    def test_custom_percent(self) -> None:
        gateway = HttpPaymentGateway(base_url="https://pay.test", api_key="k", commission_percent=Decimal("12.5"))
        assert gateway.calculate_commission(Decimal("80.00")) == Decimal("10.00")


class TestCharge:
    @pytest.mark.asyncio
    async def test_success(self) -> None:
        recorder = Recorder(body={"id": "pay_42"})
        gateway = _gateway(recorder)

        result = await gateway.charge(
            "passenger-1", Decimal("300"), "tok_visa", "booking-1", "booking-booking-1-charge-1",
        )

        assert result.success is True
        assert result.payment_id == "pay_42"
        request = recorder.requests[0]
        assert request.url.path == "/v1/charges"
        assert request.headers["Idempotency-Key"] == "booking-booking-1-charge-1"
        assert recorder.last_json["amount"] == "300.00"
        assert recorder.last_json["currency"] == "EUR"

    @pytest.mark.asyncio
    async def test_declined(self) -> None:
        gateway = _gateway(Recorder(status=402, body={"error": {"message": "card_declined"}}))

        result = await gateway.charge("passenger-1", Decimal("10"), "tok", "booking-1", "k-1")

        assert result.success is False
        assert result.error_message == "card_declined"

    @pytest.mark.asyncio
    async def test_transport_error_is_result(self) -> None:
        def boom(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        result = await _gateway(boom).charge("p", Decimal("10"), "tok", "b", "k-1")

        assert result.success is False
        assert "connection refused" in result.error_message


class TestRefundAndPayout:
    @pytest.mark.asyncio
    async def test_refund(self) -> None:
        recorder = Recorder(body={"id": "re_1"})

        result = await _gateway(recorder).refund("pay_1", Decimal("100"), "booking_cancelled", "refund-pay_1")

        assert result.refund_id == "re_1"
        assert recorder.last_json == {"payment_id": "pay_1", "amount": "100.00", "reason": "booking_cancelled"}
        assert recorder.requests[0].headers["Idempotency-Key"] == "refund-pay_1"

    @pytest.mark.asyncio
    async def test_refund_plain_text_error(self) -> None:
        result = await _gateway(Recorder(status=500, body="Internal error")).refund(
            "pay_1", Decimal("1"), "r", "refund-pay_1",
        )

        assert result.success is False
        assert result.error_message == "Internal error"

    @pytest.mark.asyncio
    async def test_payout_sends_idempotency_key(self) -> None:
        recorder = Recorder(body={"id": "tr_1"})

        result = await _gateway(recorder).release_payout("acct_1", Decimal("27"), "booking-b1-stage-10")

        assert result.transfer_id == "tr_1"
        assert recorder.requests[0].headers["Idempotency-Key"] == "booking-b1-stage-10"
        assert recorder.last_json["amount"] == "27.00"


class TestIdempotencyKeys:
    """Ключи идемпотентности списаний и возвратов."""

    def test_charge_key_differs_per_attempt(self) -> None:
        assert charge_idempotency_key("b1", 1) == "booking-b1-charge-1"
        assert charge_idempotency_key("b1", 1) != charge_idempotency_key("b1", 2)

    def test_refund_key_is_stable_per_payment(self) -> None:
        assert refund_idempotency_key("pay_7") == refund_idempotency_key("pay_7") == "refund-pay_7"

    @pytest.mark.asyncio
    async def test_provider_replays_charge_for_same_key(self) -> None:
        provider = ReplayingProvider()
        provider.declined_tokens.add("tok_bad")
        gateway = _gateway(provider)

        first = await gateway.charge("p", Decimal("10"), "tok_bad", "b1", "booking-b1-charge-1")
        replay = await gateway.charge("p", Decimal("10"), "tok_good", "b1", "booking-b1-charge-1")
        fresh = await gateway.charge("p", Decimal("10"), "tok_good", "b1", "booking-b1-charge-2")

        assert first.success is False
        assert replay.success is False
        assert fresh.success is True
        assert provider.charges == [fresh.payment_id]

    @pytest.mark.asyncio
    async def test_refund_after_lost_response_is_not_repeated(self) -> None:
        provider = ReplayingProvider()
        provider.lost_responses.append("/v1/refunds")
        gateway = _gateway(provider)

        lost = await gateway.refund("pay_1", Decimal("50"), "booking_cancelled", "refund-pay_1")
        retried = await gateway.refund("pay_1", Decimal("50"), "booking_cancelled", "refund-pay_1")

        assert lost.success is False
        assert retried.success is True
        assert provider.refunds == ["pay_1"]


class TestRegisterAccount:
    @pytest.mark.asyncio
    async def test_verified(self) -> None:
        recorder = Recorder(body={"id": "acct_9", "status": "verified"})

        result = await _gateway(recorder).register_payout_account("driver-1", "DE89370400440532013000", "Ivan")

        assert result.account_id == "acct_9"
        assert result.status == PayoutAccountStatus.VERIFIED

    @pytest.mark.asyncio
    async def test_unknown_status_is_pending(self) -> None:
        recorder = Recorder(body={"id": "acct_9", "status": "under_review"})

        result = await _gateway(recorder).register_payout_account("driver-1", "DE89370400440532013000", "Ivan")

        assert result.status == PayoutAccountStatus.PENDING
