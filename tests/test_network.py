import json
from decimal import Decimal

import httpx
import pytest

from components.core.exceptions import PaymentInitiationError, ValidationError
from components.payment.network import DarajaClient, require_network_amount
from components.scheduler.jobs import (
    BALANCE_POLL_JOB,
    STALE_SWEEP_JOB,
    create_scheduler,
    poll_account_balance,
    sweep_stale_payments,
)


def daraja(handler):
    return DarajaClient(httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="https://daraja.test"))


def token_or(handler):
    calls = {"token": 0}

    def route(request):
        if request.url.path == "/oauth/v1/generate":
            calls["token"] += 1
            return httpx.Response(200, json={"access_token": "secret-token", "expires_in": "3599"})
        assert request.headers["Authorization"] == "Bearer secret-token"
        return handler(request)

    return route, calls


async def test_outbound_payment_returns_correlation_ids():
    sent = []

    def b2c(request):
        sent.append(json.loads(request.content))
        return httpx.Response(200, json={
            "ConversationID": "AG_20250326_0001",
            "OriginatorConversationID": "12345-67890-1",
            "ResponseCode": "0",
        })

    route, calls = token_or(b2c)
    client = daraja(route)

    first = await client.initiate_outbound_payment("254711000001", Decimal("1500.00"), "Withdrawal", "Advance")
    await client.initiate_outbound_payment("254711000001", Decimal("200"), "Withdrawal", "Advance")
    await client.aclose()

    assert first.merchant_request_id == "12345-67890-1"
    assert first.network_request_id == "AG_20250326_0001"
    assert sent[0]["Amount"] == 1500
    assert sent[0]["PartyB"] == "254711000001"
    assert sent[0]["CommandID"] == "SalaryPayment"
    # Token is cached between calls
    assert calls["token"] == 1


async def test_stk_push_returns_correlation_ids():
    def stk(request):
        body = json.loads(request.content)
        assert body["AccountReference"] == "repay_advance:3"
        assert body["TransactionType"] == "CustomerPayBillOnline"
        return httpx.Response(200, json={"MerchantRequestID": "29115-1", "CheckoutRequestID": "ws_CO_1"})

    route, _ = token_or(stk)
    client = daraja(route)

    ids = await client.initiate_inbound_payment_request("254711000003", Decimal("700"), "repay_advance:3")

    assert ids == ("29115-1", "ws_CO_1")


async def test_rejection_becomes_payment_initiation_error():
    route, _ = token_or(lambda request: httpx.Response(400, json={"errorMessage": "Invalid Access Token"}))
    client = daraja(route)

    with pytest.raises(PaymentInitiationError, match="rejected"):
        await client.initiate_outbound_payment("254711000001", Decimal("100"), "Withdrawal", "Advance")


async def test_unreachable_network_becomes_payment_initiation_error():
    def offline(request):
        raise httpx.ConnectError("connection refused", request=request)

    client = daraja(offline)

    with pytest.raises(PaymentInitiationError, match="unavailable"):
        await client.query_account_balance()


@pytest.mark.parametrize("amount", [Decimal("0"), Decimal("-1"), Decimal("10.50")])
def test_network_amounts_are_whole_shillings(amount):
    with pytest.raises(ValidationError):
        require_network_amount(amount)


def test_whole_amount_passes():
    assert require_network_amount(Decimal("100.00")) == Decimal("100.00")


async def test_balance_poll_swallows_network_errors(network):
    network.error = PaymentInitiationError("Balance query failed")
    await poll_account_balance(network)
    network.error = None
    await poll_account_balance(network)
    assert network.balance_queries == 1


async def test_stale_sweep_counts_pending_payments(db_manager, seeded_config, network, locks, notifier):
    assert await sweep_stale_payments(db_manager, network, locks, notifier) == 0


async def test_scheduler_registers_jobs(db_manager, network, locks, notifier):
    scheduler = create_scheduler(db_manager, network, locks, notifier)
    assert {job.id for job in scheduler.get_jobs()} == {BALANCE_POLL_JOB, STALE_SWEEP_JOB}
