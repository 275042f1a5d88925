"""
Staged Payment and Webhook Tests.

initiate -> confirm through a scripted gateway, confirm idempotency on the
payment intent id, and the signed webhook endpoint.
"""

import json
import time
from decimal import Decimal

import pytest
from sqlalchemy import select, func

from healthpal.app.models.ledger_enums import TransactionStatus
from healthpal.app.models.transaction import Transaction
from healthpal.app.services.payment_gateway import (
    DisabledPaymentGateway,
    compute_webhook_signature,
    verify_webhook_signature,
)


async def _initiate(client, donor, sponsorship_id, amount):
    r = await client.post(
        f"/v1/sponsorships/{sponsorship_id}/payment/initiate",
        json={"amount": amount},
        headers=donor["headers"],
    )
    assert r.status_code == 200, r.text
    return r.json()


async def _confirm(client, donor, sponsorship_id, intent_id, amount, path="payment/confirm"):
    return await client.post(
        f"/v1/sponsorships/{sponsorship_id}/{path}",
        json={"payment_intent_id": intent_id, "amount": amount},
        headers=donor["headers"],
    )


def _signed(event, secret, timestamp=None):
    payload = json.dumps(event).encode()
    ts = str(int(timestamp if timestamp is not None else time.time()))
    header = f"t={ts},v1={compute_webhook_signature(payload, ts, secret)}"
    return payload, {"Stripe-Signature": header, "Content-Type": "application/json"}


@pytest.mark.asyncio
async def test_initiate_then_confirm(client, patient, donor, gateway, create_sponsorship):
    sponsorship_id = await create_sponsorship(patient, goal=100)

    intent = await _initiate(client, donor, sponsorship_id, 40)
    assert intent["payment_intent_id"].startswith("pi_test_")
    assert intent["amount"] == 40
    gateway.succeed(intent["payment_intent_id"])

    r = await _confirm(client, donor, sponsorship_id, intent["payment_intent_id"], 40)
    assert r.status_code == 200
    body = r.json()
    assert body["duplicate"] is False
    assert body["new_total"] == 40
    assert body["receipt_url"].endswith(intent["payment_intent_id"])


@pytest.mark.asyncio
async def test_confirm_twice_books_once(client, db_session, patient, donor, gateway, create_sponsorship):
    sponsorship_id = await create_sponsorship(patient, goal=100)
    intent = await _initiate(client, donor, sponsorship_id, 25)
    gateway.succeed(intent["payment_intent_id"])

    first = await _confirm(client, donor, sponsorship_id, intent["payment_intent_id"], 25)
    second = await _confirm(client, donor, sponsorship_id, intent["payment_intent_id"], 25, path="donate")

    assert first.status_code == second.status_code == 200
    assert second.json()["duplicate"] is True
    assert second.json()["transaction_id"] == first.json()["transaction_id"]
    assert second.json()["new_total"] == 25
    assert gateway.confirm_calls == 1

    count = (await db_session.execute(select(func.count(Transaction.id)))).scalar_one()
    assert count == 1


@pytest.mark.asyncio
async def test_confirm_unpaid_intent_is_rejected(client, db_session, patient, donor, create_sponsorship):
    sponsorship_id = await create_sponsorship(patient)
    intent = await _initiate(client, donor, sponsorship_id, 25)

    r = await _confirm(client, donor, sponsorship_id, intent["payment_intent_id"], 25)
    assert r.status_code == 400
    assert "requires_payment_method" in r.json()["error"]

    count = (await db_session.execute(select(func.count(Transaction.id)))).scalar_one()
    assert count == 0


@pytest.mark.asyncio
async def test_confirm_amount_must_match_capture(client, patient, donor, gateway, create_sponsorship):
    sponsorship_id = await create_sponsorship(patient)
    intent = await _initiate(client, donor, sponsorship_id, 25)
    gateway.succeed(intent["payment_intent_id"])

    r = await _confirm(client, donor, sponsorship_id, intent["payment_intent_id"], 250)
    assert r.status_code == 400


@pytest.mark.asyncio
async def test_confirm_books_past_goal(client, patient, donor, gateway, create_sponsorship):
    sponsorship_id = await create_sponsorship(patient, goal=30)
    await client.post(
        "/v1/donations",
        json={"sponsorship_id": sponsorship_id, "amount": 30, "payment_method": "card"},
        headers=donor["headers"],
    )

    intent = await _initiate(client, donor, sponsorship_id, 10)
    gateway.succeed(intent["payment_intent_id"])
    r = await _confirm(client, donor, sponsorship_id, intent["payment_intent_id"], 10)
    assert r.status_code == 200
    assert r.json()["new_total"] == 40
    assert r.json()["is_funded"] is True


@pytest.mark.asyncio
async def test_intent_booked_against_other_sponsorship(client, patient, donor, gateway, create_sponsorship):
    first = await create_sponsorship(patient)
    second = await create_sponsorship(patient)
    intent = await _initiate(client, donor, first, 15)
    gateway.succeed(intent["payment_intent_id"])

    assert (await _confirm(client, donor, first, intent["payment_intent_id"], 15)).status_code == 200
    r = await _confirm(client, donor, second, intent["payment_intent_id"], 15)
    assert r.status_code == 409


@pytest.mark.asyncio
async def test_initiate_rejects_closed_campaign(client, patient, donor, create_sponsorship):
    sponsorship_id = await create_sponsorship(patient)
    await client.patch(f"/v1/sponsorships/{sponsorship_id}/close", headers=patient["headers"])

    r = await client.post(
        f"/v1/sponsorships/{sponsorship_id}/payment/initiate",
        json={"amount": 10},
        headers=donor["headers"],
    )
    assert r.status_code == 409


@pytest.mark.asyncio
async def test_disabled_gateway_is_502(client, app, patient, donor, create_sponsorship):
    app.state.payment_gateway = DisabledPaymentGateway()
    sponsorship_id = await create_sponsorship(patient)

    r = await client.post(
        f"/v1/sponsorships/{sponsorship_id}/payment/initiate",
        json={"amount": 10},
        headers=donor["headers"],
    )
    assert r.status_code == 502
    assert r.json()["error_code"] == "ERR_PAYMENT_GATEWAY"


# --- Webhook signature ---

def test_signature_roundtrip_and_tamper():
    payload = b'{"type": "charge.refunded"}'
    ts = "1700000000"
    header = f"t={ts},v1={compute_webhook_signature(payload, ts, 'whsec_a')}"

    assert verify_webhook_signature(payload, header, "whsec_a", now=1700000010)
    assert not verify_webhook_signature(payload + b" ", header, "whsec_a", now=1700000010)
    assert not verify_webhook_signature(payload, header, "whsec_b", now=1700000010)
    assert not verify_webhook_signature(payload, header, "whsec_a", now=1700000000 + 301)
    assert not verify_webhook_signature(payload, None, "whsec_a")
    assert not verify_webhook_signature(payload, "t=abc,v1=00", "whsec_a")


def test_signature_accepts_any_v1_entry():
    payload = b"{}"
    ts = "1700000000"
    good = compute_webhook_signature(payload, ts, "whsec_a")
    header = f"t={ts},v1=deadbeef,v1={good}"
    assert verify_webhook_signature(payload, header, "whsec_a", now=1700000000)


@pytest.mark.asyncio
async def test_webhook_rejects_bad_signature(client, settings):
    payload, headers = _signed({"type": "payment_intent.succeeded"}, secret="whsec_wrong")
    r = await client.post("/v1/payments/webhook", content=payload, headers=headers)
    assert r.status_code == 400

    payload, headers = _signed({"type": "payment_intent.succeeded"}, settings.stripe_webhook_secret, timestamp=time.time() - 3600)
    r = await client.post("/v1/payments/webhook", content=payload, headers=headers)
    assert r.status_code == 400


@pytest.mark.asyncio
async def test_webhook_refund_decrements_and_reopens(client, settings, db_session, patient, donor, gateway, create_sponsorship):
    sponsorship_id = await create_sponsorship(patient, goal=50)
    intent = await _initiate(client, donor, sponsorship_id, 50)
    gateway.succeed(intent["payment_intent_id"])
    r = await _confirm(client, donor, sponsorship_id, intent["payment_intent_id"], 50)
    assert r.json()["is_funded"] is True

    event = {
        "type": "charge.refunded",
        "data": {"object": {"id": f"ch_{intent['payment_intent_id']}", "payment_intent": intent["payment_intent_id"]}},
    }
    payload, headers = _signed(event, settings.stripe_webhook_secret)
    r = await client.post("/v1/payments/webhook", content=payload, headers=headers)
    assert r.status_code == 200
    assert r.json() == {"received": True, "handled": "charge.refunded", "updated": 1}

    detail = (await client.get(f"/v1/sponsorships/{sponsorship_id}", headers=donor["headers"])).json()
    assert detail["sponsorship"]["donated_amount"] == 0
    assert detail["sponsorship"]["status"] == "open"

    tx = (await db_session.execute(select(Transaction))).scalar_one()
    assert tx.status == TransactionStatus.REFUNDED

    # Redelivery is a no-op
    r = await client.post("/v1/payments/webhook", content=payload, headers=headers)
    assert r.json()["updated"] == 0


@pytest.mark.asyncio
async def test_webhook_payment_failed_marks_pending(client, settings, db_session, patient, donor, create_sponsorship):
    sponsorship_id = await create_sponsorship(patient)
    db_session.add(Transaction(
        sponsorship_id=sponsorship_id,
        donor_id=donor["id"],
        amount=Decimal("20.00"),
        payment_method="card",
        status=TransactionStatus.PENDING,
        external_payment_ref="pi_pending_1",
    ))
    await db_session.commit()

    payload, headers = _signed({"type": "payment_intent.payment_failed", "data": {"object": {"id": "pi_pending_1"}}},
                               settings.stripe_webhook_secret)
    r = await client.post("/v1/payments/webhook", content=payload, headers=headers)
    assert r.json()["updated"] == 1

    tx = (await db_session.execute(
        select(Transaction).execution_options(populate_existing=True)
    )).scalar_one()
    assert tx.status == TransactionStatus.FAILED


@pytest.mark.asyncio
async def test_webhook_ignores_unknown_and_incomplete_events(client, settings):
    for event in (
        {"type": "customer.created", "data": {"object": {"id": "cus_1"}}},
        {"type": "charge.refunded", "data": {"object": {}}},
        {"type": "charge.refunded", "data": {"object": {"id": "ch_unknown"}}},
    ):
        payload, headers = _signed(event, settings.stripe_webhook_secret)
        r = await client.post("/v1/payments/webhook", content=payload, headers=headers)
        assert r.status_code == 200
        assert r.json()["updated"] == 0


@pytest.mark.asyncio
async def test_webhook_without_secret_skips_verification(client, app):
    app.state.settings.stripe_webhook_secret = None
    r = await client.post("/v1/payments/webhook", json={"type": "payment_intent.succeeded",
                                                        "data": {"object": {"id": "pi_x"}}})
    assert r.status_code == 200
    assert r.json()["handled"] == "payment_intent.succeeded"


@pytest.mark.asyncio
async def test_unsigned_refund_cannot_drain_sponsorship(client, app, db_session, patient, donor, gateway,
                                                        create_sponsorship):
    sponsorship_id = await create_sponsorship(patient, goal=50)
    intent = await _initiate(client, donor, sponsorship_id, 50)
    gateway.succeed(intent["payment_intent_id"])
    await _confirm(client, donor, sponsorship_id, intent["payment_intent_id"], 50)

    app.state.settings.stripe_webhook_secret = None
    r = await client.post("/v1/payments/webhook", json={
        "type": "charge.refunded",
        "data": {"object": {"id": f"ch_{intent['payment_intent_id']}", "payment_intent": intent["payment_intent_id"]}},
    })
    assert r.status_code == 400

    detail = (await client.get(f"/v1/sponsorships/{sponsorship_id}", headers=donor["headers"])).json()
    assert detail["sponsorship"]["donated_amount"] == 50
    assert detail["sponsorship"]["status"] == "funded"

    tx = (await db_session.execute(select(Transaction))).scalar_one()
    assert tx.status == TransactionStatus.COMPLETED
