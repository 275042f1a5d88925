"""
Donation API Tests.

Direct donations through POST /v1/donations plus history, per-campaign
listing and the admin/NGO stats report.
"""

import pytest

from healthpal.app.models.enums import UserRole


async def _donate(client, donor, sponsorship_id, amount, method="card"):
    return await client.post(
        "/v1/donations",
        json={"sponsorship_id": sponsorship_id, "amount": amount, "payment_method": method},
        headers=donor["headers"],
    )


@pytest.mark.asyncio
async def test_donation_funds_sponsorship(client, patient, donor, create_sponsorship):
    sponsorship_id = await create_sponsorship(patient, goal=100)

    r = await _donate(client, donor, sponsorship_id, 60)
    assert r.status_code == 201
    body = r.json()
    assert body["amount"] == 60
    assert body["status"] == "completed"
    assert isinstance(body["transactionId"], int)
    assert body["isFunded"] is False
    assert body["sponsorship_funded_amount"] == 60
    assert body["sponsorship_goal"] == 100

    r = await _donate(client, donor, sponsorship_id, 50)
    assert r.status_code == 201
    assert r.json()["isFunded"] is True
    assert r.json()["sponsorship_funded_amount"] == 110

    r = await _donate(client, donor, sponsorship_id, 1)
    assert r.status_code == 400
    assert r.json()["error_code"] == "ERR_LEDGER_FUNDED"


@pytest.mark.asyncio
@pytest.mark.parametrize("amount,method,code", [
    (0, "card", "ERR_VALIDATION_AMOUNT"),
    (-3, "card", "ERR_VALIDATION_AMOUNT"),
    ("abc", "card", "ERR_VALIDATION_AMOUNT"),
    (None, "card", "ERR_VALIDATION_AMOUNT"),
    ("1e30", "card", "ERR_VALIDATION_AMOUNT"),
    (1e30, "card", "ERR_VALIDATION_AMOUNT"),
    (10, "paypal", "ERR_VALIDATION_PAYMENT_METHOD"),
])
async def test_bad_donations_are_400(client, patient, donor, create_sponsorship, amount, method, code):
    sponsorship_id = await create_sponsorship(patient)
    r = await _donate(client, donor, sponsorship_id, amount, method)
    assert r.status_code == 400
    assert r.json()["error_code"] == code


@pytest.mark.asyncio
async def test_donation_to_missing_sponsorship(client, donor):
    r = await _donate(client, donor, 12345, 10)
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_only_donors_donate(client, patient, create_sponsorship):
    sponsorship_id = await create_sponsorship(patient)
    r = await _donate(client, patient, sponsorship_id, 10)
    assert r.status_code == 403


@pytest.mark.asyncio
async def test_history(client, patient, donor, create_sponsorship):
    r = await client.get("/v1/donations/history", headers=donor["headers"])
    assert r.status_code == 200
    assert r.json() == {"donations": [], "total_donations": 0, "total_amount_donated": 0}

    first = await create_sponsorship(patient, goal=1000, treatment="Chemotherapy")
    second = await create_sponsorship(patient, goal=1000, treatment="Physiotherapy")
    await _donate(client, donor, first, "12.34")
    await _donate(client, donor, second, 100, "bank")

    body = (await client.get("/v1/donations/history", headers=donor["headers"])).json()
    assert body["total_donations"] == 2
    assert body["total_amount_donated"] == pytest.approx(112.34)
    assert {d["treatment_type"] for d in body["donations"]} == {"Chemotherapy", "Physiotherapy"}


@pytest.mark.asyncio
async def test_sponsorship_donations_listing(client, patient, donor, create_sponsorship):
    sponsorship_id = await create_sponsorship(patient, goal=1000)
    await _donate(client, donor, sponsorship_id, 5)

    r = await client.get(f"/v1/donations/sponsorship/{sponsorship_id}", headers=patient["headers"])
    assert r.status_code == 200
    assert [d["amount"] for d in r.json()] == [5]

    r = await client.get("/v1/donations/sponsorship/999", headers=patient["headers"])
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_stats_for_admin_and_ngo_only(client, patient, donor, admin, make_user, create_sponsorship):
    ngo = await make_user(UserRole.NGO)
    sponsorship_id = await create_sponsorship(patient, goal=1000)
    await _donate(client, donor, sponsorship_id, 10, "card")
    await _donate(client, donor, sponsorship_id, 30, "card")

    for user in (admin, ngo):
        r = await client.get("/v1/donations/stats", headers=user["headers"])
        assert r.status_code == 200
        assert r.json() == [
            {"payment_method": "card", "donation_count": 2, "total_amount": 40, "average_amount": 20}
        ]

    r = await client.get("/v1/donations/stats", headers=donor["headers"])
    assert r.status_code == 403
