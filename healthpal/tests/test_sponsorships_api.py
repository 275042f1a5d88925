"""
Sponsorship API Tests.
"""

import pytest

from healthpal.app.models.enums import UserRole


@pytest.mark.asyncio
async def test_patient_creates_and_lists(client, patient, donor, create_sponsorship):
    sponsorship_id = await create_sponsorship(patient, goal=2500, treatment="Kidney dialysis")

    r = await client.get("/v1/sponsorships", headers=donor["headers"])
    assert r.status_code == 200
    listed = r.json()
    assert len(listed) == 1
    assert listed[0]["id"] == sponsorship_id
    assert listed[0]["patient_name"] == patient["full_name"]
    assert listed[0]["goal_amount"] == 2500
    assert listed[0]["donated_amount"] == 0
    assert listed[0]["status"] == "open"


@pytest.mark.asyncio
async def test_only_patients_create(client, donor, doctor):
    for user in (donor, doctor):
        r = await client.post(
            "/v1/sponsorships",
            json={"treatment_type": "Surgery", "goal_amount": 100, "description": "x"},
            headers=user["headers"],
        )
        assert r.status_code == 403


@pytest.mark.asyncio
@pytest.mark.parametrize("payload", [
    {"treatment_type": "Surgery", "goal_amount": 0, "description": "x"},
    {"treatment_type": "Surgery", "goal_amount": "lots", "description": "x"},
    {"treatment_type": "Surgery", "goal_amount": 1e30, "description": "x"},
    {"treatment_type": "Surgery", "goal_amount": "10000000000", "description": "x"},
    {"treatment_type": "Surgery", "description": "x"},
    {"treatment_type": " ", "goal_amount": 100, "description": "x"},
])
async def test_create_rejects_bad_input(client, patient, payload):
    r = await client.post("/v1/sponsorships", json=payload, headers=patient["headers"])
    assert r.status_code == 400
    assert r.json()["error_code"] == "ERR_VALIDATION_001"


@pytest.mark.asyncio
async def test_detail_includes_donations_and_stats(client, patient, donor, create_sponsorship):
    sponsorship_id = await create_sponsorship(patient, goal=500)
    for amount in (100, 50):
        r = await client.post(
            "/v1/donations",
            json={"sponsorship_id": sponsorship_id, "amount": amount, "payment_method": "card"},
            headers=donor["headers"],
        )
        assert r.status_code == 201

    r = await client.get(f"/v1/sponsorships/{sponsorship_id}", headers=patient["headers"])
    assert r.status_code == 200
    body = r.json()
    assert body["sponsorship"]["donated_amount"] == 150
    assert len(body["donations"]) == 2
    assert body["donations"][0]["donor_name"] == donor["full_name"]
    assert body["stats"]["donor_count"] == 1
    assert body["stats"]["average_donation"] == 75


@pytest.mark.asyncio
async def test_detail_not_found(client, donor):
    r = await client.get("/v1/sponsorships/999", headers=donor["headers"])
    assert r.status_code == 404
    assert r.json()["error_code"] == "ERR_NOT_FOUND_001"


@pytest.mark.asyncio
async def test_close_by_owner_then_donations_conflict(client, patient, donor, create_sponsorship):
    sponsorship_id = await create_sponsorship(patient)

    r = await client.patch(f"/v1/sponsorships/{sponsorship_id}/close", headers=patient["headers"])
    assert r.status_code == 200
    assert r.json()["status"] == "closed"

    r = await client.post(
        "/v1/donations",
        json={"sponsorship_id": sponsorship_id, "amount": 10, "payment_method": "card"},
        headers=donor["headers"],
    )
    assert r.status_code == 409
    assert r.json()["error_code"] == "ERR_CONFLICT_CLOSED"

    r = await client.get("/v1/sponsorships", headers=donor["headers"])
    assert r.json() == []


@pytest.mark.asyncio
async def test_close_by_another_patient_forbidden(client, patient, make_user, create_sponsorship):
    sponsorship_id = await create_sponsorship(patient)
    intruder = await make_user(UserRole.PATIENT)

    r = await client.patch(f"/v1/sponsorships/{sponsorship_id}/close", headers=intruder["headers"])
    assert r.status_code == 403


@pytest.mark.asyncio
async def test_admin_can_close(client, patient, admin, create_sponsorship):
    sponsorship_id = await create_sponsorship(patient)
    r = await client.patch(f"/v1/sponsorships/{sponsorship_id}/close", headers=admin["headers"])
    assert r.status_code == 200
    assert r.json()["status"] == "closed"
