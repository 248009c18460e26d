from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest

from services.session_token import create_session_token


def _headers(role: str = "admin", store_id=None) -> dict:
    token = create_session_token("ops@school.test", role=role, store_id=store_id)["token"]
    return {"Authorization": f"Bearer {token}"}


@pytest.mark.asyncio
async def test_card_to_settlement_flow_over_http(api_client):
    admin = _headers()

    store_response = await api_client.post("/stores", json={"store_name": "Canteen", "store_type": "food"}, headers=admin)
    assert store_response.status_code == 201
    store_id = store_response.json()["id"]
    store = _headers("store", store_id)

    issued = await api_client.post(
        "/members/cards",
        json={"gr_number": 4512, "name": "Ira Das", "group_name": "6C"},
        headers=admin,
    )
    assert issued.status_code == 201
    card = issued.json()
    assert card["gr_number"] == 4512
    assert card["is_active"] is True

    duplicate = await api_client.post("/members/cards", json={"gr_number": 4512, "name": "Ira Das"}, headers=admin)
    assert duplicate.status_code == 409
    assert duplicate.json()["error"] == "duplicate_active_card"

    recharged = await api_client.post("/ledger/recharge", json={"gr_number": 4512, "amount": "200"}, headers=admin)
    assert recharged.status_code == 200
    assert Decimal(str(recharged.json()["new_balance"])) == Decimal("200")

    limit = await api_client.put("/members/4512/daily-limit", json={"daily_limit": "120"}, headers=admin)
    assert limit.status_code == 200

    scan = await api_client.get(f"/members/4512/scan?card_number={card['card_number']}", headers=store)
    assert scan.status_code == 200
    assert Decimal(str(scan.json()["account"]["remaining_daily_limit"])) == Decimal("120")

    debited = await api_client.post(
        "/ledger/debit",
        json={"gr_number": 4512, "amount": "75.50", "card_number": card["card_number"]},
        headers=store,
    )
    assert debited.status_code == 200
    assert Decimal(str(debited.json()["new_balance"])) == Decimal("124.50")

    over_limit = await api_client.post("/ledger/debit", json={"gr_number": 4512, "amount": "50"}, headers=store)
    assert over_limit.status_code == 422
    assert over_limit.json()["error"] == "daily_limit_exceeded"
    assert over_limit.json()["remaining_daily_limit"] == "44.50"

    pending = await api_client.get(f"/stores/{store_id}/pending-settlement", headers=store)
    assert Decimal(str(pending.json()["pending_amount"])) == Decimal("75.50")

    requested = await api_client.post("/settlements/request", json={"amount": "70"}, headers=store)
    assert requested.status_code == 201
    settlement_id = requested.json()["id"]
    assert requested.json()["status"] == "requested"

    amended = await api_client.put(f"/settlements/{settlement_id}/amount", json={"new_amount": "75.50"}, headers=store)
    assert amended.status_code == 200

    too_much = await api_client.put(f"/settlements/{settlement_id}/amount", json={"new_amount": "75.51"}, headers=store)
    assert too_much.status_code == 422
    assert too_much.json()["error"] == "exceeds_pending"

    store_cannot_pay = await api_client.post(f"/settlements/{settlement_id}/pay", json={"amount": "10"}, headers=store)
    assert store_cannot_pay.status_code == 403

    paid = await api_client.post(f"/settlements/{settlement_id}/pay", json={"amount": "75.50"}, headers=admin)
    assert paid.status_code == 200
    assert paid.json()["status"] == "completed"

    logs = await api_client.get(f"/settlements/{settlement_id}/logs", headers=store)
    assert sorted(entry["action_type"] for entry in logs.json()) == ["amend", "create", "payment"]

    verify = await api_client.get("/members/4512/balance/verify", headers=admin)
    assert verify.json()["consistent"] is True


@pytest.mark.asyncio
async def test_store_tokens_are_scoped_to_their_store(api_client):
    admin = _headers()
    first = (await api_client.post("/stores", json={"store_name": "Kiosk"}, headers=admin)).json()["id"]
    second = (await api_client.post("/stores", json={"store_name": "Library"}, headers=admin)).json()["id"]

    response = await api_client.get(f"/stores/{second}/daily-stats", headers=_headers("store", first))
    assert response.status_code == 403

    response = await api_client.post("/stores", json={"store_name": "Rogue"}, headers=_headers("store", first))
    assert response.status_code == 403

    response = await api_client.get("/members/cards")
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_request_validation_happens_before_the_ledger(api_client):
    admin = _headers()
    response = await api_client.post("/ledger/recharge", json={"gr_number": 1, "amount": "-5"}, headers=admin)
    assert response.status_code == 422

    response = await api_client.post("/ledger/recharge", json={"gr_number": 1, "amount": "5"}, headers=admin)
    assert response.status_code == 404
    assert response.json()["error"] == "member_not_found"


@pytest.mark.asyncio
async def test_maintenance_endpoints(api_client):
    admin = _headers()
    await api_client.post("/members/cards", json={"gr_number": 8, "name": "Sweep"}, headers=admin)

    status = await api_client.get("/maintenance/daily-limit-status", headers=admin)
    assert status.status_code == 200
    assert status.json()["total_accounts"] == 1

    reset = await api_client.post("/maintenance/daily-reset?force=true", headers=admin)
    assert reset.status_code == 200
    assert reset.json()["forced"] is True

    purge = await api_client.post("/maintenance/retention-purge", headers=admin)
    assert purge.status_code == 200
    assert purge.json()["carried_accounts"] == 0

    job = MagicMock()
    job.id = "maintenance:retention_purge:today"
    with patch("routers.maintenance.enqueue_maintenance_job", return_value=job):
        queued = await api_client.post("/maintenance/retention-purge?background=true", headers=admin)
    assert queued.json() == {"queued": True, "job_id": job.id}

    with patch("routers.maintenance.enqueue_maintenance_job", side_effect=ConnectionError("redis down")):
        unavailable = await api_client.post("/maintenance/retention-purge?background=true", headers=admin)
    assert unavailable.status_code == 503


@pytest.mark.asyncio
async def test_health_live(api_client):
    response = await api_client.get("/health/live")
    assert response.json() == {"alive": True}


@pytest.mark.asyncio
async def test_ledger_analytics_are_admin_only(api_client):
    admin = _headers()
    store_id = (await api_client.post("/stores", json={"store_name": "Snacks"}, headers=admin)).json()["id"]
    card = (await api_client.post("/members/cards", json={"gr_number": 77, "name": "Zoya"}, headers=admin)).json()
    await api_client.post("/ledger/recharge", json={"gr_number": 77, "amount": "40"}, headers=admin)
    await api_client.post(
        "/ledger/debit",
        json={"gr_number": 77, "amount": "12", "card_number": card["card_number"]},
        headers=_headers("store", store_id),
    )

    series = await api_client.get("/ledger/analytics/daily-transactions", headers=admin)
    assert series.status_code == 200
    assert len(series.json()) == 30
    assert sum(point["transaction_count"] for point in series.json()) == 1

    sales = await api_client.get("/ledger/analytics/store-sales?days=7", headers=admin)
    assert [row["store_name"] for row in sales.json()] == ["Snacks"]

    forbidden = await api_client.get("/ledger/analytics/store-sales", headers=_headers("store", store_id))
    assert forbidden.status_code == 403

    invalid = await api_client.get("/ledger/analytics/daily-transactions?days=0", headers=admin)
    assert invalid.status_code == 422


@pytest.mark.asyncio
async def test_sub_paisa_request_amount_is_rejected(api_client):
    admin = _headers()
    await api_client.post("/members/cards", json={"gr_number": 78, "name": "Omar"}, headers=admin)

    response = await api_client.post("/ledger/recharge", json={"gr_number": 78, "amount": "5.005"}, headers=admin)

    assert response.status_code == 422
