"""HTTP tests for /api/v1/approval-sessions."""
from unittest.mock import patch

import pytest
from httpx import AsyncClient, ASGITransport

from approval_service.core.exceptions import StorageTimeoutError
from approval_service.services import rule_store
from tests.conftest import rule_payload

BASE = "/api/v1/approval-sessions"

START_BODY = {
    "transaction_id": "CA-2026-0042",
    "transaction_type": "cash_advance",
    "department": "Operations",
    "amount": "12500.00",
}


def _client(application) -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=application), base_url="http://test")


@pytest.fixture
def two_level_rule(db):
    return rule_store.create_rule(db, rule_payload("cash_advance", levels=[
        ("supervisor", True, True),
        ("finance_manager", True, False),
    ]))


async def _start(client) -> dict:
    response = await client.post(BASE, json=START_BODY)
    assert response.status_code == 201, response.text
    return response.json()


# ─── Start ────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_start_session(override_app, users, two_level_rule):
    async with _client(override_app(users["operator"])) as client:
        session = await _start(client)

    assert session["state"] == "PENDING"
    assert session["matched_rule_id"] == str(two_level_rule.id)
    assert session["submitted_by"] == str(users["operator"].id)
    assert [lvl["role"] for lvl in session["approver_chain"]] == ["supervisor", "finance_manager"]


@pytest.mark.asyncio
async def test_start_session_no_match(override_app, users):
    async with _client(override_app(users["operator"])) as client:
        response = await client.post(BASE, json=START_BODY)
    assert response.status_code == 422
    assert response.json()["code"] == "no_matching_rule"


@pytest.mark.asyncio
async def test_start_session_negative_amount(override_app, users, two_level_rule):
    async with _client(override_app(users["operator"])) as client:
        response = await client.post(BASE, json={**START_BODY, "amount": "-1"})
    assert response.status_code == 422
    assert response.json()["invariant"] == "amount_non_negative"


# ─── Decisions ────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_approval_flow(override_app, users, two_level_rule):
    app = override_app(users["operator"])
    async with _client(app) as client:
        session = await _start(client)
        url = f"{BASE}/{session['id']}/decisions"

        override_app(users["supervisor"])
        first = await client.post(url, json={"level": 1, "outcome": "approve", "comments": "ok"})
        assert first.status_code == 200
        assert first.json()["state"] == "PENDING"

        status = await client.get(f"{BASE}/{session['id']}")
        assert status.json()["current_level"] == 2
        assert status.json()["decisions"]["1"]["outcome"] == "approve"

        override_app(users["finance_manager"])
        second = await client.post(url, json={"level": 2, "outcome": "approve"})
        assert second.json()["state"] == "APPROVED"

        again = await client.post(url, json={"level": 2, "outcome": "reject"})
        assert again.status_code == 409
        assert again.json()["code"] == "already_decided"

        history = await client.get(f"{BASE}/{session['id']}/history")
        assert [e["action"] for e in history.json()] == [
            "approval_session.started",
            "approval_session.level_approve",
            "approval_session.level_approve",
            "approval_session.approved",
        ]


@pytest.mark.asyncio
async def test_wrong_role_is_403(override_app, users, two_level_rule):
    async with _client(override_app(users["operator"])) as client:
        session = await _start(client)
        response = await client.post(
            f"{BASE}/{session['id']}/decisions", json={"level": 1, "outcome": "approve"},
        )
    assert response.status_code == 403
    assert response.json()["code"] == "unauthorized_approver"


@pytest.mark.asyncio
async def test_non_admin_cannot_decide_for_someone_else(override_app, users, two_level_rule):
    async with _client(override_app(users["operator"])) as client:
        session = await _start(client)
        response = await client.post(f"{BASE}/{session['id']}/decisions", json={
            "level": 1, "outcome": "approve", "approver_id": str(users["supervisor"].id),
        })
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_admin_may_record_on_behalf_of_approver(override_app, users, two_level_rule):
    async with _client(override_app(users["operator"])) as client:
        session = await _start(client)
        override_app(users["admin"])
        response = await client.post(f"{BASE}/{session['id']}/decisions", json={
            "level": 1, "outcome": "reject", "approver_id": str(users["supervisor"].id),
        })
    assert response.status_code == 200
    assert response.json()["state"] == "REJECTED"
    assert response.json()["decisions"][0]["decided_by"] == str(users["supervisor"].id)


@pytest.mark.asyncio
async def test_invalid_level_and_outcome(override_app, users, two_level_rule):
    async with _client(override_app(users["operator"])) as client:
        session = await _start(client)
        override_app(users["supervisor"])
        url = f"{BASE}/{session['id']}/decisions"

        bad_level = await client.post(url, json={"level": 7, "outcome": "approve"})
        bad_outcome = await client.post(url, json={"level": 1, "outcome": "abstain"})

    assert bad_level.status_code == 422
    assert bad_level.json()["code"] == "invalid_level"
    assert bad_outcome.status_code == 422
    assert bad_outcome.json()["invariant"] == "decision_outcome"


@pytest.mark.asyncio
async def test_delegate_via_api(override_app, users, two_level_rule):
    async with _client(override_app(users["operator"])) as client:
        session = await _start(client)
        url = f"{BASE}/{session['id']}/decisions"

        override_app(users["supervisor"])
        delegated = await client.post(url, json={
            "level": 1, "outcome": "delegate", "delegate_to": str(users["supervisor_2"].id),
        })
        assert delegated.status_code == 200
        assert delegated.json()["decisions"][0]["delegate_to"] == str(users["supervisor_2"].id)

        override_app(users["supervisor_2"])
        approved = await client.post(url, json={"level": 1, "outcome": "approve"})
        assert approved.status_code == 200


# ─── Cancel ───────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_cancel_by_submitter(override_app, users, two_level_rule):
    async with _client(override_app(users["operator"])) as client:
        session = await _start(client)
        response = await client.post(f"{BASE}/{session['id']}/cancel", json={"reason": "Entered twice"})
        assert response.status_code == 200
        assert response.json()["state"] == "CANCELLED"

        again = await client.post(f"{BASE}/{session['id']}/cancel", json={})
        assert again.status_code == 409


@pytest.mark.asyncio
async def test_cancel_by_unrelated_user_is_403(override_app, users, two_level_rule):
    async with _client(override_app(users["operator"])) as client:
        session = await _start(client)
        override_app(users["cfo"])
        response = await client.post(f"{BASE}/{session['id']}/cancel", json={})
    assert response.status_code == 403


# ─── Listing, stats, errors ───────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_list_and_stats(override_app, users, two_level_rule):
    async with _client(override_app(users["operator"])) as client:
        await _start(client)
        await client.post(BASE, json={**START_BODY, "transaction_id": "CA-2026-0043"})

        listed = await client.get(BASE, params={"state": "PENDING"})
        stats = await client.get(f"{BASE}/stats")

    assert len(listed.json()) == 2
    assert stats.json() == {"total": 2, "pending": 2, "approved": 0, "rejected": 0, "cancelled": 0}


@pytest.mark.asyncio
async def test_unknown_session_is_404(override_app, users):
    async with _client(override_app(users["operator"])) as client:
        response = await client.get(f"{BASE}/00000000-0000-0000-0000-000000000000")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_storage_timeout_maps_to_503(override_app, users):
    with patch(
        "approval_service.api.v1.approval_sessions.session_tracker.session_stats",
        side_effect=StorageTimeoutError("Storage timed out during session_stats."),
    ):
        async with _client(override_app(users["operator"])) as client:
            response = await client.get(f"{BASE}/stats")

    assert response.status_code == 503
    assert response.json()["code"] == "storage_timeout"
    assert "retry-after" in response.headers
    assert "x-request-id" in response.headers
