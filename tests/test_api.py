from __future__ import annotations

import asyncio
import uuid
from decimal import Decimal


def _api_key(credits: str = "10.00", rate: str = "0.01") -> dict[str, str]:
    # Seed an account via the repository (async), then authenticate with it.
    async def _seed(key: str) -> None:
        from db.repository import ApiKeyRepository

        await ApiKeyRepository().create(key, name="tests", credits=Decimal(credits), rate_per_second=Decimal(rate))

    key = f"sk-{uuid.uuid4().hex}"
    asyncio.run(_seed(key))
    return {"Authorization": f"Bearer {key}"}


def test_health_does_not_require_auth(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "healthy"
    assert payload["trunks"] == 3
    assert payload["ari_events_enabled"] is False


def test_missing_or_unknown_key_is_rejected(client):
    response = client.post("/api/calls", json={"number": "100"})
    assert response.status_code == 401
    assert response.json()["detail"] == "Missing or invalid Authorization header"

    response = client.get("/api/calls", headers={"Authorization": "Bearer sk-unknown"})
    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid API key"


def test_originate_and_inspect_call(client):
    headers = _api_key()

    response = client.post(
        "/api/calls",
        json={"number": "+15550100", "use_amd": True, "voice": "en-US-Neural2-A"},
        headers=headers,
    )
    assert response.status_code == 200
    payload = response.json()
    assert payload["call_id"] == "chan-1"
    assert payload["status"] == "ringing"
    assert payload["trunk_used"] == "trunk-a"
    assert payload["attempted_trunks"] == ["trunk-a"]
    assert payload["use_amd"] is True

    response = client.get("/api/calls/chan-1", headers=headers)
    assert response.status_code == 200
    status = response.json()
    assert status["trunk"] == "trunk-a"
    assert status["voice"] == "en-US-Neural2-A"

    listing = client.get("/api/calls", headers=headers).json()
    assert listing["total_calls"] == 1
    assert listing["calls"][0]["call_id"] == "chan-1"

    # Calls are invisible to other accounts.
    assert client.get("/api/calls/chan-1", headers=_api_key()).status_code == 404


def test_call_control_errors_map_to_status_codes(client, call_control):
    response = client.post("/api/calls", json={"number": "100"}, headers=_api_key(credits="0"))
    assert response.status_code == 402
    assert response.json()["code"] == "insufficient_credits"

    response = client.get("/api/calls/missing", headers=_api_key())
    assert response.status_code == 404
    assert response.json() == {"detail": "Call not found", "code": "call_not_found", "call_id": "missing"}

    call_control.failing_trunks = {"trunk-a", "trunk-b", "trunk-c"}
    response = client.post("/api/calls", json={"number": "100"}, headers=_api_key())
    assert response.status_code == 502
    payload = response.json()
    assert payload["code"] == "origination_failed"
    assert payload["attempted_trunks"] == ["trunk-a", "trunk-b", "trunk-c"]
    assert payload["total_trunks"] == 3


def test_invalid_number_returns_400(client):
    response = client.post("/api/calls", json={"number": "call-me"}, headers=_api_key())
    assert response.status_code == 400
    assert response.json()["code"] == "invalid_request"


def test_playback_gather_and_recording_routes(client, api_engine, call_control):
    headers = _api_key()
    call_id = client.post("/api/calls", json={"number": "100"}, headers=headers).json()["call_id"]

    response = client.post(f"/api/calls/{call_id}/voice", json={"text": "Hello"}, headers=headers)
    assert response.status_code == 200
    assert response.json()["media"] == f"sound:{call_id}"

    response = client.post(
        f"/api/calls/{call_id}/play", json={"file": "custom/welcome", "play_to": "channel"}, headers=headers
    )
    assert response.status_code == 200
    assert response.json()["method"] == "channel"

    response = client.post(
        f"/api/calls/{call_id}/gather", json={"text": "Enter PIN", "num_digits": 4, "timeout_ms": 5000}, headers=headers
    )
    assert response.status_code == 200
    assert response.json() == {"call_id": call_id, "expected_digits": 4, "timeout_ms": 5000}
    assert client.get(f"/api/calls/{call_id}", headers=headers).json()["gather"]["expected"] == 4

    response = client.post(f"/api/calls/{call_id}/dtmf", json={"digits": "1#"}, headers=headers)
    assert response.status_code == 200
    assert call_control.ops("send_dtmf") == [{"channel_id": call_id, "digits": "1#"}]

    response = client.post(f"/api/calls/{call_id}/recording/stop", headers=headers)
    assert response.status_code == 404
    assert response.json()["detail"] == "No active recording found"

    response = client.post(f"/api/calls/{call_id}/hangup", headers=headers)
    assert response.status_code == 200
    assert response.json() == {"call_id": call_id, "status": "terminating"}
    assert call_control.ops("hangup") == [{"channel_id": call_id}]


def test_trunk_stats_requires_auth_and_reports_pool(client):
    assert client.get("/api/trunks/stats").status_code == 401

    headers = _api_key()
    client.post("/api/calls", json={"number": "100"}, headers=headers)

    payload = client.get("/api/trunks/stats", headers=headers).json()
    assert payload["trunks"] == ["trunk-a", "trunk-b", "trunk-c"]
    assert payload["round_robin_index"] == 1
    assert payload["stats"]["trunk-a"]["success_calls"] == 1
