import pytest
from fastapi import status

from rules_engine.models import ActionType

pytestmark = pytest.mark.anyio


FOE_EVENT = {"source": "face", "class": "Foe", "score": 0.92, "camera_id": "cam-front"}


async def create_vexor(client, auth_headers, vexor_rule):
    response = await client.post("/api/v1/rules", json=vexor_rule, headers=auth_headers)
    assert response.status_code == status.HTTP_201_CREATED
    return response.json()["rule"]


async def test_health_check(client):
    """Health check is public."""
    response = await client.get("/health")
    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    assert data["status"] == "healthy"
    assert data["components"]["system"] == "up"


async def test_readiness(client):
    response = await client.get("/health/ready")
    assert response.status_code == status.HTTP_200_OK
    assert response.json()["components"]["database"] == "ready"


async def test_login(client):
    response = await client.post(
        "/api/v1/auth/token",
        data={"username": "admin", "password": "secret"}
    )
    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    assert "access_token" in data
    assert data["token_type"] == "bearer"


async def test_login_json_payload(client):
    response = await client.post(
        "/api/v1/auth/token",
        json={"username": "admin", "password": "secret"}
    )
    assert response.status_code == status.HTTP_200_OK


async def test_login_fail(client):
    response = await client.post(
        "/api/v1/auth/token",
        data={"username": "admin", "password": "wrongpassword"}
    )
    assert response.status_code == status.HTTP_401_UNAUTHORIZED


async def test_create_rule_requires_auth(client, vexor_rule):
    response = await client.post("/api/v1/rules", json=vexor_rule)
    assert response.status_code == status.HTTP_401_UNAUTHORIZED


async def test_create_rule_requires_admin(client, viewer_headers, vexor_rule):
    response = await client.post("/api/v1/rules", json=vexor_rule, headers=viewer_headers)
    assert response.status_code == status.HTTP_403_FORBIDDEN


async def test_rule_crud(client, auth_headers, vexor_rule):
    rule = await create_vexor(client, auth_headers, vexor_rule)
    assert rule["condition_type"] == "face"

    response = await client.get("/api/v1/rules")
    assert response.json()["total"] == 1

    response = await client.patch(
        "/api/v1/rules/vexor-warning",
        json={"sensitivity": "low"},
        headers=auth_headers
    )
    assert response.status_code == status.HTTP_200_OK
    assert response.json()["sensitivity"] == "low"

    response = await client.post("/api/v1/rules/vexor-warning/disable", headers=auth_headers)
    assert response.json()["rule"]["enabled"] is False

    response = await client.get("/api/v1/rules", params={"enabled": "true"})
    assert response.json()["total"] == 0

    response = await client.delete("/api/v1/rules/vexor-warning", headers=auth_headers)
    assert response.status_code == status.HTTP_204_NO_CONTENT

    response = await client.get("/api/v1/rules/vexor-warning")
    assert response.status_code == status.HTTP_404_NOT_FOUND


async def test_duplicate_rule_conflict(client, auth_headers, vexor_rule):
    await create_vexor(client, auth_headers, vexor_rule)
    response = await client.post("/api/v1/rules", json=vexor_rule, headers=auth_headers)
    assert response.status_code == status.HTTP_409_CONFLICT
    assert response.json()["error"] == "DuplicateRuleError"


async def test_invalid_rule_rejected(client, auth_headers):
    response = await client.post(
        "/api/v1/rules",
        json={"id": "late", "condition_type": "time", "condition_value": "late-ish", "operator": "after"},
        headers=auth_headers
    )
    assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
    assert response.json()["error"] == "ConfigError"


async def test_validate_endpoint(client):
    response = await client.post(
        "/api/v1/rules/validate",
        json={"id": "no-actions", "name": "No actions", "condition_type": "behavior", "condition_value": "fall"}
    )
    data = response.json()
    assert data["valid"] is True
    assert data["warnings"]


async def test_templates_and_create_from_template(client, auth_headers):
    response = await client.get("/api/v1/rules/templates")
    names = [t["name"] for t in response.json()["templates"]]
    assert names == ["VEXOR Warning", "Silent Alert", "Auto Police Contact"]

    response = await client.post(
        "/api/v1/rules/from-template",
        json={"template": "Silent Alert", "rule_id": "porch-unknown"},
        headers=auth_headers
    )
    assert response.status_code == status.HTTP_201_CREATED
    assert response.json()["rule"]["id"] == "porch-unknown"


async def test_test_rule_dry_run(client, auth_headers, recorder, vexor_rule):
    await create_vexor(client, auth_headers, vexor_rule)

    response = await client.post(
        "/api/v1/rules/vexor-warning/test",
        json={"event": {"source": "face", "class": "Foe", "confidence": 79}}
    )
    data = response.json()
    assert data["matched"] is False
    assert "below high threshold" in data["reason"]
    assert recorder.calls == []


async def test_evaluate_event(client, auth_headers, recorder, vexor_rule):
    await create_vexor(client, auth_headers, vexor_rule)

    response = await client.post("/api/v1/events/evaluate", json=FOE_EVENT, headers=auth_headers)

    assert response.status_code == status.HTTP_200_OK
    report = response.json()
    assert report["matched_rule_ids"] == ["vexor-warning"]
    assert report["alerts"][0]["actions_succeeded"] == ["speaker", "light", "notification"]
    assert sorted(recorder.action_types) == ["light", "notification", "speaker"]

    response = await client.get("/api/v1/alerts", params={"rule_id": "vexor-warning"})
    alerts = response.json()["alerts"]
    assert len(alerts) == 1

    response = await client.get(f"/api/v1/alerts/{alerts[0]['id']}")
    assert response.json()["message"] == "Intruder detected"


async def test_submit_event_is_queued(client, auth_headers, system, vexor_rule):
    await create_vexor(client, auth_headers, vexor_rule)

    response = await client.post("/api/v1/events", json=FOE_EVENT, headers=auth_headers)
    assert response.status_code == status.HTTP_202_ACCEPTED
    assert response.json()["queued"] is True

    await system.loop.join()
    response = await client.get("/api/v1/events/recent")
    assert response.json()["reports"][0]["matched_rule_ids"] == ["vexor-warning"]


async def test_submit_invalid_event(client, auth_headers):
    response = await client.post("/api/v1/events", json={"source": "radar"}, headers=auth_headers)
    assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
    assert response.json()["error"] == "InvalidEventError"


async def test_events_require_auth(client):
    response = await client.post("/api/v1/events", json=FOE_EVENT)
    assert response.status_code == status.HTTP_401_UNAUTHORIZED


async def test_police_approval_flow(client, auth_headers, recorder):
    response = await client.post(
        "/api/v1/rules/from-template",
        json={"template": "Auto Police Contact"},
        headers=auth_headers
    )
    assert response.status_code == status.HTTP_201_CREATED

    response = await client.post(
        "/api/v1/events/evaluate",
        json={"source": "system", "kind": "theft", "confidence": 95},
        headers=auth_headers
    )
    outcomes = response.json()["alerts"][0]["outcomes"]
    assert outcomes[0]["reason"] == "awaiting confirmation"
    assert ActionType.POLICE.value not in recorder.action_types

    response = await client.get("/api/v1/approvals")
    approvals = response.json()["approvals"]
    assert len(approvals) == 1
    token_id = approvals[0]["token_id"]

    response = await client.post(f"/api/v1/approvals/{token_id}/approve", json={"comment": "confirmed on camera"}, headers=auth_headers)
    assert response.status_code == status.HTTP_200_OK
    assert response.json()["status"] == "approved"
    assert "police" in recorder.action_types

    response = await client.post(f"/api/v1/approvals/{token_id}/reject", headers=auth_headers)
    assert response.status_code == status.HTTP_409_CONFLICT


async def test_unknown_approval(client, auth_headers):
    response = await client.post("/api/v1/approvals/nope/approve", headers=auth_headers)
    assert response.status_code == status.HTTP_404_NOT_FOUND


async def test_devices(client, auth_headers):
    response = await client.post(
        "/api/v1/devices",
        json={"device_id": "front-door", "device_type": "contact"},
        headers=auth_headers
    )
    assert response.status_code == status.HTTP_201_CREATED

    response = await client.post("/api/v1/devices/front-door/heartbeat", headers=auth_headers)
    assert response.json()["alive"] is True

    response = await client.get("/api/v1/devices")
    assert response.json()["devices"][0]["alive"] is True

    response = await client.post("/api/v1/devices/garage/heartbeat", headers=auth_headers)
    assert response.status_code == status.HTTP_404_NOT_FOUND

    response = await client.post(
        "/api/v1/devices/front-door/monitoring",
        json={"monitoring": False},
        headers=auth_headers
    )
    assert response.json()["monitoring"] is False

    response = await client.get("/api/v1/devices")
    assert response.json()["devices"][0]["alive"] is False


async def test_reload_and_summary(client, auth_headers, vexor_rule):
    await create_vexor(client, auth_headers, vexor_rule)

    response = await client.post("/api/v1/rules/reload", headers=auth_headers)
    assert response.json()["total_rules"] == 1

    response = await client.get("/api/v1/rules/summary")
    assert response.json()["rules_by_condition_type"] == {"face": 1}


async def test_metrics_routes_accessible_without_auth(client, auth_headers, vexor_rule):
    await create_vexor(client, auth_headers, vexor_rule)
    await client.post("/api/v1/events/evaluate", json=FOE_EVENT, headers=auth_headers)

    response = await client.get("/api/v1/metrics")
    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    assert data["counters"]["evaluations_total"] == 1

    response = await client.get("/metrics")
    assert response.status_code == status.HTTP_200_OK
    assert "homeguard_evaluations_total 1" in response.text


async def test_status_and_config(client):
    response = await client.get("/api/v1/status")
    data = response.json()
    assert data["loop"]["running"] is True
    assert data["mode"] == "DEMO"

    response = await client.get("/api/v1/config")
    assert "jwt_secret_key" not in response.text
