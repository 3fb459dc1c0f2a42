"""HTTP surface: sessions, role checks, the error envelope and a full batch run."""

from __future__ import annotations

import io

import pandas as pd

from tests.conftest import PASSWORD, auth_headers

API = "/api/v1"
SIGNATURE = "data:image/png;base64,iVBORw0KGgo="


async def test_health(client):
    resp = await client.get(f"{API}/health")
    assert resp.status_code == 200
    assert resp.json()["message"] == "Healthy"
    assert resp.headers["X-Correlation-ID"]


async def test_missing_session_is_401_envelope(client, world):
    resp = await client.get(f"{API}/batches", headers={"X-Correlation-ID": "corr-1"})
    assert resp.status_code == 401
    assert resp.json() == {
        "success": False,
        "error": "Authentication required",
        "code": "AUTH_REQUIRED",
        "correlation_id": "corr-1",
    }


async def test_garbage_token_is_401(client, world):
    resp = await client.get(f"{API}/batches", headers={"Authorization": "Bearer not-a-token"})
    assert resp.status_code == 401
    assert resp.json()["code"] == "AUTH_REQUIRED"


async def test_unknown_route(client):
    resp = await client.get(f"{API}/does-not-exist")
    assert resp.status_code == 404
    assert resp.json()["error"] == "Route not found"
    assert resp.json()["code"] == "NOT_FOUND"


async def test_request_validation_is_400(client, world):
    resp = await client.post(
        f"{API}/batches", json={"product_name": "X"}, headers=auth_headers(world.users["operator"], world.tenant)
    )
    assert resp.status_code == 400
    body = resp.json()
    assert body["code"] == "VALIDATION_ERROR"
    assert body["details"][0]["loc"][-1] == "batch_number"


async def test_role_checks(client, world):
    qa = auth_headers(world.users["qa_qc"], world.tenant)
    operator = auth_headers(world.users["operator"], world.tenant)

    resp = await client.post(f"{API}/batches", json={"batch_number": "B-1", "product_name": "X"}, headers=qa)
    assert resp.status_code == 403
    assert resp.json()["code"] == "FORBIDDEN"

    assert (await client.get(f"{API}/batches", headers=qa)).status_code == 200
    assert (await client.get(f"{API}/users", headers=operator)).status_code == 403
    assert (await client.get(f"{API}/audit/export", headers=operator)).status_code == 403
    resp = await client.post(f"{API}/recipes", json={"name": "R", "product_name": "P"}, headers=operator)
    assert resp.status_code == 403


async def test_batch_record_flow(client, world):
    manager = auth_headers(world.users["batch_manager"], world.tenant)
    operator = auth_headers(world.users["operator"], world.tenant)

    resp = await client.post(
        f"{API}/batches",
        json={"batch_number": "B-2026-001", "product_name": "Paracetamol 500mg", "recipe_id": str(world.recipe.id)},
        headers=operator,
    )
    assert resp.status_code == 201
    batch = resp.json()
    assert batch["status"] == "draft"
    batch_url = f"{API}/batches/{batch['id']}"
    detail = (await client.get(batch_url, headers=operator)).json()
    assert (detail["completed_steps"], detail["total_steps"]) == (0, 3)

    resp = await client.post(f"{batch_url}/report", headers=manager)
    assert resp.status_code == 400
    assert resp.json()["code"] == "INVALID_STATE"

    assert (await client.post(f"{batch_url}/start", headers=operator)).status_code == 403
    resp = await client.post(f"{batch_url}/start", headers=manager)
    assert resp.json()["status"] == "active"
    assert (await client.post(f"{batch_url}/start", headers=manager)).status_code == 404

    steps = (await client.get(f"{batch_url}/steps", headers=operator)).json()
    resp = await client.put(
        f"{batch_url}/steps/{steps[0]['id']}",
        json={"status": "in_progress", "actual_value": 500.2},
        headers=operator,
    )
    assert resp.json()["status"] == "in_progress"
    resp = await client.post(
        f"{batch_url}/steps/{steps[0]['id']}/sign", json={"signature_data": SIGNATURE}, headers=operator
    )
    assert resp.json()["signature_data"] == SIGNATURE
    assert resp.json()["actual_value"] == 500.2

    detail = (await client.get(batch_url, headers=operator)).json()
    assert (detail["completed_steps"], detail["total_steps"]) == (1, 3)

    resp = await client.post(f"{batch_url}/complete", headers=manager)
    assert resp.json()["status"] == "completed"

    resp = await client.post(f"{batch_url}/report", headers=manager)
    assert resp.status_code == 200
    assert resp.json()["success"] is True

    resp = await client.get(f"{batch_url}/report/download", headers=operator)
    assert resp.status_code == 200
    assert resp.headers["content-type"] == "application/pdf"
    assert resp.content.startswith(b"%PDF")
    assert "batch-record-B-2026-001.pdf" in resp.headers["content-disposition"]

    trail = (await client.get(f"{batch_url}/audit", headers=operator)).json()
    assert [e["action"] for e in trail] == [
        "batch.report.generated",
        "batch.completed",
        "batch.step.signed",
        "batch.step.started",
        "batch.started",
        "batch.created",
    ]


async def test_report_download_before_generation(client, world):
    manager = auth_headers(world.users["batch_manager"], world.tenant)
    batch = (
        await client.post(f"{API}/batches", json={"batch_number": "B-5", "product_name": "X"}, headers=manager)
    ).json()
    resp = await client.get(f"{API}/batches/{batch['id']}/report/download", headers=manager)
    assert resp.status_code == 404


async def test_other_tenant_batches_are_invisible(client, world):
    manager = auth_headers(world.users["batch_manager"], world.tenant)
    intruder = auth_headers(world.other_admin, world.other_tenant)
    batch = (
        await client.post(f"{API}/batches", json={"batch_number": "B-6", "product_name": "X"}, headers=manager)
    ).json()

    assert (await client.get(f"{API}/batches/{batch['id']}", headers=intruder)).status_code == 404
    assert (await client.post(f"{API}/batches/{batch['id']}/cancel", headers=intruder)).status_code == 404
    assert (await client.get(f"{API}/batches", headers=intruder)).json() == []


async def test_cancel_with_reason(client, world):
    manager = auth_headers(world.users["batch_manager"], world.tenant)
    batch = (
        await client.post(f"{API}/batches", json={"batch_number": "B-7", "product_name": "X"}, headers=manager)
    ).json()
    resp = await client.post(
        f"{API}/batches/{batch['id']}/cancel", json={"reason": "Raw material recall"}, headers=manager
    )
    assert resp.json()["status"] == "cancelled"

    trail = (await client.get(f"{API}/batches/{batch['id']}/audit", headers=manager)).json()
    assert trail[0]["details"]["reason"] == "Raw material recall"


async def test_forwarded_client_ip_is_recorded(client, world):
    headers = auth_headers(world.users["operator"], world.tenant)
    headers["X-Forwarded-For"] = "203.0.113.7, 10.0.0.1"
    batch = (
        await client.post(f"{API}/batches", json={"batch_number": "B-8", "product_name": "X"}, headers=headers)
    ).json()

    trail = (await client.get(f"{API}/batches/{batch['id']}/audit", headers=headers)).json()
    assert trail[0]["ip_address"] == "203.0.113.7"


async def test_login_cookie_session(client, world):
    resp = await client.post(
        f"{API}/auth/login", json={"email": "operator@dicode-demo.com", "password": PASSWORD, "tenant": "demo"}
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["role"] == "operator"
    assert body["tenant_slug"] == "demo"
    assert "hashed_password" not in body
    token = resp.cookies.get("token") or body["access_token"]
    assert "httponly" in resp.headers["set-cookie"].lower()
    client.cookies.clear()

    cookie = {"Cookie": f"token={token}"}
    resp = await client.get(f"{API}/auth/me", headers=cookie)
    assert resp.status_code == 200
    assert resp.json()["email"] == "operator@dicode-demo.com"

    resp = await client.post(f"{API}/auth/logout", headers=cookie)
    assert resp.json() == {"success": True}

    events = (await client.get(f"{API}/audit", headers=cookie)).json()
    assert [e["action"] for e in events] == ["auth.logout", "auth.login"]


async def test_login_failure(client, world):
    resp = await client.post(f"{API}/auth/login", json={"email": "operator@dicode-demo.com", "password": "nope"})
    assert resp.status_code == 401
    assert resp.json()["error"] == "Invalid credentials"


async def test_logout_without_session(client):
    resp = await client.post(f"{API}/auth/logout")
    assert resp.status_code == 200


async def test_deactivated_user_loses_access(client, world):
    admin = auth_headers(world.users["admin"], world.tenant)
    qa = auth_headers(world.users["qa_qc"], world.tenant)
    assert (await client.get(f"{API}/auth/me", headers=qa)).status_code == 200

    resp = await client.delete(f"{API}/users/{world.users['qa_qc'].id}", headers=admin)
    assert resp.status_code == 204

    resp = await client.get(f"{API}/auth/me", headers=qa)
    assert resp.status_code == 401
    assert resp.json()["error"] == "User not found or deactivated"


async def test_user_admin(client, world):
    admin = auth_headers(world.users["admin"], world.tenant)
    payload = {"email": "new@dicode-demo.com", "password": "secret1", "full_name": "New", "role": "qa_qc"}

    resp = await client.post(f"{API}/users", json=payload, headers=admin)
    assert resp.status_code == 201
    assert resp.json()["role"] == "qa_qc"
    assert (await client.post(f"{API}/users", json=payload, headers=admin)).status_code == 409

    resp = await client.put(f"{API}/users/{resp.json()['id']}", json={"full_name": "Renamed"}, headers=admin)
    assert resp.json()["full_name"] == "Renamed"
    assert len((await client.get(f"{API}/users", headers=admin)).json()) == 6


async def test_audit_export(client, world):
    manager = auth_headers(world.users["batch_manager"], world.tenant)
    await client.post(f"{API}/batches", json={"batch_number": "B-9", "product_name": "X"}, headers=manager)

    resp = await client.get(f"{API}/audit/export", params={"format": "csv"}, headers=manager)
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/csv")
    df = pd.read_csv(io.StringIO(resp.text))
    assert df.loc[0, "action"] == "batch.created"
    assert df.loc[0, "entity_name"] == "B-9"

    resp = await client.get(f"{API}/audit/export", params={"format": "xlsx"}, headers=manager)
    assert resp.status_code == 200
    assert resp.content[:2] == b"PK"
    assert ".xlsx" in resp.headers["content-disposition"]

    resp = await client.get(f"{API}/audit/export", params={"format": "pdf"}, headers=manager)
    assert resp.status_code == 400


async def test_audit_limit_is_capped(client, world):
    headers = auth_headers(world.users["qa_qc"], world.tenant)
    assert (await client.get(f"{API}/audit", params={"limit": 5000}, headers=headers)).status_code == 200
    assert (await client.get(f"{API}/audit", params={"limit": 0}, headers=headers)).status_code == 400


async def test_recipe_endpoints(client, world):
    manager = auth_headers(world.users["batch_manager"], world.tenant)
    recipe_url = f"{API}/recipes/{world.recipe.id}"

    detail = (await client.get(recipe_url, headers=manager)).json()
    assert [s["step_number"] for s in detail["steps"]] == [1, 2, 3]

    resp = await client.get(f"{recipe_url}/export", params={"format": "xml"}, headers=manager)
    assert resp.headers["content-type"].startswith("application/xml")
    assert "<RecipeBody>" in resp.text

    resp = await client.post(
        f"{API}/recipes/import", json={"format": "xml", "data": resp.text}, headers=manager
    )
    assert resp.status_code == 201
    assert resp.json()["name"] == "Paracetamol 500mg Tablet"

    assert (await client.delete(recipe_url, headers=manager)).status_code == 204
    assert (await client.get(recipe_url, headers=manager)).status_code == 404


async def test_tenant_settings(client, world):
    resp = await client.get(f"{API}/tenant/settings", headers=auth_headers(world.users["operator"], world.tenant))
    body = resp.json()
    assert body["tenant"]["slug"] == "demo"
    assert body["branding"] == {"logoText": "Dicode EBR"}
    assert body["compliance"] == {"part11": True}


async def test_integrations(client, world):
    headers = auth_headers(world.users["operator"], world.tenant)

    readings = (await client.get(f"{API}/integrations/readings", headers=headers)).json()
    assert len(readings["readings"]) == 6
    assert readings["readings"]["batch_weight"]["unit"] == "kg"

    equipment = (await client.get(f"{API}/integrations/equipment", headers=headers)).json()
    assert len(equipment["equipment"]) == 4
    status = (await client.get(f"{API}/integrations/status", headers=headers)).json()
    assert status["connected"] is True
    assert (await client.get(f"{API}/integrations/alarms", headers=headers)).status_code == 200
