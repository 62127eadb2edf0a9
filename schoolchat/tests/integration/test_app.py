# schoolchat/tests/integration/test_app.py
import datetime

import pytest

CHAT = "/api/v1/chat"


@pytest.mark.asyncio
async def test_root(client):
    response = await client.get("/")
    assert response.status_code == 200
    assert response.json()["data"]["service"] == "Test SchoolChat API"
    assert response.json()["data"]["database"] == "ok"


@pytest.mark.asyncio
async def test_missing_token(client):
    response = await client.get(f"{CHAT}/threads")
    assert response.status_code == 401
    assert response.json() == {
        "status": "error",
        "error": "not_authenticated",
        "message": "Could not validate credentials",
    }


@pytest.mark.asyncio
async def test_expired_token(client, security_service, parent):
    token, _ = security_service.create_access_token(
        parent.id, expires_delta=datetime.timedelta(seconds=-1)
    )
    response = await client.get(
        f"{CHAT}/threads", headers={"Authorization": f"Bearer {token}"}
    )
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_token_of_deactivated_user(client, auth_header, make_user):
    former_parent = await make_user("parent", is_active=False)
    response = await client.get(f"{CHAT}/threads", headers=auth_header(former_parent))
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_validation_error_envelope(client, auth_header, teacher):
    response = await client.post(
        f"{CHAT}/threads", json={"participants": []}, headers=auth_header(teacher)
    )
    assert response.status_code == 422
    body = response.json()
    assert body["status"] == "error"
    assert body["error"] == "validation_error"
    assert "participants" in body["message"]


@pytest.mark.asyncio
async def test_openapi_schema(client):
    response = await client.get("/api/v1/openapi.json")
    assert response.status_code == 200
    assert f"{CHAT}/start-conversation" in response.json()["paths"]
