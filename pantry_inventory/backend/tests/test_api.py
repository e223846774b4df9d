import pytest

from pantry import crud
from pantry.backend import Backend
from pantry.session import INVALID_CREDENTIALS, NOT_APPROVED


async def _create_item(client, headers, name="Arroz", quantity=10, unit="kg"):
    r = await client.post("/items", json={"name": name, "quantity": quantity, "unit": unit}, headers=headers)
    assert r.status_code == 200, r.text
    return r.json()


@pytest.mark.asyncio
async def test_login_wrong_password(client, member):
    r = await client.post("/login", data={"username": member.email, "password": "errada"})
    assert r.status_code == 401
    assert r.json()["detail"] == INVALID_CREDENTIALS


@pytest.mark.asyncio
async def test_requires_authentication(client):
    r = await client.get("/items")
    assert r.status_code == 401

    r = await client.get("/items", headers={"Authorization": "Bearer not-a-token"})
    assert r.status_code == 401


@pytest.mark.asyncio
async def test_pending_user_is_forbidden(client, db_session, pending):
    # a token obtained straight from the auth service still hits the approval gate
    session = await Backend(db_session).auth.sign_in_with_password(pending.email, "segredo123")
    r = await client.get("/items", headers={"Authorization": f"Bearer {session.access_token}"})
    assert r.status_code == 403
    assert r.json()["detail"] == NOT_APPROVED


@pytest.mark.asyncio
async def test_items_and_withdrawals(client, member_headers):
    item = await _create_item(client, member_headers)
    assert item["stock_status"] == "in-stock"
    assert item["removal_requested"] is False

    r = await client.get("/items", headers=member_headers)
    assert r.status_code == 200
    assert [i["name"] for i in r.json()] == ["Arroz"]

    r = await client.get(f"/items/{item['id']}", headers=member_headers)
    assert r.status_code == 200
    assert r.json()["quantity"] == 10

    r = await client.post(f"/items/{item['id']}/withdraw", json={"quantity": 4}, headers=member_headers)
    assert r.status_code == 200
    receipt = r.json()
    assert receipt["item"]["quantity"] == 6
    assert receipt["withdrawal"]["quantity"] == 4

    r = await client.post(f"/items/{item['id']}/withdraw", json={"quantity": 8}, headers=member_headers)
    assert r.status_code == 400
    assert r.json()["detail"] == crud.EXCEEDS_STOCK

    r = await client.post(f"/items/{item['id']}/withdraw", json={"quantity": 0}, headers=member_headers)
    assert r.status_code == 400

    r = await client.get("/withdrawals", headers=member_headers)
    assert r.status_code == 200
    (withdrawal,) = r.json()
    assert withdrawal["item"] == {"name": "Arroz", "unit": "kg"}
    assert withdrawal["user"] == {"full_name": "Ana Souza"}


@pytest.mark.asyncio
async def test_item_payload_validation(client, member_headers):
    r = await client.post("/items", json={"name": "Arroz", "quantity": 1, "unit": "litro"}, headers=member_headers)
    assert r.status_code == 422
    r = await client.post("/items", json={"name": "Arroz", "quantity": -1, "unit": "kg"}, headers=member_headers)
    assert r.status_code == 422
    r = await client.post("/items", json={"name": "", "quantity": 1, "unit": "kg"}, headers=member_headers)
    assert r.status_code == 422

    r = await client.get("/items/missing", headers=member_headers)
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_removal_workflow(client, member_headers, admin_headers):
    item = await _create_item(client, member_headers)

    r = await client.post(f"/items/{item['id']}/request-removal", headers=member_headers)
    assert r.status_code == 200
    assert r.json()["removal_requested"] is True

    r = await client.post(f"/items/{item['id']}/request-removal", headers=member_headers)
    assert r.status_code == 400

    r = await client.post(f"/items/{item['id']}/deny-removal", headers=member_headers)
    assert r.status_code == 403
    r = await client.post(f"/items/{item['id']}/deny-removal", headers=admin_headers)
    assert r.status_code == 200
    assert r.json()["removal_requested"] is False

    r = await client.delete(f"/items/{item['id']}", headers=member_headers)
    assert r.status_code == 403
    r = await client.delete(f"/items/{item['id']}", headers=admin_headers)
    assert r.status_code == 200
    assert r.json() == {"message": "Item removido."}

    r = await client.get(f"/items/{item['id']}", headers=member_headers)
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_stats(client, member_headers):
    arroz = await _create_item(client, member_headers, "Arroz", 10)
    await _create_item(client, member_headers, "Feijao", 2)
    await _create_item(client, member_headers, "Oleo", 0, "unidade")
    await client.post(f"/items/{arroz['id']}/withdraw", json={"quantity": 1}, headers=member_headers)

    r = await client.get("/stats", headers=member_headers)
    assert r.status_code == 200
    assert r.json() == {
        "total_items": 3,
        "total_withdrawals": 1,
        "monthly_withdrawals": 1,
        "low_stock_items": 1,
        "out_of_stock_items": 1,
    }


@pytest.mark.asyncio
async def test_logout_revokes_token(client, member_headers):
    r = await client.get("/items", headers=member_headers)
    assert r.status_code == 200

    r = await client.post("/logout", headers=member_headers)
    assert r.status_code == 200

    r = await client.get("/items", headers=member_headers)
    assert r.status_code == 401


@pytest.mark.asyncio
async def test_refresh_token(client, member_headers):
    r = await client.post("/refresh", headers=member_headers)
    assert r.status_code == 200
    token = r.json()["access_token"]

    r = await client.get("/items", headers={"Authorization": f"Bearer {token}"})
    assert r.status_code == 200

    r = await client.post("/refresh")
    assert r.status_code == 401
