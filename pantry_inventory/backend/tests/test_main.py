import pytest
from sqlalchemy import select

from pantry.models import User
from pantry.session import NOT_APPROVED


@pytest.mark.asyncio
async def test_read_root(client):
    response = await client.get("/")
    assert response.status_code == 200
    assert response.json() == {"message": "Pantry Inventory System"}


@pytest.mark.asyncio
async def test_signup_approval_and_login(client, db_session, admin_headers):
    email = "pedro@paroquia.org"
    response = await client.post(
        "/signup", json={"email": email, "password": "segredo123", "full_name": "Pedro Alves"}
    )
    assert response.status_code == 200
    assert response.json()["email"] == email

    result = await db_session.execute(select(User).filter(User.email == email))
    user = result.scalars().first()
    assert user is not None
    assert not user.is_approved
    assert not user.is_super_admin

    # pending accounts cannot sign in
    response = await client.post("/login", data={"username": email, "password": "segredo123"})
    assert response.status_code == 403
    assert response.json()["detail"] == NOT_APPROVED

    response = await client.post(f"/users/{user.id}/approve", headers=admin_headers)
    assert response.status_code == 200

    response = await client.post("/login", data={"username": email, "password": "segredo123"})
    assert response.status_code == 200
    token = response.json()
    assert token["token_type"] == "bearer"
    assert token["expires_in"] == 30 * 60

    response = await client.get("/me", headers={"Authorization": f"Bearer {token['access_token']}"})
    assert response.status_code == 200
    me = response.json()
    assert me["view"] == "workspace"
    assert me["tabs"] == ["items", "withdrawals"]
    assert me["user"]["email"] == email


@pytest.mark.asyncio
async def test_signup_rejects_duplicates_and_short_passwords(client, member):
    response = await client.post(
        "/signup", json={"email": member.email, "password": "segredo123", "full_name": "Outra Ana"}
    )
    assert response.status_code == 400

    response = await client.post(
        "/signup", json={"email": "novo@paroquia.org", "password": "123", "full_name": "Novo"}
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_me_without_session(client):
    response = await client.get("/me")
    assert response.status_code == 200
    assert response.json() == {"view": "entry", "tabs": [], "user": None}


@pytest.mark.asyncio
async def test_me_as_admin(client, admin_headers):
    response = await client.get("/me", headers=admin_headers)
    assert response.status_code == 200
    assert response.json()["tabs"] == ["items", "withdrawals", "users", "reports"]
