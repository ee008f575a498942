"""Вход сотрудников, Telegram init_data и журнал аудита."""
import hashlib
import hmac
import json
import time
from urllib.parse import urlencode

import pytest_asyncio
from sqlalchemy import select

from app.core.telegram import validate_telegram_init_data
from app.models import AuditLog
from app.services.user_service import UserService

BOT_TOKEN = "123456:TEST-BOT-TOKEN"


def signed_init_data(user: dict, bot_token: str = BOT_TOKEN, auth_date: int | None = None) -> str:
    """Собрать init_data так, как его подписывает Telegram."""
    fields = {
        "auth_date": str(auth_date if auth_date is not None else int(time.time())),
        "query_id": "AAHdF6IQAAAAAN0XohDhrOrc",
        "user": json.dumps(user, separators=(",", ":")),
    }
    data_check_string = "\n".join(f"{k}={v}" for k, v in sorted(fields.items()))
    secret_key = hmac.new(b"WebAppData", bot_token.encode(), hashlib.sha256).digest()
    fields["hash"] = hmac.new(secret_key, data_check_string.encode(), hashlib.sha256).hexdigest()
    return urlencode(fields)


@pytest_asyncio.fixture
async def staff_user(db):
    return await UserService(db).create_user(
        username="manager1",
        password="s3cret-pass",
        role="manager",
        full_name="Amina Warsame",
        telegram_id=777000111,
    )


class TestLogin:

    async def test_success_writes_login_audit(self, client, db, staff_user):
        response = await client.post(
            "/api/v1/admin/login", json={"username": "manager1", "password": "s3cret-pass"},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["ok"] is True
        assert body["role"] == "manager"
        assert body["access_token"]

        entry = (await db.execute(select(AuditLog).where(AuditLog.action_type == "LOGIN"))).scalar_one()
        assert entry.actor == "manager1"
        assert entry.table_name == "users"
        assert entry.record_id == str(staff_user.id)

    async def test_token_grants_access(self, client, staff_user, payment_methods):
        login = await client.post(
            "/api/v1/admin/login", json={"username": "manager1", "password": "s3cret-pass"},
        )
        token = login.json()["access_token"]

        response = await client.get(
            "/api/v1/payments/methods/active", headers={"Authorization": f"Bearer {token}"},
        )
        assert response.status_code == 200

    async def test_wrong_password(self, client, staff_user):
        response = await client.post(
            "/api/v1/admin/login", json={"username": "manager1", "password": "nope"},
        )
        assert response.status_code == 401

    async def test_unknown_user(self, client):
        response = await client.post(
            "/api/v1/admin/login", json={"username": "ghost", "password": "nope"},
        )
        assert response.status_code == 401


class TestTelegramInitData:

    def test_valid_signature(self):
        user = {"id": 42, "first_name": "Ayaan"}
        assert validate_telegram_init_data(signed_init_data(user), BOT_TOKEN) == user

    def test_tampered_data(self):
        init_data = signed_init_data({"id": 42, "first_name": "Ayaan"}).replace("Ayaan", "Mallory")
        assert validate_telegram_init_data(init_data, BOT_TOKEN) is None

    def test_wrong_bot_token(self):
        init_data = signed_init_data({"id": 42, "first_name": "Ayaan"}, bot_token="999:OTHER")
        assert validate_telegram_init_data(init_data, BOT_TOKEN) is None

    def test_missing_hash(self):
        assert validate_telegram_init_data("auth_date=1&user=%7B%7D", BOT_TOKEN) is None

    def test_stale_auth_date(self):
        init_data = signed_init_data({"id": 42, "first_name": "Ayaan"}, auth_date=int(time.time()) - 2 * 86400)
        assert validate_telegram_init_data(init_data, BOT_TOKEN) is None
        assert validate_telegram_init_data(init_data, BOT_TOKEN, max_age_seconds=None) is not None

    async def test_endpoint_for_staff_issues_token(self, client, staff_user):
        init_data = signed_init_data({"id": 777000111, "first_name": "Amina"})

        response = await client.post("/api/v1/telegram/validate_init_data", json={"init_data": init_data})

        assert response.status_code == 200
        body = response.json()
        assert body["is_staff"] is True
        assert body["role"] == "manager"
        assert body["access_token"]

    async def test_endpoint_for_customer(self, client):
        init_data = signed_init_data({"id": 5, "first_name": "Guest"})

        response = await client.post("/api/v1/telegram/validate_init_data", json={"init_data": init_data})

        body = response.json()
        assert body["ok"] is True
        assert body["is_staff"] is False
        assert body["access_token"] is None
        assert body["telegram_user"]["id"] == 5

    async def test_endpoint_rejects_bad_signature(self, client):
        response = await client.post(
            "/api/v1/telegram/validate_init_data", json={"init_data": "auth_date=1&hash=deadbeef"},
        )
        assert response.status_code == 401


class TestAuditEndpoint:

    async def test_admin_only(self, client, cashier_headers):
        response = await client.get("/api/v1/audit", headers=cashier_headers)
        assert response.status_code == 403

    async def test_lists_filtered_entries(self, client, payment_methods, make_order, cashier_headers, admin_headers):
        order = await make_order("100.00")
        created = await client.post(
            "/api/v1/payments",
            json={"order_id": str(order.id), "amount": "10.00", "payment_method": "cash"},
            headers=cashier_headers,
        )
        payment_id = created.json()["payment_id"]

        response = await client.get(
            "/api/v1/audit", params={"table_name": "payments", "record_id": payment_id}, headers=admin_headers,
        )

        assert response.status_code == 200
        body = response.json()
        assert body["total"] == 1
        assert body["audit_logs"][0]["action_type"] == "CREATE"
        assert body["audit_logs"][0]["actor"] == "cashier1"
