import asyncio
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from app.core import metrics, security
from app.db.base import Base
from app.db.session import get_session
from app.main import app
from app.models.credit import CreditReferenceType
from app.services import credit_ledger


def auth_headers(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def make_test_client() -> tuple[TestClient, async_sessionmaker]:
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", future=True)
    SessionLocal = async_sessionmaker(engine, expire_on_commit=False, autoflush=False)

    async def init_models() -> None:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    asyncio.run(init_models())

    async def override_get_session():
        async with SessionLocal() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    return TestClient(app), SessionLocal


def grant(session_factory: async_sessionmaker, tenant_id: uuid.UUID, amount: str) -> None:
    async def _grant() -> None:
        async with session_factory() as session:
            await credit_ledger.credit(
                session,
                tenant_id=tenant_id,
                amount=Decimal(amount),
                reference_id=None,
                reference_type=CreditReferenceType.manual_grant,
                description="seed",
                created_by=None,
            )
            await session.commit()

    asyncio.run(_grant())


def create_active_coupon(client: TestClient, headers: dict[str, str], **limits) -> dict:
    created = client.post(
        "/api/v1/coupons",
        json={
            "discount_value": "10",
            "expiry_date": (datetime.now(timezone.utc) + timedelta(days=5)).isoformat(),
            **limits,
        },
        headers=headers,
    )
    assert created.status_code == 201, created.text
    coupon = created.json()["coupon"]
    res = client.patch(f"/api/v1/coupons/{coupon['id']}/status", json={"status": "active"}, headers=headers)
    assert res.status_code == 200, res.text
    return res.json()["coupon"]


def test_verify_redeems_once_then_rejects():
    client, SessionLocal = make_test_client()
    tenant_id = uuid.uuid4()
    grant(SessionLocal, tenant_id, "100")
    headers = auth_headers(security.create_access_token(str(uuid.uuid4()), tenant_id=tenant_id, role="tenant_admin"))
    try:
        coupon = create_active_coupon(client, headers)

        ok = client.post(
            "/api/v1/scans/verify",
            json={"coupon_code": coupon["coupon_code"].lower(), "location": {"lat": 44.43, "lng": 26.1}},
            headers={"X-Forwarded-For": "203.0.113.7, 10.0.0.1", "User-Agent": "scanner/1.0"},
        )
        assert ok.status_code == 200, ok.text
        body = ok.json()
        assert body["success"] is True
        assert body["scan_status"] == "SUCCESS"
        assert body["coupon"]["code"] == coupon["coupon_code"]
        assert body["coupon"]["discount_type"] == "FIXED_AMOUNT"

        again = client.post("/api/v1/scans/verify", json={"coupon_code": coupon["coupon_code"]})
        assert again.status_code == 400
        rejected = again.json()
        assert rejected["success"] is False
        assert rejected["code"] == "exhausted"
        assert rejected["error"] == "Coupon limit reached"

        history = client.get("/api/v1/scans/history", headers=headers)
        assert history.status_code == 200, history.text
        items = history.json()["items"]
        assert history.json()["total"] == 2
        assert {item["coupon_code"] for item in items} == {coupon["coupon_code"]}
        success = [item for item in items if item["scan_status"] == "SUCCESS"][0]
        assert success["ip_address"] == "203.0.113.7"
        assert success["device_info"] == "scanner/1.0"

        filtered = client.get("/api/v1/scans/history", params={"status": "EXHAUSTED"}, headers=headers)
        assert filtered.json()["total"] == 1

        detail = client.get(f"/api/v1/coupons/{coupon['id']}", headers=headers).json()
        assert detail["total_scans"] == 2
        assert detail["successful_scans"] == 1
        assert detail["current_usage_count"] == 1
        assert detail["status"] == "exhausted"
    finally:
        client.close()
        app.dependency_overrides.clear()


def test_verify_unknown_and_inactive_codes():
    client, SessionLocal = make_test_client()
    tenant_id = uuid.uuid4()
    grant(SessionLocal, tenant_id, "100")
    headers = auth_headers(security.create_access_token(str(uuid.uuid4()), tenant_id=tenant_id, role="tenant_admin"))
    try:
        unknown = client.post("/api/v1/scans/verify", json={"coupon_code": "AAAA-BBBB"})
        assert unknown.status_code == 404
        assert unknown.json()["code"] == "invalid"
        assert unknown.json()["message"] == "This coupon code is not valid."

        draft = client.post(
            "/api/v1/coupons",
            json={"discount_value": "1", "expiry_date": (datetime.now(timezone.utc) + timedelta(days=1)).isoformat()},
            headers=headers,
        ).json()["coupon"]
        not_active = client.post("/api/v1/scans/verify", json={"coupon_code": draft["coupon_code"]})
        assert not_active.status_code == 400
        assert not_active.json()["code"] == "not_active"

        assert client.post("/api/v1/scans/verify", json={"coupon_code": ""}).status_code == 422
        assert client.get("/api/v1/scans/history").status_code == 401
        assert metrics.snapshot().get("scans_invalid") == 1
        assert metrics.snapshot().get("scans_not_active") == 1
    finally:
        client.close()
        app.dependency_overrides.clear()
