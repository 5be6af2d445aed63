"""
Tests for the back office API.

Tests cover:
- Admin login, profile and admin user management
- Event CRUD and availability toggle
- Order status changes (single and bulk) with history
- Dashboard stats and CSV reports
- CEP zones, event zone prices, coupons and customers
"""
import csv
import io
from datetime import datetime, timedelta

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.constants import (
    STATUS_AWAITING_PAYMENT,
    STATUS_CANCELLED,
    STATUS_CONFIRMED,
    STATUS_IN_TRANSIT,
)
from backend.app.models.admin import AdminAuditLog
from backend.app.models.cep_zone import CepZone
from backend.app.models.order import OrderStatusHistory
from backend.tests.conftest import ADMIN_PASSWORD, TestSessionLocal, customer_auth_header


def read_csv(response) -> list:
    text = response.text
    assert text.startswith("﻿")
    return list(csv.reader(io.StringIO(text.lstrip("﻿")), delimiter=";"))


def event_payload(**overrides) -> dict:
    data = {
        "name": "Meia Maratona do Cabo Branco",
        "date": (datetime.utcnow() + timedelta(days=60)).isoformat(),
        "location": "Farol do Cabo Branco",
        "city": "João Pessoa",
        "state": "PB",
        "pickup_zip_code": "58045-000",
        "pricing_type": "distance",
    }
    data.update(overrides)
    return data


# ============================================
# Auth
# ============================================

@pytest.mark.asyncio
async def test_admin_login(client: AsyncClient, admin_user):
    response = await client.post("/api/admin/auth/login", json={"username": "admin", "password": ADMIN_PASSWORD})
    assert response.status_code == 200
    data = response.json()
    assert data["token"]
    assert data["user"]["username"] == "admin"

    me = await client.get("/api/admin/auth/me", headers={"Authorization": f"Bearer {data['token']}"})
    assert me.status_code == 200
    assert me.json()["role"] == "super_admin"


@pytest.mark.asyncio
async def test_admin_login_wrong_password_is_audited(client: AsyncClient, admin_user):
    response = await client.post("/api/admin/auth/login", json={"username": "admin", "password": "errada"})
    assert response.status_code == 401

    async with TestSessionLocal() as session:
        actions = (await session.execute(select(AdminAuditLog.action))).scalars().all()
        assert actions == ["login_failed"]


@pytest.mark.asyncio
async def test_admin_endpoints_require_token(client: AsyncClient):
    assert (await client.get("/api/admin/stats")).status_code == 401
    assert (await client.get("/api/admin/orders")).status_code == 401


@pytest.mark.asyncio
async def test_customer_token_is_not_admin(client: AsyncClient, test_customer):
    response = await client.get("/api/admin/stats", headers=customer_auth_header(test_customer.id))
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_create_admin_user_rejects_weak_password(client: AsyncClient, admin_headers):
    response = await client.post(
        "/api/admin/auth/users", json={"username": "operador", "password": "fraca"}, headers=admin_headers
    )
    assert response.status_code == 400
    assert response.json()["detail"]["errors"]


@pytest.mark.asyncio
async def test_create_and_delete_admin_user(client: AsyncClient, admin_headers):
    response = await client.post(
        "/api/admin/auth/users",
        json={"username": "operador", "password": "Operador123", "role": "admin"},
        headers=admin_headers,
    )
    assert response.status_code == 201
    user_id = response.json()["id"]

    duplicate = await client.post(
        "/api/admin/auth/users", json={"username": "Operador", "password": "Operador123"}, headers=admin_headers
    )
    assert duplicate.status_code == 409

    deleted = await client.delete(f"/api/admin/auth/users/{user_id}", headers=admin_headers)
    assert deleted.status_code == 200


@pytest.mark.asyncio
async def test_admin_cannot_delete_self(client: AsyncClient, admin_user, admin_headers):
    response = await client.delete(f"/api/admin/auth/users/{admin_user.id}", headers=admin_headers)
    assert response.status_code == 400


# ============================================
# Events
# ============================================

@pytest.mark.asyncio
async def test_event_crud(client: AsyncClient, admin_headers):
    created = await client.post("/api/admin/events", json=event_payload(), headers=admin_headers)
    assert created.status_code == 201
    event = created.json()
    assert event["pickup_zip_code"] == "58045000"
    assert event["available"] is True

    updated = await client.put(
        f"/api/admin/events/{event['id']}",
        json={"pricing_type": "fixed", "fixed_price": 30},
        headers=admin_headers,
    )
    assert updated.status_code == 200
    assert updated.json()["fixed_price"] == 30.0

    toggled = await client.patch(f"/api/admin/events/{event['id']}/toggle", headers=admin_headers)
    assert toggled.json()["available"] is False

    listing = await client.get("/api/admin/events", headers=admin_headers)
    assert [(e["id"], e["orders_count"]) for e in listing.json()] == [(event["id"], 0)]

    deleted = await client.delete(f"/api/admin/events/{event['id']}", headers=admin_headers)
    assert deleted.status_code == 200
    missing = await client.get(f"/api/admin/events/{event['id']}", headers=admin_headers)
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_fixed_event_requires_price(client: AsyncClient, admin_headers):
    response = await client.post("/api/admin/events", json=event_payload(pricing_type="fixed"), headers=admin_headers)
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_event_with_orders_cannot_be_deleted(client: AsyncClient, test_order, test_event, admin_headers):
    response = await client.delete(f"/api/admin/events/{test_event.id}", headers=admin_headers)
    assert response.status_code == 409

    listing = await client.get("/api/admin/events", headers=admin_headers)
    assert listing.json()[0]["orders_count"] == 1


# ============================================
# Orders
# ============================================

@pytest.mark.asyncio
async def test_update_order_status(client: AsyncClient, test_order, admin_headers):
    response = await client.patch(
        f"/api/admin/orders/{test_order.id}/status",
        json={"status": STATUS_IN_TRANSIT, "reason": "Saiu para entrega", "send_email": False},
        headers=admin_headers,
    )
    assert response.status_code == 200
    assert response.json()["status"] == STATUS_IN_TRANSIT
    assert response.json()["changed"] is True

    again = await client.patch(
        f"/api/admin/orders/{test_order.id}/status",
        json={"status": STATUS_IN_TRANSIT, "send_email": False},
        headers=admin_headers,
    )
    assert again.json()["changed"] is False

    history = await client.get(f"/api/admin/orders/{test_order.id}/history", headers=admin_headers)
    entries = history.json()
    assert len(entries) == 1
    assert entries[0]["previous_status"] == STATUS_AWAITING_PAYMENT
    assert entries[0]["changed_by"] == "admin"
    assert entries[0]["changed_by_name"] == "admin"
    assert entries[0]["reason"] == "Saiu para entrega"

    async with TestSessionLocal() as session:
        actions = (await session.execute(select(AdminAuditLog.action))).scalars().all()
        assert actions == ["order_status_changed"]


@pytest.mark.asyncio
async def test_update_order_rejects_short_zip(client: AsyncClient, test_order, admin_headers):
    response = await client.put(
        f"/api/admin/orders/{test_order.id}", json={"address": {"zip_code": "123"}}, headers=admin_headers
    )
    assert response.status_code == 400
    assert "CEP inválido" in response.json()["detail"]


@pytest.mark.asyncio
async def test_update_order_status_rejects_unknown_status(client: AsyncClient, test_order, admin_headers):
    response = await client.patch(
        f"/api/admin/orders/{test_order.id}/status", json={"status": "perdido"}, headers=admin_headers
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_bulk_status_update(
    client: AsyncClient, test_event, test_customer, test_address, make_order, admin_headers
):
    first = await make_order(test_event, test_customer, test_address, status=STATUS_CONFIRMED)
    second = await make_order(test_event, test_customer, test_address, status=STATUS_CONFIRMED)

    response = await client.post(
        "/api/admin/orders/bulk-status",
        json={"order_ids": [first.id, second.id, 9999], "status": STATUS_IN_TRANSIT, "send_email": False},
        headers=admin_headers,
    )
    assert response.status_code == 200
    data = response.json()
    assert data["updated"] == 2
    assert [r["success"] for r in data["results"]] == [True, True, False]

    async with TestSessionLocal() as session:
        history = (await session.execute(select(OrderStatusHistory))).scalars().all()
        assert len(history) == 2
        assert {h.bulk_operation_id for h in history} == {data["bulk_operation_id"]}


@pytest.mark.asyncio
async def test_list_orders_filters(
    client: AsyncClient, test_event, test_customer, test_address, make_order, admin_headers
):
    await make_order(test_event, test_customer, test_address)
    confirmed = await make_order(test_event, test_customer, test_address, status=STATUS_CONFIRMED)

    response = await client.get(f"/api/admin/orders?status={STATUS_CONFIRMED}", headers=admin_headers)
    data = response.json()
    assert data["total"] == 1
    assert data["orders"][0]["order_number"] == confirmed.order_number

    response = await client.get("/api/admin/orders?search=maria", headers=admin_headers)
    assert response.json()["total"] == 2


@pytest.mark.asyncio
async def test_stats(client: AsyncClient, test_event, test_customer, test_address, make_order, admin_headers):
    await make_order(test_event, test_customer, test_address)
    await make_order(test_event, test_customer, test_address, status=STATUS_CONFIRMED)
    await make_order(test_event, test_customer, test_address, status=STATUS_CANCELLED)

    response = await client.get("/api/admin/stats", headers=admin_headers)
    assert response.status_code == 200
    stats = response.json()
    assert stats["total_customers"] == 1
    assert stats["total_orders"] == 3
    assert stats["active_events"] == 1
    assert stats["pending_payments"] == 1
    assert stats["orders_by_status"][STATUS_CANCELLED] == 1


# ============================================
# Reports
# ============================================

@pytest.mark.asyncio
async def test_kits_report(
    client: AsyncClient, test_event, test_customer, test_address, make_order, admin_headers
):
    active = await make_order(test_event, test_customer, test_address, status=STATUS_CONFIRMED)
    await make_order(test_event, test_customer, test_address, status=STATUS_CANCELLED)

    response = await client.get(f"/api/admin/reports/kits/{test_event.id}", headers=admin_headers)
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    rows = read_csv(response)
    assert rows[0][:3] == ["Nº Pedido", "Nome do Atleta", "CPF"]
    assert len(rows) == 2
    assert rows[1][0] == active.order_number
    assert rows[1][2] == "123.456.789-09"
    assert rows[1][4] == "[Retirada do Kit] Corrida de São João"
    assert rows[1][5] == "Maria da Silva"

    response = await client.get(
        f"/api/admin/reports/kits/{test_event.id}?include_cancelled=true", headers=admin_headers
    )
    assert len(read_csv(response)) == 3


@pytest.mark.asyncio
async def test_kits_report_unknown_event(client: AsyncClient, admin_headers):
    response = await client.get("/api/admin/reports/kits/9999", headers=admin_headers)
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_orders_report(client: AsyncClient, test_order, admin_headers):
    response = await client.get("/api/admin/reports/orders", headers=admin_headers)
    assert response.status_code == 200
    assert 'filename="pedidos.csv"' in response.headers["content-disposition"]
    rows = read_csv(response)
    assert rows[0][0] == "Nº Pedido"
    assert rows[1][0] == test_order.order_number
    assert rows[1][12] == "12,00"
    assert rows[1][14] == "Aguardando pagamento"


@pytest.mark.asyncio
async def test_report_events(client: AsyncClient, test_order, test_event, admin_headers):
    response = await client.get("/api/admin/reports/events", headers=admin_headers)
    assert [(e["id"], e["orders_count"]) for e in response.json()] == [(test_event.id, 1)]


# ============================================
# CEP zones
# ============================================

@pytest.mark.asyncio
async def test_create_cep_zone(client: AsyncClient, admin_headers):
    response = await client.post("/api/admin/cep-zones", json={
        "name": "Zona Norte",
        "ranges_text": "58010-000...58019-999\n58020000 até 58029999",
        "price": 14.5,
    }, headers=admin_headers)
    assert response.status_code == 201
    data = response.json()
    assert data["cep_ranges"] == [
        {"start": "58010000", "end": "58019999"},
        {"start": "58020000", "end": "58029999"},
    ]
    assert data["price"] == 14.5


@pytest.mark.asyncio
async def test_create_overlapping_cep_zone(client: AsyncClient, cep_zone, admin_headers):
    response = await client.post("/api/admin/cep-zones", json={
        "name": "Sobreposta",
        "ranges_text": "58035000...58045000",
        "price": 10,
    }, headers=admin_headers)
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_create_cep_zone_without_ranges(client: AsyncClient, admin_headers):
    response = await client.post("/api/admin/cep-zones", json={
        "name": "Vazia",
        "ranges_text": "sem faixas",
        "price": 10,
    }, headers=admin_headers)
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_reorder_and_delete_cep_zones(
    client: AsyncClient, test_session: AsyncSession, cep_zone, mock_cache, admin_headers
):
    other = CepZone(
        name="Zona Norte", cep_ranges=[{"start": "58010000", "end": "58019999"}],
        price=14, active=True, priority=2,
    )
    test_session.add(other)
    await test_session.commit()
    mock_cache._cache["cep_zones:active"] = ["stale"]

    response = await client.put(
        "/api/admin/cep-zones/reorder", json={"zone_ids": [other.id, cep_zone.id]}, headers=admin_headers
    )
    assert response.status_code == 200
    assert [(z["id"], z["priority"]) for z in response.json()] == [(other.id, 1), (cep_zone.id, 2)]
    assert "cep_zones:active" not in mock_cache._cache

    deleted = await client.delete(f"/api/admin/cep-zones/{cep_zone.id}", headers=admin_headers)
    assert deleted.status_code == 200

    async with TestSessionLocal() as session:
        zone = await session.get(CepZone, cep_zone.id)
        assert zone is not None
        assert zone.active is False


@pytest.mark.asyncio
async def test_event_zone_prices(client: AsyncClient, test_event, cep_zone, admin_headers):
    response = await client.put(
        f"/api/admin/events/{test_event.id}/cep-zone-prices",
        json={"prices": [{"cep_zone_id": cep_zone.id, "price": 9.9}]},
        headers=admin_headers,
    )
    assert response.status_code == 200

    response = await client.get(f"/api/admin/events/{test_event.id}/cep-zone-prices", headers=admin_headers)
    prices = response.json()
    assert prices == [{
        "cep_zone_id": cep_zone.id,
        "zone_name": "Zona Sul",
        "default_price": 15.0,
        "price": 9.9,
        "has_custom_price": True,
    }]


# ============================================
# Coupons / customers
# ============================================

@pytest.mark.asyncio
async def test_create_coupon(client: AsyncClient, admin_headers):
    payload = {
        "code": "largada5",
        "discount_type": "fixed",
        "discount_value": 5,
        "valid_from": "2026-01-01",
        "valid_until": "2026-12-31",
    }
    response = await client.post("/api/admin/coupons", json=payload, headers=admin_headers)
    assert response.status_code == 201
    assert response.json()["code"] == "LARGADA5"

    duplicate = await client.post("/api/admin/coupons", json=payload, headers=admin_headers)
    assert duplicate.status_code == 409

    listing = await client.get("/api/admin/coupons", headers=admin_headers)
    assert [c["code"] for c in listing.json()] == ["LARGADA5"]


@pytest.mark.asyncio
async def test_search_customers(client: AsyncClient, test_customer, other_customer, test_order, admin_headers):
    response = await client.get("/api/admin/customers?search=529.982", headers=admin_headers)
    data = response.json()
    assert data["total"] == 1
    assert data["customers"][0]["id"] == test_customer.id
    assert data["customers"][0]["orders_count"] == 1

    response = await client.get("/api/admin/customers", headers=admin_headers)
    assert response.json()["total"] == 2


@pytest.mark.asyncio
async def test_customer_with_orders_cannot_be_deleted(client: AsyncClient, test_order, test_customer, admin_headers):
    response = await client.delete(f"/api/admin/customers/{test_customer.id}", headers=admin_headers)
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_admin_creates_customer(client: AsyncClient, admin_headers):
    response = await client.post("/api/admin/customers", json={
        "name": "João Souza",
        "cpf": "111.444.777-35",
        "birth_date": "1985-01-20",
        "email": "joao@example.com",
        "phone": "83988880000",
    }, headers=admin_headers)
    assert response.status_code == 201
    assert response.json()["cpf"] == "11144477735"
