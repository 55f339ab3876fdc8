from datetime import timedelta
from decimal import Decimal

import pytest

from plantshop.database.tables import PromoCode, utcnow
from plantshop.services.promo_codes import PromoCodeService, calculate_discount
from plantshop.utils.exceptions import NotFoundError, PromoCodeError


@pytest.mark.parametrize("discount_type, value, subtotal, expected", [
    ("percentage", 10, "2555", "256"),
    ("percentage", 15, "1000", "150"),
    ("percentage", 150, "1000", "1000"),
    ("fixed", 300, "1000", "300"),
    ("fixed", 5000, "3000", "3000"),
    ("fixed", 300, "0", "0"),
])
def test_calculate_discount(discount_type, value, subtotal, expected):
    assert calculate_discount(discount_type, value, Decimal(subtotal)) == Decimal(expected)


@pytest.fixture
def spring(db):
    row = PromoCode(code="SPRING10", discount_type="percentage", discount_value=Decimal("10"),
                    min_order_amount=Decimal("1000"), description="Весенняя скидка")
    db.add(row)
    db.commit()
    return row


def test_check_is_case_insensitive(db, spring):
    promo, discount = PromoCodeService(db).check(" spring10 ", Decimal("2000"))
    assert promo.id == spring.id
    assert discount == Decimal("200")


def test_minimum_order_amount(db, spring):
    with pytest.raises(PromoCodeError):
        PromoCodeService(db).check("SPRING10", Decimal("999"))


@pytest.mark.parametrize("fields", [
    {"is_active": False},
    {"start_date": utcnow() + timedelta(days=1)},
    {"end_date": utcnow() - timedelta(days=1)},
    {"max_uses": 3, "current_uses": 3},
])
def test_unusable_codes_are_not_found(db, fields):
    db.add(PromoCode(code="OFF", discount_type="fixed", discount_value=Decimal("100"), **fields))
    db.commit()

    with pytest.raises(NotFoundError):
        PromoCodeService(db).check("OFF", Decimal("1000"))


def test_validate_endpoint(client, spring):
    response = client.post("/api/promo-codes/validate", json={"code": "spring10", "cart_total": 3000})

    assert response.status_code == 200
    body = response.json()
    assert body["valid"] is True
    assert body["code"] == "SPRING10"
    assert Decimal(body["discount"]) == Decimal("300")
    assert Decimal(body["final_amount"]) == Decimal("2700")
    assert body["message"] == "Весенняя скидка"


def test_validate_unknown_code(client):
    response = client.post("/api/promo-codes/validate", json={"code": "NOPE", "cart_total": 3000})

    assert response.status_code == 404
    assert response.json()["code"] == "PROMO_CODE_NOT_FOUND"


def test_admin_crud(client, db, make_user, auth_headers):
    admin = make_user(is_admin=True)
    headers = auth_headers(admin)

    created = client.post(
        "/api/promo-codes",
        json={"code": "summer", "discount_type": "fixed", "discount_value": 250, "max_uses": 10},
        headers=headers,
    )
    assert created.status_code == 201
    promo_id = created.json()["id"]
    assert created.json()["code"] == "SUMMER"

    duplicate = client.post(
        "/api/promo-codes",
        json={"code": "SUMMER", "discount_type": "fixed", "discount_value": 100},
        headers=headers,
    )
    assert duplicate.status_code == 400

    updated = client.put(f"/api/promo-codes/{promo_id}", json={"is_active": False}, headers=headers)
    assert updated.json()["is_active"] is False

    assert [p["code"] for p in client.get("/api/promo-codes", headers=headers).json()] == ["SUMMER"]

    assert client.delete(f"/api/promo-codes/{promo_id}", headers=headers).status_code == 200
    assert client.get("/api/promo-codes", headers=headers).json() == []


def test_admin_crud_requires_admin(client, make_user, auth_headers):
    user = make_user()
    response = client.get("/api/promo-codes", headers=auth_headers(user))
    assert response.status_code == 403
