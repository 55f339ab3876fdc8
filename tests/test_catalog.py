"""Каталог, отзывы и профиль пользователя."""


def test_catalog_filters(client, make_product):
    make_product(name="Монстера", category="tropical", is_rare=True)
    make_product(name="Кактус", category="succulents", quantity=0, description="Для подоконника")
    make_product(name="Фикус", category="tropical")

    def names(response):
        return sorted(p["name"] for p in response.json())

    assert names(client.get("/api/products")) == ["Кактус", "Монстера", "Фикус"]
    assert names(client.get("/api/products", params={"category": "tropical"})) == ["Монстера", "Фикус"]
    assert names(client.get("/api/products", params={"in_stock": True})) == ["Монстера", "Фикус"]
    assert names(client.get("/api/products", params={"is_rare": True})) == ["Монстера"]
    assert names(client.get("/api/products", params={"search": "подоконник"})) == ["Кактус"]


def test_product_admin_endpoints(client, make_user, make_product, auth_headers):
    admin = make_user(is_admin=True)
    user = make_user()
    product = make_product()

    denied = client.put(f"/api/products/{product.id}", json={"quantity": 1}, headers=auth_headers(user))
    assert denied.status_code == 403

    updated = client.put(f"/api/products/{product.id}", json={"quantity": 1}, headers=auth_headers(admin))
    assert updated.json()["quantity"] == 1

    assert client.delete(f"/api/products/{product.id}", headers=auth_headers(admin)).status_code == 200
    assert client.get(f"/api/products/{product.id}").status_code == 404


def test_product_photo_upload(client, make_user, auth_headers):
    admin = make_user(is_admin=True)

    response = client.post(
        "/api/products/upload",
        files={"file": ("leaf.jpg", b"\xff\xd8 fake jpeg", "image/jpeg")},
        headers=auth_headers(admin),
    )

    assert response.status_code == 200
    url = response.json()["url"]
    assert url.startswith("/uploads/products/") and url.endswith(".jpg")
    assert client.get(url).content == b"\xff\xd8 fake jpeg"


def test_reviews_are_moderated(client, make_user, auth_headers):
    author = make_user()
    admin = make_user(is_admin=True)

    created = client.post("/api/reviews", json={"rating": 5, "text": "Отличная монстера"}, headers=auth_headers(author))
    assert created.status_code == 201
    review_id = created.json()["id"]

    assert client.get("/api/reviews").json() == []
    assert len(client.get("/api/reviews", headers=auth_headers(admin)).json()) == 1

    client.put(f"/api/reviews/{review_id}/approve", headers=auth_headers(admin))
    assert [r["id"] for r in client.get("/api/reviews").json()] == [review_id]


def test_only_author_or_admin_deletes_review(client, make_user, auth_headers):
    author = make_user()
    stranger = make_user()
    review_id = client.post(
        "/api/reviews", json={"rating": 4, "text": "Хорошо"}, headers=auth_headers(author)
    ).json()["id"]

    assert client.delete(f"/api/reviews/{review_id}", headers=auth_headers(stranger)).status_code == 403
    assert client.delete(f"/api/reviews/{review_id}", headers=auth_headers(author)).status_code == 200


def test_profile_and_password(client, make_user, auth_headers):
    user = make_user(email="anna@example.com")
    headers = auth_headers(user)

    profile = client.put("/api/users/profile", json={"full_name": "Анна Петрова"}, headers=headers)
    assert profile.json()["full_name"] == "Анна Петрова"

    wrong = client.put(
        "/api/users/password", json={"current_password": "nope", "new_password": "newpass1"}, headers=headers
    )
    assert wrong.status_code == 400

    client.put("/api/users/password", json={"current_password": "password123", "new_password": "newpass1"}, headers=headers)
    login = client.post("/api/auth/login", json={"email": "anna@example.com", "password": "newpass1"})
    assert login.status_code == 200


def test_revoked_admin_loses_access_immediately(client, make_user, auth_headers):
    root = make_user(is_admin=True)
    helper = make_user(is_admin=True)

    assert client.get("/api/users", headers=auth_headers(helper)).status_code == 200

    client.put(f"/api/users/{helper.id}/admin", json={"is_admin": False}, headers=auth_headers(root))

    assert client.get("/api/users", headers=auth_headers(helper)).status_code == 403


def test_admin_cannot_demote_self(client, make_user, auth_headers):
    admin = make_user(is_admin=True)

    response = client.put(f"/api/users/{admin.id}/admin", json={"is_admin": False}, headers=auth_headers(admin))

    assert response.status_code == 400


def test_delete_account(client, make_user, auth_headers):
    user = make_user()

    assert client.delete("/api/users/me", headers=auth_headers(user)).status_code == 200
    assert client.get("/api/auth/user", headers=auth_headers(user)).status_code == 401


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
