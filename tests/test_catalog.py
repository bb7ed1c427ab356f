import pytest


@pytest.mark.parametrize("path,key", [
    ("/api/brands", "brands"),
    ("/api/categories", "categories"),
    ("/api/payment-methods", "methods"),
])
def test_duplicate_name_rejected(client, database, admin_headers, path, key):
    first = client.post(path, json={"name": "Acme", "description": "first"}, headers=admin_headers)
    assert first.status_code == 201
    assert first.json()["name"] == "Acme"

    second = client.post(path, json={"name": "Acme"}, headers=admin_headers)
    assert second.status_code == 400

    listing = client.get(path, headers=admin_headers).json()
    assert listing["total"] == 1
    assert len(listing[key]) == 1


def test_name_match_is_exact(client, admin_headers):
    client.post("/api/brands", json={"name": "Acme"}, headers=admin_headers)
    assert client.post("/api/brands", json={"name": "acme"}, headers=admin_headers).status_code == 201


def test_missing_name_is_400(client, admin_headers):
    assert client.post("/api/categories", json={"description": "x"}, headers=admin_headers).status_code == 400


def test_list_filters_case_insensitive_substring(client, admin_headers):
    for name in ("Samsung", "Sony", "Apple"):
        client.post("/api/brands", json={"name": name}, headers=admin_headers)
    body = client.get("/api/brands", params={"name": "s"}, headers=admin_headers).json()
    assert body["total"] == 2
    assert {b["name"] for b in body["brands"]} == {"Samsung", "Sony"}


def test_regex_characters_are_literal(client, admin_headers):
    client.post("/api/brands", json={"name": "A+B"}, headers=admin_headers)
    client.post("/api/brands", json={"name": "AAB"}, headers=admin_headers)
    body = client.get("/api/brands", params={"name": "a+"}, headers=admin_headers).json()
    assert [b["name"] for b in body["brands"]] == ["A+B"]


def test_payment_method_description_filter(client, admin_headers):
    client.post("/api/payment-methods", json={"name": "COD", "description": "Cash on delivery"}, headers=admin_headers)
    client.post("/api/payment-methods", json={"name": "Card", "description": "Visa or Master"}, headers=admin_headers)
    body = client.get("/api/payment-methods", params={"description": "cash"}, headers=admin_headers).json()
    assert [m["name"] for m in body["methods"]] == ["COD"]


def test_update_merges_fields(client, admin_headers):
    created = client.post("/api/categories", json={"name": "Laptops", "description": "old"}, headers=admin_headers).json()
    response = client.put(f"/api/categories/{created['id']}", json={"description": "new"}, headers=admin_headers)
    assert response.status_code == 200
    assert response.json()["name"] == "Laptops"
    assert response.json()["description"] == "new"


def test_rename_onto_existing_name_rejected(client, admin_headers):
    client.post("/api/brands", json={"name": "Acme"}, headers=admin_headers)
    other = client.post("/api/brands", json={"name": "Globex"}, headers=admin_headers).json()
    response = client.put(f"/api/brands/{other['id']}", json={"name": "Acme"}, headers=admin_headers)
    assert response.status_code == 400


def test_rename_does_not_touch_products(client, database, admin_headers):
    from conftest import make_product

    brand = client.post("/api/brands", json={"name": "Acme"}, headers=admin_headers).json()
    product = make_product(database, brand="Acme")
    client.put(f"/api/brands/{brand['id']}", json={"name": "Acme Corp"}, headers=admin_headers)
    assert database["product"].find_one({"_id": product["_id"]})["brandName"] == "Acme"


def test_get_update_delete_unknown_id(client, admin_headers):
    missing = "64b7f0c2a1b2c3d4e5f60718"
    assert client.get(f"/api/brands/{missing}", headers=admin_headers).status_code == 404
    assert client.put(f"/api/brands/{missing}", json={"name": "X"}, headers=admin_headers).status_code == 404
    assert client.delete(f"/api/brands/{missing}", headers=admin_headers).status_code == 404


def test_malformed_id_is_400(client, admin_headers):
    assert client.delete("/api/brands/not-an-id", headers=admin_headers).status_code == 400


def test_delete(client, admin_headers):
    created = client.post("/api/payment-methods", json={"name": "COD"}, headers=admin_headers).json()
    assert client.delete(f"/api/payment-methods/{created['id']}", headers=admin_headers).status_code == 200
    assert client.get(f"/api/payment-methods/{created['id']}", headers=admin_headers).status_code == 404
