from fastapi.testclient import TestClient

import main
from auth import verify_password
from database import get_db
from main import app


def test_unhandled_error_is_500_with_message():
    def broken_db():
        raise RuntimeError("database down")

    app.dependency_overrides[get_db] = broken_db
    try:
        client = TestClient(app, raise_server_exceptions=False)
        response = client.post("/api/auth/login", json={"email": "admin@shop.com", "password": "secret"})
    finally:
        app.dependency_overrides.clear()
    assert response.status_code == 500
    assert response.json() == {"detail": "Internal server error", "error": "database down"}


def test_admin_is_seeded_once(database, monkeypatch):
    monkeypatch.setattr(main, "ADMIN_EMAIL", "owner@shop.com")
    monkeypatch.setattr(main, "ADMIN_PASSWORD", "s3cret")
    monkeypatch.setattr(main, "ADMIN_NAME", "Owner")

    main.ensure_admin(database)
    main.ensure_admin(database)

    users = list(database["user"].find({"email": "owner@shop.com"}))
    assert len(users) == 1
    assert users[0]["role"] == "admin"
    assert users[0]["name"] == "Owner"
    assert verify_password("s3cret", users[0]["password"])


def test_admin_seed_keeps_existing_password(database, monkeypatch):
    monkeypatch.setattr(main, "ADMIN_EMAIL", "owner@shop.com")
    monkeypatch.setattr(main, "ADMIN_PASSWORD", "first")
    main.ensure_admin(database)

    monkeypatch.setattr(main, "ADMIN_PASSWORD", "second")
    main.ensure_admin(database)

    user = database["user"].find_one({"email": "owner@shop.com"})
    assert verify_password("first", user["password"])
    assert database["user"].count_documents({}) == 1


def test_no_admin_without_credentials(database, monkeypatch):
    monkeypatch.setattr(main, "ADMIN_EMAIL", None)
    monkeypatch.setattr(main, "ADMIN_PASSWORD", None)
    main.ensure_admin(database)
    assert database["user"].count_documents({}) == 0
