"""Shared fixtures: a fresh SQLite file per test and a client bound to it."""

import pytest
from fastapi.testclient import TestClient

from goldmarket.core.config import Settings
from goldmarket.db.dal import Database
from goldmarket.db.migrate import apply_migrations
from goldmarket.db.seed import seed_admin, seed_reference_data
from goldmarket.main import create_app
from goldmarket.services.audit import AuditLog
from goldmarket.services.price_store import CURRENCY, GOLD, PriceVersionStore
from goldmarket.services.settings_store import SettingsStore
from goldmarket.services.users import UserStore

ADMIN_USERNAME = "admin"
ADMIN_PASSWORD = "Admin@12345"
STAFF_PASSWORD = "Staff@12345"


@pytest.fixture()
def settings(tmp_path):
    settings = Settings(
        environment="test",
        data_dir=tmp_path,
        db_filename="test.sqlite3",
        bcrypt_rounds=4,
        admin_username=ADMIN_USERNAME,
        admin_password=ADMIN_PASSWORD,
        _env_file=None,
    )
    settings.init_post_load()
    return settings


@pytest.fixture()
def db(settings):
    """Migrated and seeded database without the HTTP layer."""
    apply_migrations(settings.db_path)
    seed_reference_data(settings.db_path)
    seed_admin(settings.db_path, ADMIN_USERNAME, ADMIN_PASSWORD, rounds=4)
    return Database(settings.db_path)


@pytest.fixture()
def admin_id(db):
    return db.fetch_one("SELECT id FROM users WHERE username = ?", (ADMIN_USERNAME,))["id"]


@pytest.fixture()
def audit(db):
    return AuditLog(db)


@pytest.fixture()
def gold_store(db, audit):
    return PriceVersionStore(db, GOLD, audit)


@pytest.fixture()
def currency_store(db, audit):
    return PriceVersionStore(db, CURRENCY, audit)


@pytest.fixture()
def settings_store(db, audit):
    return SettingsStore(db, audit)


@pytest.fixture()
def user_store(db, audit):
    return UserStore(db, audit, bcrypt_rounds=4)


@pytest.fixture()
def app(settings):
    return create_app(settings_override=settings)


@pytest.fixture()
def client(app):
    with TestClient(app) as c:
        yield c


def login(client, username=ADMIN_USERNAME, password=ADMIN_PASSWORD):
    """Log in and return the CSRF token; the client keeps the session cookie."""
    resp = client.post("/api/auth/login", json={"username": username, "password": password})
    assert resp.status_code == 200, resp.text
    return resp.json()["data"]["csrfToken"]


@pytest.fixture()
def admin_csrf(client):
    return login(client)


@pytest.fixture()
def make_user(client, admin_csrf):
    """Create a staff account through the API and return its public record."""

    def _make(username, role="manager", password=STAFF_PASSWORD):
        resp = client.post(
            "/api/users/",
            json={"username": username, "password": password, "role": role},
            headers={"X-CSRF-Token": admin_csrf},
        )
        assert resp.status_code == 201, resp.text
        return resp.json()["data"]

    return _make


def instrument_id(db, table, column, value):
    row = db.fetch_one(f"SELECT id FROM {table} WHERE {column} = ?", (value,))
    return row["id"]


def karat_id(db, karat):
    return instrument_id(db, "gold_types", "karat", karat)


def currency_id(db, code):
    return instrument_id(db, "currencies", "code", code)
