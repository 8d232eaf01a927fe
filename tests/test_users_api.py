from fastapi.testclient import TestClient

from conftest import ADMIN_USERNAME, STAFF_PASSWORD, login


def _headers(csrf):
    return {"X-CSRF-Token": csrf}


def test_create_list_and_statistics(client, admin_csrf, make_user):
    created = make_user("manager1", role="manager")
    assert created["role"] == "manager"
    assert created["isActive"] is True

    listing = client.get("/api/users/?role=manager").json()
    assert listing["count"] == 1
    assert listing["data"][0]["username"] == "manager1"

    stats = client.get("/api/users/statistics").json()["data"]
    assert stats["total"] == 2
    assert stats["byRole"] == {"admin": 1, "manager": 1, "user": 0}


def test_create_rejects_weak_password_and_duplicates(client, admin_csrf, make_user):
    weak = client.post(
        "/api/users/", json={"username": "weakling", "password": "password"}, headers=_headers(admin_csrf)
    )
    assert weak.status_code == 400
    assert weak.json()["code"] == "WEAK_PASSWORD"

    make_user("twin")
    dup = client.post(
        "/api/users/", json={"username": "twin", "password": STAFF_PASSWORD}, headers=_headers(admin_csrf)
    )
    assert dup.json()["code"] == "USERNAME_EXISTS"


def test_last_admin_is_protected(client, admin_csrf):
    me = client.get("/api/users/profile").json()["data"]
    demote = client.put(f"/api/users/{me['id']}", json={"role": "manager"}, headers=_headers(admin_csrf))
    assert demote.status_code == 400
    assert demote.json()["code"] == "LAST_ADMIN"

    delete_self = client.delete(f"/api/users/{me['id']}", headers=_headers(admin_csrf))
    assert delete_self.json()["code"] == "SELF_DELETE"


def test_profile_update(client, admin_csrf):
    resp = client.put(
        "/api/users/profile", json={"fullName": "Head Office", "email": "boss@example.com"}, headers=_headers(admin_csrf)
    )
    assert resp.status_code == 200
    profile = resp.json()["data"]
    assert profile["fullName"] == "Head Office"
    assert profile["email"] == "boss@example.com"
    assert profile["username"] == ADMIN_USERNAME


def test_manager_can_read_but_not_administer(app, client, make_user):
    target = make_user("plainuser", role="user")
    make_user("manager2", role="manager")

    with TestClient(app) as manager:
        csrf = login(manager, "manager2", STAFF_PASSWORD)
        assert manager.get("/api/users/").status_code == 200
        assert manager.get(f"/api/users/{target['id']}").status_code == 200
        assert manager.get("/api/users/statistics").status_code == 403
        resp = manager.delete(f"/api/users/{target['id']}", headers=_headers(csrf))
        assert resp.status_code == 403


def test_deactivation_ends_sessions(app, client, admin_csrf, make_user):
    target = make_user("seller1", role="user")

    with TestClient(app) as seller:
        login(seller, "seller1", STAFF_PASSWORD)
        assert seller.get("/api/users/profile").status_code == 200

        resp = client.put(
            f"/api/users/{target['id']}/status", json={"isActive": False}, headers=_headers(admin_csrf)
        )
        assert resp.status_code == 200
        assert resp.json()["data"]["isActive"] is False
        assert seller.get("/api/users/profile").status_code == 401

    disabled = client.post("/api/auth/login", json={"username": "seller1", "password": STAFF_PASSWORD})
    assert disabled.status_code == 401
    assert disabled.json()["code"] == "ACCOUNT_DISABLED"


def test_admin_password_reset_and_delete(app, client, admin_csrf, make_user, audit):
    target = make_user("seller2", role="user")
    resp = client.post(
        f"/api/users/{target['id']}/change-password",
        json={"newPassword": "Fresh@2024"},
        headers=_headers(admin_csrf),
    )
    assert resp.status_code == 200
    with TestClient(app) as seller:
        login(seller, "seller2", "Fresh@2024")

    assert client.delete(f"/api/users/{target['id']}", headers=_headers(admin_csrf)).status_code == 200
    assert client.get(f"/api/users/{target['id']}").status_code == 404
    actions = [e["action"] for e in audit.entries("USER", target["id"])]
    assert actions == ["DELETE", "UPDATE", "CREATE"]
