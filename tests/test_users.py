"""Tests for login, admin user management, profiles and startup seeding."""

from conftest import TEST_PASSWORD, claims, make_user
from database import USERS
from seeding import seed_database
from users import pwd_context, verify_password


class TestLogin:
    def test_login(self, client, customer):
        response = client.post("/api/login", json={"username": "alice", "password": TEST_PASSWORD})
        assert response.status_code == 200
        assert response.json()["user"] == {"id": 101, "name": "A", "role": "user", "username": "alice"}

    def test_wrong_password(self, client, customer):
        response = client.post("/api/login", json={"username": "alice", "password": "nope"})
        assert response.status_code == 401
        assert response.json()["message"] == "Invalid username or password."

    def test_unknown_user(self, client, customer):
        response = client.post("/api/login", json={"username": "ghost", "password": TEST_PASSWORD})
        assert response.status_code == 401

    def test_missing_fields(self, client):
        response = client.post("/api/login", json={"username": "alice"})
        assert response.status_code == 400
        assert response.json()["message"] == "Username and password are required."

    def test_disabled_account(self, client, store):
        make_user(store, 140, "eve", "user", "Eve", enabled=False)
        response = client.post("/api/login", json={"username": "eve", "password": TEST_PASSWORD})
        assert response.status_code == 403

    def test_plaintext_password_is_upgraded(self, client, store):
        store.create_document(USERS, {"id": 141, "username": "legacy", "password": "plain", "name": "L", "role": "user"})
        response = client.post("/api/login", json={"username": "legacy", "password": "plain"})
        assert response.status_code == 200
        stored = store.find_one(USERS, {"id": 141})["password"]
        assert stored != "plain"
        assert pwd_context.verify("plain", stored)

    def test_verify_password(self):
        assert verify_password("x", "") == (False, None)
        assert verify_password("x", "y") == (False, None)


class TestUserAdmin:
    def test_list_users_hides_passwords(self, client, admin, customer):
        users = client.get("/api/users", params=claims(admin)).json()
        assert [u["id"] for u in users] == [101, 103]
        assert all("password" not in u for u in users)

    def test_create_user(self, client, admin):
        response = client.post("/api/users", json={
            **claims(admin), "username": "frank", "password": "pw", "name": "Frank",
            "role": "kitchen", "email": "frank@cafe.org",
        })
        assert response.status_code == 201
        user = response.json()["user"]
        assert user["id"] == 104
        assert user["role"] == "kitchen"
        assert "password" not in user

        login = client.post("/api/login", json={"username": "frank", "password": "pw"})
        assert login.status_code == 200

    def test_duplicate_username(self, client, admin, customer):
        response = client.post("/api/users", json={
            **claims(admin), "username": "alice", "password": "pw", "name": "Other", "role": "user",
        })
        assert response.status_code == 409
        assert response.json()["message"] == "Username already exists."

    def test_duplicate_email(self, client, admin, store):
        make_user(store, 150, "gina", "user", "Gina", email="gina@cafe.org")
        response = client.post("/api/users", json={
            **claims(admin), "username": "gina2", "password": "pw", "name": "G2",
            "role": "user", "email": "gina@cafe.org",
        })
        assert response.status_code == 409
        assert response.json()["message"] == "Email already exists."

    def test_invalid_role(self, client, admin):
        response = client.post("/api/users", json={
            **claims(admin), "username": "h", "password": "pw", "name": "H", "role": "chef",
        })
        assert response.status_code == 400
        assert response.json()["message"] == "Invalid or incomplete user data."

    def test_change_role_and_access(self, client, admin, customer, store):
        response = client.put("/api/users/101/role", json={**claims(admin), "role": "kitchen"})
        assert response.status_code == 200
        assert store.find_one(USERS, {"id": 101})["role"] == "kitchen"

        response = client.put("/api/users/101/access", json={**claims(admin), "enabled": "no"})
        assert response.status_code == 400
        assert response.json()["message"] == "Enabled status must be boolean."

        response = client.put("/api/users/101/access", json={**claims(admin), "enabled": False})
        assert response.status_code == 200
        assert store.find_one(USERS, {"id": 101})["enabled"] is False

    def test_role_change_for_unknown_user(self, client, admin):
        response = client.put("/api/users/999/role", json={**claims(admin), "role": "user"})
        assert response.status_code == 404

    def test_delete_user(self, client, admin, customer):
        response = client.request("DELETE", "/api/users/101", json=claims(admin))
        assert response.status_code == 200
        again = client.request("DELETE", "/api/users/101", json=claims(admin))
        assert again.status_code == 404

    def test_non_admin_rejected(self, client, kitchen_user):
        assert client.get("/api/users", params=claims(kitchen_user)).status_code == 403


class TestProfile:
    def test_get_own_profile(self, client, customer):
        response = client.get("/api/user/101", params=claims(customer))
        assert response.status_code == 200
        assert response.json()["username"] == "alice"
        assert "password" not in response.json()

    def test_cannot_read_other_profile(self, client, customer, kitchen_user):
        assert client.get("/api/user/102", params=claims(customer)).status_code == 403

    def test_admin_reads_any_profile(self, client, admin, customer):
        assert client.get("/api/user/101", params=claims(admin)).status_code == 200

    def test_update_profile(self, client, customer):
        response = client.put("/api/user/101", json={**claims(customer), "name": "Alice", "email": "alice@cafe.org"})
        assert response.status_code == 200
        user = response.json()["user"]
        assert user["name"] == "Alice"
        assert user["email"] == "alice@cafe.org"

    def test_email_in_use(self, client, customer, store):
        make_user(store, 160, "ivy", "user", "Ivy", email="ivy@cafe.org")
        response = client.put("/api/user/101", json={**claims(customer), "email": "ivy@cafe.org"})
        assert response.status_code == 409
        assert response.json()["message"] == "Email already in use by another account."

    def test_profile_image(self, client, customer):
        response = client.put("/api/user/101/profile-image", json=claims(customer))
        assert response.status_code == 400

        response = client.put("/api/user/101/profile-image", json={**claims(customer), "avatar": "https://img/av.png"})
        assert response.status_code == 200
        assert response.json()["profileImage"] == "https://img/av.png"

    def test_profile_image_broadcast(self, client, outbox, customer):
        response = client.post("/api/profile-image-update", json={
            **claims(customer), "userName": "A", "profileImage": "https://img/a.png",
        })
        assert response.status_code == 200
        [event] = outbox.events("profile-image-updated")
        assert event.room == "kitchen"
        assert event.data["userId"] == 101
        assert event.data["action"] == "updated"


class TestSeeding:
    def test_seed_is_idempotent(self, store):
        assert seed_database(store) == {"users": True, "menu": True, "locations": True}
        assert seed_database(store) == {"users": False, "menu": False, "locations": False}

        admin = store.find_one(USERS, {"username": "admin"})
        assert admin["id"] == 101
        assert admin["role"] == "admin"
        assert pwd_context.verify("adminpassword", admin["password"])
        assert store.find_one(USERS, {"username": "kitchen"})["id"] == 102

    def test_seed_keeps_existing_menu(self, store):
        store.create_document("menu", {"categories": [{"name": "Custom", "items": []}]})
        seed_database(store)
        assert store.count("menu") == 1
        assert store.find_one("menu")["categories"][0]["name"] == "Custom"
