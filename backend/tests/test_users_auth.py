from sqlalchemy import text

from tasklynk.database import init_db

PASSWORD = "correct-horse-42"


class TestRegistration:
    def test_first_admin_is_bootstrapped(self, client, register):
        admin = register("admin")
        assert admin["approved"] is True
        assert admin["display_id"] == "ADMN#0001"

    def test_second_admin_rejected(self, client, register):
        register("admin")
        r = client.post("/api/auth/register", json={
            "email": "other-admin@example.com", "password": PASSWORD,
            "name": "Other", "phone": "0712345678", "role": "admin",
        })
        assert r.status_code == 403

    def test_client_starts_unapproved(self, client, register):
        user = register("client")
        assert user["approved"] is False
        assert user["role"] == "client"
        assert user["client_tier"] == "basic"
        assert user["display_id"] == "CLT#0000001"

    def test_freelancer_display_id_and_badge(self, client, register):
        user = register("freelancer")
        assert user["display_id"] == "FRL#00000001"
        assert user["freelancer_badge"] == "bronze"

    def test_phone_normalized(self, client, register):
        user = register("client", phone="+254 712-345-678")
        assert user["phone"] == "254712345678"

    def test_invalid_phone(self, client):
        r = client.post("/api/auth/register", json={
            "email": "x@example.com", "password": PASSWORD, "name": "X", "phone": "12345",
        })
        assert r.status_code == 400

    def test_duplicate_email(self, client, register):
        register("client", email="dup@example.com")
        r = client.post("/api/auth/register", json={
            "email": "DUP@example.com", "password": PASSWORD, "name": "Dup", "phone": "0712345678",
        })
        assert r.status_code == 409

    def test_short_password(self, client):
        r = client.post("/api/auth/register", json={
            "email": "short@example.com", "password": "abc", "name": "Short", "phone": "0712345678",
        })
        assert r.status_code == 400

    def test_admins_notified_of_registration(self, client, admin, register):
        register("freelancer")
        r = client.get("/api/notifications", headers=admin.headers)
        assert any(n["type"] == "user_registered" for n in r.json())


class TestDisplayIds:
    def test_ids_not_reused_after_removal(self, client, admin, register):
        first = register("client")
        second = register("client")
        assert second["display_id"] == "CLT#0000002"
        r = client.delete(f"/api/users/{first['id']}/remove", headers=admin.headers)
        assert r.status_code == 200
        third = register("client")
        assert third["display_id"] == "CLT#0000003"
        assert register("client")["display_id"] == "CLT#0000004"

    def test_roles_count_separately(self, client, register):
        register("client")
        assert register("freelancer")["display_id"] == "FRL#00000001"
        assert register("account_owner")["display_id"] == "CLT#0000002"

    def test_counters_catch_up_with_existing_rows(self, client, register, test_db, tmp_data):
        register("client")
        db = test_db()
        db.execute(text("UPDATE users SET display_id = 'CLT#0000041'"))
        db.execute(text("DELETE FROM id_counters"))
        db.commit()
        db.close()
        init_db(tmp_data / "db.sqlite")
        assert register("client")["display_id"] == "CLT#0000042"


class TestLogin:
    def test_login_and_me(self, client, register, login):
        user = register("client")
        headers = login(user["email"])
        r = client.get("/api/auth/me", headers=headers)
        assert r.status_code == 200
        assert r.json()["id"] == user["id"]

    def test_wrong_password(self, client, register):
        user = register("client")
        r = client.post("/api/auth/login", json={"email": user["email"], "password": "nope-nope"})
        assert r.status_code == 401

    def test_throttled_after_five_failures(self, client, register):
        user = register("client")
        for _ in range(5):
            r = client.post("/api/auth/login", json={"email": user["email"], "password": "bad-password"})
            assert r.status_code == 401
        r = client.post("/api/auth/login", json={"email": user["email"], "password": PASSWORD})
        assert r.status_code == 429
        assert r.json()["detail"]["retry_after_seconds"] > 0

    def test_logout_revokes_token(self, client, register, login):
        user = register("client")
        headers = login(user["email"])
        assert client.post("/api/auth/logout", headers=headers).status_code == 200
        assert client.get("/api/auth/me", headers=headers).status_code == 401

    def test_missing_bearer(self, client):
        r = client.get("/api/auth/me", headers={"Authorization": "Token abc"})
        assert r.status_code == 401


class TestAccountModeration:
    def test_unapproved_client_cannot_post_jobs(self, client, register, login):
        user = register("client")
        headers = login(user["email"])
        r = client.post("/api/jobs", json={
            "title": "T", "instructions": "I", "service_type": "essay", "quantity": 1,
            "deadline": "2099-01-01T00:00:00Z",
        }, headers=headers)
        assert r.status_code == 403
        assert r.json()["code"] == "ACCOUNT_NOT_APPROVED"

    def test_rejected_user_cannot_sign_in(self, client, admin, register):
        user = register("freelancer")
        r = client.post(f"/api/users/{user['id']}/reject", json={"reason": "Incomplete profile"},
                        headers=admin.headers)
        assert r.status_code == 200
        r = client.post("/api/auth/login", json={"email": user["email"], "password": PASSWORD})
        assert r.status_code == 403
        assert r.json()["code"] == "ACCOUNT_REJECTED"

    def test_suspension_blocks_sign_in_and_revokes_sessions(self, client, admin, buyer):
        r = client.patch(f"/api/users/{buyer.id}/suspend", json={"duration_days": 3, "reason": "Chargeback"},
                         headers=admin.headers)
        assert r.status_code == 200
        assert r.json()["status"] == "suspended"
        assert r.json()["suspended_until"] is not None

        assert client.get("/api/auth/me", headers=buyer.headers).status_code == 401
        r = client.post("/api/auth/login", json={"email": buyer.user["email"], "password": PASSWORD})
        assert r.status_code == 403
        assert r.json()["code"] == "ACCOUNT_SUSPENDED"

    def test_unsuspend(self, client, admin, buyer, login):
        client.patch(f"/api/users/{buyer.id}/suspend", json={"duration_days": 1, "reason": "Spam"},
                     headers=admin.headers)
        r = client.patch(f"/api/users/{buyer.id}/unsuspend", headers=admin.headers)
        assert r.status_code == 200
        assert r.json()["status"] == "active"
        login(buyer.user["email"])

    def test_suspend_requires_positive_duration(self, client, admin, buyer):
        r = client.patch(f"/api/users/{buyer.id}/suspend", json={"duration_days": 0, "reason": "x"},
                         headers=admin.headers)
        assert r.status_code == 422

    def test_blacklist(self, client, admin, writer):
        r = client.patch(f"/api/users/{writer.id}/blacklist", json={"reason": "Plagiarism"},
                         headers=admin.headers)
        assert r.status_code == 200
        r = client.post("/api/auth/login", json={"email": writer.user["email"], "password": PASSWORD})
        assert r.status_code == 403
        assert r.json()["code"] == "ACCOUNT_BLACKLISTED"

    def test_remove_user_without_history(self, client, admin, register):
        user = register("client")
        r = client.delete(f"/api/users/{user['id']}/remove", headers=admin.headers)
        assert r.status_code == 200
        assert client.get(f"/api/users/{user['id']}", headers=admin.headers).status_code == 404

    def test_remove_user_with_orders_refused(self, client, admin, buyer, market):
        market.create_job(buyer)
        r = client.delete(f"/api/users/{buyer.id}/remove", headers=admin.headers)
        assert r.status_code == 409

    def test_non_admin_cannot_list_users(self, client, buyer):
        assert client.get("/api/users", headers=buyer.headers).status_code == 403


class TestProfiles:
    def test_priority_hidden_from_client(self, client, admin, buyer):
        r = client.post(f"/api/users/{buyer.id}/priority", json={"priority": "vip"}, headers=admin.headers)
        assert r.status_code == 200
        assert r.json()["client_priority"] == "vip"

        r = client.get("/api/auth/me", headers=buyer.headers)
        assert r.json()["client_priority"] is None

    def test_invalid_priority(self, client, admin, buyer):
        r = client.post(f"/api/users/{buyer.id}/priority", json={"priority": "gold"}, headers=admin.headers)
        assert r.status_code == 400

    def test_badge_only_for_freelancers(self, client, admin, buyer, writer):
        r = client.post(f"/api/users/{writer.id}/badge", json={"badge": "gold"}, headers=admin.headers)
        assert r.status_code == 200
        assert r.json()["freelancer_badge"] == "gold"
        r = client.post(f"/api/users/{buyer.id}/badge", json={"badge": "gold"}, headers=admin.headers)
        assert r.status_code == 400

    def test_update_own_profile(self, client, buyer):
        r = client.patch(f"/api/users/{buyer.id}", json={"name": "New Name", "phone": "0799111222"},
                         headers=buyer.headers)
        assert r.status_code == 200
        assert r.json()["name"] == "New Name"
        assert r.json()["phone"] == "254799111222"

    def test_cannot_update_someone_else(self, client, buyer, writer):
        r = client.patch(f"/api/users/{writer.id}", json={"name": "Hacked"}, headers=buyer.headers)
        assert r.status_code == 403

    def test_profile_picture(self, client, buyer, tmp_data):
        r = client.post(
            f"/api/users/{buyer.id}/profile-picture",
            files={"file": ("me.png", b"\x89PNG\r\n\x1a\nfake", "image/png")},
            headers=buyer.headers,
        )
        assert r.status_code == 200
        path = r.json()["profile_picture_path"]
        assert path.startswith("avatars/")
        assert (tmp_data / path).exists()

    def test_profile_picture_rejects_non_images(self, client, buyer):
        r = client.post(
            f"/api/users/{buyer.id}/profile-picture",
            files={"file": ("notes.txt", b"hello", "text/plain")},
            headers=buyer.headers,
        )
        assert r.status_code == 400

    def test_summary(self, client, buyer, market):
        market.create_job(buyer)
        r = client.get(f"/api/users/{buyer.id}/summary", headers=buyer.headers)
        assert r.status_code == 200
        assert r.json()["jobs_by_status"] == {"pending": 1}
        assert r.json()["total_jobs"] == 1
