class TestMessages:
    def _post(self, client, job, sender, content="Hello", message_type="text"):
        return client.post(f"/api/jobs/{job['id']}/messages", json={
            "message_type": message_type, "content": content,
        }, headers=sender.headers)

    def test_text_is_visible_immediately(self, client, buyer, writer, market):
        job = market.in_progress_job(buyer, writer)
        r = self._post(client, job, writer, "Which citation style?")
        assert r.status_code == 201
        assert r.json()["admin_approved"] is True

        msgs = client.get(f"/api/jobs/{job['id']}/messages", headers=buyer.headers).json()
        assert [m["content"] for m in msgs] == ["Which citation style?"]

    def test_link_waits_for_approval(self, client, admin, buyer, writer, market):
        job = market.in_progress_job(buyer, writer)
        r = self._post(client, job, writer, "https://drive.example.com/x", "link")
        assert r.json()["admin_approved"] is False
        msg_id = r.json()["id"]

        assert client.get(f"/api/jobs/{job['id']}/messages", headers=buyer.headers).json() == []
        # The sender still sees their own link
        assert len(client.get(f"/api/jobs/{job['id']}/messages", headers=writer.headers).json()) == 1

        pending = client.get("/api/messages/pending", headers=admin.headers).json()
        assert [m["id"] for m in pending] == [msg_id]

        r = client.patch(f"/api/messages/{msg_id}/approve", headers=admin.headers)
        assert r.status_code == 200
        assert r.json()["admin_approved"] is True
        assert len(client.get(f"/api/jobs/{job['id']}/messages", headers=buyer.headers).json()) == 1

    def test_approve_twice_conflicts(self, client, admin, buyer, writer, market):
        job = market.in_progress_job(buyer, writer)
        msg_id = self._post(client, job, writer, "https://drive.example.com/x", "link").json()["id"]
        client.patch(f"/api/messages/{msg_id}/approve", headers=admin.headers)
        assert client.patch(f"/api/messages/{msg_id}/approve", headers=admin.headers).status_code == 409

    def test_admin_links_need_no_approval(self, client, admin, buyer, writer, market):
        job = market.in_progress_job(buyer, writer)
        r = self._post(client, job, admin, "https://drive.example.com/brief", "link")
        assert r.json()["admin_approved"] is True

    def test_outsiders_cannot_post(self, client, buyer, writer, make_account, market):
        job = market.in_progress_job(buyer, writer)
        outsider = make_account("freelancer")
        assert self._post(client, job, outsider).status_code == 403
        assert client.get(f"/api/jobs/{job['id']}/messages", headers=outsider.headers).status_code == 403

    def test_empty_message_rejected(self, client, buyer, market):
        job = market.create_job(buyer)
        assert self._post(client, job, buyer, "   ").status_code == 400

    def test_invalid_type_rejected(self, client, buyer, market):
        job = market.create_job(buyer)
        assert self._post(client, job, buyer, "hi", "voice").status_code == 400

    def test_counterparty_notified(self, client, buyer, writer, market):
        job = market.in_progress_job(buyer, writer)
        self._post(client, job, buyer, "Any update?")
        notes = client.get("/api/notifications?unread=true", headers=writer.headers).json()
        assert any(n["type"] == "new_message" for n in notes)


class TestNotifications:
    def test_mark_read_and_read_all(self, client, admin, buyer, market):
        market.approved_job(buyer)
        notes = client.get("/api/notifications?unread=true", headers=buyer.headers).json()
        assert notes

        r = client.patch(f"/api/notifications/{notes[0]['id']}/read", headers=buyer.headers)
        assert r.status_code == 200
        assert r.json()["read"] is True

        r = client.patch("/api/notifications/read-all", headers=buyer.headers)
        assert r.status_code == 200
        assert client.get("/api/notifications?unread=true", headers=buyer.headers).json() == []

    def test_cannot_read_someone_elses(self, client, admin, buyer, writer, market):
        market.approved_job(buyer)
        note = client.get("/api/notifications", headers=buyer.headers).json()[0]
        r = client.patch(f"/api/notifications/{note['id']}/read", headers=writer.headers)
        assert r.status_code == 404


class TestAnalytics:
    def test_client_stats(self, client, buyer, market):
        market.create_job(buyer)
        market.approved_job(buyer)
        r = client.get("/api/stats", headers=buyer.headers)
        assert r.status_code == 200
        assert r.json()["by_status"] == {"pending": 1, "approved": 1}

    def test_freelancer_stats(self, client, buyer, writer, market):
        market.approved_job(buyer)
        data = client.get("/api/stats", headers=writer.headers).json()
        assert data["open_jobs"] == 1
        assert data["badge"] == "bronze"

    def test_admin_analytics(self, client, admin, buyer, writer, market):
        market.paid_job(buyer, writer)
        market.create_job(buyer)
        r = client.get("/api/admin/analytics", headers=admin.headers)
        assert r.status_code == 200
        data = r.json()
        assert data["total_jobs"] == 2
        assert data["revenue"] == 1000.0
        assert data["commission"] == 300.0
        assert data["freelancer_payouts"] == 700.0
        assert data["top_freelancers"][0]["id"] == writer.id

    def test_admin_analytics_closed_to_clients(self, client, buyer):
        assert client.get("/api/admin/analytics", headers=buyer.headers).status_code == 403
