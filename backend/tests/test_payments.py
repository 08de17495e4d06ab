from tasklynk.services.mpesa_service import QueryResult


def _callback(checkout_id, code, desc="The service request is processed successfully.", receipt="QGH7ABC123"):
    callback = {
        "MerchantRequestID": "MR-0001",
        "CheckoutRequestID": checkout_id,
        "ResultCode": code,
        "ResultDesc": desc,
    }
    if code == 0:
        callback["CallbackMetadata"] = {"Item": [
            {"Name": "Amount", "Value": 1000},
            {"Name": "MpesaReceiptNumber", "Value": receipt},
            {"Name": "PhoneNumber", "Value": 254712345678},
        ]}
    return {"Body": {"stkCallback": callback}}


class TestStkPush:
    def _push(self, client, job, buyer):
        r = client.post("/api/mpesa/stkpush", json={"job_id": job["id"], "phone": "0712345678"},
                        headers=buyer.headers)
        assert r.status_code == 200, r.text
        return r.json()

    def test_push_records_pending_payment(self, client, buyer, writer, market, gateway):
        job = market.delivered_job(buyer, writer)
        push = self._push(client, job, buyer)
        assert gateway.pushes == [("254712345678", 1000, f"TaskLynk {job['display_id']}")]

        payments = client.get(f"/api/payments?job_id={job['id']}", headers=buyer.headers).json()
        assert len(payments) == 1
        assert payments[0]["status"] == "pending"
        assert payments[0]["checkout_request_id"] == push["checkout_request_id"]

    def test_gateway_runs_off_the_event_loop(self, client, buyer, writer, market, gateway):
        job = market.delivered_job(buyer, writer)
        push = self._push(client, job, buyer)
        client.post("/api/mpesa/query", json={"checkout_request_id": push["checkout_request_id"]},
                    headers=buyer.headers)
        assert len(gateway.pushes) == 1
        assert len(gateway.queries) == 1
        assert gateway.blocked_loop is False

    def test_push_before_delivery_refused(self, client, buyer, writer, market):
        job = market.in_progress_job(buyer, writer)
        r = client.post("/api/mpesa/stkpush", json={"job_id": job["id"], "phone": "0712345678"},
                        headers=buyer.headers)
        assert r.status_code == 409

    def test_push_for_someone_elses_job(self, client, buyer, writer, make_account, market):
        job = market.delivered_job(buyer, writer)
        other = make_account("client")
        r = client.post("/api/mpesa/stkpush", json={"job_id": job["id"], "phone": "0712345678"},
                        headers=other.headers)
        assert r.status_code == 404

    def test_query_pending_then_success(self, client, admin, buyer, writer, market, gateway):
        job = market.delivered_job(buyer, writer)
        push = self._push(client, job, buyer)
        cid = push["checkout_request_id"]

        r = client.post("/api/mpesa/query", json={"checkout_request_id": cid}, headers=buyer.headers)
        assert r.status_code == 200
        assert r.json()["status"] == "pending"

        gateway.answers[cid] = QueryResult("0", "The service request is processed successfully.", "QGH7ABC123")
        r = client.post("/api/mpesa/query", json={"checkout_request_id": cid}, headers=buyer.headers)
        assert r.json()["status"] == "confirmed"

        job = client.get(f"/api/jobs/{job['id']}", headers=buyer.headers).json()
        assert job["payment_confirmed"] is True
        assert job["status"] == "delivered"

        payment = client.get(f"/api/payments?job_id={job['id']}", headers=buyer.headers).json()[0]
        assert payment["receipt_number"] == "QGH7ABC123"

    def test_query_cancelled_by_user(self, client, buyer, writer, market, gateway):
        job = market.delivered_job(buyer, writer)
        cid = self._push(client, job, buyer)["checkout_request_id"]
        gateway.answers[cid] = QueryResult("1032", "Request cancelled by user")
        r = client.post("/api/mpesa/query", json={"checkout_request_id": cid}, headers=buyer.headers)
        assert r.json()["status"] == "failed"
        job = client.get(f"/api/jobs/{job['id']}", headers=buyer.headers).json()
        assert job["payment_confirmed"] is False

    def test_callback_confirms_payment(self, client, admin, buyer, writer, market):
        job = market.delivered_job(buyer, writer)
        cid = self._push(client, job, buyer)["checkout_request_id"]

        r = client.post("/api/mpesa/callback", json=_callback(cid, 0))
        assert r.status_code == 200
        assert r.json() == {"ResultCode": 0, "ResultDesc": "Success"}

        job = client.get(f"/api/jobs/{job['id']}", headers=buyer.headers).json()
        assert job["payment_confirmed"] is True
        assert job["auto_approve_at"] is not None

    def test_duplicate_callback_is_idempotent(self, client, admin, buyer, writer, market):
        job = market.delivered_job(buyer, writer)
        cid = self._push(client, job, buyer)["checkout_request_id"]
        client.post("/api/mpesa/callback", json=_callback(cid, 0))
        client.post("/api/mpesa/callback", json=_callback(cid, 0))

        freelancer = client.get(f"/api/users/{writer.id}", headers=admin.headers).json()
        assert freelancer["balance"] == 700.0
        invoices = client.get(f"/api/invoices?job_id={job['id']}", headers=admin.headers).json()
        assert len(invoices) == 1

    def test_second_push_success_does_not_pay_twice(self, client, admin, buyer, writer, market):
        job = market.delivered_job(buyer, writer)
        first = self._push(client, job, buyer)["checkout_request_id"]
        second = self._push(client, job, buyer)["checkout_request_id"]
        client.post("/api/mpesa/callback", json=_callback(first, 0))
        client.post("/api/mpesa/callback", json=_callback(second, 0, receipt="QGH7DEF456"))

        payments = {p["checkout_request_id"]: p["status"]
                    for p in client.get(f"/api/payments?job_id={job['id']}", headers=admin.headers).json()}
        assert payments == {first: "confirmed", second: "failed"}
        freelancer = client.get(f"/api/users/{writer.id}", headers=admin.headers).json()
        assert freelancer["balance"] == 700.0

    def test_callback_for_unknown_checkout_acknowledged(self, client):
        r = client.post("/api/mpesa/callback", json=_callback("ws_CO_UNKNOWN", 0))
        assert r.status_code == 200
        assert r.json()["ResultCode"] == 0

    def test_push_after_payment_refused(self, client, buyer, writer, market):
        job = market.paid_job(buyer, writer)
        r = client.post("/api/mpesa/stkpush", json={"job_id": job["id"], "phone": "0712345678"},
                        headers=buyer.headers)
        assert r.status_code == 409
        assert r.json()["code"] == "ALREADY_PAID"


class TestManualPayments:
    def _record(self, client, job, buyer, code="QFT4XYZ123"):
        r = client.post("/api/payments", json={
            "job_id": job["id"], "mpesa_code": code, "phone": "0712345678",
        }, headers=buyer.headers)
        assert r.status_code == 201, r.text
        return r.json()

    def test_manual_payment_confirmed_by_admin(self, client, admin, buyer, writer, market):
        job = market.delivered_job(buyer, writer)
        payment = self._record(client, job, buyer)
        assert payment["status"] == "pending"
        assert payment["mpesa_code"] == "QFT4XYZ123"
        assert payment["amount"] == 1000

        r = client.patch(f"/api/payments/{payment['id']}/confirm", json={"confirmed": True}, headers=admin.headers)
        assert r.status_code == 200
        assert r.json()["status"] == "confirmed"
        assert r.json()["confirmed_by_admin"] is True

        freelancer = client.get(f"/api/users/{writer.id}", headers=admin.headers).json()
        assert freelancer["balance"] == 700.0
        assert freelancer["total_earned"] == 700.0
        customer = client.get(f"/api/users/{buyer.id}", headers=admin.headers).json()
        assert customer["total_spent"] == 1000.0

    def test_second_confirmation_conflicts(self, client, admin, buyer, writer, market):
        job = market.delivered_job(buyer, writer)
        first = self._record(client, job, buyer)
        second = self._record(client, job, buyer, code="QFT4XYZ999")
        assert client.patch(f"/api/payments/{first['id']}/confirm", json={"confirmed": True},
                            headers=admin.headers).status_code == 200

        r = client.patch(f"/api/payments/{second['id']}/confirm", json={"confirmed": True}, headers=admin.headers)
        assert r.status_code == 409
        assert r.json()["code"] == "ALREADY_PAID"

        r = client.patch(f"/api/payments/{first['id']}/confirm", json={"confirmed": True}, headers=admin.headers)
        assert r.status_code == 409
        assert r.json()["code"] == "PAYMENT_RESOLVED"

    def test_admin_rejects_payment(self, client, admin, buyer, writer, market):
        job = market.delivered_job(buyer, writer)
        payment = self._record(client, job, buyer)
        r = client.patch(f"/api/payments/{payment['id']}/confirm",
                         json={"confirmed": False, "reason": "Code not found"}, headers=admin.headers)
        assert r.status_code == 200
        assert r.json()["status"] == "failed"
        assert r.json()["result_desc"] == "Code not found"

    def test_only_admin_confirms(self, client, buyer, writer, market):
        job = market.delivered_job(buyer, writer)
        payment = self._record(client, job, buyer)
        r = client.patch(f"/api/payments/{payment['id']}/confirm", json={"confirmed": True}, headers=buyer.headers)
        assert r.status_code == 403

    def test_freelancer_sees_only_confirmed_payments(self, client, admin, buyer, writer, market):
        job = market.delivered_job(buyer, writer)
        self._record(client, job, buyer)
        assert client.get("/api/payments", headers=writer.headers).json() == []


class TestInvoices:
    def test_invoice_issued_on_confirmation(self, client, admin, buyer, writer, market):
        job = market.paid_job(buyer, writer)
        invoices = client.get(f"/api/invoices?job_id={job['id']}", headers=admin.headers).json()
        assert len(invoices) == 1
        inv = invoices[0]
        assert inv["invoice_number"].startswith("INV-")
        assert inv["invoice_number"].endswith("-00001")
        assert inv["amount"] == 1000
        assert inv["freelancer_amount"] == 700.0
        assert inv["admin_commission"] == 300.0
        assert inv["is_paid"] is True

    def test_client_never_sees_split(self, client, buyer, writer, market):
        job = market.paid_job(buyer, writer)
        inv = client.get(f"/api/invoices?job_id={job['id']}", headers=buyer.headers).json()[0]
        assert inv["amount"] == 1000
        assert inv["freelancer_amount"] is None
        assert inv["admin_commission"] is None

    def test_freelancer_sees_own_amount_only(self, client, buyer, writer, market):
        job = market.paid_job(buyer, writer)
        inv = client.get(f"/api/invoices?job_id={job['id']}", headers=writer.headers).json()[0]
        assert inv["freelancer_amount"] == 700.0
        assert inv["admin_commission"] is None

    def test_invoice_pdf(self, client, buyer, writer, market):
        job = market.paid_job(buyer, writer)
        inv = client.get(f"/api/invoices?job_id={job['id']}", headers=buyer.headers).json()[0]
        r = client.get(f"/api/invoices/{inv['id']}/pdf", headers=buyer.headers)
        assert r.status_code == 200
        assert r.headers["content-type"] == "application/pdf"
        assert r.content.startswith(b"%PDF")

    def test_other_client_cannot_fetch_invoice(self, client, buyer, writer, make_account, market):
        job = market.paid_job(buyer, writer)
        inv = client.get(f"/api/invoices?job_id={job['id']}", headers=buyer.headers).json()[0]
        other = make_account("client")
        assert client.get(f"/api/invoices/{inv['id']}/pdf", headers=other.headers).status_code == 404
