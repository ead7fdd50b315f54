"""
Order API tests.

Verifies:
- Actor headers are required (401) and permissions enforced (403)
- Create / patch / item / status round trips through the HTTP layer
- If-Match / expected_version conflicts return 409
- Audit log and document endpoints
"""

from concurrent.futures import Future

import pytest

from conftest import actor_headers
from quotedesk.errors import ExternalServiceError
from quotedesk.services import notification_service
from quotedesk.tasks import TaskHandle


class FailingSender:
    def send(self, to, subject, html):
        raise ExternalServiceError("Mail endpoint returned 503")


class TestAuthentication:

    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/api/orders"),
            ("POST", "/api/orders"),
            ("GET", "/api/orders/1"),
            ("PATCH", "/api/orders/1"),
            ("POST", "/api/orders/1/status"),
            ("GET", "/api/orders/1/audit"),
            ("GET", "/api/permissions"),
        ],
    )
    def test_requires_actor(self, client, setup_permissions, method, path):
        resp = client.open(path, method=method)
        assert resp.status_code == 401, f"{method} {path} returned {resp.status_code}"

    def test_unknown_role_rejected(self, client, setup_permissions):
        resp = client.get("/api/orders", headers={"X-Actor-Id": "x", "X-Actor-Roles": "cashier"})
        assert resp.status_code == 401

    def test_customer_cannot_change_status(self, client, customer, make_order):
        order = make_order()
        resp = client.post(
            f"/api/orders/{order.id}/status",
            json={"status": "processing"},
            headers=actor_headers(customer),
        )
        assert resp.status_code == 403
        assert resp.json["required_permission"] == "orders:edit"


class TestOrderRoutes:

    def test_create_and_get(self, client, admin, product):
        resp = client.post(
            "/api/orders",
            json={
                "customer_email": "cliente@empresa.test",
                "items": [{"product_id": product.id, "quantity": 4, "unit_price_cents": 1000,
                           "selected_variants": {"Cor": "Preto", "Alça": "Dupla"}}],
                "shipping_cost_cents": 1500,
            },
            headers=actor_headers(admin),
        )
        assert resp.status_code == 201
        order = resp.json["order"]
        assert order["total_cents"] == 5500
        assert resp.json["variant_warnings"]

        resp = client.get(f"/api/orders/{order['id']}", headers=actor_headers(admin))
        assert resp.status_code == 200
        assert resp.json["order"]["items"][0]["line_total_cents"] == 4000
        assert resp.json["order"]["allowed_next_statuses"] == ["processing", "cancelled"]

    def test_create_validation_error(self, client, admin):
        resp = client.post("/api/orders", json={"customer_email": "nope"}, headers=actor_headers(admin))
        assert resp.status_code == 400
        assert "error" in resp.json

    def test_get_missing_order(self, client, admin):
        resp = client.get("/api/orders/424242", headers=actor_headers(admin))
        assert resp.status_code == 404

    def test_list_orders(self, client, admin, make_order):
        make_order()
        make_order()
        resp = client.get("/api/orders?limit=1", headers=actor_headers(admin))
        assert resp.status_code == 200
        assert resp.json["total"] == 2
        assert len(resp.json["orders"]) == 1

    def test_customer_sees_only_own_orders(self, client, customer, make_order):
        make_order(customer_email="cliente@empresa.test")
        make_order(customer_email="outro@empresa.test")
        resp = client.get("/api/orders", headers=actor_headers(customer))
        assert resp.json["total"] == 1

    def test_patch_terms(self, client, admin, make_order):
        order = make_order()
        resp = client.patch(
            f"/api/orders/{order.id}",
            json={"delivery_terms": "15 dias úteis"},
            headers=actor_headers(admin),
        )
        assert resp.status_code == 200
        assert resp.json["order"]["delivery_terms"] == "15 dias úteis"
        assert "delivery_terms" in resp.json["changes"]

    def test_item_lifecycle(self, client, admin, make_order):
        order = make_order()
        headers = actor_headers(admin)

        resp = client.post(
            f"/api/orders/{order.id}/items",
            json={"custom_name": "Squeeze", "quantity": 5, "unit_price_cents": 800},
            headers=headers,
        )
        assert resp.status_code == 201
        item_id = resp.json["item"]["id"]
        assert resp.json["order"]["subtotal_cents"] == 12500 + 4000

        resp = client.patch(f"/api/orders/{order.id}/items/{item_id}", json={"quantity": 0}, headers=headers)
        assert resp.status_code == 400

        resp = client.patch(f"/api/orders/{order.id}/items/{item_id}", json={"quantity": 6}, headers=headers)
        assert resp.status_code == 200
        assert resp.json["order"]["subtotal_cents"] == 12500 + 4800

        resp = client.delete(f"/api/orders/{order.id}/items/{item_id}", headers=headers)
        assert resp.status_code == 200
        assert resp.json["order"]["subtotal_cents"] == 12500

    def test_status_change(self, client, admin, make_order, outbox):
        order = make_order()
        resp = client.post(
            f"/api/orders/{order.id}/status",
            json={"status": "processing"},
            headers=actor_headers(admin),
        )
        assert resp.status_code == 200
        assert resp.json["order"]["status"] == "processing"
        assert resp.json["order"]["allowed_next_statuses"] == ["completed", "cancelled"]
        assert len(outbox) == 1

    def test_invalid_transition(self, client, admin, make_order):
        order = make_order()
        resp = client.post(
            f"/api/orders/{order.id}/status",
            json={"status": "completed"},
            headers=actor_headers(admin),
        )
        assert resp.status_code == 400
        assert resp.json["details"]["allowed"] == ["processing", "cancelled"]


class TestConcurrencyHeaders:

    def test_if_match_conflict(self, client, admin, make_order):
        order = make_order()
        headers = actor_headers(admin)
        version = order.version_id

        resp = client.patch(
            f"/api/orders/{order.id}",
            json={"notes": "A"},
            headers={**headers, "If-Match": str(version)},
        )
        assert resp.status_code == 200

        resp = client.patch(
            f"/api/orders/{order.id}",
            json={"notes": "B"},
            headers={**headers, "If-Match": f'"{version}"'},
        )
        assert resp.status_code == 409
        assert resp.json["details"]["expected_version"] == version

    def test_expected_version_in_body(self, client, admin, make_order):
        order = make_order()
        resp = client.post(
            f"/api/orders/{order.id}/status",
            json={"status": "processing", "expected_version": order.version_id + 1},
            headers=actor_headers(admin),
        )
        assert resp.status_code == 409


class TestAuditAndDocuments:

    def test_audit_endpoint(self, client, admin, make_order):
        order = make_order()
        client.patch(f"/api/orders/{order.id}", json={"notes": "x"}, headers=actor_headers(admin))

        resp = client.get(f"/api/orders/{order.id}/audit", headers=actor_headers(admin))

        assert resp.status_code == 200
        entries = resp.json["entries"]
        assert [e["action"] for e in entries] == ["updated", "created"]
        assert entries[0]["formatted_changes"][0]["label"]

    def test_document_generate_and_fetch(self, client, admin, make_order):
        order = make_order()
        headers = actor_headers(admin)

        resp = client.get(f"/api/orders/{order.id}/document", headers=headers)
        assert resp.status_code == 404

        resp = client.post(f"/api/orders/{order.id}/document", headers=headers)
        assert resp.status_code == 201
        assert resp.json["document"]["page_count"] == 1

        resp = client.get(f"/api/orders/{order.id}/document", headers=headers)
        assert resp.status_code == 200
        link = resp.json["link"]

        download = client.get(link.replace("http://quotes.test", ""))
        assert download.status_code == 200
        assert download.data.startswith(b"%PDF")

    def test_send_document(self, client, admin, make_order, outbox):
        order = make_order()
        resp = client.post(
            f"/api/orders/{order.id}/document/send",
            json={"ttl_seconds": 3600},
            headers=actor_headers(admin),
        )
        assert resp.status_code == 200
        assert resp.json["notification"]["success"] is True
        assert len(outbox) == 1

        resp = client.get(f"/api/orders/{order.id}/notifications", headers=actor_headers(admin))
        assert len(resp.json["notifications"]) == 1

    def test_send_document_mail_failure(self, app, client, admin, make_order):
        order = make_order()
        app.extensions["quotedesk.mail"] = FailingSender()

        resp = client.post(f"/api/orders/{order.id}/document/send", json={}, headers=actor_headers(admin))

        assert resp.status_code == 502
        resp = client.get(f"/api/orders/{order.id}/notifications", headers=actor_headers(admin))
        assert [n["success"] for n in resp.json["notifications"]] == [False]

    def test_send_document_timeout(self, app, client, admin, make_order, monkeypatch):
        order = make_order()
        handle = TaskHandle(name="send_quote", future=Future())
        monkeypatch.setattr(notification_service, "send_quote_async", lambda *args, **kwargs: handle)
        monkeypatch.setitem(app.config, "NOTIFY_TIMEOUT_SECONDS", 0.05)

        resp = client.post(f"/api/orders/{order.id}/document/send", json={}, headers=actor_headers(admin))

        assert resp.status_code == 504
        assert handle.cancel_event.is_set()

    def test_bad_download_token(self, client, db_session):
        resp = client.get("/api/quotes/not-a-token")
        assert resp.status_code == 404


class TestPermissionRoutes:

    def test_check(self, client, salesperson):
        resp = client.get("/api/permissions/check?resource=orders&action=edit", headers=actor_headers(salesperson))
        assert resp.status_code == 200
        assert resp.json["allowed"] is True
        assert resp.json["client_access_type"] == "own"

    def test_matrix_requires_permission(self, client, salesperson, admin):
        assert client.get("/api/permissions", headers=actor_headers(salesperson)).status_code == 403
        resp = client.get("/api/permissions", headers=actor_headers(admin))
        assert resp.status_code == 200
        assert "salesperson" in resp.json["roles"]

    def test_admin_can_grant(self, client, admin, customer):
        resp = client.put(
            "/api/permissions",
            json={"role": "customer", "resource": "orders", "action": "edit", "allowed": True},
            headers=actor_headers(admin),
        )
        assert resp.status_code == 200
        resp = client.get("/api/permissions/check?resource=orders&action=edit", headers=actor_headers(customer))
        assert resp.json["allowed"] is True


class TestHealth:

    def test_health_reports_uninitialized_permissions(self, client, db_session):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json["checks"]["permissions"]["status"] == "degraded"

    def test_health_ok(self, client, setup_permissions):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json["checks"]["database"]["status"] == "healthy"
        assert resp.json["checks"]["permissions"]["status"] == "healthy"
