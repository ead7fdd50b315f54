"""
Draft order (cart) tests.

Verifies:
- Same product + same variant selection merges quantities
- Items are validated like order items
- Submitting creates a pending order, deletes the draft and notifies the admin
"""

import pytest
from sqlalchemy.exc import IntegrityError

from conftest import actor_headers
from quotedesk.errors import NotFoundError, PersistenceError, ValidationError
from quotedesk.models import DraftOrder, Order
from quotedesk.services import draft_service


class TestDraftItems:

    def test_same_selection_merges(self, db_session, product):
        item = {"product_id": product.id, "quantity": 5, "unit_price_cents": 1250,
                "selected_variants": {"Cor": "Azul"}}
        draft_service.put_draft_item("sess-1", item)
        draft, _ = draft_service.put_draft_item("sess-1", dict(item, quantity=3))

        assert len(draft.items) == 1
        assert draft.items[0]["quantity"] == 8
        assert draft.to_dict()["subtotal_cents"] == 8 * 1250

    def test_different_selection_is_new_line(self, db_session, product):
        base = {"product_id": product.id, "quantity": 1, "unit_price_cents": 1250}
        draft_service.put_draft_item("sess-1", dict(base, selected_variants={"Cor": "Azul"}))
        draft, _ = draft_service.put_draft_item("sess-1", dict(base, selected_variants={"Cor": "Preto"}))
        assert len(draft.items) == 2

    def test_unknown_variant_warns(self, db_session, product):
        _, warnings = draft_service.put_draft_item(
            "sess-1",
            {"product_id": product.id, "quantity": 1, "unit_price_cents": 1250,
             "selected_variants": {"Gravação": "Nome"}},
        )
        assert len(warnings) == 1
        assert "Gravação" in warnings[0]

    def test_invalid_item_rejected(self, db_session, product):
        with pytest.raises(ValidationError):
            draft_service.put_draft_item("sess-1", {"product_id": product.id, "quantity": 0, "unit_price_cents": 1})
        with pytest.raises(ValidationError):
            draft_service.put_draft_item("sess-1", {"product_id": 9999, "quantity": 1, "unit_price_cents": 1})

    def test_remove_by_index(self, db_session, product, plain_product):
        draft_service.put_draft_item("sess-1", {"product_id": product.id, "quantity": 1, "unit_price_cents": 1250})
        draft_service.put_draft_item("sess-1", {"product_id": plain_product.id, "quantity": 2, "unit_price_cents": 300})

        draft = draft_service.remove_draft_item("sess-1", 0)

        assert [i["product_id"] for i in draft.items] == [plain_product.id]
        with pytest.raises(NotFoundError):
            draft_service.remove_draft_item("sess-1", 5)

    def test_session_key_required(self, db_session):
        with pytest.raises(ValidationError):
            draft_service.get_or_create_draft("  ")


class TestSubmit:

    def test_submit_creates_order(self, db_session, customer, product, outbox):
        draft_service.put_draft_item(
            "sess-1",
            {"product_id": product.id, "quantity": 4, "unit_price_cents": 1250,
             "selected_variants": {"Tamanho": "M"}},
        )
        draft_service.put_draft_item("sess-1", {"custom_name": "Chaveiro", "quantity": 10, "unit_price_cents": 150})
        draft_service.update_draft_details("sess-1", {"notes": "Entrega urgente", "contact_preference": "whatsapp"})

        result = draft_service.submit_draft("sess-1", None, customer)

        order = result.order
        assert order.status == "pending"
        assert order.customer_email == "cliente@empresa.test"
        assert order.notes == "Entrega urgente"
        assert order.contact_preference == "whatsapp"
        assert order.subtotal_cents == 4 * 1250 + 10 * 150
        assert db_session.query(DraftOrder).filter_by(session_key="sess-1").count() == 0

        # Admin new-order notice
        assert outbox[-1].to == "vendas@cronos.test"
        assert order.order_number in outbox[-1].subject

    def test_failed_checkout_keeps_draft_and_creates_no_order(self, db_session, customer, product, monkeypatch):
        draft_service.put_draft_item("sess-1", {"product_id": product.id, "quantity": 2, "unit_price_cents": 1250})

        def _fail(query):
            raise IntegrityError("DELETE FROM draft_orders", {}, Exception("constraint"))

        monkeypatch.setattr(draft_service, "lock_for_update", _fail)
        with pytest.raises(PersistenceError):
            draft_service.submit_draft("sess-1", None, customer)

        assert db_session.query(Order).count() == 0
        assert draft_service.get_draft("sess-1") is not None

        # Retrying the same checkout yields exactly one order
        monkeypatch.undo()
        draft_service.submit_draft("sess-1", None, customer)
        assert db_session.query(Order).count() == 1
        assert draft_service.get_draft("sess-1") is None

    def test_empty_draft_rejected(self, db_session, customer):
        draft_service.get_or_create_draft("sess-empty")
        with pytest.raises(ValidationError):
            draft_service.submit_draft("sess-empty", None, customer)
        assert db_session.query(Order).count() == 0

    def test_missing_draft_rejected(self, db_session, customer):
        with pytest.raises(ValidationError):
            draft_service.submit_draft("nope", None, customer)


class TestDraftRoutes:

    def test_cart_flow(self, client, customer, product):
        resp = client.get("/api/drafts/sess-api")
        assert resp.status_code == 200
        assert resp.json["draft"]["items"] == []

        resp = client.post(
            "/api/drafts/sess-api/items",
            json={"product_id": product.id, "quantity": 2, "unit_price_cents": 1250},
        )
        assert resp.status_code == 201
        assert resp.json["draft"]["subtotal_cents"] == 2500

        resp = client.put("/api/drafts/sess-api", json={"customer_email": "cliente@empresa.test"})
        assert resp.status_code == 200

        resp = client.post("/api/drafts/sess-api/submit", json={}, headers=actor_headers(customer))
        assert resp.status_code == 201
        assert resp.json["order"]["total_cents"] == 2500

    def test_submit_requires_actor(self, client, setup_permissions, product):
        client.post("/api/drafts/sess-anon/items", json={"product_id": product.id, "quantity": 1, "unit_price_cents": 1})
        resp = client.post("/api/drafts/sess-anon/submit", json={})
        assert resp.status_code == 401

    def test_unknown_detail_field_rejected(self, client, db_session):
        resp = client.put("/api/drafts/sess-api", json={"status": "completed"})
        assert resp.status_code == 400

    def test_discard(self, client, db_session, product):
        client.post("/api/drafts/sess-x/items", json={"product_id": product.id, "quantity": 1, "unit_price_cents": 1})
        assert client.delete("/api/drafts/sess-x").status_code == 200
        assert client.get("/api/drafts/sess-x").json["draft"]["items"] == []
