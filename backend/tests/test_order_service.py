"""
Order aggregate store tests.

Verifies:
- Totals are derived (subtotal + shipping) after every mutation
- Each mutation and its audit entry commit atomically
- No-op updates write nothing
- Stale expected_version is rejected without side effects
- Item validation (quantity >= 1, product or custom name)
- Terminal orders are read-only
- Variant keys unknown to the product produce warnings, not errors
"""

import re

import pytest
from sqlalchemy.exc import IntegrityError

from quotedesk.errors import (
    NotFoundError,
    PermissionDeniedError,
    PersistenceError,
    StaleWriteError,
    ValidationError,
)
from quotedesk.models import Order, OrderAuditLog, OrderItem, STATUS_COMPLETED
from quotedesk.services import audit_service, order_service


def _audit_actions(db_session, order_id):
    return [
        e.action
        for e in db_session.query(OrderAuditLog).filter_by(order_id=order_id).order_by(OrderAuditLog.id)
    ]


class TestCreateOrder:

    def test_create_computes_totals_and_number(self, db_session, make_order):
        order = make_order(shipping_cost_cents=500)
        assert re.match(r"^Q-\d{4}-00001$", order.order_number)
        assert order.status == "pending"
        assert order.subtotal_cents == 12500
        assert order.total_cents == 13000
        assert len(order.items) == 1

    def test_order_numbers_are_sequential(self, db_session, make_order):
        first = make_order()
        second = make_order()
        assert int(first.order_number[-5:]) + 1 == int(second.order_number[-5:])

    def test_create_writes_one_created_entry(self, db_session, make_order):
        order = make_order()
        entries = audit_service.list_entries(order.id)
        assert [e.action for e in entries] == ["created"]
        assert entries[0].changes["customer_email"]["new"] == "cliente@empresa.test"
        assert entries[0].user_id == "admin-1"

    def test_default_terms_applied(self, app, db_session, make_order):
        order = make_order()
        assert order.payment_terms == app.config["DEFAULT_PAYMENT_TERMS"]
        assert order.validity_terms == app.config["DEFAULT_VALIDITY_TERMS"]

    def test_customer_email_required(self, db_session, admin):
        with pytest.raises(ValidationError):
            order_service.create_order({"items": []}, admin)
        with pytest.raises(ValidationError):
            order_service.create_order({"customer_email": "not-an-email"}, admin)

    def test_client_cannot_set_derived_fields(self, db_session, admin):
        with pytest.raises(ValidationError):
            order_service.create_order(
                {"customer_email": "a@b.test", "total_cents": 1}, admin
            )

    def test_customer_only_for_own_email(self, db_session, customer):
        with pytest.raises(PermissionDeniedError):
            order_service.create_order({"customer_email": "someone@else.test"}, customer)

        result = order_service.create_order({"customer_email": "cliente@empresa.test"}, customer)
        assert result.order.created_by_user_id == "cust-1"

    def test_salesperson_becomes_owner(self, db_session, salesperson):
        result = order_service.create_order({"customer_email": "a@b.test"}, salesperson)
        assert result.order.salesperson_id == "sales-1"

    def test_unknown_variant_key_is_warning(self, db_session, admin, product):
        result = order_service.create_order({
            "customer_email": "a@b.test",
            "items": [{"product_id": product.id, "quantity": 1, "unit_price_cents": 100,
                       "selected_variants": {"Material": "Inox"}}],
        }, admin)
        assert result.variant_warnings
        assert "Material" in result.variant_warnings[0]
        assert result.order.items[0].selected_variants == {"Material": "Inox"}

    def test_unknown_product_rejected(self, db_session, admin):
        with pytest.raises(ValidationError):
            order_service.create_order({
                "customer_email": "a@b.test",
                "items": [{"product_id": 999, "quantity": 1, "unit_price_cents": 100}],
            }, admin)
        assert db_session.query(Order).count() == 0


class TestItemValidation:

    @pytest.mark.parametrize("quantity", [0, -1, "abc", 1.5, True, None, 1_000_001])
    def test_bad_quantity_rejected(self, db_session, admin, make_order, quantity):
        order = make_order()
        with pytest.raises(ValidationError):
            order_service.add_item(order.id, {"custom_name": "Brinde", "quantity": quantity,
                                              "unit_price_cents": 100}, admin)
        assert db_session.query(OrderItem).filter_by(order_id=order.id).count() == 1

    def test_negative_price_rejected(self, db_session, admin, make_order):
        order = make_order()
        with pytest.raises(ValidationError):
            order_service.add_item(order.id, {"custom_name": "Brinde", "quantity": 1,
                                              "unit_price_cents": -1}, admin)

    def test_item_needs_product_or_custom_name(self, db_session, admin, make_order):
        order = make_order()
        with pytest.raises(ValidationError):
            order_service.add_item(order.id, {"quantity": 1, "unit_price_cents": 100}, admin)

    def test_update_cannot_change_product(self, db_session, admin, make_order, plain_product):
        order = make_order()
        with pytest.raises(ValidationError):
            order_service.update_item(order.id, order.items[0].id, {"product_id": plain_product.id}, admin)

    def test_update_quantity_below_one_rejected(self, db_session, admin, make_order):
        order = make_order()
        with pytest.raises(ValidationError):
            order_service.update_item(order.id, order.items[0].id, {"quantity": 0}, admin)

    @pytest.mark.parametrize("name", [None, "", "   "])
    def test_adhoc_item_keeps_custom_name(self, db_session, admin, make_order, name):
        order = make_order(items=[{"custom_name": "Brinde X", "quantity": 1, "unit_price_cents": 500}])
        item_id = order.items[0].id
        version = order.version_id

        with pytest.raises(ValidationError):
            order_service.update_item(order.id, item_id, {"custom_name": name}, admin)

        db_session.expire_all()
        item = db_session.get(OrderItem, item_id)
        assert item.custom_name == "Brinde X"
        assert item.order.version_id == version

    def test_catalog_item_may_clear_custom_name(self, db_session, admin, make_order):
        order = make_order()
        result = order_service.update_item(order.id, order.items[0].id, {"custom_name": None}, admin)
        assert result.item.custom_name is None
        assert not result.changed


class TestItemMutations:

    def test_add_item_recomputes_and_audits(self, db_session, admin, make_order):
        order = make_order(shipping_cost_cents=1000)
        version = order.version_id

        result = order_service.add_item(order.id, {
            "custom_name": "Bloco de Notas",
            "quantity": 2,
            "unit_price_cents": 450,
        }, admin)

        assert result.order.subtotal_cents == 12500 + 900
        assert result.order.total_cents == 12500 + 900 + 1000
        assert result.order.version_id == version + 1
        assert result.item.custom_name == "Bloco de Notas"

        entry = audit_service.list_entries(order.id)[0]
        assert entry.action == "item_added"
        assert entry.changes["product_name"] == {"old": None, "new": "Bloco de Notas"}
        assert entry.changes["total_cents"] == {"old": 13500, "new": 14400}

    def test_remove_item_keeps_product(self, db_session, admin, make_order, product):
        order = make_order()
        item_id = order.items[0].id

        result = order_service.remove_item(order.id, item_id, admin)

        assert result.order.items == []
        assert result.order.subtotal_cents == 0
        assert result.order.total_cents == 0
        assert db_session.get(OrderItem, item_id) is None
        assert db_session.get(type(product), product.id) is not None

        entry = audit_service.list_entries(order.id)[0]
        assert entry.action == "item_removed"
        assert entry.changes["product_name"] == {"old": "Caneca Personalizada", "new": None}
        assert entry.changes["quantity"] == {"old": 10, "new": None}

    def test_remove_unknown_item_is_not_found(self, db_session, admin, make_order):
        order = make_order()
        with pytest.raises(NotFoundError):
            order_service.remove_item(order.id, 9999, admin)

    def test_update_item_logs_only_changed_fields(self, db_session, admin, make_order):
        order = make_order()
        item = order.items[0]

        result = order_service.update_item(order.id, item.id, {"quantity": 20, "unit_price_cents": 1250}, admin)

        assert set(result.changes) == {"quantity"}
        assert result.order.total_cents == 25000
        entry = audit_service.list_entries(order.id)[0]
        assert entry.action == "item_updated"
        assert entry.changes["quantity"] == {"old": 10, "new": 20}
        assert entry.changes["total_cents"] == {"old": 12500, "new": 25000}
        assert "unit_price_cents" not in entry.changes

    def test_noop_item_update_writes_nothing(self, db_session, admin, make_order):
        order = make_order()
        version = order.version_id

        result = order_service.update_item(
            order.id, order.items[0].id, {"selected_variants": {"Cor": "Azul"}}, admin
        )

        assert not result.changed
        assert result.order.version_id == version
        assert _audit_actions(db_session, order.id) == ["created"]

    def test_variant_change_with_unknown_key_warns(self, db_session, admin, make_order):
        order = make_order()
        result = order_service.update_item(
            order.id, order.items[0].id, {"selected_variants": {"Acabamento": "Fosco"}}, admin
        )
        assert result.variant_warnings


class TestUpdateTerms:

    def test_update_terms_and_shipping(self, db_session, admin, make_order):
        order = make_order()
        result = order_service.update_order_terms(
            order.id, {"notes": "Entregar na portaria", "shipping_cost_cents": 2500}, admin
        )
        assert set(result.changes) == {"notes", "shipping_cost_cents", "total_cents"}
        assert result.order.total_cents == 12500 + 2500

        entry = audit_service.list_entries(order.id)[0]
        assert entry.action == "updated"
        assert entry.changes["total_cents"] == {"old": 12500, "new": 15000}

    def test_noop_update_writes_nothing(self, db_session, admin, make_order):
        order = make_order(notes="igual")
        version = order.version_id

        result = order_service.update_order_terms(order.id, {"notes": "igual"}, admin)

        assert not result.changed
        assert result.order.version_id == version
        assert _audit_actions(db_session, order.id) == ["created"]

    @pytest.mark.parametrize("shipping", [None, -1, "abc"])
    def test_invalid_shipping_rejected(self, db_session, admin, make_order, shipping):
        order = make_order(shipping_cost_cents=500)
        version = order.version_id

        with pytest.raises(ValidationError):
            order_service.update_order_terms(order.id, {"shipping_cost_cents": shipping}, admin)

        db_session.refresh(order)
        assert order.shipping_cost_cents == 500
        assert order.version_id == version

    def test_status_not_patchable(self, db_session, admin, make_order):
        order = make_order()
        with pytest.raises(ValidationError):
            order_service.update_order_terms(order.id, {"status": "completed"}, admin)

    def test_terminal_order_is_read_only(self, db_session, admin, make_order):
        order = make_order()
        order.status = STATUS_COMPLETED
        db_session.commit()

        with pytest.raises(ValidationError):
            order_service.update_order_terms(order.id, {"notes": "tarde demais"}, admin)
        with pytest.raises(ValidationError):
            order_service.add_item(order.id, {"custom_name": "X", "quantity": 1, "unit_price_cents": 1}, admin)

    def test_customer_cannot_edit(self, db_session, customer, make_order):
        order = make_order()
        with pytest.raises(PermissionDeniedError):
            order_service.update_order_terms(order.id, {"notes": "x"}, customer)

    def test_own_salesperson_cannot_edit_foreign_order(self, db_session, salesperson, make_order):
        order = make_order(salesperson_id="sales-2")
        with pytest.raises(PermissionDeniedError):
            order_service.update_order_terms(order.id, {"notes": "x"}, salesperson)


class TestConcurrencyAndAtomicity:

    def test_stale_version_rejected(self, db_session, admin, make_order):
        order = make_order()
        stale = order.version_id
        order_service.update_order_terms(order.id, {"notes": "primeira"}, admin, expected_version=stale)

        with pytest.raises(StaleWriteError) as exc:
            order_service.update_order_terms(order.id, {"notes": "segunda"}, admin, expected_version=stale)

        assert exc.value.status_code == 409
        db_session.expire_all()
        assert db_session.get(Order, order.id).notes == "primeira"
        assert _audit_actions(db_session, order.id) == ["created", "updated"]

    def test_item_mutation_bumps_version(self, db_session, admin, make_order):
        order = make_order()
        version = order.version_id
        order_service.update_item(order.id, order.items[0].id, {"quantity": 11}, admin)
        with pytest.raises(StaleWriteError):
            order_service.remove_item(order.id, order.items[0].id, admin, expected_version=version)

    def test_audit_failure_rolls_back_mutation(self, db_session, admin, make_order, monkeypatch):
        order = make_order()
        order_id = order.id

        def _fail(*args, **kwargs):
            raise IntegrityError("INSERT INTO order_audit_logs", {}, Exception("disk full"))

        monkeypatch.setattr(audit_service, "append_entry", _fail)

        with pytest.raises(PersistenceError):
            order_service.add_item(order_id, {"custom_name": "X", "quantity": 3, "unit_price_cents": 100}, admin)

        db_session.expire_all()
        reloaded = db_session.get(Order, order_id)
        assert len(reloaded.items) == 1
        assert reloaded.total_cents == 12500
        assert _audit_actions(db_session, order_id) == ["created"]

    def test_unexpected_error_discards_staged_changes(self, db_session, admin, make_order, monkeypatch):
        order = make_order()
        order_id = order.id

        def _fail(*args, **kwargs):
            raise RuntimeError("audit sink unavailable")

        monkeypatch.setattr(audit_service, "append_entry", _fail)

        with pytest.raises(RuntimeError):
            order_service.add_item(order_id, {"custom_name": "X", "quantity": 3, "unit_price_cents": 100}, admin)

        # Nothing from the failed mutation is left pending in the session
        assert not db_session.new
        assert not db_session.dirty
        db_session.commit()
        reloaded = db_session.get(Order, order_id)
        assert len(reloaded.items) == 1
        assert reloaded.total_cents == 12500


class TestQueries:

    def test_list_orders_is_scoped(self, db_session, admin, salesperson, make_order):
        make_order(salesperson_id="sales-1")
        make_order(salesperson_id="sales-2")

        rows, total = order_service.list_orders(salesperson)
        assert total == 1
        assert rows[0].salesperson_id == "sales-1"

        _, total = order_service.list_orders(admin)
        assert total == 2

    def test_list_orders_status_filter(self, db_session, admin, make_order):
        make_order()
        rows, total = order_service.list_orders(admin, status="pending")
        assert total == 1
        with pytest.raises(ValidationError):
            order_service.list_orders(admin, status="shipped")

    def test_get_order_not_found(self, db_session, admin):
        with pytest.raises(NotFoundError):
            order_service.get_order(12345, admin)

    def test_get_order_by_number(self, db_session, make_order):
        order = make_order()
        assert order_service.get_order_by_number(order.order_number).id == order.id
