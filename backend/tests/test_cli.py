"""
CLI command tests (flask system / permissions / roles / orders / audit).
"""

from datetime import timedelta

from quotedesk.models import OrderAuditLog, Resource
from quotedesk.services import permission_service
from quotedesk.services.access_scope_service import get_client_access_type
from quotedesk.time_utils import utcnow


def test_system_init_is_idempotent(app, db_session):
    runner = app.test_cli_runner()

    first = runner.invoke(args=["system", "init"])
    assert first.exit_code == 0, first.output
    assert "DONE" in first.output
    count = db_session.query(Resource).count()

    second = runner.invoke(args=["system", "init"])
    assert second.exit_code == 0
    assert "PASS Created 0 new resources" in second.output
    assert db_session.query(Resource).count() == count


def test_grant_and_revoke(app, setup_permissions):
    runner = app.test_cli_runner()

    result = runner.invoke(args=["permissions", "grant", "customer", "orders", "delete"])
    assert "PASS" in result.output
    assert permission_service.has_permission("customer", "orders", "delete")

    result = runner.invoke(args=["permissions", "revoke", "customer", "orders", "delete"])
    assert "PASS Revoked" in result.output
    assert not permission_service.has_permission("customer", "orders", "delete")

    result = runner.invoke(args=["permissions", "revoke", "customer", "orders", "delete"])
    assert "WARN" in result.output


def test_grant_unknown_resource_fails(app, setup_permissions):
    result = app.test_cli_runner().invoke(args=["permissions", "grant", "customer", "warehouses", "view"])
    assert "FAIL" in result.output


def test_permissions_list(app, setup_permissions):
    result = app.test_cli_runner().invoke(args=["permissions", "list", "--role", "salesperson"])
    assert result.exit_code == 0
    assert "SALESPERSON" in result.output
    assert "orders" in result.output


def test_roles_assign_master(app, setup_permissions):
    result = app.test_cli_runner().invoke(args=["roles", "assign", "sales-9", "salesperson", "--access", "master"])
    assert "PASS" in result.output
    assert get_client_access_type("sales-9") == "master"


def test_roles_assign_access_for_customer_fails(app, setup_permissions):
    result = app.test_cli_runner().invoke(args=["roles", "assign", "cust-9", "customer", "--access", "own"])
    assert "FAIL" in result.output


def test_regenerate_document(app, make_order):
    order = make_order()
    result = app.test_cli_runner().invoke(args=["orders", "regenerate-document", order.order_number])
    assert result.exit_code == 0, result.output
    assert f"quotes/{order.order_number}.pdf" in result.output


def test_regenerate_unknown_order(app, db_session):
    result = app.test_cli_runner().invoke(args=["orders", "regenerate-document", "Q-1999-00001"])
    assert result.exit_code == 1
    assert "FAIL" in result.output


def test_audit_purge(app, db_session, make_order):
    order = make_order()
    db_session.add(OrderAuditLog(
        order_id=order.id,
        action="updated",
        changes={"notes": {"old": None, "new": "x"}},
        created_at=utcnow() - timedelta(days=800),
    ))
    db_session.commit()

    cutoff = (utcnow() - timedelta(days=365)).date().isoformat()
    result = app.test_cli_runner().invoke(args=["audit", "purge", "--before", cutoff, "--yes"])

    assert result.exit_code == 0, result.output
    assert "Deleted 1 audit entries" in result.output


def test_audit_purge_requires_confirmation(app, db_session):
    result = app.test_cli_runner().invoke(args=["audit", "purge", "--before", "2020-01-01"], input="n\n")
    assert result.exit_code == 1
