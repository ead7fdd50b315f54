"""
Pytest fixtures for quotedesk backend tests.

Provides the test app (in-memory SQLite, eager tasks, in-memory mail outbox),
per-test data reset, seeded permissions, actors and catalog fixtures.
"""

import pytest
from quotedesk import create_app
from quotedesk.extensions import db
from quotedesk.models import Product, Profile
from quotedesk.services import permission_service
from quotedesk.services.access_scope_service import assign_role
from quotedesk.services.mail_service import MemoryEmailSender
from quotedesk.services.storage_service import LocalArtifactStore


@pytest.fixture(scope='session')
def app(tmp_path_factory):
    """Create application for testing."""
    storage_dir = tmp_path_factory.mktemp("quotes")
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'SECRET_KEY': 'test-secret',
        'ARTIFACT_STORAGE_DIR': str(storage_dir),
        'PUBLIC_BASE_URL': 'http://quotes.test',
        'TASKS_ALWAYS_EAGER': True,
        'MAIL_BACKEND': 'memory',
        'ADMIN_NOTIFY_EMAIL': 'vendas@cronos.test',
        'NOTIFY_ON_STATUS_CHANGE': True,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app, tmp_path):
    """Fresh data, outbox and artifact store for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        app.extensions["quotedesk.mail"] = MemoryEmailSender()
        app.extensions["quotedesk.artifacts"] = LocalArtifactStore(
            base_dir=str(tmp_path / "quotes"),
            secret_key=app.config["SECRET_KEY"],
            public_base_url=app.config["PUBLIC_BASE_URL"],
        )

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def setup_permissions(db_session):
    """Seed resources and default role grants."""
    permission_service.initialize_resources()
    permission_service.assign_default_role_permissions()


@pytest.fixture(scope='function')
def outbox(app, db_session):
    return app.extensions["quotedesk.mail"].outbox


# =============================================================================
# Actors
# =============================================================================


@pytest.fixture
def admin(setup_permissions):
    return permission_service.make_actor(
        user_id="admin-1", email="admin@cronos.test", name="Ana Admin", roles=["admin"]
    )


@pytest.fixture
def salesperson(setup_permissions):
    return permission_service.make_actor(
        user_id="sales-1", email="vendedor@cronos.test", name="Bruno Vendas", roles=["salesperson"]
    )


@pytest.fixture
def master_salesperson(setup_permissions):
    assign_role("sales-master", "salesperson", "master")
    return permission_service.make_actor(
        user_id="sales-master", email="gerente@cronos.test", name="Carla Gerente", roles=["salesperson"]
    )


@pytest.fixture
def customer(setup_permissions):
    return permission_service.make_actor(
        user_id="cust-1", email="cliente@empresa.test", name="Diego Cliente", roles=["customer"]
    )


@pytest.fixture
def customer_profile(db_session):
    profile = Profile(
        email="cliente@empresa.test",
        user_id="cust-1",
        company="Empresa Teste Ltda",
        contact_name="Diego Cliente",
        phone="11 99999-0000",
        assigned_salesperson_id="sales-1",
    )
    db_session.add(profile)
    db_session.commit()
    return profile


def actor_headers(actor) -> dict:
    """Trusted upstream identity headers for an actor."""
    headers = {
        "X-Actor-Id": actor.id,
        "X-Actor-Roles": ",".join(sorted(actor.roles)),
    }
    if actor.email:
        headers["X-Actor-Email"] = actor.email
    if actor.name:
        headers["X-Actor-Name"] = actor.name
    return headers


# =============================================================================
# Catalog
# =============================================================================


@pytest.fixture
def product(db_session):
    """Product with size and color variants."""
    product = Product(
        name="Caneca Personalizada",
        price_cents=1250,
        variants={"Cor": ["Azul", "Preto"], "Tamanho": ["P", "M"]},
    )
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture
def plain_product(db_session):
    product = Product(name="Caneta Metálica", price_cents=300, variants={})
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture
def make_order(admin, product):
    """Factory: create an order through the service as admin."""
    from quotedesk.services import order_service

    def _make(customer_email="cliente@empresa.test", items=None, actor=None, **fields):
        if items is None:
            items = [{"product_id": product.id, "quantity": 10, "unit_price_cents": 1250,
                      "selected_variants": {"Cor": "Azul"}}]
        draft = {"customer_email": customer_email, "items": items}
        draft.update(fields)
        return order_service.create_order(draft, actor or admin).order

    return _make
