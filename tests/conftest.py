"""
Shared pytest fixtures for the OrderHub test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - make_user / make_team: ORM factories
    - auth_headers: Bearer header for a user
    - catalog: two teams with leaders + members, three services, one order type
    - make_order: create an order through the service layer
"""

from datetime import datetime, timedelta, timezone

import pytest

from orderhub import create_app
from orderhub.auth import Caller
from orderhub.models import db as _db
from orderhub.models.auth import Role, User
from orderhub.models.catalog import (
    SERVICE_TYPE_ASKING,
    SERVICE_TYPE_TASK,
    OrderType,
    OrderTypeService,
    Service,
)
from orderhub.models.team import Team, TeamMember
from orderhub.services import order_service
from orderhub.services.jwt_service import generate_access_token


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Factories ────────────────────────────────────────────────────────────

_seq = iter(range(1, 100000))


@pytest.fixture()
def make_user():
    def _make(role=Role.MEMBER, name=None, active=True):
        n = next(_seq)
        user = User(
            email=f"user{n}@example.com",
            display_name=name or f"User {n}",
            role=role,
            is_active=active,
        )
        _db.session.add(user)
        _db.session.commit()
        return user
    return _make


@pytest.fixture()
def make_team():
    def _make(name=None, leader=None, members=()):
        team = Team(name=name or f"Team {next(_seq)}", leader_id=leader.id if leader else None)
        _db.session.add(team)
        _db.session.flush()
        for user in members:
            _db.session.add(TeamMember(team_id=team.id, user_id=user.id))
        _db.session.commit()
        return team
    return _make


@pytest.fixture()
def caller_for():
    return Caller.from_user


@pytest.fixture()
def auth_headers(app):
    def _headers(user):
        token = generate_access_token(user.id, user.role)
        return {"Authorization": f"Bearer {token}"}
    return _headers


# ── Domain fixtures ──────────────────────────────────────────────────────


class Catalog:
    """Bag of pre-built catalog rows for a test."""


@pytest.fixture()
def catalog(make_user, make_team):
    """
    Design team: leader + member (also auto-assign target for "layout").
    Content team: leader + member.
    Services: logo (task, mandatory), layout (task, auto-assign),
              brief (asking, mandatory).
    """
    c = Catalog()
    c.admin = make_user(Role.ADMIN, "Admin")
    c.creator = make_user(Role.ORDER_CREATOR, "Creator")
    c.revision_manager = make_user(Role.REVISION_MANAGER, "Reviser")
    c.design_lead = make_user(Role.MEMBER, "Design Lead")
    c.designer = make_user(Role.MEMBER, "Designer")
    c.content_lead = make_user(Role.MEMBER, "Content Lead")
    c.writer = make_user(Role.MEMBER, "Writer")
    c.outsider = make_user(Role.MEMBER, "Outsider")

    c.design = make_team("Design", c.design_lead, [c.design_lead, c.designer])
    c.content = make_team("Content", c.content_lead, [c.content_lead, c.writer])

    c.logo = Service(name="Logo", slug="logo", type=SERVICE_TYPE_TASK,
                     team_id=c.design.id, is_mandatory=True)
    c.layout = Service(name="Layout", slug="layout", type=SERVICE_TYPE_TASK,
                       team_id=c.design.id, is_mandatory=False,
                       auto_assign_enabled=True, auto_assign_user_id=c.designer.id)
    c.brief = Service(name="Brief", slug="brief", type=SERVICE_TYPE_ASKING,
                      team_id=c.content.id, is_mandatory=True)
    _db.session.add_all([c.logo, c.layout, c.brief])
    _db.session.flush()

    c.order_type = OrderType(name="Starter", slug="starter", time_limit_days=7)
    _db.session.add(c.order_type)
    _db.session.flush()
    for svc in (c.logo, c.layout, c.brief):
        _db.session.add(OrderTypeService(order_type_id=c.order_type.id, service_id=svc.id))
    _db.session.commit()
    return c


def _order_payload(**kw):
    now = datetime.now(timezone.utc)
    data = {
        "order_number": f"ORD-{next(_seq):05d}",
        "customer_name": "Acme Ltd",
        "customer_email": "buyer@acme.example.com",
        "amount": "250.00",
        "order_date": now.isoformat(),
        "delivery_date": (now + timedelta(days=10)).isoformat(),
    }
    data.update(kw)
    return data


@pytest.fixture()
def order_data(catalog):
    """Valid create-order JSON for the catalog order type; kwargs override."""
    def _data(**kw):
        kw.setdefault("order_type_id", catalog.order_type.id)
        return _order_payload(**kw)
    return _data


@pytest.fixture()
def make_order(catalog):
    def _make(**kw):
        kw.setdefault("order_type_id", catalog.order_type.id)
        return order_service.create_order(Caller.from_user(catalog.creator), _order_payload(**kw))
    return _make
