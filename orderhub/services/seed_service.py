"""
Demo data seed.

Creates a small, self-consistent catalog for local development:
    - one ADMIN, one ORDER_CREATOR, one REVISION_MANAGER
    - two teams (design, content), each with a leader and a member
    - three services (two task services, one asking service)
    - one order type bundling all three

Safe to run multiple times; an existing admin account means the seed
already ran and nothing is written.

Call this from the ``flask seed-demo`` CLI command.
"""

import logging

from sqlalchemy import select

from orderhub.auth import Caller
from orderhub.models import db
from orderhub.models.audit import snapshot, write_audit
from orderhub.models.auth import Role, User
from orderhub.models.catalog import SERVICE_TYPE_ASKING, SERVICE_TYPE_TASK
from orderhub.services import catalog_service, team_service

logger = logging.getLogger(__name__)

DEMO_ADMIN_EMAIL = "admin@orderhub.example.com"

_DEMO_USERS = [
    ("creator@orderhub.example.com", "Ozan Creator", Role.ORDER_CREATOR),
    ("revisions@orderhub.example.com", "Rana Revisions", Role.REVISION_MANAGER),
    ("design.lead@orderhub.example.com", "Deniz Design Lead", Role.MEMBER),
    ("designer@orderhub.example.com", "Ece Designer", Role.MEMBER),
    ("content.lead@orderhub.example.com", "Cem Content Lead", Role.MEMBER),
    ("writer@orderhub.example.com", "Ipek Writer", Role.MEMBER),
]


def _bootstrap_admin() -> User:
    """The first admin cannot be created through an admin-gated service."""
    admin = User(email=DEMO_ADMIN_EMAIL, display_name="Demo Admin", role=Role.ADMIN)
    db.session.add(admin)
    db.session.flush()
    write_audit(
        entity_type="user", entity_id=admin.id, action="user.create",
        performed_by_id=admin.id, new_value=snapshot("user", admin),
        description="Bootstrap admin created by seed",
    )
    db.session.commit()
    return admin


def seed_demo() -> dict:
    """
    Seed the demo dataset.

    Returns:
        {"created": bool, "admin_email": str, "order_type_id": int | None}
    """
    existing = db.session.execute(
        select(User).where(User.email == DEMO_ADMIN_EMAIL)
    ).scalar_one_or_none()
    if existing is not None:
        logger.info("Demo data already present; skipping seed")
        return {"created": False, "admin_email": DEMO_ADMIN_EMAIL, "order_type_id": None}

    admin = Caller.from_user(_bootstrap_admin())

    users = {}
    for email, name, role in _DEMO_USERS:
        users[email] = team_service.create_user(
            admin, {"email": email, "display_name": name, "role": role},
        )

    design = team_service.create_team(admin, {
        "name": "Design",
        "description": "Visual design and layout",
        "leader_id": users["design.lead@orderhub.example.com"].id,
    })
    content = team_service.create_team(admin, {
        "name": "Content",
        "description": "Copywriting and customer questionnaires",
        "leader_id": users["content.lead@orderhub.example.com"].id,
    })
    for team, emails in (
        (design, ("design.lead@orderhub.example.com", "designer@orderhub.example.com")),
        (content, ("content.lead@orderhub.example.com", "writer@orderhub.example.com")),
    ):
        for email in emails:
            team_service.add_member(admin, team.id, users[email].id)

    logo = catalog_service.create_service(admin, {
        "name": "Logo Design",
        "type": SERVICE_TYPE_TASK,
        "team_id": design.id,
        "is_mandatory": True,
        "time_limit_days": 3,
    })
    layout = catalog_service.create_service(admin, {
        "name": "Page Layout",
        "type": SERVICE_TYPE_TASK,
        "team_id": design.id,
        "is_mandatory": False,
        "auto_assign_enabled": True,
        "auto_assign_user_id": users["designer@orderhub.example.com"].id,
    })
    brief = catalog_service.create_service(admin, {
        "name": "Customer Brief",
        "type": SERVICE_TYPE_ASKING,
        "team_id": content.id,
        "is_mandatory": True,
    })
    order_type = catalog_service.create_order_type(admin, {
        "name": "Brand Starter Pack",
        "description": "Logo, layout and a customer brief",
        "time_limit_days": 7,
        "service_ids": [logo.id, layout.id, brief.id],
    })

    logger.info("Seeded demo data: %d users, 2 teams, 3 services, 1 order type",
                len(users) + 1)
    return {"created": True, "admin_email": DEMO_ADMIN_EMAIL, "order_type_id": order_type.id}
