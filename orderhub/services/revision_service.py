"""
Revision Sub-flow — Service Layer.

    convert_to_revision:  COMPLETED origin → new linked revision order
                          (IN_PROGRESS, catalog snapshot copied, no work items)
    complete_revision:    closes a revision (revision_completed_at + COMPLETED)
    add_revision_task:    pre-assigned HIGH-priority mandatory task for a MEMBER

At most one revision per origin may be open (revision_completed_at NULL).
"""

import logging
import random
import time

from sqlalchemy import select

from orderhub.core.exceptions import ConflictError, InvalidTransitionError, NotFoundError, ValidationError
from orderhub.models import db
from orderhub.models.audit import snapshot, write_audit
from orderhub.models.auth import Role, User
from orderhub.models.order import Order, OrderService, Task
from orderhub.models.team import Team, TeamMember
from orderhub.services.permission import can_manage_revisions, check
from orderhub.utils.helpers import get_for_update, parse_datetime, require_fields, utcnow

logger = logging.getLogger(__name__)

_MAX_NUMBER_ATTEMPTS = 10


def generate_revision_number(origin_number: str) -> str:
    """
    ``<origin>-REV-<last 6 digits of epoch ms>``; on collision a random
    6-digit suffix is tried until the number is unused.
    """
    candidate = f"{origin_number}-REV-{str(int(time.time() * 1000))[-6:]}"
    for _ in range(_MAX_NUMBER_ATTEMPTS):
        taken = db.session.execute(
            select(Order.id).where(Order.order_number == candidate)
        ).first()
        if taken is None:
            return candidate
        candidate = f"{origin_number}-REV-{random.randint(0, 999999):06d}"
    raise ConflictError(f"Could not generate a unique revision number for {origin_number}")


def get_active_revision(origin_id: int) -> Order | None:
    return db.session.execute(
        select(Order).where(
            Order.revision_order_id == origin_id,
            Order.is_revision.is_(True),
            Order.revision_completed_at.is_(None),
        )
    ).scalars().first()


def convert_to_revision(caller, order_id) -> Order:
    """
    Clone a COMPLETED order into a linked revision order.

    Raises:
        InvalidTransitionError: origin is not COMPLETED.
        ConflictError: an open revision of the origin already exists.
    """
    check(can_manage_revisions(caller.role), "order.convert_to_revision", caller)
    try:
        origin = get_for_update(Order, order_id, "Order")
        if origin.status != "COMPLETED":
            raise InvalidTransitionError(
                "order", origin.order_number, "convert_to_revision", origin.status,
                "only completed orders can be revised",
            )
        active = get_active_revision(origin.id)
        if active is not None:
            raise ConflictError(
                "active revision already exists",
                details={"revision_id": active.id, "order_number": active.order_number},
            )

        revision = Order(
            order_number=generate_revision_number(origin.order_number),
            order_type_id=origin.order_type_id,
            customer_name=origin.customer_name,
            customer_email=origin.customer_email,
            customer_phone=origin.customer_phone,
            amount=origin.amount,
            order_date=utcnow(),
            delivery_date=origin.delivery_date,
            delivery_time=origin.delivery_time,
            notes=origin.notes,
            folder_link=origin.folder_link,
            status="IN_PROGRESS",
            created_by_id=caller.user_id,
            is_revision=True,
            revision_order_id=origin.id,
        )
        db.session.add(revision)
        db.session.flush()

        for link in origin.order_services:
            db.session.add(OrderService(
                order_id=revision.id,
                service_id=link.service_id,
                target_name=link.target_name,
                description=link.description,
            ))

        write_audit(
            entity_type="order", entity_id=revision.id, action="order.convert_to_revision",
            performed_by_id=caller.user_id,
            old_value={"order_number": origin.order_number, "status": origin.status},
            new_value=snapshot("order", revision),
            description=f"Revision {revision.order_number} opened for {origin.order_number}",
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info("Revision %s created from order %s", revision.order_number, origin.order_number)
    return revision


def complete_revision(caller, revision_order_id) -> Order:
    check(can_manage_revisions(caller.role), "order.complete_revision", caller)
    order = get_for_update(Order, revision_order_id, "Order")
    if not order.is_revision:
        raise ValidationError("Order is not a revision", details={"order_id": "not a revision"})
    if order.revision_completed_at is not None or order.status == "COMPLETED":
        raise InvalidTransitionError(
            "order", order.order_number, "complete_revision", order.status,
            "revision is already completed",
        )

    old = snapshot("order", order, ["status", "revision_completed_at", "completed_at"])
    now = utcnow()
    order.revision_completed_at = now
    order.completed_at = now
    order.status = "COMPLETED"
    write_audit(
        entity_type="order", entity_id=order.id, action="order.complete_revision",
        performed_by_id=caller.user_id, old_value=old,
        new_value=snapshot("order", order, ["status", "revision_completed_at", "completed_at"]),
    )
    db.session.commit()
    return order


def _first_active_team_id(user_id: int) -> int | None:
    return db.session.execute(
        select(TeamMember.team_id)
        .join(Team, Team.id == TeamMember.team_id)
        .where(
            TeamMember.user_id == user_id,
            TeamMember.is_active.is_(True),
            Team.is_active.is_(True),
        )
        .order_by(TeamMember.joined_at, TeamMember.id)
    ).scalars().first()


def add_revision_task(caller, revision_order_id, data: dict) -> Task:
    """
    Create a revision task directly in ASSIGNED (mandatory, HIGH priority).

    ``data``: task_name, member_id, deadline (required); notes, description.
    """
    check(can_manage_revisions(caller.role), "order.revision_task", caller)
    require_fields(data, "task_name", "member_id", "deadline")

    order = get_for_update(Order, revision_order_id, "Order")
    if not order.is_revision:
        raise ValidationError("Order is not a revision", details={"order_id": "not a revision"})

    member = db.session.get(User, data["member_id"])
    if member is None:
        raise NotFoundError("User", data["member_id"])
    if member.role != Role.MEMBER:
        raise ValidationError("Revision tasks can only be assigned to members",
                              details={"member_id": "role is not MEMBER"})
    team_id = _first_active_team_id(member.id)
    if team_id is None:
        raise ValidationError("Member does not belong to any active team",
                              details={"member_id": "no active team membership"})

    task = Task(
        order_id=order.id,
        service_id=None,
        team_id=team_id,
        title=str(data["task_name"]).strip(),
        description=data.get("description"),
        assigned_to_id=member.id,
        status="ASSIGNED",
        priority="HIGH",
        deadline=parse_datetime(data["deadline"], "deadline"),
        is_mandatory=True,
        is_revision_task=True,
        notes=data.get("notes"),
        created_by_id=caller.user_id,
    )
    db.session.add(task)
    db.session.flush()
    write_audit(
        entity_type="task", entity_id=task.id, action="task.create_revision",
        performed_by_id=caller.user_id, new_value=snapshot("task", task),
        description=f"Revision task '{task.title}' assigned to {member.display_name}",
    )
    db.session.commit()
    return task
