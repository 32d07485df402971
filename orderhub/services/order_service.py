"""
Order Lifecycle — Service Layer.

Business logic for:
    - Order creation:       validation + atomic fan-out of catalog services
                            into Task / AskingTask work items
    - Auto-assignment:      services with auto-assign + target user, gated
                            on the order having a folder link
    - Lifecycle:            verify (PENDING → IN_PROGRESS), deliver (→ COMPLETED)
    - Completion stats:     total / completed / mandatory-remaining snapshot
    - Order maintenance:    update, extend delivery, custom tasks, delete
    - Service set edits:    add / remove catalog services on an open order

Every function takes the caller explicitly, commits once, and writes
exactly one audit row per mutation. Any failure rolls back the whole
transaction, so an order never persists with a partial work-item set.
"""

import json
import logging

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError

from orderhub.core.exceptions import DuplicateError, InvalidTransitionError, ValidationError
from orderhub.models import db
from orderhub.models.audit import snapshot, write_audit
from orderhub.models.auth import User
from orderhub.models.catalog import SERVICE_TYPE_ASKING, Service
from orderhub.models.order import (
    ORDER_STATUSES,
    ORDER_TRANSITIONS,
    TASK_PRIORITIES,
    AskingTask,
    Order,
    OrderService,
    Task,
    validate_transition,
)
from orderhub.models.team import Team
from orderhub.services.catalog_service import resolve_order_type, service_entry
from orderhub.services.permission import (
    can_add_custom_task,
    can_create_order,
    can_delete_order,
    can_deliver_order,
    can_edit_order_services,
    can_extend_delivery,
    can_modify_order,
    can_verify_order,
    check,
    is_any_team_leader,
    is_active_member,
    is_team_leader,
)
from orderhub.utils.helpers import (
    as_bool,
    combine_date_and_time,
    ensure_utc,
    get_for_update,
    get_or_raise,
    parse_amount,
    parse_datetime,
    parse_time_of_day,
    require_fields,
    utcnow,
    validate_email,
)

logger = logging.getLogger(__name__)

_UPDATABLE_FIELDS = (
    "customer_name", "customer_email", "customer_phone", "amount", "notes", "delivery_time",
)


# ── Lookups ──────────────────────────────────────────────────────────────────


def get_order(order_id) -> Order:
    return get_or_raise(Order, order_id, "Order")


def list_orders_query(
    *,
    status: str | None = None,
    order_type_id: int | None = None,
    is_revision: bool | None = None,
    has_folder_link: bool | None = None,
    search: str | None = None,
):
    """
    Build a filtered Order query (newest first); the caller paginates.

    ``has_folder_link=False`` lists the orders still waiting for a folder
    link, which is what blocks their auto-assignment.
    """
    q = Order.query
    if status:
        if status not in ORDER_STATUSES:
            raise ValidationError(f"status must be one of {list(ORDER_STATUSES)}",
                                  details={"status": "invalid"})
        q = q.filter(Order.status == status)
    if order_type_id:
        q = q.filter(Order.order_type_id == order_type_id)
    if is_revision is not None:
        q = q.filter(Order.is_revision.is_(is_revision))
    if has_folder_link is not None:
        q = q.filter(Order.folder_link.is_not(None) if has_folder_link else Order.folder_link.is_(None))
    if search:
        like = f"%{search.strip()}%"
        q = q.filter(or_(Order.order_number.ilike(like), Order.customer_name.ilike(like)))
    return q.order_by(Order.created_at.desc(), Order.id.desc())


def delivery_moment(order: Order):
    """Order delivery date combined with its optional HH:MM delivery time."""
    return combine_date_and_time(order.delivery_date, order.delivery_time)


# ── Auto-assignment ──────────────────────────────────────────────────────────


def _auto_assign_target(service: Service | None) -> int | None:
    if service is None:
        return None
    target_id = service.auto_assign_target
    if target_id is None:
        return None
    target = db.session.get(User, target_id)
    if target is None or not target.is_active:
        logger.warning(
            "Auto-assign target %s for service %s is missing or inactive; skipping",
            target_id, service.id,
        )
        return None
    return target_id


def _auto_assign_item(item, service: Service | None) -> bool:
    """
    Auto-assign one unassigned work item. Only items with ``assigned_to_id``
    NULL are touched, which makes re-evaluation idempotent.

    Task → assigned_to + ASSIGNED; AskingTask → assigned_to only.
    """
    if item.assigned_to_id is not None:
        return False
    target_id = _auto_assign_target(service)
    if target_id is None:
        return False
    item.assigned_to_id = target_id
    if isinstance(item, Task) and item.status == "NOT_ASSIGNED":
        item.status = "ASSIGNED"
    return True


def _auto_assign_order(order: Order) -> dict:
    """Run auto-assignment over every unassigned item of *order*."""
    assigned = {"tasks": [], "asking_tasks": []}
    tasks = db.session.execute(
        select(Task)
        .where(Task.order_id == order.id, Task.assigned_to_id.is_(None))
        .with_for_update()
    ).scalars()
    for task in tasks:
        if task.status == "NOT_ASSIGNED" and _auto_assign_item(task, task.service):
            assigned["tasks"].append(task.id)
    asking = db.session.execute(
        select(AskingTask)
        .where(AskingTask.order_id == order.id, AskingTask.assigned_to_id.is_(None))
        .with_for_update()
    ).scalars()
    for at in asking:
        if _auto_assign_item(at, at.service):
            assigned["asking_tasks"].append(at.id)
    return assigned


# ── Creation ─────────────────────────────────────────────────────────────────


def _parse_order_input(data: dict) -> dict:
    require_fields(
        data, "order_number", "customer_name", "order_type_id",
        "amount", "order_date", "delivery_date",
    )
    order_number = str(data["order_number"]).strip()
    if len(order_number) > 80:
        raise ValidationError("order_number is too long", details={"order_number": "max 80 chars"})

    order_date = parse_datetime(data["order_date"], "order_date")
    delivery_date = parse_datetime(data["delivery_date"], "delivery_date")
    if delivery_date < order_date:
        raise ValidationError(
            "delivery_date must not be before order_date",
            details={"delivery_date": "before order_date"},
        )
    parse_time_of_day(data.get("delivery_time"))

    return {
        "order_number": order_number,
        "customer_name": str(data["customer_name"]).strip(),
        "customer_email": validate_email(data.get("customer_email"), "customer_email"),
        "customer_phone": data.get("customer_phone") or None,
        "amount": parse_amount(data["amount"]),
        "order_date": order_date,
        "delivery_date": delivery_date,
        "delivery_time": data.get("delivery_time") or None,
        "notes": data.get("notes") or None,
        "folder_link": (data.get("folder_link") or "").strip() or None,
    }


def _spawn_work_item(order: Order, svc: dict, caller):
    """Create the one Task or AskingTask a catalog service yields."""
    common = dict(
        order_id=order.id,
        service_id=svc["service_id"],
        team_id=svc["team_id"],
        title=svc["name"],
        description=svc["description"],
        deadline=order.delivery_date,
        priority="MEDIUM",
        is_mandatory=bool(svc["is_mandatory"]),
    )
    if svc["type"] == SERVICE_TYPE_ASKING:
        item = AskingTask(current_stage="ASKED", **common)
    else:
        item = Task(status="NOT_ASSIGNED", created_by_id=caller.user_id, **common)
    db.session.add(item)
    return item


def _attach_service(order: Order, svc: dict, caller, auto_assigned: dict) -> None:
    """Link *svc* to the order, spawn its work item and auto-assign it if possible."""
    db.session.add(OrderService(order_id=order.id, service_id=svc["service_id"],
                                description=svc["description"]))
    item = _spawn_work_item(order, svc, caller)
    if not order.folder_link:
        return
    service = db.session.get(Service, svc["service_id"])
    if _auto_assign_item(item, service):
        db.session.flush()
        key = "asking_tasks" if isinstance(item, AskingTask) else "tasks"
        auto_assigned[key].append(item.id)


def _is_order_number_conflict(exc: IntegrityError) -> bool:
    # sqlite: "orders.order_number"; postgres: "orders_order_number_key"
    return "order_number" in str(exc.orig)


def create_order(caller, data: dict) -> Order:
    """
    Create an order and fan out its catalog services in one transaction.

    Raises:
        ForbiddenError, ValidationError, NotFoundError (order type / service),
        DuplicateError (order_number already exists).
    """
    check(can_create_order(caller.role), "order.create", caller)
    fields = _parse_order_input(data)

    existing = db.session.execute(
        select(Order.id).where(Order.order_number == fields["order_number"])
    ).first()
    if existing is not None:
        raise DuplicateError("Order", "order_number", fields["order_number"])

    resolved = resolve_order_type(data["order_type_id"])

    try:
        order = Order(
            order_type_id=resolved["order_type"].id,
            status="PENDING",
            created_by_id=caller.user_id,
            **fields,
        )
        db.session.add(order)
        db.session.flush()

        auto_assigned = {"tasks": [], "asking_tasks": []}
        for svc in resolved["services"]:
            _attach_service(order, svc, caller, auto_assigned)
        db.session.flush()

        new = snapshot("order", order)
        new["auto_assigned"] = auto_assigned
        write_audit(
            entity_type="order", entity_id=order.id, action="order.create",
            performed_by_id=caller.user_id, new_value=new,
            description=(
                f"Order {order.order_number} created with "
                f"{len(resolved['services'])} work item(s)"
            ),
        )
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        logger.warning("Integrity error creating order %s: %s", fields["order_number"], exc.orig)
        if _is_order_number_conflict(exc):
            raise DuplicateError("Order", "order_number", fields["order_number"]) from exc
        raise
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        "Order %s created by user %s (%d work items)",
        order.order_number, caller.user_id, len(resolved["services"]),
    )
    return order


def attach_folder_link(caller, order_id, link: str | None) -> Order:
    """
    Set, replace or clear the folder link, then auto-assign every still
    unassigned item whose service is configured for it. Idempotent.
    """
    check(can_modify_order(caller.role), "order.folder_link", caller)
    try:
        order = get_for_update(Order, order_id, "Order")
        old = {"folder_link": order.folder_link}
        order.folder_link = (link or "").strip() or None

        auto_assigned = {"tasks": [], "asking_tasks": []}
        if order.folder_link:
            auto_assigned = _auto_assign_order(order)

        write_audit(
            entity_type="order", entity_id=order.id, action="order.folder_link",
            performed_by_id=caller.user_id, old_value=old,
            new_value={"folder_link": order.folder_link, "auto_assigned": auto_assigned},
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    if auto_assigned["tasks"] or auto_assigned["asking_tasks"]:
        logger.info(
            "Folder link on order %s auto-assigned %d task(s), %d asking task(s)",
            order.id, len(auto_assigned["tasks"]), len(auto_assigned["asking_tasks"]),
        )
    return order


# ── Lifecycle transitions ────────────────────────────────────────────────────


def _transition(order: Order, action: str) -> str:
    validation = validate_transition(ORDER_TRANSITIONS, order.status, action)
    if not validation["valid"]:
        raise InvalidTransitionError("order", order.order_number, action, order.status,
                                     validation["reason"])
    previous = order.status
    order.status = validation["to"]
    return previous


def verify_order(caller, order_id) -> Order:
    """PENDING → IN_PROGRESS (admin, order creator or any team leader)."""
    check(
        can_verify_order(caller.role, is_any_team_leader(caller.user_id)),
        "order.verify", caller,
    )
    order = get_for_update(Order, order_id, "Order")
    previous = _transition(order, "verify")
    write_audit(
        entity_type="order", entity_id=order.id, action="order.verify",
        performed_by_id=caller.user_id,
        old_value={"status": previous}, new_value={"status": order.status},
        description=f"Order {order.order_number} verified",
    )
    db.session.commit()
    return order


def compute_completion_stats(order: Order) -> dict:
    """Work-item completion counts for *order*, as recorded at delivery."""
    def _counts(model, done_clause):
        base = select(func.count(model.id)).where(model.order_id == order.id)
        total = db.session.execute(base).scalar() or 0
        completed = db.session.execute(base.where(done_clause)).scalar() or 0
        mandatory_total = db.session.execute(base.where(model.is_mandatory.is_(True))).scalar() or 0
        mandatory_done = db.session.execute(
            base.where(model.is_mandatory.is_(True), done_clause)
        ).scalar() or 0
        return {
            "total": total,
            "completed": completed,
            "mandatory_total": mandatory_total,
            "mandatory_remaining": mandatory_total - mandatory_done,
        }

    tasks = _counts(Task, Task.status == "COMPLETED")
    asking = _counts(AskingTask, AskingTask.completed_at.is_not(None))
    return {
        "total": tasks["total"] + asking["total"],
        "completed": tasks["completed"] + asking["completed"],
        "mandatory_total": tasks["mandatory_total"] + asking["mandatory_total"],
        "mandatory_remaining": tasks["mandatory_remaining"] + asking["mandatory_remaining"],
        "tasks": tasks,
        "asking_tasks": asking,
    }


def get_completion_stats(order_id) -> dict:
    return compute_completion_stats(get_order(order_id))


def deliver_order(caller, order_id, notes: str | None = None) -> Order:
    """
    {PENDING, IN_PROGRESS} → COMPLETED.

    Delivery does not require every mandatory item to be finished; the
    completion statistics are stored on the order and in the audit entry.
    Revision orders are closed through ``complete_revision`` instead.
    """
    check(can_deliver_order(caller.role), "order.deliver", caller)
    order = get_for_update(Order, order_id, "Order")
    if order.is_revision:
        raise InvalidTransitionError(
            "order", order.order_number, "deliver", order.status,
            "revision orders are closed with complete-revision",
        )
    previous = _transition(order, "deliver")

    stats = compute_completion_stats(order)
    order.completed_at = utcnow()
    order.delivery_stats_json = json.dumps(stats)
    if notes:
        order.notes = f"{order.notes}\n{notes}" if order.notes else notes

    write_audit(
        entity_type="order", entity_id=order.id, action="order.deliver",
        performed_by_id=caller.user_id,
        old_value={"status": previous},
        new_value={
            "status": order.status,
            "completed_at": order.completed_at.isoformat(),
            "completion_stats": stats,
        },
        description=(
            f"Order {order.order_number} delivered "
            f"({stats['completed']}/{stats['total']} done, "
            f"{stats['mandatory_remaining']} mandatory remaining)"
        ),
    )
    db.session.commit()
    if stats["mandatory_remaining"]:
        logger.info(
            "Order %s delivered with %d mandatory item(s) outstanding",
            order.order_number, stats["mandatory_remaining"],
        )
    return order


# ── Maintenance ──────────────────────────────────────────────────────────────


def _require_open(order: Order, action: str) -> None:
    if order.status == "COMPLETED":
        raise InvalidTransitionError("order", order.order_number, action, order.status,
                                     "order is already completed")


def extend_delivery(caller, order_id, delivery_date, delivery_time: str | None = None) -> Order:
    check(
        can_extend_delivery(caller.role, is_any_team_leader(caller.user_id)),
        "order.extend_delivery", caller,
    )
    new_date = parse_datetime(delivery_date, "delivery_date")
    if new_date is None:
        raise ValidationError("delivery_date is required", details={"delivery_date": "required"})
    parse_time_of_day(delivery_time)

    order = get_for_update(Order, order_id, "Order")
    _require_open(order, "extend_delivery")
    if new_date < ensure_utc(order.order_date):
        raise ValidationError(
            "delivery_date must not be before order_date",
            details={"delivery_date": "before order_date"},
        )

    old = snapshot("order", order, ["delivery_date", "delivery_time"])
    order.delivery_date = new_date
    if delivery_time is not None:
        order.delivery_time = delivery_time or None
    write_audit(
        entity_type="order", entity_id=order.id, action="order.extend_delivery",
        performed_by_id=caller.user_id,
        old_value=old, new_value=snapshot("order", order, ["delivery_date", "delivery_time"]),
    )
    db.session.commit()
    return order


def update_order(caller, order_id, data: dict) -> Order:
    check(can_modify_order(caller.role), "order.update", caller)
    order = get_for_update(Order, order_id, "Order")
    _require_open(order, "update")

    changes = {}
    for f in _UPDATABLE_FIELDS:
        if f not in data:
            continue
        val = data[f]
        if f == "customer_name":
            if not val or not str(val).strip():
                raise ValidationError("customer_name is required", details={f: "required"})
            val = str(val).strip()
        elif f == "customer_email":
            val = validate_email(val, f)
        elif f == "amount":
            val = parse_amount(val)
        elif f == "delivery_time":
            parse_time_of_day(val)
            val = val or None
        changes[f] = val

    old = snapshot("order", order, changes)
    for f, val in changes.items():
        setattr(order, f, val)
    write_audit(
        entity_type="order", entity_id=order.id, action="order.update",
        performed_by_id=caller.user_id, old_value=old,
        new_value=snapshot("order", order, changes),
    )
    db.session.commit()
    return order


def add_custom_task(caller, order_id, data: dict) -> Task:
    """Add a Task with no catalog service to an open order."""
    require_fields(data, "title", "team_id")
    team = get_or_raise(Team, data["team_id"], "Team")
    check(
        can_add_custom_task(caller.role, is_team_leader(caller.user_id, team.id)),
        "order.custom_task", caller,
    )
    order = get_for_update(Order, order_id, "Order")
    _require_open(order, "custom_task")

    priority = data.get("priority") or "MEDIUM"
    if priority not in TASK_PRIORITIES:
        raise ValidationError(f"priority must be one of {list(TASK_PRIORITIES)}",
                              details={"priority": "invalid"})
    deadline = parse_datetime(data.get("deadline"), "deadline") or order.delivery_date

    assignee_id = data.get("assigned_to")
    if assignee_id is not None:
        if not is_active_member(assignee_id, team.id):
            raise ValidationError("Assignee must be an active member of the team",
                                  details={"assigned_to": "not a team member"})

    task = Task(
        order_id=order.id,
        service_id=None,
        team_id=team.id,
        title=str(data["title"]).strip(),
        description=data.get("description"),
        assigned_to_id=assignee_id,
        status="ASSIGNED" if assignee_id is not None else "NOT_ASSIGNED",
        priority=priority,
        deadline=deadline,
        is_mandatory=as_bool(data.get("is_mandatory", False)),
        created_by_id=caller.user_id,
    )
    db.session.add(task)
    order.is_customized = True
    db.session.flush()
    write_audit(
        entity_type="task", entity_id=task.id, action="task.create_custom",
        performed_by_id=caller.user_id, new_value=snapshot("task", task),
        description=f"Custom task '{task.title}' added to order {order.order_number}",
    )
    db.session.commit()
    return task


# ── Service set edits ────────────────────────────────────────────────────────


def _service_items(order_id: int, service_id: int, *, lock: bool = False) -> list:
    """Tasks and asking tasks spawned on *order_id* by one catalog service."""
    items = []
    for model in (Task, AskingTask):
        stmt = select(model).where(model.order_id == order_id, model.service_id == service_id)
        if lock:
            stmt = stmt.with_for_update()
        items.extend(db.session.execute(stmt).scalars())
    return items


def _check_service_editor(caller, order: Order) -> None:
    check(
        can_edit_order_services(caller.role, order.created_by_id == caller.user_id),
        "order.services", caller,
        "only an admin or the order's creator may edit its services",
    )


def get_order_services(caller, order_id) -> dict:
    """
    Current service set of an order, with which services may still be
    removed, plus the active services its order type offers.
    """
    order = get_order(order_id)
    _check_service_editor(caller, order)

    current = []
    for link in order.order_services.order_by(OrderService.id):
        items = _service_items(order.id, link.service_id)
        assigned = any(i.assigned_to_id is not None for i in items)
        current.append({
            **link.to_dict(),
            "item_count": len(items),
            "has_assigned_items": assigned,
            "can_remove": not assigned,
        })
    available = [s for s in order.order_type.services if s is not None and s.is_active]
    return {
        "order": {
            "id": order.id,
            "order_number": order.order_number,
            "status": order.status,
            "is_customized": order.is_customized,
        },
        "current_services": current,
        "available_services": [s.to_dict() for s in available],
    }


def update_order_services(caller, order_id, service_ids) -> Order:
    """
    Replace the service set of an open order in one transaction.

    Added services fan out work items exactly as at creation. A removed
    service takes its unassigned items with it; removing one whose items
    are already assigned is refused. The order becomes customized.

    Raises:
        ForbiddenError, NotFoundError, InvalidTransitionError (completed order),
        ValidationError (bad ids, inactive service, assigned items).
    """
    if not isinstance(service_ids, list):
        raise ValidationError("service_ids must be a list", details={"service_ids": "invalid"})
    try:
        wanted = list(dict.fromkeys(int(s) for s in service_ids))
    except (TypeError, ValueError):
        raise ValidationError("service_ids must be integers",
                              details={"service_ids": "invalid"}) from None

    try:
        order = get_for_update(Order, order_id, "Order")
        _check_service_editor(caller, order)
        _require_open(order, "update_services")

        current = [link.service_id for link in order.order_services.order_by(OrderService.id)]
        removed = [s for s in current if s not in wanted]
        added = [s for s in wanted if s not in current]

        doomed = []
        for service_id in removed:
            items = _service_items(order.id, service_id, lock=True)
            if any(i.assigned_to_id is not None for i in items):
                raise ValidationError(
                    "Cannot remove a service with assigned tasks; unassign them first",
                    details={"service_ids": f"service {service_id} has assigned tasks"},
                )
            doomed.extend(items)

        new_services = []
        for service_id in added:
            service = db.session.get(Service, service_id)
            if service is None or not service.is_active:
                raise ValidationError(
                    "Some selected services are invalid or inactive",
                    details={"service_ids": f"service {service_id} is invalid or inactive"},
                )
            new_services.append(service)

        for item in doomed:
            db.session.delete(item)
        if removed:
            for link in order.order_services.filter(OrderService.service_id.in_(removed)):
                db.session.delete(link)

        auto_assigned = {"tasks": [], "asking_tasks": []}
        for service in new_services:
            _attach_service(order, service_entry(service), caller, auto_assigned)

        old = {"service_ids": current, "is_customized": order.is_customized}
        order.is_customized = True
        db.session.flush()
        write_audit(
            entity_type="order", entity_id=order.id, action="order.update_services",
            performed_by_id=caller.user_id, old_value=old,
            new_value={
                "service_ids": [s for s in current if s not in removed] + added,
                "is_customized": True,
                "auto_assigned": auto_assigned,
            },
            description=(
                f"Order {order.order_number} services updated: "
                f"removed {len(removed)}, added {len(added)}"
            ),
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        "Order %s services updated by user %s (-%d +%d)",
        order.order_number, caller.user_id, len(removed), len(added),
    )
    return order


def delete_order(caller, order_id) -> None:
    check(can_delete_order(caller.role), "order.delete", caller)
    order = get_for_update(Order, order_id, "Order")
    old = snapshot("order", order)
    write_audit(
        entity_type="order", entity_id=order.id, action="order.delete",
        performed_by_id=caller.user_id, old_value=old,
        description=f"Order {order.order_number} deleted",
    )
    db.session.delete(order)
    db.session.commit()
    logger.info("Order %s deleted by user %s", old["order_number"], caller.user_id)
