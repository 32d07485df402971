"""
Catalog — Service Layer.

Business logic for:
    - Order-type resolution:  the service list an order fans out into
    - Service CRUD:           slug generation, team / auto-assign validation
    - Order-type CRUD:        service association (frozen once orders exist)

All mutations are ADMIN-only and write one audit row each.
"""

import logging

from sqlalchemy import func, select

from orderhub.core.exceptions import ConflictError, DuplicateError, NotFoundError, ValidationError
from orderhub.models import db
from orderhub.models.audit import snapshot, write_audit
from orderhub.models.auth import User
from orderhub.models.catalog import SERVICE_TYPES, OrderType, OrderTypeService, Service
from orderhub.models.order import Order
from orderhub.models.team import Team
from orderhub.services.permission import can_administer, check
from orderhub.utils.helpers import as_bool, require_fields, slugify

logger = logging.getLogger(__name__)

_SERVICE_FIELDS = (
    "name", "description", "type", "team_id", "is_mandatory", "time_limit_days",
    "auto_assign_enabled", "auto_assign_user_id",
)
_ORDER_TYPE_FIELDS = ("name", "description", "time_limit_days")


# ── Resolution ───────────────────────────────────────────────────────────────


def resolve_order_type(order_type_id) -> dict:
    """
    Resolve an order type to the catalog services an order spawns.

    Returns:
        {"order_type": OrderType, "services": [{service_id, name, description,
         type, team_id, is_mandatory, auto_assign: {enabled, user_id}}]}

    Raises:
        NotFoundError: the order type, or any associated service, is missing or inactive.
    """
    order_type = db.session.get(OrderType, order_type_id) if order_type_id is not None else None
    if order_type is None or not order_type.is_active:
        raise NotFoundError("OrderType", order_type_id)

    services = []
    for link in order_type.service_links:
        svc = link.service
        if svc is None or not svc.is_active:
            raise NotFoundError("Service", link.service_id)
        services.append(service_entry(svc))
    return {"order_type": order_type, "services": services}


def service_entry(svc: Service) -> dict:
    """The fan-out description of one catalog service."""
    return {
        "service_id": svc.id,
        "name": svc.name,
        "description": svc.description,
        "type": svc.type,
        "team_id": svc.team_id,
        "is_mandatory": svc.is_mandatory,
        "auto_assign": {
            "enabled": svc.auto_assign_enabled,
            "user_id": svc.auto_assign_user_id,
        },
    }


# ── Services ─────────────────────────────────────────────────────────────────


def list_services(*, include_inactive: bool = False, team_id: int | None = None) -> list[Service]:
    stmt = select(Service).order_by(Service.name)
    if not include_inactive:
        stmt = stmt.where(Service.is_active.is_(True))
    if team_id is not None:
        stmt = stmt.where(Service.team_id == team_id)
    return list(db.session.execute(stmt).scalars())


def get_service(service_id: int) -> Service:
    svc = db.session.get(Service, service_id)
    if svc is None:
        raise NotFoundError("Service", service_id)
    return svc


def _unique_slug(model, name: str, exclude_id: int | None = None) -> str:
    slug = slugify(name)
    if not slug:
        raise ValidationError("name must contain letters or digits", details={"name": "invalid"})
    stmt = select(model.id).where(model.slug == slug)
    if exclude_id is not None:
        stmt = stmt.where(model.id != exclude_id)
    if db.session.execute(stmt).first() is not None:
        raise DuplicateError(model.__name__, "slug", slug)
    return slug


def _apply_service_fields(svc: Service, data: dict) -> None:
    if "type" in data and data["type"] not in SERVICE_TYPES:
        raise ValidationError(
            f"type must be one of {sorted(SERVICE_TYPES)}", details={"type": "invalid"},
        )
    if "team_id" in data and db.session.get(Team, data["team_id"]) is None:
        raise NotFoundError("Team", data["team_id"])
    for f in _SERVICE_FIELDS:
        if f in data:
            val = data[f]
            if f in ("is_mandatory", "auto_assign_enabled"):
                val = as_bool(val)
            setattr(svc, f, val)

    if svc.auto_assign_enabled:
        if not svc.auto_assign_user_id:
            raise ValidationError(
                "auto_assign_user_id is required when auto-assignment is enabled",
                details={"auto_assign_user_id": "required"},
            )
        target = db.session.get(User, svc.auto_assign_user_id)
        if target is None or not target.is_active:
            raise NotFoundError("User", svc.auto_assign_user_id)


def create_service(caller, data: dict) -> Service:
    check(can_administer(caller.role), "service.create", caller)
    require_fields(data, "name", "team_id")

    svc = Service(slug=_unique_slug(Service, data["name"]))
    _apply_service_fields(svc, data)
    db.session.add(svc)
    db.session.flush()
    write_audit(
        entity_type="service", entity_id=svc.id, action="service.create",
        performed_by_id=caller.user_id, new_value=snapshot("service", svc),
        description=f"Service '{svc.name}' created",
    )
    db.session.commit()
    logger.info("Service %s created by user %s", svc.slug, caller.user_id)
    return svc


def update_service(caller, service_id: int, data: dict) -> Service:
    check(can_administer(caller.role), "service.update", caller)
    svc = get_service(service_id)
    old = snapshot("service", svc)
    if "name" in data and data["name"] != svc.name:
        svc.slug = _unique_slug(Service, data["name"], exclude_id=svc.id)
    _apply_service_fields(svc, data)
    write_audit(
        entity_type="service", entity_id=svc.id, action="service.update",
        performed_by_id=caller.user_id, old_value=old, new_value=snapshot("service", svc),
    )
    db.session.commit()
    return svc


def set_service_active(caller, service_id: int, active: bool) -> Service:
    check(can_administer(caller.role), "service.set_active", caller)
    svc = get_service(service_id)
    old = {"is_active": svc.is_active}
    svc.is_active = bool(active)
    write_audit(
        entity_type="service", entity_id=svc.id,
        action="service.activate" if active else "service.deactivate",
        performed_by_id=caller.user_id, old_value=old, new_value={"is_active": svc.is_active},
    )
    db.session.commit()
    return svc


# ── Order types ──────────────────────────────────────────────────────────────


def list_order_types(*, include_inactive: bool = False) -> list[OrderType]:
    stmt = select(OrderType).order_by(OrderType.name)
    if not include_inactive:
        stmt = stmt.where(OrderType.is_active.is_(True))
    return list(db.session.execute(stmt).scalars())


def get_order_type(order_type_id: int) -> OrderType:
    ot = db.session.get(OrderType, order_type_id)
    if ot is None:
        raise NotFoundError("OrderType", order_type_id)
    return ot


def _order_count(order_type_id: int) -> int:
    return db.session.execute(
        select(func.count(Order.id)).where(Order.order_type_id == order_type_id)
    ).scalar() or 0


def _set_order_type_services(ot: OrderType, service_ids) -> None:
    if not isinstance(service_ids, list):
        raise ValidationError("service_ids must be a list", details={"service_ids": "invalid"})
    wanted = []
    for sid in dict.fromkeys(service_ids):
        if db.session.get(Service, sid) is None:
            raise NotFoundError("Service", sid)
        wanted.append(sid)
    # keep surviving link rows so the unique (order_type, service) pair is never re-inserted
    existing = {link.service_id: link for link in ot.service_links}
    ot.service_links = [existing.get(sid) or OrderTypeService(service_id=sid) for sid in wanted]


def create_order_type(caller, data: dict) -> OrderType:
    check(can_administer(caller.role), "order_type.create", caller)
    require_fields(data, "name")

    ot = OrderType(slug=_unique_slug(OrderType, data["name"]))
    for f in _ORDER_TYPE_FIELDS:
        if f in data:
            setattr(ot, f, data[f])
    _set_order_type_services(ot, data.get("service_ids") or [])
    db.session.add(ot)
    db.session.flush()
    new = snapshot("order_type", ot)
    new["service_ids"] = [link.service_id for link in ot.service_links]
    write_audit(
        entity_type="order_type", entity_id=ot.id, action="order_type.create",
        performed_by_id=caller.user_id, new_value=new,
        description=f"Order type '{ot.name}' created",
    )
    db.session.commit()
    return ot


def update_order_type(caller, order_type_id: int, data: dict) -> OrderType:
    """
    Update an order type. Replacing ``service_ids`` is refused once any
    order references the type; existing orders keep their OrderService snapshot.
    """
    check(can_administer(caller.role), "order_type.update", caller)
    ot = get_order_type(order_type_id)
    old = snapshot("order_type", ot)
    old["service_ids"] = [link.service_id for link in ot.service_links]

    if "name" in data and data["name"] != ot.name:
        ot.slug = _unique_slug(OrderType, data["name"], exclude_id=ot.id)
    for f in _ORDER_TYPE_FIELDS:
        if f in data:
            setattr(ot, f, data[f])
    if "service_ids" in data:
        if sorted(dict.fromkeys(data["service_ids"] or [])) != sorted(old["service_ids"]):
            if _order_count(ot.id):
                raise ConflictError(
                    "Service associations cannot change once orders use this order type",
                    details={"order_type_id": ot.id},
                )
            _set_order_type_services(ot, data["service_ids"] or [])

    db.session.flush()
    new = snapshot("order_type", ot)
    new["service_ids"] = [link.service_id for link in ot.service_links]
    write_audit(
        entity_type="order_type", entity_id=ot.id, action="order_type.update",
        performed_by_id=caller.user_id, old_value=old, new_value=new,
    )
    db.session.commit()
    return ot


def set_order_type_active(caller, order_type_id: int, active: bool) -> OrderType:
    check(can_administer(caller.role), "order_type.set_active", caller)
    ot = get_order_type(order_type_id)
    old = {"is_active": ot.is_active}
    ot.is_active = bool(active)
    write_audit(
        entity_type="order_type", entity_id=ot.id,
        action="order_type.activate" if active else "order_type.deactivate",
        performed_by_id=caller.user_id, old_value=old, new_value={"is_active": ot.is_active},
    )
    db.session.commit()
    return ot
