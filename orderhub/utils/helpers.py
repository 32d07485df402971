"""Shared parsing helpers used by services and blueprints.

ensure_utc:        naive → aware (SQLite hands back naive datetimes)
parse_datetime:    ISO / date-only / DD.MM.YYYY → aware datetime, raises ValidationError
parse_time_of_day: "HH:MM" → (hour, minute)
require_fields:    collects missing keys into one ValidationError
get_or_raise:      PK lookup raising NotFoundError
get_for_update:    PK lookup with a row lock, refreshed from the database
"""
import re
from datetime import date, datetime, time, timezone
from decimal import Decimal, InvalidOperation

from email_validator import EmailNotValidError, validate_email as _validate_email
from sqlalchemy import select

from orderhub.core.exceptions import NotFoundError, ValidationError
from orderhub.models import db

_TIME_RE = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value):
    """Attach UTC to a naive datetime; pass aware values and None through."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_datetime(value, field: str = "date"):
    """Parse an ISO datetime, ISO date or DD.MM.YYYY string to an aware datetime.

    Date-only input becomes midnight UTC. Empty input returns None.
    Raises ValidationError on anything else.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return ensure_utc(datetime.fromisoformat(text))
    except ValueError:
        pass
    try:
        return datetime.strptime(text, "%d.%m.%Y").replace(tzinfo=timezone.utc)
    except ValueError as exc:
        raise ValidationError(
            f"{field} is not a valid date",
            details={field: "invalid date"},
        ) from exc


def parse_time_of_day(value, field: str = "delivery_time"):
    """Validate an "HH:MM" string and return (hour, minute); None passes through."""
    if value is None or value == "":
        return None
    match = _TIME_RE.match(str(value).strip())
    if not match:
        raise ValidationError(f"{field} must be HH:MM", details={field: "invalid time"})
    return int(match.group(1)), int(match.group(2))


def combine_date_and_time(day: datetime, hhmm: str | None) -> datetime:
    """Return *day* with its clock set to *hhmm* (or unchanged when hhmm is empty)."""
    day = ensure_utc(day)
    parsed = parse_time_of_day(hhmm)
    if parsed is None:
        return day
    hour, minute = parsed
    return day.replace(hour=hour, minute=minute, second=0, microsecond=0)


def parse_amount(value, field: str = "amount") -> Decimal:
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError) as exc:
        raise ValidationError(f"{field} must be a number", details={field: "invalid number"}) from exc
    if not amount.is_finite() or amount <= 0:
        raise ValidationError(f"{field} must be greater than zero", details={field: "must be > 0"})
    return amount


def validate_email(value, field: str = "email"):
    """Normalise an email address; empty input returns None."""
    if not value:
        return None
    try:
        valid = _validate_email(str(value).strip(), check_deliverability=False)
    except EmailNotValidError as e:
        raise ValidationError(
            f"{field} is not a valid email address: {e}", details={field: "invalid email"},
        ) from e
    return valid.normalized


def require_fields(data: dict, *fields: str) -> None:
    """Raise one ValidationError naming every missing/blank field."""
    missing = {
        f: "required"
        for f in fields
        if data.get(f) is None or (isinstance(data.get(f), str) and not data[f].strip())
    }
    if missing:
        raise ValidationError(
            f"Missing required field(s): {', '.join(missing)}",
            details=missing,
        )


def slugify(name: str) -> str:
    """Lower-case *name* and collapse non-alphanumerics into single hyphens."""
    return re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")


def as_bool(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


# ── Lookups ──────────────────────────────────────────────────────────────────

def get_or_raise(model, pk, label=None):
    """Fetch a model instance by primary key or raise NotFoundError."""
    obj = db.session.get(model, pk) if pk is not None else None
    if obj is None:
        raise NotFoundError(label or model.__name__, pk)
    return obj


def get_for_update(model, pk, label=None):
    """Fetch and row-lock a model instance inside the current transaction.

    ``populate_existing`` discards any stale identity-map copy, so status
    preconditions are checked against what the lock actually protects.
    SQLite has no row locks; its single-writer transactions serialise instead.
    """
    obj = None
    if pk is not None:
        obj = db.session.execute(
            select(model)
            .where(model.id == pk)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
    if obj is None:
        raise NotFoundError(label or model.__name__, pk)
    return obj
