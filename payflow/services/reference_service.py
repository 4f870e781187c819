"""Reference data maintenance — departments, sites, counterparties, users,
document types and request field options.

Changes here can close approver-availability alerts: a user who now covers
a department/site resolves the matching ``missing_specialist`` rows, and a
counterparty that gets a responsible manager resolves its
``missing_manager`` rows.

Transaction policy: functions flush, never commit.
"""
import logging
from datetime import datetime, timezone

from sqlalchemy import func, or_, select, update

from payflow.core.exceptions import ConflictError, NotFoundError, ValidationError
from payflow.models import db
from payflow.models.notification import (
    NOTIFICATION_MISSING_MANAGER,
    NOTIFICATION_MISSING_SPECIALIST,
    Notification,
)
from payflow.models.payment_request import PaymentRequest, PaymentRequestFile
from payflow.models.reference import (
    FIELD_CODES,
    USER_ROLES,
    ConstructionSite,
    Counterparty,
    Department,
    DocumentType,
    PaymentRequestFieldOption,
    User,
)

logger = logging.getLogger(__name__)


def _require(data, *fields):
    missing = [f for f in fields if not data.get(f)]
    if missing:
        raise ValidationError(
            f"Missing required field(s): {', '.join(missing)}",
            details={"missing": missing},
        )


def _unique(model, field, value, exclude_id=None):
    q = select(model.id).where(getattr(model, field) == value)
    if exclude_id is not None:
        q = q.where(model.id != exclude_id)
    if db.session.execute(q).first() is not None:
        raise ConflictError(resource=model.__name__, field=field, value=value)


def _get(model, pk):
    obj = db.session.get(model, pk)
    if obj is None:
        raise NotFoundError(resource=model.__name__, resource_id=pk)
    return obj


# ── Departments & sites ──────────────────────────────────────────────────


def list_departments(active_only=False):
    q = select(Department).order_by(Department.name)
    if active_only:
        q = q.where(Department.is_active.is_(True))
    return db.session.execute(q).scalars().all()


def create_department(data):
    _require(data, "code", "name")
    _unique(Department, "code", data["code"])
    dept = Department(
        code=data["code"],
        name=data["name"],
        description=data.get("description", ""),
        is_procurement=bool(data.get("is_procurement", False)),
        is_active=bool(data.get("is_active", True)),
    )
    db.session.add(dept)
    db.session.flush()
    return dept


def list_sites():
    return db.session.execute(select(ConstructionSite).order_by(ConstructionSite.name)).scalars().all()


def create_site(data):
    _require(data, "name")
    site = ConstructionSite(name=data["name"], is_active=bool(data.get("is_active", True)))
    db.session.add(site)
    db.session.flush()
    return site


# ── Counterparties ───────────────────────────────────────────────────────


def list_counterparties():
    return db.session.execute(select(Counterparty).order_by(Counterparty.name)).scalars().all()


def create_counterparty(data):
    _require(data, "name")
    if data.get("inn"):
        _unique(Counterparty, "inn", data["inn"])
    manager_id = data.get("responsible_manager_id")
    if manager_id is not None:
        _get(User, manager_id)
    cp = Counterparty(
        name=data["name"],
        inn=data.get("inn") or None,
        address=data.get("address", ""),
        responsible_manager_id=manager_id,
    )
    db.session.add(cp)
    db.session.flush()
    return cp


def set_responsible_manager(counterparty_id, manager_id):
    """Set (or clear with None) the counterparty's responsible manager.

    Returns:
        (counterparty, resolved_count)
    """
    cp = _get(Counterparty, counterparty_id)
    if manager_id is not None:
        manager = _get(User, manager_id)
        if not manager.is_active or not manager.is_staff:
            raise ValidationError(
                "Responsible manager must be an active staff user",
                details={"user_id": manager_id},
            )
    cp.responsible_manager_id = manager_id
    db.session.flush()

    resolved = resolve_manager_alerts(cp) if manager_id is not None else 0
    logger.info("Counterparty %s manager set to %s (%d alert(s) resolved)",
                cp.id, manager_id, resolved)
    return cp, resolved


# ── Users ────────────────────────────────────────────────────────────────


def list_users(department_id=None):
    q = select(User).order_by(User.email)
    if department_id is not None:
        q = q.where(User.department_id == department_id)
    return db.session.execute(q).scalars().all()


def _apply_user_fields(user, data):
    if "role" in data:
        if data["role"] not in USER_ROLES:
            raise ValidationError(
                f"Invalid role '{data['role']}'", details={"allowed": sorted(USER_ROLES)},
            )
        user.role = data["role"]
    if "department_id" in data:
        if data["department_id"] is not None:
            _get(Department, data["department_id"])
        user.department_id = data["department_id"]
    if "counterparty_id" in data:
        if data["counterparty_id"] is not None:
            _get(Counterparty, data["counterparty_id"])
        user.counterparty_id = data["counterparty_id"]
    if "all_sites" in data:
        user.all_sites = bool(data["all_sites"])
    if "is_active" in data:
        user.is_active = bool(data["is_active"])
    if "full_name" in data:
        user.full_name = data["full_name"] or ""
    if "site_ids" in data:
        site_ids = list(data["site_ids"] or [])
        sites = db.session.execute(
            select(ConstructionSite).where(ConstructionSite.id.in_(site_ids))
        ).scalars().all() if site_ids else []
        unknown = sorted(set(site_ids) - {s.id for s in sites})
        if unknown:
            raise NotFoundError(resource="ConstructionSite", resource_id=",".join(map(str, unknown)))
        user.sites = sites


def create_user(data):
    _require(data, "email")
    _unique(User, "email", data["email"])
    user = User(email=data["email"], full_name=data.get("full_name", ""), role="user")
    _apply_user_fields(user, data)
    db.session.add(user)
    db.session.flush()
    resolve_specialist_alerts(user)
    return user


def update_user(user_id, data):
    """Update a user's role, department, site mapping or all_sites flag.

    Returns:
        (user, resolved_count)
    """
    user = _get(User, user_id)
    if "email" in data and data["email"] != user.email:
        _unique(User, "email", data["email"], exclude_id=user.id)
        user.email = data["email"]
    _apply_user_fields(user, data)
    db.session.flush()
    resolved = resolve_specialist_alerts(user)
    return user, resolved


# ── Document types ─────────────────────────────────────────────────────


def list_document_types():
    return db.session.execute(select(DocumentType).order_by(DocumentType.name)).scalars().all()


def create_document_type(data):
    _require(data, "name")
    name = str(data["name"]).strip()
    _unique(DocumentType, "name", name)
    doc_type = DocumentType(name=name)
    db.session.add(doc_type)
    db.session.flush()
    return doc_type


def update_document_type(type_id, data):
    doc_type = _get(DocumentType, type_id)
    _require(data, "name")
    name = str(data["name"]).strip()
    _unique(DocumentType, "name", name, exclude_id=doc_type.id)
    doc_type.name = name
    db.session.flush()
    return doc_type


def delete_document_type(type_id):
    """Delete a document type that no request file references."""
    doc_type = _get(DocumentType, type_id)
    in_use = db.session.execute(
        select(func.count(PaymentRequestFile.id)).where(PaymentRequestFile.document_type_id == type_id)
    ).scalar_one()
    if in_use:
        raise ValidationError(
            f"Document type is used by {in_use} file(s)",
            details={"document_type_id": type_id, "files": in_use},
        )
    db.session.delete(doc_type)
    db.session.flush()


# ── Request field options ───────────────────────────────────────────────


def _check_field_code(field_code):
    if field_code not in FIELD_CODES:
        raise ValidationError(
            f"Unknown field_code '{field_code}'", details={"allowed": sorted(FIELD_CODES)},
        )


def list_field_options(field_code=None, active_only=False):
    """Options ordered by field, then display_order."""
    q = select(PaymentRequestFieldOption).order_by(
        PaymentRequestFieldOption.field_code,
        PaymentRequestFieldOption.display_order,
        PaymentRequestFieldOption.id,
    )
    if field_code:
        _check_field_code(field_code)
        q = q.where(PaymentRequestFieldOption.field_code == field_code)
    if active_only:
        q = q.where(PaymentRequestFieldOption.is_active.is_(True))
    return db.session.execute(q).scalars().all()


def _display_order(value):
    if not isinstance(value, int) or isinstance(value, bool):
        raise ValidationError("display_order must be an integer", details={"field": "display_order"})
    return value


def _option_conflict(field_code, value, exclude_id=None):
    q = select(PaymentRequestFieldOption.id).where(
        PaymentRequestFieldOption.field_code == field_code,
        PaymentRequestFieldOption.value == value,
    )
    if exclude_id is not None:
        q = q.where(PaymentRequestFieldOption.id != exclude_id)
    if db.session.execute(q).first() is not None:
        raise ConflictError(resource="PaymentRequestFieldOption", field="value", value=value)


def create_field_option(data):
    _require(data, "field_code", "value")
    _check_field_code(data["field_code"])
    value = str(data["value"]).strip()
    _option_conflict(data["field_code"], value)
    display_order = data.get("display_order")
    if display_order is None:
        display_order = db.session.execute(
            select(func.coalesce(func.max(PaymentRequestFieldOption.display_order), 0))
            .where(PaymentRequestFieldOption.field_code == data["field_code"])
        ).scalar_one() + 1
    else:
        display_order = _display_order(display_order)
    option = PaymentRequestFieldOption(
        field_code=data["field_code"],
        value=value,
        is_active=bool(data.get("is_active", True)),
        display_order=display_order,
    )
    db.session.add(option)
    db.session.flush()
    return option


def update_field_option(option_id, data):
    """Rename, reorder or (de)activate an option; field_code is fixed."""
    option = _get(PaymentRequestFieldOption, option_id)
    if "value" in data:
        value = str(data["value"] or "").strip()
        if not value:
            raise ValidationError("value must not be empty", details={"field": "value"})
        _option_conflict(option.field_code, value, exclude_id=option.id)
        option.value = value
    if "display_order" in data:
        option.display_order = _display_order(data["display_order"])
    if "is_active" in data:
        option.is_active = bool(data["is_active"])
    db.session.flush()
    return option


def delete_field_option(option_id):
    """Delete an option no request uses; used options can only be deactivated."""
    option = _get(PaymentRequestFieldOption, option_id)
    in_use = db.session.execute(
        select(func.count(PaymentRequest.id)).where(or_(
            PaymentRequest.urgency_id == option_id,
            PaymentRequest.shipping_condition_id == option_id,
        ))
    ).scalar_one()
    if in_use:
        raise ValidationError(
            f"Option is used by {in_use} request(s); deactivate it instead",
            details={"option_id": option_id, "requests": in_use},
        )
    db.session.delete(option)
    db.session.flush()


# ── Alert resolution ─────────────────────────────────────────────────────


def _resolve(clauses) -> int:
    ids = list(
        db.session.execute(
            select(Notification.id).where(Notification.resolved.is_(False), *clauses)
        ).scalars()
    )
    if not ids:
        return 0
    db.session.execute(
        update(Notification)
        .where(Notification.id.in_(ids))
        .values(resolved=True, resolved_at=datetime.now(timezone.utc))
        .execution_options(synchronize_session="fetch")
    )
    return len(ids)


def resolve_specialist_alerts(user) -> int:
    """Resolve open missing_specialist alerts this user now covers."""
    if not user.is_active or not user.is_staff or user.department_id is None:
        return 0
    clauses = [
        Notification.type == NOTIFICATION_MISSING_SPECIALIST,
        Notification.department_id == user.department_id,
    ]
    if not user.all_sites:
        site_ids = [s.id for s in user.sites]
        clauses.append(or_(Notification.site_id.is_(None), Notification.site_id.in_(site_ids)))
    resolved = _resolve(clauses)
    if resolved:
        logger.info("Resolved %d missing_specialist alert(s) via user %s", resolved, user.id,
                    extra={"department_id": user.department_id})
    return resolved


def resolve_manager_alerts(counterparty) -> int:
    """Resolve open missing_manager alerts for the counterparty's requests."""
    request_ids = select(PaymentRequest.id).where(PaymentRequest.counterparty_id == counterparty.id)
    return _resolve([
        Notification.type == NOTIFICATION_MISSING_MANAGER,
        Notification.payment_request_id.in_(request_ids),
    ])
