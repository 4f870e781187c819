"""Approver-availability alerts.

When a stage activates, every department in it is checked for someone who
can actually sign off for the request's site.  Gaps are reported as
in-app notifications so an admin can fix the reference data; they never
block the approval flow.

Dedup key: (type, payment_request, department, site, recipient) while the
notification is unresolved.  Resolution happens in reference_service when
the missing person is configured.
"""
import logging

from sqlalchemy import or_, select, true

from payflow.models import db
from payflow.models.notification import (
    NOTIFICATION_MISSING_MANAGER,
    NOTIFICATION_MISSING_SPECIALIST,
    Notification,
)
from payflow.models.reference import STAFF_ROLES, ConstructionSite, Department, User

logger = logging.getLogger(__name__)


# ── Eligibility ──────────────────────────────────────────────────────────


def eligible_specialist_clause(site_id):
    """Site authorization for a department user.

    With no site on the request, any active staff member of the department
    qualifies.
    """
    if site_id is None:
        return true()
    return or_(
        User.all_sites.is_(True),
        User.sites.any(ConstructionSite.id == site_id),
    )


def has_eligible_specialist(department_id, site_id) -> bool:
    return db.session.execute(
        select(User.id)
        .where(
            User.department_id == department_id,
            User.is_active.is_(True),
            User.role.in_(STAFF_ROLES),
            eligible_specialist_clause(site_id),
        )
        .limit(1)
    ).first() is not None


def _recipient_ids(roles):
    return list(
        db.session.execute(
            select(User.id)
            .where(User.is_active.is_(True), User.role.in_(roles))
            .order_by(User.id)
        ).scalars()
    )


def _already_notified(alert_type, payment_request_id, department_id, site_id):
    return set(
        db.session.execute(
            select(Notification.user_id).where(
                Notification.type == alert_type,
                Notification.payment_request_id == payment_request_id,
                Notification.department_id == department_id,
                Notification.site_id == site_id,
                Notification.resolved.is_(False),
            )
        ).scalars()
    )


def _emit(alert_type, recipients, *, title, message, payment_request_id, department_id, site_id):
    skip = _already_notified(alert_type, payment_request_id, department_id, site_id)
    created = []
    for user_id in recipients:
        if user_id in skip:
            continue
        notif = Notification(
            type=alert_type,
            title=title,
            message=message,
            user_id=user_id,
            payment_request_id=payment_request_id,
            department_id=department_id,
            site_id=site_id,
        )
        db.session.add(notif)
        created.append(notif)
    if created:
        db.session.flush()
    return created


# ── Public API ───────────────────────────────────────────────────────────


def _check(payment_request, department_ids):
    site_id = payment_request.site_id
    site_name = payment_request.site.name if payment_request.site else "no site"
    counterparty = payment_request.counterparty
    created = []

    for dept_id in department_ids:
        dept = db.session.get(Department, dept_id)
        if dept is None:
            continue

        if not has_eligible_specialist(dept_id, site_id):
            logger.warning(
                "No eligible specialist for department %s", dept.code,
                extra={
                    "payment_request_id": payment_request.id,
                    "department_id": dept_id,
                    "event_type": NOTIFICATION_MISSING_SPECIALIST,
                },
            )
            created += _emit(
                NOTIFICATION_MISSING_SPECIALIST,
                _recipient_ids(STAFF_ROLES),
                title=f"No specialist for {dept.name}",
                message=(
                    f"Payment request {payment_request.request_number}: department "
                    f"\"{dept.name}\" has no active specialist for site \"{site_name}\". "
                    f"Assign a specialist to the department and site."
                ),
                payment_request_id=payment_request.id,
                department_id=dept_id,
                site_id=site_id,
            )

        if dept.is_procurement and (counterparty is None or counterparty.responsible_manager_id is None):
            cp_name = counterparty.name if counterparty else "unknown counterparty"
            logger.warning(
                "No responsible manager for counterparty %s", cp_name,
                extra={
                    "payment_request_id": payment_request.id,
                    "department_id": dept_id,
                    "event_type": NOTIFICATION_MISSING_MANAGER,
                },
            )
            created += _emit(
                NOTIFICATION_MISSING_MANAGER,
                _recipient_ids(("admin",)),
                title=f"No responsible manager for {cp_name}",
                message=(
                    f"Payment request {payment_request.request_number}: counterparty "
                    f"\"{cp_name}\" has no responsible manager, required by "
                    f"\"{dept.name}\" (site \"{site_name}\")."
                ),
                payment_request_id=payment_request.id,
                department_id=dept_id,
                site_id=site_id,
            )

    return created


def check_stage_has_eligible_approvers(payment_request, department_ids):
    """Emit missing_specialist / missing_manager alerts for a newly active stage.

    Runs in a SAVEPOINT.  Any failure rolls the savepoint back and is logged;
    the caller's transaction carries on.

    Returns:
        List of created Notification rows (empty on failure).
    """
    try:
        with db.session.begin_nested():
            return _check(payment_request, department_ids)
    except Exception:
        logger.exception(
            "Approver availability check failed",
            extra={"payment_request_id": getattr(payment_request, "id", None)},
        )
        return []
