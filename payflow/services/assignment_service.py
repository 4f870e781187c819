"""Responsible-person assignment for payment requests.

Append-only: a reassignment retires the current row and inserts a new one,
so the full history stays queryable.

Transaction policy: functions flush, never commit.
"""
import logging

from sqlalchemy import select, update

from payflow.core.exceptions import NotFoundError, ValidationError
from payflow.models import db
from payflow.models.payment_request import PaymentRequest, PaymentRequestAssignment, write_log
from payflow.models.reference import User

logger = logging.getLogger(__name__)


def current_assignment(request_id):
    return db.session.execute(
        select(PaymentRequestAssignment).where(
            PaymentRequestAssignment.payment_request_id == request_id,
            PaymentRequestAssignment.is_current.is_(True),
        )
    ).scalar_one_or_none()


def assignment_history(request_id):
    """All assignments for a request, newest first."""
    return db.session.execute(
        select(PaymentRequestAssignment)
        .where(PaymentRequestAssignment.payment_request_id == request_id)
        .order_by(PaymentRequestAssignment.assigned_at.desc(), PaymentRequestAssignment.id.desc())
    ).scalars().all()


def assign_responsible(request_id, assigned_user_id, assigned_by_user_id):
    """Make ``assigned_user_id`` the responsible person for the request.

    Raises:
        NotFoundError: request or user unknown.
        ValidationError: assignee is inactive or not staff.
    """
    pr = db.session.get(PaymentRequest, request_id)
    if pr is None or pr.is_deleted:
        raise NotFoundError(resource="PaymentRequest", resource_id=request_id)
    user = db.session.get(User, assigned_user_id)
    if user is None:
        raise NotFoundError(resource="User", resource_id=assigned_user_id)
    if not user.is_active or not user.is_staff:
        raise ValidationError(
            "Assignee must be an active staff user",
            details={"user_id": assigned_user_id, "role": user.role},
        )

    previous = current_assignment(request_id)
    db.session.execute(
        update(PaymentRequestAssignment)
        .where(
            PaymentRequestAssignment.payment_request_id == request_id,
            PaymentRequestAssignment.is_current.is_(True),
        )
        .values(is_current=False)
        .execution_options(synchronize_session="fetch")
    )
    assignment = PaymentRequestAssignment(
        payment_request_id=request_id,
        assigned_user_id=assigned_user_id,
        assigned_by_user_id=assigned_by_user_id,
        is_current=True,
    )
    db.session.add(assignment)
    db.session.flush()

    write_log(
        payment_request_id=request_id,
        action="assign",
        actor_user_id=assigned_by_user_id,
        details={
            "assigned_user_id": assigned_user_id,
            "previous_user_id": previous.assigned_user_id if previous else None,
        },
    )
    logger.info("Request assigned to user %s", assigned_user_id,
                extra={"payment_request_id": request_id, "user_id": assigned_by_user_id})
    return assignment
