"""
Status vocabulary lookups.

The engine never hardcodes status ids; it resolves them by
(entity_type, code) through here.
"""
import logging

from sqlalchemy import select

from payflow.core.exceptions import NotFoundError
from payflow.models import db
from payflow.models.reference import (
    DEFAULT_PAYMENT_REQUEST_STATUSES,
    STATUS_ENTITY_PAYMENT_REQUEST,
    Status,
)

logger = logging.getLogger(__name__)


def get_status(code, entity_type=STATUS_ENTITY_PAYMENT_REQUEST):
    """Return the Status row for ``code`` or raise NotFoundError."""
    status = db.session.execute(
        select(Status).where(Status.entity_type == entity_type, Status.code == code)
    ).scalar_one_or_none()
    if status is None:
        raise NotFoundError(resource="Status", resource_id=f"{entity_type}/{code}")
    return status


def get_status_id(code, entity_type=STATUS_ENTITY_PAYMENT_REQUEST) -> int:
    return get_status(code, entity_type).id


def list_statuses(entity_type=STATUS_ENTITY_PAYMENT_REQUEST):
    return db.session.execute(
        select(Status)
        .where(Status.entity_type == entity_type)
        .order_by(Status.display_order, Status.id)
    ).scalars().all()


def seed_default_statuses() -> int:
    """Insert the default payment-request statuses that are missing.

    Idempotent.  Flushes only; caller commits.

    Returns:
        Number of rows inserted.
    """
    existing = {
        s.code for s in list_statuses(STATUS_ENTITY_PAYMENT_REQUEST)
    }
    created = 0
    for row in DEFAULT_PAYMENT_REQUEST_STATUSES:
        if row["code"] in existing:
            continue
        db.session.add(Status(entity_type=STATUS_ENTITY_PAYMENT_REQUEST, **row))
        created += 1
    if created:
        db.session.flush()
        logger.info("Seeded %d payment request statuses", created)
    return created
