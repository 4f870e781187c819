"""Payment request housekeeping — details, supporting documents, trash and the request log.

Lifecycle transitions (submit/approve/reject/withdraw/resubmit) live in
approval_engine.  This module validates the submission details the engine
stores, attaches supporting documents, and soft-deletes.

Transaction policy: functions flush, never commit.
"""
import logging
from datetime import timedelta

from sqlalchemy import select

from payflow.core.exceptions import NotFoundError, ValidationError
from payflow.models import db
from payflow.models.payment_request import (
    DELIVERY_DAYS_TYPES,
    PaymentRequest,
    PaymentRequestFile,
    PaymentRequestLog,
    write_log,
)
from payflow.models.reference import (
    FIELD_SHIPPING_CONDITIONS,
    FIELD_URGENCY,
    DocumentType,
    PaymentRequestFieldOption,
    Status,
)

logger = logging.getLogger(__name__)

# Delivery estimate: internal approval, then customer payment, then delivery
APPROVAL_WORKING_DAYS = 3
PAYMENT_CALENDAR_DAYS = 14


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


# ── Submission details ───────────────────────────────────────────────────


def _option_id(data, key, field_code):
    option_id = data.get(key)
    if option_id is None:
        return None
    if not _is_int(option_id):
        raise ValidationError(f"{key} must be an integer", details={"field": key})
    option = db.session.get(PaymentRequestFieldOption, option_id)
    if option is None or option.field_code != field_code or not option.is_active:
        raise ValidationError(
            f"{key} is not an active '{field_code}' option",
            details={"field": key, "value": option_id},
        )
    return option_id


def validate_details(data) -> dict:
    """Check the optional request details and return them as column values.

    ``urgency_id`` / ``shipping_condition_id`` must reference an active
    option of the matching field; ``delivery_days`` is a positive integer.

    Raises:
        ValidationError: naming the offending field in ``details["field"]``.
    """
    details = {
        "urgency_id": _option_id(data, "urgency_id", FIELD_URGENCY),
        "shipping_condition_id": _option_id(data, "shipping_condition_id", FIELD_SHIPPING_CONDITIONS),
    }

    reason = data.get("urgency_reason")
    if reason is not None and not isinstance(reason, str):
        raise ValidationError("urgency_reason must be a string", details={"field": "urgency_reason"})
    details["urgency_reason"] = (reason or "").strip() or None

    days = data.get("delivery_days")
    if days is not None and (not _is_int(days) or days < 1):
        raise ValidationError("delivery_days must be a positive integer", details={"field": "delivery_days"})
    details["delivery_days"] = days

    days_type = data.get("delivery_days_type") or "working"
    if days_type not in DELIVERY_DAYS_TYPES:
        raise ValidationError(
            f"delivery_days_type must be one of {', '.join(DELIVERY_DAYS_TYPES)}",
            details={"field": "delivery_days_type"},
        )
    details["delivery_days_type"] = days_type

    total = data.get("total_files", 0)
    if not _is_int(total) or total < 0:
        raise ValidationError("total_files must be a non-negative integer", details={"field": "total_files"})
    details["total_files"] = total
    return details


def _add_working_days(start, days):
    current = start
    while days > 0:
        current += timedelta(days=1)
        if current.weekday() < 5:
            days -= 1
    return current


def estimate_delivery_date(pr):
    """Expected delivery date, or None when the request has no delivery term.

    Counting starts the day after submission: approval working days, then
    the customer payment period, then ``delivery_days`` of the request's
    ``delivery_days_type``.  Public holidays are not considered.
    """
    if not pr.delivery_days or pr.created_at is None:
        return None
    start = pr.created_at.date() + timedelta(days=1)
    after_approval = _add_working_days(start, APPROVAL_WORKING_DAYS)
    after_payment = after_approval + timedelta(days=PAYMENT_CALENDAR_DAYS)
    if pr.delivery_days_type == "calendar":
        return after_payment + timedelta(days=pr.delivery_days)
    return _add_working_days(after_payment, pr.delivery_days)


# ── Supporting documents ─────────────────────────────────────────────────


def validate_file(payload) -> dict:
    """Normalise one document reference.

    Raises:
        ValidationError: not an object, missing name/key/type, or unknown type.
    """
    if not isinstance(payload, dict):
        raise ValidationError("Each file must be an object", details={"file": payload})
    for key in ("file_name", "file_key"):
        if not isinstance(payload.get(key), str) or not payload[key].strip():
            raise ValidationError(f"{key} is required for every file", details={"field": key})
    type_id = payload.get("document_type_id")
    if not _is_int(type_id) or db.session.get(DocumentType, type_id) is None:
        raise ValidationError(
            "document_type_id must reference a document type",
            details={"field": "document_type_id", "value": type_id},
        )
    for key in ("file_size", "page_count"):
        value = payload.get(key)
        if value is not None and (not _is_int(value) or value < 0):
            raise ValidationError(f"{key} must be a non-negative integer", details={"field": key})
    mime_type = payload.get("mime_type")
    if mime_type is not None and not isinstance(mime_type, str):
        raise ValidationError("mime_type must be a string", details={"field": "mime_type"})
    return {
        "document_type_id": type_id,
        "file_name": payload["file_name"].strip(),
        "file_key": payload["file_key"].strip(),
        "file_size": payload.get("file_size"),
        "mime_type": mime_type or None,
        "page_count": payload.get("page_count"),
    }


def attach_files(pr, payloads, actor_user_id):
    """Store already-validated file dicts and bump the request's counters."""
    rows = [
        PaymentRequestFile(payment_request_id=pr.id, created_by=actor_user_id, **payload)
        for payload in payloads
    ]
    db.session.add_all(rows)
    pr.uploaded_files = (pr.uploaded_files or 0) + len(rows)
    pr.total_files = max(pr.total_files or 0, pr.uploaded_files)
    db.session.flush()
    return rows


def add_file(request_id, payload, actor_user_id):
    """Attach one supporting document to an existing request.

    The request row is locked so concurrent uploads keep the counters exact.
    """
    file_data = validate_file(payload)
    pr = db.session.execute(
        select(PaymentRequest)
        .where(PaymentRequest.id == request_id, PaymentRequest.is_deleted.is_(False))
        .with_for_update(of=PaymentRequest)
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if pr is None:
        raise NotFoundError(resource="PaymentRequest", resource_id=request_id)

    (row,) = attach_files(pr, [file_data], actor_user_id)
    write_log(
        payment_request_id=pr.id,
        action="file_added",
        actor_user_id=actor_user_id,
        details={"file_id": row.id, "file_name": row.file_name, "document_type_id": row.document_type_id},
    )
    logger.info("Supporting document attached: %s", row.file_name,
                extra={"payment_request_id": pr.id, "user_id": actor_user_id})
    return row


def list_files(request_id):
    """Documents attached to the request, oldest first."""
    get_request(request_id, include_deleted=True)
    return db.session.execute(
        select(PaymentRequestFile)
        .where(PaymentRequestFile.payment_request_id == request_id)
        .order_by(PaymentRequestFile.created_at, PaymentRequestFile.id)
    ).scalars().all()


# ── Listing & trash ──────────────────────────────────────────────────────


def list_requests(counterparty_id=None, status_code=None):
    """Query for requests not in the trash, newest first (caller paginates)."""
    q = PaymentRequest.query_active()
    if counterparty_id is not None:
        q = q.filter(PaymentRequest.counterparty_id == counterparty_id)
    if status_code:
        q = q.join(Status, Status.id == PaymentRequest.status_id).filter(Status.code == status_code)
    return q.order_by(PaymentRequest.created_at.desc(), PaymentRequest.id.desc())


def get_request(request_id, include_deleted=False):
    pr = db.session.get(PaymentRequest, request_id)
    if pr is None or (pr.is_deleted and not include_deleted):
        raise NotFoundError(resource="PaymentRequest", resource_id=request_id)
    return pr


def soft_delete(request_id, actor_user_id):
    pr = get_request(request_id)
    pr.soft_delete()
    db.session.flush()
    write_log(payment_request_id=pr.id, action="deleted", actor_user_id=actor_user_id)
    logger.info("Request moved to trash", extra={"payment_request_id": pr.id, "user_id": actor_user_id})
    return pr


def restore(request_id, actor_user_id):
    pr = get_request(request_id, include_deleted=True)
    if not pr.is_deleted:
        raise ValidationError("Payment request is not in the trash", details={"id": request_id})
    pr.restore()
    db.session.flush()
    write_log(payment_request_id=pr.id, action="restored", actor_user_id=actor_user_id)
    logger.info("Request restored from trash", extra={"payment_request_id": pr.id, "user_id": actor_user_id})
    return pr


def list_trash():
    return PaymentRequest.query_trash().order_by(
        PaymentRequest.deleted_at.desc(), PaymentRequest.id.desc(),
    ).all()


def list_logs(request_id):
    """Request log, oldest first."""
    get_request(request_id, include_deleted=True)
    return db.session.execute(
        select(PaymentRequestLog)
        .where(PaymentRequestLog.payment_request_id == request_id)
        .order_by(PaymentRequestLog.created_at, PaymentRequestLog.id)
    ).scalars().all()
