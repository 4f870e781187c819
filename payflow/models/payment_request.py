"""
Payflow
Payment request aggregate.

Models:
    - PaymentRequest: the request itself; its stage/terminal fields are the
      visible result of the approval engine
    - PaymentRequestFile: supporting document metadata (bytes live in object storage)
    - PaymentRequestAssignment: append-only responsible-person history
    - PaymentRequestLog: immutable per-request audit trail
"""

import json
from datetime import datetime, timezone

from payflow.models import db


# ── Constants ────────────────────────────────────────────────────────────────

LOG_ACTIONS = {
    "submit",
    "withdraw",
    "resubmit",
    "stage_advanced",
    "approved",
    "rejected",
    "reconciled",
    "deleted",
    "restored",
    "assign",
    "file_added",
}

DELIVERY_DAYS_TYPES = ("working", "calendar")


def _utcnow():
    return datetime.now(timezone.utc)


class PaymentRequest(db.Model):
    """
    Payment request entity.

    Business rules:
    - At most one of approved_at / rejected_at / withdrawn_at is set.
    - current_stage is NULL exactly when the request is not mid-approval.
    - approval_cycle counts submission attempts (1 on first submit).
    - Never physically deleted: ``is_deleted`` moves it to the admin trash.
    - uploaded_files <= total_files; total_files is the count declared at
      submission and grows if more documents are attached later.
    """

    __tablename__ = "payment_requests"
    __table_args__ = (
        db.CheckConstraint(
            "(CASE WHEN approved_at IS NOT NULL THEN 1 ELSE 0 END"
            " + CASE WHEN rejected_at IS NOT NULL THEN 1 ELSE 0 END"
            " + CASE WHEN withdrawn_at IS NOT NULL THEN 1 ELSE 0 END) <= 1",
            name="ck_payment_request_single_terminal",
        ),
        db.CheckConstraint("uploaded_files <= total_files", name="ck_payment_request_file_count"),
        db.Index("ix_payment_request_stage", "current_stage"),
    )

    id = db.Column(db.Integer, primary_key=True)
    request_number = db.Column(db.String(30), nullable=False, unique=True)
    counterparty_id = db.Column(
        db.Integer, db.ForeignKey("counterparties.id", ondelete="RESTRICT"), nullable=False, index=True,
    )
    site_id = db.Column(
        db.Integer, db.ForeignKey("construction_sites.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    status_id = db.Column(db.Integer, db.ForeignKey("statuses.id"), nullable=False)
    comment = db.Column(db.Text, nullable=True)

    # Request details
    urgency_id = db.Column(
        db.Integer, db.ForeignKey("payment_request_field_options.id", ondelete="SET NULL"), nullable=True,
    )
    urgency_reason = db.Column(db.Text, nullable=True)
    shipping_condition_id = db.Column(
        db.Integer, db.ForeignKey("payment_request_field_options.id", ondelete="SET NULL"), nullable=True,
    )
    delivery_days = db.Column(db.Integer, nullable=True)
    delivery_days_type = db.Column(db.String(10), nullable=False, default="working", comment="working | calendar")
    total_files = db.Column(db.Integer, nullable=False, default=0)
    uploaded_files = db.Column(db.Integer, nullable=False, default=0)

    created_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    # Approval engine state
    current_stage = db.Column(db.Integer, nullable=True)
    approval_cycle = db.Column(db.Integer, nullable=False, default=1)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejected_at = db.Column(db.DateTime(timezone=True), nullable=True)
    withdrawn_at = db.Column(db.DateTime(timezone=True), nullable=True)
    withdrawal_comment = db.Column(db.Text, nullable=True)

    # Trash
    is_deleted = db.Column(db.Boolean, nullable=False, default=False, index=True)
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    status = db.relationship("Status", lazy="joined")
    counterparty = db.relationship("Counterparty", lazy="joined")
    site = db.relationship("ConstructionSite", lazy="joined")
    urgency = db.relationship("PaymentRequestFieldOption", foreign_keys=[urgency_id], lazy="joined")
    shipping_condition = db.relationship(
        "PaymentRequestFieldOption", foreign_keys=[shipping_condition_id], lazy="joined",
    )

    @classmethod
    def query_active(cls):
        """Requests not in the trash."""
        return cls.query.filter(cls.is_deleted.is_(False))

    @classmethod
    def query_trash(cls):
        return cls.query.filter(cls.is_deleted.is_(True))

    def soft_delete(self):
        self.is_deleted = True
        self.deleted_at = _utcnow()

    def restore(self):
        self.is_deleted = False
        self.deleted_at = None

    @property
    def is_terminal(self) -> bool:
        return any((self.approved_at, self.rejected_at, self.withdrawn_at))

    def to_dict(self):
        return {
            "id": self.id,
            "request_number": self.request_number,
            "counterparty_id": self.counterparty_id,
            "counterparty_name": self.counterparty.name if self.counterparty else None,
            "site_id": self.site_id,
            "site_name": self.site.name if self.site else None,
            "status_id": self.status_id,
            "status_code": self.status.code if self.status else None,
            "status_name": self.status.name if self.status else None,
            "status_color": self.status.color if self.status else None,
            "comment": self.comment,
            "urgency_id": self.urgency_id,
            "urgency_value": self.urgency.value if self.urgency else None,
            "urgency_reason": self.urgency_reason,
            "shipping_condition_id": self.shipping_condition_id,
            "shipping_condition_value": self.shipping_condition.value if self.shipping_condition else None,
            "delivery_days": self.delivery_days,
            "delivery_days_type": self.delivery_days_type,
            "total_files": self.total_files,
            "uploaded_files": self.uploaded_files,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "current_stage": self.current_stage,
            "approval_cycle": self.approval_cycle,
            "approved_at": self.approved_at.isoformat() if self.approved_at else None,
            "rejected_at": self.rejected_at.isoformat() if self.rejected_at else None,
            "withdrawn_at": self.withdrawn_at.isoformat() if self.withdrawn_at else None,
            "withdrawal_comment": self.withdrawal_comment,
            "is_deleted": self.is_deleted,
            "deleted_at": self.deleted_at.isoformat() if self.deleted_at else None,
        }

    def __repr__(self):
        return f"<PaymentRequest {self.id}: {self.request_number} stage={self.current_stage}>"


class PaymentRequestFile(db.Model):
    """Supporting document reference; the storage layer owns the bytes."""

    __tablename__ = "payment_request_files"

    id = db.Column(db.Integer, primary_key=True)
    payment_request_id = db.Column(
        db.Integer, db.ForeignKey("payment_requests.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    document_type_id = db.Column(
        db.Integer, db.ForeignKey("document_types.id", ondelete="RESTRICT"), nullable=False, index=True,
    )
    file_name = db.Column(db.String(500), nullable=False)
    file_key = db.Column(db.String(1000), nullable=False)
    file_size = db.Column(db.Integer, nullable=True)
    mime_type = db.Column(db.String(150), nullable=True)
    page_count = db.Column(db.Integer, nullable=True)
    created_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    document_type = db.relationship("DocumentType", lazy="joined")

    def to_dict(self):
        return {
            "id": self.id,
            "payment_request_id": self.payment_request_id,
            "document_type_id": self.document_type_id,
            "document_type_name": self.document_type.name if self.document_type else None,
            "file_name": self.file_name,
            "file_key": self.file_key,
            "file_size": self.file_size,
            "mime_type": self.mime_type,
            "page_count": self.page_count,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<PaymentRequestFile {self.id}: {self.file_name[:40]} pr={self.payment_request_id}>"


class PaymentRequestAssignment(db.Model):
    """
    Responsible-person assignment.

    Reassignment flips the previous current row to is_current=False and
    inserts a new current row; rows are never updated otherwise.
    """

    __tablename__ = "payment_request_assignments"
    __table_args__ = (
        db.Index("ix_assignment_request_current", "payment_request_id", "is_current"),
    )

    id = db.Column(db.Integer, primary_key=True)
    payment_request_id = db.Column(
        db.Integer, db.ForeignKey("payment_requests.id", ondelete="CASCADE"), nullable=False,
    )
    assigned_user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    assigned_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    assigned_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    is_current = db.Column(db.Boolean, nullable=False, default=True)

    assigned_user = db.relationship("User", foreign_keys=[assigned_user_id], lazy="joined")
    assigned_by_user = db.relationship("User", foreign_keys=[assigned_by_user_id], lazy="joined")

    def to_dict(self):
        return {
            "id": self.id,
            "payment_request_id": self.payment_request_id,
            "assigned_user_id": self.assigned_user_id,
            "assigned_user_email": self.assigned_user.email if self.assigned_user else None,
            "assigned_user_full_name": self.assigned_user.full_name if self.assigned_user else None,
            "assigned_by_user_id": self.assigned_by_user_id,
            "assigned_by_user_email": self.assigned_by_user.email if self.assigned_by_user else None,
            "assigned_at": self.assigned_at.isoformat() if self.assigned_at else None,
            "is_current": self.is_current,
        }


class PaymentRequestLog(db.Model):
    """Append-only log of lifecycle events for one request."""

    __tablename__ = "payment_request_logs"

    id = db.Column(db.Integer, primary_key=True)
    payment_request_id = db.Column(
        db.Integer, db.ForeignKey("payment_requests.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    action = db.Column(db.String(30), nullable=False, comment="submit | withdraw | resubmit | ...")
    actor_user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    details_json = db.Column(db.Text, default="{}")
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    @property
    def details(self) -> dict:
        try:
            return json.loads(self.details_json or "{}")
        except (json.JSONDecodeError, TypeError):
            return {}

    def to_dict(self):
        return {
            "id": self.id,
            "payment_request_id": self.payment_request_id,
            "action": self.action,
            "actor_user_id": self.actor_user_id,
            "details": self.details,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<PaymentRequestLog {self.id}: {self.action} pr={self.payment_request_id}>"


# ── Convenience writer ───────────────────────────────────────────────────────

def write_log(
    *,
    payment_request_id: int,
    action: str,
    actor_user_id: int | None = None,
    details: dict | None = None,
) -> PaymentRequestLog:
    """
    Append a single log row.  Uses ``flush`` so callers keep
    transaction control.
    """
    if action not in LOG_ACTIONS:
        raise ValueError(f"Unknown log action: {action}")
    entry = PaymentRequestLog(
        payment_request_id=payment_request_id,
        action=action,
        actor_user_id=actor_user_id,
        details_json=json.dumps(details or {}, default=str, ensure_ascii=False),
    )
    db.session.add(entry)
    db.session.flush()
    return entry
