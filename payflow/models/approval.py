"""
Payflow
Approval chain models.

Models:
    - ApprovalStage: chain configuration, one row per (stage_order, department)
    - ApprovalDecision: ledger row, one per (request, cycle, stage_order, department)
    - ApprovalDecisionFile: metadata of a file attached to a decision

Several ApprovalStage rows sharing a stage_order express parallel sign-off
within that stage.  Decision rows are seeded when a stage activates,
updated once when a department decides, and never deleted.
"""

from datetime import datetime, timezone

from payflow.models import db


# ── Constants ────────────────────────────────────────────────────────────────

DECISION_PENDING = "pending"
DECISION_APPROVED = "approved"
DECISION_REJECTED = "rejected"


def _utcnow():
    return datetime.now(timezone.utc)


class ApprovalStage(db.Model):
    """One department's slot in one stage of the chain."""

    __tablename__ = "approval_stages"
    __table_args__ = (
        db.UniqueConstraint("stage_order", "department_id", name="uq_stage_department"),
        db.CheckConstraint("stage_order >= 1", name="ck_stage_order_positive"),
    )

    id = db.Column(db.Integer, primary_key=True)
    stage_order = db.Column(db.Integer, nullable=False, index=True)
    department_id = db.Column(
        db.Integer, db.ForeignKey("departments.id", ondelete="CASCADE"), nullable=False,
    )
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    department = db.relationship("Department", lazy="joined")

    def to_dict(self):
        return {
            "id": self.id,
            "stage_order": self.stage_order,
            "department_id": self.department_id,
            "department_name": self.department.name if self.department else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<ApprovalStage {self.stage_order}: dept={self.department_id}>"


class ApprovalDecision(db.Model):
    """
    Decision ledger row.

    Business rules:
    - ``cycle`` is the submission attempt the row belongs to; a resubmission
      seeds fresh rows under the next cycle and never touches older ones.
    - The unique key makes a duplicate seeding of the same stage fail at the
      database, whatever the caller did.
    - A stage is complete when none of its rows for the cycle is pending.
    """

    __tablename__ = "approval_decisions"
    __table_args__ = (
        db.UniqueConstraint(
            "payment_request_id", "cycle", "stage_order", "department_id",
            name="uq_decision_request_cycle_stage_department",
        ),
        db.Index("ix_decision_request_stage_status", "payment_request_id", "cycle", "stage_order", "status"),
        db.Index("ix_decision_department_status", "department_id", "status"),
    )

    id = db.Column(db.Integer, primary_key=True)
    payment_request_id = db.Column(
        db.Integer, db.ForeignKey("payment_requests.id", ondelete="CASCADE"), nullable=False,
    )
    cycle = db.Column(db.Integer, nullable=False, default=1)
    stage_order = db.Column(db.Integer, nullable=False)
    department_id = db.Column(
        db.Integer, db.ForeignKey("departments.id", ondelete="RESTRICT"), nullable=False,
    )
    status = db.Column(db.String(20), nullable=False, default=DECISION_PENDING,
                       comment="pending | approved | rejected")
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    comment = db.Column(db.Text, nullable=False, default="")
    decided_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    department = db.relationship("Department", lazy="joined")
    user = db.relationship("User", lazy="joined")
    files = db.relationship(
        "ApprovalDecisionFile", backref="decision", lazy="selectin",
        cascade="all, delete-orphan", order_by="ApprovalDecisionFile.id",
    )

    @property
    def is_pending(self) -> bool:
        return self.status == DECISION_PENDING

    def to_dict(self):
        return {
            "id": self.id,
            "payment_request_id": self.payment_request_id,
            "cycle": self.cycle,
            "stage_order": self.stage_order,
            "department_id": self.department_id,
            "department_name": self.department.name if self.department else None,
            "status": self.status,
            "user_id": self.user_id,
            "user_email": self.user.email if self.user else None,
            "comment": self.comment,
            "decided_at": self.decided_at.isoformat() if self.decided_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "files": [f.to_dict() for f in self.files],
        }

    def __repr__(self):
        return (
            f"<ApprovalDecision {self.id}: pr={self.payment_request_id} c{self.cycle} "
            f"s{self.stage_order} d{self.department_id} {self.status}>"
        )


class ApprovalDecisionFile(db.Model):
    """File reference produced by the storage layer; bytes never pass through here."""

    __tablename__ = "approval_decision_files"

    id = db.Column(db.Integer, primary_key=True)
    decision_id = db.Column(
        db.Integer, db.ForeignKey("approval_decisions.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    file_name = db.Column(db.String(500), nullable=False)
    file_key = db.Column(db.String(1000), nullable=False)
    file_size = db.Column(db.Integer, nullable=True)
    mime_type = db.Column(db.String(150), nullable=True)
    created_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "decision_id": self.decision_id,
            "file_name": self.file_name,
            "file_key": self.file_key,
            "file_size": self.file_size,
            "mime_type": self.mime_type,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
