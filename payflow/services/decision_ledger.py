"""Decision ledger — one row per (request, cycle, stage, department).

Rows are seeded pending when a stage activates and updated exactly once
when the department decides.  Nothing here advances a request; that is the
engine's job.

Transaction policy: functions flush, never commit.
"""
import logging
from datetime import datetime, timezone

from sqlalchemy import func, select, update

from payflow.core.exceptions import (
    AlreadyDecidedError,
    DecisionNotFoundError,
    StageConfigMissingError,
    ValidationError,
)
from payflow.models import db
from payflow.models.approval import (
    DECISION_APPROVED,
    DECISION_PENDING,
    DECISION_REJECTED,
    ApprovalDecision,
    ApprovalDecisionFile,
)

logger = logging.getLogger(__name__)


def _row_filter(payment_request_id, cycle, stage_order, department_id=None):
    clauses = [
        ApprovalDecision.payment_request_id == payment_request_id,
        ApprovalDecision.cycle == cycle,
        ApprovalDecision.stage_order == stage_order,
    ]
    if department_id is not None:
        clauses.append(ApprovalDecision.department_id == department_id)
    return clauses


# ── Read ─────────────────────────────────────────────────────────────────


def list_decisions(payment_request_id, cycle=None):
    """Ledger rows for a request ordered by (cycle, stage_order, department)."""
    stmt = select(ApprovalDecision).where(ApprovalDecision.payment_request_id == payment_request_id)
    if cycle is not None:
        stmt = stmt.where(ApprovalDecision.cycle == cycle)
    stmt = stmt.order_by(
        ApprovalDecision.cycle, ApprovalDecision.stage_order, ApprovalDecision.department_id,
    )
    return db.session.execute(stmt).scalars().all()


def stage_rows(payment_request_id, cycle, stage_order):
    return db.session.execute(
        select(ApprovalDecision)
        .where(*_row_filter(payment_request_id, cycle, stage_order))
        .order_by(ApprovalDecision.department_id)
        .execution_options(populate_existing=True)
    ).scalars().all()


def count_pending(payment_request_id, cycle, stage_order) -> int:
    return db.session.execute(
        select(func.count(ApprovalDecision.id)).where(
            *_row_filter(payment_request_id, cycle, stage_order),
            ApprovalDecision.status == DECISION_PENDING,
        )
    ).scalar_one()


def pending_exists_clause(payment_request_id, cycle, stage_order):
    """EXISTS(pending row at the stage), for compare-and-set updates."""
    return (
        select(ApprovalDecision.id)
        .where(
            *_row_filter(payment_request_id, cycle, stage_order),
            ApprovalDecision.status == DECISION_PENDING,
        )
        .exists()
    )


# ── Write ────────────────────────────────────────────────────────────────


def seed_stage(payment_request_id, cycle, stage_order, department_ids):
    """Insert one pending row per department for the stage.

    A second seeding of the same (request, cycle, stage, department) fails
    on the unique key with IntegrityError.

    Raises:
        StageConfigMissingError: ``department_ids`` is empty.
    """
    if not department_ids:
        raise StageConfigMissingError(stage_order, payment_request_id)

    rows = [
        ApprovalDecision(
            payment_request_id=payment_request_id,
            cycle=cycle,
            stage_order=stage_order,
            department_id=dept_id,
            status=DECISION_PENDING,
            comment="",
        )
        for dept_id in department_ids
    ]
    db.session.add_all(rows)
    db.session.flush()

    logger.info(
        "Seeded stage %d with %d department(s)", stage_order, len(rows),
        extra={"payment_request_id": payment_request_id, "cycle": cycle, "stage_order": stage_order},
    )
    return rows


def record_decision(
    payment_request_id,
    cycle,
    stage_order,
    department_id,
    status,
    user_id,
    comment,
    files=None,
):
    """Move one pending row to approved/rejected.

    The UPDATE only matches a pending row, so two callers racing on the same
    row cannot both succeed.

    Args:
        files: optional list of ``{"file_name", "file_key", "file_size",
               "mime_type"}`` dicts stored as ApprovalDecisionFile rows.

    Raises:
        ValidationError: status is not approved/rejected.
        DecisionNotFoundError: no row for (request, cycle, stage, department).
        AlreadyDecidedError: the row exists but is no longer pending.
    """
    if status not in (DECISION_APPROVED, DECISION_REJECTED):
        raise ValidationError(
            "Decision status must be 'approved' or 'rejected'", details={"status": status},
        )

    now = datetime.now(timezone.utc)
    result = db.session.execute(
        update(ApprovalDecision)
        .where(
            *_row_filter(payment_request_id, cycle, stage_order, department_id),
            ApprovalDecision.status == DECISION_PENDING,
        )
        .values(status=status, user_id=user_id, comment=comment or "", decided_at=now)
        .execution_options(synchronize_session=False)
    )

    decision = db.session.execute(
        select(ApprovalDecision)
        .where(*_row_filter(payment_request_id, cycle, stage_order, department_id))
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()

    if result.rowcount == 0:
        if decision is None:
            raise DecisionNotFoundError(payment_request_id, stage_order, department_id)
        raise AlreadyDecidedError(decision.id, decision.status)

    for f in files or []:
        if not isinstance(f, dict) or not f.get("file_name") or not f.get("file_key"):
            raise ValidationError("Each file needs file_name and file_key", details={"file": f})
        db.session.add(ApprovalDecisionFile(
            decision_id=decision.id,
            file_name=f["file_name"],
            file_key=f["file_key"],
            file_size=f.get("file_size"),
            mime_type=f.get("mime_type"),
            created_by=user_id,
        ))
    db.session.flush()
    if files:
        db.session.refresh(decision, attribute_names=["files"])

    logger.info(
        "Decision recorded: %s", status,
        extra={
            "payment_request_id": payment_request_id,
            "cycle": cycle,
            "stage_order": stage_order,
            "department_id": department_id,
            "user_id": user_id,
        },
    )
    return decision
