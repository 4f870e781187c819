"""Approval engine — drives a payment request through the approval chain.

States derived from the request row:

    NotStarted ──submit──▶ AtStage(1) ──…──▶ AtStage(n) ──▶ Approved
                                │                 │
                                └──── reject ─────┴──▶ Rejected
    any non-terminal ──withdraw──▶ Withdrawn
    Rejected | Withdrawn ──resubmit──▶ AtStage(1) (next cycle)

Concurrency:
    - Every mutating operation locks the request row (SELECT … FOR UPDATE)
      for the length of its transaction.
    - Stage advancement is a compare-and-set UPDATE guarded by
      ``current_stage = n AND NOT EXISTS(pending at n)``; only the caller
      whose UPDATE matches seeds the next stage.
    - The ledger's unique key rejects a duplicate seeding outright.

Transaction policy: each public operation commits exactly once on success
and rolls back on any error.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from flask import current_app
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from payflow.core.exceptions import (
    ConflictError,
    InvalidStateError,
    NotFoundError,
    StageConfigMissingError,
    ValidationError,
)
from payflow.models import db
from payflow.models.approval import (
    DECISION_APPROVED,
    DECISION_PENDING,
    DECISION_REJECTED,
    ApprovalDecision,
)
from payflow.models.payment_request import PaymentRequest, write_log
from payflow.models.reference import ConstructionSite, Counterparty
from payflow.services import (
    approval_alerts,
    decision_ledger,
    payment_request_service,
    stage_config,
    status_service,
)

logger = logging.getLogger(__name__)


# ── States & outcomes ────────────────────────────────────────────────────

STATE_NOT_STARTED = "NotStarted"
STATE_AT_STAGE = "AtStage"
STATE_APPROVED = "Approved"
STATE_REJECTED = "Rejected"
STATE_WITHDRAWN = "Withdrawn"

OUTCOME_RECORDED = "recorded"     # decision stored, stage still has pending rows
OUTCOME_ADVANCED = "advanced"
OUTCOME_APPROVED = "approved"
OUTCOME_REJECTED = "rejected"
OUTCOME_RESEEDED = "reseeded"
OUTCOME_NOOP = "noop"


@dataclass
class DecisionResult:
    """What an approve/reject call did."""
    payment_request: PaymentRequest
    decision: ApprovalDecision
    outcome: str

    def to_dict(self) -> dict:
        return {
            "outcome": self.outcome,
            "state": derive_state(self.payment_request),
            "payment_request": self.payment_request.to_dict(),
            "decision": self.decision.to_dict(),
        }


def derive_state(payment_request) -> str:
    """Engine state name for a request row."""
    if payment_request.approved_at is not None:
        return STATE_APPROVED
    if payment_request.rejected_at is not None:
        return STATE_REJECTED
    if payment_request.withdrawn_at is not None:
        return STATE_WITHDRAWN
    if payment_request.current_stage is None:
        return STATE_NOT_STARTED
    return STATE_AT_STAGE


def _now():
    return datetime.now(timezone.utc)


# ── Private helpers ──────────────────────────────────────────────────────


def _lock_request(request_id) -> PaymentRequest:
    """Load the request with a row lock held until commit/rollback."""
    pr = db.session.execute(
        select(PaymentRequest)
        .where(PaymentRequest.id == request_id, PaymentRequest.is_deleted.is_(False))
        .with_for_update(of=PaymentRequest)
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if pr is None:
        raise NotFoundError(resource="PaymentRequest", resource_id=request_id)
    return pr


def _compare_and_set(pr, stage_order, cycle, values, *, require_stage_complete=True) -> bool:
    """UPDATE the request only if it still sits at (stage_order, cycle).

    Returns True when this call won the transition.
    """
    conditions = [
        PaymentRequest.id == pr.id,
        PaymentRequest.current_stage == stage_order,
        PaymentRequest.approval_cycle == cycle,
    ]
    if require_stage_complete:
        conditions.append(~decision_ledger.pending_exists_clause(pr.id, cycle, stage_order))
    result = db.session.execute(
        update(PaymentRequest)
        .where(*conditions)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    db.session.refresh(pr)
    return result.rowcount == 1


def _log_extra(pr, **kw):
    extra = {"payment_request_id": pr.id, "cycle": pr.approval_cycle}
    extra.update(kw)
    return extra


def _activate_first_stage(pr):
    """Seed stage 1 for the request's current cycle, or leave it unstaged."""
    dept_ids = stage_config.departments_for_stage(1)
    if not dept_ids:
        pr.current_stage = None
        db.session.flush()
        logger.info("No approval chain configured; request left unstaged", extra=_log_extra(pr))
        return []
    pr.current_stage = 1
    db.session.flush()
    decision_ledger.seed_stage(pr.id, pr.approval_cycle, 1, dept_ids)
    approval_alerts.check_stage_has_eligible_approvers(pr, dept_ids)
    return dept_ids


def _advance_or_finalize(pr, stage_order, cycle, actor_user_id) -> str:
    """Move a request past a fully approved stage.

    Looks up stage ``stage_order + 1`` live; advances there if configured,
    otherwise finalizes as approved.  Either move is a compare-and-set, so a
    caller that lost the race just returns OUTCOME_RECORDED.
    """
    if decision_ledger.count_pending(pr.id, cycle, stage_order):
        return OUTCOME_RECORDED

    next_stage = stage_order + 1
    next_depts = stage_config.departments_for_stage(next_stage)

    if next_depts:
        if not _compare_and_set(pr, stage_order, cycle, {"current_stage": next_stage}):
            return OUTCOME_RECORDED
        decision_ledger.seed_stage(pr.id, cycle, next_stage, next_depts)
        write_log(
            payment_request_id=pr.id,
            action="stage_advanced",
            actor_user_id=actor_user_id,
            details={"cycle": cycle, "from_stage": stage_order, "to_stage": next_stage},
        )
        logger.info(
            "Advanced to stage %d", next_stage,
            extra=_log_extra(pr, stage_order=next_stage, event_type="stage_advanced"),
        )
        approval_alerts.check_stage_has_eligible_approvers(pr, next_depts)
        return OUTCOME_ADVANCED

    won = _compare_and_set(pr, stage_order, cycle, {
        "current_stage": None,
        "approved_at": _now(),
        "status_id": status_service.get_status_id("approved"),
    })
    if not won:
        return OUTCOME_RECORDED
    write_log(
        payment_request_id=pr.id,
        action="approved",
        actor_user_id=actor_user_id,
        details={"cycle": cycle, "final_stage": stage_order},
    )
    logger.info("Payment request approved", extra=_log_extra(pr, stage_order=stage_order, event_type="approved"))
    return OUTCOME_APPROVED


def _finalize_rejected(pr, stage_order, cycle, actor_user_id, comment) -> None:
    won = _compare_and_set(
        pr, stage_order, cycle,
        {
            "current_stage": None,
            "rejected_at": _now(),
            "status_id": status_service.get_status_id("rejected"),
        },
        require_stage_complete=False,
    )
    if not won:
        raise InvalidStateError("Request moved on while the rejection was recorded", state=derive_state(pr))
    write_log(
        payment_request_id=pr.id,
        action="rejected",
        actor_user_id=actor_user_id,
        details={"cycle": cycle, "stage_order": stage_order, "comment": comment or ""},
    )
    logger.info("Payment request rejected", extra=_log_extra(pr, stage_order=stage_order, event_type="rejected"))


def _decide(request_id, department_id, acting_user_id, comment, files, status) -> DecisionResult:
    try:
        pr = _lock_request(request_id)
        if pr.current_stage is None:
            raise InvalidStateError(
                f"Payment request {pr.request_number} is not awaiting approval",
                state=derive_state(pr),
            )
        stage_order, cycle = pr.current_stage, pr.approval_cycle

        if not decision_ledger.stage_rows(pr.id, cycle, stage_order):
            raise StageConfigMissingError(stage_order, pr.id)

        decision = decision_ledger.record_decision(
            pr.id, cycle, stage_order, department_id, status, acting_user_id, comment, files=files,
        )

        if status == DECISION_REJECTED:
            _finalize_rejected(pr, stage_order, cycle, acting_user_id, comment)
            outcome = OUTCOME_REJECTED
        else:
            outcome = _advance_or_finalize(pr, stage_order, cycle, acting_user_id)

        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return DecisionResult(payment_request=pr, decision=decision, outcome=outcome)


# Attempts at a fresh request number when a concurrent submit takes ours
REQUEST_NUMBER_ATTEMPTS = 5


def _next_request_number(skip=0) -> str:
    """Next number after the newest one, ``skip`` places further on.

    The newest row is locked so concurrent submitters queue on it; a submit
    that still collides on the unique key retries with a larger ``skip``.
    """
    prefix = current_app.config.get("REQUEST_NUMBER_PREFIX", "PR-")
    last = db.session.execute(
        select(PaymentRequest.request_number)
        .where(PaymentRequest.request_number.like(f"{prefix}%"))
        .order_by(PaymentRequest.id.desc())
        .limit(1)
        .with_for_update()
    ).scalar_one_or_none()
    num = 1
    if last:
        try:
            num = int(last[len(prefix):]) + 1
        except ValueError:
            logger.warning("Unparseable request number %r, numbering from 1", last)
    return f"{prefix}{num + skip:06d}"


def _is_number_collision(exc: IntegrityError) -> bool:
    return "request_number" in str(exc.orig)


# ── Public API ───────────────────────────────────────────────────────────


def submit_request(data, created_by) -> PaymentRequest:
    """Create a request in status ``sent`` and activate stage 1.

    Args:
        data: ``{"counterparty_id", "site_id"?, "comment"?, "urgency_id"?,
              "urgency_reason"?, "shipping_condition_id"?, "delivery_days"?,
              "delivery_days_type"?, "total_files"?, "files"?}``.
              ``files`` entries need ``document_type_id``, ``file_name``
              and ``file_key``.
        created_by: acting user id.

    Raises:
        ValidationError: counterparty_id missing or a detail/file is invalid.
        NotFoundError: counterparty or site unknown.
        ConflictError: no free request number after REQUEST_NUMBER_ATTEMPTS.
    """
    counterparty_id = data.get("counterparty_id")
    if not counterparty_id:
        raise ValidationError("counterparty_id is required", details={"field": "counterparty_id"})
    files = data.get("files") or []
    if not isinstance(files, list):
        raise ValidationError("files must be a list", details={"field": "files"})

    for attempt in range(REQUEST_NUMBER_ATTEMPTS):
        try:
            number = _next_request_number(skip=attempt)
            pr = _submit_once(data, counterparty_id, files, created_by, number)
            db.session.commit()
            break
        except IntegrityError as exc:
            db.session.rollback()
            if not _is_number_collision(exc):
                raise
            logger.warning("Request number %s taken, retrying (attempt %d)", number, attempt + 1,
                           extra={"user_id": created_by})
        except Exception:
            db.session.rollback()
            raise
    else:
        raise ConflictError(resource="PaymentRequest", field="request_number", value=number)

    logger.info("Payment request %s submitted", pr.request_number,
                extra=_log_extra(pr, user_id=created_by, event_type="submit"))
    return pr


def _submit_once(data, counterparty_id, files, created_by, request_number) -> PaymentRequest:
    if db.session.get(Counterparty, counterparty_id) is None:
        raise NotFoundError(resource="Counterparty", resource_id=counterparty_id)
    site_id = data.get("site_id")
    if site_id is not None and db.session.get(ConstructionSite, site_id) is None:
        raise NotFoundError(resource="ConstructionSite", resource_id=site_id)
    details = payment_request_service.validate_details(data)
    file_rows = [payment_request_service.validate_file(f) for f in files]

    pr = PaymentRequest(
        request_number=request_number,
        counterparty_id=counterparty_id,
        site_id=site_id,
        status_id=status_service.get_status_id("sent"),
        comment=data.get("comment"),
        created_by=created_by,
        approval_cycle=1,
        uploaded_files=0,
        **details,
    )
    db.session.add(pr)
    db.session.flush()
    if file_rows:
        payment_request_service.attach_files(pr, file_rows, created_by)

    dept_ids = _activate_first_stage(pr)
    write_log(
        payment_request_id=pr.id,
        action="submit",
        actor_user_id=created_by,
        details={
            "request_number": pr.request_number,
            "stage_1_departments": dept_ids,
            "files": len(file_rows),
        },
    )
    return pr


def approve(request_id, department_id, acting_user_id, comment="", files=None) -> DecisionResult:
    """Record a department's approval at the current stage and advance if complete.

    Raises:
        NotFoundError: request unknown or in the trash.
        InvalidStateError: request is not at a stage.
        StageConfigMissingError: the current stage has no ledger rows.
        DecisionNotFoundError: the department is not part of the current stage.
        AlreadyDecidedError: the department already decided this stage.
    """
    return _decide(request_id, department_id, acting_user_id, comment, files, DECISION_APPROVED)


def reject(request_id, department_id, acting_user_id, comment="", files=None) -> DecisionResult:
    """Record a rejection and finalize the request as rejected.

    Other pending rows at the stage stay pending and are ignored from then on.
    """
    return _decide(request_id, department_id, acting_user_id, comment, files, DECISION_REJECTED)


def withdraw(request_id, acting_user_id, comment="") -> PaymentRequest:
    """Withdraw a non-terminal request.  The ledger is left untouched."""
    try:
        pr = _lock_request(request_id)
        if pr.is_terminal:
            raise InvalidStateError(
                f"Payment request {pr.request_number} cannot be withdrawn",
                state=derive_state(pr),
            )
        from_stage = pr.current_stage
        pr.status_id = status_service.get_status_id("withdrawn")
        pr.withdrawn_at = _now()
        pr.withdrawal_comment = comment or None
        pr.current_stage = None
        db.session.flush()
        write_log(
            payment_request_id=pr.id,
            action="withdraw",
            actor_user_id=acting_user_id,
            details={"cycle": pr.approval_cycle, "from_stage": from_stage, "comment": comment or ""},
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info("Payment request withdrawn", extra=_log_extra(pr, user_id=acting_user_id, event_type="withdraw"))
    return pr


def resubmit(request_id, acting_user_id, comment="") -> PaymentRequest:
    """Start a new approval cycle for a rejected or withdrawn request.

    Earlier cycles' ledger rows are kept as history.
    """
    try:
        pr = _lock_request(request_id)
        state = derive_state(pr)
        if state not in (STATE_REJECTED, STATE_WITHDRAWN):
            raise InvalidStateError(
                f"Payment request {pr.request_number} cannot be resubmitted",
                state=state,
            )
        previous_cycle = pr.approval_cycle
        pr.rejected_at = None
        pr.withdrawn_at = None
        pr.approved_at = None
        pr.withdrawal_comment = None
        pr.status_id = status_service.get_status_id("sent")
        pr.approval_cycle = previous_cycle + 1
        db.session.flush()

        dept_ids = _activate_first_stage(pr)
        write_log(
            payment_request_id=pr.id,
            action="resubmit",
            actor_user_id=acting_user_id,
            details={
                "previous_state": state,
                "cycle": pr.approval_cycle,
                "stage_1_departments": dept_ids,
                "comment": comment or "",
            },
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info("Payment request resubmitted", extra=_log_extra(pr, user_id=acting_user_id, event_type="resubmit"))
    return pr


# ── Reconciliation ───────────────────────────────────────────────────────


def find_stalled_requests():
    """Requests sitting at a stage that has no pending row in the current cycle.

    Covers both a fully decided stage that was never advanced and a stage
    that was never seeded.
    """
    pending_here = (
        select(ApprovalDecision.id)
        .where(
            ApprovalDecision.payment_request_id == PaymentRequest.id,
            ApprovalDecision.cycle == PaymentRequest.approval_cycle,
            ApprovalDecision.stage_order == PaymentRequest.current_stage,
            ApprovalDecision.status == DECISION_PENDING,
        )
        .exists()
    )
    return db.session.execute(
        select(PaymentRequest)
        .where(
            PaymentRequest.current_stage.isnot(None),
            PaymentRequest.is_deleted.is_(False),
            ~pending_here,
        )
        .order_by(PaymentRequest.id)
    ).scalars().all()


def _reconcile_one(request_id, actor_user_id) -> str:
    pr = _lock_request(request_id)
    stage_order, cycle = pr.current_stage, pr.approval_cycle
    if stage_order is None:
        return OUTCOME_NOOP

    rows = decision_ledger.stage_rows(pr.id, cycle, stage_order)
    if any(r.is_pending for r in rows):
        return OUTCOME_NOOP

    if not rows:
        dept_ids = stage_config.departments_for_stage(stage_order)
        decision_ledger.seed_stage(pr.id, cycle, stage_order, dept_ids)
        approval_alerts.check_stage_has_eligible_approvers(pr, dept_ids)
        outcome = OUTCOME_RESEEDED
    elif any(r.status == DECISION_REJECTED for r in rows):
        rejecting = next(r for r in rows if r.status == DECISION_REJECTED)
        _finalize_rejected(pr, stage_order, cycle, actor_user_id, rejecting.comment)
        outcome = OUTCOME_REJECTED
    else:
        outcome = _advance_or_finalize(pr, stage_order, cycle, actor_user_id)

    write_log(
        payment_request_id=pr.id,
        action="reconciled",
        actor_user_id=actor_user_id,
        details={"cycle": cycle, "stage_order": stage_order, "outcome": outcome},
    )
    return outcome


def reconcile_stalled_requests(actor_user_id=None) -> dict:
    """Repair every stalled request, one transaction per request.

    Returns:
        {"checked": n, "<outcome>": count, ..., "skipped": [...], "failed": [...]}
    """
    summary = {
        "checked": 0,
        OUTCOME_ADVANCED: 0,
        OUTCOME_APPROVED: 0,
        OUTCOME_REJECTED: 0,
        OUTCOME_RESEEDED: 0,
        OUTCOME_NOOP: 0,
        OUTCOME_RECORDED: 0,
        "skipped": [],
        "failed": [],
    }
    request_ids = [pr.id for pr in find_stalled_requests()]

    for request_id in request_ids:
        summary["checked"] += 1
        try:
            outcome = _reconcile_one(request_id, actor_user_id)
            db.session.commit()
        except StageConfigMissingError as exc:
            db.session.rollback()
            logger.warning("Reconcile skipped: %s", exc, extra={"payment_request_id": request_id})
            summary["skipped"].append(request_id)
            continue
        except Exception:
            db.session.rollback()
            logger.exception("Reconcile failed", extra={"payment_request_id": request_id})
            summary["failed"].append(request_id)
            continue
        summary[outcome] += 1
        logger.info("Reconciled request: %s", outcome,
                    extra={"payment_request_id": request_id, "event_type": "reconciled"})

    return summary


# ── Queries ──────────────────────────────────────────────────────────────


def list_pending_for_department(department_id):
    """Requests waiting on ``department_id`` at their current stage and cycle."""
    return db.session.execute(
        select(PaymentRequest)
        .join(
            ApprovalDecision,
            (ApprovalDecision.payment_request_id == PaymentRequest.id)
            & (ApprovalDecision.cycle == PaymentRequest.approval_cycle)
            & (ApprovalDecision.stage_order == PaymentRequest.current_stage),
        )
        .where(
            ApprovalDecision.department_id == department_id,
            ApprovalDecision.status == DECISION_PENDING,
            PaymentRequest.is_deleted.is_(False),
        )
        .order_by(PaymentRequest.created_at, PaymentRequest.id)
    ).scalars().all()


def list_approved():
    return PaymentRequest.query_active().filter(
        PaymentRequest.approved_at.isnot(None),
    ).order_by(PaymentRequest.approved_at.desc(), PaymentRequest.id.desc()).all()


def list_rejected():
    return PaymentRequest.query_active().filter(
        PaymentRequest.rejected_at.isnot(None),
    ).order_by(PaymentRequest.rejected_at.desc(), PaymentRequest.id.desc()).all()
