"""Approval chain configuration store.

The chain is a list of stages; each stage is a set of departments that sign
off in parallel.  It is replaced wholesale from the admin screen and read
live by the engine whenever a stage activates.

Transaction policy: ``replace_stages`` flushes, never commits.  Caller
(route handler) is responsible for db.session.commit().
"""
import logging
from collections import OrderedDict

from sqlalchemy import delete, select

from payflow.core.exceptions import StageConfigurationError
from payflow.models import db
from payflow.models.approval import ApprovalStage
from payflow.models.reference import Department
from payflow.utils.helpers import parse_int_list

logger = logging.getLogger(__name__)


# ── Read ─────────────────────────────────────────────────────────────────


def get_stages():
    """All configured rows ordered by stage_order, then department."""
    return db.session.execute(
        select(ApprovalStage).order_by(ApprovalStage.stage_order, ApprovalStage.department_id)
    ).scalars().all()


def get_grouped_stages():
    """Return ``[{"stage_order": n, "department_ids": [...]}, ...]`` ascending."""
    grouped = OrderedDict()
    for row in get_stages():
        grouped.setdefault(row.stage_order, []).append(row.department_id)
    return [
        {"stage_order": order, "department_ids": dept_ids}
        for order, dept_ids in grouped.items()
    ]


def departments_for_stage(stage_order: int) -> list[int]:
    """Department ids configured at ``stage_order``; empty if the stage does not exist."""
    return list(
        db.session.execute(
            select(ApprovalStage.department_id)
            .where(ApprovalStage.stage_order == stage_order)
            .order_by(ApprovalStage.department_id)
        ).scalars()
    )


# ── Write ────────────────────────────────────────────────────────────────


def _validate(grouped) -> list[tuple[int, list[int]]]:
    """Check the whole chain before anything is written.

    Accepts either ``[{"stage_order", "department_ids"}]`` dicts or a plain
    list of department-id lists (stage order implied by position).

    Returns:
        [(stage_order, [department_id, ...]), ...] sorted by stage_order.
    """
    if grouped is None:
        grouped = []
    if not isinstance(grouped, (list, tuple)):
        raise StageConfigurationError("Stages must be a list")

    stages = []
    for index, item in enumerate(grouped, start=1):
        if isinstance(item, dict):
            order = item.get("stage_order", index)
            dept_ids = item.get("department_ids")
        else:
            order, dept_ids = index, item
        if isinstance(order, bool) or not isinstance(order, int):
            raise StageConfigurationError(
                "stage_order must be an integer", details={"stage_order": order},
            )
        try:
            dept_ids = parse_int_list(dept_ids, field="department_ids")
        except ValueError as exc:
            raise StageConfigurationError(
                f"Stage {order}: {exc}", details={"stage_order": order},
            ) from exc
        stages.append((order, dept_ids))

    stages.sort(key=lambda s: s[0])

    expected = list(range(1, len(stages) + 1))
    actual = [order for order, _ in stages]
    if actual != expected:
        raise StageConfigurationError(
            "Stage orders must be contiguous starting at 1",
            details={"stage_orders": actual},
        )

    referenced = set()
    for order, dept_ids in stages:
        if not dept_ids:
            raise StageConfigurationError(
                f"Stage {order} has no departments", details={"stage_order": order},
            )
        if len(set(dept_ids)) != len(dept_ids):
            raise StageConfigurationError(
                f"Stage {order} lists a department more than once",
                details={"stage_order": order, "department_ids": dept_ids},
            )
        referenced.update(dept_ids)

    if referenced:
        active = set(
            db.session.execute(
                select(Department.id).where(
                    Department.id.in_(referenced), Department.is_active.is_(True),
                )
            ).scalars()
        )
        unknown = sorted(referenced - active)
        if unknown:
            raise StageConfigurationError(
                "Unknown or inactive departments in chain",
                details={"department_ids": unknown},
            )

    return stages


def replace_stages(grouped):
    """Validate and replace the whole chain.

    An empty list is valid and means requests need no approval.

    Raises:
        StageConfigurationError: on an empty stage, a gap in stage orders,
            a repeated department within a stage, or an unknown/inactive
            department.  Nothing is written in that case.
    """
    stages = _validate(grouped)

    db.session.execute(delete(ApprovalStage))
    for order, dept_ids in stages:
        for dept_id in dept_ids:
            db.session.add(ApprovalStage(stage_order=order, department_id=dept_id))
    db.session.flush()

    logger.info(
        "Approval chain replaced: %d stage(s), %d slot(s)",
        len(stages), sum(len(d) for _, d in stages),
        extra={"event_type": "stage_config_replaced"},
    )
    return get_grouped_stages()
