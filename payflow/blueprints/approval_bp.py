"""
Payflow
Approval chain blueprint.

Endpoints:
  GET    /approval-stages                              – chain, grouped by stage
  PUT    /approval-stages                              – replace the whole chain
  POST   /payment-requests/<id>/approve                – department approval
  POST   /payment-requests/<id>/reject                 – department rejection
  POST   /payment-requests/<id>/withdraw               – withdraw a live request
  POST   /payment-requests/<id>/resubmit               – start a new cycle
  GET    /payment-requests/<id>/decisions?cycle=       – decision ledger
  GET    /approvals/pending?department_id=             – waiting on a department
  GET    /approvals/approved                           – approved requests
  GET    /approvals/rejected                           – rejected requests
  POST   /approvals/reconcile                          – repair stalled requests
"""

import logging

from flask import Blueprint, jsonify, request

from payflow.blueprints import acting_user_id, register_error_handlers, require_acting_user
from payflow.models import db
from payflow.models.reference import User
from payflow.services import approval_engine, decision_ledger, payment_request_service, stage_config
from payflow.utils.errors import E, api_error
from payflow.utils.helpers import db_commit_or_error

logger = logging.getLogger(__name__)

approval_bp = Blueprint("approvals", __name__, url_prefix="/api/v1")
register_error_handlers(approval_bp)


def _int_arg(name):
    raw = request.args.get(name)
    if raw in (None, ""):
        return None, None
    try:
        return int(raw), None
    except ValueError:
        return None, api_error(E.VALIDATION_INVALID, f"{name} must be an integer")


# ═════════════════════════════════════════════════════════════════════════════
# Chain configuration
# ═════════════════════════════════════════════════════════════════════════════


@approval_bp.route("/approval-stages", methods=["GET"])
def get_approval_stages():
    return jsonify({
        "stages": stage_config.get_grouped_stages(),
        "rows": [s.to_dict() for s in stage_config.get_stages()],
    })


@approval_bp.route("/approval-stages", methods=["PUT"])
def replace_approval_stages():
    """Replace the chain.

    Body: {"stages": [{"stage_order": 1, "department_ids": [..]}, ...]}
    An empty list switches approval off for new submissions.
    """
    data = request.get_json(silent=True) or {}
    if "stages" not in data:
        return api_error(E.VALIDATION_REQUIRED, "stages is required")

    grouped = stage_config.replace_stages(data["stages"])
    err = db_commit_or_error()
    if err:
        return err
    logger.info("Approval chain updated by user %s", acting_user_id())
    return jsonify({"stages": grouped})


# ═════════════════════════════════════════════════════════════════════════════
# Decisions
# ═════════════════════════════════════════════════════════════════════════════


def _comment_arg(data):
    """Trimmed ``comment`` from a JSON body; must be a string or null."""
    comment = data.get("comment")
    if comment is not None and not isinstance(comment, str):
        return None, api_error(E.VALIDATION_INVALID, "comment must be a string")
    return (comment or "").strip(), None


def _decision_args(user_id):
    data = request.get_json(silent=True) or {}
    department_id = data.get("department_id")
    if department_id is not None and (isinstance(department_id, bool) or not isinstance(department_id, int)):
        return None, api_error(E.VALIDATION_INVALID, "department_id must be an integer")
    if department_id is None:
        user = db.session.get(User, user_id)
        department_id = user.department_id if user else None
    if department_id is None:
        return None, api_error(E.VALIDATION_REQUIRED, "department_id is required")
    comment, err = _comment_arg(data)
    if err:
        return None, err
    files = data.get("files") or []
    if not isinstance(files, list):
        return None, api_error(E.VALIDATION_INVALID, "files must be a list")
    if not all(isinstance(f, dict) for f in files):
        return None, api_error(E.VALIDATION_INVALID, "files must be a list of objects")
    return {
        "department_id": department_id,
        "comment": comment,
        "files": files,
    }, None


@approval_bp.route("/payment-requests/<int:request_id>/approve", methods=["POST"])
def approve_request(request_id):
    user_id, err = require_acting_user()
    if err:
        return err
    args, err = _decision_args(user_id)
    if err:
        return err

    result = approval_engine.approve(
        request_id, args["department_id"], user_id, args["comment"], files=args["files"],
    )
    return jsonify(result.to_dict())


@approval_bp.route("/payment-requests/<int:request_id>/reject", methods=["POST"])
def reject_request(request_id):
    user_id, err = require_acting_user()
    if err:
        return err
    args, err = _decision_args(user_id)
    if err:
        return err
    if not args["comment"]:
        return api_error(E.VALIDATION_REQUIRED, "comment is required when rejecting")

    result = approval_engine.reject(
        request_id, args["department_id"], user_id, args["comment"], files=args["files"],
    )
    return jsonify(result.to_dict())


@approval_bp.route("/payment-requests/<int:request_id>/withdraw", methods=["POST"])
def withdraw_request(request_id):
    user_id, err = require_acting_user()
    if err:
        return err
    comment, err = _comment_arg(request.get_json(silent=True) or {})
    if err:
        return err
    pr = approval_engine.withdraw(request_id, user_id, comment)
    return jsonify({"state": approval_engine.derive_state(pr), "payment_request": pr.to_dict()})


@approval_bp.route("/payment-requests/<int:request_id>/resubmit", methods=["POST"])
def resubmit_request(request_id):
    user_id, err = require_acting_user()
    if err:
        return err
    comment, err = _comment_arg(request.get_json(silent=True) or {})
    if err:
        return err
    pr = approval_engine.resubmit(request_id, user_id, comment)
    return jsonify({"state": approval_engine.derive_state(pr), "payment_request": pr.to_dict()})


@approval_bp.route("/payment-requests/<int:request_id>/decisions", methods=["GET"])
def list_request_decisions(request_id):
    pr = payment_request_service.get_request(request_id, include_deleted=True)
    cycle, err = _int_arg("cycle")
    if err:
        return err
    items = decision_ledger.list_decisions(pr.id, cycle=cycle)
    return jsonify({
        "payment_request_id": pr.id,
        "current_cycle": pr.approval_cycle,
        "current_stage": pr.current_stage,
        "items": [d.to_dict() for d in items],
        "total": len(items),
    })


# ═════════════════════════════════════════════════════════════════════════════
# Queues & maintenance
# ═════════════════════════════════════════════════════════════════════════════


@approval_bp.route("/approvals/pending", methods=["GET"])
def list_pending():
    department_id, err = _int_arg("department_id")
    if err:
        return err
    if department_id is None:
        user = db.session.get(User, acting_user_id()) if acting_user_id() else None
        department_id = user.department_id if user else None
    if department_id is None:
        return api_error(E.VALIDATION_REQUIRED, "department_id is required")
    items = approval_engine.list_pending_for_department(department_id)
    return jsonify({"department_id": department_id, "items": [pr.to_dict() for pr in items], "total": len(items)})


@approval_bp.route("/approvals/approved", methods=["GET"])
def list_approved():
    items = approval_engine.list_approved()
    return jsonify({"items": [pr.to_dict() for pr in items], "total": len(items)})


@approval_bp.route("/approvals/rejected", methods=["GET"])
def list_rejected():
    items = approval_engine.list_rejected()
    return jsonify({"items": [pr.to_dict() for pr in items], "total": len(items)})


@approval_bp.route("/approvals/reconcile", methods=["POST"])
def reconcile():
    summary = approval_engine.reconcile_stalled_requests(actor_user_id=acting_user_id())
    return jsonify(summary)
