"""
Payflow
Payment request blueprint.

Endpoints:
  POST   /payment-requests                        – submit (status sent, stage 1)
  GET    /payment-requests                        – list (?counterparty_id=&status=)
  GET    /payment-requests/trash                  – soft-deleted requests
  GET    /payment-requests/<id>                   – one request
  DELETE /payment-requests/<id>                   – move to trash
  POST   /payment-requests/<id>/restore           – restore from trash
  GET    /payment-requests/<id>/logs              – request log
  GET    /payment-requests/<id>/files             – supporting documents
  POST   /payment-requests/<id>/files             – attach one document
  GET    /payment-requests/<id>/assignments       – current assignee + history
  POST   /payment-requests/<id>/assignments       – reassign
"""

import logging

from flask import Blueprint, jsonify, request

from payflow.blueprints import paginate_query, register_error_handlers, require_acting_user
from payflow.services import approval_engine, assignment_service, payment_request_service
from payflow.utils.errors import E, api_error
from payflow.utils.helpers import db_commit_or_error

logger = logging.getLogger(__name__)

payment_request_bp = Blueprint("payment_requests", __name__, url_prefix="/api/v1")
register_error_handlers(payment_request_bp)


def _request_dict(pr):
    d = pr.to_dict()
    d["state"] = approval_engine.derive_state(pr)
    estimate = payment_request_service.estimate_delivery_date(pr)
    d["estimated_delivery_date"] = estimate.isoformat() if estimate else None
    return d


@payment_request_bp.route("/payment-requests", methods=["POST"])
def submit_payment_request():
    user_id, err = require_acting_user()
    if err:
        return err
    data = request.get_json(silent=True) or {}
    if not isinstance(data, dict):
        return api_error(E.VALIDATION_INVALID, "Request body must be a JSON object")
    if not data.get("counterparty_id"):
        return api_error(E.VALIDATION_REQUIRED, "counterparty_id is required")

    pr = approval_engine.submit_request(data, created_by=user_id)
    return jsonify(_request_dict(pr)), 201


@payment_request_bp.route("/payment-requests", methods=["GET"])
def list_payment_requests():
    counterparty_id = request.args.get("counterparty_id", type=int)
    status_code = request.args.get("status")
    q = payment_request_service.list_requests(counterparty_id=counterparty_id, status_code=status_code)
    items, total = paginate_query(q)
    return jsonify({"items": [_request_dict(pr) for pr in items], "total": total})


@payment_request_bp.route("/payment-requests/trash", methods=["GET"])
def list_trash():
    items = payment_request_service.list_trash()
    return jsonify({"items": [_request_dict(pr) for pr in items], "total": len(items)})


@payment_request_bp.route("/payment-requests/<int:request_id>", methods=["GET"])
def get_payment_request(request_id):
    pr = payment_request_service.get_request(request_id)
    return jsonify(_request_dict(pr))


@payment_request_bp.route("/payment-requests/<int:request_id>", methods=["DELETE"])
def delete_payment_request(request_id):
    user_id, err = require_acting_user()
    if err:
        return err
    pr = payment_request_service.soft_delete(request_id, user_id)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "Payment request moved to trash", "id": pr.id})


@payment_request_bp.route("/payment-requests/<int:request_id>/restore", methods=["POST"])
def restore_payment_request(request_id):
    user_id, err = require_acting_user()
    if err:
        return err
    pr = payment_request_service.restore(request_id, user_id)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(_request_dict(pr))


@payment_request_bp.route("/payment-requests/<int:request_id>/logs", methods=["GET"])
def list_payment_request_logs(request_id):
    logs = payment_request_service.list_logs(request_id)
    return jsonify({"items": [entry.to_dict() for entry in logs], "total": len(logs)})


@payment_request_bp.route("/payment-requests/<int:request_id>/files", methods=["GET"])
def list_payment_request_files(request_id):
    files = payment_request_service.list_files(request_id)
    return jsonify({"items": [f.to_dict() for f in files], "total": len(files)})


@payment_request_bp.route("/payment-requests/<int:request_id>/files", methods=["POST"])
def add_payment_request_file(request_id):
    user_id, err = require_acting_user()
    if err:
        return err
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return api_error(E.VALIDATION_INVALID, "Request body must be a JSON object")
    missing = [k for k in ("document_type_id", "file_name", "file_key") if not data.get(k)]
    if missing:
        return api_error(E.VALIDATION_REQUIRED, f"Missing required field(s): {', '.join(missing)}")

    row = payment_request_service.add_file(request_id, data, user_id)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(row.to_dict()), 201


@payment_request_bp.route("/payment-requests/<int:request_id>/assignments", methods=["GET"])
def get_assignments(request_id):
    payment_request_service.get_request(request_id)
    current = assignment_service.current_assignment(request_id)
    history = assignment_service.assignment_history(request_id)
    return jsonify({
        "current": current.to_dict() if current else None,
        "history": [a.to_dict() for a in history],
    })


@payment_request_bp.route("/payment-requests/<int:request_id>/assignments", methods=["POST"])
def assign_payment_request(request_id):
    user_id, err = require_acting_user()
    if err:
        return err
    data = request.get_json(silent=True) or {}
    if not data.get("assigned_user_id"):
        return api_error(E.VALIDATION_REQUIRED, "assigned_user_id is required")

    assignment = assignment_service.assign_responsible(request_id, data["assigned_user_id"], user_id)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(assignment.to_dict()), 201
