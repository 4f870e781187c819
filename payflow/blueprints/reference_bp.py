"""
Payflow
Reference data blueprint.

Endpoints:
  GET/POST  /departments
  GET/POST  /sites
  GET/POST  /counterparties
  PUT       /counterparties/<id>/responsible-manager
  GET/POST  /users
  PUT       /users/<id>                 – department / site mapping / all_sites
  GET/POST  /document-types
  PUT/DELETE /document-types/<id>
  GET/POST  /field-options              – ?field_code=urgency|shipping_conditions&active=1
  PUT/DELETE /field-options/<id>
  GET       /statuses                   – payment request status vocabulary
"""

import logging

from flask import Blueprint, jsonify, request

from payflow.blueprints import register_error_handlers
from payflow.services import reference_service, status_service
from payflow.utils.errors import E, api_error
from payflow.utils.helpers import db_commit_or_error, parse_int_list

logger = logging.getLogger(__name__)

reference_bp = Blueprint("reference", __name__, url_prefix="/api/v1")
register_error_handlers(reference_bp)


# ── Departments & sites ──────────────────────────────────────────────────────


@reference_bp.route("/departments", methods=["GET"])
def list_departments():
    active_only = request.args.get("active", "").lower() in ("1", "true", "yes")
    items = reference_service.list_departments(active_only=active_only)
    return jsonify({"items": [d.to_dict() for d in items], "total": len(items)})


@reference_bp.route("/departments", methods=["POST"])
def create_department():
    data = request.get_json(silent=True) or {}
    dept = reference_service.create_department(data)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(dept.to_dict()), 201


@reference_bp.route("/sites", methods=["GET"])
def list_sites():
    items = reference_service.list_sites()
    return jsonify({"items": [s.to_dict() for s in items], "total": len(items)})


@reference_bp.route("/sites", methods=["POST"])
def create_site():
    data = request.get_json(silent=True) or {}
    site = reference_service.create_site(data)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(site.to_dict()), 201


# ── Counterparties ───────────────────────────────────────────────────────────


@reference_bp.route("/counterparties", methods=["GET"])
def list_counterparties():
    items = reference_service.list_counterparties()
    return jsonify({"items": [c.to_dict() for c in items], "total": len(items)})


@reference_bp.route("/counterparties", methods=["POST"])
def create_counterparty():
    data = request.get_json(silent=True) or {}
    cp = reference_service.create_counterparty(data)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(cp.to_dict()), 201


@reference_bp.route("/counterparties/<int:counterparty_id>/responsible-manager", methods=["PUT"])
def set_responsible_manager(counterparty_id):
    data = request.get_json(silent=True) or {}
    if "responsible_manager_id" not in data:
        return api_error(E.VALIDATION_REQUIRED, "responsible_manager_id is required")
    cp, resolved = reference_service.set_responsible_manager(counterparty_id, data["responsible_manager_id"])
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"counterparty": cp.to_dict(), "resolved_notifications": resolved})


# ── Users ────────────────────────────────────────────────────────────────────


def _user_payload():
    data = request.get_json(silent=True) or {}
    if "site_ids" in data:
        try:
            data["site_ids"] = parse_int_list(data["site_ids"], field="site_ids")
        except ValueError as exc:
            return None, api_error(E.VALIDATION_INVALID, str(exc))
    return data, None


@reference_bp.route("/users", methods=["GET"])
def list_users():
    department_id = request.args.get("department_id", type=int)
    items = reference_service.list_users(department_id=department_id)
    return jsonify({"items": [u.to_dict() for u in items], "total": len(items)})


@reference_bp.route("/users", methods=["POST"])
def create_user():
    data, err = _user_payload()
    if err:
        return err
    user = reference_service.create_user(data)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(user.to_dict()), 201


@reference_bp.route("/users/<int:user_id>", methods=["PUT"])
def update_user(user_id):
    data, err = _user_payload()
    if err:
        return err
    user, resolved = reference_service.update_user(user_id, data)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"user": user.to_dict(), "resolved_notifications": resolved})


# ── Document types ───────────────────────────────────────────────────────────


@reference_bp.route("/document-types", methods=["GET"])
def list_document_types():
    items = reference_service.list_document_types()
    return jsonify({"items": [t.to_dict() for t in items], "total": len(items)})


@reference_bp.route("/document-types", methods=["POST"])
def create_document_type():
    data = request.get_json(silent=True) or {}
    doc_type = reference_service.create_document_type(data)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(doc_type.to_dict()), 201


@reference_bp.route("/document-types/<int:type_id>", methods=["PUT"])
def update_document_type(type_id):
    data = request.get_json(silent=True) or {}
    doc_type = reference_service.update_document_type(type_id, data)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(doc_type.to_dict())


@reference_bp.route("/document-types/<int:type_id>", methods=["DELETE"])
def delete_document_type(type_id):
    reference_service.delete_document_type(type_id)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "Document type deleted", "id": type_id})


# ── Request field options ────────────────────────────────────────────────────


@reference_bp.route("/field-options", methods=["GET"])
def list_field_options():
    active_only = request.args.get("active", "").lower() in ("1", "true", "yes")
    items = reference_service.list_field_options(
        field_code=request.args.get("field_code"), active_only=active_only,
    )
    return jsonify({"items": [o.to_dict() for o in items], "total": len(items)})


@reference_bp.route("/field-options", methods=["POST"])
def create_field_option():
    data = request.get_json(silent=True) or {}
    option = reference_service.create_field_option(data)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(option.to_dict()), 201


@reference_bp.route("/field-options/<int:option_id>", methods=["PUT"])
def update_field_option(option_id):
    data = request.get_json(silent=True) or {}
    option = reference_service.update_field_option(option_id, data)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(option.to_dict())


@reference_bp.route("/field-options/<int:option_id>", methods=["DELETE"])
def delete_field_option(option_id):
    reference_service.delete_field_option(option_id)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "Field option deleted", "id": option_id})


# ── Statuses ─────────────────────────────────────────────────────────────────


@reference_bp.route("/statuses", methods=["GET"])
def list_statuses():
    items = status_service.list_statuses()
    return jsonify({"items": [s.to_dict() for s in items], "total": len(items)})
