"""initial_approval_schema

Creates the payment-request approval schema:
  - departments, construction_sites, statuses     — reference data
  - users, user_site_mappings, counterparties     — people and site authorization
  - approval_stages                               — chain configuration
  - payment_requests                              — request aggregate
  - approval_decisions, approval_decision_files   — decision ledger
  - notifications                                 — in-app alerts
  - payment_request_assignments, payment_request_logs

Tables created conditionally (IF NOT EXISTS semantics) to support idempotent
execution against databases that already received these tables via db.create_all()
in a development environment.

Revision ID: 5e1c0a9b7d21
Revises:
Create Date: 2026-10-18 09:12:44.104512
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = '5e1c0a9b7d21'
down_revision = None
branch_labels = None
depends_on = None


def _ts(name, nullable=True):
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing = set(inspector.get_table_names())

    # ── Reference data ────────────────────────────────────────────────────
    if "departments" not in existing:
        op.create_table(
            "departments",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("code", sa.String(length=50), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("is_procurement", sa.Boolean(), nullable=False, server_default=sa.false(),
                      comment="Procurement-type: sign-off also needs a counterparty responsible manager"),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            _ts("created_at"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("code"),
        )

    if "construction_sites" not in existing:
        op.create_table(
            "construction_sites",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=300), nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            _ts("created_at"),
            sa.PrimaryKeyConstraint("id"),
        )

    if "statuses" not in existing:
        op.create_table(
            "statuses",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("entity_type", sa.String(length=50), nullable=False),
            sa.Column("code", sa.String(length=50), nullable=False),
            sa.Column("name", sa.String(length=100), nullable=False),
            sa.Column("color", sa.String(length=30), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("display_order", sa.Integer(), nullable=False, server_default="0"),
            _ts("created_at"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("entity_type", "code", name="uq_status_entity_code"),
        )

    # users.counterparty_id gets its FK after counterparties exists
    if "users" not in existing:
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("email", sa.String(length=255), nullable=False),
            sa.Column("full_name", sa.String(length=255), nullable=True),
            sa.Column("role", sa.String(length=30), nullable=False, server_default="user",
                      comment="admin | user | counterparty_user"),
            sa.Column("counterparty_id", sa.Integer(), nullable=True),
            sa.Column("department_id", sa.Integer(), nullable=True),
            sa.Column("all_sites", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            _ts("created_at"),
            sa.ForeignKeyConstraint(["department_id"], ["departments.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("email"),
        )
        op.create_index("ix_users_department_id", "users", ["department_id"])
        op.create_index("ix_users_counterparty_id", "users", ["counterparty_id"])

    if "counterparties" not in existing:
        op.create_table(
            "counterparties",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=300), nullable=False),
            sa.Column("inn", sa.String(length=20), nullable=True, comment="Taxpayer id"),
            sa.Column("address", sa.Text(), nullable=True),
            sa.Column("responsible_manager_id", sa.Integer(), nullable=True),
            _ts("created_at"),
            sa.ForeignKeyConstraint(["responsible_manager_id"], ["users.id"],
                                    name="fk_counterparty_manager", ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("inn"),
        )
        with op.batch_alter_table("users") as batch_op:
            batch_op.create_foreign_key(
                "fk_user_counterparty", "counterparties", ["counterparty_id"], ["id"], ondelete="SET NULL",
            )

    if "user_site_mappings" not in existing:
        op.create_table(
            "user_site_mappings",
            sa.Column("user_id", sa.Integer(), nullable=False),
            sa.Column("site_id", sa.Integer(), nullable=False),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["site_id"], ["construction_sites.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("user_id", "site_id"),
        )

    # ── Approval chain ────────────────────────────────────────────────────
    if "approval_stages" not in existing:
        op.create_table(
            "approval_stages",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("stage_order", sa.Integer(), nullable=False),
            sa.Column("department_id", sa.Integer(), nullable=False),
            _ts("created_at"),
            sa.CheckConstraint("stage_order >= 1", name="ck_stage_order_positive"),
            sa.ForeignKeyConstraint(["department_id"], ["departments.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("stage_order", "department_id", name="uq_stage_department"),
        )
        op.create_index("ix_approval_stages_stage_order", "approval_stages", ["stage_order"])

    # ── Payment requests ──────────────────────────────────────────────────
    if "payment_requests" not in existing:
        op.create_table(
            "payment_requests",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("request_number", sa.String(length=30), nullable=False),
            sa.Column("counterparty_id", sa.Integer(), nullable=False),
            sa.Column("site_id", sa.Integer(), nullable=True),
            sa.Column("status_id", sa.Integer(), nullable=False),
            sa.Column("comment", sa.Text(), nullable=True),
            sa.Column("created_by", sa.Integer(), nullable=True),
            _ts("created_at", nullable=False),
            sa.Column("current_stage", sa.Integer(), nullable=True),
            sa.Column("approval_cycle", sa.Integer(), nullable=False, server_default="1"),
            _ts("approved_at"),
            _ts("rejected_at"),
            _ts("withdrawn_at"),
            sa.Column("withdrawal_comment", sa.Text(), nullable=True),
            sa.Column("is_deleted", sa.Boolean(), nullable=False, server_default=sa.false()),
            _ts("deleted_at"),
            sa.CheckConstraint(
                "(CASE WHEN approved_at IS NOT NULL THEN 1 ELSE 0 END"
                " + CASE WHEN rejected_at IS NOT NULL THEN 1 ELSE 0 END"
                " + CASE WHEN withdrawn_at IS NOT NULL THEN 1 ELSE 0 END) <= 1",
                name="ck_payment_request_single_terminal",
            ),
            sa.ForeignKeyConstraint(["counterparty_id"], ["counterparties.id"], ondelete="RESTRICT"),
            sa.ForeignKeyConstraint(["site_id"], ["construction_sites.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["status_id"], ["statuses.id"]),
            sa.ForeignKeyConstraint(["created_by"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("request_number"),
        )
        op.create_index("ix_payment_requests_counterparty_id", "payment_requests", ["counterparty_id"])
        op.create_index("ix_payment_requests_site_id", "payment_requests", ["site_id"])
        op.create_index("ix_payment_requests_is_deleted", "payment_requests", ["is_deleted"])
        op.create_index("ix_payment_request_stage", "payment_requests", ["current_stage"])

    # ── Decision ledger ───────────────────────────────────────────────────
    if "approval_decisions" not in existing:
        op.create_table(
            "approval_decisions",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("payment_request_id", sa.Integer(), nullable=False),
            sa.Column("cycle", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("stage_order", sa.Integer(), nullable=False),
            sa.Column("department_id", sa.Integer(), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="pending",
                      comment="pending | approved | rejected"),
            sa.Column("user_id", sa.Integer(), nullable=True),
            sa.Column("comment", sa.Text(), nullable=False, server_default=""),
            _ts("decided_at"),
            _ts("created_at", nullable=False),
            sa.ForeignKeyConstraint(["payment_request_id"], ["payment_requests.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["department_id"], ["departments.id"], ondelete="RESTRICT"),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint(
                "payment_request_id", "cycle", "stage_order", "department_id",
                name="uq_decision_request_cycle_stage_department",
            ),
        )
        op.create_index(
            "ix_decision_request_stage_status", "approval_decisions",
            ["payment_request_id", "cycle", "stage_order", "status"],
        )
        op.create_index("ix_decision_department_status", "approval_decisions", ["department_id", "status"])

    if "approval_decision_files" not in existing:
        op.create_table(
            "approval_decision_files",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("decision_id", sa.Integer(), nullable=False),
            sa.Column("file_name", sa.String(length=500), nullable=False),
            sa.Column("file_key", sa.String(length=1000), nullable=False),
            sa.Column("file_size", sa.Integer(), nullable=True),
            sa.Column("mime_type", sa.String(length=150), nullable=True),
            sa.Column("created_by", sa.Integer(), nullable=True),
            _ts("created_at"),
            sa.ForeignKeyConstraint(["decision_id"], ["approval_decisions.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["created_by"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_approval_decision_files_decision_id", "approval_decision_files", ["decision_id"])

    # ── Notifications ─────────────────────────────────────────────────────
    if "notifications" not in existing:
        op.create_table(
            "notifications",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("type", sa.String(length=30), nullable=False, server_default="info",
                      comment="missing_specialist | missing_manager | info | error"),
            sa.Column("title", sa.String(length=300), nullable=False),
            sa.Column("message", sa.Text(), nullable=True),
            sa.Column("user_id", sa.Integer(), nullable=False),
            sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
            _ts("read_at"),
            sa.Column("payment_request_id", sa.Integer(), nullable=True),
            sa.Column("department_id", sa.Integer(), nullable=True),
            sa.Column("site_id", sa.Integer(), nullable=True),
            sa.Column("resolved", sa.Boolean(), nullable=False, server_default=sa.false()),
            _ts("resolved_at"),
            _ts("created_at"),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["payment_request_id"], ["payment_requests.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["department_id"], ["departments.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["site_id"], ["construction_sites.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_notifications_user_id", "notifications", ["user_id"])
        op.create_index(
            "ix_notification_alert_key", "notifications",
            ["type", "payment_request_id", "department_id", "site_id", "resolved"],
        )

    # ── Assignment history & request log ──────────────────────────────────
    if "payment_request_assignments" not in existing:
        op.create_table(
            "payment_request_assignments",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("payment_request_id", sa.Integer(), nullable=False),
            sa.Column("assigned_user_id", sa.Integer(), nullable=True),
            sa.Column("assigned_by_user_id", sa.Integer(), nullable=True),
            _ts("assigned_at", nullable=False),
            sa.Column("is_current", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.ForeignKeyConstraint(["payment_request_id"], ["payment_requests.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["assigned_user_id"], ["users.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["assigned_by_user_id"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index(
            "ix_assignment_request_current", "payment_request_assignments",
            ["payment_request_id", "is_current"],
        )

    if "payment_request_logs" not in existing:
        op.create_table(
            "payment_request_logs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("payment_request_id", sa.Integer(), nullable=False),
            sa.Column("action", sa.String(length=30), nullable=False),
            sa.Column("actor_user_id", sa.Integer(), nullable=True),
            sa.Column("details_json", sa.Text(), nullable=True),
            _ts("created_at", nullable=False),
            sa.ForeignKeyConstraint(["payment_request_id"], ["payment_requests.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["actor_user_id"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_payment_request_logs_payment_request_id", "payment_request_logs", ["payment_request_id"])


def downgrade():
    for table in (
        "payment_request_logs",
        "payment_request_assignments",
        "notifications",
        "approval_decision_files",
        "approval_decisions",
        "payment_requests",
        "approval_stages",
        "user_site_mappings",
    ):
        op.drop_table(table)
    with op.batch_alter_table("users") as batch_op:
        batch_op.drop_constraint("fk_user_counterparty", type_="foreignkey")
    op.drop_table("counterparties")
    op.drop_table("users")
    op.drop_table("statuses")
    op.drop_table("construction_sites")
    op.drop_table("departments")
