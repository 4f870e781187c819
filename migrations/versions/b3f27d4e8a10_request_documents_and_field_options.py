"""request_documents_and_field_options

Supporting documents and dropdown details on payment requests:
  - document_types, payment_request_field_options  — reference data
  - payment_requests: urgency / shipping condition, delivery term, file counters
  - payment_request_files                          — request-level documents

Revision ID: b3f27d4e8a10
Revises: 5e1c0a9b7d21
Create Date: 2026-10-18 16:40:02.318734
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = 'b3f27d4e8a10'
down_revision = '5e1c0a9b7d21'
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing = set(inspector.get_table_names())

    if "document_types" not in existing:
        op.create_table(
            "document_types",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("name"),
        )

    if "payment_request_field_options" not in existing:
        op.create_table(
            "payment_request_field_options",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("field_code", sa.String(length=50), nullable=False,
                      comment="urgency | shipping_conditions"),
            sa.Column("value", sa.String(length=200), nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("display_order", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("field_code", "value", name="uq_field_option_value"),
        )
        op.create_index("ix_field_option_code_order", "payment_request_field_options",
                        ["field_code", "display_order"])

    columns = {c["name"] for c in inspector.get_columns("payment_requests")}
    if "urgency_id" not in columns:
        with op.batch_alter_table("payment_requests", schema=None) as batch_op:
            batch_op.add_column(sa.Column("urgency_id", sa.Integer(), nullable=True))
            batch_op.add_column(sa.Column("urgency_reason", sa.Text(), nullable=True))
            batch_op.add_column(sa.Column("shipping_condition_id", sa.Integer(), nullable=True))
            batch_op.add_column(sa.Column("delivery_days", sa.Integer(), nullable=True))
            batch_op.add_column(sa.Column("delivery_days_type", sa.String(length=10), nullable=False,
                                          server_default="working", comment="working | calendar"))
            batch_op.add_column(sa.Column("total_files", sa.Integer(), nullable=False, server_default="0"))
            batch_op.add_column(sa.Column("uploaded_files", sa.Integer(), nullable=False, server_default="0"))
            # Named FK constraints for SQLite batch-mode compatibility
            batch_op.create_foreign_key(
                "fk_payment_request_urgency_id",
                "payment_request_field_options", ["urgency_id"], ["id"], ondelete="SET NULL",
            )
            batch_op.create_foreign_key(
                "fk_payment_request_shipping_condition_id",
                "payment_request_field_options", ["shipping_condition_id"], ["id"], ondelete="SET NULL",
            )
            batch_op.create_check_constraint(
                "ck_payment_request_file_count", "uploaded_files <= total_files",
            )

    if "payment_request_files" not in existing:
        op.create_table(
            "payment_request_files",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("payment_request_id", sa.Integer(), nullable=False),
            sa.Column("document_type_id", sa.Integer(), nullable=False),
            sa.Column("file_name", sa.String(length=500), nullable=False),
            sa.Column("file_key", sa.String(length=1000), nullable=False),
            sa.Column("file_size", sa.Integer(), nullable=True),
            sa.Column("mime_type", sa.String(length=150), nullable=True),
            sa.Column("page_count", sa.Integer(), nullable=True),
            sa.Column("created_by", sa.Integer(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["payment_request_id"], ["payment_requests.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["document_type_id"], ["document_types.id"], ondelete="RESTRICT"),
            sa.ForeignKeyConstraint(["created_by"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_payment_request_files_payment_request_id", "payment_request_files",
                        ["payment_request_id"])
        op.create_index("ix_payment_request_files_document_type_id", "payment_request_files",
                        ["document_type_id"])


def downgrade():
    op.drop_table("payment_request_files")
    with op.batch_alter_table("payment_requests", schema=None) as batch_op:
        batch_op.drop_constraint("ck_payment_request_file_count", type_="check")
        batch_op.drop_constraint("fk_payment_request_shipping_condition_id", type_="foreignkey")
        batch_op.drop_constraint("fk_payment_request_urgency_id", type_="foreignkey")
        batch_op.drop_column("uploaded_files")
        batch_op.drop_column("total_files")
        batch_op.drop_column("delivery_days_type")
        batch_op.drop_column("delivery_days")
        batch_op.drop_column("shipping_condition_id")
        batch_op.drop_column("urgency_reason")
        batch_op.drop_column("urgency_id")
    op.drop_table("payment_request_field_options")
    op.drop_table("document_types")
