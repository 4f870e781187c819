"""
Payflow
Reference data models.

Models:
    - Department: organisational unit that signs off a stage
    - ConstructionSite: object a payment request is raised for
    - Counterparty: contractor submitting requests; carries the responsible manager
    - User: staff or counterparty account, with department and site authorization
    - Status: generic status vocabulary keyed by (entity_type, code)
    - DocumentType: kind of supporting document attached to a request
    - PaymentRequestFieldOption: admin-maintained dropdown values (urgency,
      shipping conditions) referenced by payment requests

The approval engine only reads these; mutations go through reference_service.
"""

from datetime import datetime, timezone

from payflow.models import db


# ── Constants ────────────────────────────────────────────────────────────────

USER_ROLES = {"admin", "user", "counterparty_user"}
STAFF_ROLES = ("admin", "user")

STATUS_ENTITY_PAYMENT_REQUEST = "payment_request"

# Default vocabulary seeded by `flask seed-statuses`
DEFAULT_PAYMENT_REQUEST_STATUSES = [
    {"code": "sent", "name": "Sent", "color": "blue", "display_order": 1},
    {"code": "approved", "name": "Approved", "color": "green", "display_order": 2},
    {"code": "rejected", "name": "Rejected", "color": "red", "display_order": 3},
    {"code": "withdrawn", "name": "Withdrawn", "color": "default", "display_order": 4},
]

FIELD_URGENCY = "urgency"
FIELD_SHIPPING_CONDITIONS = "shipping_conditions"
FIELD_CODES = {FIELD_URGENCY, FIELD_SHIPPING_CONDITIONS}


def _utcnow():
    return datetime.now(timezone.utc)


user_site_mappings = db.Table(
    "user_site_mappings",
    db.Column("user_id", db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    db.Column("site_id", db.Integer, db.ForeignKey("construction_sites.id", ondelete="CASCADE"),
              primary_key=True),
)


class Department(db.Model):
    """Department that may appear in one or more approval stages."""

    __tablename__ = "departments"

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(50), nullable=False, unique=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, default="")
    is_procurement = db.Column(
        db.Boolean, nullable=False, default=False,
        comment="Procurement-type: sign-off also needs a counterparty responsible manager",
    )
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "description": self.description,
            "is_procurement": self.is_procurement,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Department {self.id}: {self.code}>"


class ConstructionSite(db.Model):
    __tablename__ = "construction_sites"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(300), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<ConstructionSite {self.id}: {self.name[:40]}>"


class Counterparty(db.Model):
    """Contractor.  ``responsible_manager_id`` gates procurement-type stages."""

    __tablename__ = "counterparties"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(300), nullable=False)
    inn = db.Column(db.String(20), nullable=True, unique=True, comment="Taxpayer id")
    address = db.Column(db.Text, default="")
    responsible_manager_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="SET NULL", use_alter=True, name="fk_counterparty_manager"),
        nullable=True,
    )
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "inn": self.inn,
            "address": self.address,
            "responsible_manager_id": self.responsible_manager_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Counterparty {self.id}: {self.name[:40]}>"


class User(db.Model):
    """
    Application account.

    Staff (admin/user) belong to at most one department and are authorized
    either for all sites or for the sites listed in ``user_site_mappings``.
    """

    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), nullable=False, unique=True)
    full_name = db.Column(db.String(255), default="")
    role = db.Column(db.String(30), nullable=False, default="user", comment="admin | user | counterparty_user")
    counterparty_id = db.Column(
        db.Integer, db.ForeignKey("counterparties.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    department_id = db.Column(
        db.Integer, db.ForeignKey("departments.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    all_sites = db.Column(db.Boolean, nullable=False, default=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    sites = db.relationship("ConstructionSite", secondary=user_site_mappings, lazy="selectin")

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES

    def to_dict(self):
        return {
            "id": self.id,
            "email": self.email,
            "full_name": self.full_name,
            "role": self.role,
            "counterparty_id": self.counterparty_id,
            "department_id": self.department_id,
            "all_sites": self.all_sites,
            "site_ids": sorted(s.id for s in self.sites),
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<User {self.id}: {self.email}>"


class Status(db.Model):
    """Generic status vocabulary.  The engine resolves ids by code, never hardcodes them."""

    __tablename__ = "statuses"
    __table_args__ = (
        db.UniqueConstraint("entity_type", "code", name="uq_status_entity_code"),
    )

    id = db.Column(db.Integer, primary_key=True)
    entity_type = db.Column(db.String(50), nullable=False)
    code = db.Column(db.String(50), nullable=False)
    name = db.Column(db.String(100), nullable=False)
    color = db.Column(db.String(30), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    display_order = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "entity_type": self.entity_type,
            "code": self.code,
            "name": self.name,
            "color": self.color,
            "is_active": self.is_active,
            "display_order": self.display_order,
        }

    def __repr__(self):
        return f"<Status {self.entity_type}/{self.code}>"


class DocumentType(db.Model):
    __tablename__ = "document_types"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False, unique=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<DocumentType {self.id}: {self.name[:40]}>"


class PaymentRequestFieldOption(db.Model):
    """
    One selectable value of a payment request dropdown field.

    ``field_code`` names the field (see FIELD_CODES).  Deactivated options
    stay referenced by old requests but cannot be chosen for new ones.
    """

    __tablename__ = "payment_request_field_options"
    __table_args__ = (
        db.UniqueConstraint("field_code", "value", name="uq_field_option_value"),
        db.Index("ix_field_option_code_order", "field_code", "display_order"),
    )

    id = db.Column(db.Integer, primary_key=True)
    field_code = db.Column(db.String(50), nullable=False, comment="urgency | shipping_conditions")
    value = db.Column(db.String(200), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    display_order = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "field_code": self.field_code,
            "value": self.value,
            "is_active": self.is_active,
            "display_order": self.display_order,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<PaymentRequestFieldOption {self.field_code}={self.value}>"
