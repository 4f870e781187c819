"""
Payflow
Notification model.

Models:
    - Notification: in-app notification record with read and resolution tracking
"""

from datetime import datetime, timezone

from payflow.models import db


# ── Constants ────────────────────────────────────────────────────────────────

NOTIFICATION_MISSING_SPECIALIST = "missing_specialist"
NOTIFICATION_MISSING_MANAGER = "missing_manager"
NOTIFICATION_TYPES = {NOTIFICATION_MISSING_SPECIALIST, NOTIFICATION_MISSING_MANAGER, "info", "error"}


def _utcnow():
    return datetime.now(timezone.utc)


class Notification(db.Model):
    """
    In-app notification entity.

    One record per recipient per event.  Alert notifications carry the
    (payment_request, department, site) they are about; they stay open until
    the reference data is fixed and ``resolved`` is set.
    """

    __tablename__ = "notifications"
    __table_args__ = (
        db.Index(
            "ix_notification_alert_key",
            "type", "payment_request_id", "department_id", "site_id", "resolved",
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    type = db.Column(db.String(30), nullable=False, default="info",
                     comment="missing_specialist | missing_manager | info | error")
    title = db.Column(db.String(300), nullable=False)
    message = db.Column(db.Text, default="")
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True,
    )

    # Read tracking
    is_read = db.Column(db.Boolean, nullable=False, default=False)
    read_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Alert context
    payment_request_id = db.Column(
        db.Integer, db.ForeignKey("payment_requests.id", ondelete="CASCADE"), nullable=True,
    )
    department_id = db.Column(
        db.Integer, db.ForeignKey("departments.id", ondelete="SET NULL"), nullable=True,
    )
    site_id = db.Column(
        db.Integer, db.ForeignKey("construction_sites.id", ondelete="SET NULL"), nullable=True,
    )
    resolved = db.Column(db.Boolean, nullable=False, default=False)
    resolved_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    def mark_read(self):
        self.is_read = True
        self.read_at = _utcnow()

    def to_dict(self):
        return {
            "id": self.id,
            "type": self.type,
            "title": self.title,
            "message": self.message,
            "user_id": self.user_id,
            "is_read": self.is_read,
            "read_at": self.read_at.isoformat() if self.read_at else None,
            "payment_request_id": self.payment_request_id,
            "department_id": self.department_id,
            "site_id": self.site_id,
            "resolved": self.resolved,
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Notification {self.id}: {self.type} {self.title[:40]}>"
