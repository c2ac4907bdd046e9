from __future__ import annotations

from ..extensions import db
from co2ledger.time_utils import to_utc_z


# Audit actions
ACTION_EDIT = "edit"
ACTION_DELETE = "delete"
ACTION_APPROVE = "approve"
ACTION_REJECT = "reject"
ACTION_REVERSE = "reverse"

AUDIT_ACTIONS = (ACTION_EDIT, ACTION_DELETE, ACTION_APPROVE, ACTION_REJECT, ACTION_REVERSE)


class ApprovalLog(db.Model):
    """
    Append-only audit trail for edit/delete/approve/reject/reverse actions.

    - No updates or deletes of existing rows.
    - previous_data / new_data are full JSON snapshots (new_data is null on delete).
    - Written inside the same transaction as the change it records.
    """
    __tablename__ = "approval_logs"
    __table_args__ = (
        db.Index("ix_approval_logs_table_record", "table_name", "record_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    table_name = db.Column(db.String(64), nullable=False)
    record_id = db.Column(db.Integer, nullable=False)
    action = db.Column(db.String(16), nullable=False, index=True)

    previous_data = db.Column(db.JSON, nullable=True)
    new_data = db.Column(db.JSON, nullable=True)

    performed_by = db.Column(db.String(120), nullable=False)
    comments = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "table_name": self.table_name,
            "record_id": self.record_id,
            "action": self.action,
            "previous_data": self.previous_data,
            "new_data": self.new_data,
            "performed_by": self.performed_by,
            "comments": self.comments,
            "created_at": to_utc_z(self.created_at),
        }
