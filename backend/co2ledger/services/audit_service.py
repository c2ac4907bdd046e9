# Overview: Service-layer operations for the approval log; append-only audit trail.

from __future__ import annotations

from typing import Optional

from ..extensions import db
from ..models import ApprovalLog
"""
Approval Log Invariants (authoritative)

- Append-only: no deletes/updates of existing rows.
- No domain/business logic here.
- Rows are written inside the same DB transaction as the change they record.
- Snapshots are plain JSON dicts (the model's to_dict()).
"""


def append_approval_log(
    *,
    table_name: str,
    record_id: int,
    action: str,
    performed_by: str,
    previous_data: Optional[dict] = None,
    new_data: Optional[dict] = None,
    comments: Optional[str] = None,
) -> ApprovalLog:
    entry = ApprovalLog(
        table_name=table_name,
        record_id=record_id,
        action=action,
        previous_data=previous_data,
        new_data=new_data,
        performed_by=performed_by,
        comments=comments,
    )
    db.session.add(entry)
    db.session.flush()  # ensures entry.id is assigned without committing
    return entry


def list_approval_logs(
    *,
    table_name: str | None = None,
    record_id: int | None = None,
    action: str | None = None,
    limit: int = 100,
) -> list[ApprovalLog]:
    query = db.session.query(ApprovalLog)
    if table_name:
        query = query.filter(ApprovalLog.table_name == table_name)
    if record_id is not None:
        query = query.filter(ApprovalLog.record_id == record_id)
    if action:
        query = query.filter(ApprovalLog.action == action)
    return query.order_by(ApprovalLog.id.desc()).limit(limit).all()
