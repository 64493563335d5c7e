import logging
from datetime import datetime

from flask import has_request_context, request
from sqlalchemy.exc import SQLAlchemyError

from extensions import db
from models import AuditLog, AUDIT_ACTIONS
from services.errors import AuditWriteFailed

logger = logging.getLogger(__name__)


def _request_origin() -> dict:
    """IP / user agent of the HTTP request driving this change, if any."""
    if not has_request_context():
        return {}
    ua = request.headers.get("User-Agent")
    return {
        "ip_address": (request.headers.get("X-Forwarded-For") or request.remote_addr or "")[:45] or None,
        "user_agent": ua or None,
    }


def record(table, record_id, action, old=None, new=None, actor_id=None):
    """Append one audit entry to the current transaction.

    The row is flushed immediately so a broken audit store fails the
    business transaction it belongs to instead of being dropped later.
    """
    action = (action or "").strip().upper()
    if action not in AUDIT_ACTIONS:
        raise AuditWriteFailed(f"Unsupported audit action {action!r}", table=table, record_id=record_id)
    if record_id is None:
        raise AuditWriteFailed(f"Audit entry for {table} has no record id", table=table)

    entry = AuditLog(
        table_name=table,
        record_id=int(record_id),
        action=action,
        old_values=old,
        new_values=new,
        changed_by_id=actor_id,
        created_at=datetime.utcnow(),
        **_request_origin(),
    )
    try:
        db.session.add(entry)
        db.session.flush()
    except SQLAlchemyError as exc:
        logger.critical(
            "Audit write failed table=%s record_id=%s action=%s actor=%s",
            table, record_id, action, actor_id,
        )
        raise AuditWriteFailed(f"Audit store rejected entry for {table}#{record_id}: {exc}") from exc
    return entry


def trail_for(table, record_id):
    """History of one record, oldest first."""
    return (
        AuditLog.query
        .filter(AuditLog.table_name == table, AuditLog.record_id == int(record_id))
        .order_by(AuditLog.created_at.asc(), AuditLog.id.asc())
    )


def entries_by_actor(actor_id):
    return (
        AuditLog.query
        .filter(AuditLog.changed_by_id == actor_id)
        .order_by(AuditLog.created_at.asc(), AuditLog.id.asc())
    )
