"""Transaction boundary shared by every mutating ledger operation.

A ledger transaction holds the per-staff critical section, collects the
single audit entry of the logical change and commits business rows and
audit row together, or neither.
"""
import logging
import time
from contextlib import contextmanager
from functools import wraps

from flask import current_app
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from extensions import db
from services import audit_trail
from services.errors import (
    AuditCountMismatch,
    ConcurrencyError,
    ConflictError,
    IntegrityFault,
    StaleVersion,
)
from utils.staff_locks import staff_lock

logger = logging.getLogger(__name__)


class LedgerTransaction:
    def __init__(self, actor_id):
        self.actor_id = actor_id
        self.audit_entries = []
        self.noop = False

    def nothing_to_do(self):
        """Mark the transaction as a no-op: it is rolled back instead of committed."""
        self.noop = True

    def audit(self, table, record_id, action, old=None, new=None):
        entry = audit_trail.record(table, record_id, action, old=old, new=new, actor_id=self.actor_id)
        self.audit_entries.append(entry)
        return entry


@contextmanager
def ledger_transaction(actor_id, *staff_ids):
    timeout = current_app.config.get("LEDGER_LOCK_TIMEOUT_SECONDS", 5.0)
    with staff_lock(*staff_ids, timeout=timeout):
        tx = LedgerTransaction(actor_id)
        try:
            yield tx
            if tx.noop and not tx.audit_entries:
                db.session.rollback()
                return
            if len(tx.audit_entries) != 1:
                raise AuditCountMismatch(
                    f"Expected exactly one audit entry per transaction, got {len(tx.audit_entries)}"
                )
            db.session.commit()
        except StaleDataError as exc:
            db.session.rollback()
            raise StaleVersion(f"Concurrent update detected: {exc}") from exc
        except IntegrityError as exc:
            db.session.rollback()
            raise ConflictError(f"Constraint violated: {exc.orig}") from exc
        except IntegrityFault:
            db.session.rollback()
            logger.critical("Integrity fault; transaction rolled back", exc_info=True)
            raise
        except BaseException:
            db.session.rollback()
            raise


def retrying(fn):
    """Re-run ``fn`` on ConcurrencyError with linear backoff, then surface it."""

    @wraps(fn)
    def wrapper(*args, **kwargs):
        attempts = max(1, int(current_app.config.get("LEDGER_RETRY_ATTEMPTS", 3)))
        backoff = float(current_app.config.get("LEDGER_RETRY_BACKOFF_SECONDS", 0.05))
        for attempt in range(1, attempts + 1):
            try:
                return fn(*args, **kwargs)
            except ConcurrencyError as exc:
                if attempt >= attempts:
                    logger.warning("%s gave up after %s attempts: %s", fn.__name__, attempt, exc.message)
                    raise
                logger.info("%s retry %s/%s after %s", fn.__name__, attempt, attempts, exc.code)
                if backoff:
                    time.sleep(backoff * attempt)

    return wrapper
