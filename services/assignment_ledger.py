import logging
from datetime import date, timedelta

from extensions import db
from models import StaffAssignment
from permissions.decorators import permission_required
from permissions.matrix import STAFF_MANAGEMENT
from services import catalogs
from services.errors import (
    IntegrityFault,
    InvalidDateOrder,
    StaffNotActive,
    ValidationError,
)
from services.ledger_tx import ledger_transaction, retrying

logger = logging.getLogger(__name__)

REASSIGN_REASONS = ("transfer", "promotion", "demotion", "temporary")
PLACEMENT_FIELDS = ("department_id", "facility_id", "role_id", "rank_id")


# =========================
# Queries
# =========================
def current_assignment(staff_id):
    """The open assignment of a staff member (indexed on staff_id + is_current)."""
    return (
        StaffAssignment.query
        .filter(StaffAssignment.staff_id == staff_id, StaffAssignment.is_current.is_(True))
        .one_or_none()
    )


def assignment_history(staff_id):
    """Placement history oldest first.

    Returns a query: iterating it runs it, iterating again re-runs it.
    """
    return (
        StaffAssignment.query
        .filter(StaffAssignment.staff_id == staff_id)
        .order_by(StaffAssignment.start_date.asc(), StaffAssignment.id.asc())
    )


# =========================
# Building blocks (run inside a ledger transaction)
# =========================
def lock_current_assignment(staff_id):
    rows = (
        StaffAssignment.query
        .filter(StaffAssignment.staff_id == staff_id, StaffAssignment.is_current.is_(True))
        .populate_existing()
        .with_for_update()
        .all()
    )
    if len(rows) > 1:
        raise IntegrityFault(
            f"Staff #{staff_id} has {len(rows)} current assignments",
            staff_id=staff_id,
        )
    return rows[0] if rows else None


def open_assignment(staff, department_id, facility_id, role_id, rank_id, start_date, reason, actor_id):
    row = StaffAssignment(
        staff_id=staff.id,
        department_id=department_id,
        facility_id=facility_id,
        role_id=role_id,
        rank_id=rank_id,
        start_date=start_date,
        end_date=None,
        reason=reason,
        is_current=True,
        created_by_id=actor_id,
    )
    db.session.add(row)
    db.session.flush()
    return row


def close_assignment(row, end_date):
    if end_date < row.start_date:
        raise InvalidDateOrder(
            f"Assignment #{row.id} cannot end ({end_date}) before it starts ({row.start_date})",
            assignment_id=row.id,
        )
    row.end_date = end_date
    row.is_current = False
    # the closed row must hit the database before a new current row is inserted
    db.session.flush()
    return row


# =========================
# Operations
# =========================
@retrying
@permission_required(STAFF_MANAGEMENT, "write")
def reassign(staff_id, department_id, facility_id, role_id, rank_id, start_date: date, reason, actor_id=None):
    """Move a staff member to a new placement starting ``start_date``.

    Closes the current assignment the day before, opens the new one,
    moves the staff pointers and writes one audit entry; all or nothing.
    """
    reason = (reason or "").strip().lower()
    if reason not in REASSIGN_REASONS:
        raise ValidationError(
            f"Reassignment reason must be one of {', '.join(REASSIGN_REASONS)}",
            reason=reason,
        )
    if start_date is None:
        raise ValidationError("start_date is required")

    with ledger_transaction(actor_id, staff_id) as tx:
        staff = catalogs.get_staff(staff_id, for_update=True)
        if staff.employment_status == "terminated":
            raise StaffNotActive(f"Staff #{staff.id} is terminated", staff_id=staff.id)
        catalogs.placement(department_id, facility_id, role_id, rank_id)

        previous = lock_current_assignment(staff.id)
        if previous is None:
            raise IntegrityFault(f"Staff #{staff.id} has no current assignment", staff_id=staff.id)
        if start_date <= previous.start_date:
            raise InvalidDateOrder(
                f"New assignment must start after {previous.start_date}",
                staff_id=staff.id,
                current_start=previous.start_date.isoformat(),
                requested_start=start_date.isoformat(),
            )

        staff_before = staff.snapshot(*PLACEMENT_FIELDS)
        previous_before = previous.snapshot()

        close_assignment(previous, start_date - timedelta(days=1))
        new_row = open_assignment(
            staff, department_id, facility_id, role_id, rank_id, start_date, reason, actor_id
        )
        staff.department_id = department_id
        staff.facility_id = facility_id
        staff.role_id = role_id
        staff.rank_id = rank_id
        db.session.flush()

        tx.audit(
            "staff_assignments",
            new_row.id,
            "INSERT",
            old={
                "staff": staff_before,
                "staff_assignments": [previous_before],
            },
            new={
                "staff": staff.snapshot(*PLACEMENT_FIELDS),
                "staff_assignments": [previous.snapshot(), new_row.snapshot()],
            },
        )

    logger.info(
        "Reassigned staff_id=%s reason=%s start=%s assignment_id=%s",
        staff_id, reason, start_date, new_row.id,
    )
    return new_row
