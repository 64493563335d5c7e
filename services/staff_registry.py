import logging
from datetime import date, datetime

from sqlalchemy.exc import IntegrityError

from extensions import db
from models import EMPLOYMENT_STATUSES, Staff
from permissions.decorators import permission_required
from permissions.matrix import STAFF_MANAGEMENT
from services import catalogs
from services.assignment_ledger import close_assignment, open_assignment, lock_current_assignment
from services.errors import (
    CycleDetected,
    DuplicateIdentity,
    IntegrityFault,
    InvalidDateOrder,
    InvalidStatusTransition,
    MissingField,
    StaffNotFound,
    ValidationError,
)
from services.leave_ledger import cancel_pending_for_staff
from services.ledger_tx import ledger_transaction, retrying

logger = logging.getLogger(__name__)

REQUIRED_STAFF_FIELDS = ("employee_number", "first_name", "last_name", "email", "hire_date")
PROFILE_FIELDS = (
    "first_name",
    "middle_name",
    "last_name",
    "email",
    "phone",
    "date_of_birth",
    "emergency_contact_name",
    "emergency_contact_phone",
)
# Organisational pointers only move through the assignment ledger.
PLACEMENT_FIELDS = ("department_id", "facility_id", "role_id", "rank_id")


def _norm_email(v):
    return (v or "").strip().lower()


def _check_identity(employee_number=None, email=None, exclude_id=None):
    if employee_number:
        q = Staff.query.filter(Staff.employee_number == employee_number)
        if exclude_id is not None:
            q = q.filter(Staff.id != exclude_id)
        if q.first() is not None:
            raise DuplicateIdentity(
                f"Employee number {employee_number} is already registered",
                employee_number=employee_number,
            )
    if email:
        q = Staff.query.filter(db.func.lower(Staff.email) == email)
        if exclude_id is not None:
            q = q.filter(Staff.id != exclude_id)
        if q.first() is not None:
            raise DuplicateIdentity(f"Email {email} is already registered", email=email)


def find_by_identity(employee_number=None, email=None):
    q = Staff.query
    if employee_number:
        return q.filter(Staff.employee_number == employee_number.strip()).one_or_none()
    if email:
        return q.filter(db.func.lower(Staff.email) == _norm_email(email)).one_or_none()
    return None


# =========================
# Hire
# =========================
@retrying
@permission_required(STAFF_MANAGEMENT, "write")
def hire(staff_data: dict, initial_assignment: dict, actor_id=None):
    """Register a staff member and open their first assignment (reason=hire).

    Both rows and one audit entry are written in a single transaction.
    """
    data = dict(staff_data or {})
    placement = dict(initial_assignment or {})

    missing = [f for f in REQUIRED_STAFF_FIELDS if not data.get(f)]
    missing += [f for f in PLACEMENT_FIELDS if placement.get(f) is None]
    if missing:
        raise MissingField(f"Missing required fields: {', '.join(missing)}", fields=missing)

    unknown = set(data) - set(PROFILE_FIELDS) - {"employee_number", "hire_date", "supervisor_id"}
    if unknown:
        raise ValidationError(f"Unknown staff fields: {', '.join(sorted(unknown))}")

    data["employee_number"] = str(data["employee_number"]).strip()
    data["email"] = _norm_email(data["email"])
    hire_date = data["hire_date"]
    start_date = placement.get("start_date") or hire_date
    if start_date < hire_date:
        raise InvalidDateOrder(
            f"First assignment ({start_date}) cannot start before the hire date ({hire_date})",
            start_date=start_date.isoformat(),
            hire_date=hire_date.isoformat(),
        )

    with ledger_transaction(actor_id) as tx:
        catalogs.placement(*(placement[f] for f in PLACEMENT_FIELDS))
        if data.get("supervisor_id") is not None:
            supervisor = catalogs.get_staff(data["supervisor_id"])
            if supervisor.employment_status == "terminated":
                raise ValidationError(f"Supervisor #{supervisor.id} is terminated")
        _check_identity(data["employee_number"], data["email"])

        staff = Staff(
            employment_status="active",
            **data,
            **{f: placement[f] for f in PLACEMENT_FIELDS},
        )
        db.session.add(staff)
        try:
            db.session.flush()
        except IntegrityError as exc:
            raise DuplicateIdentity(
                f"Employee number or email already registered: {exc.orig}"
            ) from exc

        assignment = open_assignment(
            staff,
            placement["department_id"],
            placement["facility_id"],
            placement["role_id"],
            placement["rank_id"],
            start_date,
            "hire",
            actor_id,
        )

        tx.audit(
            "staff",
            staff.id,
            "INSERT",
            old=None,
            new={"staff": staff.snapshot(), "staff_assignments": [assignment.snapshot()]},
        )

    logger.info("Hired staff_id=%s employee_number=%s", staff.id, staff.employee_number)
    return staff


# =========================
# Profile
# =========================
@retrying
@permission_required(STAFF_MANAGEMENT, "write")
def update_profile(staff_id, fields: dict, actor_id=None):
    fields = dict(fields or {})
    moved = set(fields) & set(PLACEMENT_FIELDS)
    if moved:
        raise ValidationError(
            "Department, facility, role and rank change through reassignment",
            fields=sorted(moved),
        )
    unknown = set(fields) - set(PROFILE_FIELDS)
    if unknown:
        raise ValidationError(f"Fields cannot be updated: {', '.join(sorted(unknown))}")
    for name in ("first_name", "last_name", "email"):
        if name in fields and not fields[name]:
            raise MissingField(f"{name} cannot be blank", fields=[name])
    if "email" in fields:
        fields["email"] = _norm_email(fields["email"])

    with ledger_transaction(actor_id, staff_id) as tx:
        staff = catalogs.get_staff(staff_id, for_update=True)
        changed = [k for k, v in fields.items() if getattr(staff, k) != v]
        if not changed:
            raise ValidationError("No profile field changes", staff_id=staff.id)
        if "email" in changed:
            _check_identity(email=fields["email"], exclude_id=staff.id)

        before = staff.snapshot(*changed)
        for k in changed:
            setattr(staff, k, fields[k])
        try:
            db.session.flush()
        except IntegrityError as exc:
            raise DuplicateIdentity(f"Email already registered: {exc.orig}") from exc

        tx.audit("staff", staff.id, "UPDATE", old=before, new=staff.snapshot(*changed))

    logger.info("Profile updated staff_id=%s fields=%s", staff_id, ",".join(changed))
    return staff


# =========================
# Lifecycle
# =========================
@retrying
@permission_required(STAFF_MANAGEMENT, "write")
def change_status(staff_id, new_status, effective_date: date = None, actor_id=None):
    """Move a staff member through active / inactive / suspended / terminated.

    Termination is terminal: it closes the current assignment on the
    effective date and cancels every pending leave application.
    """
    new_status = (new_status or "").strip().lower()
    if new_status not in EMPLOYMENT_STATUSES:
        raise ValidationError(
            f"Status must be one of {', '.join(EMPLOYMENT_STATUSES)}",
            status=new_status,
        )
    effective_date = effective_date or date.today()

    with ledger_transaction(actor_id, staff_id) as tx:
        staff = catalogs.get_staff(staff_id, for_update=True)
        old_status = staff.employment_status
        if old_status == "terminated":
            raise InvalidStatusTransition(f"Staff #{staff.id} is terminated", staff_id=staff.id)
        if old_status == new_status:
            raise InvalidStatusTransition(f"Staff #{staff.id} is already {new_status}", staff_id=staff.id)

        old = {"staff": staff.snapshot("employment_status", "termination_date")}
        new = {}

        if new_status == "terminated":
            current = lock_current_assignment(staff.id)
            if current is None:
                raise IntegrityFault(f"Staff #{staff.id} has no current assignment", staff_id=staff.id)
            if effective_date < current.start_date:
                raise InvalidDateOrder(
                    f"Termination date {effective_date} precedes current assignment start {current.start_date}",
                    staff_id=staff.id,
                )
            old["staff_assignments"] = [current.snapshot()]
            close_assignment(current, effective_date)
            new["staff_assignments"] = [current.snapshot()]

            cancelled = cancel_pending_for_staff(staff.id, actor_id, now=datetime.utcnow())
            if cancelled:
                old["leave_applications"] = [req_before for req_before, _, _, _ in cancelled]
                old["staff_leave_entitlements"] = [ent_before for _, _, ent_before, _ in cancelled]
                new["leave_applications"] = [req.snapshot() for _, req, _, _ in cancelled]
                new["staff_leave_entitlements"] = [ent.snapshot() for _, _, _, ent in cancelled]
            staff.termination_date = effective_date

        staff.employment_status = new_status
        db.session.flush()
        new = {"staff": staff.snapshot("employment_status", "termination_date"), **new}

        tx.audit("staff", staff.id, "UPDATE", old=old, new=new)

    logger.info("Status change staff_id=%s %s -> %s effective=%s", staff_id, old_status, new_status, effective_date)
    return staff


@retrying
@permission_required(STAFF_MANAGEMENT, "write")
def assign_supervisor(staff_id, supervisor_id, actor_id=None):
    """Link (or unlink with ``None``) a staff member's supervisor.

    The chain above the candidate is walked before writing; reaching the
    staff member means a cycle. The walk is bounded by the staff count so
    corrupt data cannot loop forever.
    """
    if supervisor_id is not None and int(supervisor_id) == int(staff_id):
        raise CycleDetected("A staff member cannot supervise themselves", staff_id=staff_id)

    with ledger_transaction(actor_id, staff_id, supervisor_id) as tx:
        staff = catalogs.get_staff(staff_id, for_update=True)
        if supervisor_id is not None:
            candidate = catalogs.get_staff(supervisor_id, for_update=True)
            if candidate.employment_status == "terminated":
                raise ValidationError(f"Supervisor #{candidate.id} is terminated")
            _assert_no_cycle(staff.id, candidate)

        if staff.supervisor_id == supervisor_id:
            raise ValidationError(f"Staff #{staff.id} already reports to #{supervisor_id}")

        before = staff.snapshot("supervisor_id")
        staff.supervisor_id = supervisor_id
        db.session.flush()

        tx.audit("staff", staff.id, "UPDATE", old=before, new=staff.snapshot("supervisor_id"))

    logger.info("Supervisor set staff_id=%s supervisor_id=%s", staff_id, supervisor_id)
    return staff


def _assert_no_cycle(staff_id, candidate):
    bound = Staff.query.count()
    seen = 0
    cur_id = candidate.id
    while cur_id is not None:
        if cur_id == staff_id:
            raise CycleDetected(
                f"Staff #{candidate.id} already reports (directly or not) to staff #{staff_id}",
                staff_id=staff_id,
                supervisor_id=candidate.id,
            )
        seen += 1
        if seen > bound:
            raise CycleDetected(
                f"Supervisor chain above staff #{candidate.id} does not terminate",
                supervisor_id=candidate.id,
            )
        row = db.session.get(Staff, cur_id)
        if row is None:
            raise StaffNotFound(f"Staff #{cur_id} in supervisor chain not found", staff_id=cur_id)
        cur_id = row.supervisor_id


def supervisor_chain(staff_id):
    """Supervisors above a staff member, nearest first (bounded walk)."""
    chain = []
    bound = Staff.query.count()
    row = catalogs.get_staff(staff_id)
    while row.supervisor_id is not None and len(chain) < bound:
        row = catalogs.get_staff(row.supervisor_id)
        chain.append(row)
    return chain
