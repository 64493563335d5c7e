"""Leave entitlements and the application approval workflow.

Balance movements (``pending -> used`` on approval, ``pending -> released``
on rejection/cancellation) happen under the staff member's critical
section and the entitlement's version counter; the derived remaining
balance is re-checked after every movement.
"""
import logging
from datetime import date, datetime
from decimal import Decimal

from flask import current_app

from extensions import db
from models import LeaveApplication, LeaveEntitlement, as_decimal
from permissions.check import can_approve_for, has_permission, load_actor, permissions_enforced
from permissions.decorators import permission_required
from permissions.matrix import LEAVE_MANAGEMENT
from services import catalogs
from services.calendar import get_calendar
from services.errors import (
    AlreadyDecided,
    ApplicationNotFound,
    BalanceInvariantBroken,
    ConsecutiveLimitExceeded,
    DuplicateEntitlement,
    EntitlementNotFound,
    InsufficientBalance,
    InvalidDateOrder,
    InvalidDecision,
    NoticeViolation,
    OverlappingLeave,
    PermissionDenied,
    SpansYearBoundary,
    StaffNotActive,
    ValidationError,
)
from services.ledger_tx import ledger_transaction, retrying

logger = logging.getLogger(__name__)

DECISIONS = {
    "approve": "approved",
    "approved": "approved",
    "reject": "rejected",
    "rejected": "rejected",
}

APPLICATION_DETAIL_FIELDS = ("emergency_contact_during_leave", "handover_notes")


# =========================
# Balance helpers
# =========================
def _negative_allowed(category) -> bool:
    return bool(category.allow_negative_balance) or bool(
        current_app.config.get("LEAVE_ALLOW_NEGATIVE_BALANCE", False)
    )


def check_balance(ent: LeaveEntitlement):
    """Raise if the entitlement arithmetic is broken after a movement."""
    used = as_decimal(ent.used_days)
    pending = as_decimal(ent.pending_days)
    if used < 0 or pending < 0:
        raise BalanceInvariantBroken(
            f"Entitlement #{ent.id} has negative used/pending ({used}/{pending})",
            entitlement_id=ent.id,
        )
    if ent.remaining_days < 0 and not _negative_allowed(ent.category):
        raise BalanceInvariantBroken(
            f"Entitlement #{ent.id} remaining balance went negative ({ent.remaining_days})",
            entitlement_id=ent.id,
        )


def _entitlement(staff_id, category_id, year, for_update=True):
    q = LeaveEntitlement.query.filter_by(staff_id=staff_id, category_id=category_id, year=year)
    if for_update:
        q = q.populate_existing().with_for_update()
    ent = q.one_or_none()
    if ent is None:
        raise EntitlementNotFound(
            f"No entitlement for staff #{staff_id}, category #{category_id}, year {year}",
            staff_id=staff_id,
            category_id=category_id,
            year=year,
        )
    return ent


def balance(staff_id, category_id, year):
    """Snapshot-consistent read of one entitlement."""
    return _entitlement(staff_id, category_id, year, for_update=False)


def release_pending(req: LeaveApplication, ent: LeaveEntitlement, new_status, actor_id, now=None):
    """pending -> rejected/cancelled, giving the days back."""
    now = now or datetime.utcnow()
    ent.pending_days = as_decimal(ent.pending_days) - as_decimal(req.total_days)
    req.status = new_status
    if new_status == "cancelled":
        req.cancelled_by_id = actor_id
        req.cancelled_at = now
    else:
        req.approved_by_id = actor_id
        req.decided_at = now
    check_balance(ent)


def cancel_pending_for_staff(staff_id, actor_id, now=None):
    """Cancel every pending application of a staff member.

    Runs inside the caller's ledger transaction; returns
    (application-before, application, entitlement-before, entitlement)
    tuples for the caller's audit snapshot.
    """
    touched = []
    pending = (
        LeaveApplication.query
        .filter_by(staff_id=staff_id, status="pending")
        .order_by(LeaveApplication.id.asc())
        .populate_existing()
        .all()
    )
    for req in pending:
        ent = _entitlement(req.staff_id, req.category_id, req.year)
        req_before = req.snapshot()
        ent_before = ent.snapshot()
        release_pending(req, ent, "cancelled", actor_id, now=now)
        touched.append((req_before, req, ent_before, ent))
    db.session.flush()
    return touched


# =========================
# Entitlements
# =========================
@retrying
@permission_required(LEAVE_MANAGEMENT, "write")
def allocate_entitlement(staff_id, category_id, year, allocated_days=None, carried_forward_days=0, actor_id=None):
    """Open the (staff, category, year) balance row.

    ``allocated_days`` defaults to the category's annual cap; an uncapped
    category (cap 0) needs an explicit allocation.
    """
    year = int(year)
    with ledger_transaction(actor_id, staff_id) as tx:
        staff = catalogs.get_staff(staff_id)
        category = catalogs.leave_category(category_id)
        exists = LeaveEntitlement.query.filter_by(
            staff_id=staff.id, category_id=category.id, year=year
        ).first()
        if exists is not None:
            raise DuplicateEntitlement(
                f"Entitlement already exists for staff #{staff.id}, {category.code} {year}",
                entitlement_id=exists.id,
            )

        if allocated_days is None:
            if not category.max_days_per_year:
                raise ValidationError(
                    f"{category.code} has no annual cap; pass allocated_days explicitly",
                    category_id=category.id,
                )
            allocated_days = category.max_days_per_year
        allocated = as_decimal(allocated_days)
        carried = as_decimal(carried_forward_days)
        if allocated < 0 or carried < 0:
            raise ValidationError("Allocated and carried-forward days cannot be negative")

        ent = LeaveEntitlement(
            staff_id=staff.id,
            category_id=category.id,
            year=year,
            allocated_days=allocated,
            used_days=Decimal("0"),
            pending_days=Decimal("0"),
            carried_forward_days=carried,
        )
        ent.category = category
        db.session.add(ent)
        db.session.flush()
        check_balance(ent)

        tx.audit("staff_leave_entitlements", ent.id, "INSERT", old=None, new=ent.snapshot())

    logger.info(
        "Allocated entitlement staff_id=%s category=%s year=%s allocated=%s carried=%s",
        staff_id, category_id, year, allocated, carried,
    )
    return ent


# =========================
# Applications
# =========================
def _check_overlap(staff_id, start_date, end_date):
    clash = (
        LeaveApplication.query
        .filter(
            LeaveApplication.staff_id == staff_id,
            LeaveApplication.status.in_(("pending", "approved")),
            LeaveApplication.start_date <= end_date,
            LeaveApplication.end_date >= start_date,
        )
        .first()
    )
    if clash is not None:
        raise OverlappingLeave(
            f"Overlaps leave application #{clash.id} ({clash.start_date} - {clash.end_date})",
            application_id=clash.id,
        )


@retrying
def file_application(staff_id, category_id, start_date: date, end_date: date, reason=None,
                     actor_id=None, today=None, **details):
    """File a leave application and reserve its days as pending.

    ``actor_id`` defaults to the applicant; filing on someone else's behalf
    needs leave_management write permission.
    """
    if start_date is None or end_date is None:
        raise ValidationError("start_date and end_date are required")
    if end_date < start_date:
        raise InvalidDateOrder(f"Leave ends ({end_date}) before it starts ({start_date})")
    if start_date.year != end_date.year:
        raise SpansYearBoundary(
            "A leave application must stay within one calendar year; file one per year",
            start_date=start_date.isoformat(),
            end_date=end_date.isoformat(),
        )
    unknown = set(details) - set(APPLICATION_DETAIL_FIELDS)
    if unknown:
        raise ValidationError(f"Unknown application fields: {', '.join(sorted(unknown))}")

    if actor_id is None:
        actor_id = staff_id
    today = today or date.today()

    with ledger_transaction(actor_id, staff_id) as tx:
        staff = catalogs.get_staff(staff_id, for_update=True)
        if not staff.is_active:
            raise StaffNotActive(
                f"Staff #{staff.id} is {staff.employment_status}; only active staff can file leave",
                staff_id=staff.id,
            )
        if int(actor_id) != staff.id and permissions_enforced():
            if not has_permission(load_actor(actor_id), LEAVE_MANAGEMENT, "write"):
                raise PermissionDenied(
                    f"Staff #{actor_id} cannot file leave for staff #{staff.id}",
                    actor_id=actor_id,
                )

        category = catalogs.leave_category(category_id)
        ent = _entitlement(staff.id, category.id, start_date.year)

        total = get_calendar().count_days(start_date, end_date, category.business_days_only)
        if total <= 0:
            raise ValidationError(
                f"{start_date} - {end_date} contains no countable leave days",
                start_date=start_date.isoformat(),
                end_date=end_date.isoformat(),
            )

        notice = (start_date - today).days
        if notice < (category.min_notice_days or 0):
            raise NoticeViolation(
                f"{category.code} needs {category.min_notice_days} days notice, got {notice}",
                required=category.min_notice_days,
                given=notice,
            )
        if category.max_consecutive_days and total > category.max_consecutive_days:
            raise ConsecutiveLimitExceeded(
                f"{category.code} allows at most {category.max_consecutive_days} consecutive days, requested {total}",
                limit=category.max_consecutive_days,
                requested=str(total),
            )
        _check_overlap(staff.id, start_date, end_date)
        if total > ent.remaining_days and not _negative_allowed(category):
            raise InsufficientBalance(
                f"Requested {total} days of {category.code} but only {ent.remaining_days} remain",
                requested=str(total),
                remaining=str(ent.remaining_days),
            )

        ent_before = ent.snapshot()
        req = LeaveApplication(
            staff_id=staff.id,
            category_id=category.id,
            start_date=start_date,
            end_date=end_date,
            total_days=total,
            application_date=today,
            reason=reason,
            status="pending",
            **details,
        )
        db.session.add(req)
        ent.pending_days = as_decimal(ent.pending_days) + total

        if not category.requires_approval:
            ent.pending_days = as_decimal(ent.pending_days) - total
            ent.used_days = as_decimal(ent.used_days) + total
            req.status = "approved"
            req.decided_at = datetime.utcnow()

        check_balance(ent)
        db.session.flush()

        tx.audit(
            "leave_applications",
            req.id,
            "INSERT",
            old={"staff_leave_entitlements": ent_before},
            new={"leave_applications": req.snapshot(), "staff_leave_entitlements": ent.snapshot()},
        )

    logger.info(
        "Leave filed application_id=%s staff_id=%s category=%s days=%s status=%s",
        req.id, staff_id, category_id, total, req.status,
    )
    return req


def _load_application(application_id) -> LeaveApplication:
    req = db.session.get(LeaveApplication, int(application_id)) if application_id is not None else None
    if req is None:
        raise ApplicationNotFound(f"Leave application #{application_id} not found", application_id=application_id)
    return req


def _lock_application(application_id) -> LeaveApplication:
    return db.session.get(
        LeaveApplication,
        int(application_id),
        populate_existing=True,
        with_for_update=True,
    )


@retrying
def review(application_id, decision, reviewer_id, rejection_reason=None, now=None):
    """Approve or reject a pending application."""
    new_status = DECISIONS.get((decision or "").strip().lower())
    if new_status is None:
        raise InvalidDecision(f"Decision must be 'approved' or 'rejected', got {decision!r}")
    if new_status == "rejected" and not (rejection_reason or "").strip():
        raise ValidationError("A rejection reason is required")
    if reviewer_id is None:
        raise ValidationError("reviewer_id is required")

    staff_id = _load_application(application_id).staff_id

    with ledger_transaction(reviewer_id, staff_id) as tx:
        req = _lock_application(application_id)
        if req.status != "pending":
            raise AlreadyDecided(
                f"Leave application #{req.id} is already {req.status}",
                application_id=req.id,
                status=req.status,
            )
        if int(reviewer_id) == req.staff_id:
            raise PermissionDenied("Staff cannot review their own leave application")

        staff = catalogs.get_staff(req.staff_id)
        reviewer = catalogs.get_staff(reviewer_id)
        if new_status == "approved" and not staff.is_active:
            raise StaffNotActive(
                f"Staff #{staff.id} is {staff.employment_status}; only leave of active staff can be approved",
                staff_id=staff.id,
            )
        if permissions_enforced() and not can_approve_for(reviewer, staff):
            raise PermissionDenied(
                f"Staff #{reviewer.id} has no approval authority over staff #{staff.id}",
                reviewer_id=reviewer.id,
                department_id=staff.department_id,
            )

        ent = _entitlement(req.staff_id, req.category_id, req.year)
        req_before = req.snapshot()
        ent_before = ent.snapshot()
        days = as_decimal(req.total_days)

        if new_status == "approved":
            ent.pending_days = as_decimal(ent.pending_days) - days
            ent.used_days = as_decimal(ent.used_days) + days
            req.status = "approved"
            req.approved_by_id = reviewer.id
            req.decided_at = now or datetime.utcnow()
            check_balance(ent)
        else:
            release_pending(req, ent, "rejected", reviewer.id, now=now)
            req.rejection_reason = rejection_reason.strip()
        db.session.flush()

        tx.audit(
            "leave_applications",
            req.id,
            "UPDATE",
            old={"leave_applications": req_before, "staff_leave_entitlements": ent_before},
            new={"leave_applications": req.snapshot(), "staff_leave_entitlements": ent.snapshot()},
        )

    logger.info(
        "Leave %s application_id=%s reviewer_id=%s days=%s",
        new_status, application_id, reviewer_id, days,
    )
    return req


@retrying
def cancel(application_id, actor_id, now=None):
    """Withdraw a pending application (applicant or a leave_management writer)."""
    if actor_id is None:
        raise ValidationError("actor_id is required")
    staff_id = _load_application(application_id).staff_id

    with ledger_transaction(actor_id, staff_id) as tx:
        req = _lock_application(application_id)
        if req.status != "pending":
            raise AlreadyDecided(
                f"Leave application #{req.id} is already {req.status}",
                application_id=req.id,
                status=req.status,
            )
        if int(actor_id) != req.staff_id and permissions_enforced():
            if not has_permission(load_actor(actor_id), LEAVE_MANAGEMENT, "write"):
                raise PermissionDenied(
                    f"Staff #{actor_id} cannot cancel leave application #{req.id}",
                    actor_id=actor_id,
                )

        ent = _entitlement(req.staff_id, req.category_id, req.year)
        req_before = req.snapshot()
        ent_before = ent.snapshot()
        release_pending(req, ent, "cancelled", int(actor_id), now=now)
        db.session.flush()

        tx.audit(
            "leave_applications",
            req.id,
            "UPDATE",
            old={"leave_applications": req_before, "staff_leave_entitlements": ent_before},
            new={"leave_applications": req.snapshot(), "staff_leave_entitlements": ent.snapshot()},
        )

    logger.info("Leave cancelled application_id=%s actor_id=%s", application_id, actor_id)
    return req


def applications_for(staff_id, status=None):
    q = LeaveApplication.query.filter(LeaveApplication.staff_id == staff_id)
    if status:
        q = q.filter(LeaveApplication.status == status)
    return q.order_by(LeaveApplication.start_date.asc(), LeaveApplication.id.asc())
