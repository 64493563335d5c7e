import calendar
import logging
from datetime import date, datetime, timedelta

from extensions import db
from models import QualificationType, StaffQualification
from permissions.decorators import permission_required
from permissions.matrix import QUALIFICATION_MANAGEMENT
from services import catalogs
from services.errors import (
    AlreadyDecided,
    DuplicateQualification,
    InvalidDateOrder,
    MissingField,
    QualificationNotFound,
    ValidationError,
)
from services.ledger_tx import ledger_transaction, retrying

logger = logging.getLogger(__name__)

VERIFY_STATUSES = {
    "verified": "verified",
    "rejected": "rejected",
    "revoked": "rejected",
}
DETAIL_FIELDS = ("issuing_authority", "document_path", "notes")


def _add_months(d: date, months: int) -> date:
    m = d.month - 1 + int(months)
    year = d.year + m // 12
    month = m % 12 + 1
    day = min(d.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def _today(now):
    if now is None:
        return date.today()
    return now.date() if isinstance(now, datetime) else now


def _active_duplicate(staff_id, type_id, name, today):
    rows = StaffQualification.query.filter(
        StaffQualification.staff_id == staff_id,
        StaffQualification.qualification_type_id == type_id,
        db.func.lower(StaffQualification.qualification_name) == name.lower(),
    ).all()
    for row in rows:
        if row.is_active_record(today):
            return row
    return None


@retrying
@permission_required(QUALIFICATION_MANAGEMENT, "write")
def record(staff_id, qualification_type_id, qualification_name, issue_date=None, expiry_date=None,
           actor_id=None, today=None, **details):
    """Record a qualification for a staff member (verification pending).

    A missing expiry date is derived from the type's validity period.
    """
    name = (qualification_name or "").strip()
    if not name:
        raise MissingField("qualification_name is required", fields=["qualification_name"])
    unknown = set(details) - set(DETAIL_FIELDS)
    if unknown:
        raise ValidationError(f"Unknown qualification fields: {', '.join(sorted(unknown))}")
    today = _today(today)

    with ledger_transaction(actor_id, staff_id) as tx:
        staff = catalogs.get_staff(staff_id)
        qtype = catalogs.qualification_type(qualification_type_id)

        if expiry_date is None and issue_date is not None and qtype.validity_period_months:
            expiry_date = _add_months(issue_date, qtype.validity_period_months)
        if issue_date is not None and expiry_date is not None and expiry_date < issue_date:
            raise InvalidDateOrder(f"Expiry date {expiry_date} precedes issue date {issue_date}")

        dup = _active_duplicate(staff.id, qtype.id, name, today)
        if dup is not None:
            raise DuplicateQualification(
                f"{qtype.type_name} '{name}' is already recorded for staff #{staff.id}",
                qualification_id=dup.id,
            )

        row = StaffQualification(
            staff_id=staff.id,
            qualification_type_id=qtype.id,
            qualification_name=name,
            issue_date=issue_date,
            expiry_date=expiry_date,
            verification_status="pending",
            **details,
        )
        db.session.add(row)
        db.session.flush()

        tx.audit("staff_qualifications", row.id, "INSERT", old=None, new=row.snapshot())

    logger.info("Qualification recorded id=%s staff_id=%s type=%s", row.id, staff_id, qualification_type_id)
    return row


@retrying
@permission_required(QUALIFICATION_MANAGEMENT, "approve", actor_arg="verifier_id")
def verify(qualification_id, verifier_id, status, now=None):
    """pending -> verified / rejected, or revoke a verified record."""
    new_status = VERIFY_STATUSES.get((status or "").strip().lower())
    if new_status is None:
        raise ValidationError(f"Verification status must be verified or rejected, got {status!r}")
    if verifier_id is None:
        raise ValidationError("verifier_id is required")

    row = db.session.get(StaffQualification, int(qualification_id)) if qualification_id is not None else None
    if row is None:
        raise QualificationNotFound(f"Qualification #{qualification_id} not found")

    with ledger_transaction(verifier_id, row.staff_id) as tx:
        row = db.session.get(StaffQualification, row.id, populate_existing=True, with_for_update=True)
        current = row.verification_status
        allowed = current == "pending" or (current == "verified" and new_status == "rejected")
        if not allowed:
            raise AlreadyDecided(
                f"Qualification #{row.id} is {current}; cannot mark {new_status}",
                qualification_id=row.id,
                status=current,
            )
        if new_status == "verified" and row.is_expired(_today(now)):
            raise ValidationError(f"Qualification #{row.id} expired on {row.expiry_date}")

        before = row.snapshot("verification_status", "verified_by_id", "verified_at")
        row.verification_status = new_status
        row.verified_by_id = int(verifier_id)
        row.verified_at = now if isinstance(now, datetime) else datetime.utcnow()
        db.session.flush()

        tx.audit(
            "staff_qualifications",
            row.id,
            "UPDATE",
            old=before,
            new=row.snapshot("verification_status", "verified_by_id", "verified_at"),
        )

    logger.info("Qualification id=%s %s -> %s by %s", row.id, current, new_status, verifier_id)
    return row


def expiring_within(days, now=None):
    """Verified qualifications expiring in [today, today + days], soonest first.

    Returns a query, so the sequence is lazy and can be iterated again.
    """
    today = _today(now)
    horizon = today + timedelta(days=int(days))
    return (
        StaffQualification.query
        .filter(
            StaffQualification.verification_status == "verified",
            StaffQualification.expiry_date.isnot(None),
            StaffQualification.expiry_date >= today,
            StaffQualification.expiry_date <= horizon,
        )
        .order_by(StaffQualification.expiry_date.asc(), StaffQualification.id.asc())
    )


def mark_expired(now=None, actor_id=None):
    """Flip verified records past their expiry date to ``expired``.

    Each record is its own transaction with its own audit entry.
    """
    today = _today(now)
    ids = [
        r.id
        for r in StaffQualification.query.filter(
            StaffQualification.verification_status == "verified",
            StaffQualification.expiry_date.isnot(None),
            StaffQualification.expiry_date < today,
        ).order_by(StaffQualification.id.asc()).all()
    ]
    expired = []
    for qid in ids:
        if _expire_one(qid, today, actor_id):
            expired.append(qid)
    if expired:
        logger.info("Marked %s qualification(s) expired as of %s", len(expired), today)
    return expired


@retrying
def _expire_one(qualification_id, today, actor_id):
    staff_id = db.session.get(StaffQualification, qualification_id).staff_id
    with ledger_transaction(actor_id, staff_id) as tx:
        row = db.session.get(StaffQualification, qualification_id, populate_existing=True, with_for_update=True)
        if row.verification_status != "verified" or not row.is_expired(today):
            # someone else got there first
            tx.nothing_to_do()
            return False
        before = row.snapshot("verification_status")
        row.verification_status = "expired"
        db.session.flush()
        tx.audit("staff_qualifications", row.id, "UPDATE", old=before, new=row.snapshot("verification_status"))
    return True


def valid_for(staff_id, now=None):
    today = _today(now)
    rows = StaffQualification.query.filter_by(staff_id=staff_id, verification_status="verified").all()
    return [r for r in rows if r.is_valid(today)]


def missing_mandatory(staff_id, now=None):
    """Mandatory qualification types the staff member holds no valid record of."""
    held = {r.qualification_type_id for r in valid_for(staff_id, now)}
    mandatory = (
        QualificationType.query
        .filter(QualificationType.is_mandatory.is_(True), QualificationType.is_active.is_(True))
        .order_by(QualificationType.type_name.asc())
        .all()
    )
    return [t for t in mandatory if t.id not in held]
