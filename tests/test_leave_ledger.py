"""Leave entitlements and the application workflow."""

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import update

from conftest import TODAY
from extensions import db
from models import AuditLog, LeaveApplication, LeaveCategory, LeaveEntitlement
from services import leave_ledger
from services.audit_trail import trail_for
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
from services.staff_registry import assign_supervisor, change_status

# Mon 8 - Fri 12 April 2024: five business days
FIVE_DAYS = (date(2024, 4, 8), date(2024, 4, 12))
# Mon 15 - Wed 17 April 2024: three business days
THREE_DAYS = (date(2024, 4, 15), date(2024, 4, 17))


def _file(staff, category_id, span, **kwargs):
    kwargs.setdefault("today", TODAY)
    return leave_ledger.file_application(staff.id, category_id, span[0], span[1], **kwargs)


def _balance(staff, category_id, year=2024):
    ent = leave_ledger.balance(staff.id, category_id, year)
    return ent.allocated_days, ent.used_days, ent.pending_days, ent.remaining_days


@pytest.fixture
def applicant(catalog, make_staff, hr_admin):
    staff = make_staff()
    leave_ledger.allocate_entitlement(staff.id, catalog.annual, 2024, actor_id=hr_admin.id)
    return staff


# ===================================================================
# Entitlements
# ===================================================================

class TestAllocate:
    def test_defaults_to_category_cap(self, catalog, applicant) -> None:
        assert _balance(applicant, catalog.annual) == (21, 0, 0, 21)

    def test_explicit_allocation_and_carry_forward(self, catalog, make_staff, hr_admin) -> None:
        staff = make_staff()
        ent = leave_ledger.allocate_entitlement(
            staff.id, catalog.sick, 2024, allocated_days=Decimal("7.5"), carried_forward_days=2,
            actor_id=hr_admin.id,
        )
        assert ent.version == 1
        assert leave_ledger.balance(staff.id, catalog.sick, 2024).remaining_days == Decimal("9.5")

        entry = trail_for("staff_leave_entitlements", ent.id).one()
        assert entry.action == "INSERT"
        assert Decimal(entry.new_values["remaining_days"]) == Decimal("9.5")

    def test_duplicate_rejected(self, catalog, applicant, hr_admin) -> None:
        with pytest.raises(DuplicateEntitlement):
            leave_ledger.allocate_entitlement(applicant.id, catalog.annual, 2024, actor_id=hr_admin.id)
        assert LeaveEntitlement.query.filter_by(staff_id=applicant.id).count() == 1

    def test_negative_allocation_rejected(self, catalog, make_staff, hr_admin) -> None:
        staff = make_staff()
        with pytest.raises(ValidationError):
            leave_ledger.allocate_entitlement(staff.id, catalog.sick, 2024, allocated_days=-1, actor_id=hr_admin.id)

    def test_needs_leave_write_permission(self, catalog, make_staff) -> None:
        staff = make_staff()
        with pytest.raises(PermissionDenied):
            leave_ledger.allocate_entitlement(staff.id, catalog.sick, 2024, actor_id=staff.id)

    def test_uncapped_category_needs_explicit_allocation(self, make_staff, hr_admin) -> None:
        unpaid = LeaveCategory(name="Unpaid Leave", code="UL", max_days_per_year=0)
        db.session.add(unpaid)
        db.session.commit()
        staff = make_staff()

        with pytest.raises(ValidationError):
            leave_ledger.allocate_entitlement(staff.id, unpaid.id, 2024, actor_id=hr_admin.id)
        assert LeaveEntitlement.query.filter_by(staff_id=staff.id).count() == 0

        leave_ledger.allocate_entitlement(staff.id, unpaid.id, 2024, allocated_days=30, actor_id=hr_admin.id)
        req = _file(staff, unpaid.id, THREE_DAYS)
        assert req.status == "pending"
        assert _balance(staff, unpaid.id) == (30, 0, 3, 27)


# ===================================================================
# Balance arithmetic
# ===================================================================

class TestBalanceScenario:
    @pytest.fixture
    def used_five(self, catalog, applicant, hr_admin):
        first = _file(applicant, catalog.annual, FIVE_DAYS)
        leave_ledger.review(first.id, "approved", hr_admin.id)
        assert _balance(applicant, catalog.annual) == (21, 5, 0, 16)
        return applicant

    def test_filing_reserves_pending_days(self, catalog, used_five) -> None:
        req = _file(used_five, catalog.annual, THREE_DAYS)
        assert req.status == "pending"
        assert req.total_days == 3
        assert _balance(used_five, catalog.annual) == (21, 5, 3, 13)

    def test_approval_moves_pending_to_used(self, catalog, used_five, hr_admin) -> None:
        req = _file(used_five, catalog.annual, THREE_DAYS)
        leave_ledger.review(req.id, "approve", hr_admin.id)

        assert _balance(used_five, catalog.annual) == (21, 8, 0, 13)
        req = leave_ledger.applications_for(used_five.id, status="approved").all()[-1]
        assert req.approved_by_id == hr_admin.id
        assert req.decided_at is not None

    def test_rejection_releases_pending(self, catalog, used_five, hr_admin) -> None:
        req = _file(used_five, catalog.annual, THREE_DAYS)
        leave_ledger.review(req.id, "rejected", hr_admin.id, rejection_reason="Short staffed")

        assert _balance(used_five, catalog.annual) == (21, 5, 0, 16)
        req = leave_ledger.applications_for(used_five.id, status="rejected").one()
        assert req.rejection_reason == "Short staffed"

    def test_cancel_restores_balance(self, catalog, used_five) -> None:
        req = _file(used_five, catalog.annual, THREE_DAYS)
        leave_ledger.cancel(req.id, used_five.id)

        assert _balance(used_five, catalog.annual) == (21, 5, 0, 16)
        assert leave_ledger.applications_for(used_five.id, status="cancelled").one().cancelled_by_id == used_five.id

    def test_version_counter_moves_with_each_change(self, catalog, used_five, hr_admin) -> None:
        version = leave_ledger.balance(used_five.id, catalog.annual, 2024).version
        req = _file(used_five, catalog.annual, THREE_DAYS)
        leave_ledger.review(req.id, "approved", hr_admin.id)
        assert leave_ledger.balance(used_five.id, catalog.annual, 2024).version == version + 2


# ===================================================================
# Filing rules
# ===================================================================

class TestFileApplication:
    def test_weekend_days_not_counted(self, catalog, applicant) -> None:
        req = _file(applicant, catalog.annual, (date(2024, 4, 12), date(2024, 4, 15)))
        assert req.total_days == 2

    def test_end_before_start(self, catalog, applicant) -> None:
        with pytest.raises(InvalidDateOrder):
            _file(applicant, catalog.annual, (date(2024, 4, 12), date(2024, 4, 8)))

    def test_year_boundary_rejected(self, catalog, applicant) -> None:
        with pytest.raises(SpansYearBoundary):
            _file(applicant, catalog.annual, (date(2024, 12, 30), date(2025, 1, 2)))

    def test_weekend_only_request(self, catalog, applicant) -> None:
        with pytest.raises(ValidationError):
            _file(applicant, catalog.annual, (date(2024, 4, 13), date(2024, 4, 14)))

    def test_notice_period(self, catalog, applicant) -> None:
        with pytest.raises(NoticeViolation) as exc:
            _file(applicant, catalog.annual, (date(2024, 3, 5), date(2024, 3, 5)))
        assert exc.value.context == {"required": 7, "given": 4}

    def test_consecutive_limit(self, catalog, applicant) -> None:
        # 20 business days, within the 21-day balance but over the 15-day run
        with pytest.raises(ConsecutiveLimitExceeded):
            _file(applicant, catalog.annual, (date(2024, 4, 1), date(2024, 4, 26)))

    def test_insufficient_balance(self, catalog, make_staff, hr_admin) -> None:
        staff = make_staff()
        leave_ledger.allocate_entitlement(staff.id, catalog.sick, 2024, allocated_days=2, actor_id=hr_admin.id)
        audits = AuditLog.query.count()

        with pytest.raises(InsufficientBalance):
            _file(staff, catalog.sick, THREE_DAYS)
        assert _balance(staff, catalog.sick) == (2, 0, 0, 2)
        assert AuditLog.query.count() == audits

    def test_missing_entitlement(self, catalog, applicant) -> None:
        with pytest.raises(EntitlementNotFound):
            _file(applicant, catalog.sick, THREE_DAYS)

    def test_overlap_with_pending_application(self, catalog, applicant) -> None:
        _file(applicant, catalog.annual, FIVE_DAYS)
        with pytest.raises(OverlappingLeave):
            _file(applicant, catalog.annual, (date(2024, 4, 12), date(2024, 4, 16)))

    def test_cancelled_leave_does_not_block(self, catalog, applicant) -> None:
        req = _file(applicant, catalog.annual, FIVE_DAYS)
        leave_ledger.cancel(req.id, applicant.id)
        assert _file(applicant, catalog.annual, FIVE_DAYS).status == "pending"

    def test_category_without_approval_is_final(self, catalog, applicant, hr_admin) -> None:
        leave_ledger.allocate_entitlement(applicant.id, catalog.compassionate, 2024, actor_id=hr_admin.id)
        req = _file(applicant, catalog.compassionate, (date(2024, 3, 4), date(2024, 3, 5)))

        assert req.status == "approved"
        assert _balance(applicant, catalog.compassionate) == (3, 2, 0, 1)

    def test_details_stored(self, catalog, applicant) -> None:
        req = _file(
            applicant, catalog.annual, FIVE_DAYS, reason="Family trip",
            emergency_contact_during_leave="555-0101", handover_notes="Inbox to Sam",
        )
        assert req.reason == "Family trip"
        assert req.handover_notes == "Inbox to Sam"
        assert req.application_date == TODAY

    def test_unknown_detail_rejected(self, catalog, applicant) -> None:
        with pytest.raises(ValidationError):
            _file(applicant, catalog.annual, FIVE_DAYS, priority="high")

    def test_one_audit_entry(self, catalog, applicant) -> None:
        audits = AuditLog.query.count()
        req = _file(applicant, catalog.annual, FIVE_DAYS)

        assert AuditLog.query.count() == audits + 1
        entry = trail_for("leave_applications", req.id).one()
        assert entry.changed_by_id == applicant.id
        assert Decimal(entry.old_values["staff_leave_entitlements"]["pending_days"]) == 0
        assert Decimal(entry.new_values["staff_leave_entitlements"]["pending_days"]) == 5
        assert entry.new_values["leave_applications"]["status"] == "pending"

    def test_filing_for_someone_else(self, catalog, applicant, make_staff, hr_admin) -> None:
        colleague = make_staff()
        with pytest.raises(PermissionDenied):
            _file(applicant, catalog.annual, FIVE_DAYS, actor_id=colleague.id)

        req = _file(applicant, catalog.annual, FIVE_DAYS, actor_id=hr_admin.id)
        assert req.staff_id == applicant.id


# ===================================================================
# Review / cancel
# ===================================================================

class TestReview:
    def test_second_decision_rejected(self, catalog, applicant, hr_admin) -> None:
        req = _file(applicant, catalog.annual, FIVE_DAYS)
        leave_ledger.review(req.id, "approved", hr_admin.id)

        with pytest.raises(AlreadyDecided):
            leave_ledger.review(req.id, "rejected", hr_admin.id, rejection_reason="Changed mind")
        with pytest.raises(AlreadyDecided):
            leave_ledger.cancel(req.id, applicant.id)
        assert _balance(applicant, catalog.annual) == (21, 5, 0, 16)

    def test_rejection_needs_reason(self, catalog, applicant, hr_admin) -> None:
        req = _file(applicant, catalog.annual, FIVE_DAYS)
        with pytest.raises(ValidationError):
            leave_ledger.review(req.id, "rejected", hr_admin.id, rejection_reason="  ")

    def test_unknown_decision(self, catalog, applicant, hr_admin) -> None:
        req = _file(applicant, catalog.annual, FIVE_DAYS)
        with pytest.raises(InvalidDecision):
            leave_ledger.review(req.id, "maybe", hr_admin.id)

    def test_unknown_application(self, hr_admin) -> None:
        with pytest.raises(ApplicationNotFound):
            leave_ledger.review(9999, "approved", hr_admin.id)

    def test_cannot_review_own_application(self, catalog, hr_admin) -> None:
        leave_ledger.allocate_entitlement(hr_admin.id, catalog.annual, 2024, actor_id=hr_admin.id)
        req = _file(hr_admin, catalog.annual, FIVE_DAYS)
        with pytest.raises(PermissionDenied):
            leave_ledger.review(req.id, "approved", hr_admin.id)

    def test_plain_staff_cannot_approve(self, catalog, applicant, make_staff) -> None:
        colleague = make_staff()
        req = _file(applicant, catalog.annual, FIVE_DAYS)
        with pytest.raises(PermissionDenied):
            leave_ledger.review(req.id, "approved", colleague.id)
        assert _balance(applicant, catalog.annual) == (21, 0, 5, 16)

    def test_supervisor_scope(self, catalog, applicant, make_staff, hr_admin) -> None:
        outsider = make_staff(role="supervisor", department="ops", facility="ops_north")
        req = _file(applicant, catalog.annual, FIVE_DAYS)
        with pytest.raises(PermissionDenied):
            leave_ledger.review(req.id, "approved", outsider.id)

        # direct supervisor approves across departments
        assign_supervisor(applicant.id, outsider.id, actor_id=hr_admin.id)
        leave_ledger.review(req.id, "approved", outsider.id)
        assert _balance(applicant, catalog.annual) == (21, 5, 0, 16)

    def test_same_department_supervisor(self, catalog, applicant, make_staff) -> None:
        boss = make_staff(role="supervisor")
        req = _file(applicant, catalog.annual, FIVE_DAYS)
        assert leave_ledger.review(req.id, "approved", boss.id).status == "approved"

    def test_colleague_cannot_cancel(self, catalog, applicant, make_staff, hr_admin) -> None:
        colleague = make_staff()
        req = _file(applicant, catalog.annual, FIVE_DAYS)
        with pytest.raises(PermissionDenied):
            leave_ledger.cancel(req.id, colleague.id)

        leave_ledger.cancel(req.id, hr_admin.id)
        assert _balance(applicant, catalog.annual) == (21, 0, 0, 21)

    def test_review_audit_entry(self, catalog, applicant, hr_admin) -> None:
        req = _file(applicant, catalog.annual, FIVE_DAYS)
        leave_ledger.review(req.id, "approved", hr_admin.id)

        entries = trail_for("leave_applications", req.id).all()
        assert [e.action for e in entries] == ["INSERT", "UPDATE"]
        entry = entries[-1]
        assert entry.changed_by_id == hr_admin.id
        assert entry.old_values["leave_applications"]["status"] == "pending"
        assert entry.new_values["leave_applications"]["status"] == "approved"
        assert Decimal(entry.new_values["staff_leave_entitlements"]["used_days"]) == 5


class TestNegativeBalance:
    def test_global_switch_allows_overdraw(self, app, catalog, make_staff, hr_admin) -> None:
        app.config["LEAVE_ALLOW_NEGATIVE_BALANCE"] = True
        staff = make_staff()
        leave_ledger.allocate_entitlement(staff.id, catalog.sick, 2024, allocated_days=1, actor_id=hr_admin.id)

        _file(staff, catalog.sick, THREE_DAYS)
        assert _balance(staff, catalog.sick)[3] == -2

    def test_category_flag_allows_overdraw(self, catalog, make_staff, hr_admin) -> None:
        db.session.get(LeaveCategory, catalog.sick).allow_negative_balance = True
        db.session.commit()
        staff = make_staff()
        leave_ledger.allocate_entitlement(staff.id, catalog.sick, 2024, allocated_days=1, actor_id=hr_admin.id)

        req = _file(staff, catalog.sick, THREE_DAYS)
        leave_ledger.review(req.id, "approved", hr_admin.id)
        assert _balance(staff, catalog.sick) == (1, 3, 0, -2)


class TestNonActiveStaff:
    def test_suspended_staff_leave_not_approved(self, catalog, applicant, hr_admin) -> None:
        req = _file(applicant, catalog.annual, THREE_DAYS)
        change_status(applicant.id, "suspended", actor_id=hr_admin.id)

        with pytest.raises(StaffNotActive):
            leave_ledger.review(req.id, "approved", hr_admin.id)
        assert _balance(applicant, catalog.annual) == (21, 0, 3, 18)

        # rejecting still releases the reserved days
        leave_ledger.review(req.id, "rejected", hr_admin.id, rejection_reason="Suspended")
        assert _balance(applicant, catalog.annual) == (21, 0, 0, 21)

    def test_inactive_staff_can_still_cancel(self, catalog, applicant, hr_admin) -> None:
        req = _file(applicant, catalog.annual, THREE_DAYS)
        change_status(applicant.id, "inactive", actor_id=hr_admin.id)

        assert leave_ledger.cancel(req.id, hr_admin.id).status == "cancelled"
        assert _balance(applicant, catalog.annual) == (21, 0, 0, 21)


class TestBalanceInvariant:
    def test_broken_balance_aborts_the_movement(self, catalog, applicant) -> None:
        req = _file(applicant, catalog.annual, THREE_DAYS)
        ent = leave_ledger.balance(applicant.id, catalog.annual, 2024)
        # a stray write overdraws the row behind the ledger's back
        db.session.execute(
            update(LeaveEntitlement)
            .where(LeaveEntitlement.id == ent.id)
            .values(used_days=Decimal("25"))
            .execution_options(synchronize_session=False)
        )
        db.session.commit()
        audits = AuditLog.query.count()

        with pytest.raises(BalanceInvariantBroken) as exc:
            leave_ledger.cancel(req.id, applicant.id)
        assert exc.value.kind == "IntegrityFault"

        db.session.expire_all()
        assert db.session.get(LeaveApplication, req.id).status == "pending"
        assert _balance(applicant, catalog.annual) == (21, 25, 3, -7)
        assert AuditLog.query.count() == audits
