"""Reporting projections, scheduled jobs and CLI commands."""

from datetime import date, datetime
from decimal import Decimal

from conftest import TODAY
from jobs.year_rollover import carry_forward_days, roll_over
from models import LeaveEntitlement
from services import leave_ledger, qualification_tracker as tracker
from services.reporting import compliance_gaps, expiry_alerts, leave_summary, staff_details
from services.staff_registry import assign_supervisor, change_status

APRIL = (date(2024, 4, 8), date(2024, 4, 12))


def _used_five(catalog, staff, hr_admin):
    leave_ledger.allocate_entitlement(staff.id, catalog.annual, 2024, actor_id=hr_admin.id)
    req = leave_ledger.file_application(staff.id, catalog.annual, *APRIL, today=TODAY)
    leave_ledger.review(req.id, "approved", hr_admin.id)


def _verified_first_aid(catalog, staff, hr_admin):
    row = tracker.record(
        staff.id, catalog.first_aid, "First Aid Level 2", issue_date=date(2023, 1, 10),
        actor_id=hr_admin.id, today=TODAY,
    )
    tracker.verify(row.id, hr_admin.id, "verified", now=datetime(2024, 3, 1, 9, 0))
    return row


# ===================================================================
# Reporting
# ===================================================================

class TestReporting:
    def test_staff_details_resolves_catalog_names(self, make_staff, hr_admin) -> None:
        staff = make_staff(first_name="Omar", last_name="Zed", department="ops", facility="ops_north")
        assign_supervisor(staff.id, hr_admin.id, actor_id=hr_admin.id)

        rows = {r["staff_id"]: r for r in staff_details()}
        row = rows[staff.id]
        assert row["full_name"] == "Omar Zed"
        assert row["department_name"] == "Operations"
        assert row["facility_name"] == "North Depot"
        assert row["role_name"] == "staff_user"
        assert row["rank_name"] == "Officer"
        assert row["supervisor_name"] == "Hana Admin"
        assert rows[hr_admin.id]["supervisor_name"] is None

    def test_staff_details_status_filter(self, make_staff, hr_admin) -> None:
        leaver = make_staff()
        change_status(leaver.id, "terminated", effective_date=TODAY, actor_id=hr_admin.id)
        assert [r["staff_id"] for r in staff_details(status="terminated")] == [leaver.id]

    def test_leave_summary_remaining(self, catalog, make_staff, hr_admin) -> None:
        staff = make_staff()
        _used_five(catalog, staff, hr_admin)

        rows = [r for r in leave_summary(2024) if r["staff_id"] == staff.id]
        assert len(rows) == 1
        assert rows[0]["category_code"] == "AL"
        assert Decimal(str(rows[0]["used_days"])) == 5
        assert Decimal(str(rows[0]["remaining_days"])) == 16

    def test_leave_summary_skips_inactive_staff(self, catalog, make_staff, hr_admin) -> None:
        staff = make_staff()
        leave_ledger.allocate_entitlement(staff.id, catalog.annual, 2024, actor_id=hr_admin.id)
        change_status(staff.id, "inactive", actor_id=hr_admin.id)
        assert [r for r in leave_summary(2024) if r["staff_id"] == staff.id] == []

    def test_expiry_alerts(self, catalog, make_staff, hr_admin) -> None:
        staff = make_staff(first_name="Lena", last_name="Moss")
        row = _verified_first_aid(catalog, staff, hr_admin)

        alerts = expiry_alerts(30, now=date(2024, 12, 20))
        assert [a["qualification_id"] for a in alerts] == [row.id]
        assert alerts[0]["staff_name"] == "Lena Moss"
        assert alerts[0]["qualification_type"] == "First Aid"
        assert alerts[0]["expiry_date"] == date(2025, 1, 10)

    def test_compliance_gaps(self, catalog, make_staff, hr_admin) -> None:
        covered = make_staff()
        uncovered = make_staff()
        _verified_first_aid(catalog, covered, hr_admin)

        gaps = {g["staff_id"]: g["missing"] for g in compliance_gaps(now=TODAY)}
        assert covered.id not in gaps
        assert gaps[uncovered.id] == ["First Aid"]


# ===================================================================
# Year rollover
# ===================================================================

class TestYearRollover:
    def test_unused_days_carried_forward(self, catalog, make_staff, hr_admin) -> None:
        staff = make_staff()
        _used_five(catalog, staff, hr_admin)
        leave_ledger.allocate_entitlement(staff.id, catalog.sick, 2024, actor_id=hr_admin.id)

        created = roll_over(2024)
        assert len(created) == 2

        annual = leave_ledger.balance(staff.id, catalog.annual, 2025)
        assert annual.allocated_days == 21
        assert annual.carried_forward_days == 16
        assert annual.remaining_days == 37

        # sick leave does not carry forward
        assert leave_ledger.balance(staff.id, catalog.sick, 2025).carried_forward_days == 0

    def test_carry_forward_capped_by_annual_cap(self, catalog, make_staff, hr_admin) -> None:
        staff = make_staff()
        ent = leave_ledger.allocate_entitlement(
            staff.id, catalog.annual, 2024, carried_forward_days=10, actor_id=hr_admin.id,
        )
        assert carry_forward_days(ent) == 21

    def test_rerun_is_harmless(self, catalog, make_staff, hr_admin) -> None:
        staff = make_staff()
        leave_ledger.allocate_entitlement(staff.id, catalog.annual, 2024, actor_id=hr_admin.id)
        roll_over(2024)

        assert roll_over(2024) == []
        assert LeaveEntitlement.query.filter_by(staff_id=staff.id, year=2025).count() == 1

    def test_terminated_staff_skipped(self, catalog, make_staff, hr_admin) -> None:
        staff = make_staff()
        leave_ledger.allocate_entitlement(staff.id, catalog.annual, 2024, actor_id=hr_admin.id)
        change_status(staff.id, "terminated", effective_date=TODAY, actor_id=hr_admin.id)

        assert roll_over(2024) == []


# ===================================================================
# CLI
# ===================================================================

class TestCommands:
    def test_init_db(self, app) -> None:
        result = app.test_cli_runner().invoke(args=["init-db"])
        assert result.exit_code == 0
        assert "Ledger tables created." in result.output

    def test_rollover_year(self, app, catalog, make_staff, hr_admin) -> None:
        staff = make_staff()
        leave_ledger.allocate_entitlement(staff.id, catalog.annual, 2024, actor_id=hr_admin.id)

        result = app.test_cli_runner().invoke(args=["rollover-year", "2024"])
        assert result.exit_code == 0
        assert "Created 1 entitlement(s) for 2025." in result.output

    def test_expire_qualifications(self, app, catalog, make_staff, hr_admin) -> None:
        staff = make_staff()
        _verified_first_aid(catalog, staff, hr_admin)

        # the certificate lapsed in January 2025
        result = app.test_cli_runner().invoke(args=["expire-qualifications"])
        assert result.exit_code == 0
        assert "Expired 1 qualification(s)." in result.output
