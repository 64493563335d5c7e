"""Shared fixtures: an in-memory ledger with seeded catalogs."""

from datetime import date
from itertools import count
from types import SimpleNamespace

import pytest

from app import create_app
from extensions import db
from models import (
    Department,
    Facility,
    LeaveCategory,
    PermissionModule,
    QualificationType,
    RolePermission,
    StaffRank,
    SystemRole,
)
from permissions.matrix import (
    AUDIT_LOGS,
    LEAVE_MANAGEMENT,
    QUALIFICATION_MANAGEMENT,
    REPORTING,
    STAFF_MANAGEMENT,
)
from services.calendar import BusinessCalendar
from services.staff_registry import hire

# Friday. Leave filed in April 2024 clears the 7-day notice window.
TODAY = date(2024, 3, 1)
HIRE_DATE = date(2023, 1, 2)

# role -> module -> granted actions
GRANTS = {
    "hr_admin": {
        STAFF_MANAGEMENT: ("read", "write"),
        LEAVE_MANAGEMENT: ("read", "write", "approve"),
        QUALIFICATION_MANAGEMENT: ("read", "write", "approve"),
        AUDIT_LOGS: ("read",),
        REPORTING: ("read",),
    },
    "supervisor": {
        STAFF_MANAGEMENT: ("read",),
        LEAVE_MANAGEMENT: ("read", "approve"),
        QUALIFICATION_MANAGEMENT: ("read",),
    },
    "staff_user": {
        STAFF_MANAGEMENT: ("read",),
        LEAVE_MANAGEMENT: ("read",),
    },
}


@pytest.fixture
def app():
    app = create_app("config.TestConfig")
    with app.app_context():
        db.create_all()
        # weekends off, no public holidays
        app.extensions["ledger_calendar"] = BusinessCalendar(96, holidays=set())
        yield app
        db.session.remove()
        db.drop_all()


def _seed_catalog():
    hq = Department(code="HQ", name="Headquarters")
    ops = Department(code="OPS", name="Operations")
    db.session.add_all([hq, ops])
    db.session.flush()

    hq_main = Facility(code="HQ-MAIN", name="Head Office", department_id=hq.id, facility_type="main")
    ops_north = Facility(code="OPS-N", name="North Depot", department_id=ops.id)
    ops_south = Facility(code="OPS-S", name="South Depot", department_id=ops.id)
    closed = Facility(code="OPS-X", name="Closed Depot", department_id=ops.id, is_active=False)
    db.session.add_all([hq_main, ops_north, ops_south, closed])

    roles = {
        "superadmin": SystemRole(role_name="superadmin", permission_level=10, is_admin_role=True),
        "hr_admin": SystemRole(role_name="hr_admin", permission_level=8, is_admin_role=True),
        "supervisor": SystemRole(role_name="supervisor", permission_level=5),
        "staff_user": SystemRole(role_name="staff_user", permission_level=1),
    }
    db.session.add_all(roles.values())

    modules = {
        name: PermissionModule(module_name=name)
        for name in (STAFF_MANAGEMENT, LEAVE_MANAGEMENT, QUALIFICATION_MANAGEMENT, AUDIT_LOGS, REPORTING)
    }
    db.session.add_all(modules.values())
    db.session.flush()

    for role_name, grants in GRANTS.items():
        for module_name, actions in grants.items():
            db.session.add(RolePermission(
                role_id=roles[role_name].id,
                module_id=modules[module_name].id,
                **{f"can_{a}": True for a in actions},
            ))

    officer = StaffRank(rank_name="Officer", rank_category="admin", rank_level=1)
    senior = StaffRank(rank_name="Senior Officer", rank_category="admin", rank_level=2)
    db.session.add_all([officer, senior])

    annual = LeaveCategory(
        name="Annual Leave", code="AL", max_days_per_year=21, min_notice_days=7,
        max_consecutive_days=15, can_carry_forward=True,
    )
    sick = LeaveCategory(name="Sick Leave", code="SL", max_days_per_year=10)
    compassionate = LeaveCategory(
        name="Compassionate Leave", code="CL", max_days_per_year=3, requires_approval=False,
    )
    db.session.add_all([annual, sick, compassionate])

    first_aid = QualificationType(
        type_name="First Aid", type_category="certification", is_mandatory=True, validity_period_months=24,
    )
    degree = QualificationType(type_name="Degree", type_category="education")
    db.session.add_all([first_aid, degree])
    db.session.commit()

    return SimpleNamespace(
        hq=hq.id,
        ops=ops.id,
        hq_main=hq_main.id,
        ops_north=ops_north.id,
        ops_south=ops_south.id,
        closed_facility=closed.id,
        superadmin=roles["superadmin"].id,
        hr_admin=roles["hr_admin"].id,
        supervisor=roles["supervisor"].id,
        staff_user=roles["staff_user"].id,
        officer=officer.id,
        senior=senior.id,
        annual=annual.id,
        sick=sick.id,
        compassionate=compassionate.id,
        first_aid=first_aid.id,
        degree=degree.id,
    )


@pytest.fixture
def catalog(app):
    return _seed_catalog()


@pytest.fixture
def make_staff(catalog):
    """Factory hiring a staff member; ``role`` is a role name from the catalog."""
    numbers = count(1)

    def _make(role="staff_user", department="hq", facility="hq_main", actor_id=None, **fields):
        n = next(numbers)
        data = {
            "employee_number": f"E{n:04d}",
            "first_name": fields.pop("first_name", f"Staff{n}"),
            "last_name": fields.pop("last_name", "Tester"),
            "email": f"staff{n}@example.org",
            "hire_date": HIRE_DATE,
        }
        data.update(fields)
        placement = {
            "department_id": getattr(catalog, department),
            "facility_id": getattr(catalog, facility),
            "role_id": getattr(catalog, role),
            "rank_id": catalog.officer,
        }
        return hire(data, placement, actor_id=actor_id)

    return _make


@pytest.fixture
def hr_admin(make_staff):
    return make_staff(role="hr_admin", first_name="Hana", last_name="Admin")
