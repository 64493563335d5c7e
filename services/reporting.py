"""Read-only projections for the reporting layer."""
from sqlalchemy import func, select
from sqlalchemy.orm import aliased

from extensions import db
from models import (
    Department,
    Facility,
    LeaveCategory,
    LeaveEntitlement,
    Staff,
    StaffRank,
    SystemRole,
    QualificationType,
)
from services.qualification_tracker import expiring_within, missing_mandatory


def _full_name(model, middle=True):
    # "+" on string columns compiles to the dialect's concatenation operator
    if not middle:
        return model.first_name + " " + model.last_name
    expr = model.first_name + " " + func.coalesce(model.middle_name, "") + " " + model.last_name
    return func.replace(expr, "  ", " ")


def staff_details(status=None):
    """One row per staff member with catalog names resolved."""
    sup = aliased(Staff)
    stmt = (
        select(
            Staff.id.label("staff_id"),
            Staff.employee_number,
            _full_name(Staff).label("full_name"),
            Staff.email,
            Staff.phone,
            Staff.employment_status,
            Staff.hire_date,
            Department.name.label("department_name"),
            Facility.name.label("facility_name"),
            SystemRole.role_name,
            SystemRole.permission_level,
            StaffRank.rank_name,
            StaffRank.rank_category,
            (sup.first_name + " " + sup.last_name).label("supervisor_name"),
        )
        .join(Department, Staff.department_id == Department.id)
        .join(Facility, Staff.facility_id == Facility.id)
        .join(SystemRole, Staff.role_id == SystemRole.id)
        .join(StaffRank, Staff.rank_id == StaffRank.id)
        .outerjoin(sup, Staff.supervisor_id == sup.id)
        .order_by(Staff.last_name.asc(), Staff.first_name.asc(), Staff.id.asc())
    )
    if status:
        stmt = stmt.where(Staff.employment_status == status)
    return [dict(r) for r in db.session.execute(stmt).mappings().all()]


def leave_summary(year=None):
    """Entitlement balances of active staff."""
    stmt = (
        select(
            Staff.id.label("staff_id"),
            Staff.employee_number,
            _full_name(Staff, middle=False).label("staff_name"),
            LeaveCategory.name.label("category_name"),
            LeaveCategory.code.label("category_code"),
            LeaveEntitlement.year,
            LeaveEntitlement.allocated_days,
            LeaveEntitlement.used_days,
            LeaveEntitlement.pending_days,
            LeaveEntitlement.remaining_days.label("remaining_days"),
            LeaveEntitlement.carried_forward_days,
        )
        .join(LeaveEntitlement, LeaveEntitlement.staff_id == Staff.id)
        .join(LeaveCategory, LeaveEntitlement.category_id == LeaveCategory.id)
        .where(Staff.employment_status == "active")
        .order_by(Staff.id.asc(), LeaveEntitlement.year.asc(), LeaveCategory.code.asc())
    )
    if year is not None:
        stmt = stmt.where(LeaveEntitlement.year == int(year))
    return [dict(r) for r in db.session.execute(stmt).mappings().all()]


def expiry_alerts(days, now=None):
    rows = []
    for q in expiring_within(days, now):
        staff = db.session.get(Staff, q.staff_id)
        rows.append({
            "qualification_id": q.id,
            "staff_id": q.staff_id,
            "employee_number": staff.employee_number if staff else None,
            "staff_name": staff.full_name if staff else None,
            "qualification_type": q.qualification_type.type_name if q.qualification_type else None,
            "qualification_name": q.qualification_name,
            "expiry_date": q.expiry_date,
        })
    return rows


def compliance_gaps(now=None):
    """Active staff missing a valid record of some mandatory qualification type."""
    mandatory_count = QualificationType.query.filter_by(is_mandatory=True, is_active=True).count()
    if not mandatory_count:
        return []
    gaps = []
    for staff in Staff.query.filter_by(employment_status="active").order_by(Staff.id.asc()):
        missing = missing_mandatory(staff.id, now)
        if missing:
            gaps.append({
                "staff_id": staff.id,
                "employee_number": staff.employee_number,
                "missing": [t.type_name for t in missing],
            })
    return gaps
