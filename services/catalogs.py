"""Read-only lookups over the reference catalogs."""
from extensions import db
from models import Department, Facility, LeaveCategory, QualificationType, Staff, StaffRank, SystemRole
from services.errors import StaffNotFound, UnknownReference


def _active(model, pk, label):
    if pk is None:
        raise UnknownReference(f"{label} is required")
    row = db.session.get(model, int(pk))
    if row is None or not row.is_active:
        raise UnknownReference(f"Unknown or inactive {label} #{pk}", reference=label, reference_id=pk)
    return row


def placement(department_id, facility_id, role_id, rank_id):
    """Validate an organisational placement and return the catalog rows."""
    department = _active(Department, department_id, "department")
    facility = _active(Facility, facility_id, "facility")
    role = _active(SystemRole, role_id, "role")
    rank = _active(StaffRank, rank_id, "rank")
    if facility.department_id != department.id:
        raise UnknownReference(
            f"Facility {facility.code} does not belong to department {department.code}",
            facility_id=facility.id,
            department_id=department.id,
        )
    return department, facility, role, rank


def leave_category(category_id) -> LeaveCategory:
    return _active(LeaveCategory, category_id, "leave category")


def qualification_type(type_id) -> QualificationType:
    return _active(QualificationType, type_id, "qualification type")


def get_staff(staff_id, for_update=False) -> Staff:
    if staff_id is None:
        raise StaffNotFound("Staff id is required")
    staff = db.session.get(
        Staff,
        int(staff_id),
        populate_existing=for_update,
        with_for_update=True if for_update else None,
    )
    if staff is None:
        raise StaffNotFound(f"Staff #{staff_id} not found", staff_id=staff_id)
    return staff
