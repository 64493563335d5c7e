from datetime import datetime, date
from decimal import Decimal

from sqlalchemy.ext.hybrid import hybrid_property

from extensions import db


EMPLOYMENT_STATUSES = ("active", "inactive", "terminated", "suspended")
ASSIGNMENT_REASONS = ("hire", "transfer", "promotion", "demotion", "temporary")
LEAVE_STATUSES = ("pending", "approved", "rejected", "cancelled")
VERIFICATION_STATUSES = ("pending", "verified", "rejected", "expired")
AUDIT_ACTIONS = ("INSERT", "UPDATE", "DELETE")

ZERO = Decimal("0")


def as_decimal(value) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def _json_scalar(value):
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    return value


class SnapshotMixin:
    """Row -> ordered {column: scalar} payload for audit snapshots."""

    _snapshot_exclude = ("created_at", "updated_at")

    def snapshot(self, *fields):
        if not fields:
            fields = [
                attr.key
                for attr in self.__mapper__.column_attrs
                if attr.key not in self._snapshot_exclude
            ]
        return {name: _json_scalar(getattr(self, name)) for name in fields}


# ======================
# Organisation (Master Data)
# ======================
class Department(db.Model):
    __tablename__ = "departments"

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(10), unique=True, index=True, nullable=False)
    name = db.Column(db.String(100), nullable=False)
    parent_department_id = db.Column(db.Integer, db.ForeignKey("departments.id"), nullable=True, index=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False, index=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    parent = db.relationship("Department", remote_side=[id], lazy="joined")

    @property
    def label(self):
        return (self.name or self.code or f"Department #{self.id}").strip()


class Facility(db.Model):
    __tablename__ = "facilities"

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(15), unique=True, index=True, nullable=False)
    name = db.Column(db.String(150), nullable=False)
    department_id = db.Column(db.Integer, db.ForeignKey("departments.id"), nullable=False, index=True)
    address = db.Column(db.Text, nullable=True)
    # main / branch / satellite / temporary
    facility_type = db.Column(db.String(20), default="branch", nullable=False, index=True)
    capacity = db.Column(db.Integer, default=0, nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False, index=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    department = db.relationship("Department", lazy="joined")

    __table_args__ = (
        db.CheckConstraint(
            "facility_type IN ('main','branch','satellite','temporary')",
            name="ck_facility_type",
        ),
    )


# ======================
# Roles / Ranks / Permission matrix
# ======================
class SystemRole(db.Model):
    __tablename__ = "system_roles"

    id = db.Column(db.Integer, primary_key=True)
    role_name = db.Column(db.String(50), unique=True, nullable=False)
    description = db.Column(db.Text, nullable=True)
    # 1 (lowest) .. 10 (highest)
    permission_level = db.Column(db.Integer, default=1, nullable=False, index=True)
    is_admin_role = db.Column(db.Boolean, default=False, nullable=False, index=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False, index=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    permissions = db.relationship(
        "RolePermission",
        back_populates="role",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class StaffRank(db.Model):
    __tablename__ = "staff_ranks"

    id = db.Column(db.Integer, primary_key=True)
    rank_name = db.Column(db.String(50), unique=True, nullable=False)
    # doctor / nurse / admin / support / temporary / casual / volunteer
    rank_category = db.Column(db.String(20), nullable=False, index=True)
    rank_level = db.Column(db.Integer, default=1, nullable=False, index=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False, index=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)


class PermissionModule(db.Model):
    __tablename__ = "permission_modules"

    id = db.Column(db.Integer, primary_key=True)
    module_name = db.Column(db.String(50), unique=True, nullable=False)
    module_description = db.Column(db.Text, nullable=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False, index=True)


class RolePermission(db.Model):
    __tablename__ = "role_permissions"

    id = db.Column(db.Integer, primary_key=True)
    role_id = db.Column(db.Integer, db.ForeignKey("system_roles.id"), nullable=False, index=True)
    module_id = db.Column(db.Integer, db.ForeignKey("permission_modules.id"), nullable=False, index=True)
    can_read = db.Column(db.Boolean, default=False, nullable=False)
    can_write = db.Column(db.Boolean, default=False, nullable=False)
    can_delete = db.Column(db.Boolean, default=False, nullable=False)
    can_approve = db.Column(db.Boolean, default=False, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    role = db.relationship("SystemRole", back_populates="permissions")
    module = db.relationship("PermissionModule", lazy="joined")

    __table_args__ = (
        db.UniqueConstraint("role_id", "module_id", name="uq_role_permissions_role_module"),
    )


# ======================
# Staff registry
# ======================
class Staff(SnapshotMixin, db.Model):
    __tablename__ = "staff"

    id = db.Column(db.Integer, primary_key=True)
    employee_number = db.Column(db.String(20), unique=True, index=True, nullable=False)
    first_name = db.Column(db.String(50), nullable=False)
    middle_name = db.Column(db.String(50), nullable=True)
    last_name = db.Column(db.String(50), nullable=False)
    email = db.Column(db.String(100), unique=True, index=True, nullable=False)
    phone = db.Column(db.String(20), nullable=True)
    date_of_birth = db.Column(db.Date, nullable=True)

    hire_date = db.Column(db.Date, nullable=False, index=True)
    termination_date = db.Column(db.Date, nullable=True)
    employment_status = db.Column(db.String(20), default="active", nullable=False, index=True)

    # Current-state pointers; only the assignment ledger moves them.
    department_id = db.Column(db.Integer, db.ForeignKey("departments.id"), nullable=False, index=True)
    facility_id = db.Column(db.Integer, db.ForeignKey("facilities.id"), nullable=False, index=True)
    role_id = db.Column(db.Integer, db.ForeignKey("system_roles.id"), nullable=False, index=True)
    rank_id = db.Column(db.Integer, db.ForeignKey("staff_ranks.id"), nullable=False, index=True)
    supervisor_id = db.Column(db.Integer, db.ForeignKey("staff.id"), nullable=True, index=True)

    emergency_contact_name = db.Column(db.String(100), nullable=True)
    emergency_contact_phone = db.Column(db.String(20), nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    department = db.relationship("Department", foreign_keys=[department_id], lazy="joined")
    facility = db.relationship("Facility", foreign_keys=[facility_id], lazy="joined")
    role = db.relationship("SystemRole", foreign_keys=[role_id], lazy="joined")
    rank = db.relationship("StaffRank", foreign_keys=[rank_id], lazy="joined")
    supervisor = db.relationship("Staff", remote_side=[id], foreign_keys=[supervisor_id])

    __table_args__ = (
        db.CheckConstraint(
            "employment_status IN ('active','inactive','terminated','suspended')",
            name="ck_staff_employment_status",
        ),
        db.Index("ix_staff_name", "last_name", "first_name"),
        db.Index("ix_staff_dept_facility_status", "department_id", "facility_id", "employment_status"),
    )

    @property
    def full_name(self):
        parts = [self.first_name, self.middle_name, self.last_name]
        return " ".join(p.strip() for p in parts if p and p.strip())

    @property
    def is_active(self):
        return self.employment_status == "active"


class StaffAssignment(SnapshotMixin, db.Model):
    """Append-only placement history.

    Exactly one open row (is_current, no end date) per staff member; the
    partial unique index backs that up at the database level.
    """

    __tablename__ = "staff_assignments"

    id = db.Column(db.Integer, primary_key=True)
    staff_id = db.Column(db.Integer, db.ForeignKey("staff.id"), nullable=False, index=True)
    department_id = db.Column(db.Integer, db.ForeignKey("departments.id"), nullable=False, index=True)
    facility_id = db.Column(db.Integer, db.ForeignKey("facilities.id"), nullable=False, index=True)
    role_id = db.Column(db.Integer, db.ForeignKey("system_roles.id"), nullable=False)
    rank_id = db.Column(db.Integer, db.ForeignKey("staff_ranks.id"), nullable=False)

    start_date = db.Column(db.Date, nullable=False)
    end_date = db.Column(db.Date, nullable=True)
    reason = db.Column(db.String(20), nullable=False)
    is_current = db.Column(db.Boolean, default=True, nullable=False)

    created_by_id = db.Column(db.Integer, db.ForeignKey("staff.id"), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    staff = db.relationship("Staff", foreign_keys=[staff_id])

    __table_args__ = (
        db.CheckConstraint(
            "reason IN ('hire','transfer','promotion','demotion','temporary')",
            name="ck_staff_assignments_reason",
        ),
        db.Index("ix_staff_assignments_dates", "start_date", "end_date"),
        db.Index("ix_staff_assignments_staff_current", "staff_id", "is_current"),
        db.Index(
            "uq_staff_assignments_one_current",
            "staff_id",
            unique=True,
            sqlite_where=db.text("is_current = 1"),
            postgresql_where=db.text("is_current"),
        ),
    )


# ======================
# Qualifications
# ======================
class QualificationType(db.Model):
    __tablename__ = "qualification_types"

    id = db.Column(db.Integer, primary_key=True)
    type_name = db.Column(db.String(50), unique=True, nullable=False)
    # education / certification / license / training
    type_category = db.Column(db.String(20), nullable=False, index=True)
    is_mandatory = db.Column(db.Boolean, default=False, nullable=False, index=True)
    # NULL => permanent
    validity_period_months = db.Column(db.Integer, nullable=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False, index=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)


class StaffQualification(SnapshotMixin, db.Model):
    __tablename__ = "staff_qualifications"

    id = db.Column(db.Integer, primary_key=True)
    staff_id = db.Column(db.Integer, db.ForeignKey("staff.id"), nullable=False, index=True)
    qualification_type_id = db.Column(
        db.Integer, db.ForeignKey("qualification_types.id"), nullable=False, index=True
    )
    qualification_name = db.Column(db.String(100), nullable=False)
    issuing_authority = db.Column(db.String(100), nullable=True)
    issue_date = db.Column(db.Date, nullable=True)
    expiry_date = db.Column(db.Date, nullable=True, index=True)

    verification_status = db.Column(db.String(20), default="pending", nullable=False, index=True)
    verified_by_id = db.Column(db.Integer, db.ForeignKey("staff.id"), nullable=True)
    verified_at = db.Column(db.DateTime, nullable=True)

    document_path = db.Column(db.String(255), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    staff = db.relationship("Staff", foreign_keys=[staff_id])
    qualification_type = db.relationship("QualificationType", lazy="joined")

    __table_args__ = (
        db.CheckConstraint(
            "verification_status IN ('pending','verified','rejected','expired')",
            name="ck_staff_qualifications_status",
        ),
        db.Index("ix_staff_qualifications_staff_expiry", "staff_id", "expiry_date"),
        db.Index("ix_staff_qualifications_identity", "staff_id", "qualification_type_id", "qualification_name"),
    )

    def is_expired(self, today: date) -> bool:
        return self.expiry_date is not None and self.expiry_date < today

    def is_valid(self, today: date) -> bool:
        """Counts for compliance: verified and not past its expiry date."""
        return self.verification_status == "verified" and not self.is_expired(today)

    def is_active_record(self, today: date) -> bool:
        return self.verification_status in ("pending", "verified") and not self.is_expired(today)


# ======================
# Leave
# ======================
class LeaveCategory(db.Model):
    __tablename__ = "leave_categories"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(50), unique=True, nullable=False)
    code = db.Column(db.String(10), unique=True, index=True, nullable=False)
    is_paid = db.Column(db.Boolean, default=True, nullable=False)
    requires_approval = db.Column(db.Boolean, default=True, nullable=False)
    # 0 => unlimited
    max_days_per_year = db.Column(db.Integer, default=0, nullable=False)
    min_notice_days = db.Column(db.Integer, default=0, nullable=False)
    # 0 => unlimited
    max_consecutive_days = db.Column(db.Integer, default=0, nullable=False)
    can_carry_forward = db.Column(db.Boolean, default=False, nullable=False)
    # False => calendar days are counted
    business_days_only = db.Column(db.Boolean, default=True, nullable=False)
    allow_negative_balance = db.Column(db.Boolean, default=False, nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False, index=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)


class LeaveEntitlement(SnapshotMixin, db.Model):
    """Yearly balance for one (staff, category).

    ``remaining_days`` is derived on read and in SQL; there is no column
    for it, so it can never drift from its inputs.
    """

    __tablename__ = "staff_leave_entitlements"

    id = db.Column(db.Integer, primary_key=True)
    staff_id = db.Column(db.Integer, db.ForeignKey("staff.id"), nullable=False, index=True)
    category_id = db.Column(db.Integer, db.ForeignKey("leave_categories.id"), nullable=False, index=True)
    year = db.Column(db.Integer, nullable=False, index=True)

    allocated_days = db.Column(db.Numeric(6, 2), default=ZERO, nullable=False)
    used_days = db.Column(db.Numeric(6, 2), default=ZERO, nullable=False)
    pending_days = db.Column(db.Numeric(6, 2), default=ZERO, nullable=False)
    carried_forward_days = db.Column(db.Numeric(6, 2), default=ZERO, nullable=False)

    version = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    staff = db.relationship("Staff", foreign_keys=[staff_id])
    category = db.relationship("LeaveCategory", lazy="joined")

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        db.UniqueConstraint("staff_id", "category_id", "year", name="uq_staff_leave_entitlements_year"),
        db.Index("ix_staff_leave_entitlements_lookup", "staff_id", "year", "category_id"),
    )

    @hybrid_property
    def remaining_days(self):
        return (
            as_decimal(self.allocated_days)
            + as_decimal(self.carried_forward_days)
            - as_decimal(self.used_days)
            - as_decimal(self.pending_days)
        )

    @remaining_days.expression
    def remaining_days(cls):
        return cls.allocated_days + cls.carried_forward_days - cls.used_days - cls.pending_days

    def snapshot(self, *fields):
        data = super().snapshot(*fields)
        if not fields:
            data["remaining_days"] = str(self.remaining_days)
        return data


class LeaveApplication(SnapshotMixin, db.Model):
    __tablename__ = "leave_applications"

    id = db.Column(db.Integer, primary_key=True)
    staff_id = db.Column(db.Integer, db.ForeignKey("staff.id"), nullable=False, index=True)
    category_id = db.Column(db.Integer, db.ForeignKey("leave_categories.id"), nullable=False, index=True)

    start_date = db.Column(db.Date, nullable=False)
    end_date = db.Column(db.Date, nullable=False)
    total_days = db.Column(db.Numeric(6, 2), nullable=False)
    application_date = db.Column(db.Date, default=date.today, nullable=False, index=True)
    reason = db.Column(db.Text, nullable=True)

    # pending / approved / rejected / cancelled
    status = db.Column(db.String(20), default="pending", nullable=False, index=True)

    approved_by_id = db.Column(db.Integer, db.ForeignKey("staff.id"), nullable=True, index=True)
    decided_at = db.Column(db.DateTime, nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)

    cancelled_by_id = db.Column(db.Integer, db.ForeignKey("staff.id"), nullable=True)
    cancelled_at = db.Column(db.DateTime, nullable=True)

    emergency_contact_during_leave = db.Column(db.String(100), nullable=True)
    handover_notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    staff = db.relationship("Staff", foreign_keys=[staff_id])
    category = db.relationship("LeaveCategory", lazy="joined")
    approved_by = db.relationship("Staff", foreign_keys=[approved_by_id])

    __table_args__ = (
        db.CheckConstraint(
            "status IN ('pending','approved','rejected','cancelled')",
            name="ck_leave_applications_status",
        ),
        db.Index("ix_leave_applications_dates", "start_date", "end_date"),
        db.Index("ix_leave_applications_staff_status_dates", "staff_id", "status", "start_date", "end_date"),
    )

    @property
    def year(self):
        return self.start_date.year


class PublicHoliday(db.Model):
    """Official days off used by the business-day calendar."""

    __tablename__ = "public_holidays"

    id = db.Column(db.Integer, primary_key=True)
    day = db.Column(db.Date, unique=True, index=True, nullable=False)
    name = db.Column(db.String(120), nullable=True)
    is_day_off = db.Column(db.Boolean, default=True, nullable=False)


# ======================
# Audit
# ======================
class AuditLog(db.Model):
    """Append-only change log; never updated or deleted by the ledger."""

    __tablename__ = "audit_logs"

    id = db.Column(db.Integer, primary_key=True)
    table_name = db.Column(db.String(50), nullable=False, index=True)
    record_id = db.Column(db.Integer, nullable=False, index=True)
    action = db.Column(db.String(10), nullable=False, index=True)
    old_values = db.Column(db.JSON, nullable=True)
    new_values = db.Column(db.JSON, nullable=True)

    # NULL => system (jobs, bootstrap)
    changed_by_id = db.Column(db.Integer, db.ForeignKey("staff.id"), nullable=True, index=True)
    ip_address = db.Column(db.String(45), nullable=True)
    user_agent = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)

    changed_by = db.relationship("Staff", foreign_keys=[changed_by_id])

    __table_args__ = (
        db.CheckConstraint("action IN ('INSERT','UPDATE','DELETE')", name="ck_audit_logs_action"),
        db.Index("ix_audit_logs_table_record", "table_name", "record_id"),
        db.Index("ix_audit_logs_table_created", "table_name", "created_at"),
    )
