"""create staff ledger schema

Revision ID: 5a1e0c2b7d90
Revises:
Create Date: 2026-02-02 09:15:00

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '5a1e0c2b7d90'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
    ]


def upgrade():
    # --- catalogs ---
    op.create_table(
        'departments',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('code', sa.String(length=10), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('parent_department_id', sa.Integer(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('1')),
        *_timestamps(),
        sa.ForeignKeyConstraint(['parent_department_id'], ['departments.id']),
    )
    op.create_index('ix_departments_code', 'departments', ['code'], unique=True)
    op.create_index('ix_departments_parent_department_id', 'departments', ['parent_department_id'])
    op.create_index('ix_departments_is_active', 'departments', ['is_active'])

    op.create_table(
        'facilities',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('code', sa.String(length=15), nullable=False),
        sa.Column('name', sa.String(length=150), nullable=False),
        sa.Column('department_id', sa.Integer(), nullable=False),
        sa.Column('address', sa.Text(), nullable=True),
        sa.Column('facility_type', sa.String(length=20), nullable=False, server_default='branch'),
        sa.Column('capacity', sa.Integer(), nullable=False, server_default=sa.text('0')),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('1')),
        *_timestamps(),
        sa.ForeignKeyConstraint(['department_id'], ['departments.id']),
        sa.CheckConstraint("facility_type IN ('main','branch','satellite','temporary')", name='ck_facility_type'),
    )
    op.create_index('ix_facilities_code', 'facilities', ['code'], unique=True)
    op.create_index('ix_facilities_department_id', 'facilities', ['department_id'])
    op.create_index('ix_facilities_facility_type', 'facilities', ['facility_type'])
    op.create_index('ix_facilities_is_active', 'facilities', ['is_active'])

    op.create_table(
        'system_roles',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('role_name', sa.String(length=50), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('permission_level', sa.Integer(), nullable=False, server_default=sa.text('1')),
        sa.Column('is_admin_role', sa.Boolean(), nullable=False, server_default=sa.text('0')),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('1')),
        *_timestamps(),
        sa.UniqueConstraint('role_name'),
    )
    op.create_index('ix_system_roles_permission_level', 'system_roles', ['permission_level'])
    op.create_index('ix_system_roles_is_admin_role', 'system_roles', ['is_admin_role'])
    op.create_index('ix_system_roles_is_active', 'system_roles', ['is_active'])

    op.create_table(
        'staff_ranks',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('rank_name', sa.String(length=50), nullable=False),
        sa.Column('rank_category', sa.String(length=20), nullable=False),
        sa.Column('rank_level', sa.Integer(), nullable=False, server_default=sa.text('1')),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('1')),
        *_timestamps(),
        sa.UniqueConstraint('rank_name'),
    )
    op.create_index('ix_staff_ranks_rank_category', 'staff_ranks', ['rank_category'])
    op.create_index('ix_staff_ranks_rank_level', 'staff_ranks', ['rank_level'])
    op.create_index('ix_staff_ranks_is_active', 'staff_ranks', ['is_active'])

    op.create_table(
        'permission_modules',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('module_name', sa.String(length=50), nullable=False),
        sa.Column('module_description', sa.Text(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('1')),
        sa.UniqueConstraint('module_name'),
    )
    op.create_index('ix_permission_modules_is_active', 'permission_modules', ['is_active'])

    op.create_table(
        'role_permissions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('role_id', sa.Integer(), nullable=False),
        sa.Column('module_id', sa.Integer(), nullable=False),
        sa.Column('can_read', sa.Boolean(), nullable=False, server_default=sa.text('0')),
        sa.Column('can_write', sa.Boolean(), nullable=False, server_default=sa.text('0')),
        sa.Column('can_delete', sa.Boolean(), nullable=False, server_default=sa.text('0')),
        sa.Column('can_approve', sa.Boolean(), nullable=False, server_default=sa.text('0')),
        *_timestamps(),
        sa.ForeignKeyConstraint(['role_id'], ['system_roles.id']),
        sa.ForeignKeyConstraint(['module_id'], ['permission_modules.id']),
        sa.UniqueConstraint('role_id', 'module_id', name='uq_role_permissions_role_module'),
    )
    op.create_index('ix_role_permissions_role_id', 'role_permissions', ['role_id'])
    op.create_index('ix_role_permissions_module_id', 'role_permissions', ['module_id'])

    op.create_table(
        'qualification_types',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('type_name', sa.String(length=50), nullable=False),
        sa.Column('type_category', sa.String(length=20), nullable=False),
        sa.Column('is_mandatory', sa.Boolean(), nullable=False, server_default=sa.text('0')),
        sa.Column('validity_period_months', sa.Integer(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('1')),
        *_timestamps(),
        sa.UniqueConstraint('type_name'),
    )
    op.create_index('ix_qualification_types_type_category', 'qualification_types', ['type_category'])
    op.create_index('ix_qualification_types_is_mandatory', 'qualification_types', ['is_mandatory'])
    op.create_index('ix_qualification_types_is_active', 'qualification_types', ['is_active'])

    op.create_table(
        'leave_categories',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(length=50), nullable=False),
        sa.Column('code', sa.String(length=10), nullable=False),
        sa.Column('is_paid', sa.Boolean(), nullable=False, server_default=sa.text('1')),
        sa.Column('requires_approval', sa.Boolean(), nullable=False, server_default=sa.text('1')),
        sa.Column('max_days_per_year', sa.Integer(), nullable=False, server_default=sa.text('0')),
        sa.Column('min_notice_days', sa.Integer(), nullable=False, server_default=sa.text('0')),
        sa.Column('max_consecutive_days', sa.Integer(), nullable=False, server_default=sa.text('0')),
        sa.Column('can_carry_forward', sa.Boolean(), nullable=False, server_default=sa.text('0')),
        sa.Column('business_days_only', sa.Boolean(), nullable=False, server_default=sa.text('1')),
        sa.Column('allow_negative_balance', sa.Boolean(), nullable=False, server_default=sa.text('0')),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('1')),
        *_timestamps(),
        sa.UniqueConstraint('name'),
    )
    op.create_index('ix_leave_categories_code', 'leave_categories', ['code'], unique=True)
    op.create_index('ix_leave_categories_is_active', 'leave_categories', ['is_active'])

    op.create_table(
        'public_holidays',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('day', sa.Date(), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=True),
        sa.Column('is_day_off', sa.Boolean(), nullable=False, server_default=sa.text('1')),
    )
    op.create_index('ix_public_holidays_day', 'public_holidays', ['day'], unique=True)

    # --- staff registry ---
    op.create_table(
        'staff',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('employee_number', sa.String(length=20), nullable=False),
        sa.Column('first_name', sa.String(length=50), nullable=False),
        sa.Column('middle_name', sa.String(length=50), nullable=True),
        sa.Column('last_name', sa.String(length=50), nullable=False),
        sa.Column('email', sa.String(length=100), nullable=False),
        sa.Column('phone', sa.String(length=20), nullable=True),
        sa.Column('date_of_birth', sa.Date(), nullable=True),
        sa.Column('hire_date', sa.Date(), nullable=False),
        sa.Column('termination_date', sa.Date(), nullable=True),
        sa.Column('employment_status', sa.String(length=20), nullable=False, server_default='active'),
        sa.Column('department_id', sa.Integer(), nullable=False),
        sa.Column('facility_id', sa.Integer(), nullable=False),
        sa.Column('role_id', sa.Integer(), nullable=False),
        sa.Column('rank_id', sa.Integer(), nullable=False),
        sa.Column('supervisor_id', sa.Integer(), nullable=True),
        sa.Column('emergency_contact_name', sa.String(length=100), nullable=True),
        sa.Column('emergency_contact_phone', sa.String(length=20), nullable=True),
        *_timestamps(),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['department_id'], ['departments.id']),
        sa.ForeignKeyConstraint(['facility_id'], ['facilities.id']),
        sa.ForeignKeyConstraint(['role_id'], ['system_roles.id']),
        sa.ForeignKeyConstraint(['rank_id'], ['staff_ranks.id']),
        sa.ForeignKeyConstraint(['supervisor_id'], ['staff.id']),
        sa.CheckConstraint(
            "employment_status IN ('active','inactive','terminated','suspended')",
            name='ck_staff_employment_status',
        ),
    )
    op.create_index('ix_staff_employee_number', 'staff', ['employee_number'], unique=True)
    op.create_index('ix_staff_email', 'staff', ['email'], unique=True)
    op.create_index('ix_staff_hire_date', 'staff', ['hire_date'])
    op.create_index('ix_staff_employment_status', 'staff', ['employment_status'])
    op.create_index('ix_staff_department_id', 'staff', ['department_id'])
    op.create_index('ix_staff_facility_id', 'staff', ['facility_id'])
    op.create_index('ix_staff_role_id', 'staff', ['role_id'])
    op.create_index('ix_staff_rank_id', 'staff', ['rank_id'])
    op.create_index('ix_staff_supervisor_id', 'staff', ['supervisor_id'])
    op.create_index('ix_staff_name', 'staff', ['last_name', 'first_name'])
    op.create_index('ix_staff_dept_facility_status', 'staff', ['department_id', 'facility_id', 'employment_status'])

    op.create_table(
        'staff_assignments',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('staff_id', sa.Integer(), nullable=False),
        sa.Column('department_id', sa.Integer(), nullable=False),
        sa.Column('facility_id', sa.Integer(), nullable=False),
        sa.Column('role_id', sa.Integer(), nullable=False),
        sa.Column('rank_id', sa.Integer(), nullable=False),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('end_date', sa.Date(), nullable=True),
        sa.Column('reason', sa.String(length=20), nullable=False),
        sa.Column('is_current', sa.Boolean(), nullable=False, server_default=sa.text('1')),
        sa.Column('created_by_id', sa.Integer(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['staff_id'], ['staff.id']),
        sa.ForeignKeyConstraint(['department_id'], ['departments.id']),
        sa.ForeignKeyConstraint(['facility_id'], ['facilities.id']),
        sa.ForeignKeyConstraint(['role_id'], ['system_roles.id']),
        sa.ForeignKeyConstraint(['rank_id'], ['staff_ranks.id']),
        sa.ForeignKeyConstraint(['created_by_id'], ['staff.id']),
        sa.CheckConstraint(
            "reason IN ('hire','transfer','promotion','demotion','temporary')",
            name='ck_staff_assignments_reason',
        ),
    )
    op.create_index('ix_staff_assignments_staff_id', 'staff_assignments', ['staff_id'])
    op.create_index('ix_staff_assignments_department_id', 'staff_assignments', ['department_id'])
    op.create_index('ix_staff_assignments_facility_id', 'staff_assignments', ['facility_id'])
    op.create_index('ix_staff_assignments_dates', 'staff_assignments', ['start_date', 'end_date'])
    op.create_index('ix_staff_assignments_staff_current', 'staff_assignments', ['staff_id', 'is_current'])
    op.create_index(
        'uq_staff_assignments_one_current',
        'staff_assignments',
        ['staff_id'],
        unique=True,
        sqlite_where=sa.text('is_current = 1'),
        postgresql_where=sa.text('is_current'),
    )

    # --- qualifications ---
    op.create_table(
        'staff_qualifications',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('staff_id', sa.Integer(), nullable=False),
        sa.Column('qualification_type_id', sa.Integer(), nullable=False),
        sa.Column('qualification_name', sa.String(length=100), nullable=False),
        sa.Column('issuing_authority', sa.String(length=100), nullable=True),
        sa.Column('issue_date', sa.Date(), nullable=True),
        sa.Column('expiry_date', sa.Date(), nullable=True),
        sa.Column('verification_status', sa.String(length=20), nullable=False, server_default='pending'),
        sa.Column('verified_by_id', sa.Integer(), nullable=True),
        sa.Column('verified_at', sa.DateTime(), nullable=True),
        sa.Column('document_path', sa.String(length=255), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        *_timestamps(),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['staff_id'], ['staff.id']),
        sa.ForeignKeyConstraint(['qualification_type_id'], ['qualification_types.id']),
        sa.ForeignKeyConstraint(['verified_by_id'], ['staff.id']),
        sa.CheckConstraint(
            "verification_status IN ('pending','verified','rejected','expired')",
            name='ck_staff_qualifications_status',
        ),
    )
    op.create_index('ix_staff_qualifications_staff_id', 'staff_qualifications', ['staff_id'])
    op.create_index('ix_staff_qualifications_qualification_type_id', 'staff_qualifications', ['qualification_type_id'])
    op.create_index('ix_staff_qualifications_expiry_date', 'staff_qualifications', ['expiry_date'])
    op.create_index('ix_staff_qualifications_verification_status', 'staff_qualifications', ['verification_status'])
    op.create_index('ix_staff_qualifications_staff_expiry', 'staff_qualifications', ['staff_id', 'expiry_date'])
    op.create_index(
        'ix_staff_qualifications_identity',
        'staff_qualifications',
        ['staff_id', 'qualification_type_id', 'qualification_name'],
    )

    # --- leave ---
    op.create_table(
        'staff_leave_entitlements',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('staff_id', sa.Integer(), nullable=False),
        sa.Column('category_id', sa.Integer(), nullable=False),
        sa.Column('year', sa.Integer(), nullable=False),
        sa.Column('allocated_days', sa.Numeric(6, 2), nullable=False, server_default=sa.text('0')),
        sa.Column('used_days', sa.Numeric(6, 2), nullable=False, server_default=sa.text('0')),
        sa.Column('pending_days', sa.Numeric(6, 2), nullable=False, server_default=sa.text('0')),
        sa.Column('carried_forward_days', sa.Numeric(6, 2), nullable=False, server_default=sa.text('0')),
        sa.Column('version', sa.Integer(), nullable=False, server_default=sa.text('1')),
        *_timestamps(),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['staff_id'], ['staff.id']),
        sa.ForeignKeyConstraint(['category_id'], ['leave_categories.id']),
        sa.UniqueConstraint('staff_id', 'category_id', 'year', name='uq_staff_leave_entitlements_year'),
    )
    op.create_index('ix_staff_leave_entitlements_staff_id', 'staff_leave_entitlements', ['staff_id'])
    op.create_index('ix_staff_leave_entitlements_category_id', 'staff_leave_entitlements', ['category_id'])
    op.create_index('ix_staff_leave_entitlements_year', 'staff_leave_entitlements', ['year'])
    op.create_index(
        'ix_staff_leave_entitlements_lookup',
        'staff_leave_entitlements',
        ['staff_id', 'year', 'category_id'],
    )

    op.create_table(
        'leave_applications',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('staff_id', sa.Integer(), nullable=False),
        sa.Column('category_id', sa.Integer(), nullable=False),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('end_date', sa.Date(), nullable=False),
        sa.Column('total_days', sa.Numeric(6, 2), nullable=False),
        sa.Column('application_date', sa.Date(), nullable=False),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending'),
        sa.Column('approved_by_id', sa.Integer(), nullable=True),
        sa.Column('decided_at', sa.DateTime(), nullable=True),
        sa.Column('rejection_reason', sa.Text(), nullable=True),
        sa.Column('cancelled_by_id', sa.Integer(), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(), nullable=True),
        sa.Column('emergency_contact_during_leave', sa.String(length=100), nullable=True),
        sa.Column('handover_notes', sa.Text(), nullable=True),
        *_timestamps(),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['staff_id'], ['staff.id']),
        sa.ForeignKeyConstraint(['category_id'], ['leave_categories.id']),
        sa.ForeignKeyConstraint(['approved_by_id'], ['staff.id']),
        sa.ForeignKeyConstraint(['cancelled_by_id'], ['staff.id']),
        sa.CheckConstraint(
            "status IN ('pending','approved','rejected','cancelled')",
            name='ck_leave_applications_status',
        ),
    )
    op.create_index('ix_leave_applications_staff_id', 'leave_applications', ['staff_id'])
    op.create_index('ix_leave_applications_category_id', 'leave_applications', ['category_id'])
    op.create_index('ix_leave_applications_status', 'leave_applications', ['status'])
    op.create_index('ix_leave_applications_application_date', 'leave_applications', ['application_date'])
    op.create_index('ix_leave_applications_approved_by_id', 'leave_applications', ['approved_by_id'])
    op.create_index('ix_leave_applications_dates', 'leave_applications', ['start_date', 'end_date'])
    op.create_index(
        'ix_leave_applications_staff_status_dates',
        'leave_applications',
        ['staff_id', 'status', 'start_date', 'end_date'],
    )

    # --- audit ---
    op.create_table(
        'audit_logs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('table_name', sa.String(length=50), nullable=False),
        sa.Column('record_id', sa.Integer(), nullable=False),
        sa.Column('action', sa.String(length=10), nullable=False),
        sa.Column('old_values', sa.JSON(), nullable=True),
        sa.Column('new_values', sa.JSON(), nullable=True),
        sa.Column('changed_by_id', sa.Integer(), nullable=True),
        sa.Column('ip_address', sa.String(length=45), nullable=True),
        sa.Column('user_agent', sa.Text(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['changed_by_id'], ['staff.id']),
        sa.CheckConstraint("action IN ('INSERT','UPDATE','DELETE')", name='ck_audit_logs_action'),
    )
    op.create_index('ix_audit_logs_table_name', 'audit_logs', ['table_name'])
    op.create_index('ix_audit_logs_record_id', 'audit_logs', ['record_id'])
    op.create_index('ix_audit_logs_action', 'audit_logs', ['action'])
    op.create_index('ix_audit_logs_changed_by_id', 'audit_logs', ['changed_by_id'])
    op.create_index('ix_audit_logs_created_at', 'audit_logs', ['created_at'])
    op.create_index('ix_audit_logs_table_record', 'audit_logs', ['table_name', 'record_id'])
    op.create_index('ix_audit_logs_table_created', 'audit_logs', ['table_name', 'created_at'])


def downgrade():
    for table in (
        'audit_logs',
        'leave_applications',
        'staff_leave_entitlements',
        'staff_qualifications',
        'staff_assignments',
        'staff',
        'public_holidays',
        'leave_categories',
        'qualification_types',
        'role_permissions',
        'permission_modules',
        'staff_ranks',
        'system_roles',
        'facilities',
        'departments',
    ):
        op.drop_table(table)
