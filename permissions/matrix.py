STAFF_MANAGEMENT = "staff_management"
LEAVE_MANAGEMENT = "leave_management"
QUALIFICATION_MANAGEMENT = "qualification_management"
AUDIT_LOGS = "audit_logs"
REPORTING = "reporting"

# action -> RolePermission flag
ACTION_FLAGS = {
    "read": "can_read",
    "write": "can_write",
    "delete": "can_delete",
    "approve": "can_approve",
}

# Roles that bypass the matrix entirely
SUPER_ADMIN_ROLES = {"superadmin", "super_admin"}
