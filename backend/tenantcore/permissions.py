"""
Permission System Constants and Definitions

WHY: Centralized permission definitions ensure consistency across the core.
All permission codes and role mappings defined here.

DESIGN PRINCIPLES:
- Permissions are coarse-grained (one family of store operations each)
- Roles are open strings carried on membership edges; unknown roles grant nothing
- Default role mappings follow principle of least privilege
- Owner has all permissions by default
"""

# =============================================================================
# PERMISSION CATEGORIES
# =============================================================================

class PermissionCategory:
    """Permission categories for organization."""
    ENTITIES = "ENTITIES"
    TRANSACTIONS = "TRANSACTIONS"
    MEMBERS = "MEMBERS"
    ORGANIZATION = "ORGANIZATION"


# =============================================================================
# PERMISSION DEFINITIONS
# =============================================================================

# Each permission is defined as: (code, name, description, category)
PERMISSION_DEFINITIONS = [
    (
        "READ_ENTITIES",
        "Read Entities",
        "Read entities, dynamic fields and relationships",
        PermissionCategory.ENTITIES
    ),
    (
        "WRITE_ENTITIES",
        "Write Entities",
        "Create, update, soft-delete and recover entities and their dynamic fields",
        PermissionCategory.ENTITIES
    ),
    (
        "WRITE_RELATIONSHIPS",
        "Write Relationships",
        "Create, deactivate and reactivate relationships",
        PermissionCategory.ENTITIES
    ),
    (
        "READ_TRANSACTIONS",
        "Read Transactions",
        "Read transaction headers and lines",
        PermissionCategory.TRANSACTIONS
    ),
    (
        "WRITE_TRANSACTIONS",
        "Write Transactions",
        "Create transactions, append lines and change transaction status",
        PermissionCategory.TRANSACTIONS
    ),
    (
        "MANAGE_MEMBERS",
        "Manage Members",
        "Grant and revoke organization memberships",
        PermissionCategory.MEMBERS
    ),
    (
        "MANAGE_ORGANIZATION",
        "Manage Organization",
        "Edit organization settings",
        PermissionCategory.ORGANIZATION
    ),
]


# =============================================================================
# DEFAULT ROLE MAPPINGS
# =============================================================================

DEFAULT_ROLE_PERMISSIONS = {
    "owner": [
        # Owner gets ALL permissions
        "READ_ENTITIES",
        "WRITE_ENTITIES",
        "WRITE_RELATIONSHIPS",
        "READ_TRANSACTIONS",
        "WRITE_TRANSACTIONS",
        "MANAGE_MEMBERS",
        "MANAGE_ORGANIZATION",
    ],
    "admin": [
        "READ_ENTITIES",
        "WRITE_ENTITIES",
        "WRITE_RELATIONSHIPS",
        "READ_TRANSACTIONS",
        "WRITE_TRANSACTIONS",
        "MANAGE_MEMBERS",
    ],
    "manager": [
        "READ_ENTITIES",
        "WRITE_ENTITIES",
        "WRITE_RELATIONSHIPS",
        "READ_TRANSACTIONS",
        "WRITE_TRANSACTIONS",
    ],
    "member": [
        "READ_ENTITIES",
        "WRITE_ENTITIES",
        "READ_TRANSACTIONS",
        "WRITE_TRANSACTIONS",
    ],
    "viewer": [
        "READ_ENTITIES",
        "READ_TRANSACTIONS",
    ],
}

# Roles that count as organization administrators
ADMIN_ROLES = {"owner", "admin"}

# Most to least privileged; picks the primary role when an actor holds several
ROLE_PRIORITY = ("owner", "admin", "manager", "member", "viewer")


def get_all_permission_codes():
    """Get list of all permission codes."""
    return [perm[0] for perm in PERMISSION_DEFINITIONS]


def validate_permission_code(code):
    """Check if a permission code is valid."""
    return code in get_all_permission_codes()
