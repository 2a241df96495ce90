"""
Roles and Permissions Configuration
Canonical role hierarchy and permission catalogue for the store.
Used by route guards at request time and by the seed script to populate
the roles/permissions tables.
"""

from typing import Dict, List, Set

# Higher level means more privileges. service_engineer sits beside sales.
ROLE_HIERARCHY: Dict[str, int] = {
    "customer": 1,
    "sales": 2,
    "service_engineer": 2,
    "accounts": 3,
    "manager": 4,
    "admin": 5,
    "superadmin": 6,
}

# Roles allowed into the back-office
ADMIN_ROLES = ("admin", "superadmin", "manager")

# Roles allowed to run the walk-in / POS counter
STAFF_ROLES = ("sales", "accounts", "manager", "admin", "superadmin")

ROLE_DISPLAY_NAME: Dict[str, str] = {
    "customer": "Customer",
    "sales": "Sales Representative",
    "service_engineer": "Service Engineer",
    "accounts": "Accounts Manager",
    "manager": "Manager",
    "admin": "Administrator",
    "superadmin": "Super Administrator",
}

PERMISSIONS = {
    "product:view": "View products",
    "product:create": "Create and edit products",
    "order:create": "Place orders",
    "order:view:self": "View own orders",
    "order:view:all": "View all orders",
    "customer:manage": "Manage customers",
    "service:ticket:view": "View service tickets",
    "service:ticket:manage:assigned": "Manage assigned service tickets",
    "service:ticket:status:update": "Update service ticket status",
    "service:ticket:add-parts": "Add parts to service tickets",
    "invoice:manage": "Manage invoices",
    "report:view": "View reports",
    "inventory:manage": "Manage inventory and Zoho sync",
    "sales:team:manage": "Manage the sales team",
    "service:engineer:assign": "Assign service engineers",
    "user:manage": "Manage users",
    "system:settings": "Manage store settings",
    "system:roles": "Manage roles",
    "system:config": "System configuration",
}

# Direct permissions per role, before inheritance
BASE_ROLE_PERMISSIONS: Dict[str, List[str]] = {
    "customer": ["product:view", "order:create", "order:view:self"],
    "sales": ["order:view:all", "customer:manage"],
    "service_engineer": [
        "service:ticket:view",
        "service:ticket:manage:assigned",
        "service:ticket:status:update",
        "service:ticket:add-parts",
    ],
    "accounts": ["invoice:manage", "report:view"],
    "manager": ["inventory:manage", "sales:team:manage", "service:engineer:assign", "product:create"],
    "admin": ["user:manage", "system:settings", "system:roles", "report:view"],
    "superadmin": ["system:config"],
}

# Inheritance chain; service_engineer inherits customer only
_INHERITS_FROM = {
    "customer": None,
    "sales": "customer",
    "service_engineer": "customer",
    "accounts": "sales",
    "manager": "accounts",
    "admin": "manager",
    "superadmin": "admin",
}


def _build_effective_permissions() -> Dict[str, Set[str]]:
    effective: Dict[str, Set[str]] = {}
    for role in ["customer", "sales", "service_engineer", "accounts", "manager", "admin", "superadmin"]:
        parent = _INHERITS_FROM[role]
        perms = set(effective[parent]) if parent else set()
        perms.update(BASE_ROLE_PERMISSIONS[role])
        effective[role] = perms
    # superadmin also gets the lateral service_engineer permissions
    effective["superadmin"].update(effective["service_engineer"])
    return effective


EFFECTIVE_PERMISSIONS = _build_effective_permissions()


def normalize_role(role) -> str:
    """Map any stored role value onto a known role; unknown values become customer."""
    if not role:
        return "customer"
    value = str(role).strip().lower()
    return value if value in ROLE_HIERARCHY else "customer"


def is_at_least(actual: str, required: str) -> bool:
    return ROLE_HIERARCHY[normalize_role(actual)] >= ROLE_HIERARCHY[normalize_role(required)]


def has_permission(role: str, permission: str) -> bool:
    return permission in EFFECTIVE_PERMISSIONS[normalize_role(role)]


def effective_permissions(role: str) -> List[str]:
    return sorted(EFFECTIVE_PERMISSIONS[normalize_role(role)])


def get_display_name(role: str) -> str:
    return ROLE_DISPLAY_NAME[normalize_role(role)]


# Generate permission matrix
def get_permission_matrix():
    """
    Returns a dictionary with all permissions and the roles that hold them
    Format: {
        "permissions": [
            {"name": "product:view", "resource": "product", "action": "view", "description": "..."},
            ...
        ],
        "roles": [
            {"name": "manager", "level": 4, "description": "Manager", "permissions": [...]},
            ...
        ]
    }
    """
    permissions = []
    for name, description in PERMISSIONS.items():
        resource, _, action = name.partition(":")
        permissions.append({
            "name": name,
            "resource": resource,
            "action": action,
            "description": description
        })

    roles = [
        {
            "name": role,
            "level": level,
            "description": ROLE_DISPLAY_NAME[role],
            "permissions": effective_permissions(role)
        }
        for role, level in ROLE_HIERARCHY.items()
    ]

    return {
        "permissions": permissions,
        "roles": roles
    }


# Export the matrix for use in seed scripts
PERMISSION_MATRIX = get_permission_matrix()
