"""
Default RBAC Configuration
This config defines the roles, groups and menu permission matrix created for
every newly onboarded account. Used by the RBAC bootstrap worker.
"""

# Fallback enterprise for accounts onboarded without one
DEFAULT_ENTERPRISE_ID = "00000000-0000-0000-0000-000000000001"

# Role definitions; "permissions" is the legacy numeric bitmask kept on the role item
DEFAULT_ROLES = [
    {"name": "Platform Admin", "description": "Full platform access", "permissions": 255},
    {"name": "Admin", "description": "Full account access", "permissions": 127},
    {"name": "Manager", "description": "Manage users and resources", "permissions": 63},
    {"name": "User", "description": "Standard operational access", "permissions": 15},
    {"name": "Viewer", "description": "Read-only access", "permissions": 1},
]

# Group definitions and the role each one is linked to
DEFAULT_GROUPS = [
    {"name": "Platform Admin", "description": "Platform-level administrators", "role_name": "Platform Admin"},
    {"name": "Admin", "description": "Account administrators", "role_name": "Admin"},
    {"name": "Manager", "description": "Account managers", "role_name": "Manager"},
    {"name": "User", "description": "Standard users", "role_name": "User"},
    {"name": "Default", "description": "Default group for new users", "role_name": "Viewer"},
]

MENU_ITEMS = [
    {"key": "overview", "label": "Overview"},
    {"key": "dashboard", "label": "Dashboard"},
    {"key": "builds", "label": "Builds"},
    {"key": "access-control", "label": "Access Control"},
    {"key": "security", "label": "Security"},
    {"key": "account-settings", "label": "Account Settings"},
    {"key": "provisioning", "label": "Provisioning History"},
    {"key": "inbox", "label": "Inbox"},
    {"key": "monitoring", "label": "Monitoring"},
]

# Capabilities granted on every menu item, per role
CAPABILITY_MATRIX = {
    "Platform Admin": {"can_view": True, "can_create": True, "can_edit": True, "can_delete": True},
    "Admin": {"can_view": True, "can_create": True, "can_edit": True, "can_delete": True},
    "Manager": {"can_view": True, "can_create": True, "can_edit": True, "can_delete": False},
    "User": {"can_view": True, "can_create": True, "can_edit": False, "can_delete": False},
    "Viewer": {"can_view": True, "can_create": False, "can_edit": False, "can_delete": False},
}


def get_capabilities(role_name: str) -> dict:
    """
    Returns the capability flags for a role.
    Unknown roles get view-only access.
    """
    return dict(CAPABILITY_MATRIX.get(role_name, CAPABILITY_MATRIX["Viewer"]))


def get_permission_matrix():
    """
    Returns every (role, menu) pair with its capability flags
    Format: [
        {"role_name": "Admin", "menu_key": "builds", "menu_label": "Builds",
         "can_view": True, "can_create": True, "can_edit": True, "can_delete": True},
        ...
    ]
    """
    matrix = []
    for role in DEFAULT_ROLES:
        capabilities = get_capabilities(role["name"])
        for menu in MENU_ITEMS:
            matrix.append({
                "role_name": role["name"],
                "menu_key": menu["key"],
                "menu_label": menu["label"],
                **capabilities,
            })
    return matrix


PERMISSION_MATRIX = get_permission_matrix()
