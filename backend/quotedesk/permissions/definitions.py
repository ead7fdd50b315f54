# Overview: Permission resource definitions and the action vocabulary.
# Each resource is defined as: (name, description, category)

from .categories import ResourceCategory


ACTION_VIEW = "view"
ACTION_CREATE = "create"
ACTION_EDIT = "edit"
ACTION_DELETE = "delete"

ACTIONS = (ACTION_VIEW, ACTION_CREATE, ACTION_EDIT, ACTION_DELETE)

# Maps an action to its ResourcePermission column
ACTION_FLAGS = {
    ACTION_VIEW: "can_view",
    ACTION_CREATE: "can_create",
    ACTION_EDIT: "can_edit",
    ACTION_DELETE: "can_delete",
}


# -- SALES --

SALES_RESOURCES = [
    (
        "orders",
        "Quote requests, their items, status, documents and audit log",
        ResourceCategory.SALES,
    ),
    (
        "customers",
        "Customer profiles",
        ResourceCategory.SALES,
    ),
]


# -- CATALOG --

CATALOG_RESOURCES = [
    (
        "products",
        "Catalog products and variants",
        ResourceCategory.CATALOG,
    ),
    (
        "categories",
        "Catalog categories",
        ResourceCategory.CATALOG,
    ),
]


# -- CONTENT --

CONTENT_RESOURCES = [
    (
        "banners",
        "Storefront banners and client logos",
        ResourceCategory.CONTENT,
    ),
    (
        "email_templates",
        "Notification email templates",
        ResourceCategory.CONTENT,
    ),
]


# -- ADMINISTRATION --

ADMINISTRATION_RESOURCES = [
    (
        "users",
        "Staff users and role assignments",
        ResourceCategory.ADMINISTRATION,
    ),
    (
        "permissions",
        "Role permission matrix",
        ResourceCategory.ADMINISTRATION,
    ),
    (
        "settings",
        "Store and email settings",
        ResourceCategory.ADMINISTRATION,
    ),
]


RESOURCE_DEFINITIONS = (
    SALES_RESOURCES
    + CATALOG_RESOURCES
    + CONTENT_RESOURCES
    + ADMINISTRATION_RESOURCES
)
