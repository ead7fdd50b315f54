# Overview: Permission system package.
# Re-exports all public APIs for convenient imports.

from .categories import ResourceCategory
from .definitions import (
    RESOURCE_DEFINITIONS,
    SALES_RESOURCES,
    CATALOG_RESOURCES,
    CONTENT_RESOURCES,
    ADMINISTRATION_RESOURCES,
    ACTIONS,
    ACTION_FLAGS,
    ACTION_VIEW,
    ACTION_CREATE,
    ACTION_EDIT,
    ACTION_DELETE,
)
from .roles import DEFAULT_ROLE_PERMISSIONS
from .helpers import validate_action

__all__ = [
    "ResourceCategory",
    "RESOURCE_DEFINITIONS",
    "SALES_RESOURCES",
    "CATALOG_RESOURCES",
    "CONTENT_RESOURCES",
    "ADMINISTRATION_RESOURCES",
    "ACTIONS",
    "ACTION_FLAGS",
    "ACTION_VIEW",
    "ACTION_CREATE",
    "ACTION_EDIT",
    "ACTION_DELETE",
    "DEFAULT_ROLE_PERMISSIONS",
    "validate_action",
]
