# Overview: Default capability grants per non-admin role.
# Each grant is: resource -> (can_view, can_create, can_edit, can_delete)
# Admin is intentionally absent: it bypasses the lookup.

DEFAULT_ROLE_PERMISSIONS = {
    "salesperson": {
        "orders": (True, True, True, False),
        "customers": (True, True, True, False),
        "products": (True, False, False, False),
        "categories": (True, False, False, False),
    },
    "customer": {
        "orders": (True, True, False, False),
        "products": (True, False, False, False),
        "categories": (True, False, False, False),
    },
}
