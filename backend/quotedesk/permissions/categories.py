# Overview: Resource category constants for grouping related permission resources.


class ResourceCategory:
    """Resource categories for organization and UI display."""
    SALES = "SALES"
    CATALOG = "CATALOG"
    CONTENT = "CONTENT"
    ADMINISTRATION = "ADMINISTRATION"
