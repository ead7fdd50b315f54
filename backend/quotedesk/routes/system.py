# backend/quotedesk/routes/system.py
"""
System health endpoint.

Checks the database and the permission seed so a deployment that skipped
`flask system init` shows up as degraded rather than denying everything.
"""

import os
import time
from flask import Blueprint, current_app
from ..extensions import db
from ..models import Order, Resource, ResourcePermission
from ..time_utils import utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        order_count = db.session.query(Order).count()
        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "orders": order_count,
            }
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


def check_permissions_health() -> dict:
    """Resources and default role grants must be seeded."""
    start_time = time.time()
    try:
        resource_count = db.session.query(Resource).count()
        grant_count = db.session.query(ResourcePermission).count()
        elapsed_ms = (time.time() - start_time) * 1000

        details = {
            "resource_count": resource_count,
            "grant_count": grant_count,
        }
        if resource_count == 0 or grant_count == 0:
            return {
                "status": "degraded",
                "latency_ms": round(elapsed_ms, 2),
                "warning": "Permissions not initialized (run: flask system init)",
                "details": details,
            }
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": details,
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Permission health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Permission store error"
        }


def check_artifact_storage_health() -> dict:
    storage_dir = current_app.config.get("ARTIFACT_STORAGE_DIR", "")
    writable = bool(storage_dir) and (
        os.access(storage_dir, os.W_OK) if os.path.isdir(storage_dir)
        else os.access(os.path.dirname(os.path.abspath(storage_dir)) or ".", os.W_OK)
    )
    return {
        "status": "healthy" if writable else "degraded",
        "details": {"path": storage_dir, "writable": writable},
    }


@system_bp.get("/health")
def health():
    """
    Health check endpoint.

    Returns:
    - 200: healthy or degraded (still operational)
    - 503: one or more checks unhealthy
    """
    start_time = time.time()

    checks = {
        "database": check_database_health(),
        "permissions": check_permissions_health(),
        "artifact_storage": check_artifact_storage_health(),
    }

    statuses = [c["status"] for c in checks.values()]
    if "unhealthy" in statuses:
        overall_status = "unhealthy"
        http_status = 503
    elif "degraded" in statuses:
        overall_status = "degraded"
        http_status = 200  # Degraded is still operational
    else:
        overall_status = "healthy"
        http_status = 200

    total_elapsed_ms = (time.time() - start_time) * 1000

    response = {
        "status": overall_status,
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": round(total_elapsed_ms, 2),
        "checks": checks,
    }

    return response, http_status
