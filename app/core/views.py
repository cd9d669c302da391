"""
Infrastructure endpoints that sit outside the domain apps.
"""

import logging

from django.core.cache import cache
from django.db import DatabaseError, connection
from django.http import JsonResponse

logger = logging.getLogger(__name__)


def health_check(request):
    """
    Liveness/readiness check.

    The database is required; the cache (also the lock store for the
    release sweep) is reported but does not fail the check.

    Returns:
        200 {"status": "healthy", "database": "connected", "cache": "..."}
        503 when the database cannot be reached
    """
    health_status = {"status": "healthy", "database": "unknown", "cache": "unknown"}
    status_code = 200

    try:
        with connection.cursor() as cursor:
            cursor.execute("SELECT 1")
            cursor.fetchone()
        health_status["database"] = "connected"
    except DatabaseError:
        logger.exception("Health check: database unreachable")
        health_status["database"] = "disconnected"
        health_status["status"] = "unhealthy"
        status_code = 503

    try:
        cache.set("health_check", "ok", timeout=1)
        ok = cache.get("health_check") == "ok"
    except Exception:
        logger.warning("Health check: cache unreachable", exc_info=True)
        ok = False
    health_status["cache"] = "connected" if ok else "disconnected"

    return JsonResponse(health_status, status=status_code)
