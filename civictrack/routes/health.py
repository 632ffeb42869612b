"""
Health check endpoints.
Used for monitoring, deployment readiness checks, and basic connectivity tests.
"""

from fastapi import APIRouter, HTTPException

from civictrack.config.firebase import get_db
from civictrack.core.settings import settings
from civictrack.utils.firestore_helpers import utcnow

router = APIRouter(prefix="/health", tags=["Health"])


@router.get("")
async def health_check():
    """Returns 200 while the service is running."""
    return {
        "status": "healthy",
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "timestamp": utcnow().isoformat(),
    }


@router.get("/db")
async def database_health():
    """
    Database connectivity check.
    Lists collections, which needs a working client but no data.
    """
    try:
        db = get_db()
        collections = list(db.collections())
        return {
            "status": "healthy",
            "database": "firestore",
            "mock": settings.USE_MOCK_DB,
            "connected": True,
            "collections_count": len(collections),
            "timestamp": utcnow().isoformat(),
        }
    except Exception as e:
        raise HTTPException(
            status_code=503,
            detail=f"Database connection failed: {str(e)}",
        )
