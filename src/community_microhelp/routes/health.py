"""Liveness and database readiness probe."""

from fastapi import APIRouter, Depends, Response, status

from community_microhelp.database import DatabaseManager
from community_microhelp.dependencies import get_database

router = APIRouter(tags=["Health"])


@router.get("/health")
async def health_check(response: Response, db: DatabaseManager = Depends(get_database)):
    """Report service health; answers 503 while MongoDB does not respond to a ping."""
    if await db.health_check():
        return {"status": "healthy", "database": "connected"}
    response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    return {"status": "degraded", "database": "unavailable"}
