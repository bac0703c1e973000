from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.orm import Session

from authgate.core.database import get_db
from authgate.dependencies.rate_limit import rate_limit
from authgate.utils import helpers

router = APIRouter(tags=["health"])


@router.get("/health")
async def health(
    db: Session = Depends(get_db),
    _=Depends(rate_limit("api_health_check")),
):
    """Liveness plus a trivial database round trip."""
    db.execute(text("SELECT 1"))
    return {
        "success": True,
        "data": {"status": "ok", "timestamp": helpers.utcnow().isoformat() + "Z"},
    }
