# storefront/routers/health.py
from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlmodel import Session

from storefront.database import get_session
from storefront.schemas.common import ApiResponse

router = APIRouter(tags=["Health"])


@router.get("/health", response_model=ApiResponse[dict])
def health(session: Session = Depends(get_session)):
    """Liveness + database connectivity check."""
    session.execute(text("SELECT 1"))
    return ApiResponse(data={"status": "ok", "database": "ok"})
