from fastapi import APIRouter, Request

from app.core.config import get_settings

router = APIRouter()


@router.get("/health")
async def health(request: Request):
    settings = get_settings()
    rid = getattr(request.state, "request_id", None)
    return {"status": "ok", "service": settings.app_name, "environment": settings.environment, "request_id": rid}
