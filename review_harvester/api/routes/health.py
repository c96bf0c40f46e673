from fastapi import APIRouter

from review_harvester.core.config import get_settings

router = APIRouter()


@router.get("/")
async def service_info() -> dict[str, str]:
    return {"status": "ok", "service": get_settings().app_name}


@router.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}
