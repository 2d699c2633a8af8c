import structlog
from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from application.api.container import ServiceContainer, get_services
from infrastructure.security.request_auth import verify_cron_secret

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/cron", tags=["cron"], dependencies=[Depends(verify_cron_secret)])


@router.get("/distill-memory")
async def distill_memory(services: ServiceContainer = Depends(get_services)):
    """Fold every user's recent entries into their profile artifact"""

    logger.info("Starting memory distillation")
    try:
        run = await services.distillation.run_for_all_users()
    except Exception as e:
        logger.error("Memory distillation failed", error=str(e))
        return JSONResponse({"error": "Internal error"}, status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)

    return {"success": True, **run.to_response()}
