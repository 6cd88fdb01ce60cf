# API Router for Health Checks
from fastapi import APIRouter, Request
import logging

from declaration_service.app.config import settings
from declaration_service.infrastructure.database import connection

logger = logging.getLogger(__name__)
router = APIRouter()

@router.get("/health", tags=["Monitoring"])
async def health_check(request: Request):
    components = {"declaration_store": settings.DECLARATION_STORE_BACKEND}
    if settings.DECLARATION_STORE_BACKEND == "mongo":
        mongodb_status = "connected"
        try:
            await connection.get_database().command('ping')
        except Exception as e:
            logger.error(f"MongoDB health check ping failed: {e}")
            mongodb_status = "disconnected"
        components["mongodb"] = mongodb_status
    components["kafka"] = "configured" if settings.KAFKA_BOOTSTRAP_SERVERS else "not_configured"
    components["verification_service"] = "configured" if settings.VERIFICATION_SERVICE_URL else "not_configured"

    registry = getattr(request.app.state, "wizard_registry", None)
    return {
        "status": "ok",
        "components": components,
        "open_wizards": len(registry) if registry is not None else 0,
        "service_name": settings.SERVICE_NAME_API,
    }
