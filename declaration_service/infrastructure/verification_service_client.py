# Client for the external Verification Service (geometry and satellite checks)
import logging
from typing import Optional

import httpx
from fastapi import Depends
from pydantic import BaseModel, ValidationError

from declaration_service.app.config import settings
from declaration_service.app.dependencies.http_client import get_http_client
from declaration_service.app.service.enums import CheckResult, VerificationStage
from declaration_service.app.service.exceptions import VerificationServiceError
from declaration_service.app.service.interfaces.verification_service import AbstractVerificationService

logger = logging.getLogger(__name__)


class CheckResponse(BaseModel):
    result: CheckResult
    geo_file_ref: Optional[str] = None
    details: Optional[str] = None


class VerificationServiceClient(AbstractVerificationService):
    def __init__(self, http_client: httpx.AsyncClient, base_url: Optional[str] = None):
        self.http_client = http_client
        self.base_url = base_url

    async def check_geometry(self, geo_file_ref: str) -> CheckResult:
        return await self._request_check(VerificationStage.GEOMETRY, geo_file_ref)

    async def check_satellite(self, geo_file_ref: str) -> CheckResult:
        return await self._request_check(VerificationStage.SATELLITE, geo_file_ref)

    async def _request_check(self, stage: VerificationStage, geo_file_ref: str) -> CheckResult:
        base_url = self.base_url or settings.VERIFICATION_SERVICE_URL
        if not base_url:
            logger.error("VERIFICATION_SERVICE_URL not set. Cannot run verification checks.")
            raise VerificationServiceError(stage.value, geo_file_ref, "VERIFICATION_SERVICE_URL is not configured")

        request_url = f"{base_url.rstrip('/')}/{stage.value}-checks"
        logger.debug(f"Requesting {stage.value} check: {request_url} for geo file {geo_file_ref}")

        try:
            response = await self.http_client.post(request_url, json={"geo_file_ref": geo_file_ref})
            response.raise_for_status()
            parsed = CheckResponse(**response.json())
        except httpx.HTTPStatusError as e:
            logger.error(f"HTTP error calling verification service: {e.response.status_code} - {e.response.text}", exc_info=True)
            raise VerificationServiceError(stage.value, geo_file_ref, f"HTTP {e.response.status_code}") from e
        except httpx.RequestError as e:
            logger.error(f"Request error calling verification service: {e}", exc_info=True)
            raise VerificationServiceError(stage.value, geo_file_ref, f"request error: {e}") from e
        except (ValueError, TypeError, ValidationError) as e:
            logger.error(f"Malformed {stage.value} check response for geo file {geo_file_ref}: {e}", exc_info=True)
            raise VerificationServiceError(stage.value, geo_file_ref, "malformed response from verification service") from e

        logger.info(f"{stage.value.capitalize()} check for geo file {geo_file_ref} resolved: {parsed.result.value}")
        return parsed.result


# DI provider for VerificationServiceClient
def get_verification_service(
    http_client: httpx.AsyncClient = Depends(get_http_client)
) -> AbstractVerificationService:
    return VerificationServiceClient(http_client=http_client)
