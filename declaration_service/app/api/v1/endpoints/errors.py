# Maps service exceptions to HTTP errors
import logging
from typing import Dict, Type

from fastapi import HTTPException

from declaration_service.app.service.exceptions import (
    AggregationFailedError,
    BaseDeclarationServiceError,
    ConcurrencyConflictError,
    ConfigurationError,
    DeclarationNotFoundError,
    DeclarationStoreError,
    InvalidStatusTransitionError,
    InvalidWizardStateError,
    KafkaProducerError,
    StatusPolicyViolationError,
    ValidationFailedError,
    VerificationInProgressError,
    VerificationServiceError,
    WizardNotFoundError,
)

logger = logging.getLogger(__name__)

ERROR_STATUS_CODES: Dict[Type[BaseDeclarationServiceError], int] = {
    ValidationFailedError: 400,
    DeclarationNotFoundError: 404,
    WizardNotFoundError: 404,
    InvalidWizardStateError: 409,
    InvalidStatusTransitionError: 409,
    VerificationInProgressError: 409,
    ConcurrencyConflictError: 409,
    AggregationFailedError: 422,
    StatusPolicyViolationError: 422,
    DeclarationStoreError: 502,
    KafkaProducerError: 502,
    VerificationServiceError: 503,
    ConfigurationError: 500,
}


def to_http_exception(error: BaseDeclarationServiceError) -> HTTPException:
    status_code = 500
    for error_type, code in ERROR_STATUS_CODES.items():
        if isinstance(error, error_type):
            status_code = code
            break
    if status_code >= 500:
        logger.error(f"Request failed with {type(error).__name__}: {error}", exc_info=True)
    else:
        logger.warning(f"Request rejected with {type(error).__name__}: {error}")
    return HTTPException(status_code=status_code, detail=str(error))
