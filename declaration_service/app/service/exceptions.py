"""
Custom exceptions for the Declaration service.

Every failure of the declaration workflow is raised as one of these typed
errors and carries a human-readable message; nothing is silently defaulted.
"""
from typing import Any, List, Optional


class BaseDeclarationServiceError(Exception):
    """Base class for exceptions in this module."""
    pass

class ValidationFailedError(BaseDeclarationServiceError):
    """Raised when a wizard step (or a draft update) does not pass its rules. The draft is retained."""
    def __init__(self, step: str, reason: str):
        self.step = step
        self.reason = reason
        super().__init__(f"Validation failed at step '{step}': {reason}")

class VerificationInProgressError(BaseDeclarationServiceError):
    """Raised when a fresh declaration is submitted before its verification pipeline has settled."""
    def __init__(self, reason: str, retryable_error: Optional["VerificationServiceError"] = None):
        self.reason = reason
        self.retryable_error = retryable_error
        message = f"Verification in progress: {reason}"
        if retryable_error is not None:
            message += f" (last verification error: {retryable_error.reason}; retry verification)"
        super().__init__(message)

class VerificationServiceError(BaseDeclarationServiceError):
    """Raised when the external Verification Service errors or times out. Retryable."""
    retryable = True

    def __init__(self, stage: str, geo_file_ref: str, reason: str):
        self.stage = stage
        self.geo_file_ref = geo_file_ref
        self.reason = reason
        super().__init__(f"{stage.capitalize()} check for geo file '{geo_file_ref}' failed: {reason}")

class AggregationFailedError(BaseDeclarationServiceError):
    """Raised when source declarations cannot be folded into an existing-based declaration."""
    NO_SOURCES_SELECTED = "NO_SOURCES_SELECTED"
    DUPLICATE_SOURCES = "DUPLICATE_SOURCES"
    SOURCES_NOT_FOUND = "SOURCES_NOT_FOUND"
    INELIGIBLE_SOURCES = "INELIGIBLE_SOURCES"

    def __init__(self, reason_code: str, detail: str, source_ids: Optional[List[int]] = None):
        self.reason_code = reason_code
        self.detail = detail
        self.source_ids = source_ids or []
        super().__init__(f"Aggregation failed ({reason_code}): {detail}")

class DeclarationStoreError(BaseDeclarationServiceError):
    """Raised when the Declaration Store rejects or fails a request."""
    def __init__(self, operation: str, reason: str):
        self.operation = operation
        self.reason = reason
        super().__init__(f"Declaration store '{operation}' failed: {reason}")

class DeclarationNotFoundError(BaseDeclarationServiceError):
    """Raised when a declaration is not found."""
    def __init__(self, declaration_id: int):
        self.declaration_id = declaration_id
        super().__init__(f"Declaration with ID '{declaration_id}' not found.")

class WizardNotFoundError(BaseDeclarationServiceError):
    """Raised when no open wizard exists for the given ID."""
    def __init__(self, wizard_id: str):
        self.wizard_id = wizard_id
        super().__init__(f"Declaration wizard '{wizard_id}' not found.")

class InvalidWizardStateError(BaseDeclarationServiceError):
    """Raised when a wizard operation is attempted in a step that does not allow it."""
    def __init__(self, wizard_id: str, current_step: str, attempted_action: str):
        self.wizard_id = wizard_id
        self.current_step = current_step
        self.attempted_action = attempted_action
        super().__init__(f"Cannot {attempted_action} for wizard '{wizard_id}' in step '{current_step}'.")

class StatusPolicyViolationError(BaseDeclarationServiceError):
    """Raised when a caller tries to force a status the derivation policy does not permit."""
    def __init__(self, requested: Any, derived: Any, reason: str):
        self.requested = requested
        self.derived = derived
        self.reason = reason
        super().__init__(f"Status '{requested}' is not permitted (derived status '{derived}'): {reason}")

class InvalidStatusTransitionError(BaseDeclarationServiceError):
    """Raised when a persisted declaration is moved along an undefined status transition."""
    def __init__(self, declaration_id: int, current_status: Any, requested_status: Any):
        self.declaration_id = declaration_id
        self.current_status = current_status
        self.requested_status = requested_status
        super().__init__(
            f"Declaration '{declaration_id}' cannot move from status '{current_status}' to '{requested_status}'."
        )

class ConcurrencyConflictError(BaseDeclarationServiceError):
    """Raised when a version conflict is detected while appending to the event store."""
    def __init__(self, aggregate_id: str, expected_version: int, actual_version: int):
        self.aggregate_id = aggregate_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Concurrency conflict for aggregate '{aggregate_id}'. "
            f"Expected version {expected_version}, but found {actual_version}."
        )

class ConfigurationError(BaseDeclarationServiceError):
    """Raised when a configuration issue is detected."""
    pass

class KafkaProducerError(BaseDeclarationServiceError):
    """Raised when there's an issue with Kafka message production."""
    pass
