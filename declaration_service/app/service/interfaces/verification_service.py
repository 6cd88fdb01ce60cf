from abc import ABC, abstractmethod

from declaration_service.app.service.enums import CheckResult


class AbstractVerificationService(ABC):
    """
    External compliance checks run against an uploaded geo file.

    Each call resolves to exactly one CheckResult, or raises VerificationServiceError
    when the service errors. Timeouts are enforced by the caller.
    """

    @abstractmethod
    async def check_geometry(self, geo_file_ref: str) -> CheckResult:
        """
        Validates the plot polygons of the geo file.

        Args:
            geo_file_ref: Opaque reference of the uploaded geo file.

        Returns:
            CheckResult.COMPLIANT or CheckResult.NON_COMPLIANT.
        """
        pass

    @abstractmethod
    async def check_satellite(self, geo_file_ref: str) -> CheckResult:
        """
        Checks satellite imagery of the plots for deforestation.
        Only called once the geometry check reported compliant.
        """
        pass
