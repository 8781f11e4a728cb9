from typing import List, Optional

from botocore.exceptions import ClientError


class OnboardingError(Exception):
    """Base class for tenant onboarding errors."""


class ConfigurationError(OnboardingError):
    pass


class TemplateValidationError(OnboardingError):
    """Provisioning parameters failed validation; nothing was submitted."""

    def __init__(self, errors: List[str]):
        self.errors = errors
        super().__init__("Invalid provisioning parameters: " + "; ".join(errors))


class ProvisioningFailedError(OnboardingError):
    """Stack reached a terminal failure state."""

    def __init__(self, stack_name: str, stack_status: str, reason: Optional[str] = None):
        self.stack_name = stack_name
        self.stack_status = stack_status
        self.reason = reason or "Unknown failure"
        super().__init__(f"Stack {stack_name} failed: {stack_status} ({self.reason})")


class ProvisioningTimeoutError(OnboardingError):
    def __init__(self, stack_name: str, waited_seconds: float):
        self.stack_name = stack_name
        self.waited_seconds = waited_seconds
        super().__init__(f"Stack {stack_name} not complete after {waited_seconds:.0f}s")


class ProvisioningCancelledError(OnboardingError):
    def __init__(self, stack_name: str):
        self.stack_name = stack_name
        super().__init__(f"Provisioning of stack {stack_name} was cancelled")


def aws_error_code(error: Exception) -> Optional[str]:
    """Return the AWS error code of a botocore ClientError, None otherwise."""
    if isinstance(error, ClientError):
        return error.response.get("Error", {}).get("Code")
    return None


def error_code_for(error: Exception) -> str:
    """Short code used in notifications and failure metrics."""
    return aws_error_code(error) or type(error).__name__
