from typing import Optional

from account_operator.exceptions.base import BaseOperatorError


class AwsProviderError(BaseOperatorError):
    """Raised when a provider call fails in a way the state machines must react to."""

    reason: str = "ProviderError"

    def __init__(self, message: str, code: str | None = None):
        self.code = code
        super().__init__(message)

    @staticmethod
    def error_code(e: Optional[Exception]) -> str | None:
        response = getattr(e, "response", None)
        if isinstance(response, dict):
            return response.get("Error", {}).get("Code")
        return None

    @staticmethod
    def is_no_such_entity(e: Optional[Exception]) -> bool:
        return AwsProviderError.error_code(e) in [
            "NoSuchEntity",
            "NoSuchEntityException",
            "NoSuchBucket",
            "NoSuchHostedZone",
            "InvalidVolume.NotFound",
            "InvalidSnapshot.NotFound",
            "ResourceNotFoundException",
        ]

    @staticmethod
    def is_opt_in_required(e: Optional[Exception]) -> bool:
        return AwsProviderError.error_code(e) == "OptInRequired"

    @staticmethod
    def is_transient(e: Optional[Exception]) -> bool:
        return AwsProviderError.error_code(e) in [
            "ConcurrentModificationException",
            "TooManyRequestsException",
            "Throttling",
            "ThrottlingException",
            "RequestLimitExceeded",
        ]

    @staticmethod
    def is_capacity(e: Optional[Exception]) -> bool:
        if isinstance(e, AccountLimitExceededError):
            return True
        return AwsProviderError.error_code(e) in [
            "ConstraintViolationException",
            "LimitExceededException",
            "ServiceQuotaExceededException",
        ]


class AccountLimitExceededError(AwsProviderError):
    reason = "AccountLimitExceeded"


class AccountCreationFailedError(AwsProviderError):
    reason = "AccountCreationFailed"


class InternalFailureError(AwsProviderError):
    reason = "InternalFailure"


class CredentialsProviderError(BaseOperatorError):
    """Raised when there is a credentials provider or assume role error."""


class AssumedRoleMismatchError(CredentialsProviderError):
    """Raised when the assumed role never reports the expected role ID."""

    def __init__(self, role_arn: str, expected_role_id: str, assumed_role_id: str):
        self.role_arn = role_arn
        self.expected_role_id = expected_role_id
        self.assumed_role_id = assumed_role_id
        super().__init__(
            f"Assumed role {assumed_role_id} for {role_arn} does not match role ID {expected_role_id}"
        )


class TeardownError(BaseOperatorError):
    def __init__(self, account_id: str, failures: dict[str, Exception]):
        self.account_id = account_id
        self.failures = failures
        categories = ", ".join(sorted(failures))
        super().__init__(
            f"Failed cleaning up account {account_id}, failed categories: {categories}"
        )
