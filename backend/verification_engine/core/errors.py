"""Verification error classes.

Every failure the engine reports has a machine-readable code, a message and
an HTTP status the caller can use when translating it into a response.
"""


class APIError(Exception):
    """Base class for errors surfaced to callers.

    Attributes:
        code: Machine-readable error code (e.g., "VERIFICATION_NOT_FOUND").
        message: Human-readable error message.
        status_code: Suggested HTTP status code.
        details: Optional list of additional error details.
    """

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 500,
        details: list[dict] | None = None,
    ) -> None:
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details
        super().__init__(message)


class VerificationError(APIError):
    """Base class for all verification engine errors.

    Catch this to handle every outcome of the engine in one place.
    """


class InvalidArgumentError(VerificationError):
    """Argument present but unusable (400), e.g. a non-positive code length."""

    def __init__(self, message: str) -> None:
        super().__init__(
            code="INVALID_ARGUMENT",
            message=message,
            status_code=400,
        )


class ArgumentMissingError(VerificationError):
    """Required argument missing or empty (400)."""

    def __init__(self, message: str) -> None:
        super().__init__(
            code="VERIFICATION_ARGS_MISSING",
            message=message,
            status_code=400,
        )


class VerificationNotFoundError(VerificationError):
    """No pending code for the (email, purpose) pair (404)."""

    def __init__(self, message: str = "verification code not found") -> None:
        super().__init__(
            code="VERIFICATION_NOT_FOUND",
            message=message,
            status_code=404,
        )


class VerificationExpiredError(VerificationError):
    """Code reached its expiry; the record has been deleted (400)."""

    def __init__(self, message: str = "verification code expired") -> None:
        super().__init__(
            code="VERIFICATION_EXPIRED",
            message=message,
            status_code=400,
        )


class InvalidVerificationCodeError(VerificationError):
    """Submitted code does not match the stored one (400).

    The record is left untouched so the user can retry until expiry.
    """

    def __init__(self, message: str = "invalid verification code") -> None:
        super().__init__(
            code="VERIFICATION_INVALID",
            message=message,
            status_code=400,
        )


class ResendTooSoonError(VerificationError):
    """Resend requested before the cooldown elapsed (429).

    Args:
        wait_seconds: Whole seconds until a resend is allowed (rounded up).
    """

    def __init__(self, wait_seconds: int) -> None:
        self.wait_seconds = wait_seconds
        super().__init__(
            code="RESEND_TOO_SOON",
            message=f"Resend allowed after {wait_seconds} second(s).",
            status_code=429,
            details=[{"wait_seconds": wait_seconds}],
        )


class VerificationStoreError(VerificationError):
    """Persistence layer failure (500).

    Wraps the driver exception (available as ``__cause__``). Never expose
    its details to end users.
    """

    def __init__(self, message: str = "Verification store operation failed") -> None:
        super().__init__(
            code="VERIFICATION_STORE_ERROR",
            message=message,
            status_code=500,
        )
