"""Domain errors translated to HTTP responses by the handlers in main.py"""

from typing import Optional


class BlueMoonError(Exception):
    """Base for all errors raised by the scheduling core"""

    status_code = 500
    default_message = "Something went wrong. Please try again."

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(BlueMoonError):
    """Malformed, user-correctable input"""

    status_code = 400
    default_message = "Invalid request"


class NotFoundError(BlueMoonError):
    """Unknown proposal, token or credential"""

    status_code = 404
    default_message = "Not found"


class ForbiddenError(BlueMoonError):
    status_code = 403
    default_message = "Not authorized"


class ConflictError(BlueMoonError):
    """
    Uniqueness violation (duplicate recipient, token collision).

    `retryable` is True only when a retry with fresh tokens could succeed.
    Externally rendered as 400.
    """

    status_code = 400
    default_message = "Request conflicts with existing data"

    def __init__(self, message: Optional[str] = None, retryable: bool = False):
        super().__init__(message)
        self.retryable = retryable


class CryptoError(BlueMoonError):
    """Bad key, malformed envelope or failed authentication. Always fatal to the operation."""

    status_code = 500
    default_message = "Internal error"


class DecryptionFailed(CryptoError):
    """Authentication tag did not verify: tampered envelope or wrong key"""


class CredentialUnavailable(BlueMoonError):
    """
    A stored calendar credential can no longer be used (key rotated, token revoked).
    Callers should prompt the user to reconnect instead of failing hard.
    """

    status_code = 409
    default_message = "Calendar credentials are no longer valid. Please reconnect your calendar."


class ProviderError(BlueMoonError):
    """A calendar provider answered with something other than success or a revoked grant"""

    status_code = 502
    default_message = "Calendar provider request failed. Please try again later."
