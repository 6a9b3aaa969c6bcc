"""Facebook Graph API error taxonomy.

Classifies remote failures into a small set of types and pairs each with a
message that is safe to show in the dashboard. ``TokenRejectedError`` is the
only failure that should flip an ad account to PAUSED.
"""

import enum


class FacebookErrorType(str, enum.Enum):
    AUTHENTICATION = "AUTHENTICATION"
    RATE_LIMIT = "RATE_LIMIT"
    PERMISSION = "PERMISSION"
    VALIDATION = "VALIDATION"
    TEMPORARY = "TEMPORARY"
    NETWORK = "NETWORK"
    UNKNOWN = "UNKNOWN"


ERROR_CODE_TYPES: dict[int, FacebookErrorType] = {
    190: FacebookErrorType.AUTHENTICATION,  # invalid / expired OAuth token
    102: FacebookErrorType.AUTHENTICATION,  # session key invalid
    4: FacebookErrorType.RATE_LIMIT,  # application request limit
    17: FacebookErrorType.RATE_LIMIT,  # user request limit
    32: FacebookErrorType.RATE_LIMIT,  # page request limit
    613: FacebookErrorType.RATE_LIMIT,  # calls within one hour exceeded
    10: FacebookErrorType.PERMISSION,
    200: FacebookErrorType.PERMISSION,
    299: FacebookErrorType.PERMISSION,
    100: FacebookErrorType.VALIDATION,  # invalid parameter
    1: FacebookErrorType.TEMPORARY,  # unknown error, usually transient
    2: FacebookErrorType.TEMPORARY,  # service temporarily unavailable
    80001: FacebookErrorType.TEMPORARY,
}

USER_MESSAGES: dict[FacebookErrorType, str] = {
    FacebookErrorType.AUTHENTICATION: "Your Facebook session has expired. Please reconnect your account.",
    FacebookErrorType.RATE_LIMIT: "Facebook is rate limiting requests. Please try again in a few minutes.",
    FacebookErrorType.PERMISSION: "Missing Facebook permissions. Please reconnect and grant the requested access.",
    FacebookErrorType.VALIDATION: "Facebook rejected the request. Please check the values and try again.",
    FacebookErrorType.TEMPORARY: "Facebook is temporarily unavailable. Please try again shortly.",
    FacebookErrorType.NETWORK: "Could not reach Facebook. Please check your connection and try again.",
    FacebookErrorType.UNKNOWN: "An unexpected error occurred while talking to Facebook.",
}

RETRYABLE_TYPES = frozenset({
    FacebookErrorType.RATE_LIMIT,
    FacebookErrorType.TEMPORARY,
    FacebookErrorType.NETWORK,
})

# Error codes / subcodes that mean the stored credential is no longer usable
TOKEN_REJECTED_CODES = frozenset({190, 102})
TOKEN_REJECTED_SUBCODES = frozenset({463, 467})
TOKEN_REJECTED_PATTERNS = (
    "session has expired",
    "invalid oauth access token",
    "error validating access token",
    "access token has expired",
    "user has not authorized application",
    "the session has been invalidated",
)


class GraphAPIError(Exception):
    """A failed Graph API call."""

    def __init__(
        self,
        message: str,
        *,
        code: int | None = None,
        subcode: int | None = None,
        http_status: int | None = None,
        error_type: FacebookErrorType | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.subcode = subcode
        self.http_status = http_status
        self.error_type = error_type or classify(code, http_status)

    @property
    def user_message(self) -> str:
        return USER_MESSAGES[self.error_type]

    @property
    def retryable(self) -> bool:
        return self.error_type in RETRYABLE_TYPES

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}({self.message!r}, code={self.code}, "
            f"subcode={self.subcode}, http_status={self.http_status}, type={self.error_type.value})"
        )


class TokenRejectedError(GraphAPIError):
    """The remote side rejected the access token (expired, revoked, invalid)."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("error_type", FacebookErrorType.AUTHENTICATION)
        super().__init__(message, **kwargs)


def classify(code: int | None, http_status: int | None = None) -> FacebookErrorType:
    if code is not None and code in ERROR_CODE_TYPES:
        return ERROR_CODE_TYPES[code]
    if http_status is not None:
        if http_status == 429:
            return FacebookErrorType.RATE_LIMIT
        if http_status >= 500:
            return FacebookErrorType.TEMPORARY
        if http_status == 401:
            return FacebookErrorType.AUTHENTICATION
        if http_status == 403:
            return FacebookErrorType.PERMISSION
    return FacebookErrorType.UNKNOWN


def classify_error(exc: BaseException) -> FacebookErrorType:
    """Classify any exception raised while talking to Facebook."""
    if isinstance(exc, GraphAPIError):
        return exc.error_type
    return FacebookErrorType.UNKNOWN


def is_token_rejected(code: int | None, subcode: int | None, message: str | None) -> bool:
    if code in TOKEN_REJECTED_CODES or subcode in TOKEN_REJECTED_SUBCODES:
        return True
    lowered = (message or "").lower()
    return any(pattern in lowered for pattern in TOKEN_REJECTED_PATTERNS)
