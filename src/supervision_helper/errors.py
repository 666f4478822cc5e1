"""Error types and failure classification for generation calls."""

from typing import Optional

from .models.schemas import ErrorCategory


class SupervisionHelperError(Exception):
    """Base class for errors raised by this package."""


class RateLimitError(SupervisionHelperError):
    """The provider signalled quota exhaustion (HTTP 429)."""

    status_code = 429


class AuthenticationError(SupervisionHelperError):
    """The credential is missing, invalid or expired."""


class MalformedResponseError(SupervisionHelperError):
    """A structured payload could not be parsed."""


class TransportError(SupervisionHelperError):
    """Any other provider or network failure."""


class InputValidationError(SupervisionHelperError):
    """A local precondition failed before any call was made."""


_AUTH_MARKERS = (
    "Requested entity was not found",
    "API key not valid",
    "API_KEY_INVALID",
    "PERMISSION_DENIED",
    "UNAUTHENTICATED",
    "Incorrect API key",
)

# Messages shown to the user, keyed by the operation that failed.
_OPERATION_MESSAGES = {
    "generate_record": "生成紀錄時發生錯誤，請稍後再試。",
    "generate_feedback": "生成回饋內容時發生錯誤。",
    "generate_visual": "生成視覺卡片時發生錯誤。",
    "refine": "微調內容時發生錯誤，請稍後再試。",
    "refine_image": "微調圖像提示詞時發生錯誤，請稍後再試。",
}
_DEFAULT_MESSAGE = "發生未預期的錯誤，請稍後再試。"
_RATE_LIMIT_MESSAGE = "API 使用額度已達上限，請稍後再試，或檢查您的 API Key 設定。"
_AUTH_MESSAGE = "API Key 效期已過或未設定，請重新連接。"
_MALFORMED_MESSAGE = "回傳內容格式有誤，請重新產生。"


def _status_values(exc: BaseException) -> list:
    """Collect the status-like attributes SDK errors carry."""
    values = [getattr(exc, attr, None) for attr in ("status", "code", "status_code")]
    response = getattr(exc, "response", None)
    values.append(getattr(response, "status_code", None))
    return [v for v in values if v is not None]


def is_rate_limit_error(exc: BaseException) -> bool:
    """Check whether a failure is a 429 / RESOURCE_EXHAUSTED condition."""
    if isinstance(exc, RateLimitError):
        return True
    for value in _status_values(exc):
        if value == 429 or value == "429" or value == "RESOURCE_EXHAUSTED":
            return True
    message = str(exc)
    return "429" in message or "RESOURCE_EXHAUSTED" in message


def is_authentication_error(exc: BaseException) -> bool:
    """Check whether the provider rejected the credential."""
    if isinstance(exc, AuthenticationError):
        return True
    for value in _status_values(exc):
        if value in (401, 403, "PERMISSION_DENIED", "UNAUTHENTICATED"):
            return True
    message = str(exc)
    return any(marker in message for marker in _AUTH_MARKERS)


def classify_error(exc: BaseException) -> ErrorCategory:
    """Map any failure onto the user-facing error taxonomy."""
    if isinstance(exc, InputValidationError):
        return ErrorCategory.VALIDATION
    if isinstance(exc, MalformedResponseError):
        return ErrorCategory.MALFORMED_RESPONSE
    if is_rate_limit_error(exc):
        return ErrorCategory.RATE_LIMIT
    if is_authentication_error(exc):
        return ErrorCategory.AUTHENTICATION
    return ErrorCategory.TRANSPORT


def user_message(category: ErrorCategory, operation: Optional[str] = None) -> str:
    """Return the message shown to the user for a failed operation."""
    if category == ErrorCategory.AUTHENTICATION:
        return _AUTH_MESSAGE
    if category == ErrorCategory.RATE_LIMIT:
        return _RATE_LIMIT_MESSAGE
    if category == ErrorCategory.MALFORMED_RESPONSE:
        return _MALFORMED_MESSAGE
    return _OPERATION_MESSAGES.get(operation or "", _DEFAULT_MESSAGE)
