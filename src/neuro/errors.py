"""Error taxonomy and user-facing error messages."""


class NeuroError(Exception):
    """Base class for all errors raised by Neuro."""

    pass


class StorageError(NeuroError):
    """Raised when a backing-store operation fails.

    Attributes:
        operation: Name of the store operation that failed.
    """

    def __init__(self, operation: str, message: str | None = None) -> None:
        self.operation = operation
        super().__init__(f"{operation} failed" + (f": {message}" if message else ""))


class CredentialError(NeuroError):
    """Raised when a credential cannot be exchanged for an access token."""

    pass


class NoAccountsError(CredentialError):
    """Raised when the account pool has no accounts configured."""

    pass


class UpstreamError(NeuroError):
    """Raised when the model endpoint rejects a request.

    Attributes:
        status_code: HTTP status of the failed response, if any.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class RateLimited(UpstreamError):
    """Raised when the quota stays exhausted after all retries."""

    pass


class TransientUpstreamError(UpstreamError):
    """Raised on network failures and 5xx responses."""

    pass


ERROR_MESSAGES = {
    "rate_limit": "⏳ Квота API исчерпана. Попробуй через несколько минут.",
    "credential": "🔑 Токен авторизации истёк. Требуется обновление.",
    "network": "🌐 Проблема с сетью. Попробуй ещё раз чуть позже.",
    "storage": "💾 Не удалось обратиться к хранилищу. Попробуй ещё раз.",
    "upstream": "🤖 Модель отклонила запрос. Попробуй переформулировать.",
}


def format_error(error: BaseException) -> str:
    """Map an exception to a short, non-technical message for the user."""
    if isinstance(error, RateLimited):
        return ERROR_MESSAGES["rate_limit"]
    if isinstance(error, CredentialError):
        return ERROR_MESSAGES["credential"]
    if isinstance(error, TransientUpstreamError):
        return ERROR_MESSAGES["network"]
    if isinstance(error, StorageError):
        return ERROR_MESSAGES["storage"]
    if isinstance(error, UpstreamError):
        return ERROR_MESSAGES["upstream"]

    return f"❌ Ошибка: {str(error)[:200]}"
