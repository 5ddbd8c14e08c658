from __future__ import annotations

from chat_sync.domain.value_objects.enums import SendFailureKind


class AppError(Exception):
    """Base application error."""

    def __init__(self, detail: str = "") -> None:
        self.detail = detail
        super().__init__(detail)


class NotFoundError(AppError):
    pass


class ValidationError(AppError):
    pass


class InvalidConversationError(ValidationError):
    """A conversation cannot be formed from the given identifiers."""


class PushConnectionError(AppError):
    """Transport-level failure; recoverable by reconnecting."""


class SubscriptionError(AppError):
    pass


class NotConnectedError(SubscriptionError):
    def __init__(self, detail: str = "Push connection is not established") -> None:
        super().__init__(detail)


class HistoryLoadError(AppError):
    pass


_SEND_FAILURE_MESSAGES: dict[SendFailureKind, str] = {
    SendFailureKind.RATE_LIMITED: "Daily message limit reached. Please upgrade your plan or try again later.",
    SendFailureKind.PEER_NOT_FOUND: "The receiver could not be found.",
    SendFailureKind.INVALID_CONTENT: "The message could not be sent because its content was rejected.",
    SendFailureKind.UNKNOWN: "The message could not be sent. Please try again.",
}


class SendFailure(AppError):
    """A send attempt failed; the optimistic entry has been rolled back."""

    def __init__(self, kind: SendFailureKind, detail: str = "", status_code: int | None = None) -> None:
        self.kind = kind
        self.status_code = status_code
        super().__init__(detail or _SEND_FAILURE_MESSAGES[kind])

    @property
    def user_message(self) -> str:
        return _SEND_FAILURE_MESSAGES[self.kind]

    @classmethod
    def from_status(cls, status_code: int, detail: str = "") -> SendFailure:
        if status_code == 429:
            kind = SendFailureKind.RATE_LIMITED
        elif status_code == 404:
            kind = SendFailureKind.PEER_NOT_FOUND
        elif status_code in (400, 413, 422):
            kind = SendFailureKind.INVALID_CONTENT
        else:
            kind = SendFailureKind.UNKNOWN
        return cls(kind, detail, status_code=status_code)
