"""Exception hierarchy shared by the adapters, the pipeline and the transport."""

from typing import Any


class MeetTranslatorError(Exception):
    """Base error.

    Attributes:
        error_code: Machine-readable identifier sent to clients.
        context: Extra key-value pairs (provider, language, status code...).
    """

    def __init__(self, message: str, error_code: str = "INTERNAL_ERROR", **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.context = context


class ConfigurationError(MeetTranslatorError):
    """Missing credentials or invalid settings. Never retried."""

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message, error_code="CONFIGURATION_ERROR", **context)


class InvalidInputError(MeetTranslatorError):
    """Inbound chunk or session config is malformed."""

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message, error_code="INVALID_INPUT", **context)


class UnsupportedLanguageError(MeetTranslatorError):
    def __init__(self, language: Any, **context: Any) -> None:
        super().__init__(
            f"Unsupported language: {language}",
            error_code="UNSUPPORTED_LANGUAGE",
            language=str(language),
            **context,
        )


class NotConnectedError(MeetTranslatorError):
    def __init__(self, message: str = "STT WebSocket is not connected", **context: Any) -> None:
        super().__init__(message, error_code="NOT_CONNECTED", **context)


class ReconnectExhaustedError(MeetTranslatorError):
    """Terminal: the recognizer gave up reconnecting. Callers must not re-drive it."""

    def __init__(self, attempts: int, **context: Any) -> None:
        super().__init__(
            f"STT reconnect attempts exhausted after {attempts} attempts",
            error_code="RECONNECT_EXHAUSTED",
            attempts=attempts,
            **context,
        )


class ServiceError(MeetTranslatorError):
    """A single vendor call failed (HTTP error, timeout, backend error message)."""

    def __init__(self, message: str, provider: str, **context: Any) -> None:
        super().__init__(message, error_code="SERVICE_ERROR", provider=provider, **context)
