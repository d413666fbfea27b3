"""Shared error codes, user-facing messages and exception types."""

from __future__ import annotations

PERMISSION_DENIED = "PERMISSION_DENIED"
NETWORK_ERROR = "NETWORK_ERROR"
AUTH_FAILED = "AUTH_FAILED"
INVALID_INPUT = "INVALID_INPUT"
PROVIDER_ERROR = "PROVIDER_ERROR"
CONFIG_ERROR = "CONFIG_ERROR"

ERROR_MESSAGES = {
    PERMISSION_DENIED: "Microphone access is required to record the meeting.",
    NETWORK_ERROR: "Transcription connection failed, please retry.",
    AUTH_FAILED: "Failed to get transcription authentication token.",
    INVALID_INPUT: "The request was not valid.",
    PROVIDER_ERROR: "The formatting service is unavailable.",
    CONFIG_ERROR: "Service configuration error.",
}

FALLBACK_WARNING = "AI formatting unavailable. Generated basic format from transcript."


def user_message(code: str) -> str:
    return ERROR_MESSAGES.get(code, "Unexpected error.")


class MinutesError(Exception):
    """Base class for all application errors."""

    code = PROVIDER_ERROR

    def __init__(self, message: str = "") -> None:
        super().__init__(message or user_message(self.code))
        self.message = message or user_message(self.code)


class AuthError(MinutesError):
    code = AUTH_FAILED


class DeviceError(MinutesError):
    code = PERMISSION_DENIED


class StreamConnectionError(MinutesError, ConnectionError):
    code = NETWORK_ERROR


class ValidationError(MinutesError):
    code = INVALID_INPUT


class ProviderError(MinutesError):
    code = PROVIDER_ERROR


class ConfigError(MinutesError):
    code = CONFIG_ERROR
