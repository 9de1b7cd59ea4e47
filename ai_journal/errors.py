"""Exceptions raised by the journal core.

Every error derives from JournalError so a host can catch one type and show
its message to the user. No error is retried.
"""

from __future__ import annotations


class JournalError(Exception):
    """Base exception for all journal errors."""


class ConfigurationError(JournalError):
    """No usable credentials or models for the requested action.

    Raised before any network call is made.
    """


class TransportError(JournalError):
    """A request failed at the HTTP level.

    Attributes:
        status: HTTP status code, or None when the connection itself failed.
        reason: HTTP status text.
        body: Raw response body.
        provider_message: ``error.message`` from a JSON error body, if any.
    """

    def __init__(
        self,
        label: str,
        status: int | None = None,
        reason: str = "",
        body: str = "",
        provider_message: str | None = None,
        message: str | None = None,
    ):
        self.label = label
        self.status = status
        self.reason = reason
        self.body = body
        self.provider_message = provider_message

        if message is None:
            if status is None:
                message = f"{label} request failed: {reason or 'connection error'}"
            elif provider_message:
                message = f"{label} API Error: {status} - {provider_message}"
            else:
                message = f"{label} API Error: {status} {reason} - {body}".rstrip(" -")

        super().__init__(message)


class ProtocolError(JournalError):
    """A 2xx response whose body does not match the provider's schema."""


class AnalyticsResponseError(ProtocolError):
    """The analytics endpoint returned an unusable response.

    Attributes:
        status: HTTP status code of the response, when it was not a success.
        body: Raw response body.
    """

    def __init__(self, body: str = "", status: int | None = None, message: str | None = None):
        self.status = status
        self.body = body
        if message is None:
            message = "Analytics API returned an invalid response. Check API key and Base URL."
            if status is not None:
                message += f" (HTTP {status})"
        super().__init__(message)


class ValidationError(JournalError, ValueError):
    """User input was rejected before any call was made."""


class StateError(JournalError, RuntimeError):
    """The note's lifecycle state forbids the requested action.

    Attributes:
        state: The state the note was in, when known.
    """

    def __init__(self, message: str, state: object | None = None):
        self.state = state
        super().__init__(message)


class NoteLockedError(StateError):
    """The note is locked and can no longer be modified."""

    def __init__(self, message: str | None = None):
        super().__init__(message or "This journal is locked and cannot be modified.", "locked")
