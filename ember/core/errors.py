"""
ember/core/errors.py — Exception hierarchy and user-facing notices for Ember.

Service clients raise typed :class:`ServiceError` subclasses; the dialog and
controller convert them into :class:`Notice` objects that the web layer shows
as transient toasts. Nothing in this module is fatal by itself.
"""

from __future__ import annotations

import asyncio
from dataclasses import asdict, dataclass, field
from typing import Any, Awaitable, Optional, TypeVar

import httpx

T = TypeVar("T")


# ──────────────────────────────────────────────────────────────
# Exceptions
# ──────────────────────────────────────────────────────────────

class EmberError(Exception):
    """Root of every Ember-specific exception."""


class GracefulError(EmberError):
    """
    An error that carries a message safe to show to the user.

    Args:
        message: Technical description for logs.
        user_message: Friendly wording for the UI.
        recovery: Optional hint for what the user can do next.
    """

    def __init__(
        self,
        message: str,
        user_message: str,
        recovery: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.user_message = user_message
        self.recovery = recovery


class ServiceError(EmberError):
    """
    A third-party HTTP service failed.

    Args:
        service: Short service name (``'elevenlabs'``, ``'twilio'``...).
        message: Failure description.
        status_code: HTTP status when the service answered, else ``None``.
    """

    def __init__(
        self,
        service: str,
        message: str,
        status_code: Optional[int] = None,
    ) -> None:
        self.service = service
        self.status_code = status_code
        super().__init__(
            f"{service}: {message}" + (f" (HTTP {status_code})" if status_code else "")
        )


class SynthesisError(ServiceError):
    """Speech synthesis or voice cloning failed."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__("elevenlabs", message, status_code)


class InterpretationError(ServiceError):
    """The generative-language backend failed or returned unusable output."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__("gemini", message, status_code)


class TelephonyError(ServiceError):
    """SMS or voice-call request failed."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__("twilio", message, status_code)


class SmartHomeError(ServiceError):
    """A smart-home device command failed."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__("smartthings", message, status_code)


class PlaybackError(EmberError):
    """The local audio device could not play a synthesized clip."""


class StorageError(EmberError):
    """A local store could not be read or written."""


class DialogNotOpenError(EmberError):
    """A dialog action arrived while no disambiguation dialog is open."""


# ──────────────────────────────────────────────────────────────
# Notices
# ──────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Notice:
    """A transient, user-visible message (toast)."""

    title: str
    description: str
    variant: str = "destructive"
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# ──────────────────────────────────────────────────────────────
# Friendly messages
# ──────────────────────────────────────────────────────────────

_DEFAULT_USER_MESSAGE = "I couldn't quite catch that. Could you try again?"


def describe_error(exc: BaseException) -> str:
    """
    Map an exception to a short message suitable for the user.

    Args:
        exc: Any exception raised by a service call.

    Returns:
        Friendly text. :class:`GracefulError` keeps its own ``user_message``.
    """
    if isinstance(exc, GracefulError):
        return exc.user_message
    if isinstance(exc, StorageError):
        return "Your changes could not be saved. Please try again."
    if isinstance(exc, (httpx.TimeoutException, asyncio.TimeoutError)):
        return "That's taking too long. Let's try a shorter phrase."
    if isinstance(exc, httpx.TransportError):
        return "Connection issue. Please check your internet and try again."
    if isinstance(exc, ServiceError) and exc.status_code == 429:
        return "Too many requests. Please wait a moment."

    text = str(exc).lower()
    if "timeout" in text:
        return "That's taking too long. Let's try a shorter phrase."
    if "rate limit" in text:
        return "Too many requests. Please wait a moment."
    if "network" in text or "connect" in text:
        return "Connection issue. Please check your internet and try again."
    return _DEFAULT_USER_MESSAGE


async def with_graceful_fallback(
    operation: Awaitable[T],
    fallback: T,
    on_error: Optional[Any] = None,
) -> T:
    """
    Await *operation*, returning *fallback* instead of raising.

    Args:
        operation: Awaitable to run.
        fallback: Value returned when the awaitable raises.
        on_error: Optional callable receiving the friendly message.

    Returns:
        The awaited result, or *fallback* on any exception.
    """
    try:
        return await operation
    except asyncio.CancelledError:
        raise
    except Exception as exc:  # noqa: BLE001
        if on_error is not None:
            on_error(describe_error(exc))
        return fallback
