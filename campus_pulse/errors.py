"""Exception types shared by the Campus Pulse server and client."""

from __future__ import annotations


class CampusPulseError(Exception):
    """Base class for errors raised by Campus Pulse."""


class ValidationError(CampusPulseError, ValueError):
    """Raised when input is rejected before any store mutation."""


class PersistenceError(CampusPulseError, RuntimeError):
    """Raised when the backing store fails; the cause is never sent to clients."""


class AuthenticationError(CampusPulseError):
    """Raised when a bearer credential is missing or invalid."""


__all__ = [
    "CampusPulseError",
    "ValidationError",
    "PersistenceError",
    "AuthenticationError",
]
