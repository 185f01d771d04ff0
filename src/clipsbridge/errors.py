"""Exceptions raised across the host/engine boundary."""

from __future__ import annotations

from typing import Optional


class BridgeError(Exception):
    """Base exception for clipsbridge failures."""


class ConfigError(BridgeError):
    """Raised when a bridge configuration value is invalid."""


class InvalidReferenceError(BridgeError):
    """Raised when a handle points at a construct that no longer exists."""


class SchemaMismatchError(BridgeError):
    """Raised when an engine class or template does not fit a host shape."""


class UnsupportedTypeError(BridgeError):
    """Raised when no conversion path exists for a type or value."""


class ConversionError(BridgeError):
    """Base exception for narrowing numeric conversions."""


class OutOfRangeError(ConversionError):
    """Raised when an integer does not fit the destination width."""


class PrecisionLossError(ConversionError):
    """Raised when a float with a fractional part targets an integer."""


class ConstructionError(BridgeError):
    """Raised when the engine rejects a command.

    Attributes:
        command: The command or expression text sent to the engine.
        diagnostic: The engine's own error text, unmodified.
    """

    def __init__(self, message: str, *, command: Optional[str] = None, diagnostic: str = "") -> None:
        super().__init__(f"{message}: {diagnostic}" if diagnostic else message)
        self.command = command
        self.diagnostic = diagnostic


class CallbackError(BridgeError):
    """Raised when a bridged host function fails or its arguments do not coerce."""

    def __init__(self, message: str, *, function: Optional[str] = None) -> None:
        super().__init__(message)
        self.function = function
