"""Error taxonomy shared by every layer.

    ValidationError      — illegal input or transition; the operation is a no-op
      OutOfRange         — stress/consequence index outside its track
      BusyError          — a narrator call is already in flight
    GatewayError         — the narrator could not produce a usable reply
    DirectiveParseError  — the <game_state> block is present but malformed
"""

from __future__ import annotations


class FateWeaverError(Exception):
    """Base class for all game errors."""


class ValidationError(FateWeaverError, ValueError):
    """Raised for illegal input; state is left unchanged."""


class OutOfRange(ValidationError, IndexError):
    pass


class BusyError(ValidationError):
    pass


class GatewayError(FateWeaverError, RuntimeError):
    """Raised when the narrator gateway fails (network, auth, closed session)."""


class DirectiveParseError(FateWeaverError):
    """Raised when the structured directive block cannot be decoded."""
