"""Error taxonomy shared by the runner, registry and adapters.

Every failure carries a stable ``ErrorKind`` and a human-readable message.
Invalid credential formats are reported through ``CredentialResult`` and
never raised; the kind exists so callers can label that outcome too.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    MISSING_CREDENTIAL = "missing_credential"
    INVALID_CREDENTIAL_FORMAT = "invalid_credential_format"
    TOOL_UNAVAILABLE = "tool_unavailable"
    TRANSPORT_FAULT = "transport_fault"
    TIMEOUT = "timeout"
    TOOL_LOOP_EXCEEDED = "tool_loop_exceeded"
    APPROVAL_DENIED = "approval_denied"
    CANCELLED = "cancelled"


class FlowgateError(RuntimeError):
    """Base class for errors that map onto an ``ErrorKind``."""

    kind: ErrorKind = ErrorKind.TRANSPORT_FAULT

    def __init__(self, message: str, *, kind: ErrorKind | None = None) -> None:
        super().__init__(message)
        if kind is not None:
            self.kind = kind

    @property
    def message(self) -> str:
        return str(self)


class MissingCredentialError(FlowgateError):
    """Raised when a credential-gated stage lies ahead and the gate is not ready."""

    kind = ErrorKind.MISSING_CREDENTIAL


class TransportFault(FlowgateError):
    """Raised by adapters when a model or tool-server call fails."""

    kind = ErrorKind.TRANSPORT_FAULT


class StageTimeoutError(FlowgateError):
    """Raised when a suspension point exceeds the caller's deadline."""

    kind = ErrorKind.TIMEOUT


class ToolLoopExceededError(FlowgateError):
    """Raised when the model keeps requesting tools past the round cap."""

    kind = ErrorKind.TOOL_LOOP_EXCEEDED


class ApprovalDeniedError(FlowgateError):
    """Raised when the approval channel denies a gated tool call."""

    kind = ErrorKind.APPROVAL_DENIED


class RunCancelledError(FlowgateError):
    """Raised inside a run that was cancelled or reset while suspended."""

    kind = ErrorKind.CANCELLED


# Structural errors: raised to the caller, not recorded as run failures.


class GraphValidationError(ValueError):
    """Raised when a pipeline graph violates its structural rules."""


class InvalidTransitionError(RuntimeError):
    """Raised when a requested stage status transition is not valid."""


class ToolServerConfigError(ValueError):
    """Raised when a tool-server definition is missing required fields."""


class ToolServerNotFoundError(KeyError):
    """Raised when a tool-server id is not present in the registry."""
