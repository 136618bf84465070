"""Credential gate — the single bearer token guarding model calls.

The gate stores the credential and its validity *together*: every ``set``
revalidates, so ``is_ready()`` is always the pure function of the stored
value under the current rule.  The credential lives in memory only.
"""

from __future__ import annotations

import logging
import re
import threading
from typing import TYPE_CHECKING, NamedTuple

from pydantic import BaseModel, ConfigDict

from flowgate.core.errors import ErrorKind

if TYPE_CHECKING:
    from flowgate.config import FlowgateSettings

logger = logging.getLogger(__name__)

# Groq keys: "gsk_" followed by 1-60 alphanumerics.
DEFAULT_CREDENTIAL_PATTERN = r"^gsk_[A-Za-z0-9]{1,60}$"

MISSING_MESSAGE = "API key is required"
PATTERN_MESSAGE = "API key must start with gsk_ followed by alphanumeric characters"


class CredentialResult(BaseModel):
    """Outcome of ``CredentialGate.set``.  Malformed input is never raised."""

    model_config = ConfigDict(frozen=True)

    success: bool
    error: str | None = None

    @property
    def kind(self) -> ErrorKind | None:
        if self.success:
            return None
        if self.error == MISSING_MESSAGE:
            return ErrorKind.MISSING_CREDENTIAL
        return ErrorKind.INVALID_CREDENTIAL_FORMAT


class _GateState(NamedTuple):
    credential: str
    is_valid: bool
    error: str | None


_EMPTY = _GateState("", False, None)


class CredentialGate:
    """Validates and stores one bearer credential.

    Parameters
    ----------
    pattern:
        Regular expression the credential must fully match.
    pattern_message:
        Message reported when a non-empty value does not match.
    """

    def __init__(
        self,
        pattern: str = DEFAULT_CREDENTIAL_PATTERN,
        *,
        pattern_message: str = PATTERN_MESSAGE,
    ) -> None:
        self._pattern = re.compile(pattern)
        self._pattern_message = pattern_message
        self._write_lock = threading.Lock()
        # Replaced atomically; readers never see a value paired with a stale flag.
        self._state: _GateState = _EMPTY

    @classmethod
    def from_settings(cls, settings: FlowgateSettings) -> CredentialGate:
        """Build a gate seeded from already-parsed configuration."""
        gate = cls(settings.credential_pattern)
        key = settings.resolved_api_key()
        if key:
            result = gate.set(key)
            if not result.success:
                logger.warning("Configured API key rejected: %s", result.error)
        return gate

    def validate(self, value: str) -> CredentialResult:
        """Check *value* against the format rule without storing it."""
        if not value:
            return CredentialResult(success=False, error=MISSING_MESSAGE)
        if not self._pattern.fullmatch(value):
            return CredentialResult(success=False, error=self._pattern_message)
        return CredentialResult(success=True)

    def set(self, value: str) -> CredentialResult:
        """Store *value* and its validity, even when invalid."""
        result = self.validate(value)
        with self._write_lock:
            self._state = _GateState(value, result.success, result.error)
        if result.success:
            logger.info("Credential updated (valid).")
        else:
            logger.info("Credential updated (invalid): %s", result.error)
        return result

    def clear(self) -> None:
        """Reset to empty / invalid."""
        with self._write_lock:
            self._state = _EMPTY
        logger.info("Credential cleared.")

    def is_ready(self) -> bool:
        return self._state.is_valid

    @property
    def credential(self) -> str:
        """The stored credential, or ``""`` when the gate is not ready."""
        state = self._state
        return state.credential if state.is_valid else ""

    @property
    def raw_value(self) -> str:
        """The stored value regardless of validity (for display)."""
        return self._state.credential

    @property
    def error(self) -> str | None:
        return self._state.error

    def snapshot(self) -> CredentialResult:
        """Validity and error read together from one consistent state."""
        state = self._state
        return CredentialResult(success=state.is_valid, error=state.error)

    def __repr__(self) -> str:
        # Never render the credential itself.
        return f"CredentialGate(ready={self.is_ready()})"
