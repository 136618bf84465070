"""Approval broker — the channel delivering Approve/Deny for gated tool calls.

When a tool call resolves to ``REQUIRES_APPROVAL`` the runner asks the
broker for a pending approval keyed by a fresh call id and suspends on it.
Whoever owns the UI (or the CLI's auto-decider) answers through
``resolve(call_id, verdict)``.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Callable
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)


class ApprovalVerdict(str, Enum):
    APPROVE = "approve"
    DENY = "deny"


class ApprovalRequest(BaseModel):
    """A gated tool call awaiting an external decision."""

    model_config = ConfigDict(frozen=True)

    call_id: str = Field(default_factory=lambda: f"apr-{uuid.uuid4().hex[:12]}")
    run_id: str
    server_id: str
    tool_name: str
    arguments: dict[str, Any] = Field(default_factory=dict)


AutoDecider = Callable[[ApprovalRequest], "ApprovalVerdict | None"]


class ApprovalBroker:
    """Issues approval requests and routes verdicts back to waiting runs.

    Parameters
    ----------
    auto_decider:
        Optional callback consulted when a request is raised.  Returning a
        verdict settles the request immediately; returning ``None`` leaves
        it pending for ``resolve``.
    on_request:
        Optional notification hook, called with each new request.
    """

    def __init__(
        self,
        *,
        auto_decider: AutoDecider | None = None,
        on_request: Callable[[ApprovalRequest], None] | None = None,
    ) -> None:
        self._auto_decider = auto_decider
        self._on_request = on_request
        self._pending: dict[str, tuple[ApprovalRequest, asyncio.Future[ApprovalVerdict]]] = {}

    def request(
        self,
        run_id: str,
        server_id: str,
        tool_name: str,
        arguments: dict[str, Any] | None = None,
    ) -> tuple[ApprovalRequest, asyncio.Future[ApprovalVerdict]]:
        """Open a pending approval; await the returned future for the verdict."""
        req = ApprovalRequest(
            run_id=run_id,
            server_id=server_id,
            tool_name=tool_name,
            arguments=arguments or {},
        )
        future: asyncio.Future[ApprovalVerdict] = asyncio.get_running_loop().create_future()
        self._pending[req.call_id] = (req, future)
        future.add_done_callback(lambda _f, cid=req.call_id: self._pending.pop(cid, None))
        logger.info(
            "Approval requested %s: %s.%s (run %s)",
            req.call_id, server_id, tool_name, run_id,
        )

        if self._on_request is not None:
            try:
                self._on_request(req)
            except Exception:  # noqa: BLE001
                logger.exception("Approval notification hook failed for %s", req.call_id)

        if self._auto_decider is not None:
            verdict = self._auto_decider(req)
            if verdict is not None:
                self.resolve(req.call_id, verdict)
        return req, future

    def resolve(self, call_id: str, verdict: ApprovalVerdict | str | bool) -> bool:
        """Deliver a verdict.  Returns ``False`` for unknown or settled ids."""
        entry = self._pending.get(call_id)
        if entry is None:
            logger.warning("No pending approval %s", call_id)
            return False
        _, future = entry
        if future.done():
            return False
        if isinstance(verdict, bool):
            verdict = ApprovalVerdict.APPROVE if verdict else ApprovalVerdict.DENY
        future.set_result(ApprovalVerdict(verdict))
        logger.info("Approval %s: %s", call_id, ApprovalVerdict(verdict).value)
        return True

    def approve(self, call_id: str) -> bool:
        return self.resolve(call_id, ApprovalVerdict.APPROVE)

    def deny(self, call_id: str) -> bool:
        return self.resolve(call_id, ApprovalVerdict.DENY)

    def pending(self, run_id: str | None = None) -> list[ApprovalRequest]:
        return [
            req for req, fut in self._pending.values()
            if not fut.done() and (run_id is None or req.run_id == run_id)
        ]

    def cancel_run(self, run_id: str) -> int:
        """Cancel every pending approval belonging to *run_id*."""
        cancelled = 0
        for req, future in list(self._pending.values()):
            if req.run_id == run_id and not future.done():
                future.cancel()
                cancelled += 1
        return cancelled


def approve_all(request: ApprovalRequest) -> ApprovalVerdict:
    return ApprovalVerdict.APPROVE


def deny_all(request: ApprovalRequest) -> ApprovalVerdict:
    return ApprovalVerdict.DENY
