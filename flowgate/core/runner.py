"""Pipeline runner — advances one conversational turn through the stage graph.

The PipelineRunner wires together the PipelineGraph, StageMachine,
CredentialGate, ToolServerRegistry, ApprovalBroker and EventBus, and
delegates the external work to a ``ModelCapability`` and a
``ToolTransport``.

Per-stage lifecycle:
    IDLE -> ACTIVE -> PROCESSING (only while awaiting an external result)
         -> COMPLETED | FAILED

Suspension happens only while a stage is PROCESSING: awaiting the model,
a tool server, or an approval verdict.  Each suspension honours an optional
deadline from ``RunnerConfig``.  After every suspension the runner checks
that the run is still current; results arriving for a run that was
cancelled or reset in the meantime are discarded.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Awaitable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, TypeVar

from flowgate.capabilities.base import (
    ModelCapability,
    ModelResult,
    NullTransport,
    StageHandler,
    ToolTransport,
)
from flowgate.core.approvals import ApprovalBroker, ApprovalVerdict
from flowgate.core.credential_gate import CredentialGate
from flowgate.core.errors import (
    ApprovalDeniedError,
    ErrorKind,
    FlowgateError,
    MissingCredentialError,
    RunCancelledError,
    StageTimeoutError,
    ToolLoopExceededError,
    TransportFault,
)
from flowgate.core.event_bus import EventBus
from flowgate.core.pipeline_graph import PipelineGraph
from flowgate.core.stage_machine import StageMachine
from flowgate.core.tool_registry import ToolServerRegistry
from flowgate.models.config import RunnerConfig
from flowgate.models.events import RunFailure, RunResult
from flowgate.models.stages import (
    NO_TOOLS,
    TOOLS_NEEDED,
    RunStatus,
    StageKind,
    StageStatus,
)
from flowgate.models.tool_servers import ApprovalDecision, ServerStatus, ToolServer
from flowgate.models.turns import (
    DirectAnswer,
    ModelPrompt,
    ToolCallOutcome,
    ToolCallRecord,
    ToolCallRequest,
    ToolInvocation,
    ToolSpec,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class _RunContext:
    """Run-local state.  Never shared between runs."""

    run_id: str
    generation: int
    prompt: ModelPrompt
    payload: dict[str, Any]
    visited: list[str] = field(default_factory=list)
    taken_edges: list[str] = field(default_factory=list)
    tool_calls: list[ToolCallRecord] = field(default_factory=list)
    tool_rounds: int = 0
    last_response: ModelResult | None = None
    answer: str | None = None
    final: RunResult | None = None
    # Tool name -> server id, as offered to the model on the latest call.
    offered: dict[str, str] = field(default_factory=dict)


class PipelineRunner:
    """Runs conversational turns through a pipeline graph.

    Parameters
    ----------
    graph:
        The stage graph to traverse.
    gate:
        Credential gate consulted before credential-requiring stages.
    registry:
        Tool-server registry shared with other runs.
    model:
        The language-model capability.
    transport:
        Tool transport.  Defaults to ``NullTransport`` (every call faults).
    approvals:
        Approval broker for gated tool calls.
    bus:
        Event bus receiving stage and run events.
    config:
        Limits and deadlines.
    tool_catalog:
        Server id -> tools that server advertises.
    """

    def __init__(
        self,
        graph: PipelineGraph,
        *,
        gate: CredentialGate,
        registry: ToolServerRegistry,
        model: ModelCapability,
        transport: ToolTransport | None = None,
        approvals: ApprovalBroker | None = None,
        bus: EventBus | None = None,
        config: RunnerConfig | None = None,
        tool_catalog: Mapping[str, Sequence[ToolSpec]] | None = None,
    ) -> None:
        self.graph = graph
        self.gate = gate
        self.registry = registry
        self.model = model
        self.transport = transport or NullTransport()
        self.approvals = approvals or ApprovalBroker()
        self.bus = bus or EventBus()
        self.config = config or RunnerConfig()
        self.stage_machine = StageMachine(graph, self.bus)

        self._catalog: dict[str, list[ToolSpec]] = {
            sid: list(specs) for sid, specs in (tool_catalog or {}).items()
        }
        self._stage_handlers: dict[str, StageHandler] = {}
        self._generations: dict[str, int] = {}
        self._tasks: dict[str, asyncio.Task[Any]] = {}
        self._contexts: dict[str, _RunContext] = {}
        self._results: dict[str, RunResult] = {}
        self.last_run_id: str | None = None

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def register_stage_handler(self, stage_id: str, handler: StageHandler) -> None:
        """Register an async handler for an input/transform/decision/output stage.

        The handler receives ``(run_id, payload)`` and returns a dict merged
        into the payload.  A ``"message"`` key replaces the user message; a
        ``"condition"`` key selects the outgoing edge of a decision; an
        ``"answer"`` key replaces the answer returned to the caller.
        """
        if stage_id not in self.graph.stage_ids:
            raise KeyError(f"Unknown stage {stage_id!r}")
        self._stage_handlers[stage_id] = handler

    def set_tool_catalog(self, server_id: str, tools: Sequence[ToolSpec]) -> None:
        """Record the tools *server_id* advertises."""
        self._catalog[server_id] = [t.model_copy(update={"server_id": server_id}) for t in tools]

    @property
    def tool_catalog(self) -> dict[str, list[ToolSpec]]:
        return {sid: list(specs) for sid, specs in self._catalog.items()}

    # ------------------------------------------------------------------
    # Run lifecycle
    # ------------------------------------------------------------------

    async def run_turn(
        self,
        message: str,
        *,
        run_id: str | None = None,
        payload: dict[str, Any] | None = None,
    ) -> RunResult:
        """Run one user turn to a terminal state and return its summary."""
        run_id = run_id or _new_run_id()
        if run_id in self._tasks:
            raise ValueError(f"Run {run_id} is already in progress")

        generation = self._generations.get(run_id, 0) + 1
        self._generations[run_id] = generation
        self.stage_machine.initialize_run(run_id)
        self.last_run_id = run_id
        self._results.pop(run_id, None)

        ctx = _RunContext(
            run_id=run_id,
            generation=generation,
            prompt=ModelPrompt(user_message=message, system_prompt=self.config.system_prompt),
            payload={"message": message, **(payload or {})},
        )
        self._contexts[run_id] = ctx

        # Credential gate: nothing is entered when a gated stage lies ahead.
        gated = self.graph.credential_stages()
        credential = self.gate.snapshot()
        if gated and not credential.success:
            failure = RunFailure(
                kind=ErrorKind.MISSING_CREDENTIAL,
                message=(
                    "A valid API key is required before running "
                    f"{', '.join(gated)}" + (f": {credential.error}" if credential.error else "")
                ),
            )
            logger.warning("Run %s refused: %s", run_id, failure.message)
            self.stage_machine.fail_run(run_id, failure)
            return self._finish(ctx, RunStatus.FAILED, failure)

        task = asyncio.current_task()
        if task is not None:
            self._tasks[run_id] = task
        self.stage_machine.start_run(run_id)
        logger.info("Run %s started (%s)", run_id, self.graph.name)

        try:
            stage_id: str | None = self.graph.entry_stage
            while stage_id is not None:
                condition = await self._execute_stage(ctx, stage_id)
                edge = self.graph.next_edge(stage_id, condition)
                if edge is None:
                    break
                ctx.taken_edges.append(edge.edge_id)
                stage_id = edge.target
        except asyncio.CancelledError:
            if not self._is_current(ctx):
                # We cancelled this task ourselves (cancel/reset); absorb it.
                current = asyncio.current_task()
                if current is not None:
                    current.uncancel()
                return self._cancelled_result(ctx)
            # Cancelled from outside: record it, then let cancellation propagate.
            self._cancel_current(ctx, "Run task was cancelled")
            raise
        except RunCancelledError:
            return self._cancelled_result(ctx)
        except FlowgateError as exc:
            return self._fail(ctx, exc)
        finally:
            self._tasks.pop(run_id, None)

        self.stage_machine.complete_run(run_id)
        logger.info("Run %s completed (%d tool round(s))", run_id, ctx.tool_rounds)
        return self._finish(ctx, RunStatus.COMPLETED)

    def cancel(self, run_id: str) -> bool:
        """Cancel an in-flight run.  Returns ``False`` if it is not running."""
        ctx = self._contexts.get(run_id)
        if ctx is None or self.stage_machine.run_status(run_id) != RunStatus.RUNNING:
            return False
        self._cancel_current(ctx, "Run cancelled")
        task = self._tasks.get(run_id)
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
        return True

    def reset(self, run_id: str | None = None) -> None:
        """Return every stage to IDLE and the run to NOT_STARTED.

        Cancels the run first if it is in flight.  With no *run_id*, every
        known run is reset.  Safe to call repeatedly.
        """
        run_ids = [run_id] if run_id is not None else list(self._contexts)
        for rid in run_ids:
            if rid in self._contexts and self.stage_machine.run_status(rid) == RunStatus.RUNNING:
                self.cancel(rid)
            self._generations[rid] = self._generations.get(rid, 0) + 1
            self.stage_machine.reset_run(rid)
            self._results.pop(rid, None)
        logger.debug("Reset run(s): %s", run_ids)

    def forget(self, run_id: str) -> None:
        """Drop all bookkeeping for a finished run."""
        if run_id in self._tasks:
            raise ValueError(f"Run {run_id} is still in progress")
        self._contexts.pop(run_id, None)
        self._results.pop(run_id, None)
        self._generations.pop(run_id, None)
        self.stage_machine.forget_run(run_id)
        self.bus.clear(run_id)

    # ------------------------------------------------------------------
    # Query methods
    # ------------------------------------------------------------------

    def status(self, run_id: str) -> RunStatus:
        return self.stage_machine.run_status(run_id)

    def stage_states(self, run_id: str) -> dict[str, StageStatus]:
        return self.stage_machine.get_all_states(run_id)

    def failure(self, run_id: str) -> RunFailure | None:
        return self.stage_machine.failure(run_id)

    def result(self, run_id: str) -> RunResult | None:
        return self._results.get(run_id)

    # ------------------------------------------------------------------
    # Stage execution
    # ------------------------------------------------------------------

    async def _execute_stage(self, ctx: _RunContext, stage_id: str) -> str | None:
        """Run one stage; return the condition tag for choosing the next edge."""
        stage = self.graph.get_stage(stage_id)
        ctx.visited.append(stage_id)
        self._transition(ctx, stage_id, StageStatus.ACTIVE)
        # The credential may have been cleared since the run started.
        if stage.requires_credential:
            credential = self.gate.snapshot()
            if not credential.success:
                raise MissingCredentialError(
                    f"{stage.label} requires a valid API key"
                    + (f": {credential.error}" if credential.error else "")
                )

        condition: str | None = None
        if stage.kind == StageKind.MODEL_CALL:
            await self._model_stage(ctx, stage_id)
        elif stage.kind == StageKind.TOOL_CALL:
            await self._tool_stage(ctx, stage_id)
        elif stage.kind == StageKind.DECISION and self.graph.is_branch_point(stage_id):
            condition = (
                TOOLS_NEEDED if isinstance(ctx.last_response, ToolCallRequest) else NO_TOOLS
            )
            logger.info("Run %s %s: %s", ctx.run_id, stage_id, condition)
        else:
            result = await self._run_handler(ctx, stage_id)
            condition = result.get("condition")

        if stage.kind == StageKind.OUTPUT and ctx.answer is None:
            ctx.answer = ctx.payload.get("answer")

        self._transition(ctx, stage_id, StageStatus.COMPLETED)
        return condition

    async def _run_handler(self, ctx: _RunContext, stage_id: str) -> dict[str, Any]:
        handler = self._stage_handlers.get(stage_id)
        if handler is None:
            return {}
        self._transition(ctx, stage_id, StageStatus.PROCESSING)
        try:
            result = await handler(ctx.run_id, dict(ctx.payload))
        except FlowgateError:
            raise
        except Exception as exc:
            raise TransportFault(f"Stage handler for {stage_id} failed: {exc}") from exc
        self._ensure_current(ctx)
        result = result or {}
        ctx.payload.update(result)
        if "message" in result:
            ctx.prompt = ctx.prompt.model_copy(update={"user_message": str(result["message"])})
        if "answer" in result and result["answer"] is not None:
            ctx.answer = str(result["answer"])
        return result

    async def _model_stage(self, ctx: _RunContext, stage_id: str) -> None:
        self._transition(ctx, stage_id, StageStatus.PROCESSING)
        response = await self._complete(ctx)

        # A follow-up call asking for more tools runs further rounds in place.
        while isinstance(response, ToolCallRequest) and ctx.tool_rounds > 0:
            if ctx.tool_rounds >= self.config.max_tool_rounds:
                raise ToolLoopExceededError(
                    f"Model kept requesting tools after {ctx.tool_rounds} round(s) "
                    f"(limit {self.config.max_tool_rounds})"
                )
            await self._tool_round(ctx, response)
            response = await self._complete(ctx)

    async def _complete(self, ctx: _RunContext) -> ModelResult:
        offered = self.registry.offered_tools(self._catalog)
        ctx.offered = {spec.name: spec.server_id for spec in offered}
        response = await self._suspend(
            ctx,
            self.model.complete(ctx.prompt, offered),
            self.config.model_timeout,
            "Model call",
        )
        if not isinstance(response, (DirectAnswer, ToolCallRequest)):
            raise TransportFault(
                f"Model capability returned unsupported response {type(response).__name__}"
            )
        ctx.last_response = response
        if isinstance(response, DirectAnswer):
            ctx.answer = response.text
            ctx.payload["answer"] = response.text
        else:
            logger.info(
                "Run %s: model requested %d tool call(s)", ctx.run_id, len(response.invocations)
            )
        return response

    async def _tool_stage(self, ctx: _RunContext, stage_id: str) -> None:
        self._transition(ctx, stage_id, StageStatus.PROCESSING)
        request = ctx.last_response
        if not isinstance(request, ToolCallRequest):
            logger.debug("Run %s %s: no tool request pending", ctx.run_id, stage_id)
            return
        await self._tool_round(ctx, request)

    async def _tool_round(self, ctx: _RunContext, request: ToolCallRequest) -> None:
        """Invoke every requested tool in order and merge results into the prompt."""
        ctx.tool_rounds += 1
        records: list[ToolCallRecord] = []
        for invocation in request.invocations:
            record = await self._invoke_tool(ctx, invocation)
            records.append(record)
            ctx.tool_calls.append(record)
            if record.outcome == ToolCallOutcome.DENIED:
                raise ApprovalDeniedError(record.message)
        ctx.prompt = ctx.prompt.with_round(request, [r.as_result_message() for r in records])

    async def _invoke_tool(self, ctx: _RunContext, invocation: ToolInvocation) -> ToolCallRecord:
        name = invocation.tool_name

        def record(
            outcome: ToolCallOutcome,
            server: ToolServer | None,
            *,
            content: str = "",
            kind: ErrorKind | None = None,
            message: str = "",
        ) -> ToolCallRecord:
            return ToolCallRecord(
                call_id=invocation.call_id,
                tool_name=name,
                server_id=server.id if server else None,
                arguments=invocation.arguments,
                outcome=outcome,
                content=content,
                error_kind=kind.value if kind else None,
                message=message,
                round=ctx.tool_rounds,
            )

        server = self._owner(ctx, name)
        if server is None:
            logger.info("Run %s: tool %s unavailable", ctx.run_id, name)
            return record(
                ToolCallOutcome.UNAVAILABLE, None,
                kind=ErrorKind.TOOL_UNAVAILABLE,
                message=f"No enabled tool server offers '{name}'",
            )

        decision = self.registry.resolve_approval(server.id, name)
        if decision == ApprovalDecision.REQUIRES_APPROVAL:
            req, verdict_future = self.approvals.request(
                ctx.run_id, server.id, name, invocation.arguments
            )
            verdict = await self._suspend(
                ctx, verdict_future, self.config.approval_timeout,
                f"Approval for {name}",
            )
            if verdict == ApprovalVerdict.DENY:
                return record(
                    ToolCallOutcome.DENIED, server,
                    kind=ErrorKind.APPROVAL_DENIED,
                    message=f"Tool call '{name}' on {server.id} was denied ({req.call_id})",
                )
            # The server may have been disabled while we waited.
            decision = self.registry.resolve_approval(server.id, name)
            if decision == ApprovalDecision.REQUIRES_APPROVAL:
                decision = ApprovalDecision.AUTO_APPROVED

        if decision == ApprovalDecision.TOOL_UNAVAILABLE:
            return record(
                ToolCallOutcome.UNAVAILABLE, server,
                kind=ErrorKind.TOOL_UNAVAILABLE,
                message=f"Tool '{name}' is not available on {server.id}",
            )

        logger.info("Run %s: invoking %s.%s", ctx.run_id, server.id, name)
        try:
            output = await self._suspend(
                ctx,
                self.transport.invoke(server, name, dict(invocation.arguments)),
                self.config.tool_timeout,
                f"Tool call {name}",
            )
        except StageTimeoutError as exc:
            ctx.tool_calls.append(
                record(ToolCallOutcome.FAILED, server, kind=ErrorKind.TIMEOUT, message=str(exc))
            )
            raise
        except TransportFault as exc:
            self.registry.report_status(server.id, ServerStatus.ERROR, str(exc))
            return record(
                ToolCallOutcome.FAILED, server, kind=ErrorKind.TRANSPORT_FAULT, message=str(exc)
            )

        self.registry.report_status(server.id, ServerStatus.CONNECTED)
        if output.is_error:
            return record(
                ToolCallOutcome.FAILED, server,
                kind=ErrorKind.TRANSPORT_FAULT, message=output.content,
            )
        return record(ToolCallOutcome.SUCCEEDED, server, content=output.content)

    def _owner(self, ctx: _RunContext, tool_name: str) -> ToolServer | None:
        enabled = {s.id: s for s in self.registry.list_enabled()}
        server_id = ctx.offered.get(tool_name)
        if server_id in enabled and enabled[server_id].exposes(tool_name):
            return enabled[server_id]
        return self.registry.owner_of(tool_name, self._catalog)

    # ------------------------------------------------------------------
    # Suspension and run identity
    # ------------------------------------------------------------------

    async def _suspend(
        self,
        ctx: _RunContext,
        awaitable: Awaitable[T],
        timeout: float | None,
        what: str,
    ) -> T:
        """Await an external result under an optional deadline.

        Raises ``RunCancelledError`` when the run stopped being current
        while suspended, so the stale result is never applied.
        """
        try:
            if timeout is None:
                result = await awaitable
            else:
                result = await asyncio.wait_for(awaitable, timeout)
        except asyncio.TimeoutError as exc:
            self._ensure_current(ctx)
            raise StageTimeoutError(f"{what} exceeded its {timeout}s deadline") from exc
        except FlowgateError:
            self._ensure_current(ctx)
            raise
        except Exception as exc:
            self._ensure_current(ctx)
            raise TransportFault(f"{what} failed: {exc}") from exc
        self._ensure_current(ctx)
        return result

    def _is_current(self, ctx: _RunContext) -> bool:
        return self._generations.get(ctx.run_id) == ctx.generation and (
            self.stage_machine.has_run(ctx.run_id)
            and self.stage_machine.run_status(ctx.run_id) == RunStatus.RUNNING
        )

    def _ensure_current(self, ctx: _RunContext) -> None:
        if not self._is_current(ctx):
            logger.info("Run %s: discarding result received after cancellation", ctx.run_id)
            raise RunCancelledError(f"Run {ctx.run_id} is no longer current")

    def _transition(self, ctx: _RunContext, stage_id: str, target: StageStatus, message: str = "") -> None:
        self._ensure_current(ctx)
        self.stage_machine.transition(ctx.run_id, stage_id, target, message=message)

    # ------------------------------------------------------------------
    # Terminal handling
    # ------------------------------------------------------------------

    def _cancel_current(self, ctx: _RunContext, reason: str) -> None:
        run_id = ctx.run_id
        self._generations[run_id] = self._generations.get(run_id, 0) + 1
        in_flight = self.stage_machine.in_flight(run_id)
        if in_flight is not None:
            self.stage_machine.transition(run_id, in_flight, StageStatus.FAILED, message=reason)
        failure = RunFailure(kind=ErrorKind.CANCELLED, message=reason, stage_id=in_flight)
        self.stage_machine.cancel_run(run_id, failure)
        self.approvals.cancel_run(run_id)
        ctx.final = self._finish(ctx, RunStatus.CANCELLED, failure)
        logger.info("Run %s cancelled", run_id)

    def _cancelled_result(self, ctx: _RunContext) -> RunResult:
        if ctx.final is None:
            ctx.final = RunResult(
                run_id=ctx.run_id,
                status=RunStatus.CANCELLED,
                failure=RunFailure(kind=ErrorKind.CANCELLED, message="Run cancelled"),
                visited_stages=list(ctx.visited),
                taken_edges=list(ctx.taken_edges),
                tool_calls=list(ctx.tool_calls),
                tool_rounds=ctx.tool_rounds,
            )
        return ctx.final

    def _fail(self, ctx: _RunContext, exc: FlowgateError) -> RunResult:
        run_id = ctx.run_id
        stage_id = self.stage_machine.in_flight(run_id)
        if stage_id is not None:
            self.stage_machine.transition(run_id, stage_id, StageStatus.FAILED, message=str(exc))
        failure = RunFailure(kind=exc.kind, message=str(exc), stage_id=stage_id)
        logger.warning("Run %s failed at %s: [%s] %s", run_id, stage_id, exc.kind.value, exc)
        self.stage_machine.fail_run(run_id, failure)
        return self._finish(ctx, RunStatus.FAILED, failure)

    def _finish(
        self, ctx: _RunContext, status: RunStatus, failure: RunFailure | None = None
    ) -> RunResult:
        result = RunResult(
            run_id=ctx.run_id,
            status=status,
            answer=ctx.answer if status == RunStatus.COMPLETED else None,
            failure=failure,
            visited_stages=list(ctx.visited),
            taken_edges=list(ctx.taken_edges),
            tool_calls=list(ctx.tool_calls),
            tool_rounds=ctx.tool_rounds,
        )
        self._results[ctx.run_id] = result
        return result


def _new_run_id() -> str:
    ts = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
    return f"fg-{ts}-{uuid.uuid4().hex[:6]}"
