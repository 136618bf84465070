"""Stage status state machine.

Enforces:
- Valid status transitions only (VALID_TRANSITIONS table)
- At most one stage in flight (ACTIVE or PROCESSING) per run
- Run status progression NOT_STARTED -> RUNNING -> terminal
- Every transition published to the event bus
"""

from __future__ import annotations

import logging
import threading

from flowgate.core.errors import InvalidTransitionError
from flowgate.core.event_bus import EventBus
from flowgate.core.pipeline_graph import PipelineGraph
from flowgate.models.events import RunEvent, RunFailure, StageEvent
from flowgate.models.stages import (
    IN_FLIGHT_STATUSES,
    TERMINAL_RUN_STATUSES,
    VALID_TRANSITIONS,
    RunStatus,
    StageStatus,
)

logger = logging.getLogger(__name__)


class StageMachine:
    """Tracks stage and run status for every run of one graph.

    Parameters
    ----------
    graph:
        The pipeline graph whose stages are tracked.
    bus:
        Event bus receiving a ``StageEvent`` per stage transition and a
        ``RunEvent`` per run status change.
    """

    def __init__(self, graph: PipelineGraph, bus: EventBus | None = None) -> None:
        self._graph = graph
        self._bus = bus or EventBus()
        self._lock = threading.Lock()
        # run_id -> {stage_id -> StageStatus}
        self._states: dict[str, dict[str, StageStatus]] = {}
        self._run_status: dict[str, RunStatus] = {}
        self._failures: dict[str, RunFailure] = {}

    # ------------------------------------------------------------------
    # State management
    # ------------------------------------------------------------------

    def initialize_run(self, run_id: str) -> dict[str, StageStatus]:
        """Initialize all stages to IDLE and the run to NOT_STARTED."""
        with self._lock:
            states = {sid: StageStatus.IDLE for sid in self._graph.stage_ids}
            self._states[run_id] = states
            self._run_status[run_id] = RunStatus.NOT_STARTED
            self._failures.pop(run_id, None)
            return dict(states)

    def has_run(self, run_id: str) -> bool:
        return run_id in self._states

    def get_current_state(self, run_id: str, stage_id: str) -> StageStatus:
        return self._states[run_id].get(stage_id, StageStatus.IDLE)

    def get_all_states(self, run_id: str) -> dict[str, StageStatus]:
        """Return a snapshot of all stage statuses for a run."""
        return dict(self._states[run_id])

    def in_flight(self, run_id: str) -> str | None:
        """The stage currently ACTIVE or PROCESSING, if any."""
        for sid, status in self._states[run_id].items():
            if status in IN_FLIGHT_STATUSES:
                return sid
        return None

    def run_status(self, run_id: str) -> RunStatus:
        return self._run_status[run_id]

    def failure(self, run_id: str) -> RunFailure | None:
        return self._failures.get(run_id)

    # ------------------------------------------------------------------
    # Stage transitions
    # ------------------------------------------------------------------

    def transition(
        self,
        run_id: str,
        stage_id: str,
        target: StageStatus,
        *,
        message: str = "",
    ) -> StageEvent:
        """Move a stage to *target*, publishing the resulting event.

        Validates:
        1. The transition is allowed by VALID_TRANSITIONS.
        2. Entering ACTIVE requires no other stage of the run in flight.
        """
        with self._lock:
            states = self._states[run_id]
            current = states.get(stage_id, StageStatus.IDLE)
            allowed = VALID_TRANSITIONS.get(current, set())
            if target not in allowed:
                raise InvalidTransitionError(
                    f"Cannot transition {stage_id} from {current.value} to {target.value}. "
                    f"Allowed: {sorted(s.value for s in allowed)}"
                )
            if target == StageStatus.ACTIVE:
                busy = [
                    sid for sid, st in states.items()
                    if st in IN_FLIGHT_STATUSES and sid != stage_id
                ]
                if busy:
                    raise InvalidTransitionError(
                        f"Cannot activate {stage_id}: {busy[0]} is still in flight."
                    )
            states[stage_id] = target

        event = StageEvent(run_id=run_id, stage_id=stage_id, status=target, message=message)
        logger.debug("%s %s: %s -> %s", run_id, stage_id, current.value, target.value)
        self._bus.publish(event)
        return event

    # ------------------------------------------------------------------
    # Run transitions
    # ------------------------------------------------------------------

    def start_run(self, run_id: str) -> None:
        self._set_run_status(run_id, RunStatus.RUNNING)

    def complete_run(self, run_id: str) -> None:
        self._set_run_status(run_id, RunStatus.COMPLETED)

    def fail_run(self, run_id: str, failure: RunFailure) -> None:
        self._failures[run_id] = failure
        self._set_run_status(run_id, RunStatus.FAILED, failure)

    def cancel_run(self, run_id: str, failure: RunFailure | None = None) -> None:
        """Mark a non-terminal run CANCELLED.  No-op once terminal."""
        if self._run_status.get(run_id) in TERMINAL_RUN_STATUSES:
            return
        if failure is not None:
            self._failures[run_id] = failure
        self._set_run_status(run_id, RunStatus.CANCELLED, failure)

    def reset_run(self, run_id: str) -> None:
        """Return every stage to IDLE and the run to NOT_STARTED.

        The only path by which a stage status goes backwards.
        """
        with self._lock:
            states = self._states.setdefault(run_id, {})
            changed = [
                sid for sid in self._graph.stage_ids
                if states.get(sid, StageStatus.IDLE) != StageStatus.IDLE
            ]
            for sid in self._graph.stage_ids:
                states[sid] = StageStatus.IDLE
            previous = self._run_status.get(run_id)
            self._run_status[run_id] = RunStatus.NOT_STARTED
            self._failures.pop(run_id, None)

        for sid in changed:
            self._bus.publish(StageEvent(run_id=run_id, stage_id=sid, status=StageStatus.IDLE))
        if previous not in (None, RunStatus.NOT_STARTED):
            self._bus.publish(RunEvent(run_id=run_id, status=RunStatus.NOT_STARTED))

    def forget_run(self, run_id: str) -> None:
        with self._lock:
            self._states.pop(run_id, None)
            self._run_status.pop(run_id, None)
            self._failures.pop(run_id, None)

    def _set_run_status(
        self, run_id: str, status: RunStatus, failure: RunFailure | None = None
    ) -> None:
        with self._lock:
            previous = self._run_status.get(run_id, RunStatus.NOT_STARTED)
            if previous in TERMINAL_RUN_STATUSES:
                raise InvalidTransitionError(
                    f"Run {run_id} is already {previous.value}; cannot move to {status.value}."
                )
            self._run_status[run_id] = status
        logger.info("Run %s: %s -> %s", run_id, previous.value, status.value)
        self._bus.publish(RunEvent(run_id=run_id, status=status, failure=failure))
