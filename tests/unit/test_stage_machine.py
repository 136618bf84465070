"""Unit tests for the StageMachine — stage and run status bookkeeping."""

from __future__ import annotations

import pytest

from flowgate.core.errors import ErrorKind, InvalidTransitionError
from flowgate.core.event_bus import EventBus
from flowgate.core.pipeline_graph import PipelineGraph
from flowgate.core.stage_machine import StageMachine
from flowgate.models.events import RunEvent, RunFailure, StageEvent
from flowgate.models.stages import RunStatus, StageStatus


@pytest.fixture
def sm(graph: PipelineGraph, bus: EventBus) -> StageMachine:
    return StageMachine(graph, bus)


class TestInitialization:
    def test_all_stages_idle(self, sm: StageMachine, run_id: str):
        states = sm.initialize_run(run_id)
        assert set(states.values()) == {StageStatus.IDLE}
        assert sm.run_status(run_id) == RunStatus.NOT_STARTED
        assert sm.in_flight(run_id) is None

    def test_reinitialize_clears_failure(self, sm: StageMachine, run_id: str):
        sm.initialize_run(run_id)
        sm.fail_run(run_id, RunFailure(kind=ErrorKind.TIMEOUT, message="slow"))
        sm.initialize_run(run_id)
        assert sm.failure(run_id) is None


class TestStageTransitions:
    def test_full_lifecycle(self, sm: StageMachine, run_id: str):
        sm.initialize_run(run_id)
        sm.transition(run_id, "llm", StageStatus.ACTIVE)
        sm.transition(run_id, "llm", StageStatus.PROCESSING)
        assert sm.in_flight(run_id) == "llm"
        sm.transition(run_id, "llm", StageStatus.COMPLETED)
        assert sm.get_current_state(run_id, "llm") == StageStatus.COMPLETED
        assert sm.in_flight(run_id) is None

    def test_active_may_complete_directly(self, sm: StageMachine, run_id: str):
        sm.initialize_run(run_id)
        sm.transition(run_id, "input", StageStatus.ACTIVE)
        sm.transition(run_id, "input", StageStatus.COMPLETED)

    @pytest.mark.parametrize(
        "target", [StageStatus.PROCESSING, StageStatus.COMPLETED, StageStatus.FAILED]
    )
    def test_idle_must_go_through_active(self, sm: StageMachine, run_id: str, target):
        sm.initialize_run(run_id)
        with pytest.raises(InvalidTransitionError):
            sm.transition(run_id, "llm", target)

    def test_only_one_stage_in_flight(self, sm: StageMachine, run_id: str):
        sm.initialize_run(run_id)
        sm.transition(run_id, "input", StageStatus.ACTIVE)
        with pytest.raises(InvalidTransitionError, match="in flight"):
            sm.transition(run_id, "processing", StageStatus.ACTIVE)

    def test_runs_are_independent(self, sm: StageMachine):
        sm.initialize_run("r1")
        sm.initialize_run("r2")
        sm.transition("r1", "input", StageStatus.ACTIVE)
        sm.transition("r2", "input", StageStatus.ACTIVE)
        assert sm.in_flight("r1") == sm.in_flight("r2") == "input"

    def test_transitions_are_published(self, sm: StageMachine, bus: EventBus, run_id: str):
        sm.initialize_run(run_id)
        sm.transition(run_id, "input", StageStatus.ACTIVE, message="go")
        events = bus.stage_history(run_id)
        assert [(e.stage_id, e.status, e.message) for e in events] == [
            ("input", StageStatus.ACTIVE, "go")
        ]


class TestRunTransitions:
    def test_start_and_complete(self, sm: StageMachine, bus: EventBus, run_id: str):
        sm.initialize_run(run_id)
        sm.start_run(run_id)
        sm.complete_run(run_id)
        assert sm.run_status(run_id) == RunStatus.COMPLETED
        statuses = [e.status for e in bus.history(run_id) if isinstance(e, RunEvent)]
        assert statuses == [RunStatus.RUNNING, RunStatus.COMPLETED]

    def test_fail_records_failure(self, sm: StageMachine, run_id: str):
        sm.initialize_run(run_id)
        sm.start_run(run_id)
        failure = RunFailure(kind=ErrorKind.TRANSPORT_FAULT, message="down", stage_id="mcp")
        sm.fail_run(run_id, failure)
        assert sm.run_status(run_id) == RunStatus.FAILED
        assert sm.failure(run_id) == failure

    def test_terminal_run_cannot_restart(self, sm: StageMachine, run_id: str):
        sm.initialize_run(run_id)
        sm.start_run(run_id)
        sm.complete_run(run_id)
        with pytest.raises(InvalidTransitionError):
            sm.start_run(run_id)

    def test_cancel_after_terminal_is_noop(self, sm: StageMachine, run_id: str):
        sm.initialize_run(run_id)
        sm.start_run(run_id)
        sm.complete_run(run_id)
        sm.cancel_run(run_id)
        assert sm.run_status(run_id) == RunStatus.COMPLETED


class TestReset:
    def test_reset_returns_everything_to_idle(self, sm: StageMachine, run_id: str):
        sm.initialize_run(run_id)
        sm.start_run(run_id)
        sm.transition(run_id, "input", StageStatus.ACTIVE)
        sm.transition(run_id, "input", StageStatus.FAILED)
        sm.fail_run(run_id, RunFailure(kind=ErrorKind.TIMEOUT, message="x"))

        sm.reset_run(run_id)

        assert set(sm.get_all_states(run_id).values()) == {StageStatus.IDLE}
        assert sm.run_status(run_id) == RunStatus.NOT_STARTED
        assert sm.failure(run_id) is None

    def test_reset_is_idempotent(self, sm: StageMachine, bus: EventBus, run_id: str):
        sm.initialize_run(run_id)
        sm.transition(run_id, "input", StageStatus.ACTIVE)
        sm.reset_run(run_id)
        published = len(bus.history(run_id))
        sm.reset_run(run_id)
        assert len(bus.history(run_id)) == published
        assert set(sm.get_all_states(run_id).values()) == {StageStatus.IDLE}

    def test_reset_publishes_idle_events(self, sm: StageMachine, bus: EventBus, run_id: str):
        sm.initialize_run(run_id)
        sm.transition(run_id, "input", StageStatus.ACTIVE)
        sm.reset_run(run_id)
        last = bus.stage_history(run_id)[-1]
        assert isinstance(last, StageEvent)
        assert (last.stage_id, last.status) == ("input", StageStatus.IDLE)

    def test_forget_run(self, sm: StageMachine, run_id: str):
        sm.initialize_run(run_id)
        sm.forget_run(run_id)
        assert not sm.has_run(run_id)
