"""Adversarial tests — stage status bypass attempts.

These tests verify that:
1. Invalid status transitions are always rejected
2. A stage can never regress except through a reset
3. Two stages of one run are never in flight together
4. Terminal run statuses cannot be exited
"""

from __future__ import annotations

import pytest

from flowgate.core.errors import ErrorKind, InvalidTransitionError
from flowgate.core.event_bus import EventBus
from flowgate.core.stage_machine import StageMachine
from flowgate.flows import chat_flow
from flowgate.models.events import RunFailure
from flowgate.models.stages import RunStatus, StageStatus


@pytest.fixture
def sm() -> tuple[StageMachine, str]:
    machine = StageMachine(chat_flow(), EventBus())
    run_id = "fg-adversarial-sm"
    machine.initialize_run(run_id)
    return machine, run_id


class TestTransitionBypassAttempts:
    """Try to skip lifecycle steps."""

    @pytest.mark.parametrize("target", [StageStatus.PROCESSING, StageStatus.COMPLETED, StageStatus.FAILED])
    def test_idle_must_activate_first(self, sm, target):
        machine, run_id = sm
        with pytest.raises(InvalidTransitionError):
            machine.transition(run_id, "input", target)

    @pytest.mark.parametrize("terminal", [StageStatus.COMPLETED, StageStatus.FAILED])
    def test_terminal_stage_cannot_be_reentered(self, sm, terminal):
        machine, run_id = sm
        machine.transition(run_id, "input", StageStatus.ACTIVE)
        machine.transition(run_id, "input", terminal)
        for target in StageStatus:
            with pytest.raises(InvalidTransitionError):
                machine.transition(run_id, "input", target)

    def test_processing_cannot_regress_to_active(self, sm):
        machine, run_id = sm
        machine.transition(run_id, "llm", StageStatus.ACTIVE)
        machine.transition(run_id, "llm", StageStatus.PROCESSING)
        with pytest.raises(InvalidTransitionError):
            machine.transition(run_id, "llm", StageStatus.ACTIVE)

    def test_failed_transition_publishes_nothing(self):
        bus = EventBus()
        machine = StageMachine(chat_flow(), bus)
        machine.initialize_run("r")
        with pytest.raises(InvalidTransitionError):
            machine.transition("r", "input", StageStatus.COMPLETED)
        assert bus.stage_history("r") == []
        assert machine.get_current_state("r", "input") == StageStatus.IDLE


class TestSingleStageInFlight:
    """A second stage cannot become active while one is in flight."""

    @pytest.mark.parametrize("busy_status", [StageStatus.ACTIVE, StageStatus.PROCESSING])
    def test_parallel_activation_rejected(self, sm, busy_status):
        machine, run_id = sm
        machine.transition(run_id, "input", StageStatus.ACTIVE)
        if busy_status == StageStatus.PROCESSING:
            machine.transition(run_id, "input", StageStatus.PROCESSING)
        with pytest.raises(InvalidTransitionError, match="still in flight"):
            machine.transition(run_id, "processing", StageStatus.ACTIVE)

    def test_other_runs_are_independent(self, sm):
        machine, run_id = sm
        machine.initialize_run("other")
        machine.transition(run_id, "input", StageStatus.ACTIVE)
        machine.transition("other", "input", StageStatus.ACTIVE)
        assert machine.in_flight(run_id) == "input"
        assert machine.in_flight("other") == "input"


class TestTerminalRunStatus:
    """Completed, failed and cancelled runs stay that way until reset."""

    @pytest.mark.parametrize("finish", ["complete", "fail", "cancel"])
    def test_cannot_restart_finished_run(self, sm, finish):
        machine, run_id = sm
        machine.start_run(run_id)
        failure = RunFailure(kind=ErrorKind.TRANSPORT_FAULT, message="boom")
        {
            "complete": lambda: machine.complete_run(run_id),
            "fail": lambda: machine.fail_run(run_id, failure),
            "cancel": lambda: machine.cancel_run(run_id, failure),
        }[finish]()
        with pytest.raises(InvalidTransitionError, match="already"):
            machine.start_run(run_id)

    def test_cancel_after_completion_is_ignored(self, sm):
        machine, run_id = sm
        machine.start_run(run_id)
        machine.complete_run(run_id)
        machine.cancel_run(run_id)
        assert machine.run_status(run_id) == RunStatus.COMPLETED

    def test_reset_is_the_only_way_back(self, sm):
        machine, run_id = sm
        machine.start_run(run_id)
        machine.transition(run_id, "input", StageStatus.ACTIVE)
        machine.transition(run_id, "input", StageStatus.COMPLETED)
        machine.complete_run(run_id)

        machine.reset_run(run_id)

        assert machine.run_status(run_id) == RunStatus.NOT_STARTED
        assert machine.get_current_state(run_id, "input") == StageStatus.IDLE
        machine.start_run(run_id)
        machine.transition(run_id, "input", StageStatus.ACTIVE)
