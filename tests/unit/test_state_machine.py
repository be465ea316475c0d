import pytest

from attachment_pipeline.common.errors import ConflictError
from attachment_pipeline.domain.enums import JobState
from attachment_pipeline.domain.state_machine import can_transition, ensure_transition, is_terminal


def test_retry_loop_transitions_allowed():
    assert can_transition(JobState.waiting, JobState.active)
    assert can_transition(JobState.active, JobState.delayed)
    assert can_transition(JobState.delayed, JobState.waiting)


@pytest.mark.parametrize("terminal", [JobState.completed, JobState.failed])
def test_terminal_states_have_no_exit(terminal):
    assert is_terminal(terminal)
    for target in JobState:
        assert can_transition(terminal, target) is False


def test_ensure_transition_raises_conflict():
    with pytest.raises(ConflictError) as ei:
        ensure_transition("job_1", JobState.waiting, JobState.completed)
    assert ei.value.details == {"job_id": "job_1", "from": "waiting", "to": "completed"}
