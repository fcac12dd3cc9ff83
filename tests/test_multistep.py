"""Tests for the multi-step action state machine."""

import pytest

from opac.exceptions import AuthError, BackendProtocolError, InternalStateError, InvalidSelectionError, UnsupportedError
from opac.multistep import ActionType, FlowState, MultiStepAction, MultiStepResult, MultiStepStatus

OPTIONS = [("pickup:1", "Main branch"), ("pickup:2", "East branch"), ("mail:home", "Mail to home")]


class RecordingStep:
    """Step function that answers from a script and records its selections."""

    def __init__(self, *results):
        self.results = list(results)
        self.selections = []

    def __call__(self, selection):
        self.selections.append(selection)
        result = self.results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result


class TestInvoke:
    def test_direct_commit(self):
        step = RecordingStep(MultiStepResult.ok())
        action = MultiStepAction(ActionType.RENEW, step)

        result = action.invoke()

        assert result.status is MultiStepStatus.OK
        assert result.action is ActionType.RENEW
        assert action.state is FlowState.RESOLVED
        assert step.selections == [None]

    def test_three_options_need_selection(self):
        action = MultiStepAction(ActionType.RESERVE, RecordingStep(MultiStepResult.selection_needed(OPTIONS)))

        result = action.invoke()

        assert result.status is MultiStepStatus.SELECTION_NEEDED
        assert result.keys == ["pickup:1", "pickup:2", "mail:home"]
        assert action.state is FlowState.SELECTION_NEEDED

    def test_invoke_twice_is_a_state_error(self):
        action = MultiStepAction(ActionType.RENEW, RecordingStep(MultiStepResult.ok()))
        action.invoke()
        with pytest.raises(InternalStateError):
            action.invoke()

    def test_selection_without_options_is_an_error(self):
        action = MultiStepAction(ActionType.RESERVE, RecordingStep(MultiStepResult.selection_needed([])), "Oops")

        result = action.invoke()

        assert result.status is MultiStepStatus.ERROR
        assert result.message == "Oops"
        assert action.state is FlowState.RESOLVED

    def test_error_without_message_gets_generic_text(self):
        action = MultiStepAction(ActionType.CANCEL, RecordingStep(MultiStepResult(status=MultiStepStatus.ERROR)), "Oops")
        assert action.invoke().message == "Oops"


class TestResume:
    def test_offered_key_is_passed_to_step(self):
        step = RecordingStep(MultiStepResult.selection_needed(OPTIONS), MultiStepResult.ok())
        action = MultiStepAction(ActionType.RESERVE, step)
        action.invoke()

        result = action.resume("pickup:2")

        assert result.status is MultiStepStatus.OK
        assert step.selections == [None, "pickup:2"]
        assert action.state is FlowState.RESOLVED

    def test_unknown_key_rejected_locally(self):
        """A key that was never offered shall not reach the backend."""
        step = RecordingStep(MultiStepResult.selection_needed(OPTIONS), MultiStepResult.ok())
        action = MultiStepAction(ActionType.RESERVE, step)
        action.invoke()

        with pytest.raises(InvalidSelectionError):
            action.resume("pickup:99")

        assert step.selections == [None]
        assert action.state is FlowState.SELECTION_NEEDED
        # still resumable with a valid key
        assert action.resume("mail:home").status is MultiStepStatus.OK

    def test_resume_before_invoke(self):
        action = MultiStepAction(ActionType.RESERVE, RecordingStep())
        with pytest.raises(InternalStateError):
            action.resume("pickup:1")

    def test_resume_after_resolution(self):
        action = MultiStepAction(ActionType.RENEW, RecordingStep(MultiStepResult.ok()))
        action.invoke()
        with pytest.raises(InternalStateError):
            action.resume("anything")


class TestStepFailures:
    def test_auth_error_becomes_error(self):
        action = MultiStepAction(ActionType.RENEW, RecordingStep(AuthError("Wrong password")))

        result = action.invoke()

        assert result.status is MultiStepStatus.ERROR
        assert result.message == "Wrong password"

    def test_protocol_error_becomes_error(self):
        action = MultiStepAction(ActionType.RENEW, RecordingStep(BackendProtocolError("garbled")))
        assert action.invoke().status is MultiStepStatus.ERROR

    def test_unsupported_error_becomes_unsupported(self):
        action = MultiStepAction(ActionType.RENEW_ALL, RecordingStep(UnsupportedError("no")))

        result = action.invoke()

        assert result.status is MultiStepStatus.UNSUPPORTED
        assert result.action is ActionType.RENEW_ALL
