import pytest

from agentcore.services.state_machine import (
    ConversationStatus,
    InvalidTransitionError,
    can_transition,
    escalate,
    is_open,
    resolve,
    transition,
)


class TestValidTransitions:
    def test_active_to_escalated(self):
        assert transition(ConversationStatus.ACTIVE, ConversationStatus.ESCALATED) == ConversationStatus.ESCALATED

    def test_active_to_resolved(self):
        assert transition(ConversationStatus.ACTIVE, ConversationStatus.RESOLVED) == ConversationStatus.RESOLVED

    def test_escalated_to_resolved(self):
        assert transition(ConversationStatus.ESCALATED, ConversationStatus.RESOLVED) == ConversationStatus.RESOLVED


class TestInvalidTransitions:
    def test_resolved_is_terminal(self):
        for target in ConversationStatus:
            with pytest.raises(InvalidTransitionError):
                transition(ConversationStatus.RESOLVED, target)

    def test_escalated_cannot_go_back_to_active(self):
        with pytest.raises(InvalidTransitionError):
            transition(ConversationStatus.ESCALATED, ConversationStatus.ACTIVE)

    def test_same_state(self):
        with pytest.raises(InvalidTransitionError):
            transition(ConversationStatus.ACTIVE, ConversationStatus.ACTIVE)

    def test_error_message_names_both_states(self):
        with pytest.raises(InvalidTransitionError) as exc_info:
            escalate(ConversationStatus.RESOLVED)
        assert "resolved -> escalated" in str(exc_info.value)


class TestHelperFunctions:
    def test_escalate(self):
        assert escalate(ConversationStatus.ACTIVE) == ConversationStatus.ESCALATED

    def test_resolve(self):
        assert resolve(ConversationStatus.ESCALATED) == ConversationStatus.RESOLVED

    def test_can_transition(self):
        assert can_transition(ConversationStatus.ACTIVE, ConversationStatus.ESCALATED) is True
        assert can_transition(ConversationStatus.RESOLVED, ConversationStatus.ACTIVE) is False

    def test_is_open(self):
        assert is_open(ConversationStatus.ESCALATED) is True
        assert is_open(ConversationStatus.RESOLVED) is False
