from enum import Enum


class ConversationStatus(str, Enum):
    ACTIVE = "active"
    ESCALATED = "escalated"
    RESOLVED = "resolved"


# resolved is terminal
VALID_TRANSITIONS = {
    ConversationStatus.ACTIVE: [ConversationStatus.ESCALATED, ConversationStatus.RESOLVED],
    ConversationStatus.ESCALATED: [ConversationStatus.RESOLVED],
    ConversationStatus.RESOLVED: [],
}


class InvalidTransitionError(Exception):
    def __init__(self, from_status: ConversationStatus, to_status: ConversationStatus):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(f"Invalid transition: {from_status.value} -> {to_status.value}")


def can_transition(from_status: ConversationStatus, to_status: ConversationStatus) -> bool:
    """Check if transition is valid."""
    return to_status in VALID_TRANSITIONS.get(from_status, [])


def transition(from_status: ConversationStatus, to_status: ConversationStatus) -> ConversationStatus:
    """Perform status transition. Raises InvalidTransitionError if not allowed."""
    if not can_transition(from_status, to_status):
        raise InvalidTransitionError(from_status, to_status)
    return to_status


def escalate(current: ConversationStatus) -> ConversationStatus:
    """Hand the conversation to a human."""
    return transition(current, ConversationStatus.ESCALATED)


def resolve(current: ConversationStatus) -> ConversationStatus:
    """Close the conversation for good."""
    return transition(current, ConversationStatus.RESOLVED)


def is_open(current: ConversationStatus) -> bool:
    return current != ConversationStatus.RESOLVED
