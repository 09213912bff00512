"""
Order lifecycle state machine. Valid transitions enforce business rules.
"""
from enum import Enum


class OrderStatus(str, Enum):
    OPEN = "open"
    ACCEPTED = "accepted"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class OrderAction(str, Enum):
    CREATE = "create"
    CLAIM = "claim"
    RELEASE = "release"
    START = "start"
    COMPLETE = "complete"
    CANCEL = "cancel"


# Current status -> {action: next status}. None is "no order yet".
VALID_TRANSITIONS: dict[OrderStatus | None, dict[OrderAction, OrderStatus]] = {
    None: {OrderAction.CREATE: OrderStatus.OPEN},
    OrderStatus.OPEN: {
        OrderAction.CLAIM: OrderStatus.ACCEPTED,
        OrderAction.CANCEL: OrderStatus.CANCELLED,
    },
    OrderStatus.ACCEPTED: {
        OrderAction.RELEASE: OrderStatus.OPEN,
        OrderAction.START: OrderStatus.IN_PROGRESS,
        OrderAction.CANCEL: OrderStatus.CANCELLED,
    },
    OrderStatus.IN_PROGRESS: {
        OrderAction.RELEASE: OrderStatus.OPEN,
        OrderAction.COMPLETE: OrderStatus.COMPLETED,
        OrderAction.CANCEL: OrderStatus.CANCELLED,
    },
    OrderStatus.COMPLETED: {},  # terminal
    OrderStatus.CANCELLED: {},  # terminal
}

# Where each action lands, independent of the source status
ACTION_TARGETS: dict[OrderAction, OrderStatus] = {
    OrderAction.CREATE: OrderStatus.OPEN,
    OrderAction.CLAIM: OrderStatus.ACCEPTED,
    OrderAction.RELEASE: OrderStatus.OPEN,
    OrderAction.START: OrderStatus.IN_PROGRESS,
    OrderAction.COMPLETE: OrderStatus.COMPLETED,
    OrderAction.CANCEL: OrderStatus.CANCELLED,
}

TERMINAL_STATES: frozenset[OrderStatus] = frozenset({OrderStatus.COMPLETED, OrderStatus.CANCELLED})

# Live locations may only be reported while a specialist is on the job
ACTIVE_STATES: frozenset[OrderStatus] = frozenset({OrderStatus.ACCEPTED, OrderStatus.IN_PROGRESS})


def next_status(current: OrderStatus | None, action: OrderAction) -> OrderStatus | None:
    """Status reached by applying action to current, or None if not allowed."""
    return VALID_TRANSITIONS.get(current, {}).get(action)


def is_valid_transition(current: OrderStatus | None, action: OrderAction) -> bool:
    """True if action is allowed from current."""
    return next_status(current, action) is not None


def source_states(action: OrderAction) -> frozenset[OrderStatus]:
    """All statuses from which action is legal."""
    return frozenset(
        state for state, actions in VALID_TRANSITIONS.items() if state is not None and action in actions
    )
