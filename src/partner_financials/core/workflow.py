"""Withdrawal request state machine.

    pending ──approve──> approved ──claim──> processing ──complete──> completed
       │                    │  ^                 │
       └──reject──┐ ┌──reject┘  └────release─────┘   (transfer failed, retryable)
                  v v
                rejected

``completed`` and ``rejected`` are terminal. ``processing`` is only entered
by the process operation while the transfer call is in flight.
"""

from __future__ import annotations

from enum import Enum

from partner_financials.errors import InvalidTransitionError


class WithdrawalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    PROCESSING = "processing"
    COMPLETED = "completed"
    REJECTED = "rejected"


class WithdrawalAction(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"
    PROCESS = "process"
    COMPLETE = "complete"
    RELEASE = "release"


# action -> (allowed source states, target state)
TRANSITIONS: dict[WithdrawalAction, tuple[frozenset[WithdrawalStatus], WithdrawalStatus]] = {
    WithdrawalAction.APPROVE: (frozenset({WithdrawalStatus.PENDING}), WithdrawalStatus.APPROVED),
    WithdrawalAction.REJECT: (
        frozenset({WithdrawalStatus.PENDING, WithdrawalStatus.APPROVED}),
        WithdrawalStatus.REJECTED,
    ),
    WithdrawalAction.PROCESS: (frozenset({WithdrawalStatus.APPROVED}), WithdrawalStatus.PROCESSING),
    WithdrawalAction.COMPLETE: (frozenset({WithdrawalStatus.PROCESSING}), WithdrawalStatus.COMPLETED),
    WithdrawalAction.RELEASE: (frozenset({WithdrawalStatus.PROCESSING}), WithdrawalStatus.APPROVED),
}

TERMINAL_STATUSES = frozenset({WithdrawalStatus.COMPLETED, WithdrawalStatus.REJECTED})


def next_status(request_id: str, current: str, action: WithdrawalAction) -> WithdrawalStatus:
    """Target status of ``action`` from ``current``.

    Raises:
        InvalidTransitionError: If ``action`` is not legal from ``current``.
    """
    sources, target = TRANSITIONS[action]
    try:
        status = WithdrawalStatus(current)
    except ValueError:
        raise InvalidTransitionError(request_id, current, action.value) from None
    if status not in sources:
        raise InvalidTransitionError(request_id, current, action.value)
    return target
