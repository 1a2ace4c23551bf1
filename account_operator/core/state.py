from enum import StrEnum
from typing import Protocol, TypeVar

from account_operator.exceptions.core import InvalidStateTransitionError
from account_operator.models.common import Condition
from account_operator.utils.misc import utc_now


class AccountState(StrEnum):
    PENDING = "Pending"
    CREATING = "Creating"
    PENDING_VERIFICATION = "PendingVerification"
    OPTING_IN_REGIONS = "OptingInRegions"
    OPT_IN_REGIONS_ENABLED = "OptInRegionsEnabled"
    INITIALIZING_REGIONS = "InitializingRegions"
    READY = "Ready"
    FAILED = "Failed"


class ClaimState(StrEnum):
    PENDING = "Pending"
    PENDING_ACCOUNT = "PendingAccount"
    IN_PROGRESS = "InProgress"
    READY = "Ready"
    ERROR = "Error"


ACCOUNT_TRANSITIONS: dict[AccountState | None, frozenset[AccountState]] = {
    None: frozenset({AccountState.PENDING, AccountState.FAILED}),
    AccountState.PENDING: frozenset({AccountState.CREATING, AccountState.FAILED}),
    AccountState.CREATING: frozenset(
        {
            # account limit reached while the request was in flight
            AccountState.PENDING,
            AccountState.PENDING_VERIFICATION,
            AccountState.OPTING_IN_REGIONS,
            AccountState.INITIALIZING_REGIONS,
            AccountState.FAILED,
        }
    ),
    AccountState.PENDING_VERIFICATION: frozenset(
        {
            AccountState.OPTING_IN_REGIONS,
            AccountState.INITIALIZING_REGIONS,
            AccountState.FAILED,
        }
    ),
    AccountState.OPTING_IN_REGIONS: frozenset(
        {AccountState.OPT_IN_REGIONS_ENABLED, AccountState.FAILED}
    ),
    AccountState.OPT_IN_REGIONS_ENABLED: frozenset(
        {AccountState.INITIALIZING_REGIONS, AccountState.FAILED}
    ),
    AccountState.INITIALIZING_REGIONS: frozenset(
        {AccountState.READY, AccountState.FAILED}
    ),
    AccountState.READY: frozenset({AccountState.FAILED}),
    AccountState.FAILED: frozenset(),
}

CLAIM_TRANSITIONS: dict[ClaimState | None, frozenset[ClaimState]] = {
    None: frozenset({ClaimState.PENDING, ClaimState.ERROR}),
    ClaimState.PENDING: frozenset(
        {
            ClaimState.PENDING_ACCOUNT,
            ClaimState.IN_PROGRESS,
            ClaimState.READY,
            ClaimState.ERROR,
        }
    ),
    ClaimState.PENDING_ACCOUNT: frozenset(
        {ClaimState.IN_PROGRESS, ClaimState.READY, ClaimState.ERROR}
    ),
    ClaimState.IN_PROGRESS: frozenset({ClaimState.READY, ClaimState.ERROR}),
    ClaimState.READY: frozenset({ClaimState.ERROR}),
    ClaimState.ERROR: frozenset({ClaimState.PENDING, ClaimState.PENDING_ACCOUNT}),
}

StateT = TypeVar("StateT", AccountState, ClaimState)


class StatefulStatus(Protocol[StateT]):
    state: StateT | None
    conditions: list[Condition]


def _table(desired: AccountState | ClaimState) -> dict:
    if isinstance(desired, AccountState):
        return ACCOUNT_TRANSITIONS
    return CLAIM_TRANSITIONS


def can_transition(
    current: AccountState | ClaimState | None, desired: AccountState | ClaimState
) -> bool:
    if current == desired:
        return True
    return desired in _table(desired).get(current, frozenset())


def set_condition(
    conditions: list[Condition],
    condition_type: str,
    reason: str = "",
    message: str = "",
    status: str = "True",
) -> Condition:
    """Append a condition unless the newest one of the same type already says the same thing."""
    for existing in reversed(conditions):
        if existing.type != condition_type:
            continue
        if existing.reason == reason and existing.status == status:
            existing.message = message
            return existing
        break

    condition = Condition(
        type=condition_type,
        status=status,
        reason=reason,
        message=message,
        last_transition_time=utc_now(),
    )
    conditions.append(condition)
    return condition


def transition(
    kind: str,
    status: StatefulStatus,
    desired: AccountState | ClaimState,
    reason: str = "",
    message: str = "",
) -> Condition:
    current = status.state
    if not can_transition(current, desired):
        raise InvalidStateTransitionError(kind, str(current or ""), str(desired))
    status.state = desired
    if current == desired:
        return set_condition(
            status.conditions, str(desired), reason or str(desired), message
        )
    # entering a state starts a fresh condition
    condition = Condition(
        type=str(desired),
        reason=reason or str(desired),
        message=message,
        last_transition_time=utc_now(),
    )
    status.conditions.append(condition)
    return condition
