"""
Machine à états du checkout.

CART_RECEIVED -> SPLIT_COMPUTED -> INTENT_CREATED -> PAYMENT_CONFIRMED -> ORDER_SETTLED
avec les états terminaux SPLIT_FAILED et PAYMENT_FAILED.
"""
from enum import Enum

from marketplace.errors import InvalidTransitionError


class CheckoutState(str, Enum):
    CART_RECEIVED = "CART_RECEIVED"
    SPLIT_COMPUTED = "SPLIT_COMPUTED"
    INTENT_CREATED = "INTENT_CREATED"
    PAYMENT_CONFIRMED = "PAYMENT_CONFIRMED"
    ORDER_SETTLED = "ORDER_SETTLED"
    SPLIT_FAILED = "SPLIT_FAILED"
    PAYMENT_FAILED = "PAYMENT_FAILED"


_VALID_TRANSITIONS = {
    CheckoutState.CART_RECEIVED: {CheckoutState.SPLIT_COMPUTED, CheckoutState.SPLIT_FAILED},
    CheckoutState.SPLIT_COMPUTED: {CheckoutState.INTENT_CREATED, CheckoutState.PAYMENT_FAILED},
    CheckoutState.INTENT_CREATED: {CheckoutState.PAYMENT_CONFIRMED, CheckoutState.PAYMENT_FAILED},
    CheckoutState.PAYMENT_CONFIRMED: {CheckoutState.ORDER_SETTLED},
    CheckoutState.ORDER_SETTLED: set(),
    CheckoutState.SPLIT_FAILED: set(),
    CheckoutState.PAYMENT_FAILED: set(),
}

TERMINAL_STATES = {CheckoutState.ORDER_SETTLED, CheckoutState.SPLIT_FAILED, CheckoutState.PAYMENT_FAILED}


def can_transition(current: CheckoutState, target: CheckoutState) -> bool:
    return target in _VALID_TRANSITIONS[CheckoutState(current)]


def assert_transition(current: CheckoutState, target: CheckoutState) -> CheckoutState:
    current = CheckoutState(current)
    target = CheckoutState(target)
    if not can_transition(current, target):
        raise InvalidTransitionError(f"Transition interdite {current.value} -> {target.value}")
    return target
