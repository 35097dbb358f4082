import pytest

from marketplace.checkout.states import TERMINAL_STATES, CheckoutState, assert_transition, can_transition
from marketplace.errors import InvalidTransitionError

HAPPY_PATH = [
    CheckoutState.CART_RECEIVED,
    CheckoutState.SPLIT_COMPUTED,
    CheckoutState.INTENT_CREATED,
    CheckoutState.PAYMENT_CONFIRMED,
    CheckoutState.ORDER_SETTLED,
]

def test_happy_path_transitions_are_allowed():
    for current, target in zip(HAPPY_PATH, HAPPY_PATH[1:]):
        assert can_transition(current, target)

@pytest.mark.parametrize("current,target", [
    (CheckoutState.CART_RECEIVED, CheckoutState.SPLIT_FAILED),
    (CheckoutState.SPLIT_COMPUTED, CheckoutState.PAYMENT_FAILED),
    (CheckoutState.INTENT_CREATED, CheckoutState.PAYMENT_FAILED),
])
def test_failure_transitions_are_allowed(current, target):
    assert assert_transition(current, target) == target

@pytest.mark.parametrize("current,target", [
    (CheckoutState.CART_RECEIVED, CheckoutState.INTENT_CREATED),
    (CheckoutState.PAYMENT_CONFIRMED, CheckoutState.PAYMENT_FAILED),
    (CheckoutState.ORDER_SETTLED, CheckoutState.PAYMENT_CONFIRMED),
    (CheckoutState.SPLIT_FAILED, CheckoutState.SPLIT_COMPUTED),
])
def test_forbidden_transitions_raise(current, target):
    with pytest.raises(InvalidTransitionError):
        assert_transition(current, target)

def test_terminal_states_have_no_exit():
    for terminal in TERMINAL_STATES:
        assert not any(can_transition(terminal, target) for target in CheckoutState)

def test_states_accept_raw_strings():
    assert can_transition("INTENT_CREATED", "PAYMENT_CONFIRMED")
