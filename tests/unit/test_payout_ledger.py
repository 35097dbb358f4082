from decimal import Decimal

import pytest

from marketplace.errors import InsufficientBalanceError, InvalidTransitionError, NotFoundError, ValidationError

def test_credit_increases_available(ledger):
    tx = ledger.credit("m1", Decimal("20.00"), external_ref="order:o1")

    assert tx["kind"] == "CREDIT"
    assert tx["status"] == "PENDING"
    assert tx["method"] == "PLATFORM"
    assert tx["externalRef"] == "order:o1"
    assert ledger.get_balance("m1") == {"available": 20.0, "pending": 0.0, "total": 20.0}

def test_request_payout_moves_available_to_pending(ledger):
    ledger.credit("m1", "20.00")

    tx = ledger.request_payout("m1", "15.00")

    assert tx["kind"] == "PAYOUT"
    assert tx["method"] == "BANK_TRANSFER"
    assert ledger.get_balance("m1") == {"available": 5.0, "pending": 15.0, "total": 20.0}

def test_request_payout_insufficient_balance_leaves_balances_unchanged(ledger):
    # Arrange
    ledger.credit("m1", "20.00")

    # Act
    with pytest.raises(InsufficientBalanceError) as exc:
        ledger.request_payout("m1", "25.00")

    # Assert
    assert exc.value.available == Decimal("20.00")
    assert exc.value.to_dict()["available"] == 20.0
    assert ledger.get_balance("m1") == {"available": 20.0, "pending": 0.0, "total": 20.0}
    assert [t["kind"] for t in ledger.list_transactions("m1")] == ["CREDIT"]

def test_request_payout_unknown_merchant_is_insufficient(ledger):
    with pytest.raises(InsufficientBalanceError) as exc:
        ledger.request_payout("ghost", "1.00")
    assert exc.value.available == Decimal("0.00")

@pytest.mark.parametrize("amount", [0, -5, "abc", "1.001", None])
def test_invalid_amounts_are_rejected(ledger, amount):
    with pytest.raises(ValidationError):
        ledger.request_payout("m1", amount)

def test_mark_failed_payout_restores_available(ledger):
    # Arrange: pending=10, available=5
    ledger.credit("m1", "15.00")
    payout = ledger.request_payout("m1", "10.00")
    assert ledger.get_balance("m1") == {"available": 5.0, "pending": 10.0, "total": 15.0}

    # Act
    failed = ledger.mark_failed(payout["id"])

    # Assert
    assert failed["status"] == "FAILED"
    assert ledger.get_balance("m1") == {"available": 15.0, "pending": 0.0, "total": 15.0}

def test_mark_paid_payout_releases_pending(ledger):
    ledger.credit("m1", "15.00")
    payout = ledger.request_payout("m1", "10.00")

    paid = ledger.mark_paid(payout["id"], external_ref="virement-42")

    assert paid["status"] == "PAID"
    assert paid["externalRef"] == "virement-42"
    assert ledger.get_balance("m1") == {"available": 5.0, "pending": 0.0, "total": 5.0}
    assert ledger.get_summary("m1")["totalPaidOut"] == 10.0

def test_mark_paid_credit_keeps_balances(ledger):
    credit = ledger.credit("m1", "15.00")

    ledger.mark_paid(credit["id"])

    assert ledger.get_balance("m1")["available"] == 15.0

def test_mark_failed_credit_reverses_earning(ledger):
    credit = ledger.credit("m1", "15.00")

    ledger.mark_failed(credit["id"])

    assert ledger.get_balance("m1") == {"available": 0.0, "pending": 0.0, "total": 0.0}

def test_mark_failed_credit_already_withdrawn_is_refused(ledger):
    credit = ledger.credit("m1", "15.00")
    ledger.request_payout("m1", "10.00")

    with pytest.raises(InsufficientBalanceError):
        ledger.mark_failed(credit["id"])

    # rien n'a bougé, la transaction est toujours PENDING
    assert ledger.get_balance("m1") == {"available": 5.0, "pending": 10.0, "total": 15.0}
    statuses = {t["id"]: t["status"] for t in ledger.list_transactions("m1")}
    assert statuses[credit["id"]] == "PENDING"

@pytest.mark.parametrize("finalize", ["mark_paid", "mark_failed"])
def test_finalized_transaction_cannot_transition_again(ledger, finalize):
    ledger.credit("m1", "15.00")
    payout = ledger.request_payout("m1", "10.00")
    getattr(ledger, finalize)(payout["id"])

    with pytest.raises(InvalidTransitionError):
        ledger.mark_paid(payout["id"])
    with pytest.raises(InvalidTransitionError):
        ledger.mark_failed(payout["id"])

def test_unknown_transaction(ledger):
    with pytest.raises(NotFoundError):
        ledger.mark_paid("does-not-exist")

def test_list_transactions_newest_first_with_limit(ledger):
    ledger.credit("m1", "10.00", external_ref="a")
    ledger.credit("m1", "11.00", external_ref="b")
    ledger.credit("m1", "12.00", external_ref="c")

    txs = ledger.list_transactions("m1", limit=2)

    assert len(txs) == 2
    assert txs[0]["createdAt"] >= txs[1]["createdAt"]

def test_dashboard_shape(ledger):
    ledger.credit("m1", "20.00")
    ledger.request_payout("m1", "5.00")

    dashboard = ledger.get_dashboard("m1")

    assert dashboard["balance"] == {"available": 15.0, "pending": 5.0, "total": 20.0}
    assert dashboard["summary"] == {"totalEarnings": 20.0, "pendingEarnings": 0.0, "totalPaidOut": 0.0}
    assert len(dashboard["transactions"]) == 2
