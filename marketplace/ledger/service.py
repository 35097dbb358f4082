"""
Grand livre des reversements vendeurs.

Un solde par vendeur {available, pending} (jamais négatif) et un journal
append-only de transactions:
- CREDIT: gains crédités au règlement d'une commande (méthode PLATFORM)
- PAYOUT: demande de virement du vendeur (available -> pending)

Chaque opération s'exécute dans une transaction unique; elle peut rejoindre
la transaction de l'appelant (`conn=`), c'est ainsi que le règlement crédite
tous les vendeurs atomiquement.
"""
import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from sqlalchemy.engine import Connection, Engine

from marketplace.errors import (
    ConsistencyError,
    InsufficientBalanceError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from marketplace.infra.database import transaction
from marketplace.ledger import repository as repo
from marketplace.utils.money import as_json_number, from_minor_units, round2, to_decimal, to_minor_units

logger = logging.getLogger(__name__)

CREDIT = "CREDIT"
PAYOUT = "PAYOUT"

PENDING = "PENDING"
PAID = "PAID"
FAILED = "FAILED"

PLATFORM_METHOD = "PLATFORM"
DEFAULT_PAYOUT_METHOD = "BANK_TRANSFER"


class PayoutLedger:
    def __init__(self, engine: Engine, currency: str):
        self.engine = engine
        self.currency = currency

    # --- conversions ---

    def _minor(self, amount: Any) -> int:
        try:
            value = to_decimal(amount)
        except (InvalidOperation, TypeError, ValueError):
            raise ValidationError("Montant invalide", code="invalid_amount")
        if not value.is_finite() or value <= 0:
            raise ValidationError("Le montant doit être positif", code="invalid_amount")
        if round2(value) != value:
            raise ValidationError("Le montant ne peut pas dépasser le centime", code="invalid_amount")
        return to_minor_units(value, self.currency)

    def _amount(self, minor: int) -> Decimal:
        return from_minor_units(minor, self.currency)

    def serialize_transaction(self, row: Dict[str, Any]) -> Dict[str, Any]:
        created = row.get("created_at")
        return {
            "id": row["id"],
            "merchantId": row["merchant_id"],
            "kind": row["kind"],
            "amount": as_json_number(self._amount(row["amount_minor"])),
            "currency": self.currency,
            "status": row["status"],
            "method": row["method"],
            "externalRef": row.get("external_ref"),
            "createdAt": created.isoformat() if hasattr(created, "isoformat") else created,
        }

    # --- opérations ---

    def credit(self, merchant_id: str, amount: Any, *, external_ref: Optional[str] = None,
               conn: Optional[Connection] = None) -> Dict[str, Any]:
        """available += amount et journalise un CREDIT PENDING."""
        amount_minor = self._minor(amount)
        with transaction(self.engine, conn) as tx:
            repo.upsert_credit(tx, merchant_id, amount_minor)
            row = repo.insert_transaction(
                tx,
                merchant_id=merchant_id,
                kind=CREDIT,
                amount_minor=amount_minor,
                method=PLATFORM_METHOD,
                external_ref=external_ref,
            )
        logger.info("ledger.credit merchant_id=%s amount_minor=%s ref=%s", merchant_id, amount_minor, external_ref)
        return self.serialize_transaction(row)

    def request_payout(self, merchant_id: str, amount: Any, method: str = DEFAULT_PAYOUT_METHOD, *,
                       external_ref: Optional[str] = None, conn: Optional[Connection] = None) -> Dict[str, Any]:
        """
        available -> pending, sous condition available >= amount (une seule
        instruction SQL). Échec: InsufficientBalanceError, soldes inchangés.
        """
        amount_minor = self._minor(amount)
        with transaction(self.engine, conn) as tx:
            if repo.move_available_to_pending(tx, merchant_id, amount_minor) == 0:
                balance = repo.get_balance_row(tx, merchant_id) or {}
                available = self._amount(balance.get("available_minor") or 0)
                logger.info("ledger.request_payout refused merchant_id=%s requested_minor=%s available=%s",
                            merchant_id, amount_minor, available)
                raise InsufficientBalanceError(available=available, requested=self._amount(amount_minor))
            row = repo.insert_transaction(
                tx,
                merchant_id=merchant_id,
                kind=PAYOUT,
                amount_minor=amount_minor,
                method=method or DEFAULT_PAYOUT_METHOD,
                external_ref=external_ref,
            )
        logger.info("ledger.request_payout merchant_id=%s amount_minor=%s id=%s", merchant_id, amount_minor, row["id"])
        return self.serialize_transaction(row)

    def _transition(self, tx: Connection, transaction_id: str, to_status: str,
                    external_ref: Optional[str]) -> Dict[str, Any]:
        row = repo.get_transaction(tx, transaction_id)
        if row is None:
            raise NotFoundError(f"Transaction {transaction_id} introuvable")
        if row["status"] != PENDING or repo.transition_status(tx, transaction_id, PENDING, to_status, external_ref) == 0:
            raise InvalidTransitionError(f"Transaction {transaction_id} déjà {row['status']}")
        return row

    def mark_paid(self, transaction_id: str, *, external_ref: Optional[str] = None,
                  conn: Optional[Connection] = None) -> Dict[str, Any]:
        """PENDING -> PAID; un virement payé quitte le solde pending."""
        with transaction(self.engine, conn) as tx:
            row = self._transition(tx, transaction_id, PAID, external_ref)
            if row["kind"] == PAYOUT:
                if repo.release_pending(tx, row["merchant_id"], row["amount_minor"], restore_available=False) == 0:
                    raise ConsistencyError(f"Solde pending insuffisant pour {transaction_id}")
            updated = repo.get_transaction(tx, transaction_id)
        logger.info("ledger.mark_paid id=%s kind=%s", transaction_id, row["kind"])
        return self.serialize_transaction(updated)

    def mark_failed(self, transaction_id: str, *, conn: Optional[Connection] = None) -> Dict[str, Any]:
        """
        PENDING -> FAILED avec écriture inverse:
        - PAYOUT: le montant repasse de pending à available
        - CREDIT: le gain est retiré de available (refusé s'il a déjà été retiré)
        """
        with transaction(self.engine, conn) as tx:
            row = self._transition(tx, transaction_id, FAILED, None)
            merchant_id, amount_minor = row["merchant_id"], row["amount_minor"]
            if row["kind"] == PAYOUT:
                if repo.release_pending(tx, merchant_id, amount_minor, restore_available=True) == 0:
                    raise ConsistencyError(f"Solde pending insuffisant pour {transaction_id}")
            elif repo.remove_available(tx, merchant_id, amount_minor) == 0:
                balance = repo.get_balance_row(tx, merchant_id) or {}
                raise InsufficientBalanceError(
                    available=self._amount(balance.get("available_minor") or 0),
                    requested=self._amount(amount_minor),
                )
            updated = repo.get_transaction(tx, transaction_id)
        logger.info("ledger.mark_failed id=%s kind=%s reversed_minor=%s", transaction_id, row["kind"], amount_minor)
        return self.serialize_transaction(updated)

    # --- lectures ---

    def get_balance(self, merchant_id: str) -> Dict[str, float]:
        with self.engine.connect() as conn:
            row = repo.get_balance_row(conn, merchant_id) or {}
        available = self._amount(row.get("available_minor") or 0)
        pending = self._amount(row.get("pending_minor") or 0)
        return {
            "available": as_json_number(available),
            "pending": as_json_number(pending),
            "total": as_json_number(available + pending),
        }

    def list_transactions(self, merchant_id: str, limit: int = 50) -> List[Dict[str, Any]]:
        with self.engine.connect() as conn:
            rows = repo.list_transactions(conn, merchant_id, limit=limit)
        return [self.serialize_transaction(r) for r in rows]

    def get_summary(self, merchant_id: str) -> Dict[str, float]:
        with self.engine.connect() as conn:
            earned = repo.sum_transactions(conn, merchant_id, CREDIT, (PENDING, PAID))
            paid_out = repo.sum_transactions(conn, merchant_id, PAYOUT, (PAID,))
            awaiting = repo.sum_awaiting_fulfillment(conn, merchant_id)
        return {
            "totalEarnings": as_json_number(self._amount(earned)),
            "pendingEarnings": as_json_number(self._amount(awaiting)),
            "totalPaidOut": as_json_number(self._amount(paid_out)),
        }

    def get_dashboard(self, merchant_id: str, limit: int = 50) -> Dict[str, Any]:
        return {
            "balance": self.get_balance(merchant_id),
            "summary": self.get_summary(merchant_id),
            "transactions": self.list_transactions(merchant_id, limit=limit),
        }
