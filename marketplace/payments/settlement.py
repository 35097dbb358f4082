"""
Règlement d'une commande payée.

Une seule transaction SQL qui:
  1. insère le paiement (idempotent sur transaction_id)
  2. passe la commande en PAID (payée, en attente d'expédition)
  3. crédite chaque vendeur de son payoutAmount via PayoutLedger
Les trois étapes sont validées ou annulées ensemble. Un invariant violé lève
ConsistencyError et annule tout; tout échec laisse un signalement de réconciliation.
Le statut doit avoir été vérifié auprès de la passerelle avant l'appel; aucune
requête réseau n'est faite pendant la transaction.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from marketplace.checkout import repository as orders_repo
from marketplace.checkout.states import CheckoutState
from marketplace.errors import ConsistencyError, NotFoundError, PaymentNotConfirmedError
from marketplace.ledger.service import PayoutLedger
from marketplace.payments import repository as payments_repo
from marketplace.payments.gateways.port import GatewayStatus
from marketplace.utils.money import as_json_number, from_minor_units, to_minor_units

logger = logging.getLogger(__name__)


@dataclass
class SettlementResult:
    order_id: str
    transaction_id: str
    already_settled: bool
    amount: float = 0.0
    currency: str = ""
    credits: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "orderId": self.order_id,
            "transactionId": self.transaction_id,
            "status": CheckoutState.ORDER_SETTLED.value,
            "alreadySettled": self.already_settled,
            "amount": self.amount,
            "currency": self.currency,
            "credits": self.credits,
        }


class SettlementService:
    def __init__(self, engine: Engine, ledger: PayoutLedger, notifier: Optional[Callable[..., Any]] = None):
        self.engine = engine
        self.ledger = ledger
        self.notifier = notifier

    def settle(self, order_id: str, confirmation: GatewayStatus) -> SettlementResult:
        """Applique une confirmation vérifiée; rejouer la même transaction est sans effet."""
        if not confirmation.succeeded:
            raise PaymentNotConfirmedError("Paiement non confirmé", gateway_status=confirmation.status)
        transaction_id = confirmation.transaction_id or confirmation.reference
        try:
            result = self._settle_in_transaction(order_id, transaction_id, confirmation)
        except NotFoundError:
            raise
        except IntegrityError as e:
            error = ConsistencyError(f"Contrainte violée au règlement de {order_id}: {e.orig}")
            self._flag(error, order_id, transaction_id, confirmation)
            raise error
        except Exception as e:
            # paiement déjà capturé côté passerelle
            self._flag(e, order_id, transaction_id, confirmation)
            raise

        if not result.already_settled:
            self._notify(result)
        return result

    def _settle_in_transaction(self, order_id: str, transaction_id: str,
                               confirmation: GatewayStatus) -> SettlementResult:
        with self.engine.begin() as conn:
            existing = payments_repo.get_payment_by_transaction(conn, transaction_id)
            if existing:
                if existing["order_id"] != order_id:
                    raise ConsistencyError(
                        f"Transaction {transaction_id} déjà rattachée à la commande {existing['order_id']}"
                    )
                logger.info("settlement.duplicate order_id=%s transaction_id=%s", order_id, transaction_id)
                return self._already_settled(order_id, transaction_id, existing)

            order = orders_repo.get_order(conn, order_id)
            if order is None:
                raise NotFoundError(f"Commande {order_id} introuvable")
            currency = order["currency"]

            other = payments_repo.get_payment_by_order(conn, order_id)
            if other:
                raise ConsistencyError(
                    f"Commande {order_id} déjà payée par {other['transaction_id']}, second paiement {transaction_id}"
                )
            if (confirmation.currency or "").upper() != currency:
                raise ConsistencyError(
                    f"Devise {confirmation.currency} différente de {currency} pour la commande {order_id}"
                )
            paid_minor = to_minor_units(confirmation.amount or 0, currency)
            if paid_minor != order["grand_total_minor"]:
                raise ConsistencyError(
                    f"Montant {paid_minor} différent du total {order['grand_total_minor']} (commande {order_id})"
                )

            inserted = payments_repo.insert_payment_if_absent(
                conn,
                order_id=order_id,
                gateway=confirmation.gateway,
                amount_minor=paid_minor,
                currency=currency,
                transaction_id=transaction_id,
                raw_provider_payload=confirmation.provider_document(),
            )
            if not inserted:
                # règlement concurrent déjà validé pour cette transaction
                return self._already_settled(order_id, transaction_id, None)

            if orders_repo.mark_paid(conn, order_id, CheckoutState.ORDER_SETTLED.value) == 0:
                raise ConsistencyError(f"Commande {order_id} non payable (statut {order['status']})")

            credits = []
            payable = [so for so in order["sub_orders"] if so["payout_minor"] > 0]
            for so in payable:
                credits.append(self.ledger.credit(
                    so["merchant_id"],
                    from_minor_units(so["payout_minor"], currency),
                    external_ref=f"order:{order_id}",
                    conn=conn,
                ))

            expected = sum(so["payout_minor"] for so in order["sub_orders"])
            credited = sum(to_minor_units(c["amount"], currency) for c in credits)
            if credited != expected or len(credits) != len(payable):
                raise ConsistencyError(
                    f"Crédits vendeurs {credited} != reversements attendus {expected} (commande {order_id})"
                )

        logger.info("settlement.settled order_id=%s transaction_id=%s amount_minor=%s merchants=%s",
                    order_id, transaction_id, paid_minor, len(credits))
        return SettlementResult(
            order_id=order_id,
            transaction_id=transaction_id,
            already_settled=False,
            amount=as_json_number(from_minor_units(paid_minor, currency)),
            currency=currency,
            credits=credits,
        )

    def _already_settled(self, order_id: str, transaction_id: str,
                         payment: Optional[Dict[str, Any]]) -> SettlementResult:
        if payment is None:
            return SettlementResult(order_id=order_id, transaction_id=transaction_id, already_settled=True)
        return SettlementResult(
            order_id=order_id,
            transaction_id=transaction_id,
            already_settled=True,
            amount=as_json_number(from_minor_units(payment["amount_minor"], payment["currency"])),
            currency=payment["currency"],
        )

    def _flag(self, error: Exception, order_id: str, transaction_id: str, confirmation: GatewayStatus) -> None:
        logger.critical("settlement.consistency order_id=%s transaction_id=%s error=%s",
                        order_id, transaction_id, error)
        try:
            with self.engine.begin() as conn:
                payments_repo.insert_reconciliation_flag(
                    conn,
                    reason=str(error),
                    order_id=order_id,
                    transaction_id=transaction_id,
                    payload=confirmation.provider_document(),
                )
        except Exception:
            logger.exception("settlement.flag failed order_id=%s transaction_id=%s", order_id, transaction_id)

    def _notify(self, result: SettlementResult) -> None:
        if self.notifier is None:
            return
        try:
            with self.engine.connect() as conn:
                order = orders_repo.get_order(conn, result.order_id)
            self.notifier(
                order_id=result.order_id,
                customer_id=order["customer_id"],
                merchant_ids=[so["merchant_id"] for so in order["sub_orders"]],
                amount=result.amount,
                currency=result.currency,
            )
        except Exception:
            logger.exception("settlement.notify failed order_id=%s", result.order_id)
