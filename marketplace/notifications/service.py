"""
Notifications (fire-and-forget) après règlement.
L'envoi réel (email, push) est hors périmètre: on dépose une ligne dans la
table Supabase 'notifications'. Un échec est journalisé et n'interrompt jamais
le règlement.
"""
import logging
from typing import Any, Dict, List, Optional

import marketplace.infra.supabase_client as supabase_client

logger = logging.getLogger(__name__)

def _insert_notification(*, recipient_id: str, kind: str, payload: Dict[str, Any]) -> Optional[dict]:
    try:
        res = (
            supabase_client.get_service_supabase()
            .table("notifications")
            .insert({"recipient_id": recipient_id, "kind": kind, "payload": payload})
            .execute()
        )
        rows = res.data or []
        return rows[0] if rows else {"status": "ok"}
    except Exception:
        logger.exception("notifications.insert failed recipient_id=%s kind=%s", recipient_id, kind)
        return None

def notify_order_paid(*, order_id: str, customer_id: str, merchant_ids: List[str], amount: float, currency: str) -> int:
    """
    Prévient l'acheteur et chaque vendeur concerné.
    Retourne le nombre de notifications déposées (0 si Supabase est indisponible).
    """
    sent = 0
    if _insert_notification(
        recipient_id=customer_id,
        kind="order_paid",
        payload={"orderId": order_id, "amount": amount, "currency": currency},
    ):
        sent += 1
    for merchant_id in merchant_ids:
        if _insert_notification(
            recipient_id=merchant_id,
            kind="sub_order_paid",
            payload={"orderId": order_id},
        ):
            sent += 1
    logger.info("notifications.order_paid order_id=%s sent=%s", order_id, sent)
    return sent
