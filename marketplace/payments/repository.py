"""
Accès SQL pour la feature 'payments': paiements confirmés et signalements de réconciliation.
"""
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.engine import Connection

from marketplace.infra.database import upsert_insert
from marketplace.infra.tables import payments, reconciliation_flags

SUCCEEDED = "SUCCEEDED"

# module marketplace.payments.repository
def insert_payment_if_absent(
    conn: Connection,
    *,
    order_id: str,
    gateway: str,
    amount_minor: int,
    currency: str,
    transaction_id: str,
    raw_provider_payload: Dict[str, Any],
) -> bool:
    """
    Insère le paiement; False si un paiement existe déjà pour ce transaction_id
    (ON CONFLICT DO NOTHING: pas d'exception qui avorterait la transaction).
    """
    stmt = upsert_insert(conn, payments).values(
        id=str(uuid4()),
        order_id=order_id,
        gateway=gateway,
        status=SUCCEEDED,
        amount_minor=amount_minor,
        currency=currency,
        transaction_id=transaction_id,
        raw_provider_payload=raw_provider_payload,
        created_at=datetime.now(timezone.utc),
    ).on_conflict_do_nothing(index_elements=[payments.c.transaction_id])
    return conn.execute(stmt).rowcount == 1

def get_payment_by_transaction(conn: Connection, transaction_id: str) -> Optional[Dict[str, Any]]:
    row = conn.execute(
        select(payments).where(payments.c.transaction_id == transaction_id)
    ).mappings().first()
    return dict(row) if row else None

def get_payment_by_order(conn: Connection, order_id: str) -> Optional[Dict[str, Any]]:
    row = conn.execute(select(payments).where(payments.c.order_id == order_id)).mappings().first()
    return dict(row) if row else None

def insert_reconciliation_flag(
    conn: Connection,
    *,
    reason: str,
    order_id: Optional[str] = None,
    transaction_id: Optional[str] = None,
    payload: Optional[Dict[str, Any]] = None,
) -> None:
    conn.execute(reconciliation_flags.insert().values(
        order_id=order_id,
        transaction_id=transaction_id,
        reason=reason,
        payload=payload,
        created_at=datetime.now(timezone.utc),
    ))

def list_reconciliation_flags(conn: Connection, limit: int = 100):
    rows = conn.execute(
        select(reconciliation_flags).order_by(reconciliation_flags.c.id.desc()).limit(limit)
    ).mappings().all()
    return [dict(r) for r in rows]
