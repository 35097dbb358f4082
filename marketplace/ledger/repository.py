"""
Accès SQL du grand livre des reversements (payout_balances, payout_transactions).
Toutes les fonctions reçoivent la connexion de la transaction en cours;
les montants sont en unités mineures.
"""
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional
from uuid import uuid4

from sqlalchemy import func, select, update
from sqlalchemy.engine import Connection

from marketplace.infra.database import upsert_insert
from marketplace.infra.tables import payout_balances, payout_transactions, sub_orders

# module marketplace.ledger.repository
def _now() -> datetime:
    return datetime.now(timezone.utc)

def upsert_credit(conn: Connection, merchant_id: str, amount_minor: int) -> None:
    """available += amount, ligne créée à la volée si absente (atomique)."""
    now = _now()
    stmt = upsert_insert(conn, payout_balances).values(
        merchant_id=merchant_id,
        available_minor=amount_minor,
        pending_minor=0,
        updated_at=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[payout_balances.c.merchant_id],
        set_={
            "available_minor": payout_balances.c.available_minor + stmt.excluded.available_minor,
            "updated_at": now,
        },
    )
    conn.execute(stmt)

def move_available_to_pending(conn: Connection, merchant_id: str, amount_minor: int) -> int:
    """Vérification et débit en une seule instruction conditionnelle; retourne le nombre de lignes."""
    res = conn.execute(
        update(payout_balances)
        .where(payout_balances.c.merchant_id == merchant_id)
        .where(payout_balances.c.available_minor >= amount_minor)
        .values(
            available_minor=payout_balances.c.available_minor - amount_minor,
            pending_minor=payout_balances.c.pending_minor + amount_minor,
            updated_at=_now(),
        )
    )
    return res.rowcount

def release_pending(conn: Connection, merchant_id: str, amount_minor: int, restore_available: bool) -> int:
    """pending -= amount (et available += amount si restore_available), jamais négatif."""
    values: Dict[str, Any] = {
        "pending_minor": payout_balances.c.pending_minor - amount_minor,
        "updated_at": _now(),
    }
    if restore_available:
        values["available_minor"] = payout_balances.c.available_minor + amount_minor
    res = conn.execute(
        update(payout_balances)
        .where(payout_balances.c.merchant_id == merchant_id)
        .where(payout_balances.c.pending_minor >= amount_minor)
        .values(**values)
    )
    return res.rowcount

def remove_available(conn: Connection, merchant_id: str, amount_minor: int) -> int:
    res = conn.execute(
        update(payout_balances)
        .where(payout_balances.c.merchant_id == merchant_id)
        .where(payout_balances.c.available_minor >= amount_minor)
        .values(available_minor=payout_balances.c.available_minor - amount_minor, updated_at=_now())
    )
    return res.rowcount

def get_balance_row(conn: Connection, merchant_id: str) -> Optional[Dict[str, Any]]:
    row = conn.execute(
        select(payout_balances).where(payout_balances.c.merchant_id == merchant_id)
    ).mappings().first()
    return dict(row) if row else None

def insert_transaction(
    conn: Connection,
    *,
    merchant_id: str,
    kind: str,
    amount_minor: int,
    method: str,
    external_ref: Optional[str] = None,
    status: str = "PENDING",
) -> Dict[str, Any]:
    row = {
        "id": str(uuid4()),
        "merchant_id": merchant_id,
        "kind": kind,
        "amount_minor": amount_minor,
        "status": status,
        "method": method,
        "external_ref": external_ref,
        "created_at": _now(),
        "updated_at": None,
    }
    conn.execute(payout_transactions.insert().values(**row))
    return row

def get_transaction(conn: Connection, transaction_id: str) -> Optional[Dict[str, Any]]:
    row = conn.execute(
        select(payout_transactions).where(payout_transactions.c.id == transaction_id)
    ).mappings().first()
    return dict(row) if row else None

def transition_status(
    conn: Connection,
    transaction_id: str,
    from_status: str,
    to_status: str,
    external_ref: Optional[str] = None,
) -> int:
    values: Dict[str, Any] = {"status": to_status, "updated_at": _now()}
    if external_ref:
        values["external_ref"] = external_ref
    res = conn.execute(
        update(payout_transactions)
        .where(payout_transactions.c.id == transaction_id)
        .where(payout_transactions.c.status == from_status)
        .values(**values)
    )
    return res.rowcount

def list_transactions(conn: Connection, merchant_id: str, limit: int = 50) -> List[Dict[str, Any]]:
    rows = conn.execute(
        select(payout_transactions)
        .where(payout_transactions.c.merchant_id == merchant_id)
        .order_by(payout_transactions.c.created_at.desc(), payout_transactions.c.id.desc())
        .limit(limit)
    ).mappings().all()
    return [dict(r) for r in rows]

def sum_transactions(conn: Connection, merchant_id: str, kind: str, statuses: Iterable[str]) -> int:
    total = conn.execute(
        select(func.coalesce(func.sum(payout_transactions.c.amount_minor), 0))
        .where(payout_transactions.c.merchant_id == merchant_id)
        .where(payout_transactions.c.kind == kind)
        .where(payout_transactions.c.status.in_(list(statuses)))
    ).scalar_one()
    return int(total or 0)

def sum_awaiting_fulfillment(conn: Connection, merchant_id: str) -> int:
    """Gains des sous-commandes payées mais pas encore livrées."""
    total = conn.execute(
        select(func.coalesce(func.sum(sub_orders.c.payout_minor), 0))
        .where(sub_orders.c.merchant_id == merchant_id)
        .where(sub_orders.c.status == "PAID")
    ).scalar_one()
    return int(total or 0)
