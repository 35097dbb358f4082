"""
Accès SQL pour la feature 'checkout': commandes, sous-commandes et lignes.
"""
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional
from uuid import uuid4

from sqlalchemy import select, update
from sqlalchemy.engine import Connection

from marketplace.checkout.cart import CartSplit
from marketplace.infra.tables import order_items, orders, sub_orders
from marketplace.utils.money import to_minor_units

# Statuts de commande
PENDING_PAYMENT = "PENDING_PAYMENT"
PAID = "PAID"
PAYMENT_FAILED = "PAYMENT_FAILED"

# module marketplace.checkout.repository
def insert_order(
    conn: Connection,
    *,
    customer_id: str,
    split: CartSplit,
    checkout_key: str,
    payment_method: str,
    shipping_address: Any,
    checkout_state: str,
) -> str:
    """Persiste Order + SubOrders + lignes en PENDING_PAYMENT; retourne l'id de commande."""
    currency = split.currency
    order_id = str(uuid4())
    now = datetime.now(timezone.utc)
    conn.execute(orders.insert().values(
        id=order_id,
        customer_id=customer_id,
        currency=currency,
        grand_total_minor=to_minor_units(split.grand_total, currency),
        status=PENDING_PAYMENT,
        checkout_state=checkout_state,
        checkout_key=checkout_key,
        payment_method=payment_method,
        shipping_address=shipping_address,
        created_at=now,
        updated_at=now,
    ))
    for position, so in enumerate(split.sub_orders):
        sub_order_id = str(uuid4())
        conn.execute(sub_orders.insert().values(
            id=sub_order_id,
            order_id=order_id,
            merchant_id=so.merchant_id,
            position=position,
            subtotal_minor=to_minor_units(so.subtotal, currency),
            commission_minor=to_minor_units(so.commission, currency),
            payout_minor=to_minor_units(so.payout_amount, currency),
            status=PENDING_PAYMENT,
        ))
        conn.execute(order_items.insert(), [
            {
                "sub_order_id": sub_order_id,
                "order_id": order_id,
                "product_id": item.product_id,
                "title": item.title,
                "unit_price_minor": to_minor_units(item.price, currency),
                "quantity": item.quantity,
            }
            for item in so.items
        ])
    return order_id

def _order_row(conn: Connection, where) -> Optional[Dict[str, Any]]:
    row = conn.execute(select(orders).where(where)).mappings().first()
    return dict(row) if row else None

def get_order(conn: Connection, order_id: str, with_sub_orders: bool = True) -> Optional[Dict[str, Any]]:
    order = _order_row(conn, orders.c.id == order_id)
    if order and with_sub_orders:
        order["sub_orders"] = get_sub_orders(conn, order_id)
    return order

def find_open_order(conn: Connection, checkout_key: str) -> Optional[Dict[str, Any]]:
    return _order_row(conn, (orders.c.checkout_key == checkout_key) & (orders.c.status == PENDING_PAYMENT))

def find_order_by_reference(conn: Connection, gateway: str, reference: str) -> Optional[Dict[str, Any]]:
    order = _order_row(conn, (orders.c.payment_method == gateway) & (orders.c.gateway_reference == reference))
    if order:
        order["sub_orders"] = get_sub_orders(conn, order["id"])
    return order

def get_sub_orders(conn: Connection, order_id: str) -> List[Dict[str, Any]]:
    rows = conn.execute(
        select(sub_orders).where(sub_orders.c.order_id == order_id).order_by(sub_orders.c.position)
    ).mappings().all()
    return [dict(r) for r in rows]

def attach_intent(
    conn: Connection,
    order_id: str,
    *,
    reference: str,
    client_secret: Optional[str],
    approval_url: Optional[str],
    checkout_state: str,
) -> int:
    """Associe l'intention une seule fois: une commande déjà liée n'est jamais réécrite."""
    res = conn.execute(
        update(orders)
        .where(orders.c.id == order_id)
        .where(orders.c.gateway_reference.is_(None))
        .where(orders.c.status == PENDING_PAYMENT)
        .values(
            gateway_reference=reference,
            client_secret=client_secret,
            approval_url=approval_url,
            checkout_state=checkout_state,
            updated_at=datetime.now(timezone.utc),
        )
    )
    return res.rowcount

def update_state(
    conn: Connection,
    order_id: str,
    *,
    from_states: Iterable[str],
    checkout_state: str,
    status: Optional[str] = None,
) -> int:
    values: Dict[str, Any] = {"checkout_state": checkout_state, "updated_at": datetime.now(timezone.utc)}
    if status:
        values["status"] = status
    res = conn.execute(
        update(orders)
        .where(orders.c.id == order_id)
        .where(orders.c.checkout_state.in_(list(from_states)))
        .values(**values)
    )
    return res.rowcount

def mark_paid(conn: Connection, order_id: str, checkout_state: str) -> int:
    """Commande -> PAID (payée, en attente d'expédition), seulement depuis PENDING_PAYMENT."""
    res = conn.execute(
        update(orders)
        .where(orders.c.id == order_id)
        .where(orders.c.status == PENDING_PAYMENT)
        .values(status=PAID, checkout_state=checkout_state, updated_at=datetime.now(timezone.utc))
    )
    if res.rowcount:
        conn.execute(
            update(sub_orders)
            .where(sub_orders.c.order_id == order_id)
            .values(status=PAID)
        )
    return res.rowcount

def mark_payment_failed(conn: Connection, order_id: str, checkout_state: str) -> int:
    res = conn.execute(
        update(orders)
        .where(orders.c.id == order_id)
        .where(orders.c.status == PENDING_PAYMENT)
        .values(status=PAYMENT_FAILED, checkout_state=checkout_state, updated_at=datetime.now(timezone.utc))
    )
    if res.rowcount:
        conn.execute(
            update(sub_orders)
            .where(sub_orders.c.order_id == order_id)
            .values(status="CANCELLED")
        )
    return res.rowcount

def get_order_items(conn: Connection, order_id: str) -> List[Dict[str, Any]]:
    rows = conn.execute(
        select(order_items).where(order_items.c.order_id == order_id).order_by(order_items.c.id)
    ).mappings().all()
    return [dict(r) for r in rows]
