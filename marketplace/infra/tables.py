"""
Schéma SQL (SQLAlchemy Core) des données de règlement.
Tous les montants sont stockés en unités mineures (colonnes *_minor).
"""
from sqlalchemy import (
    JSON,
    BigInteger,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    func,
    text,
)

metadata = MetaData()

orders = Table(
    "orders",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("customer_id", String(64), nullable=False, index=True),
    Column("currency", String(3), nullable=False),
    Column("grand_total_minor", BigInteger, nullable=False),
    Column("status", String(32), nullable=False),
    Column("checkout_state", String(32), nullable=False),
    Column("checkout_key", String(64), nullable=False),
    Column("payment_method", String(16), nullable=False),
    Column("shipping_address", JSON, nullable=False),
    Column("gateway_reference", String(128), nullable=True, unique=True),
    Column("client_secret", Text, nullable=True),
    Column("approval_url", Text, nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    Column("updated_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    # Au plus une tentative ouverte par panier identique
    Index(
        "uq_orders_open_checkout_key",
        "checkout_key",
        unique=True,
        sqlite_where=text("status = 'PENDING_PAYMENT'"),
        postgresql_where=text("status = 'PENDING_PAYMENT'"),
    ),
)

sub_orders = Table(
    "sub_orders",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("order_id", String(36), ForeignKey("orders.id"), nullable=False, index=True),
    Column("merchant_id", String(64), nullable=False, index=True),
    Column("position", Integer, nullable=False),
    Column("subtotal_minor", BigInteger, nullable=False),
    Column("commission_minor", BigInteger, nullable=False),
    Column("payout_minor", BigInteger, nullable=False),
    Column("status", String(32), nullable=False),
    CheckConstraint("commission_minor + payout_minor = subtotal_minor", name="ck_sub_orders_split_exact"),
)

order_items = Table(
    "order_items",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("sub_order_id", String(36), ForeignKey("sub_orders.id"), nullable=False, index=True),
    Column("order_id", String(36), ForeignKey("orders.id"), nullable=False),
    Column("product_id", String(64), nullable=False),
    Column("title", String(255), nullable=False),
    Column("unit_price_minor", BigInteger, nullable=False),
    Column("quantity", Integer, nullable=False),
)

payments = Table(
    "payments",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("order_id", String(36), ForeignKey("orders.id"), nullable=False, unique=True),
    Column("gateway", String(16), nullable=False),
    Column("status", String(16), nullable=False),
    Column("amount_minor", BigInteger, nullable=False),
    Column("currency", String(3), nullable=False),
    Column("transaction_id", String(128), nullable=False, unique=True),
    Column("raw_provider_payload", JSON, nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
)

payout_balances = Table(
    "payout_balances",
    metadata,
    Column("merchant_id", String(64), primary_key=True),
    Column("available_minor", BigInteger, nullable=False, default=0),
    Column("pending_minor", BigInteger, nullable=False, default=0),
    Column("updated_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    CheckConstraint("available_minor >= 0", name="ck_payout_balances_available"),
    CheckConstraint("pending_minor >= 0", name="ck_payout_balances_pending"),
)

payout_transactions = Table(
    "payout_transactions",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("merchant_id", String(64), nullable=False, index=True),
    Column("kind", String(8), nullable=False),
    Column("amount_minor", BigInteger, nullable=False),
    Column("status", String(8), nullable=False),
    Column("method", String(32), nullable=False),
    Column("external_ref", String(128), nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=True),
    CheckConstraint("amount_minor > 0", name="ck_payout_transactions_amount"),
)

reconciliation_flags = Table(
    "reconciliation_flags",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("order_id", String(36), nullable=True),
    Column("transaction_id", String(128), nullable=True),
    Column("reason", Text, nullable=False),
    Column("payload", JSON, nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
)
