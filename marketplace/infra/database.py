"""
Moteur SQL (SQLAlchemy) pour les données de règlement.
- build_engine: crée un moteur à partir d'une URL (SQLite en mémoire: StaticPool partagé)
- create_schema: crée les tables manquantes
- transaction: ouvre une transaction ou rejoint celle de l'appelant

Le moteur est passé explicitement aux services (PayoutLedger, SettlementService,
CheckoutOrchestrator); aucun module métier ne l'importe globalement.
"""
import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.pool import StaticPool

from marketplace.infra.tables import metadata

logger = logging.getLogger(__name__)


def build_engine(url: str, echo: bool = False) -> Engine:
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(url, echo=echo, **kwargs)
    return create_engine(url, echo=echo, pool_pre_ping=True)


def create_schema(engine: Engine) -> None:
    metadata.create_all(engine)
    logger.info("database.schema ready dialect=%s", engine.dialect.name)


@contextmanager
def transaction(engine: Engine, conn: Optional[Connection] = None) -> Iterator[Connection]:
    """
    Transaction unique: commit si le bloc réussit, rollback sinon.
    Si `conn` est fourni, le bloc s'exécute dans la transaction de l'appelant
    (qui reste responsable du commit).
    """
    if conn is not None:
        yield conn
        return
    with engine.begin() as own:
        yield own


def ping(engine: Engine) -> bool:
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception:
        logger.exception("database.ping failed")
        return False


def upsert_insert(conn: Connection, table):
    """INSERT supportant ON CONFLICT (PostgreSQL et SQLite)."""
    if conn.dialect.name == "postgresql":
        from sqlalchemy.dialects.postgresql import insert as pg_insert
        return pg_insert(table)
    if conn.dialect.name == "sqlite":
        from sqlalchemy.dialects.sqlite import insert as sqlite_insert
        return sqlite_insert(table)
    raise RuntimeError(f"Dialecte non supporté pour ON CONFLICT: {conn.dialect.name}")
