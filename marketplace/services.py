"""
Assemblage des services (moteur SQL, grand livre, règlement, orchestrateur).
Construit une fois au démarrage (lifespan) et rangé dans app.state.services;
les routes y accèdent via les dépendances get_orchestrator / get_ledger.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Callable, Dict, Mapping, Optional

from fastapi import Request
from sqlalchemy.engine import Engine

from marketplace import config
from marketplace.checkout.orchestrator import CheckoutOrchestrator
from marketplace.infra.database import build_engine, create_schema
from marketplace.ledger.service import PayoutLedger
from marketplace.notifications.service import notify_order_paid
from marketplace.payments.gateways import build_gateways
from marketplace.payments.gateways.port import PaymentGateway
from marketplace.payments.settlement import SettlementService


@dataclass
class Services:
    engine: Engine
    gateways: Dict[str, PaymentGateway]
    ledger: PayoutLedger
    settlement: SettlementService
    orchestrator: CheckoutOrchestrator


def build_services(
    engine: Optional[Engine] = None,
    gateways: Optional[Mapping[str, PaymentGateway]] = None,
    fetch_products: Optional[Callable[..., Any]] = None,
    notifier: Optional[Callable[..., Any]] = notify_order_paid,
    commission_rate: Optional[Decimal] = None,
    currency: Optional[str] = None,
) -> Services:
    engine = engine or build_engine(config.DATABASE_URL)
    create_schema(engine)
    currency = currency or config.SETTLEMENT_CURRENCY
    gateways = dict(gateways) if gateways is not None else build_gateways()
    ledger = PayoutLedger(engine, currency)
    settlement = SettlementService(engine, ledger, notifier=notifier)
    orchestrator = CheckoutOrchestrator(
        engine,
        gateways,
        settlement,
        commission_rate=config.COMMISSION_RATE if commission_rate is None else commission_rate,
        currency=currency,
        fetch_products=fetch_products,
    )
    return Services(engine=engine, gateways=gateways, ledger=ledger, settlement=settlement, orchestrator=orchestrator)


def get_services(request: Request) -> Services:
    return request.app.state.services

def get_orchestrator(request: Request) -> CheckoutOrchestrator:
    return get_services(request).orchestrator

def get_ledger(request: Request) -> PayoutLedger:
    return get_services(request).ledger
