"""
Lifespan FastAPI: initialisation/arrêt des ressources partagées.
- Construit les services (moteur SQL + schéma, passerelles, grand livre, orchestrateur)
  sauf si la factory en a reçu (tests).
- Libère le pool de connexions à l'arrêt.
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from marketplace.services import build_services

@asynccontextmanager
async def lifespan(app: FastAPI):
    logger = logging.getLogger("uvicorn.error")
    services = getattr(app.state, "services", None)
    owned = services is None
    if owned:
        services = build_services()
        app.state.services = services
    logger.info(
        "Services ready dialect=%s gateways=%s",
        services.engine.dialect.name,
        ",".join(services.gateways) or "-",
    )

    yield

    if owned:
        services.engine.dispose()
        logger.info("Database pool disposed")
