# module marketplace.app
from typing import Optional

from fastapi import FastAPI

from marketplace.app_setup.exceptions import register_exception_handlers
from marketplace.app_setup.lifespan import lifespan as app_lifespan
from marketplace.app_setup.middlewares import register_basic_middlewares
from marketplace.app_setup.routers import register_routers
from marketplace.services import Services

def create_app(services: Optional[Services] = None) -> FastAPI:
    """
    Crée et configure l'instance FastAPI de la plateforme.
    Étapes:
      1) register_basic_middlewares: CORS, TrustedHost.
      2) register_exception_handlers: erreurs métier -> JSON {error, code, details?}.
      3) register_routers: checkout, reversements vendeurs, admin, health.
    `services` permet d'injecter un moteur/des passerelles (tests); sinon le
    lifespan les construit depuis la configuration.
    """
    app = FastAPI(title="Marketplace Checkout API", lifespan=app_lifespan)
    if services is not None:
        app.state.services = services
    register_basic_middlewares(app)
    register_exception_handlers(app)
    register_routers(app)
    return app
