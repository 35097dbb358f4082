"""
Gestionnaires d'exceptions utilisés par la factory.
- MarketplaceError: JSON {error, code, ...} avec le statut HTTP de l'erreur
  (GatewayError ajoute details{type, code, declineCode, param, docUrl, requestId})
- HTTPException: JSON FastAPI standard {detail}
"""
import logging

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from marketplace.errors import ConsistencyError, MarketplaceError

logger = logging.getLogger(__name__)

def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(MarketplaceError)
    async def marketplace_error(request: Request, exc: MarketplaceError):
        if isinstance(exc, ConsistencyError):
            logger.critical("consistency error path=%s: %s", request.url.path, exc.message)
        elif exc.status_code >= 500:
            logger.error("server error path=%s code=%s: %s", request.url.path, exc.code, exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(HTTPException)
    async def http_error(request: Request, exc: HTTPException):
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail}, headers=exc.headers)
