from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from marketplace.infra.database import ping

router = APIRouter(prefix="/health", tags=["Health"])

@router.get("")
def health_root():
    return {"ok": True}

@router.get("/database")
def health_database(request: Request):
    engine = request.app.state.services.engine
    ok = ping(engine)
    return JSONResponse({"connect_ok": ok, "dialect": engine.dialect.name}, status_code=200 if ok else 503)
