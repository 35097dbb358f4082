"""
Registre central des routers.
- Checkout: /checkout/split, /checkout/confirm, /checkout/webhook/{gateway}
- Vendeurs: /merchant/payouts
- Admin: /admin/payouts/{id}/paid|failed, /diagnostics/stripe
- Health: /health
"""
from fastapi import FastAPI
from marketplace.checkout import views as checkout_views
from marketplace.ledger import views as ledger_views
from marketplace.diagnostics import views as diagnostics_views
from marketplace.health.router import router as health_router

def register_routers(app: FastAPI) -> None:
    # API
    app.include_router(checkout_views.router)
    app.include_router(ledger_views.router)
    # Admin
    app.include_router(ledger_views.admin_router)
    app.include_router(diagnostics_views.router)
    # Health & monitoring
    app.include_router(health_router)
