import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from marketplace.errors import MarketplaceError, ValidationError
from marketplace.ledger.service import DEFAULT_PAYOUT_METHOD, PayoutLedger
from marketplace.services import get_ledger
from marketplace.utils.security import require_admin, require_merchant

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/merchant/payouts", tags=["Merchant payouts"])
admin_router = APIRouter(prefix="/admin/payouts", tags=["Admin payouts"])

# module marketplace.ledger.views
@router.get("")
def merchant_payouts(user: dict = Depends(require_merchant), ledger: PayoutLedger = Depends(get_ledger)):
    """
    Tableau de bord vendeur:
    {balance:{available,pending,total}, summary:{totalEarnings,pendingEarnings,totalPaidOut}, transactions[50]}
    """
    return JSONResponse(ledger.get_dashboard(user["merchant_id"]))

@router.post("", status_code=201)
async def request_payout(
    request: Request,
    user: dict = Depends(require_merchant),
    ledger: PayoutLedger = Depends(get_ledger),
):
    """
    Demande de virement: {amount, method?}
    - 201 {message, transaction}
    - 400 {error, available} si le solde disponible est insuffisant (solde inchangé)
    """
    try:
        try:
            body = await request.json()
        except Exception:
            raise ValidationError("Corps JSON invalide")
        amount = (body or {}).get("amount") if isinstance(body, dict) else None
        if isinstance(amount, bool) or not isinstance(amount, (int, float, str)) or amount in ("", None):
            raise ValidationError("Montant invalide", code="invalid_amount")
        method = str(body.get("method") or DEFAULT_PAYOUT_METHOD).upper()
        transaction = await run_in_threadpool(ledger.request_payout, user["merchant_id"], amount, method)
        return JSONResponse(
            {"message": "Demande de virement enregistrée", "transaction": transaction},
            status_code=201,
        )
    except (HTTPException, MarketplaceError):
        raise
    except Exception:
        logger.exception("Erreur request_payout merchant_id=%s", user.get("merchant_id"))
        raise HTTPException(status_code=500, detail="Échec de la demande de virement")

@admin_router.post("/{transaction_id}/paid")
async def mark_payout_paid(
    transaction_id: str,
    request: Request,
    admin: dict = Depends(require_admin),
    ledger: PayoutLedger = Depends(get_ledger),
):
    """Finalise un virement (PENDING -> PAID); externalRef optionnel (référence bancaire)."""
    try:
        body = await request.json()
    except Exception:
        body = {}
    external_ref = (body or {}).get("externalRef") if isinstance(body, dict) else None
    transaction = await run_in_threadpool(ledger.mark_paid, transaction_id, external_ref=external_ref)
    logger.info("admin.payouts.paid id=%s admin_id=%s", transaction_id, admin.get("id"))
    return JSONResponse({"transaction": transaction})

@admin_router.post("/{transaction_id}/failed")
def mark_payout_failed(
    transaction_id: str,
    admin: dict = Depends(require_admin),
    ledger: PayoutLedger = Depends(get_ledger),
):
    """Échec d'un virement (PENDING -> FAILED): le montant revient dans le solde disponible."""
    transaction = ledger.mark_failed(transaction_id)
    logger.info("admin.payouts.failed id=%s admin_id=%s", transaction_id, admin.get("id"))
    return JSONResponse({"transaction": transaction})
