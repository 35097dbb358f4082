import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from marketplace.checkout.metadata import extract_metadata
from marketplace.checkout.orchestrator import CheckoutOrchestrator, parse_checkout_request
from marketplace.errors import MarketplaceError, ValidationError
from marketplace.payments.gateways import stripe_gateway
from marketplace.services import get_orchestrator
from marketplace.utils.security import require_user

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/checkout", tags=["Checkout API"])

async def _json_body(request: Request) -> Dict[str, Any]:
    try:
        body = await request.json()
    except Exception:
        raise ValidationError("Corps JSON invalide")
    if not isinstance(body, dict):
        raise ValidationError("Requête invalide: objet JSON attendu")
    return body

# module marketplace.checkout.views
@router.post("/split")
async def split_checkout(
    request: Request,
    user: dict = Depends(require_user),
    orchestrator: CheckoutOrchestrator = Depends(get_orchestrator),
):
    """
    Démarre un checkout multi-vendeurs pour l'utilisateur authentifié.
    - Entrée JSON: {cart:[{productId, quantity}], shippingAddress, currency, paymentMethod, returnUrl}
    - Étapes: validation, découpage par vendeur (prix du catalogue), commande PENDING_PAYMENT,
      intention de paiement (clé d'idempotence dérivée du panier)
    - Réponse: {orderId, status:"PAYMENT_REQUIRED", payment:{method, clientSecret|gatewayOrderId}, cartData}
    - Erreurs: 400 panier/moyen de paiement invalide, 500 passerelle {error, details}
    """
    try:
        body = await _json_body(request)
        checkout = parse_checkout_request(body, orchestrator.currency, orchestrator.methods)
        result = await run_in_threadpool(orchestrator.start_checkout, user.get("id", ""), checkout)
        return JSONResponse(result.to_dict())
    except (HTTPException, MarketplaceError):
        raise
    except Exception:
        logger.exception("Erreur split_checkout user_id=%s", user.get("id"))
        raise HTTPException(status_code=500, detail="Échec du checkout")

@router.post("/confirm")
async def confirm_checkout(
    request: Request,
    user: dict = Depends(require_user),
    orchestrator: CheckoutOrchestrator = Depends(get_orchestrator),
):
    """
    Confirmation après paiement (retour de redirection ou confirmation client).
    - Entrée JSON: {orderId, transactionId} (transactionId = id d'intention Stripe ou de commande PayPal)
    - Le statut est relu auprès de la passerelle; le corps de requête n'est jamais cru sur parole
    - Idempotent: une seconde confirmation ne recrédite pas les vendeurs
    """
    try:
        body = await _json_body(request)
        order_id = str(body.get("orderId") or "").strip()
        reference = str(body.get("transactionId") or body.get("paymentIntentId") or "").strip()
        result = await run_in_threadpool(orchestrator.confirm_payment, order_id, user.get("id", ""), reference)
        return JSONResponse(result.to_dict())
    except (HTTPException, MarketplaceError):
        raise
    except Exception:
        logger.exception("Erreur confirm_checkout user_id=%s", user.get("id"))
        raise HTTPException(status_code=500, detail="Échec de la confirmation")

def _paypal_reference(event: Dict[str, Any]) -> str:
    resource = event.get("resource") or {}
    if str(event.get("event_type") or "").startswith("PAYMENT.CAPTURE."):
        related = (resource.get("supplementary_data") or {}).get("related_ids") or {}
        return str(related.get("order_id") or "")
    return str(resource.get("id") or "")

@router.post("/webhook/{gateway}", include_in_schema=False)
async def gateway_webhook(
    gateway: str,
    request: Request,
    orchestrator: CheckoutOrchestrator = Depends(get_orchestrator),
):
    """
    Notifications asynchrones des passerelles.
    - stripe: signature vérifiée (Stripe-Signature), payment_intent.succeeded
    - paypal: CHECKOUT.ORDER.APPROVED / PAYMENT.CAPTURE.COMPLETED
    La notification ne sert qu'à identifier la commande: le statut est relu chez la passerelle.
    Réponses: {"status": "ok"|"ignored"}
    """
    try:
        if gateway == "stripe":
            event = await stripe_gateway.parse_event(request)
            if (event or {}).get("type") != "payment_intent.succeeded":
                return JSONResponse({"status": "ignored"})
            intent = (event.get("data") or {}).get("object") or {}
            reference = str(intent.get("id") or "")
            order_id = extract_metadata(intent.get("metadata"))["orderId"]
        elif gateway == "paypal":
            event = await _json_body(request)
            if event.get("event_type") not in ("CHECKOUT.ORDER.APPROVED", "PAYMENT.CAPTURE.COMPLETED"):
                return JSONResponse({"status": "ignored"})
            reference = _paypal_reference(event)
            order_id = None
        else:
            raise HTTPException(status_code=404, detail="Passerelle inconnue")
        if not reference:
            return JSONResponse({"status": "ignored"})

        result = await run_in_threadpool(orchestrator.handle_gateway_notification, gateway, reference, order_id)
        if result is None:
            return JSONResponse({"status": "ignored"})
        logger.info("checkout.webhook gateway=%s reference=%s already_settled=%s",
                    gateway, reference, result.already_settled)
        return JSONResponse({"status": "ok", "orderId": result.order_id, "alreadySettled": result.already_settled})
    except (HTTPException, MarketplaceError):
        raise
    except Exception:
        logger.exception("Erreur gateway_webhook gateway=%s", gateway)
        raise HTTPException(status_code=400, detail="Notification de passerelle invalide")
