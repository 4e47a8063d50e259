"""
Router shipping : devis de livraison au checkout (public).
Une destination non desservie ne bloque pas le checkout : réponse `available=False`.
"""
import logging

from fastapi import APIRouter, Depends, Request

from core.dependencies import get_fee_calculator
from core.exceptions import DomainLookupError
from core.rate_limit import limiter
from models.pricing import FeeQuoteRequest, ShippingQuoteResponse
from services.pricing_service import FeeCalculator

logger = logging.getLogger(__name__)
router = APIRouter()

UNAVAILABLE_MESSAGE = "Tarification indisponible pour cette destination. Le prix de livraison vous sera communiqué par téléphone."


@router.post("/quote", response_model=ShippingQuoteResponse, summary="Calculer les frais de livraison")
@limiter.limit("30/minute")
async def quote(
    request: Request,
    body: FeeQuoteRequest,
    calculator: FeeCalculator = Depends(get_fee_calculator),
):
    try:
        shipping = await calculator.quote(body)
    except DomainLookupError as e:
        logger.warning(f"Devis impossible ({body.destination_region}) : {e.message}")
        return ShippingQuoteResponse(available=False, message=UNAVAILABLE_MESSAGE)
    return ShippingQuoteResponse(available=True, shipping=shipping)
