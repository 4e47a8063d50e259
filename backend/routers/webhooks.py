"""
Router webhooks : notifications de statut Yalidine.
Signature X-Yalidine-Signature = HMAC-SHA256(corps brut, YALIDINE_WEBHOOK_SECRET), obligatoire.
"""
import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import PlainTextResponse
from pydantic import ValidationError

from config import Settings
from core.dependencies import get_engine, get_settings
from core.exceptions import SignatureError, bad_request_exception, unauthorized_exception
from core.security import verify_webhook_signature
from models.webhook import ReconciliationOutcome
from services.status_service import ReconciliationEngine, parse_webhook_payload

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/yalidine", summary="Callback statut colis Yalidine")
async def yalidine_webhook(
    request: Request,
    x_yalidine_signature: Optional[str] = Header(None),
    config: Settings = Depends(get_settings),
    engine: ReconciliationEngine = Depends(get_engine),
):
    raw_body = await request.body()

    # Vérifier la signature avant tout traitement
    try:
        verify_webhook_signature(raw_body, x_yalidine_signature, config)
    except SignatureError as e:
        logger.warning(f"Webhook Yalidine refusé : {e.message}")
        raise unauthorized_exception(e.message)

    try:
        payload = json.loads(raw_body)
        events = parse_webhook_payload(payload)
    except (ValueError, ValidationError) as e:
        raise bad_request_exception(f"Payload invalide : {e}")

    results = [await engine.handle_event(event) for event in events]
    logger.info(f"Webhook Yalidine : {len(results)} événement(s) traité(s)")

    if len(results) == 1:
        result = results[0]
        body = {"received": True, "result": result.outcome.value}
        if result.outcome == ReconciliationOutcome.NOT_FOUND:
            body["message"] = result.message
        return body
    return {
        "received": True,
        "count":    len(results),
        "results":  [{"tracking": r.tracking_number, "result": r.outcome.value} for r in results],
    }


@router.get("/yalidine", summary="Validation de l'abonnement (CRC)")
async def yalidine_webhook_check(
    subscribe: Optional[str] = None,
    crc_token: Optional[str] = None,
):
    if subscribe is not None and crc_token:
        return PlainTextResponse(crc_token)
    return {"ok": True}
