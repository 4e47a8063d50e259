"""
Service colis Yalidine : création, modification, suppression, consultation.
Chaque opération renvoie un CarrierResult ; les échecs attendus ne lèvent pas.
"""
import logging
from typing import Any, Optional

from core.exceptions import (
    CarrierHTTPError, ConfigurationError, ResponseShapeError, ShippingError, TransportError,
)
from core.security import is_mock_tracking, mock_tracking_code
from models.parcel import (
    CarrierErrorKind, CarrierResult, NormalizedParcel, ParcelCreate, ParcelResult, ParcelUpdate, ResponseShape,
)
from services.yalidine_client import YalidineClient

logger = logging.getLogger(__name__)

DIMENSION_FIELDS = ("height", "width", "length")
# Acceptés à la création, refusés par PATCH /parcels/{tracking}
CREATE_ONLY_FIELDS = ("order_id", "parcel_sub_type", "has_receipt", "from_address")


# ── Normalisation des réponses ────────────────────────────────────────────────

def _first_of(entry: dict, *keys: str) -> Optional[str]:
    for key in keys:
        value = entry.get(key)
        if value:
            return str(value)
    return None


def normalize_parcel_response(raw: Any, order_id: Optional[str] = None) -> NormalizedParcel:
    """
    Formes observées en retour de POST /parcels :
      [ {tracking, ...} ]               → array
      {"parcels": [ {tracking, ...} ]}  → array
      {"<order_id>": {tracking, ...}}   → keyed_by_order
      {tracking, ...}                   → flat
    """
    if isinstance(raw, list):
        shape, entry = ResponseShape.ARRAY, raw[0] if raw else None
    elif isinstance(raw, dict) and isinstance(raw.get("parcels"), list):
        parcels = raw["parcels"]
        shape, entry = ResponseShape.ARRAY, parcels[0] if parcels else None
    elif isinstance(raw, dict) and ("tracking" in raw or "status" in raw):
        shape, entry = ResponseShape.FLAT, raw
    elif isinstance(raw, dict) and raw:
        shape = ResponseShape.KEYED_BY_ORDER
        entry = raw.get(order_id) if order_id else None
        if not isinstance(entry, dict):
            entry = next((v for v in raw.values() if isinstance(v, dict)), None)
    else:
        raise ResponseShapeError("Réponse colis vide ou inattendue", raw_body=raw)

    if not isinstance(entry, dict):
        raise ResponseShapeError(f"Aucun colis dans la réponse ({shape.value})", raw_body=raw)

    tracking = _first_of(entry, "tracking", "tracking_code", "tracking_number")
    if not tracking:
        reason = entry.get("message") or "tracking absent"
        raise ResponseShapeError(f"Colis non créé : {reason}", raw_body=raw)

    status = entry.get("status") or ("created" if entry.get("success") else "pending")
    return NormalizedParcel(
        shape=shape,
        tracking=tracking,
        label_url=_first_of(entry, "label_url", "labelUrl", "label"),
        status=str(status),
    )


def clean_create_payload(data: ParcelCreate) -> dict:
    payload = data.model_dump(mode="json")
    for field in (*DIMENSION_FIELDS, "weight"):
        if payload.get(field) is None:
            payload.pop(field, None)
    return payload


def strip_update_fields(fields: dict) -> dict:
    """Retire les dimensions nulles et les champs réservés à la création."""
    cleaned = dict(fields)
    for field in DIMENSION_FIELDS:
        if field in cleaned and cleaned[field] is None:
            del cleaned[field]
    for field in CREATE_ONLY_FIELDS:
        cleaned.pop(field, None)
    return cleaned


def _failure(e: ShippingError) -> CarrierResult:
    if isinstance(e, ConfigurationError):
        kind = CarrierErrorKind.CONFIGURATION
    elif isinstance(e, TransportError):
        kind = CarrierErrorKind.TRANSPORT
    elif isinstance(e, ResponseShapeError):
        kind = CarrierErrorKind.RESPONSE_SHAPE
    elif isinstance(e, CarrierHTTPError) and e.status_code == 404:
        kind = CarrierErrorKind.NOT_FOUND
    else:
        kind = CarrierErrorKind.CARRIER
    return CarrierResult(ok=False, error=e.message, error_kind=kind, raw=getattr(e, "raw_body", None))


# ── Client cycle de vie ───────────────────────────────────────────────────────

class ParcelLifecycleClient:
    """Pas de déduplication ici : la sérialisation par commande est faite par shipment_service."""

    def __init__(self, client: YalidineClient):
        self.client = client

    async def create(self, data: ParcelCreate) -> CarrierResult:
        logger.info(
            "Création colis Yalidine commande=%s → %s / %s, montant=%.0f",
            data.order_id, data.to_wilaya_name, data.to_commune_name, data.price,
        )
        if not self.client.is_configured:
            tracking = mock_tracking_code(data.order_id)
            logger.warning("Yalidine non configuré : colis simulé %s pour la commande %s", tracking, data.order_id)
            return CarrierResult(
                ok=True,
                data=ParcelResult(tracking=tracking, status="pending", is_mock=True),
                raw={"mock": True, "tracking": tracking},
            )

        # Yalidine attend un tableau de colis
        try:
            raw = await self.client.request("POST", "parcels", json=[clean_create_payload(data)])
            parcel = normalize_parcel_response(raw, data.order_id)
        except ShippingError as e:
            logger.error("Création colis échouée (commande %s) : %s", data.order_id, e.message)
            return _failure(e)

        logger.info("Colis créé %s (%s)", parcel.tracking, parcel.shape.value)
        return CarrierResult(
            ok=True,
            data=ParcelResult(tracking=parcel.tracking, label_url=parcel.label_url, status=parcel.status),
            raw=raw,
        )

    async def update(self, tracking: str, fields: ParcelUpdate) -> CarrierResult:
        """Seuls les champs explicitement renseignés par l'appelant sont envoyés."""
        payload = strip_update_fields(fields.model_dump(mode="json", exclude_unset=True))

        if is_mock_tracking(tracking):
            logger.warning("Modification du colis simulé %s : aucun appel Yalidine", tracking)
            return CarrierResult(
                ok=True,
                data=ParcelResult(tracking=tracking, status="updated", is_mock=True),
                raw={"mock": True, "action": "update", "fields": payload},
            )

        try:
            raw = await self.client.request("PATCH", f"parcels/{tracking}", json=payload, allow_empty=True)
        except ShippingError as e:
            logger.error("Modification colis %s échouée : %s", tracking, e.message)
            return _failure(e)

        entry = raw if isinstance(raw, dict) else {}
        return CarrierResult(
            ok=True,
            data=ParcelResult(
                tracking=_first_of(entry, "tracking") or tracking,
                label_url=_first_of(entry, "label_url", "labelUrl", "label"),
                status=str(entry.get("status") or "updated"),
            ),
            raw=raw,
        )

    async def delete(self, tracking: str) -> CarrierResult:
        if is_mock_tracking(tracking):
            logger.warning("Suppression du colis simulé %s : aucun appel Yalidine", tracking)
            return CarrierResult(ok=True, data={"tracking": tracking, "deleted": True}, raw={"mock": True})

        try:
            raw = await self.client.request("DELETE", f"parcels/{tracking}", allow_empty=True)
        except ShippingError as e:
            logger.error("Suppression colis %s échouée : %s", tracking, e.message)
            return _failure(e)

        logger.info("Colis %s supprimé chez Yalidine", tracking)
        return CarrierResult(ok=True, data={"tracking": tracking, "deleted": True}, raw=raw)

    async def get(self, tracking: str) -> CarrierResult:
        try:
            raw = await self.client.request("GET", f"parcels/{tracking}")
        except ShippingError as e:
            if not isinstance(e, CarrierHTTPError) or e.status_code != 404:
                logger.warning("Lecture colis %s impossible : %s", tracking, e.message)
            return _failure(e)

        # GET /parcels/{t} renvoie {"data": [ {...} ]} ou le colis seul
        data = raw
        if isinstance(raw, dict) and isinstance(raw.get("data"), list):
            if not raw["data"]:
                return CarrierResult(
                    ok=False, error=f"Colis {tracking} introuvable",
                    error_kind=CarrierErrorKind.NOT_FOUND, raw=raw,
                )
            data = raw["data"][0]
        return CarrierResult(ok=True, data=data, raw=raw)
