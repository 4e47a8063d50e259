"""
Router admin Yalidine : colis d'une commande, test de connexion, vérification des statuts,
synchronisation de l'annuaire.
"""
from typing import Optional

from fastapi import APIRouter, Body, Depends, Query

from config import Settings
from core.dependencies import (
    get_location_sync, get_settings, get_shipments, get_status_checker, get_yalidine_client, require_admin,
)
from core.exceptions import ConfigurationError, ShippingError, bad_gateway_exception, bad_request_exception
from models.parcel import ParcelCreate, ParcelUpdate
from services.geography_service import region_by_id, resolve_region
from services.location_sync import LocationSync
from services.pricing_service import LiveFeeProvider
from services.shipment_service import ShipmentService
from services.status_checker import StatusChecker
from services.yalidine_client import YalidineClient

router = APIRouter()


# ── Colis d'une commande ──────────────────────────────────────────────────────
@router.post("/orders/{order_id}/parcel", summary="Créer le colis Yalidine d'une commande COD")
async def create_order_parcel(
    order_id: str,
    body: Optional[ParcelCreate] = Body(None),
    shipments: ShipmentService = Depends(get_shipments),
    _admin=Depends(require_admin),
):
    record = await shipments.create_parcel(order_id, body)
    return {
        "ok":        True,
        "tracking":  record.tracking,
        "label_url": record.label_url,
        "is_mock":   record.is_mock,
    }


@router.patch("/orders/{order_id}/parcel", summary="Modifier le colis Yalidine")
async def update_order_parcel(
    order_id: str,
    body: ParcelUpdate,
    shipments: ShipmentService = Depends(get_shipments),
    _admin=Depends(require_admin),
):
    if not body.model_fields_set:
        raise bad_request_exception("Aucun champ à modifier")
    record = await shipments.update_parcel(order_id, body)
    return {"ok": True, "tracking": record.tracking, "status": record.status, "label_url": record.label_url}


@router.delete("/orders/{order_id}/parcel", summary="Supprimer le colis Yalidine")
async def delete_order_parcel(
    order_id: str,
    shipments: ShipmentService = Depends(get_shipments),
    _admin=Depends(require_admin),
):
    return await shipments.delete_parcel(order_id)


@router.get("/orders/{order_id}/parcel", summary="Colis Yalidine (état live)")
async def get_order_parcel(
    order_id: str,
    shipments: ShipmentService = Depends(get_shipments),
    _admin=Depends(require_admin),
):
    return await shipments.fetch_parcel(order_id)


# ── Outils ────────────────────────────────────────────────────────────────────
@router.get("/yalidine/test", summary="Tester la connexion à l'API Yalidine")
async def test_connection(
    wilaya: str = Query("Chlef"),
    config: Settings = Depends(get_settings),
    client: YalidineClient = Depends(get_yalidine_client),
    _admin=Depends(require_admin),
):
    destination = resolve_region(wilaya)
    if destination is None:
        raise bad_request_exception(f"Wilaya inconnue : {wilaya}")

    try:
        matrix = await LiveFeeProvider(config, client).fetch_fee_matrix(
            region_by_id(config.YALIDINE_FROM_WILAYA_ID), destination,
        )
    except ShippingError as e:
        if isinstance(e, ConfigurationError):
            recommendation = "Vérifiez YALIDINE_API_ID et YALIDINE_API_TOKEN dans l'environnement"
        else:
            recommendation = "Vérifiez les identifiants API et la connexion réseau"
        return {"success": False, "error": e.message, "code": e.code, "recommendation": recommendation}

    communes = list(matrix.per_commune.values())
    return {
        "success": True,
        "data": {
            "from_wilaya":        matrix.from_wilaya_name,
            "to_wilaya":          matrix.to_wilaya_name,
            "zone":               matrix.zone,
            "communes_available": len(communes),
            "sample_commune":     communes[0].model_dump() if communes else None,
            "oversize_fee":       matrix.oversize_fee,
            "cod_percentage":     matrix.cod_percentage,
        },
    }


@router.post("/yalidine/status-check", summary="Vérifier les statuts des colis en cours")
async def status_check(
    tracking: Optional[str] = Query(None),
    checker: StatusChecker = Depends(get_status_checker),
    _admin=Depends(require_admin),
):
    if tracking:
        return await checker.check_tracking(tracking)
    return await checker.check_all()


@router.post("/yalidine/sync-locations", summary="Synchroniser wilayas, communes et stop desks Yalidine")
async def sync_locations(
    sync: LocationSync = Depends(get_location_sync),
    _admin=Depends(require_admin),
):
    try:
        counts = await sync.sync()
    except ConfigurationError as e:
        raise bad_request_exception(e.message)
    except ShippingError as e:
        raise bad_gateway_exception(e.message)
    return {"ok": True, **counts}
