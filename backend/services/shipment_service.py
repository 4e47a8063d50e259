"""
Service expédition : actions admin sur le colis Yalidine d'une commande.
Création, modification et suppression sont sérialisées par un verrou par commande.
"""
import logging
from datetime import datetime, timezone
from typing import Optional

from core.exceptions import bad_gateway_exception, bad_request_exception, conflict_exception, not_found_exception
from core.utils import mask_phone
from models.common import CodStatus
from models.order import Order
from models.parcel import CarrierErrorKind, CarrierResult, ParcelCreate, ParcelRecord, ParcelUpdate
from services.order_store import OrderStore
from services.parcel_service import ParcelLifecycleClient
from services.status_service import COD_TO_ORDER

logger = logging.getLogger(__name__)


def _carrier_failure(result: CarrierResult):
    # Texte Yalidine renvoyé tel quel à l'opérateur
    if result.error_kind == CarrierErrorKind.NOT_FOUND:
        return not_found_exception("Colis Yalidine")
    return bad_gateway_exception(result.error or "Erreur Yalidine")


class ShipmentService:
    def __init__(self, store: OrderStore, parcels: ParcelLifecycleClient):
        self.store = store
        self.parcels = parcels

    async def _cod_order(self, order_id: str) -> Order:
        order = await self.store.get(order_id)
        if not order:
            raise not_found_exception("Commande")
        if not order.is_cod:
            raise bad_request_exception("Seules les commandes en paiement à la livraison sont expédiées via Yalidine")
        return order

    async def create_parcel(self, order_id: str, data: Optional[ParcelCreate] = None) -> ParcelRecord:
        async with self.store.lock(order_id):
            order = await self._cod_order(order_id)
            record = await self.store.get_parcel(order_id)
            if order.tracking_number or (record and record.tracking):
                tracking = order.tracking_number or record.tracking
                raise conflict_exception(f"Colis déjà créé (tracking : {tracking})")

            payload = data or (record.payload if record else None)
            if payload is None:
                raise bad_request_exception("Données du colis Yalidine manquantes pour cette commande")
            payload = payload.model_copy(update={"order_id": order_id})

            result = await self.parcels.create(payload)
            if not result.ok:
                raise _carrier_failure(result)

            now = datetime.now(timezone.utc)
            record = ParcelRecord(
                order_id=order_id,
                tracking=result.data.tracking,
                label_url=result.data.label_url,
                status=result.data.status or "created",
                is_mock=result.data.is_mock,
                payload=payload,
                last_payload={"action": "create", "response": result.raw},
                created_at=record.created_at if record else now,
                updated_at=now,
            )
            await self.store.save_parcel(record)
            await self.store.update_status(order_id, {
                "tracking_number": record.tracking,
                "cod_status":      CodStatus.SUBMITTED,
                "status":          COD_TO_ORDER[CodStatus.SUBMITTED],
            })
            logger.info("Commande %s : colis %s créé pour %s%s", order.order_number, record.tracking,
                        mask_phone(payload.contact_phone), " (simulé)" if record.is_mock else "")
            return record

    async def update_parcel(self, order_id: str, fields: ParcelUpdate) -> ParcelRecord:
        async with self.store.lock(order_id):
            await self._cod_order(order_id)
            record = await self.store.get_parcel(order_id)
            if not record or not record.tracking:
                raise bad_request_exception("Aucun colis Yalidine pour cette commande")

            result = await self.parcels.update(record.tracking, fields)
            if not result.ok:
                raise _carrier_failure(result)

            changed = fields.model_dump(exclude_unset=True)
            record.payload = record.payload.model_copy(update=changed)
            record.label_url = result.data.label_url or record.label_url
            record.status = result.data.status
            record.last_payload = {"action": "update", "fields": changed, "response": result.raw}
            record.updated_at = datetime.now(timezone.utc)
            await self.store.save_parcel(record)
            return record

    async def delete_parcel(self, order_id: str) -> dict:
        async with self.store.lock(order_id):
            order = await self._cod_order(order_id)
            record = await self.store.get_parcel(order_id)
            if not record or not record.tracking:
                raise bad_request_exception("Aucun colis Yalidine pour cette commande")

            tracking = record.tracking
            result = await self.parcels.delete(tracking)
            if not result.ok and result.error_kind != CarrierErrorKind.NOT_FOUND:
                raise _carrier_failure(result)

            record.tracking = None
            record.label_url = None
            record.status = "cancelled"
            record.last_payload = {"action": "deleted", "previous_tracking": tracking}
            record.updated_at = datetime.now(timezone.utc)
            await self.store.save_parcel(record)

            changes = {"tracking_number": None}
            if order.cod_status in (CodStatus.SUBMITTED, CodStatus.DISPATCHED):
                changes["cod_status"] = CodStatus.CANCELLED
                changes["status"] = COD_TO_ORDER[CodStatus.CANCELLED]
            await self.store.update_status(order_id, changes)
            logger.info("Commande %s : colis %s supprimé", order.order_number, tracking)
            return {"ok": True, "deleted_tracking": tracking}

    async def fetch_parcel(self, order_id: str) -> dict:
        record = await self.store.get_parcel(order_id)
        if not record or not record.tracking:
            raise not_found_exception("Colis Yalidine")
        if record.is_mock:
            return {"record": record.model_dump(mode="json"), "live": None}

        result = await self.parcels.get(record.tracking)
        if not result.ok:
            raise _carrier_failure(result)
        return {"record": record.model_dump(mode="json"), "live": result.data}
