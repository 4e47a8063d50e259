"""
Vérification périodique des statuts Yalidine, en complément des webhooks.
Chaque colis lu est rejoué comme un événement `poll` dans le moteur de rapprochement.
"""
import asyncio
import logging
from typing import Any, Dict

from models.common import CarrierStatus
from models.webhook import ReconciliationOutcome, WebhookEvent, WebhookEventType, WebhookParcel
from services.order_store import OrderStore
from services.parcel_service import ParcelLifecycleClient
from services.status_service import ReconciliationEngine, parse_carrier_status

logger = logging.getLogger(__name__)

# Pause entre deux appels pour ne pas saturer l'API
POLL_PAUSE_SECONDS = 0.5


def _status_text(data: Any) -> str:
    if not isinstance(data, dict):
        return ""
    return str(data.get("last_status") or data.get("status") or "")


class StatusChecker:
    def __init__(
        self,
        store: OrderStore,
        parcels: ParcelLifecycleClient,
        engine: ReconciliationEngine,
        pause_seconds: float = POLL_PAUSE_SECONDS,
    ):
        self.store = store
        self.parcels = parcels
        self.engine = engine
        self.pause_seconds = pause_seconds

    async def check_tracking(self, tracking: str) -> Dict[str, Any]:
        result = await self.parcels.get(tracking)
        if not result.ok:
            return {"tracking": tracking, "updated": False, "error": result.error}

        data = result.data if isinstance(result.data, dict) else {}
        text = _status_text(data)
        if parse_carrier_status(text) == CarrierStatus.UNKNOWN:
            logger.warning("Statut illisible pour %s : '%s'", tracking, text)

        # Horodatage du dernier statut : le même statut relu donne la même clé d'idempotence
        event = WebhookEvent(
            event=WebhookEventType.UPDATED,
            parcel=WebhookParcel(
                tracking_number=tracking,
                status=text or None,
                label_url=data.get("label"),
                delivered_at=data.get("date_delivered"),
            ),
            timestamp=data.get("date_last_status"),
            source="poll",
        )
        outcome = await self.engine.handle_event(event)
        return {
            "tracking": tracking,
            "updated":  outcome.outcome == ReconciliationOutcome.UPDATED and bool(outcome.changes),
            "outcome":  outcome.outcome.value,
            "status":   text,
        }

    async def check_all(self, limit: int = 100) -> Dict[str, Any]:
        summary = {"checked": 0, "updated": 0, "delivered": 0, "errors": []}
        orders = await self.store.list_open_tracked_orders(limit)
        for order in orders:
            if not order.tracking_number:
                continue
            summary["checked"] += 1
            report = await self.check_tracking(order.tracking_number)
            if report.get("error"):
                summary["errors"].append(f"{order.order_number}: {report['error']}")
            elif report["updated"]:
                summary["updated"] += 1
                if parse_carrier_status(report["status"]) == CarrierStatus.DELIVERED:
                    summary["delivered"] += 1
            if self.pause_seconds:
                await asyncio.sleep(self.pause_seconds)

        logger.info(
            "Vérification Yalidine : %d colis, %d mis à jour, %d livrés, %d erreur(s)",
            summary["checked"], summary["updated"], summary["delivered"], len(summary["errors"]),
        )
        return summary

    async def run_forever(self, interval_seconds: int) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            try:
                await self.check_all()
            except Exception as exc:
                logger.error(f"Erreur vérification statuts Yalidine : {exc}")
