"""
Rapprochement des statuts Yalidine avec les commandes.

  statut transporteur (CarrierStatus) ──▶ CodStatus ──▶ OrderStatus

Les deux tables sont totales, vérifiées au chargement du module.
Un état terminal ne bouge plus ; un événement déjà traité ne renotifie pas.
"""
import hashlib
import logging
from datetime import datetime, timezone, timedelta
from typing import Any, Dict, List, Optional, Tuple

from core.exceptions import WebhookOrderNotFoundError
from core.utils import fold_text
from models.common import CarrierStatus, CodStatus, OrderStatus
from models.notification import NotificationKind
from models.order import Order
from models.webhook import (
    ReconciliationOutcome, ReconciliationResult, WebhookEvent, WebhookEventType, WebhookParcel, WebhookRecipient,
)
from services.notification_service import Notifier
from services.order_store import OrderStore

logger = logging.getLogger(__name__)


# ── Tables de correspondance ──────────────────────────────────────────────────

# None : statut illisible, la commande garde son état courant
CARRIER_TO_COD: Dict[CarrierStatus, Optional[CodStatus]] = {
    CarrierStatus.PENDING:          CodStatus.SUBMITTED,
    CarrierStatus.PICKED_UP:        CodStatus.DISPATCHED,
    CarrierStatus.IN_TRANSIT:       CodStatus.DISPATCHED,
    CarrierStatus.OUT_FOR_DELIVERY: CodStatus.DISPATCHED,
    CarrierStatus.DELIVERED:        CodStatus.DELIVERED,
    CarrierStatus.FAILED_DELIVERY:  CodStatus.FAILED,
    CarrierStatus.RETURNED:         CodStatus.FAILED,
    CarrierStatus.CANCELLED:        CodStatus.CANCELLED,
    CarrierStatus.UNKNOWN:          None,
}

COD_TO_ORDER: Dict[CodStatus, OrderStatus] = {
    CodStatus.PENDING:    OrderStatus.PENDING,
    CodStatus.SUBMITTED:  OrderStatus.CONFIRMED,
    CodStatus.DISPATCHED: OrderStatus.SHIPPED,
    CodStatus.DELIVERED:  OrderStatus.DELIVERED,
    CodStatus.FAILED:     OrderStatus.CANCELLED,
    CodStatus.CANCELLED:  OrderStatus.CANCELLED,
}

EVENT_TO_CARRIER: Dict[WebhookEventType, CarrierStatus] = {
    WebhookEventType.CREATED:          CarrierStatus.PENDING,
    WebhookEventType.PICKED_UP:        CarrierStatus.PICKED_UP,
    WebhookEventType.IN_TRANSIT:       CarrierStatus.IN_TRANSIT,
    WebhookEventType.OUT_FOR_DELIVERY: CarrierStatus.OUT_FOR_DELIVERY,
    WebhookEventType.DELIVERED:        CarrierStatus.DELIVERED,
    WebhookEventType.RETURNED:         CarrierStatus.RETURNED,
    WebhookEventType.FAILED_DELIVERY:  CarrierStatus.FAILED_DELIVERY,
    WebhookEventType.CANCELLED:        CarrierStatus.CANCELLED,
    WebhookEventType.UPDATED:          CarrierStatus.UNKNOWN,
}


def _ensure_total(name: str, mapping: dict, domain) -> None:
    missing = [member.value for member in domain if member not in mapping]
    if missing:
        raise RuntimeError(f"{name} incomplète : {missing}")


_ensure_total("CARRIER_TO_COD", CARRIER_TO_COD, CarrierStatus)
_ensure_total("COD_TO_ORDER", COD_TO_ORDER, CodStatus)
_ensure_total("EVENT_TO_CARRIER", EVENT_TO_CARRIER, WebhookEventType)

TERMINAL_COD = {CodStatus.DELIVERED, CodStatus.FAILED, CodStatus.CANCELLED}
TERMINAL_ORDER = {OrderStatus.DELIVERED, OrderStatus.CANCELLED, OrderStatus.REFUNDED}

# Progression monotone : un statut plus ancien ne fait pas reculer la commande
COD_RANK = {
    CodStatus.PENDING: 0, CodStatus.SUBMITTED: 1, CodStatus.DISPATCHED: 2,
    CodStatus.DELIVERED: 3, CodStatus.FAILED: 3, CodStatus.CANCELLED: 3,
}
ORDER_RANK = {
    OrderStatus.PENDING: 0, OrderStatus.CONFIRMED: 1, OrderStatus.SHIPPED: 2,
    OrderStatus.DELIVERED: 3, OrderStatus.CANCELLED: 3, OrderStatus.REFUNDED: 3,
}

ADMIN_ALERT_STATUSES = {CarrierStatus.DELIVERED, CarrierStatus.RETURNED, CarrierStatus.FAILED_DELIVERY}


# ── Vocabulaire transporteur ──────────────────────────────────────────────────

# Libellés Yalidine repliés (sans accents, minuscules), testés dans l'ordre
FRENCH_STATUS_RULES: Tuple[Tuple[Tuple[str, ...], CarrierStatus], ...] = (
    (("retour",),                                                   CarrierStatus.RETURNED),
    (("echec", "echou", "failed"),                                  CarrierStatus.FAILED_DELIVERY),
    (("sorti en livraison", "pret pour livreur", "en attente du client"), CarrierStatus.OUT_FOR_DELIVERY),
    (("annul", "supprim"),                                          CarrierStatus.CANCELLED),
    (("livre",),                                                    CarrierStatus.DELIVERED),
    (("ramasse",),                                                  CarrierStatus.PICKED_UP),
    (("en preparation", "pas encore expedie", "a verifier", "pret a expedier"), CarrierStatus.PENDING),
    (("expedie", "transfert", "centre", "wilaya", "localisation", "bloque", "en attente", "en alerte"),
                                                                    CarrierStatus.IN_TRANSIT),
)


def parse_carrier_status(text: Optional[str]) -> CarrierStatus:
    """'Livré' → DELIVERED, 'in_transit' → IN_TRANSIT, texte inconnu → UNKNOWN."""
    if not text:
        return CarrierStatus.UNKNOWN
    folded = fold_text(str(text))
    try:
        return CarrierStatus(folded.replace(" ", "_"))
    except ValueError:
        pass
    for keywords, status in FRENCH_STATUS_RULES:
        if any(keyword in folded for keyword in keywords):
            return status
    return CarrierStatus.UNKNOWN


def event_carrier_status(event: WebhookEvent) -> CarrierStatus:
    """Statut porté par le colis s'il est reconnu, sinon celui impliqué par le type d'événement."""
    status = parse_carrier_status(event.parcel.status)
    if status != CarrierStatus.UNKNOWN:
        return status
    return EVENT_TO_CARRIER[event.event]


def event_key(event: WebhookEvent) -> str:
    if event.event_id:
        return event.event_id
    raw = "|".join([
        event.event.value, event.parcel.tracking_number, event.parcel.status or "", event.timestamp or "",
    ])
    return hashlib.sha256(raw.encode()).hexdigest()


# ── Formes de payload webhook ─────────────────────────────────────────────────

BATCH_TYPE_TO_EVENT = {
    "parcel_created":        WebhookEventType.CREATED,
    "parcel_deleted":        WebhookEventType.CANCELLED,
    "parcel_status_updated": WebhookEventType.UPDATED,
}


def _event_type(value: Optional[str], fallback: WebhookEventType = WebhookEventType.UPDATED) -> WebhookEventType:
    if not value:
        return fallback
    try:
        return WebhookEventType(value)
    except ValueError:
        return fallback


def parse_webhook_payload(raw: Any) -> List[WebhookEvent]:
    """
    Trois formes acceptées :
      - lot officiel   {"type": ..., "events": [{"event_id", "occurred_at", "data": {...}}]}
      - plate          {"status": ..., "tracking": ..., "order_id": ...}
      - typée          {"event": "parcel.delivered", "parcel": {"tracking_number": ...}}
    Lève ValueError si le payload n'est pas exploitable.
    """
    if not isinstance(raw, dict):
        raise ValueError("Payload JSON objet attendu")

    if raw.get("type") and isinstance(raw.get("events"), list):
        event_type = BATCH_TYPE_TO_EVENT.get(raw["type"], WebhookEventType.UPDATED)
        events = []
        for item in raw["events"]:
            data = (item or {}).get("data") or {}
            tracking = data.get("tracking") or data.get("tracking_number")
            if not tracking:
                logger.warning("Événement %s sans tracking ignoré", (item or {}).get("event_id"))
                continue
            events.append(WebhookEvent(
                event=event_type,
                parcel=WebhookParcel(
                    tracking_number=str(tracking),
                    status=data.get("status"),
                    order_id=str(data["order_id"]) if data.get("order_id") else None,
                    label_url=data.get("label"),
                ),
                timestamp=item.get("occurred_at"),
                event_id=item.get("event_id"),
            ))
        return events

    parcel = raw.get("parcel") if isinstance(raw.get("parcel"), dict) else {}
    status = raw.get("status") or parcel.get("status")
    tracking = raw.get("tracking") or raw.get("tracking_number") or parcel.get("tracking_number")
    if status and tracking:
        implied = _event_type(f"parcel.{fold_text(str(status)).replace(' ', '_')}")
        return [WebhookEvent(
            event=_event_type(raw.get("event"), implied),
            parcel=WebhookParcel(
                tracking_number=str(tracking),
                status=str(status),
                order_id=raw.get("order_id") or parcel.get("order_id"),
                recipient=parcel.get("recipient") or WebhookRecipient(
                    name=raw.get("recipient_name") or "",
                    phone=raw.get("recipient_phone") or "",
                    address=raw.get("recipient_address") or "",
                    commune=raw.get("to_commune_name") or "",
                    wilaya=raw.get("to_wilaya_name") or "",
                ),
                label_url=raw.get("label_url") or parcel.get("label_url"),
                delivered_at=raw.get("delivered_at") or parcel.get("delivered_at"),
            ),
            timestamp=raw.get("timestamp"),
            signature=raw.get("signature"),
            event_id=raw.get("event_id"),
        )]

    event_type = _event_type(raw.get("event"))
    if raw.get("event") and event_type.value != raw.get("event"):
        logger.warning("Type d'événement Yalidine inconnu '%s' : traité comme %s", raw.get("event"), event_type.value)
    return [WebhookEvent(**{**raw, "event": event_type})]


# ── Messages ──────────────────────────────────────────────────────────────────

CUSTOMER_TEMPLATES: Dict[CarrierStatus, Tuple[str, str]] = {
    CarrierStatus.PENDING:          ("Expédition préparée",
                                     "Votre commande #{order_number} est prête à être expédiée. Suivi : {tracking}"),
    CarrierStatus.PICKED_UP:        ("Colis ramassé",
                                     "Votre commande #{order_number} a été remise au livreur. Suivi : {tracking}"),
    CarrierStatus.IN_TRANSIT:       ("Colis en transit",
                                     "Votre commande #{order_number} est en route. Suivi : {tracking}"),
    CarrierStatus.OUT_FOR_DELIVERY: ("Colis en cours de livraison",
                                     "Votre commande #{order_number} arrive bientôt. Suivi : {tracking}"),
    CarrierStatus.DELIVERED:        ("Colis livré",
                                     "Votre commande #{order_number} a été livrée. Merci pour votre confiance !"),
    CarrierStatus.FAILED_DELIVERY:  ("Échec de livraison",
                                     "La livraison de la commande #{order_number} a échoué. "
                                     "Notre équipe vous contactera pour la reprogrammer."),
    CarrierStatus.RETURNED:         ("Colis retourné",
                                     "Votre commande #{order_number} a été retournée. Contactez le support."),
    CarrierStatus.CANCELLED:        ("Expédition annulée",
                                     "L'expédition de la commande #{order_number} a été annulée."),
}

ADMIN_TEMPLATES: Dict[CarrierStatus, Tuple[str, str]] = {
    CarrierStatus.DELIVERED:       ("Livraison effectuée",
                                    "Commande #{order_number} livrée. Client : {customer}"),
    CarrierStatus.RETURNED:        ("Colis retourné",
                                    "Commande #{order_number} retournée. Client : {customer}. Action requise."),
    CarrierStatus.FAILED_DELIVERY: ("Échec de livraison",
                                    "Livraison échouée pour la commande #{order_number}. Client : {customer}. À relancer."),
}

# Pas de message pour un statut illisible
_ensure_total(
    "CUSTOMER_TEMPLATES", CUSTOMER_TEMPLATES, [s for s in CarrierStatus if s != CarrierStatus.UNKNOWN],
)


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


# ── Moteur ────────────────────────────────────────────────────────────────────

class ReconciliationEngine:
    def __init__(self, store: OrderStore, notifier: Notifier, estimated_delivery_hours: int = 24):
        self.store = store
        self.notifier = notifier
        self.estimated_delivery_hours = estimated_delivery_hours

    async def handle_event(self, event: WebhookEvent) -> ReconciliationResult:
        tracking = event.parcel.tracking_number
        try:
            order = await self._find_order(tracking)
        except WebhookOrderNotFoundError as e:
            logger.warning("Webhook %s : %s", event.event.value, e.message)
            return ReconciliationResult(
                outcome=ReconciliationOutcome.NOT_FOUND, tracking_number=tracking, message=e.message,
            )

        carrier_status = event_carrier_status(event)
        if carrier_status == CarrierStatus.UNKNOWN:
            logger.warning(
                "Statut Yalidine non reconnu '%s' (%s) : commande inchangée",
                event.parcel.status, tracking,
            )

        if self._is_terminal(order):
            logger.info("Commande %s déjà clôturée (%s) : événement %s ignoré",
                        order.order_id, order.cod_status or order.status, event.event.value)
            return ReconciliationResult(
                outcome=ReconciliationOutcome.IGNORED, tracking_number=tracking, order_id=order.order_id,
                cod_status=order.cod_status, status=order.status, message="Commande déjà dans un état terminal",
            )

        changes = self._changes(order, carrier_status, event)
        if changes:
            await self.store.update_status(order.order_id, changes)
        await self._update_parcel_record(order.order_id, event)

        key = event_key(event)
        is_new = await self.store.mark_event_processed(key, {
            "tracking_number": tracking,
            "order_id":        order.order_id,
            "event":           event.event.value,
            "source":          event.source,
        })
        cod_status = changes.get("cod_status", order.cod_status)
        status = changes.get("status", order.status)
        if not is_new:
            logger.info("Événement %s déjà traité pour %s", key[:16], tracking)
            return ReconciliationResult(
                outcome=ReconciliationOutcome.DUPLICATE, tracking_number=tracking, order_id=order.order_id,
                cod_status=cod_status, status=status, changes=changes,
            )

        if carrier_status == CarrierStatus.UNKNOWN:
            return ReconciliationResult(
                outcome=ReconciliationOutcome.UPDATED, tracking_number=tracking, order_id=order.order_id,
                cod_status=cod_status, status=status, message="Statut non reconnu : commande inchangée",
            )

        sent = await self._notify(order, event, carrier_status)
        logger.info("Commande %s : %s → %s (%d notification(s))",
                    order.order_number, carrier_status.value, status.value, sent)
        return ReconciliationResult(
            outcome=ReconciliationOutcome.UPDATED, tracking_number=tracking, order_id=order.order_id,
            cod_status=cod_status, status=status, notifications=sent, changes=changes,
            message=f"Commande {order.order_number} : {status.value}",
        )

    async def _find_order(self, tracking: str) -> Order:
        order = await self.store.find_by_tracking_number(tracking)
        if order is None:
            raise WebhookOrderNotFoundError(f"Aucune commande pour le tracking {tracking}")
        return order

    @staticmethod
    def _is_terminal(order: Order) -> bool:
        if order.is_cod and order.cod_status is not None:
            return order.cod_status in TERMINAL_COD
        return order.status in TERMINAL_ORDER

    def _changes(self, order: Order, carrier_status: CarrierStatus, event: WebhookEvent) -> Dict[str, Any]:
        target_cod = CARRIER_TO_COD[carrier_status]
        changes: Dict[str, Any] = {}
        if target_cod is None:
            return changes

        if order.is_cod:
            current = order.cod_status or CodStatus.PENDING
            new_cod = target_cod if COD_RANK[target_cod] >= COD_RANK[current] else current
            if new_cod != order.cod_status:
                changes["cod_status"] = new_cod
            new_status = COD_TO_ORDER[new_cod]
        else:
            # Hors COD : seul le statut générique suit le transporteur
            target = COD_TO_ORDER[target_cod]
            new_status = target if ORDER_RANK[target] >= ORDER_RANK[order.status] else order.status

        if new_status != order.status:
            changes["status"] = new_status

        now = datetime.now(timezone.utc)
        if new_status == OrderStatus.DELIVERED and order.delivered_at is None:
            changes["delivered_at"] = _parse_datetime(event.parcel.delivered_at) or now
        if new_status == OrderStatus.SHIPPED and order.shipped_at is None:
            changes["shipped_at"] = now
            if order.estimated_delivery is None:
                changes["estimated_delivery"] = now + timedelta(hours=self.estimated_delivery_hours)
        elif carrier_status == CarrierStatus.OUT_FOR_DELIVERY and order.estimated_delivery is None:
            changes["estimated_delivery"] = now + timedelta(hours=self.estimated_delivery_hours)
        return changes

    async def _update_parcel_record(self, order_id: str, event: WebhookEvent) -> None:
        record = await self.store.get_parcel(order_id)
        if record is None:
            return
        record.status = event.parcel.status or record.status
        record.label_url = event.parcel.label_url or record.label_url
        record.last_payload = event.model_dump(mode="json", exclude={"signature"})
        record.updated_at = datetime.now(timezone.utc)
        await self.store.save_parcel(record)

    async def _notify(self, order: Order, event: WebhookEvent, carrier_status: CarrierStatus) -> int:
        data = {
            "order_id":        order.order_id,
            "tracking_number": event.parcel.tracking_number,
            "status":          carrier_status.value,
            "event":           event.event.value,
        }
        context = {
            "order_number": order.order_number,
            "tracking":     event.parcel.tracking_number,
            "customer":     event.parcel.recipient.name or "inconnu",
        }
        sent = 0
        try:
            if order.user_id:
                title, message = CUSTOMER_TEMPLATES[carrier_status]
                await self.notifier.notify(
                    order.user_id, NotificationKind.SHIPPING_UPDATE, title, message.format(**context), data,
                )
                sent += 1
            if carrier_status in ADMIN_ALERT_STATUSES:
                title, message = ADMIN_TEMPLATES[carrier_status]
                await self.notifier.notify_admins(
                    NotificationKind.SHIPPING_UPDATE, title, message.format(**context), data,
                )
                sent += 1
        except Exception as exc:
            logger.error(f"Erreur envoi notifications commande {order.order_number} : {exc}")
        return sent
