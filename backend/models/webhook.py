from enum import Enum
from typing import Any, Dict, Optional
from pydantic import BaseModel
from models.common import CodStatus, OrderStatus


class WebhookEventType(str, Enum):
    CREATED          = "parcel.created"
    PICKED_UP        = "parcel.picked_up"
    IN_TRANSIT       = "parcel.in_transit"
    OUT_FOR_DELIVERY = "parcel.out_for_delivery"
    DELIVERED        = "parcel.delivered"
    RETURNED         = "parcel.returned"
    FAILED_DELIVERY  = "parcel.failed_delivery"
    CANCELLED        = "parcel.cancelled"
    UPDATED          = "parcel.updated"     # statut porté par parcel.status


class WebhookRecipient(BaseModel):
    name:    str = ""
    phone:   str = ""
    address: str = ""
    commune: str = ""
    wilaya:  str = ""


class WebhookParcel(BaseModel):
    tracking_number: str
    status:          Optional[str] = None
    order_id:        Optional[str] = None
    recipient:       WebhookRecipient = WebhookRecipient()
    label_url:       Optional[str] = None
    delivered_at:    Optional[str] = None


class WebhookEvent(BaseModel):
    event:     WebhookEventType
    parcel:    WebhookParcel
    timestamp: Optional[str] = None
    signature: Optional[str] = None
    event_id:  Optional[str] = None
    source:    str = "webhook"       # "webhook" | "poll"


class ReconciliationOutcome(str, Enum):
    UPDATED   = "updated"
    DUPLICATE = "duplicate"    # événement déjà traité, pas de nouvelle notification
    IGNORED   = "ignored"      # commande déjà dans un état terminal
    NOT_FOUND = "not_found"


class ReconciliationResult(BaseModel):
    outcome:         ReconciliationOutcome
    tracking_number: str
    order_id:        Optional[str] = None
    cod_status:      Optional[CodStatus] = None
    status:          Optional[OrderStatus] = None
    notifications:   int = 0
    message:         Optional[str] = None
    changes:         Dict[str, Any] = {}
