from enum import Enum


class DeliveryMode(str, Enum):
    HOME     = "home"       # livraison à domicile
    STOPDESK = "stopdesk"   # retrait en agence Yalidine


class PaymentMethod(str, Enum):
    COD  = "COD"    # paiement à la livraison
    CARD = "CARD"
    CCP  = "CCP"


class OrderStatus(str, Enum):
    PENDING   = "PENDING"
    CONFIRMED = "CONFIRMED"
    SHIPPED   = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"
    REFUNDED  = "REFUNDED"


class CodStatus(str, Enum):
    PENDING    = "PENDING"
    SUBMITTED  = "SUBMITTED"
    DISPATCHED = "DISPATCHED"
    # États terminaux
    DELIVERED  = "DELIVERED"
    FAILED     = "FAILED"
    CANCELLED  = "CANCELLED"


class CarrierStatus(str, Enum):
    """Vocabulaire Yalidine, replié sur un ensemble fermé."""
    PENDING          = "pending"
    PICKED_UP        = "picked_up"
    IN_TRANSIT       = "in_transit"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED        = "delivered"
    FAILED_DELIVERY  = "failed_delivery"
    RETURNED         = "returned"
    CANCELLED        = "cancelled"
    UNKNOWN          = "unknown"


class UserRole(str, Enum):
    CLIENT     = "client"
    ADMIN      = "admin"
    SUPERADMIN = "superadmin"


class Provenance(str, Enum):
    LIVE         = "live"
    CACHED_TABLE = "cached-table"
    HEURISTIC    = "heuristic"


class DataSource(str, Enum):
    LIVE    = "live"
    OFFLINE = "offline"
