from datetime import datetime
from enum import Enum
from typing import Any, Optional
from pydantic import BaseModel, Field


class ParcelCreate(BaseModel):
    """Corps d'un colis tel qu'attendu par POST /parcels."""
    order_id:         str
    firstname:        str
    familyname:       str
    contact_phone:    str
    address:          str
    to_wilaya_name:   str
    to_commune_name:  str
    product_list:     str
    price:            float = Field(ge=0)   # montant à encaisser (DZD)
    height:           Optional[float] = None
    width:            Optional[float] = None
    length:           Optional[float] = None
    weight:           Optional[float] = None
    is_stopdesk:      bool = False
    stopdesk_id:      Optional[int] = None
    freeshipping:     bool = False
    has_exchange:     bool = False
    do_insurance:     bool = True
    parcel_sub_type:  Optional[str] = None
    has_receipt:      Optional[str] = None
    from_wilaya_name: Optional[str] = None
    from_address:     Optional[str] = None


class ParcelUpdate(BaseModel):
    """Modification partielle : seuls les champs renseignés sont envoyés."""
    firstname:        Optional[str] = None
    familyname:       Optional[str] = None
    contact_phone:    Optional[str] = None
    address:          Optional[str] = None
    to_wilaya_name:   Optional[str] = None
    to_commune_name:  Optional[str] = None
    product_list:     Optional[str] = None
    price:            Optional[float] = Field(default=None, ge=0)
    height:           Optional[float] = None
    width:            Optional[float] = None
    length:           Optional[float] = None
    weight:           Optional[float] = None
    is_stopdesk:      Optional[bool] = None
    stopdesk_id:      Optional[int] = None
    freeshipping:     Optional[bool] = None
    has_exchange:     Optional[bool] = None
    do_insurance:     Optional[bool] = None
    from_wilaya_name: Optional[str] = None


class ResponseShape(str, Enum):
    ARRAY          = "array"
    KEYED_BY_ORDER = "keyed_by_order"
    FLAT           = "flat"


class NormalizedParcel(BaseModel):
    shape:     ResponseShape
    tracking:  Optional[str] = None
    label_url: Optional[str] = None
    status:    Optional[str] = None


class ParcelResult(BaseModel):
    tracking:  str
    label_url: Optional[str] = None
    status:    str = "pending"
    is_mock:   bool = False    # jamais un vrai tracking Yalidine


class CarrierErrorKind(str, Enum):
    CONFIGURATION  = "configuration"
    TRANSPORT      = "transport"
    RESPONSE_SHAPE = "response_shape"
    CARRIER        = "carrier"     # réponse HTTP d'erreur de Yalidine
    NOT_FOUND      = "not_found"


class CarrierResult(BaseModel):
    ok:         bool
    data:       Optional[Any] = None
    error:      Optional[str] = None
    error_kind: Optional[CarrierErrorKind] = None
    raw:        Optional[Any] = None


class ParcelRecord(BaseModel):
    """Colis Yalidine rattaché à une commande (collection yalidine_parcels)."""
    order_id:       str
    tracking:       Optional[str] = None
    label_url:      Optional[str] = None
    status:         Optional[str] = None
    is_mock:        bool = False
    payload:        ParcelCreate
    last_payload:   Optional[Any] = None
    created_at:     datetime
    updated_at:     datetime
