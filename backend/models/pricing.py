from typing import Any, Dict, Optional
from pydantic import BaseModel, Field
from models.common import DeliveryMode, Provenance


class Dimensions(BaseModel):
    length: float = Field(gt=0)   # cm
    width:  float = Field(gt=0)
    height: float = Field(gt=0)


class FeeQuoteRequest(BaseModel):
    destination_region:     str
    destination_sub_region: Optional[str] = None
    origin_region:          Optional[str] = None   # défaut : YALIDINE_FROM_WILAYA_ID
    weight_kg:              float = Field(ge=0)
    dimensions:             Optional[Dimensions] = None
    delivery_mode:          DeliveryMode = DeliveryMode.HOME


class FeeQuote(BaseModel):
    cost:           float
    currency:       str = "DZD"
    estimated_days: int
    provenance:     Provenance
    degraded_match: bool = False      # commune introuvable → première entrée de la grille
    details:        Dict[str, Any] = {}


class CommuneFee(BaseModel):
    commune_id:    int
    commune_name:  str
    express_home:  Optional[float] = None
    express_desk:  Optional[float] = None
    economic_home: Optional[float] = None
    economic_desk: Optional[float] = None


class FeeMatrix(BaseModel):
    """Réponse de GET /fees/ pour une paire de wilayas."""
    from_wilaya_name:     Optional[str] = None
    to_wilaya_name:       Optional[str] = None
    zone:                 Optional[int] = None
    retour_fee:           float = 0.0
    cod_percentage:       float = 0.0
    insurance_percentage: float = 0.0
    oversize_fee:         float = 0.0
    per_commune:          Dict[str, CommuneFee] = {}


class ShippingQuoteResponse(BaseModel):
    available: bool
    shipping:  Optional[FeeQuote] = None
    message:   Optional[str] = None
