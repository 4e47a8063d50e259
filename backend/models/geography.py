from typing import Generic, List, Optional, TypeVar
from pydantic import BaseModel, ConfigDict
from models.common import DataSource


class Region(BaseModel):
    """Wilaya."""
    model_config = ConfigDict(frozen=True)

    id:   int
    name: str
    code: str    # "16"


class SubRegion(BaseModel):
    """Commune, avec les tarifs Yalidine quand ils sont connus."""
    id:               int
    name:             str
    region_id:        int
    has_pickup_point: bool = False
    # None = mode de livraison indisponible
    express_home:     Optional[float] = None
    express_desk:     Optional[float] = None
    economic_home:    Optional[float] = None
    economic_desk:    Optional[float] = None


class PickupPoint(BaseModel):
    """Stop desk (agence Yalidine)."""
    id:            int
    name:          str
    address:       str
    region_id:     int
    sub_region_id: Optional[int] = None


T = TypeVar("T")


class DirectoryListing(BaseModel, Generic[T]):
    source: DataSource          # live = annuaire Yalidine, offline = catalogue embarqué
    items:  List[T] = []
    reason: Optional[str] = None   # cause de la dégradation
