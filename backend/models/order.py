from datetime import datetime
from typing import Optional
from pydantic import BaseModel
from models.common import CodStatus, OrderStatus, PaymentMethod


class Order(BaseModel):
    """Sous-ensemble de la commande utile à la livraison."""
    order_id:           str
    order_number:       str
    user_id:            Optional[str] = None
    payment_method:     PaymentMethod
    status:             OrderStatus = OrderStatus.PENDING
    cod_status:         Optional[CodStatus] = None   # renseigné uniquement en COD
    tracking_number:    Optional[str] = None
    shipped_at:         Optional[datetime] = None
    delivered_at:       Optional[datetime] = None
    estimated_delivery: Optional[datetime] = None

    @property
    def is_cod(self) -> bool:
        return self.payment_method == PaymentMethod.COD
