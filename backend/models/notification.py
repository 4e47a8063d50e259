from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any
from pydantic import BaseModel


class NotificationKind(str, Enum):
    SHIPPING_UPDATE = "shipping_update"


class NotificationChannel(str, Enum):
    PUSH      = "push"
    IN_APP    = "in_app"


class NotificationStatus(str, Enum):
    SENT      = "sent"
    FAILED    = "failed"


class Notification(BaseModel):
    notif_id:   str
    user_id:    str
    kind:       NotificationKind
    channel:    NotificationChannel
    title:      str
    body:       str
    status:     NotificationStatus
    metadata:   Dict[str, Any] = {}
    error:      Optional[str] = None   # cause d'échec de l'envoi push
    # Timestamps
    created_at: datetime
    sent_at:    Optional[datetime] = None
