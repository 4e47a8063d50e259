"""
Service notification : notifications in-app (MongoDB) + push FCM best-effort.
"""
import logging
import os
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Protocol

import firebase_admin
from firebase_admin import credentials, exceptions as firebase_exceptions, messaging

from models.common import UserRole
from models.notification import Notification, NotificationChannel, NotificationKind, NotificationStatus

logger = logging.getLogger(__name__)

FIREBASE_CREDENTIALS_PATH = "firebase-service-account.json"


class Notifier(Protocol):
    async def notify(
        self, user_id: str, kind: NotificationKind, title: str, message: str, data: Dict[str, Any],
    ) -> None: ...

    async def notify_admins(
        self, kind: NotificationKind, title: str, message: str, data: Dict[str, Any],
    ) -> int: ...


def _notif_id() -> str:
    return f"ntf_{uuid.uuid4().hex[:12]}"


def _init_firebase() -> bool:
    if firebase_admin._apps:
        return True
    try:
        # Fichier de compte de service, sinon credentials par défaut (Railway/Cloud)
        if os.path.exists(FIREBASE_CREDENTIALS_PATH):
            firebase_admin.initialize_app(credentials.Certificate(FIREBASE_CREDENTIALS_PATH))
        else:
            firebase_admin.initialize_app()
    except (ValueError, OSError) as e:
        logger.error(f"Erreur initialisation Firebase Admin: {e}")
        return False
    return True


class MongoNotifier:
    def __init__(self, db, fcm_enabled: bool = False):
        self.db = db
        self.fcm_enabled = fcm_enabled
        self._fcm_ready: Optional[bool] = None

    async def notify(
        self,
        user_id: str,
        kind: NotificationKind,
        title: str,
        message: str,
        data: Dict[str, Any],
    ) -> None:
        """Stocke la notification en base et tente l'envoi push."""
        await self._record(user_id, kind, NotificationChannel.IN_APP, title, message, data, NotificationStatus.SENT)
        await self._push(user_id, kind, title, message, data)

    async def notify_admins(
        self,
        kind: NotificationKind,
        title: str,
        message: str,
        data: Dict[str, Any],
    ) -> int:
        roles = [UserRole.ADMIN.value, UserRole.SUPERADMIN.value]
        count = 0
        async for admin in self.db.users.find({"role": {"$in": roles}}, {"user_id": 1}):
            await self.notify(admin["user_id"], kind, title, message, data)
            count += 1
        if not count:
            logger.warning("Aucun administrateur à notifier pour « %s »", title)
        return count

    async def _record(
        self,
        user_id: str,
        kind: NotificationKind,
        channel: NotificationChannel,
        title: str,
        body: str,
        data: Dict[str, Any],
        status: NotificationStatus,
        error: Optional[str] = None,
    ) -> None:
        now = datetime.now(timezone.utc)
        notification = Notification(
            notif_id=_notif_id(),
            user_id=user_id,
            kind=kind,
            channel=channel,
            title=title,
            body=body,
            status=status,
            metadata=data,
            error=error,
            created_at=now,
            sent_at=now if status == NotificationStatus.SENT else None,
        )
        await self.db.notifications.insert_one(notification.model_dump())

    async def _push(self, user_id: str, kind: NotificationKind, title: str, body: str, data: Dict[str, Any]) -> None:
        if not self.fcm_enabled:
            return
        if self._fcm_ready is None:
            self._fcm_ready = _init_firebase()
        if not self._fcm_ready:
            return

        user = await self.db.users.find_one({"user_id": user_id}, {"fcm_token": 1})
        fcm_token = user.get("fcm_token") if user else None
        if not fcm_token:
            return
        try:
            message = messaging.Message(
                notification=messaging.Notification(title=title, body=body),
                data={k: str(v) for k, v in data.items() if v is not None},
                token=fcm_token,
            )
            messaging.send(message)
        except (firebase_exceptions.FirebaseError, ValueError) as e:
            logger.warning(f"Échec envoi Push FCM à {user_id}: {e}")
            await self._record(user_id, kind, NotificationChannel.PUSH, title, body, data, NotificationStatus.FAILED, str(e))
            return
        logger.info(f"Push FCM envoyé à {user_id}")
        await self._record(user_id, kind, NotificationChannel.PUSH, title, body, data, NotificationStatus.SENT)
