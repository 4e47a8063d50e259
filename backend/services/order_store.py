"""
Accès aux commandes et aux colis Yalidine (MongoDB via motor).
Le moteur de rapprochement ne dépend que de l'interface OrderStore.
"""
import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone, timedelta
from enum import Enum
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol

from pymongo.errors import DuplicateKeyError

from core.exceptions import OrderLockedError
from models.common import OrderStatus
from models.order import Order
from models.parcel import ParcelRecord

logger = logging.getLogger(__name__)

CLOSED_ORDER_STATUSES = [OrderStatus.DELIVERED.value, OrderStatus.CANCELLED.value, OrderStatus.REFUNDED.value]


class OrderStore(Protocol):
    async def get(self, order_id: str) -> Optional[Order]: ...

    async def find_by_tracking_number(self, tracking_number: str) -> Optional[Order]: ...

    async def update_status(self, order_id: str, changes: Dict[str, Any]) -> None: ...

    async def get_parcel(self, order_id: str) -> Optional[ParcelRecord]: ...

    async def save_parcel(self, record: ParcelRecord) -> None: ...

    async def mark_event_processed(self, key: str, meta: Dict[str, Any]) -> bool: ...

    async def list_open_tracked_orders(self, limit: int = 100) -> List[Order]: ...

    def lock(self, order_id: str): ...


def _order(doc: Optional[dict]) -> Optional[Order]:
    if not doc:
        return None
    doc.pop("_id", None)
    return Order(**doc)


class MongoOrderStore:
    def __init__(self, db, lock_ttl_seconds: int = 60):
        self.db = db
        self.lock_ttl_seconds = lock_ttl_seconds

    async def get(self, order_id: str) -> Optional[Order]:
        return _order(await self.db.orders.find_one({"order_id": order_id}, {"_id": 0}))

    async def find_by_tracking_number(self, tracking_number: str) -> Optional[Order]:
        return _order(await self.db.orders.find_one({"tracking_number": tracking_number}, {"_id": 0}))

    async def update_status(self, order_id: str, changes: Dict[str, Any]) -> None:
        update = {k: v.value if isinstance(v, Enum) else v for k, v in changes.items()}
        update["updated_at"] = datetime.now(timezone.utc)
        await self.db.orders.update_one({"order_id": order_id}, {"$set": update})

    # ── Colis ─────────────────────────────────────────────────────────────────

    async def get_parcel(self, order_id: str) -> Optional[ParcelRecord]:
        doc = await self.db.yalidine_parcels.find_one({"order_id": order_id}, {"_id": 0})
        return ParcelRecord(**doc) if doc else None

    async def save_parcel(self, record: ParcelRecord) -> None:
        await self.db.yalidine_parcels.update_one(
            {"order_id": record.order_id},
            {"$set": record.model_dump(mode="json")},
            upsert=True,
        )

    # ── Idempotence des webhooks ──────────────────────────────────────────────

    async def mark_event_processed(self, key: str, meta: Dict[str, Any]) -> bool:
        """True si l'événement est nouveau, False s'il a déjà été traité."""
        try:
            await self.db.processed_webhook_events.insert_one({
                "event_key":    key,
                **meta,
                "processed_at": datetime.now(timezone.utc),
            })
        except DuplicateKeyError:
            return False
        return True

    async def list_open_tracked_orders(self, limit: int = 100) -> List[Order]:
        cursor = self.db.orders.find(
            {"tracking_number": {"$ne": None}, "status": {"$nin": CLOSED_ORDER_STATUSES}},
            {"_id": 0},
        ).sort("updated_at", 1).limit(limit)
        return [_order(doc) async for doc in cursor]

    # ── Verrou par commande ───────────────────────────────────────────────────

    async def _acquire(self, order_id: str, owner: str) -> bool:
        now = datetime.now(timezone.utc)
        doc = {"order_id": order_id, "owner": owner, "expires_at": now + timedelta(seconds=self.lock_ttl_seconds)}
        try:
            await self.db.order_locks.insert_one(doc)
            return True
        except DuplicateKeyError:
            pass
        # Bail expiré mais pas encore purgé par l'index TTL
        stale = await self.db.order_locks.delete_one({"order_id": order_id, "expires_at": {"$lt": now}})
        if not stale.deleted_count:
            return False
        try:
            await self.db.order_locks.insert_one(doc)
            return True
        except DuplicateKeyError:
            return False

    @asynccontextmanager
    async def lock(self, order_id: str) -> AsyncIterator[None]:
        owner = uuid.uuid4().hex
        if not await self._acquire(order_id, owner):
            raise OrderLockedError(f"Commande {order_id} en cours de traitement")
        try:
            yield
        finally:
            await self.db.order_locks.delete_one({"order_id": order_id, "owner": owner})
