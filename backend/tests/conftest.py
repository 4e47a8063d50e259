"""
Fixtures communes : configuration, faux transporteur Yalidine (httpx.MockTransport),
stockage de commandes en mémoire et notificateur enregistreur.
"""
import json
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import httpx
import pytest

from config import Settings
from core.exceptions import OrderLockedError
from models.common import CodStatus, OrderStatus, PaymentMethod
from models.geography import PickupPoint, SubRegion
from models.notification import NotificationKind
from models.order import Order
from models.parcel import ParcelRecord
from services.yalidine_client import YalidineClient

WEBHOOK_SECRET = "whsec_test_secret"


def make_settings(**overrides) -> Settings:
    values = {
        "YALIDINE_API_BASE": "https://api.yalidine.test/v1/",
        "YALIDINE_API_ID": "test-id",
        "YALIDINE_API_TOKEN": "test-token",
        "YALIDINE_WEBHOOK_SECRET": WEBHOOK_SECRET,
        "JWT_SECRET": "test-jwt-secret-for-unit-tests-only",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def unconfigured_settings() -> Settings:
    return make_settings(YALIDINE_API_ID=None, YALIDINE_API_TOKEN=None)


Reply = Union[httpx.Response, Callable[[httpx.Request], httpx.Response]]


class FakeYalidine:
    """Routes (méthode, chemin sans /v1/) → réponse ; enregistre chaque requête reçue."""

    def __init__(self):
        self.routes: Dict[Tuple[str, str], Reply] = {}
        self.requests: List[httpx.Request] = []

    def on(self, method: str, path: str, reply: Reply) -> None:
        self.routes[(method, path)] = reply

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path.split("/v1/", 1)[-1]
        reply = self.routes.get((request.method, path))
        if reply is None:
            return httpx.Response(404, json={"error": {"message": f"{path} introuvable"}})
        if callable(reply):
            return reply(request)
        return reply

    def json_body(self, index: int = -1) -> Any:
        return json.loads(self.requests[index].content)


@pytest.fixture
def carrier() -> FakeYalidine:
    return FakeYalidine()


@pytest.fixture
def yalidine(settings, carrier) -> YalidineClient:
    return YalidineClient(settings, transport=httpx.MockTransport(carrier.handler))


@pytest.fixture
def offline_yalidine(unconfigured_settings) -> YalidineClient:
    return YalidineClient(unconfigured_settings)


class FakeOrderStore:
    """OrderStore en mémoire, même contrat que MongoOrderStore."""

    def __init__(self):
        self.orders: Dict[str, Order] = {}
        self.parcels: Dict[str, ParcelRecord] = {}
        self.processed: Dict[str, Dict[str, Any]] = {}
        self.locked: set = set()
        self.updates: List[Tuple[str, Dict[str, Any]]] = []

    def add(self, order: Order) -> Order:
        self.orders[order.order_id] = order
        return order

    async def get(self, order_id: str) -> Optional[Order]:
        return self.orders.get(order_id)

    async def find_by_tracking_number(self, tracking_number: str) -> Optional[Order]:
        for order in self.orders.values():
            if order.tracking_number == tracking_number:
                return order
        return None

    async def update_status(self, order_id: str, changes: Dict[str, Any]) -> None:
        self.updates.append((order_id, changes))
        self.orders[order_id] = self.orders[order_id].model_copy(update=changes)

    async def get_parcel(self, order_id: str) -> Optional[ParcelRecord]:
        record = self.parcels.get(order_id)
        return record.model_copy(deep=True) if record else None

    async def save_parcel(self, record: ParcelRecord) -> None:
        self.parcels[record.order_id] = record.model_copy(deep=True)

    async def mark_event_processed(self, key: str, meta: Dict[str, Any]) -> bool:
        if key in self.processed:
            return False
        self.processed[key] = meta
        return True

    async def list_open_tracked_orders(self, limit: int = 100) -> List[Order]:
        closed = {OrderStatus.DELIVERED, OrderStatus.CANCELLED, OrderStatus.REFUNDED}
        return [o for o in self.orders.values() if o.tracking_number and o.status not in closed][:limit]

    @asynccontextmanager
    async def lock(self, order_id: str):
        if order_id in self.locked:
            raise OrderLockedError(f"Commande {order_id} en cours de traitement")
        self.locked.add(order_id)
        try:
            yield
        finally:
            self.locked.discard(order_id)


class RecordingNotifier:
    def __init__(self):
        self.customer: List[Dict[str, Any]] = []
        self.admin: List[Dict[str, Any]] = []

    async def notify(self, user_id: str, kind: NotificationKind, title: str, message: str, data: Dict[str, Any]) -> None:
        self.customer.append({"user_id": user_id, "kind": kind, "title": title, "message": message, "data": data})

    async def notify_admins(self, kind: NotificationKind, title: str, message: str, data: Dict[str, Any]) -> int:
        self.admin.append({"kind": kind, "title": title, "message": message, "data": data})
        return 1


class FakeLocationStore:
    """LocationStore en mémoire : mêmes règles d'upsert et de désactivation que MongoLocationStore."""

    def __init__(self):
        self.rows: Dict[str, Dict[int, Dict[str, Any]]] = {"wilayas": {}, "communes": {}, "stopdesks": {}}

    async def replace(self, kind: str, rows: List[Dict[str, Any]]) -> int:
        if not rows:
            return 0
        ids = {row["id"] for row in rows}
        for row_id, row in self.rows[kind].items():
            if row_id not in ids:
                row["active"] = False
        for row in rows:
            self.rows[kind][row["id"]] = {**row, "active": True}
        return len(rows)

    def _active(self, kind: str, region_id: int) -> List[Dict[str, Any]]:
        rows = [r for r in self.rows[kind].values() if r["region_id"] == region_id and r["active"]]
        return sorted(rows, key=lambda r: r["name"])

    async def sub_regions(self, region_id: int) -> List[SubRegion]:
        return [SubRegion(**r) for r in self._active("communes", region_id)]

    async def pickup_points(self, region_id: int) -> List[PickupPoint]:
        return [PickupPoint(**r) for r in self._active("stopdesks", region_id)]


@pytest.fixture
def store() -> FakeOrderStore:
    return FakeOrderStore()


@pytest.fixture
def locations() -> FakeLocationStore:
    return FakeLocationStore()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


def make_order(
    order_id: str = "ord_001",
    tracking_number: Optional[str] = "T1",
    payment_method: PaymentMethod = PaymentMethod.COD,
    cod_status: Optional[CodStatus] = CodStatus.DISPATCHED,
    status: OrderStatus = OrderStatus.SHIPPED,
    user_id: Optional[str] = "usr_client",
    **extra,
) -> Order:
    return Order(
        order_id=order_id,
        order_number=extra.pop("order_number", "CMD-1001"),
        user_id=user_id,
        payment_method=payment_method,
        status=status,
        cod_status=cod_status if payment_method == PaymentMethod.COD else None,
        tracking_number=tracking_number,
        shipped_at=extra.pop("shipped_at", datetime(2024, 5, 1, tzinfo=timezone.utc)),
        **extra,
    )


@pytest.fixture
def order_factory() -> Callable[..., Order]:
    return make_order


@pytest.fixture
def settings_factory() -> Callable[..., Settings]:
    return make_settings
