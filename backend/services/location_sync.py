"""
Synchronisation de l'annuaire Yalidine (wilayas, communes, stop desks) vers MongoDB.
Les collections synchronisées servent de catalogue hors-ligne avant le catalogue embarqué.
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol

from pymongo import UpdateOne
from pymongo.errors import PyMongoError

from core.exceptions import ResponseShapeError, ShippingError
from models.geography import PickupPoint, Region, SubRegion
from services.yalidine_client import YalidineClient, unwrap_list

logger = logging.getLogger(__name__)

LOCATION_COLLECTIONS = {
    "wilayas":   "yalidine_wilayas",
    "communes":  "yalidine_communes",
    "stopdesks": "yalidine_stopdesks",
}

SYNC_PAGE_SIZE = 50
SYNC_PAUSE_SECONDS = 0.8
MAX_PAGES = 200

# Stop desks déduits des communes : plage d'identifiants distincte des centres
COMMUNE_DESK_ID_OFFSET = 100000


class LocationStore(Protocol):
    async def replace(self, kind: str, rows: List[Dict[str, Any]]) -> int: ...

    async def sub_regions(self, region_id: int) -> List[SubRegion]: ...

    async def pickup_points(self, region_id: int) -> List[PickupPoint]: ...


class MongoLocationStore:
    def __init__(self, db):
        self.db = db

    async def replace(self, kind: str, rows: List[Dict[str, Any]]) -> int:
        """Upsert par `id`, puis désactivation de ce que Yalidine ne renvoie plus."""
        collection = self.db[LOCATION_COLLECTIONS[kind]]
        if not rows:
            # Liste vide : on garde le dernier annuaire connu
            logger.warning("Annuaire Yalidine %s vide : rien n'est désactivé", kind)
            return 0

        now = datetime.now(timezone.utc)
        await collection.bulk_write([
            UpdateOne({"id": row["id"]}, {"$set": {**row, "active": True, "synced_at": now}}, upsert=True)
            for row in rows
        ])
        stale = await collection.update_many(
            {"id": {"$nin": [row["id"] for row in rows]}, "active": True},
            {"$set": {"active": False, "synced_at": now}},
        )
        if stale.modified_count:
            logger.info("%s : %d entrées désactivées", kind, stale.modified_count)
        return len(rows)

    async def _active(self, kind: str, region_id: int, sort_key: str) -> List[dict]:
        try:
            cursor = self.db[LOCATION_COLLECTIONS[kind]].find(
                {"region_id": region_id, "active": True}, {"_id": 0},
            ).sort(sort_key, 1)
            return [doc async for doc in cursor]
        except PyMongoError as e:
            logger.warning("Annuaire synchronisé %s illisible : %s", kind, e)
            return []

    async def sub_regions(self, region_id: int) -> List[SubRegion]:
        return [SubRegion(**doc) for doc in await self._active("communes", region_id, "name")]

    async def pickup_points(self, region_id: int) -> List[PickupPoint]:
        return [PickupPoint(**doc) for doc in await self._active("stopdesks", region_id, "name")]


def _has_next_page(body: Any) -> bool:
    if not isinstance(body, dict):
        return False
    links = body.get("links")
    return bool(body.get("has_more")) or (isinstance(links, dict) and bool(links.get("next")))


def _region(item: dict) -> Region:
    region_id = int(item["id"])
    return Region(id=region_id, name=item["name"], code=f"{region_id:02d}")


def _commune(item: dict) -> SubRegion:
    return SubRegion(
        id=int(item["id"]),
        name=item["name"],
        region_id=int(item["wilaya_id"]),
        has_pickup_point=bool(item.get("has_stop_desk")),
    )


def _center(item: dict) -> PickupPoint:
    commune_id = item.get("commune_id")
    return PickupPoint(
        id=int(item["center_id"]),
        name=item["name"],
        address=item.get("address") or f"{item.get('commune_name', '')}, {item.get('wilaya_name', '')}",
        region_id=int(item["wilaya_id"]),
        sub_region_id=int(commune_id) if commune_id else None,
    )


def _commune_desk(item: dict) -> PickupPoint:
    return PickupPoint(
        id=int(item["id"]) + COMMUNE_DESK_ID_OFFSET,
        name=f"Agence Yalidine {item['name']}",
        address=f"{item['name']}, {item.get('wilaya_name') or 'Algérie'}",
        region_id=int(item["wilaya_id"]),
        sub_region_id=int(item["id"]),
    )


class LocationSync:
    def __init__(
        self,
        client: YalidineClient,
        store: LocationStore,
        page_size: int = SYNC_PAGE_SIZE,
        pause_seconds: float = SYNC_PAUSE_SECONDS,
    ):
        self.client = client
        self.store = store
        self.page_size = page_size
        self.pause_seconds = pause_seconds

    async def _fetch_all(self, path: str, params: Optional[Dict[str, Any]] = None) -> List[dict]:
        items: List[dict] = []
        for page in range(1, MAX_PAGES + 1):
            body = await self.client.request(
                "GET", path, params={**(params or {}), "page": page, "page_size": self.page_size},
            )
            items.extend(unwrap_list(body, "items"))
            if not _has_next_page(body):
                return items
            await asyncio.sleep(self.pause_seconds)
        logger.warning("%s : arrêt après %d pages", path, MAX_PAGES)
        return items

    async def _fetch(self, path: str, parse, params: Optional[Dict[str, Any]] = None) -> list:
        items = await self._fetch_all(path, params)
        try:
            return [parse(item) for item in items]
        except (KeyError, TypeError, ValueError) as e:
            raise ResponseShapeError(f"Entrée {path} illisible : {e}", raw_body=items[:3])

    async def _fetch_pickup_points(self) -> List[PickupPoint]:
        try:
            centers = await self._fetch("centers/", _center)
        except ShippingError as e:
            logger.warning("Centres Yalidine indisponibles (%s) : repli sur les communes", e.message)
            centers = []
        if centers:
            return centers
        await asyncio.sleep(self.pause_seconds)
        return await self._fetch("communes/", _commune_desk, {"has_stop_desk": "true"})

    async def sync(self) -> Dict[str, int]:
        """Tout est lu avant la première écriture : un échec réseau ne laisse pas d'annuaire partiel."""
        regions = await self._fetch("wilayas/", _region)
        await asyncio.sleep(self.pause_seconds)
        communes = await self._fetch("communes/", _commune)
        await asyncio.sleep(self.pause_seconds)
        stopdesks = await self._fetch_pickup_points()

        counts = {
            "wilayas":   await self.store.replace("wilayas", [r.model_dump() for r in regions]),
            "communes":  await self.store.replace("communes", [c.model_dump() for c in communes]),
            "stopdesks": await self.store.replace("stopdesks", [p.model_dump() for p in stopdesks]),
        }
        logger.info("Annuaire Yalidine synchronisé : %s", counts)
        return counts
