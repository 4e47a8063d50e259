"""
Tests de la synchronisation de l'annuaire Yalidine : pagination, repli des stop desks,
désactivation des entrées disparues, lecture du dernier annuaire synchronisé.
"""
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from pymongo.errors import PyMongoError

from core.exceptions import ConfigurationError, ResponseShapeError
from models.common import DataSource
from services.geography_service import GeographyService
from services.location_sync import COMMUNE_DESK_ID_OFFSET, LocationSync, MongoLocationStore

WILAYAS = [{"id": 16, "name": "Alger"}, {"id": 31, "name": "Oran"}]
COMMUNES = [
    {"id": 1601, "name": "Alger Centre", "wilaya_id": 16, "has_stop_desk": 1},
    {"id": 1602, "name": "Bab El Oued", "wilaya_id": 16, "has_stop_desk": 0},
    {"id": 3101, "name": "Oran", "wilaya_id": 31, "has_stop_desk": 1},
]
CENTERS = [
    {"center_id": 160101, "name": "Agence Didouche", "address": "5 rue Didouche Mourad",
     "commune_id": 1601, "commune_name": "Alger Centre", "wilaya_id": 16, "wilaya_name": "Alger"},
]


def page(items, **extra):
    return httpx.Response(200, json={"data": items, **extra})


def paged(pages):
    """Réponse selon le paramètre `page` ; la dernière page ne signale plus de suite."""
    def reply(request: httpx.Request) -> httpx.Response:
        index = int(request.url.params["page"]) - 1
        return page(pages[index], has_more=index < len(pages) - 1)
    return reply


def serve_directory(carrier, wilayas=None, communes=None, centers=None, desk_communes=None):
    carrier.on("GET", "wilayas/", paged([wilayas if wilayas is not None else WILAYAS]))

    def communes_reply(request: httpx.Request) -> httpx.Response:
        if request.url.params.get("has_stop_desk"):
            return page(desk_communes or [])
        return page(communes if communes is not None else COMMUNES)

    carrier.on("GET", "communes/", communes_reply)
    if centers is not None:
        carrier.on("GET", "centers/", page(centers))


@pytest.fixture
def sync(yalidine, locations):
    return LocationSync(yalidine, locations, page_size=2, pause_seconds=0)


class TestLocationSync:
    @pytest.mark.asyncio
    async def test_full_sync_counts_and_stores(self, sync, carrier, locations):
        serve_directory(carrier, centers=CENTERS)

        counts = await sync.sync()

        assert counts == {"wilayas": 2, "communes": 3, "stopdesks": 1}
        assert locations.rows["wilayas"][16]["code"] == "16"
        assert locations.rows["communes"][1601]["has_pickup_point"] is True
        desk = locations.rows["stopdesks"][160101]
        assert desk["region_id"] == 16
        assert desk["sub_region_id"] == 1601
        assert desk["address"] == "5 rue Didouche Mourad"

    @pytest.mark.asyncio
    async def test_pages_are_followed(self, sync, carrier, locations):
        serve_directory(carrier, centers=CENTERS)
        carrier.on("GET", "wilayas/", paged([WILAYAS, [{"id": 9, "name": "Blida"}]]))

        counts = await sync.sync()

        assert counts["wilayas"] == 3
        wilaya_calls = [r for r in carrier.requests if r.url.path.endswith("/wilayas/")]
        assert [r.url.params["page"] for r in wilaya_calls] == ["1", "2"]
        assert wilaya_calls[0].url.params["page_size"] == "2"

    @pytest.mark.asyncio
    async def test_next_link_also_means_more_pages(self, sync, carrier):
        serve_directory(carrier, centers=CENTERS)

        def wilayas(request: httpx.Request) -> httpx.Response:
            if request.url.params["page"] == "1":
                return page(WILAYAS, links={"next": "https://api.yalidine.test/v1/wilayas/?page=2"})
            return page([{"id": 9, "name": "Blida"}], links={"next": None})

        carrier.on("GET", "wilayas/", wilayas)

        assert (await sync.sync())["wilayas"] == 3

    @pytest.mark.asyncio
    async def test_missing_centers_fall_back_to_desk_communes(self, sync, carrier, locations):
        serve_directory(carrier, desk_communes=[
            {"id": 1601, "name": "Alger Centre", "wilaya_id": 16, "wilaya_name": "Alger", "has_stop_desk": 1},
        ])

        counts = await sync.sync()

        assert counts["stopdesks"] == 1
        desk = locations.rows["stopdesks"][1601 + COMMUNE_DESK_ID_OFFSET]
        assert desk["name"] == "Agence Yalidine Alger Centre"
        assert desk["address"] == "Alger Centre, Alger"
        assert desk["sub_region_id"] == 1601

    @pytest.mark.asyncio
    async def test_vanished_entries_are_deactivated(self, sync, carrier, locations):
        serve_directory(carrier, centers=CENTERS)
        await sync.sync()

        serve_directory(carrier, communes=COMMUNES[:1] + COMMUNES[2:], centers=CENTERS)
        await sync.sync()

        assert locations.rows["communes"][1602]["active"] is False
        assert [c.id for c in await locations.sub_regions(16)] == [1601]

    @pytest.mark.asyncio
    async def test_unreadable_entry_aborts_before_any_write(self, sync, carrier, locations):
        serve_directory(carrier, communes=[{"name": "Sans identifiant"}], centers=CENTERS)

        with pytest.raises(ResponseShapeError):
            await sync.sync()

        assert locations.rows["wilayas"] == {}

    @pytest.mark.asyncio
    async def test_unconfigured_carrier_raises(self, offline_yalidine, locations):
        with pytest.raises(ConfigurationError):
            await LocationSync(offline_yalidine, locations, pause_seconds=0).sync()
        assert locations.rows["communes"] == {}


def fake_db():
    collections = {}

    def collection(name):
        if name not in collections:
            col = MagicMock()
            col.bulk_write = AsyncMock()
            col.update_many = AsyncMock(return_value=MagicMock(modified_count=1))
            collections[name] = col
        return collections[name]

    db = MagicMock()
    db.__getitem__.side_effect = collection
    return db, collection


def cursor_of(docs):
    cursor = MagicMock()
    cursor.__aiter__.return_value = docs
    return cursor


class TestMongoLocationStore:
    @pytest.mark.asyncio
    async def test_replace_upserts_then_deactivates_the_rest(self):
        db, collection = fake_db()
        rows = [{"id": 1601, "name": "Alger Centre", "region_id": 16}, {"id": 1602, "name": "Bab El Oued", "region_id": 16}]

        assert await MongoLocationStore(db).replace("communes", rows) == 2

        communes = collection("yalidine_communes")
        ops = communes.bulk_write.await_args.args[0]
        assert [op._filter for op in ops] == [{"id": 1601}, {"id": 1602}]
        query, update = communes.update_many.await_args.args
        assert query == {"id": {"$nin": [1601, 1602]}, "active": True}
        assert update["$set"]["active"] is False

    @pytest.mark.asyncio
    async def test_empty_directory_keeps_previous_entries(self):
        db, collection = fake_db()

        assert await MongoLocationStore(db).replace("stopdesks", []) == 0

        collection("yalidine_stopdesks").bulk_write.assert_not_awaited()
        collection("yalidine_stopdesks").update_many.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_sub_regions_reads_active_communes(self):
        db, collection = fake_db()
        communes = collection("yalidine_communes")
        communes.find.return_value.sort.return_value = cursor_of([
            {"id": 1601, "name": "Alger Centre", "region_id": 16, "has_pickup_point": True,
             "active": True, "synced_at": "2024-05-01T00:00:00Z"},
        ])

        items = await MongoLocationStore(db).sub_regions(16)

        assert [c.name for c in items] == ["Alger Centre"]
        assert communes.find.call_args.args[0] == {"region_id": 16, "active": True}

    @pytest.mark.asyncio
    async def test_database_error_reads_as_empty(self):
        db, collection = fake_db()
        collection("yalidine_stopdesks").find.side_effect = PyMongoError("connexion perdue")

        assert await MongoLocationStore(db).pickup_points(16) == []


class TestSyncedFallback:
    @pytest.mark.asyncio
    async def test_offline_communes_come_from_last_sync(self, offline_yalidine, locations):
        await locations.replace("communes", [
            {"id": 1601, "name": "Alger Centre", "region_id": 16, "has_pickup_point": True},
        ])

        listing = await GeographyService(offline_yalidine, locations).list_sub_regions("Alger")

        assert listing.source == DataSource.OFFLINE
        assert listing.reason
        assert [c.id for c in listing.items] == [1601]

    @pytest.mark.asyncio
    async def test_offline_pickup_points_come_from_last_sync(self, offline_yalidine, locations):
        await locations.replace("stopdesks", [
            {"id": 160101, "name": "Agence Didouche", "address": "5 rue Didouche Mourad",
             "region_id": 16, "sub_region_id": 1601},
        ])

        listing = await GeographyService(offline_yalidine, locations).list_pickup_points("Alger")

        assert listing.source == DataSource.OFFLINE
        assert [p.name for p in listing.items] == ["Agence Didouche"]

    @pytest.mark.asyncio
    async def test_region_missing_from_sync_uses_embedded_catalog(self, offline_yalidine, locations):
        await locations.replace("communes", [
            {"id": 3101, "name": "Oran", "region_id": 31, "has_pickup_point": True},
        ])

        listing = await GeographyService(offline_yalidine, locations).list_sub_regions("Alger")

        assert any(c.name == "Bab Ezzouar" for c in listing.items)
