"""
Service géographie : wilayas, communes et stop desks.
L'annuaire Yalidine fait foi ; en cas d'échec on sert le dernier annuaire synchronisé,
à défaut le catalogue embarqué, marqués `offline`.
"""
import logging
from typing import List, Optional

from core.exceptions import ShippingError
from core.utils import find_by_name
from models.common import DataSource
from models.geography import DirectoryListing, PickupPoint, Region, SubRegion
from services.catalog import REGIONS, offline_sub_regions
from services.location_sync import LocationStore
from services.yalidine_client import YalidineClient, unwrap_list

logger = logging.getLogger(__name__)


def list_regions() -> List[Region]:
    return list(REGIONS)


def resolve_region(name: Optional[str]) -> Optional[Region]:
    """Nom saisi → wilaya ('alger', 'Tizi' ...). Premier match du catalogue si ambigu."""
    if not name:
        return None
    return find_by_name(REGIONS, name, key=lambda r: r.name)


def region_by_id(region_id: int) -> Optional[Region]:
    for region in REGIONS:
        if region.id == region_id:
            return region
    return None


def _fee(value) -> Optional[float]:
    return float(value) if value not in (None, "", 0) else None


def _sub_region_from_api(item: dict, region_id: int) -> SubRegion:
    return SubRegion(
        id=int(item["id"]),
        name=item.get("name") or item.get("commune_name") or "",
        region_id=int(item.get("wilaya_id") or region_id),
        has_pickup_point=bool(item.get("has_stop_desk")),
        express_home=_fee(item.get("express_home")),
        express_desk=_fee(item.get("express_desk")),
        economic_home=_fee(item.get("economic_home")),
        economic_desk=_fee(item.get("economic_desk")),
    )


def _offline_pickup_points(region: Region) -> List[PickupPoint]:
    communes = [c for c in offline_sub_regions(region) if c.has_pickup_point]
    return [
        PickupPoint(
            id=c.id,
            name=f"Agence Yalidine {c.name}",
            address=f"{c.name}, {region.name}",
            region_id=region.id,
            sub_region_id=c.id,
        )
        for c in communes
    ]


class GeographyService:
    def __init__(self, client: YalidineClient, locations: Optional[LocationStore] = None):
        self.client = client
        self.locations = locations

    async def _fallback_sub_regions(self, region: Region) -> List[SubRegion]:
        synced = await self.locations.sub_regions(region.id) if self.locations else []
        return synced or offline_sub_regions(region)

    async def _fallback_pickup_points(self, region: Region) -> List[PickupPoint]:
        synced = await self.locations.pickup_points(region.id) if self.locations else []
        return synced or _offline_pickup_points(region)

    async def list_sub_regions(self, region_name: str) -> DirectoryListing[SubRegion]:
        region = resolve_region(region_name)
        if region is None:
            logger.warning("Wilaya inconnue '%s' : aucune commune", region_name)
            return DirectoryListing[SubRegion](
                source=DataSource.OFFLINE, items=[], reason=f"Wilaya inconnue : {region_name}",
            )

        try:
            body = await self.client.request("GET", "communes", params={"wilaya_id": region.id})
            items = [_sub_region_from_api(item, region.id) for item in unwrap_list(body, "communes")]
        except (ShippingError, KeyError, TypeError, ValueError) as e:
            reason = getattr(e, "message", None) or str(e)
            logger.warning("Communes %s : catalogue hors-ligne (%s)", region.name, reason)
            return DirectoryListing[SubRegion](
                source=DataSource.OFFLINE, items=await self._fallback_sub_regions(region), reason=reason,
            )

        logger.info("%d communes récupérées pour %s", len(items), region.name)
        return DirectoryListing[SubRegion](source=DataSource.LIVE, items=items)

    async def list_pickup_points(self, region_name: str) -> DirectoryListing[PickupPoint]:
        region = resolve_region(region_name)
        if region is None:
            logger.warning("Wilaya inconnue '%s' : aucun stop desk", region_name)
            return DirectoryListing[PickupPoint](
                source=DataSource.OFFLINE, items=[], reason=f"Wilaya inconnue : {region_name}",
            )

        try:
            body = await self.client.request(
                "GET", "communes", params={"wilaya_id": region.id, "has_stop_desk": 1},
            )
            items = [
                PickupPoint(
                    id=int(item["id"]),
                    name=f"Agence Yalidine {item['name']}",
                    address=item.get("address") or f"{item['name']}, {region.name}",
                    region_id=region.id,
                    sub_region_id=int(item["id"]),
                )
                for item in unwrap_list(body, "stopdesks", "communes")
            ]
        except (ShippingError, KeyError, TypeError, ValueError) as e:
            reason = getattr(e, "message", None) or str(e)
            logger.warning("Stop desks %s : catalogue hors-ligne (%s)", region.name, reason)
            return DirectoryListing[PickupPoint](
                source=DataSource.OFFLINE, items=await self._fallback_pickup_points(region), reason=reason,
            )

        return DirectoryListing[PickupPoint](source=DataSource.LIVE, items=items)
