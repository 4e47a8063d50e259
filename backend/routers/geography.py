"""
Router géographie : wilayas, communes et stop desks (public).
"""
from fastapi import APIRouter, Depends, Query, Request

from core.dependencies import get_geography
from core.rate_limit import limiter
from models.geography import DirectoryListing, PickupPoint, SubRegion
from services.geography_service import GeographyService, list_regions

router = APIRouter()


@router.get("/wilayas", summary="Liste des 58 wilayas")
async def wilayas():
    regions = list_regions()
    return {"wilayas": [r.model_dump() for r in regions], "count": len(regions)}


@router.get("/communes", response_model=DirectoryListing[SubRegion], summary="Communes d'une wilaya")
@limiter.limit("60/minute")
async def communes(
    request: Request,
    wilaya: str = Query(..., min_length=1),
    geography: GeographyService = Depends(get_geography),
):
    return await geography.list_sub_regions(wilaya)


@router.get("/stopdesks", response_model=DirectoryListing[PickupPoint], summary="Stop desks d'une wilaya")
@limiter.limit("60/minute")
async def stopdesks(
    request: Request,
    wilaya: str = Query(..., min_length=1),
    geography: GeographyService = Depends(get_geography),
):
    return await geography.list_pickup_points(wilaya)
