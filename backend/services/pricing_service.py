"""
Service de tarification livraison (Yalidine, DZD).

Formule (tarif live) :
  poids_facturable = max(poids, L × l × h × VOLUMETRIC_FACTOR)   (cm → kg)
  surpoids         = ceil(max(0, poids_facturable - 5) × oversize_fee)
  prix             = tarif_commune(mode) + surpoids

Trois sources, choisies une fois à la construction :
  live (API /fees/)  →  grille embarquée  →  heuristique par tranches de poids.
"""
import logging
import math
from typing import List, Optional, Sequence

from config import Settings
from core.exceptions import DomainLookupError, ShippingError
from core.utils import find_by_name
from models.common import DeliveryMode, Provenance
from models.geography import Region
from models.pricing import CommuneFee, Dimensions, FeeMatrix, FeeQuote, FeeQuoteRequest
from services.catalog import (
    HEURISTIC_WEIGHT_BRACKETS, ZONE_FEE_TABLE, ZONE_FEE_TABLE_VERSION, ZONE_WEIGHT_BRACKETS, bracket_value,
)
from services.geography_service import region_by_id, resolve_region
from services.yalidine_client import YalidineClient

logger = logging.getLogger(__name__)


# ── Poids ─────────────────────────────────────────────────────────────────────

def billable_weight(weight_kg: float, dimensions: Optional[Dimensions] = None, factor: float = 0.0002) -> float:
    """Poids réel ou volumétrique, le plus grand des deux."""
    if dimensions is None:
        return weight_kg
    volumetric = dimensions.length * dimensions.width * dimensions.height * factor
    return max(weight_kg, volumetric)


def overweight_fee(billable_kg: float, per_kg: float, threshold_kg: float = 5.0) -> int:
    if billable_kg <= threshold_kg:
        return 0
    return math.ceil((billable_kg - threshold_kg) * per_kg)


def _estimated_days(config: Settings, mode: DeliveryMode) -> int:
    if mode == DeliveryMode.STOPDESK:
        return config.ESTIMATED_DAYS_STOPDESK
    return config.ESTIMATED_DAYS_HOME


def _destination(req: FeeQuoteRequest) -> Region:
    region = resolve_region(req.destination_region)
    if region is None:
        raise DomainLookupError(f"Wilaya inconnue : {req.destination_region}")
    return region


# ── Sources de tarifs ─────────────────────────────────────────────────────────

class FeeProvider:
    """Une source de tarif. Lève ShippingError quand elle ne sait pas répondre."""
    provenance: Provenance

    async def quote(self, req: FeeQuoteRequest) -> FeeQuote:
        raise NotImplementedError


def _parse_fee_matrix(body) -> FeeMatrix:
    if not isinstance(body, dict) or not isinstance(body.get("per_commune"), dict):
        raise ShippingError("Grille /fees/ sans per_commune")
    per_commune = {
        key: CommuneFee(**value) for key, value in body["per_commune"].items() if isinstance(value, dict)
    }
    return FeeMatrix(
        from_wilaya_name=body.get("from_wilaya_name"),
        to_wilaya_name=body.get("to_wilaya_name"),
        zone=body.get("zone"),
        retour_fee=body.get("retour_fee") or 0,
        cod_percentage=body.get("cod_percentage") or 0,
        insurance_percentage=body.get("insurance_percentage") or 0,
        oversize_fee=body.get("oversize_fee") or 0,
        per_commune=per_commune,
    )


class LiveFeeProvider(FeeProvider):
    provenance = Provenance.LIVE

    def __init__(self, config: Settings, client: YalidineClient):
        self.config = config
        self.client = client

    async def fetch_fee_matrix(self, origin: Region, destination: Region) -> FeeMatrix:
        body = await self.client.request(
            "GET", "fees/", params={"from_wilaya_id": origin.id, "to_wilaya_id": destination.id},
        )
        try:
            return _parse_fee_matrix(body)
        except (TypeError, ValueError) as e:
            raise ShippingError(f"Grille /fees/ illisible : {e}")

    async def quote(self, req: FeeQuoteRequest) -> FeeQuote:
        destination = _destination(req)
        origin = resolve_region(req.origin_region) if req.origin_region else None
        origin = origin or region_by_id(self.config.YALIDINE_FROM_WILAYA_ID)

        matrix = await self.fetch_fee_matrix(origin, destination)
        communes = list(matrix.per_commune.values())
        if not communes:
            raise ShippingError(f"Aucune commune tarifée pour {destination.name}")

        commune: Optional[CommuneFee] = None
        if req.destination_sub_region:
            commune = find_by_name(communes, req.destination_sub_region, key=lambda c: c.commune_name)
        degraded = commune is None
        if degraded:
            commune = communes[0]
            if req.destination_sub_region:
                logger.warning(
                    "Commune '%s' introuvable à %s, tarif de '%s' appliqué",
                    req.destination_sub_region, destination.name, commune.commune_name,
                )

        if req.delivery_mode == DeliveryMode.STOPDESK:
            base = commune.express_desk or commune.economic_desk
        else:
            base = commune.express_home or commune.economic_home
        if not base:
            # Réponse live sans tarif pour ce mode : la commune n'est pas desservie
            raise DomainLookupError(
                f"Pas de livraison {req.delivery_mode.value} pour {commune.commune_name}"
            )

        billable = billable_weight(req.weight_kg, req.dimensions, self.config.VOLUMETRIC_FACTOR)
        surcharge = overweight_fee(billable, matrix.oversize_fee, self.config.OVERWEIGHT_THRESHOLD_KG)

        return FeeQuote(
            cost=base + surcharge,
            currency=self.config.CURRENCY,
            estimated_days=_estimated_days(self.config, req.delivery_mode),
            provenance=self.provenance,
            degraded_match=degraded,
            details={
                "zone":              matrix.zone,
                "commune":           commune.commune_name,
                "base_delivery_fee": base,
                "billable_weight":   billable,
                "overweight_fee":    surcharge,
                "oversize_fee_per_kg": matrix.oversize_fee,
            },
        )


class ZoneTableFeeProvider(FeeProvider):
    """Grille embarquée par wilaya de destination + supplément par tranche de poids."""
    provenance = Provenance.CACHED_TABLE

    def __init__(self, config: Settings):
        self.config = config

    async def quote(self, req: FeeQuoteRequest) -> FeeQuote:
        destination = _destination(req)
        entry = ZONE_FEE_TABLE.get(destination.id)
        if entry is None:
            raise ShippingError(f"{destination.name} absente de la grille {ZONE_FEE_TABLE_VERSION}")

        base = entry.stopdesk if req.delivery_mode == DeliveryMode.STOPDESK else entry.home
        billable = billable_weight(req.weight_kg, req.dimensions, self.config.VOLUMETRIC_FACTOR)
        surcharge = bracket_value(ZONE_WEIGHT_BRACKETS, billable)

        return FeeQuote(
            cost=base + surcharge,
            currency=self.config.CURRENCY,
            estimated_days=_estimated_days(self.config, req.delivery_mode),
            provenance=self.provenance,
            details={
                "zone":            entry.zone,
                "table_version":   ZONE_FEE_TABLE_VERSION,
                "base_delivery_fee": base,
                "billable_weight": billable,
                "weight_surcharge": surcharge,
            },
        )


class HeuristicFeeProvider(FeeProvider):
    """Dernier recours : 400 / 500 / 700 / 1000 DZD selon le poids, -20 % en stop desk."""
    provenance = Provenance.HEURISTIC

    def __init__(self, config: Settings):
        self.config = config

    async def quote(self, req: FeeQuoteRequest) -> FeeQuote:
        destination = _destination(req)
        billable = billable_weight(req.weight_kg, req.dimensions, self.config.VOLUMETRIC_FACTOR)
        cost = bracket_value(HEURISTIC_WEIGHT_BRACKETS, billable)
        if req.delivery_mode == DeliveryMode.STOPDESK:
            cost = round(cost * self.config.STOPDESK_DISCOUNT)

        return FeeQuote(
            cost=cost,
            currency=self.config.CURRENCY,
            estimated_days=_estimated_days(self.config, req.delivery_mode),
            provenance=self.provenance,
            details={"wilaya": destination.name, "billable_weight": billable},
        )


def select_providers(config: Settings, client: YalidineClient) -> List[FeeProvider]:
    providers: List[FeeProvider] = []
    if client.is_configured:
        providers.append(LiveFeeProvider(config, client))
    else:
        logger.warning("Yalidine non configuré : tarification sur grille embarquée uniquement")
    providers.append(ZoneTableFeeProvider(config))
    providers.append(HeuristicFeeProvider(config))
    return providers


class FeeCalculator:
    def __init__(
        self,
        config: Settings,
        client: YalidineClient,
        providers: Optional[Sequence[FeeProvider]] = None,
    ):
        self.config = config
        self.providers = list(providers) if providers is not None else select_providers(config, client)

    async def quote(self, req: FeeQuoteRequest) -> FeeQuote:
        """
        Premier tarif obtenu dans l'ordre des sources.
        DomainLookupError : destination non desservie (arrêt immédiat) ou aucune source n'a répondu.
        """
        failures = []
        for provider in self.providers:
            try:
                quote = await provider.quote(req)
            except DomainLookupError:
                raise
            except ShippingError as e:
                logger.warning("Tarif %s indisponible : %s", provider.provenance.value, e.message)
                failures.append(f"{provider.provenance.value}: {e.message}")
                continue

            if failures:
                quote.details["fallback_reasons"] = failures
            logger.info(
                "Devis %s %s : %.0f %s (%s)",
                req.destination_region, req.delivery_mode.value, quote.cost, quote.currency, quote.provenance.value,
            )
            return quote

        raise DomainLookupError(f"Aucune livraison disponible pour {req.destination_region}")
