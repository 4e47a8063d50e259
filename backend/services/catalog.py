"""
Données de référence embarquées : wilayas, communes hors-ligne, grille tarifaire de secours.
Aucune dépendance réseau : ces tables gardent le checkout fonctionnel quand Yalidine est injoignable.
"""
import math
from typing import Dict, List, NamedTuple, Tuple

from models.geography import Region, SubRegion

# ── Wilayas (58) ──────────────────────────────────────────────────────────────
REGIONS: Tuple[Region, ...] = tuple(
    Region(id=i, name=name, code=f"{i:02d}")
    for i, name in enumerate([
        "Adrar", "Chlef", "Laghouat", "Oum El Bouaghi", "Batna",
        "Béjaïa", "Biskra", "Béchar", "Blida", "Bouira",
        "Tamanrasset", "Tébessa", "Tlemcen", "Tiaret", "Tizi Ouzou",
        "Alger", "Djelfa", "Jijel", "Sétif", "Saïda",
        "Skikda", "Sidi Bel Abbès", "Annaba", "Guelma", "Constantine",
        "Médéa", "Mostaganem", "M'Sila", "Mascara", "Ouargla",
        "Oran", "El Bayadh", "Illizi", "Bordj Bou Arréridj", "Boumerdès",
        "El Tarf", "Tindouf", "Tissemsilt", "El Oued", "Khenchela",
        "Souk Ahras", "Tipaza", "Mila", "Aïn Defla", "Naâma",
        "Aïn Témouchent", "Ghardaïa", "Relizane", "El M'Ghair", "El Meniaa",
        "Ouled Djellal", "Bordj Baji Mokhtar", "Béni Abbès", "Timimoun", "Touggourt",
        "Djanet", "In Salah", "In Guezzam",
    ], start=1)
)


# ── Communes hors-ligne ───────────────────────────────────────────────────────
def _communes(region_id: int, first_id: int, names: List[str], pickup: Tuple[str, ...] = ()) -> List[SubRegion]:
    return [
        SubRegion(id=first_id + i, name=name, region_id=region_id, has_pickup_point=name in pickup)
        for i, name in enumerate(names)
    ]


OFFLINE_SUB_REGIONS: Dict[int, List[SubRegion]] = {
    16: _communes(16, 160, [
        "Alger Centre", "Sidi M'Hamed", "El Madania", "Hamma El Annasser", "Bab El Oued",
        "Bologhine", "Casbah", "Oued Koriche", "Bir Mourad Rais", "El Biar",
        "Bouzareah", "Birkhadem", "El Harrach", "Baraki", "Oued Smar",
        "Bourouba", "Hussein Dey", "Kouba", "Bachdjerrah", "Dar El Beida",
        "Bab Ezzouar", "Ben Aknoun", "Dely Brahim", "Hammamet", "Rais Hamidou",
        "Djasr Kasentina", "El Mouradia", "Hydra", "Mohammadia", "Bordj El Kiffan",
        "El Magharia", "Beni Messous",
    ], pickup=("Alger Centre", "Bab Ezzouar", "Hydra", "El Harrach")),
    31: _communes(31, 310, [
        "Oran", "Gdyel", "Bir El Djir", "Hassi Bounif", "Es Senia",
        "Arzew", "Bethioua", "Marsat El Hadjadj", "Ain Turk", "El Ançor",
        "Oued Tlelat", "Tafraoui", "Sidi Chami", "Boufatis", "Mers El Kebir",
        "Bousfer", "El Kerma", "El Braya", "Hassi Ben Okba", "Ben Freha",
        "Hassasna", "Sidi Ben Yebka", "Mesra", "Boutlelis", "Ain Kerma", "Ain Biya",
    ], pickup=("Oran", "Bir El Djir", "Es Senia")),
    25: _communes(25, 250, [
        "Constantine", "Hamma Bouziane", "Didouche Mourad", "El Khroub", "Ain Abid",
        "Zighoud Youcef", "Ouled Rahmoune", "Ain Smara", "Beni Hamiden", "El Aria",
        "Ibn Ziad", "Messaoud Boudjriou",
    ], pickup=("Constantine", "El Khroub")),
    9: _communes(9, 90, [
        "Blida", "Boufarik", "Larbaa", "Oued El Alleug", "Chebli",
        "Guerrouaou", "Soumaa", "Mouzaia", "El Affroun", "Chrea",
        "Hammam Elouane", "Bouarfa", "Beni Tamou", "Bouinan", "Ain Romana",
        "Djebabra", "Ben Khelil", "Souhane", "Ouled Yaich", "Chiffa",
        "Oued Djer", "Beni Mered", "Bouguerra", "Bougara", "Ouled Selama",
    ], pickup=("Blida", "Boufarik")),
}

GENERIC_SUB_REGION_SUFFIXES = (
    "Centre", "Est", "Ouest", "Nord", "Sud", "Ville", "Zone Industrielle", "Zone Commerciale",
)


def offline_sub_regions(region: Region) -> List[SubRegion]:
    """Communes embarquées, ou à défaut un découpage générique de la wilaya."""
    known = OFFLINE_SUB_REGIONS.get(region.id)
    if known:
        return list(known)
    return [
        SubRegion(
            id=region.id * 1000 + i,
            name=f"{region.name} {suffix}",
            region_id=region.id,
            has_pickup_point=suffix == "Centre",
        )
        for i, suffix in enumerate(GENERIC_SUB_REGION_SUFFIXES, start=1)
    ]


# ── Grille tarifaire de secours ───────────────────────────────────────────────
# Grille par wilaya de destination, départ Alger. Les wilayas 49 à 58
# (créées en 2019-2021) n'y figurent pas : elles passent par l'heuristique.
ZONE_FEE_TABLE_VERSION = "2019.1"


class ZoneFee(NamedTuple):
    zone:     int
    home:     float
    stopdesk: float


ZONE_FEE_TABLE: Dict[int, ZoneFee] = {
    # Zone 1 : Alger et environs
    16: ZoneFee(1, 400, 300),
    9:  ZoneFee(1, 450, 350),
    35: ZoneFee(1, 450, 350),
    42: ZoneFee(1, 450, 350),
    10: ZoneFee(1, 500, 400),
    15: ZoneFee(1, 500, 400),
    26: ZoneFee(1, 500, 400),
    # Zone 2 : Nord
    2:  ZoneFee(2, 550, 450),
    6:  ZoneFee(2, 550, 450),
    18: ZoneFee(2, 550, 450),
    21: ZoneFee(2, 550, 450),
    23: ZoneFee(2, 550, 450),
    27: ZoneFee(2, 550, 450),
    31: ZoneFee(2, 600, 500),
    44: ZoneFee(2, 500, 400),
    # Zone 3 : Centre, Est et Ouest
    4:  ZoneFee(3, 650, 550),
    5:  ZoneFee(3, 650, 550),
    12: ZoneFee(3, 700, 600),
    13: ZoneFee(3, 600, 500),
    14: ZoneFee(3, 650, 550),
    19: ZoneFee(3, 600, 500),
    20: ZoneFee(3, 650, 550),
    22: ZoneFee(3, 600, 500),
    24: ZoneFee(3, 650, 550),
    25: ZoneFee(3, 650, 550),
    28: ZoneFee(3, 650, 550),
    29: ZoneFee(3, 600, 500),
    34: ZoneFee(3, 600, 500),
    36: ZoneFee(3, 650, 550),
    38: ZoneFee(3, 650, 550),
    40: ZoneFee(3, 700, 600),
    41: ZoneFee(3, 650, 550),
    43: ZoneFee(3, 650, 550),
    46: ZoneFee(3, 600, 500),
    48: ZoneFee(3, 600, 500),
    # Zone 4 : Sud et Grand Sud
    1:  ZoneFee(4, 1000, 900),
    3:  ZoneFee(4, 800, 700),
    7:  ZoneFee(4, 750, 650),
    8:  ZoneFee(4, 850, 750),
    11: ZoneFee(4, 1000, 900),
    17: ZoneFee(4, 750, 650),
    30: ZoneFee(4, 800, 700),
    32: ZoneFee(4, 750, 650),
    33: ZoneFee(4, 1000, 900),
    37: ZoneFee(4, 1000, 900),
    39: ZoneFee(4, 800, 700),
    45: ZoneFee(4, 750, 650),
    47: ZoneFee(4, 800, 700),
}

# Supplément forfaitaire par tranche de poids : ≤1 kg / ≤3 kg / ≤5 kg / >5 kg
ZONE_WEIGHT_BRACKETS: Tuple[Tuple[float, float], ...] = (
    (1.0, 0.0),
    (3.0, 100.0),
    (5.0, 200.0),
    (math.inf, 400.0),
)

# Heuristique de dernier recours (domicile), mêmes tranches
HEURISTIC_WEIGHT_BRACKETS: Tuple[Tuple[float, float], ...] = (
    (1.0, 400.0),
    (3.0, 500.0),
    (5.0, 700.0),
    (math.inf, 1000.0),
)


def bracket_value(brackets: Tuple[Tuple[float, float], ...], weight_kg: float) -> float:
    for upper, value in brackets:
        if weight_kg <= upper:
            return value
    return brackets[-1][1]
