import re
import unicodedata
from typing import Callable, Iterable, Optional, TypeVar

T = TypeVar("T")


def mask_phone(phone: str) -> str:
    """
    Masque un numéro de téléphone en ne laissant que l'indicatif (si présent)
    et les 2 derniers chiffres.
    Format type: +213 555 12 34 56 -> +213 ••• •• 56
    """
    if not phone:
        return ""

    clean_phone = phone.replace(" ", "")
    if len(clean_phone) <= 4:
        return "••••"

    match = re.match(r"^(\+\d{1,3})", clean_phone)
    prefix = match.group(1) if match else ""
    suffix = clean_phone[-2:]
    return f"{prefix} ••• •• {suffix}" if prefix else f"••• •• {suffix}"


def fold_text(value: str) -> str:
    """'Livré au client' -> 'livre au client' (accents retirés, casse repliée)."""
    decomposed = unicodedata.normalize("NFD", value)
    stripped = "".join(c for c in decomposed if unicodedata.category(c) != "Mn")
    return " ".join(stripped.casefold().replace("_", " ").replace("-", " ").split())


def find_by_name(items: Iterable[T], name: str, key: Callable[[T], str]) -> Optional[T]:
    """
    Correspondance de nom insensible à la casse.
    1. nom identique ; 2. sinon première entrée où l'un contient l'autre.
    En cas d'ambiguïté, le premier élément dans l'ordre du catalogue gagne.
    """
    needle = (name or "").strip().casefold()
    if not needle:
        return None
    candidates = list(items)
    for item in candidates:
        if key(item).casefold() == needle:
            return item
    for item in candidates:
        hay = key(item).casefold()
        if needle in hay or hay in needle:
            return item
    return None
