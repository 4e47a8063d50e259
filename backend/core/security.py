import hashlib
import hmac
import json
from typing import Optional

from jose import jwt, JWTError

from config import Settings
from core.exceptions import SignatureError

# ── JWT ───────────────────────────────────────────────────────────────────────
ALGORITHM = "HS256"


def decode_token(token: str, secret: str) -> dict:
    """Lève JWTError si invalide ou expiré."""
    return jwt.decode(token, secret, algorithms=[ALGORITHM])


def verify_access_token(token: str, secret: str) -> Optional[dict]:
    try:
        payload = decode_token(token, secret)
        if payload.get("type") != "access":
            return None
        return payload
    except JWTError:
        return None


# ── Mock tracking ─────────────────────────────────────────────────────────────
MOCK_TRACKING_PREFIX = "MOCK-"


def mock_tracking_code(order_id: str) -> str:
    """Tracking déterministe pour le mode hors-ligne : MOCK-1A2B3C4D5E"""
    digest = hashlib.sha1(order_id.encode()).hexdigest()[:10].upper()
    return f"{MOCK_TRACKING_PREFIX}{digest}"


def is_mock_tracking(tracking: Optional[str]) -> bool:
    return bool(tracking) and tracking.startswith(MOCK_TRACKING_PREFIX)


# ── Signature webhook Yalidine (HMAC-SHA256) ──────────────────────────────────
def compute_webhook_signature(body: bytes, secret: str) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def canonical_body(payload: dict) -> bytes:
    """Forme canonique d'un payload signé dans son propre corps (champ signature exclu)."""
    unsigned = {k: v for k, v in payload.items() if k != "signature"}
    return json.dumps(unsigned, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode()


def verify_webhook_signature(raw_body: bytes, header_signature: Optional[str], config: Settings) -> None:
    """
    Vérification obligatoire, avant toute mutation.
    Signature dans l'en-tête : HMAC du corps brut.
    Sinon champ `signature` du corps : HMAC de la forme canonique sans ce champ.
    Lève SignatureError.
    """
    secret = config.YALIDINE_WEBHOOK_SECRET
    if not secret:
        raise SignatureError("YALIDINE_WEBHOOK_SECRET non configuré : webhooks refusés")

    if header_signature:
        expected = compute_webhook_signature(raw_body, secret)
        if hmac.compare_digest(header_signature.strip().lower(), expected):
            return
        raise SignatureError("Signature invalide")

    try:
        payload = json.loads(raw_body)
    except ValueError:
        raise SignatureError("Signature manquante")
    body_signature = payload.get("signature") if isinstance(payload, dict) else None
    if not body_signature:
        raise SignatureError("Signature manquante")
    expected = compute_webhook_signature(canonical_body(payload), secret)
    if not hmac.compare_digest(str(body_signature).lower(), expected):
        raise SignatureError("Signature invalide")
