from typing import Any, Optional

from fastapi import HTTPException, status


# ── Erreurs métier livraison ──────────────────────────────────────────────────
class ShippingError(Exception):
    """Erreur de base du sous-système livraison, avec un code stable."""
    code = "SHIPPING_ERROR"

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code


class ConfigurationError(ShippingError):
    """Identifiants Yalidine absents : non bloquant, active le mode dégradé."""
    code = "CARRIER_NOT_CONFIGURED"


class TransportError(ShippingError):
    code = "CARRIER_UNREACHABLE"


class ResponseShapeError(ShippingError):
    code = "CARRIER_BAD_RESPONSE"

    def __init__(self, message: str, raw_body: Any = None):
        super().__init__(message)
        self.raw_body = raw_body


class CarrierHTTPError(ShippingError):
    """Yalidine a répondu avec un statut HTTP d'erreur ; le texte est conservé."""
    code = "CARRIER_ERROR"

    def __init__(self, message: str, status_code: int, raw_body: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.raw_body = raw_body


class DomainLookupError(ShippingError):
    code = "NO_DELIVERY_AVAILABLE"


class WebhookOrderNotFoundError(ShippingError):
    code = "ORDER_NOT_FOUND"


class SignatureError(ShippingError):
    code = "INVALID_SIGNATURE"


class OrderLockedError(ShippingError):
    code = "ORDER_LOCKED"


# ── Réponses HTTP ─────────────────────────────────────────────────────────────
def credentials_exception() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Identifiants invalides ou token expiré",
        headers={"WWW-Authenticate": "Bearer"},
    )


def forbidden_exception(detail: str = "Accès refusé") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail=detail,
    )


def not_found_exception(resource: str = "Ressource") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=f"{resource} introuvable",
    )


def conflict_exception(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail=detail,
    )


def bad_request_exception(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail=detail,
    )


def unauthorized_exception(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
    )


def bad_gateway_exception(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_502_BAD_GATEWAY,
        detail=detail,
    )
