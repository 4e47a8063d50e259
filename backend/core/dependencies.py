from typing import Optional
from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from config import Settings
from core.security import verify_access_token
from core.exceptions import credentials_exception, forbidden_exception
from models.common import UserRole
from services.geography_service import GeographyService
from services.location_sync import LocationSync
from services.pricing_service import FeeCalculator
from services.shipment_service import ShipmentService
from services.status_checker import StatusChecker
from services.status_service import ReconciliationEngine
from services.yalidine_client import YalidineClient

bearer_scheme = HTTPBearer(auto_error=False)


# ── Composants construits au démarrage (voir main.lifespan) ───────────────────

def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_yalidine_client(request: Request) -> YalidineClient:
    return request.app.state.yalidine


def get_geography(request: Request) -> GeographyService:
    return request.app.state.geography


def get_location_sync(request: Request) -> LocationSync:
    return request.app.state.location_sync


def get_fee_calculator(request: Request) -> FeeCalculator:
    return request.app.state.fee_calculator


def get_shipments(request: Request) -> ShipmentService:
    return request.app.state.shipments


def get_engine(request: Request) -> ReconciliationEngine:
    return request.app.state.engine


def get_status_checker(request: Request) -> StatusChecker:
    return request.app.state.status_checker


# ── Authentification ──────────────────────────────────────────────────────────

async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    config: Settings = Depends(get_settings),
) -> dict:
    """Les jetons sont émis par le service d'authentification ; on ne fait que les vérifier."""
    if not credentials:
        raise credentials_exception()
    payload = verify_access_token(credentials.credentials, config.JWT_SECRET)
    if not payload:
        raise credentials_exception()

    user_id = payload.get("sub")
    if not user_id:
        raise credentials_exception()
    return {"user_id": user_id, "role": payload.get("role")}


def require_role(*roles: UserRole):
    """
    Dépendance qui vérifie que l'utilisateur connecté possède l'un des rôles donnés.
    Usage : Depends(require_role(UserRole.ADMIN, UserRole.SUPERADMIN))
    """
    async def _check(current_user: dict = Depends(get_current_user)) -> dict:
        if current_user.get("role") not in [r.value for r in roles]:
            raise forbidden_exception()
        return current_user
    return _check


# Raccourci pratique
require_admin = require_role(UserRole.ADMIN, UserRole.SUPERADMIN)
