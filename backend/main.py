import asyncio
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from config import settings
from core.exceptions import OrderLockedError
from core.rate_limit import limiter
from database import connect_db, close_db, db
from services.geography_service import GeographyService
from services.location_sync import LocationSync, MongoLocationStore
from services.notification_service import MongoNotifier
from services.order_store import MongoOrderStore
from services.parcel_service import ParcelLifecycleClient
from services.pricing_service import FeeCalculator
from services.shipment_service import ShipmentService
from services.status_checker import StatusChecker
from services.status_service import ReconciliationEngine
from services.yalidine_client import YalidineClient

# Routers
from routers import admin_parcels, geography, shipping, webhooks

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def build_components(app: FastAPI) -> None:
    """Construit une seule fois les services partagés et les expose via app.state."""
    yalidine = YalidineClient(settings)
    store = MongoOrderStore(db, lock_ttl_seconds=settings.ORDER_LOCK_TTL_SECONDS)
    notifier = MongoNotifier(db, fcm_enabled=settings.FCM_ENABLED)
    locations = MongoLocationStore(db)
    parcels = ParcelLifecycleClient(yalidine)
    engine = ReconciliationEngine(store, notifier, settings.ESTIMATED_DELIVERY_HOURS)

    app.state.settings = settings
    app.state.yalidine = yalidine
    app.state.geography = GeographyService(yalidine, locations)
    app.state.location_sync = LocationSync(
        yalidine, locations,
        page_size=settings.YALIDINE_SYNC_PAGE_SIZE,
        pause_seconds=settings.YALIDINE_SYNC_PAUSE_SECONDS,
    )
    app.state.fee_calculator = FeeCalculator(settings, yalidine)
    app.state.shipments = ShipmentService(store, parcels)
    app.state.engine = engine
    app.state.status_checker = StatusChecker(store, parcels, engine)

    if not yalidine.is_configured:
        logger.warning("Yalidine non configuré : colis simulés et tarifs hors-ligne")
    if not settings.YALIDINE_WEBHOOK_SECRET:
        logger.warning("YALIDINE_WEBHOOK_SECRET absent : tous les webhooks seront refusés")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    await connect_db()
    build_components(app)
    task = None
    if settings.STATUS_POLL_INTERVAL_SECONDS > 0:
        task = asyncio.create_task(
            app.state.status_checker.run_forever(settings.STATUS_POLL_INTERVAL_SECONDS)
        )
    logger.info("Boutique livraison API started")
    yield
    # Shutdown
    if task:
        task.cancel()
    await close_db()
    logger.info("Boutique livraison API stopped")


app = FastAPI(
    title="Boutique Livraison API",
    description="Tarification et suivi des livraisons Yalidine (Algérie)",
    version="1.0.0",
    lifespan=lifespan,
)

# Rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(OrderLockedError)
async def order_locked_handler(request: Request, exc: OrderLockedError):
    # Une autre action admin est en cours sur la même commande
    return JSONResponse(status_code=status.HTTP_409_CONFLICT, content={"detail": exc.message})


# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.DEBUG else [settings.BASE_URL],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routers publics (sans auth)
app.include_router(geography.router, prefix="/api/geo", tags=["Géographie"])
app.include_router(shipping.router, prefix="/api/shipping", tags=["Shipping"])
app.include_router(webhooks.router, prefix="/api/webhooks", tags=["Webhooks"])

# Routers avec auth
app.include_router(admin_parcels.router, prefix="/api/admin", tags=["Admin Yalidine"])


@app.get("/health", tags=["Health"])
async def health():
    return {"status": "ok", "app": "boutique-livraison", "version": "1.0.0"}
