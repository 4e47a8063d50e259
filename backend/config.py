from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional


class Settings(BaseSettings):
    # App
    APP_ENV: str = "development"
    DEBUG: bool = True
    BASE_URL: str = "https://boutique-livraison.up.railway.app"

    # MongoDB
    MONGO_URL: str = "mongodb://localhost:27017"
    DB_NAME: str = "boutique"

    # JWT (jetons émis par le service d'authentification)
    JWT_SECRET: str = "changeme_minimum_32_chars_here_please"

    # Yalidine : les deux en-têtes sont obligatoires, sinon mode dégradé
    YALIDINE_API_BASE:       str = "https://api.yalidine.app/v1/"
    YALIDINE_API_ID:         Optional[str] = None
    YALIDINE_API_TOKEN:      Optional[str] = None
    YALIDINE_FROM_WILAYA_ID: int = 16     # Alger
    YALIDINE_WEBHOOK_SECRET: Optional[str] = None
    YALIDINE_TIMEOUT:        float = 15.0

    # Synchronisation de l'annuaire (wilayas, communes, stop desks)
    YALIDINE_SYNC_PAGE_SIZE:     int   = 50
    YALIDINE_SYNC_PAUSE_SECONDS: float = 0.8   # entre deux pages, limite de débit Yalidine

    # Tarification (DZD)
    CURRENCY:                 str   = "DZD"
    VOLUMETRIC_FACTOR:        float = 0.0002   # cm³ → kg équivalent
    OVERWEIGHT_THRESHOLD_KG:  float = 5.0
    STOPDESK_DISCOUNT:        float = 0.8
    ESTIMATED_DAYS_HOME:      int   = 3
    ESTIMATED_DAYS_STOPDESK:  int   = 2

    # Rapprochement des statuts
    ESTIMATED_DELIVERY_HOURS:     int = 24
    ORDER_LOCK_TTL_SECONDS:       int = 60
    STATUS_POLL_INTERVAL_SECONDS: int = 0   # 0 = pas de polling en tâche de fond

    # Notifications push
    FCM_ENABLED: bool = False

    model_config = SettingsConfigDict(
        env_file=[".env", "../.env"],  # cherche dans backend/ puis dans la racine
        case_sensitive=True,
        extra="ignore",
        frozen=True,
    )

    @property
    def yalidine_configured(self) -> bool:
        return bool(self.YALIDINE_API_BASE and self.YALIDINE_API_ID and self.YALIDINE_API_TOKEN)


settings = Settings()
