"""
Client HTTP Yalidine : en-têtes d'authentification, appel unique (pas de retry), décodage JSON.
Docs : https://yalidine.app/app/dev/docs/api
"""
import logging
from typing import Any, Optional

import httpx

from config import Settings
from core.exceptions import CarrierHTTPError, ConfigurationError, ResponseShapeError, TransportError

logger = logging.getLogger(__name__)


class YalidineClient:
    """
    Transport partagé par l'annuaire, la tarification et le cycle de vie des colis.
    Lève ConfigurationError / TransportError / ResponseShapeError / CarrierHTTPError :
    les services appelants les convertissent en résultats structurés.
    """

    def __init__(self, config: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config
        self._transport = transport  # httpx.MockTransport dans les tests

    @property
    def is_configured(self) -> bool:
        return self.config.yalidine_configured

    def _headers(self) -> dict:
        return {
            "Content-Type": "application/json",
            "X-API-ID": self.config.YALIDINE_API_ID or "",
            "X-API-TOKEN": self.config.YALIDINE_API_TOKEN or "",
        }

    def _url(self, path: str) -> str:
        return f"{self.config.YALIDINE_API_BASE.rstrip('/')}/{path.lstrip('/')}"

    async def request(
        self,
        method: str,
        path: str,
        params: Optional[dict] = None,
        json: Any = None,
        allow_empty: bool = False,
    ) -> Any:
        if not self.is_configured:
            raise ConfigurationError("Identifiants Yalidine absents (YALIDINE_API_ID / YALIDINE_API_TOKEN)")

        url = self._url(path)
        try:
            async with httpx.AsyncClient(
                timeout=self.config.YALIDINE_TIMEOUT,
                transport=self._transport,
            ) as client:
                resp = await client.request(method, url, params=params, json=json, headers=self._headers())
        except httpx.HTTPError as e:
            logger.error("Erreur réseau Yalidine %s %s : %s", method, path, e)
            raise TransportError(f"Yalidine injoignable : {e}") from e

        text = resp.text
        body: Any = None
        if text.strip():
            try:
                body = resp.json()
            except ValueError:
                if resp.is_success:
                    logger.error("Réponse Yalidine non JSON (%s %s) : %s", method, path, text[:200])
                    raise ResponseShapeError(f"Réponse JSON invalide : {text[:200]}", raw_body=text)
                body = text
        elif not allow_empty and resp.is_success:
            raise ResponseShapeError("Réponse vide", raw_body=text)

        if not resp.is_success:
            message = _error_message(body) or f"HTTP {resp.status_code}: {resp.reason_phrase}"
            logger.warning("Yalidine %s %s → %s : %s", method, path, resp.status_code, message)
            raise CarrierHTTPError(message, status_code=resp.status_code, raw_body=body)

        return body


def _error_message(body: Any) -> Optional[str]:
    """Texte d'erreur renvoyé par Yalidine, affiché tel quel à l'opérateur."""
    if isinstance(body, str):
        return body[:500] or None
    if isinstance(body, dict):
        for key in ("message", "error", "detail"):
            value = body.get(key)
            if isinstance(value, str) and value:
                return value
            if isinstance(value, dict) and isinstance(value.get("message"), str):
                return value["message"]
    return None


def unwrap_list(body: Any, *keys: str) -> list:
    """Les listes Yalidine arrivent nues ou sous {"data": [...]}."""
    if isinstance(body, list):
        return body
    if isinstance(body, dict):
        for key in ("data", *keys):
            value = body.get(key)
            if isinstance(value, list):
                return value
    raise ResponseShapeError("Liste attendue dans la réponse Yalidine", raw_body=body)
