# printify.py
"""
Printify catalog and commerce client.

Wraps the handful of Printify v1 endpoints the conversation needs: catalog
blueprints, print providers and variants for a blueprint, image uploads,
shop product creation and publishing. Every failure is raised as a
CatalogError carrying the remote's message; nothing is retried here.
"""

import base64
import logging
from typing import Any, Dict, List, Optional

import httpx
from pydantic import ValidationError

from .errors import CatalogError
from .models import CatalogEntry
from .settings import settings

logger = logging.getLogger(__name__)

# Publishing flags sent with every publish call
PUBLISH_FLAGS = {"title": True, "description": True, "images": True, "variants": True, "tags": True}


class PrintifyClient:
    def __init__(
        self,
        token: Optional[str] = None,
        shop_id: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.token = token if token is not None else settings.PRINTIFY_API_TOKEN
        self.shop_id = shop_id if shop_id is not None else settings.PRINTIFY_SHOP_ID
        self.base_url = (base_url or settings.PRINTIFY_API_URL).rstrip("/")
        self.timeout = timeout or settings.PRINTIFY_TIMEOUT
        self._transport = transport
        if not self.token:
            logger.warning("PRINTIFY_API_TOKEN is not set. Catalog calls will fail.")

    async def _request(self, method: str, path: str, label: str, **kwargs) -> Any:
        """
        Single async HTTP request against Printify.

        Raises:
            CatalogError: on HTTP errors, network errors, timeouts or a non-JSON body.
        """
        url = f"{self.base_url}{path}"
        headers = {"Authorization": f"Bearer {self.token}"}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.request(method, url, headers=headers, **kwargs)
                response.raise_for_status()
            if not response.content:
                return {}
            return response.json()
        except httpx.TimeoutException as e:
            logger.error(f"Printify {label} timed out after {self.timeout}s")
            raise CatalogError(f"Printify {label} Error: request timed out") from e
        except httpx.HTTPStatusError as e:
            logger.error(f"Printify {label} HTTP error: {e.response.status_code} - {e.response.text[:200]}")
            raise CatalogError(f"Printify {label} Error ({e.response.status_code}): {e.response.text[:200]}") from e
        except httpx.RequestError as e:
            logger.error(f"Network error during Printify {label}: {e}")
            raise CatalogError(f"Printify {label} Error: {e}") from e
        except ValueError as e:
            logger.error(f"Printify {label} returned a non-JSON body")
            raise CatalogError(f"Printify {label} Error: unreadable response") from e

    # --- Catalog ---

    async def get_blueprints(self) -> List[CatalogEntry]:
        logger.info("📡 Fetching blueprints from Printify catalog...")
        data = await self._request("GET", "/catalog/blueprints.json", "Blueprints")
        items = data.get("data", data) if isinstance(data, dict) else data
        if isinstance(items, dict):
            items = [items]
        if not isinstance(items, list):
            raise CatalogError("Printify Blueprints Error: invalid catalog data")
        try:
            entries = [CatalogEntry.model_validate(item) for item in items]
        except ValidationError as e:
            logger.error(f"Printify blueprint payload failed validation: {e}")
            raise CatalogError("Printify Blueprints Error: invalid catalog data") from e
        logger.info(f"✅ Retrieved {len(entries)} blueprints from Printify.")
        return entries

    async def get_providers_for_blueprint(self, blueprint_id: int) -> List[Dict[str, Any]]:
        data = await self._request("GET", f"/catalog/blueprints/{blueprint_id}/print_providers.json", "Providers")
        return data if isinstance(data, list) else []

    async def get_variants_for_blueprint(self, blueprint_id: int, provider_id: int) -> List[Dict[str, Any]]:
        path = f"/catalog/blueprints/{blueprint_id}/print_providers/{provider_id}/variants.json"
        data = await self._request("GET", path, "Variants")
        if isinstance(data, dict):
            return data.get("variants") or []
        return data if isinstance(data, list) else []

    # --- Commerce ---

    async def upload_image(self, file_name: str, png_bytes: bytes) -> str:
        payload = {"file_name": file_name, "contents": base64.b64encode(png_bytes).decode("ascii")}
        data = await self._request("POST", "/uploads/images.json", "Upload", json=payload)
        upload_id = data.get("id") if isinstance(data, dict) else None
        if not upload_id:
            logger.error(f"Printify upload returned no image ID. Resp: {str(data)[:200]}")
            raise CatalogError("Printify Upload Error: no image ID returned")
        logger.info(f"Uploaded {file_name} to Printify, ID: {upload_id}")
        return str(upload_id)

    async def create_product(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        data = await self._request("POST", f"/shops/{self.shop_id}/products.json", "Create Product", json=payload)
        if not isinstance(data, dict) or not data.get("id"):
            raise CatalogError("Printify Create Product Error: no product ID returned")
        return data

    async def publish_product(self, product_id: str) -> Dict[str, Any]:
        path = f"/shops/{self.shop_id}/products/{product_id}/publish.json"
        data = await self._request("POST", path, "Publish", json=PUBLISH_FLAGS)
        return data if isinstance(data, dict) else {}

    async def fetch_image(self, url: str) -> bytes:
        """Downloads a design image. Not a Printify call, but shares the timeout and error path."""
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport, follow_redirects=True) as client:
                response = await client.get(url)
                response.raise_for_status()
            return response.content
        except httpx.HTTPStatusError as e:
            raise CatalogError(f"Design download failed ({e.response.status_code})") from e
        except httpx.RequestError as e:
            raise CatalogError(f"Design download failed: {e}") from e
