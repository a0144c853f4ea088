# configurator.py
"""
Turns an approved design and a chosen blueprint into a published Printify product.

The remote calls run one after another and are not transactional. Each
completed step is recorded on a ConfigurationSaga; passing the same saga
back in after a failure resumes from the first unfinished step instead of
starting over (a product created before a failed publish is reused, not
duplicated). Nothing is rolled back.
"""

import asyncio
import logging
import uuid
from io import BytesIO
from typing import Any, Awaitable, Callable, Dict, Optional

from PIL import Image

from .errors import NoProviderError, NoVariantsError, ProductConfigurationError
from .models import CatalogEntry, ConfigurationSaga, ProductConfigResult
from .printify import PrintifyClient
from .settings import settings

logger = logging.getLogger(__name__)

DEFAULT_PLACEMENT = "front"
PRODUCT_TITLE = "Custom {title}"
PRODUCT_DESCRIPTION = "AI-Generated Custom Product"


def reencode_png(raw: bytes) -> bytes:
    """Validates downloaded image bytes and re-encodes them as PNG."""
    with Image.open(BytesIO(raw)) as img:
        img.load()
        converted = img.convert("RGBA")
    out = BytesIO()
    converted.save(out, format="PNG")
    return out.getvalue()


def build_product_payload(entry: CatalogEntry, provider_id: int, variant_id: int, upload_id: str) -> Dict[str, Any]:
    """Printify product body: one variant, the design centred on the front, unscaled and unrotated."""
    return {
        "title": PRODUCT_TITLE.format(title=entry.title),
        "description": PRODUCT_DESCRIPTION,
        "blueprint_id": entry.id,
        "print_provider_id": provider_id,
        "variants": [{"id": variant_id, "price": settings.PRINTIFY_DEFAULT_PRICE, "is_enabled": True}],
        "print_areas": [
            {
                "variant_ids": [variant_id],
                "placeholders": [
                    {
                        "position": DEFAULT_PLACEMENT,
                        "images": [{"id": upload_id, "x": 0.5, "y": 0.5, "scale": 1, "angle": 0}],
                    }
                ],
            }
        ],
    }


class ConfigurationBuilder:
    def __init__(self, printify: PrintifyClient, default_provider_id: Optional[int] = None):
        self.printify = printify
        self.default_provider_id = (
            default_provider_id if default_provider_id is not None else settings.PRINTIFY_DEFAULT_PROVIDER_ID
        )

    async def configure(
        self,
        entry: CatalogEntry,
        design_url: str,
        saga: Optional[ConfigurationSaga] = None,
    ) -> ProductConfigResult:
        """
        Runs (or resumes) the configuration saga for one blueprint.

        Raises:
            ProductConfigurationError: naming the failed step, with the originating message.
        """
        saga = saga or ConfigurationSaga(entry_id=entry.id, design_url=design_url)
        logger.info(f"Configuring product for blueprint {entry.id}")

        await self._step(saga, "provider-resolved", lambda: self._resolve_provider(entry, saga))
        await self._step(saga, "variants-resolved", lambda: self._resolve_variants(entry, saga))
        await self._step(saga, "asset-uploaded", lambda: self._upload_design(entry, saga))
        await self._step(saga, "product-created", lambda: self._create_product(entry, saga))
        await self._step(saga, "published", lambda: self._publish(saga))

        logger.info(f"Product published successfully: {saga.product_id}")
        return ProductConfigResult(product_id=saga.product_id)

    async def _step(self, saga: ConfigurationSaga, name: str, action: Callable[[], Awaitable[str]]) -> None:
        if saga.is_done(name):
            logger.info(f"Configuration step '{name}' already done for blueprint {saga.entry_id}, skipping")
            return
        try:
            detail = await action()
        except Exception as e:
            saga.record(name, "failed", str(e))
            logger.error(f"Configuration step '{name}' failed for blueprint {saga.entry_id}: {e}")
            raise ProductConfigurationError(name, str(e)) from e
        saga.record(name, "done", detail)

    async def _resolve_provider(self, entry: CatalogEntry, saga: ConfigurationSaga) -> str:
        providers = await self.printify.get_providers_for_blueprint(entry.id)
        ids = [p["id"] for p in providers if isinstance(p, dict) and p.get("id") is not None]
        if not ids:
            raise NoProviderError(entry.id)
        saga.provider_id = self.default_provider_id if self.default_provider_id in ids else ids[0]
        return f"provider {saga.provider_id}"

    async def _resolve_variants(self, entry: CatalogEntry, saga: ConfigurationSaga) -> str:
        variants = await self.printify.get_variants_for_blueprint(entry.id, saga.provider_id)
        ids = [v["id"] for v in variants if isinstance(v, dict) and v.get("id") is not None]
        if not ids:
            raise NoVariantsError(entry.id, saga.provider_id)
        saga.variant_ids = ids
        return f"{len(ids)} variants"

    async def _upload_design(self, entry: CatalogEntry, saga: ConfigurationSaga) -> str:
        raw = await self.printify.fetch_image(saga.design_url)
        # Pillow decoding is blocking work
        png = await asyncio.to_thread(reencode_png, raw)
        saga.upload_id = await self.printify.upload_image(f"design_{entry.id}_{uuid.uuid4().hex}.png", png)
        return f"upload {saga.upload_id}"

    async def _create_product(self, entry: CatalogEntry, saga: ConfigurationSaga) -> str:
        payload = build_product_payload(entry, saga.provider_id, saga.variant_ids[0], saga.upload_id)
        product = await self.printify.create_product(payload)
        saga.product_id = str(product["id"])
        return f"product {saga.product_id}"

    async def _publish(self, saga: ConfigurationSaga) -> str:
        await self.printify.publish_product(saga.product_id)
        return "published"
