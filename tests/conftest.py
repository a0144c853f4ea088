import asyncio
import json
from io import BytesIO
from typing import List, Optional

import pytest
from PIL import Image

from merchmate.configurator import ConfigurationBuilder
from merchmate.designs import DesignCycle
from merchmate.errors import AIServiceError, AnalysisFailure, CatalogError
from merchmate.models import CatalogEntry, CatalogVariant, ConversationContext
from merchmate.orchestrator import ConversationOrchestrator
from merchmate.products import RankingSearch


def run(coro):
    return asyncio.run(coro)


def make_entry(entry_id: int, title: str, description: Optional[str] = None, variants=None) -> CatalogEntry:
    return CatalogEntry(
        id=entry_id,
        title=title,
        description=description,
        images=[f"https://images.example/{entry_id}.png"],
        variants=[
            CatalogVariant(id=entry_id * 100 + i, title=f"v{i}", price=10.0, enabled=True, attributes=attrs)
            for i, attrs in enumerate(variants or [])
        ],
    )


def jpeg_bytes(color=(0, 0, 0)) -> bytes:
    out = BytesIO()
    Image.new("RGB", (8, 8), color).save(out, format="JPEG")
    return out.getvalue()


# --- Fakes for the remote capabilities ---

class FakeAI:
    """Scripted AI capability. Chat replies are consumed in order; dicts are JSON-encoded."""

    def __init__(self, replies=None, fail_images=False, fail_analysis=False):
        self.replies = list(replies or [])
        self.fail_images = fail_images
        self.fail_analysis = fail_analysis
        self.chat_calls: List[list] = []
        self.image_prompts: List[str] = []

    def queue(self, *replies):
        self.replies.extend(replies)

    async def generate_chat_response(self, messages):
        self.chat_calls.append(messages)
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply if isinstance(reply, str) else json.dumps(reply)

    async def generate_image(self, prompt: str) -> str:
        if self.fail_images:
            raise AIServiceError("Image Generation Service Error (500)")
        self.image_prompts.append(prompt)
        return f"https://designs.example/{len(self.image_prompts)}.png"

    async def analyze_image(self, image_url: str) -> str:
        if self.fail_analysis:
            raise AnalysisFailure("vision model unavailable")
        return f"Analysis of {image_url}"


class FakeCatalog:
    def __init__(self, entries=None, fail=False):
        self.entries = list(entries or [])
        self.fail = fail
        self.fetches = 0

    async def get_blueprints(self):
        self.fetches += 1
        if self.fail:
            raise CatalogError("Printify Blueprints Error (500): boom")
        return list(self.entries)


class FakePrintify:
    """Records every commerce call; individual steps can be made to fail."""

    def __init__(self, providers=None, variants=None, fail_on=None):
        self.providers = providers if providers is not None else [{"id": 3, "title": "Other"}, {"id": 99, "title": "Choice"}]
        self.variants = variants if variants is not None else [{"id": 501, "title": "S / Black"}, {"id": 502, "title": "M / Black"}]
        self.fail_on = set(fail_on or [])
        self.calls: List[tuple] = []
        self.created_payloads: List[dict] = []

    def _maybe_fail(self, name):
        self.calls.append((name,))
        if name in self.fail_on:
            raise CatalogError(f"Printify {name} Error (500)")

    async def get_providers_for_blueprint(self, blueprint_id):
        self._maybe_fail("providers")
        return self.providers

    async def get_variants_for_blueprint(self, blueprint_id, provider_id):
        self._maybe_fail("variants")
        return self.variants

    async def fetch_image(self, url):
        self._maybe_fail("fetch")
        return jpeg_bytes()

    async def upload_image(self, file_name, data):
        self._maybe_fail("upload")
        assert data.startswith(b"\x89PNG")
        return "upload-1"

    async def create_product(self, payload):
        self._maybe_fail("create")
        self.created_payloads.append(payload)
        return {"id": "prod-1"}

    async def publish_product(self, product_id):
        self._maybe_fail("publish")
        return {}


# --- Fixtures ---

@pytest.fixture
def catalog():
    return FakeCatalog([
        make_entry(1, "Canvas Tote Bag", variants=[{"color": "Natural"}]),
        make_entry(2, "Unisex Heavy Cotton T-Shirt", "Classic t-shirt", variants=[{"color": "Black"}, {"color": "White"}]),
        make_entry(3, "Kids T-Shirt", variants=[{"color": "Black"}]),
        make_entry(4, "Hoodie", variants=[{"color": "Black"}]),
        make_entry(5, "Softstyle T-Shirt", variants=[{"color": "Black"}, {"color": "Black Heather"}]),
        make_entry(6, "Mug 11oz"),
    ])


@pytest.fixture
def ai():
    return FakeAI()


@pytest.fixture
def printify():
    return FakePrintify()


@pytest.fixture
def orchestrator(ai, catalog, printify):
    return ConversationOrchestrator(
        ai=ai,
        designs=DesignCycle(ai),
        search=RankingSearch(catalog.get_blueprints),
        configurator=ConfigurationBuilder(printify, default_provider_id=99),
    )


@pytest.fixture
def context():
    return ConversationContext()
