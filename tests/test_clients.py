import base64
import json

from conftest import run

import httpx
import pytest

from merchmate.ai import AIClient
from merchmate.designs import DesignCycle
from merchmate.errors import AIServiceError, AnalysisFailure, CatalogError, DesignGenerationError
from merchmate.models import Message
from merchmate.printify import PrintifyClient


def ai_client(handler):
    return AIClient(api_key="test-key", base_url="https://ai.test/v1", transport=httpx.MockTransport(handler))


def printify_client(handler):
    return PrintifyClient(
        token="tok", shop_id="shop-1", base_url="https://printify.test/v1", transport=httpx.MockTransport(handler)
    )


# --- AIClient ---

def test_chat_response_returns_raw_content():
    seen = {}

    def handler(request):
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"choices": [{"message": {"content": '{"type": "chat"}'}}]})

    raw = run(ai_client(handler).generate_chat_response([Message(role="user", content="hi")]))

    assert raw == '{"type": "chat"}'
    assert seen["auth"] == "Bearer test-key"
    assert seen["body"]["response_format"] == {"type": "json_object"}
    assert seen["body"]["messages"] == [{"role": "user", "content": "hi"}]


def test_chat_http_error_becomes_ai_service_error():
    client = ai_client(lambda request: httpx.Response(503, text="overloaded"))
    with pytest.raises(AIServiceError, match="503"):
        run(client.generate_chat_response([Message(role="user", content="hi")]))


def test_timeout_becomes_ai_service_error():
    def handler(request):
        raise httpx.ReadTimeout("slow", request=request)

    with pytest.raises(AIServiceError, match="timed out"):
        run(ai_client(handler).generate_image("a fox"))


def test_generate_image_wraps_prompt_and_returns_url():
    seen = {}

    def handler(request):
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"data": [{"url": "https://img.test/fox.png"}]})

    url = run(ai_client(handler).generate_image("a fox"))

    assert url == "https://img.test/fox.png"
    assert "'a fox'" in seen["body"]["prompt"]
    assert seen["body"]["n"] == 1


def test_generate_image_without_url_fails():
    client = ai_client(lambda request: httpx.Response(200, json={"data": []}))
    with pytest.raises(AIServiceError):
        run(client.generate_image("a fox"))


@pytest.mark.parametrize("body", [{"data": ["https://img.test/fox.png"]}, ["https://img.test/fox.png"], {"data": {"url": "x"}}])
def test_generate_image_unexpected_shape_fails(body):
    client = ai_client(lambda request: httpx.Response(200, json=body))
    with pytest.raises(AIServiceError, match="unexpected shape"):
        run(client.generate_image("a fox"))


def test_malformed_image_reply_becomes_design_generation_error():
    client = ai_client(lambda request: httpx.Response(200, json={"data": ["https://img.test/fox.png"]}))
    with pytest.raises(DesignGenerationError) as info:
        run(DesignCycle(client).generate("a fox"))
    assert info.value.prompt_length == len("a fox")


def test_analysis_failures_are_analysis_failures():
    client = ai_client(lambda request: httpx.Response(500))
    with pytest.raises(AnalysisFailure):
        run(client.analyze_image("https://img.test/fox.png"))

    client = ai_client(lambda request: httpx.Response(200, json={"choices": []}))
    with pytest.raises(AnalysisFailure):
        run(client.analyze_image("https://img.test/fox.png"))


# --- PrintifyClient ---

BLUEPRINTS = [
    {"id": 6, "title": "Unisex Heavy Cotton Tee", "description": "A t-shirt", "images": ["https://p/6.png"]},
    {"id": 9, "title": "Mug", "description": None, "images": [], "variants": None},
]


def test_get_blueprints_parses_list_and_wrapped_payloads():
    entries = run(printify_client(lambda request: httpx.Response(200, json=BLUEPRINTS)).get_blueprints())
    assert [e.id for e in entries] == [6, 9]
    assert entries[1].variants == []

    wrapped = run(printify_client(lambda request: httpx.Response(200, json={"data": BLUEPRINTS})).get_blueprints())
    assert [e.title for e in wrapped] == ["Unisex Heavy Cotton Tee", "Mug"]


def test_invalid_blueprints_raise_catalog_error():
    client = printify_client(lambda request: httpx.Response(200, json=[{"title": "no id"}]))
    with pytest.raises(CatalogError):
        run(client.get_blueprints())


def test_catalog_http_error_keeps_remote_message():
    client = printify_client(lambda request: httpx.Response(401, text="bad token"))
    with pytest.raises(CatalogError, match="bad token"):
        run(client.get_blueprints())


def test_variants_accepts_wrapped_payload():
    def handler(request):
        assert request.url.path == "/v1/catalog/blueprints/6/print_providers/99/variants.json"
        return httpx.Response(200, json={"id": 99, "variants": [{"id": 1}, {"id": 2}]})

    assert run(printify_client(handler).get_variants_for_blueprint(6, 99)) == [{"id": 1}, {"id": 2}]


def test_upload_sends_base64_contents():
    seen = {}

    def handler(request):
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"id": "img-42"})

    upload_id = run(printify_client(handler).upload_image("design.png", b"\x89PNGdata"))

    assert upload_id == "img-42"
    assert seen["body"]["file_name"] == "design.png"
    assert base64.b64decode(seen["body"]["contents"]) == b"\x89PNGdata"


def test_create_and_publish_use_shop_paths():
    paths = []

    def handler(request):
        paths.append((request.method, request.url.path))
        if request.url.path.endswith("/publish.json"):
            return httpx.Response(200)
        return httpx.Response(200, json={"id": "prod-7"})

    client = printify_client(handler)
    product = run(client.create_product({"title": "Custom Tee"}))
    published = run(client.publish_product(product["id"]))

    assert product["id"] == "prod-7"
    assert published == {}
    assert paths == [
        ("POST", "/v1/shops/shop-1/products.json"),
        ("POST", "/v1/shops/shop-1/products/prod-7/publish.json"),
    ]


def test_create_product_without_id_fails():
    client = printify_client(lambda request: httpx.Response(200, json={"status": "queued"}))
    with pytest.raises(CatalogError):
        run(client.create_product({}))


def test_fetch_image_errors_are_catalog_errors():
    client = printify_client(lambda request: httpx.Response(404))
    with pytest.raises(CatalogError, match="404"):
        run(client.fetch_image("https://img.test/missing.png"))
