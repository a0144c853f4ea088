import json

from conftest import make_entry

import pytest

from merchmate.errors import ClassificationFailure
from merchmate.models import (
    CatalogVariant, ChatResponse, ConfigurationSaga, DesignAndProductsResponse, DesignFeedback, DesignPrompts,
    DesignRecord, DesignResponse, IntentParse, ProductChoice, ProductDetails, ProductSelectionResponse,
    dump_response, load_response,
)
from merchmate.orchestrator import parse_classification, parse_selection_message


def test_responses_are_tagged_and_camel_cased():
    record = DesignRecord(image_url="https://d/1.png", original_prompt="a fox", current_prompt="a fox")
    response = DesignAndProductsResponse(
        design=record.approved(), products=[make_entry(2, "Tee")], has_more=True, status="approved",
    )
    wire = json.loads(dump_response(response))

    assert wire["type"] == "design_and_products"
    assert wire["hasMore"] is True
    assert wire["design"]["imageUrl"] == "https://d/1.png"
    assert wire["design"]["status"] == "approved"
    assert "message" not in wire


ROUND_TRIP_RESPONSES = [
    ChatResponse(message="What would you like to make?"),
    DesignResponse(
        image_url="https://d/1.png", analysis="Bold lines, prints well",
        prompts=DesignPrompts(original="a fox", current="a fox"), status="refining", message="Here it is",
    ),
    DesignResponse(image_url="https://d/2.png", prompts=DesignPrompts(original="a fox", current="a red fox"), status="refining"),
    DesignAndProductsResponse(
        design=DesignRecord(image_url="https://d/1.png", original_prompt="a fox", current_prompt="a fox", status="approved"),
        products=[make_entry(2, "Tee", variants=[{"color": "Black"}])], has_more=False, status="selecting",
    ),
    ProductSelectionResponse(status="confirmed", selected_entry_id=2, message="Great choice!"),
    ProductSelectionResponse(status="selecting", selected_entry_id=5),
]


@pytest.mark.parametrize("response", ROUND_TRIP_RESPONSES, ids=lambda r: r.type)
def test_every_response_variant_survives_the_wire(response):
    assert load_response(dump_response(response)) == response


def test_design_response_carries_both_prompts():
    record = DesignRecord(image_url="u", original_prompt="a fox", current_prompt="a red fox")
    wire = json.loads(dump_response(DesignResponse.from_record(record, message="hi")))
    assert wire["prompts"] == {"original": "a fox", "current": "a red fox"}
    assert wire["status"] == "refining"
    assert "analysis" not in wire


def test_unknown_response_tag_is_rejected():
    with pytest.raises(ValueError):
        load_response('{"type": "checkout", "message": "x"}')
    assert isinstance(load_response('{"type": "chat", "message": "x"}'), ChatResponse)


def test_blank_product_details_become_none():
    details = ProductDetails(type="  ", color="Black", size="")
    assert details.type is None
    assert details.size is None
    assert details.color == "Black"
    assert ProductDetails().is_empty()


def test_catalog_variant_accepts_printify_field_names():
    variant = CatalogVariant.model_validate(
        {"id": 1, "title": "S / Black", "is_enabled": False, "options": {"color": "Black", "size": 3, "extra": None}}
    )
    assert variant.enabled is False
    assert variant.attributes == {"color": "Black", "size": "3"}


def test_parse_classification_reads_plain_and_fenced_json():
    plain = parse_classification('{"type": "design_feedback", "isApproved": true}', DesignFeedback)
    assert plain.is_approved is True

    fenced = parse_classification(
        'Here you go:\n```json\n{"type": "product_selection", "action": "select", "index": 0}\n```',
        ProductChoice,
    )
    assert fenced.index == 0


def test_intent_parse_tolerates_null_design_content():
    parsed = parse_classification(
        '{"type": "intent_parse", "productDetails": {"type": "mug"}, "designContent": null}', IntentParse
    )
    assert parsed.design_content == ""
    assert parsed.product_details.type == "mug"


@pytest.mark.parametrize("raw", [
    "",
    "I think they like it",
    '{"type": "design_feedback"}',
    '{"type": "intent_parse", "designContent": "a fox"}',
])
def test_parse_classification_failures(raw):
    with pytest.raises(ClassificationFailure):
        parse_classification(raw, DesignFeedback)


def test_structured_selection_message():
    assert parse_selection_message('{"type": "product_selection", "entryId": 12}').entry_id == 12
    assert parse_selection_message('{"type": "product_selection", "blueprintId": 7}').entry_id == 7
    assert parse_selection_message("the first one") is None
    assert parse_selection_message('{"type": "chat"}') is None


def test_saga_record_replaces_previous_outcome():
    saga = ConfigurationSaga(entry_id=1, design_url="u")
    saga.record("published", "failed", "boom")
    assert not saga.is_done("published")
    saga.record("published", "done")
    assert saga.is_done("published")
    assert len(saga.steps) == 1


def test_numeric_product_details_are_kept_as_text():
    parsed = parse_classification(
        '{"type": "intent_parse", "productDetails": {"type": "sneakers", "size": 10, "color": ["red"]},'
        ' "designContent": "a cartoonish beagle"}',
        IntentParse,
    )
    assert parsed.product_details.size == "10"
    assert parsed.product_details.color is None
    assert parsed.design_content == "a cartoonish beagle"
    assert ProductDetails(size=7.5).size == "7.5"
