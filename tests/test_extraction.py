import copy

import pytest

from ocr.errors import EmptyExtractionError, InvalidOcrResponseError
from ocr.extraction import enrich_response, extract_text, replay_stored_response


def test_extraction_is_deterministic():
    response = {
        "success": True,
        "full_text": "  Total: 100  ",
        "pages": [{"text": "Total: 100"}],
        "processing_info": {"confidence_threshold": 0.4},
    }
    snapshot = copy.deepcopy(response)

    first = extract_text(response)
    second = extract_text(response)

    assert first == second
    assert response == snapshot


def test_clean_text_takes_priority_over_full_text():
    extraction = extract_text({"success": True, "clean_text": "Clean.", "full_text": "Full."})

    assert extraction.text == "Clean."
    assert extraction.markdown == "Clean."
    assert extraction.has_markdown is True
    assert extraction.source == "clean_text"


def test_full_text_is_used_and_trimmed():
    extraction = extract_text(
        {"success": True, "full_text": "\n  Total: 100 \n", "pages": [{"text": "x"}]}
    )

    assert extraction.text == "Total: 100"
    assert extraction.has_markdown is False
    assert extraction.source == "full_text"


def test_pages_are_joined_skipping_empty_pages():
    extraction = extract_text(
        {"success": True, "pages": [{"text": "A"}, {"text": ""}, {"text": "B"}]}
    )

    assert extraction.text == "A\n\nB"
    assert extraction.source == "pages"


def test_blank_fields_fall_through_to_next_adapter():
    extraction = extract_text(
        {"success": True, "clean_text": "   ", "full_text": "", "pages": [{"text": "P1"}]}
    )

    assert extraction.text == "P1"


def test_legacy_structured_text_with_markdown():
    extraction = extract_text(
        {"success": True, "structured_text": "Plain", "markdown_text": "# Plain"}
    )

    assert extraction.text == "Plain"
    assert extraction.markdown == "# Plain"
    assert extraction.has_markdown is True


def test_legacy_full_document_text():
    extraction = extract_text({"success": True, "full_document_text": " Old format "})

    assert extraction.text == "Old format"
    assert extraction.source == "full_document_text"


def test_empty_response_fails():
    with pytest.raises(EmptyExtractionError):
        extract_text({"success": True})


def test_pages_without_text_fail():
    with pytest.raises(EmptyExtractionError):
        extract_text({"success": True, "pages": [{"text": ""}, {"confidence": 0.9}]})


@pytest.mark.parametrize(
    "response",
    [None, "text", {"full_text": "no success flag"}, {"success": False, "full_text": "x"}],
)
def test_unsuccessful_or_malformed_response_is_invalid(response):
    with pytest.raises(InvalidOcrResponseError):
        extract_text(response)


def test_enrich_response_copies_and_adds_text():
    response = {"success": True, "full_text": "Hi", "processing_info": {"layout_preserved": True}}
    extraction = extract_text(response)

    enriched = enrich_response(response, extraction)

    assert enriched["processing_info"] == {
        "layout_preserved": True,
        "structured_text": "Hi",
        "markdown_text": "Hi",
        "has_markdown": False,
    }
    assert "structured_text" not in response["processing_info"]


def test_replay_stored_response():
    enriched = enrich_response(
        {"success": True, "clean_text": "Stored"},
        extract_text({"success": True, "clean_text": "Stored"}),
    )

    assert replay_stored_response(enriched) == ("Stored", "Stored")
    # older payloads without the enriched block go through the adapters
    assert replay_stored_response({"full_text": "Legacy"}) == ("Legacy", "Legacy")
    assert replay_stored_response({}) is None
    assert replay_stored_response(None) is None
