"""
OCR Response Extraction
=======================

The OCR backend has gone through several response formats. This module turns
any of them into a normalized `Extraction`.

Each known response shape has its own small adapter function. Adapters are
tried in priority order and the first one that finds non-empty text wins:

1. ``clean_text``: formatted output; authoritative for text and markdown.
2. ``full_text``: plain output of the current API.
3. ``pages``: per-page text joined with blank lines.
4. ``structured_text`` / ``markdown_text``: legacy output.
5. ``full_document_text``: older legacy output.

Everything here is pure: no I/O, no shared state.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass
from typing import Any, Callable, Mapping

import structlog

from .errors import EmptyExtractionError, InvalidOcrResponseError

log = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Extraction:
    """Normalized text extracted from an OCR response."""

    text: str
    markdown: str
    has_markdown: bool
    source: str


def _text_field(response: Mapping[str, Any], key: str) -> str | None:
    """Return the field if it is a string with visible content."""
    value = response.get(key)
    if isinstance(value, str) and value.strip():
        return value
    return None


def _join_pages(pages: Any) -> str | None:
    if not isinstance(pages, list):
        return None
    texts = [
        page.get("text")
        for page in pages
        if isinstance(page, Mapping)
        and isinstance(page.get("text"), str)
        and page.get("text").strip()
    ]
    return "\n\n".join(texts) or None


def _from_clean_text(response: Mapping[str, Any]) -> Extraction | None:
    text = _text_field(response, "clean_text")
    if text is None:
        return None
    return Extraction(text.strip(), text.strip(), True, "clean_text")


def _from_full_text(response: Mapping[str, Any]) -> Extraction | None:
    text = _text_field(response, "full_text")
    if text is None:
        return None
    pages = response.get("pages")
    if isinstance(pages, list):
        info = response.get("processing_info") or {}
        log.debug(
            "OCR page diagnostics",
            extraction_method=response.get("extraction_method") or "unknown",
            total_pages=response.get("total_pages") or len(pages),
            confidence_threshold=info.get("confidence_threshold"),
            layout_preserved=info.get("layout_preserved"),
        )
    return Extraction(text.strip(), text.strip(), False, "full_text")


def _from_pages(response: Mapping[str, Any]) -> Extraction | None:
    text = _join_pages(response.get("pages"))
    if text is None:
        return None
    return Extraction(text.strip(), text.strip(), False, "pages")


def _from_structured_text(response: Mapping[str, Any]) -> Extraction | None:
    text = _text_field(response, "structured_text")
    if text is None:
        return None
    markdown = _text_field(response, "markdown_text")
    return Extraction(
        text.strip(), (markdown or text).strip(), markdown is not None, "structured_text"
    )


def _from_full_document_text(response: Mapping[str, Any]) -> Extraction | None:
    text = _text_field(response, "full_document_text")
    if text is None:
        return None
    return Extraction(text.strip(), text.strip(), False, "full_document_text")


Adapter = Callable[[Mapping[str, Any]], "Extraction | None"]

ADAPTERS: tuple[Adapter, ...] = (
    _from_clean_text,
    _from_full_text,
    _from_pages,
    _from_structured_text,
    _from_full_document_text,
)


def _run_adapters(response: Mapping[str, Any]) -> Extraction | None:
    for adapter in ADAPTERS:
        extraction = adapter(response)
        if extraction is not None:
            return extraction
    return None


def extract_text(response: Any) -> Extraction:
    """
    Normalize a raw OCR response.

    Raises:
        InvalidOcrResponseError: the payload is not a mapping or does not
            declare success.
        EmptyExtractionError: no known field contains text.
    """
    if not isinstance(response, Mapping):
        raise InvalidOcrResponseError("Invalid OCR response - no response data")
    if not response.get("success"):
        raise InvalidOcrResponseError("OCR service returned failure response")

    extraction = _run_adapters(response)
    if extraction is None:
        raise EmptyExtractionError("No text extracted from OCR response")
    return extraction


def enrich_response(response: Mapping[str, Any], extraction: Extraction) -> dict:
    """
    Return a copy of ``response`` that also carries the extracted text.

    The copy is what the ledger stores, so the text can be shown later
    without asking the OCR backend again.
    """
    enriched = copy.deepcopy(dict(response))
    info = enriched.get("processing_info")
    info = dict(info) if isinstance(info, Mapping) else {}
    info.update(
        structured_text=extraction.text,
        markdown_text=extraction.markdown,
        has_markdown=extraction.has_markdown,
    )
    enriched["processing_info"] = info
    return enriched


def replay_stored_response(stored: Any) -> tuple[str, str | None] | None:
    """
    Recover ``(text, markdown)`` from a response stored in the ledger.

    Enriched payloads are read directly; older payloads go through the
    adapter chain without requiring the success flag. Returns None when
    nothing usable is stored.
    """
    if not isinstance(stored, Mapping):
        return None
    info = stored.get("processing_info")
    if isinstance(info, Mapping) and _text_field(info, "structured_text"):
        return info["structured_text"], info.get("markdown_text")
    extraction = _run_adapters(stored)
    if extraction is None:
        return None
    return extraction.text, extraction.markdown
