"""Best-effort extraction of a structured drawing analysis from model output."""
from __future__ import annotations

import json
import re
from typing import Any

SECTIONS = ("summary", "emotional", "cognitive", "creative", "recommendations", "flags")
CONFIDENCE_LEVELS = ("high", "medium", "low")
ANALYSIS_VERSION = "2.0"
MIN_SUMMARY_CHARS = 40

_FENCED_JSON = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL | re.IGNORECASE)
_OUTER_OBJECT = re.compile(r"\{.*\}", re.DOTALL)
_WHITESPACE = re.compile(r"\s{2,}|\t")
_BULLET = re.compile(r"•\s*")


def base_document() -> dict[str, Any]:
    document: dict[str, Any] = {"version": ANALYSIS_VERSION}
    document.update({section: "" for section in SECTIONS})
    document["confidence"] = "medium"
    return document


def _load_object(text: str) -> dict[str, Any] | None:
    try:
        data = json.loads(text)
    except (TypeError, ValueError):
        return None
    return data if isinstance(data, dict) else None


def _extract(raw: str) -> dict[str, Any] | None:
    data = _load_object(raw)
    if data is not None:
        return data
    fenced = _FENCED_JSON.search(raw)
    if fenced:
        data = _load_object(fenced.group(1))
        if data is not None:
            return data
    outer = _OUTER_OBJECT.search(raw)
    if outer:
        return _load_object(outer.group(0))
    return None


def _clean(value: Any) -> str:
    if not isinstance(value, str):
        return ""
    text = _WHITESPACE.sub(" ", value)
    text = _BULLET.sub("• ", text)
    return text.strip()


def parse_analysis(raw: str | None) -> dict[str, Any]:
    """Normalise model output into the stored analysis document.

    Tries strict JSON, then a fenced ``json`` block, then the outermost
    ``{...}`` span. Text that yields no object returns the empty document
    with the original text under ``raw``.
    """
    raw = raw or ""
    data = _extract(raw)
    if data is None:
        document = base_document()
        document["raw"] = raw
        return document

    document = base_document()
    version = data.get("version")
    if isinstance(version, str) and version.strip():
        document["version"] = version.strip()
    for section in SECTIONS:
        document[section] = _clean(data.get(section))
    confidence = data.get("confidence")
    if isinstance(confidence, str) and confidence.strip().lower() in CONFIDENCE_LEVELS:
        document["confidence"] = confidence.strip().lower()
    return document


def needs_repair(document: dict[str, Any]) -> bool:
    """Whether a parsed analysis is too thin to show and deserves a repair call."""
    if len(document.get("summary") or "") < MIN_SUMMARY_CHARS:
        return True
    return any(not document.get(section) for section in SECTIONS)


__all__ = ["SECTIONS", "base_document", "needs_repair", "parse_analysis"]
