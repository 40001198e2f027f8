import json

from ilyzlist.services.analysis_parser import SECTIONS, needs_repair, parse_analysis

from factories import full_analysis


def test_strict_json_is_normalised() -> None:
    document = parse_analysis(full_analysis())
    assert document["version"] == "2.0"
    assert document["confidence"] == "high"
    assert document["recommendations"] == "• Ask about the story • Offer new colours • Draw together"
    assert not needs_repair(document)


def test_json_inside_fenced_block_and_prose() -> None:
    payload = json.loads(full_analysis())
    fenced = f"Here you go:\n```json\n{json.dumps(payload)}\n```\nHope it helps!"
    prose = f"Sure! {json.dumps(payload)} Let me know."
    assert parse_analysis(fenced)["summary"] == payload["summary"]
    assert parse_analysis(prose)["flags"] == "None noted for now."


def test_whitespace_and_bullets_are_collapsed() -> None:
    raw = json.dumps({"summary": "  A  sunny\t\tday.  ", "recommendations": "•Play  outside •   Read"})
    document = parse_analysis(raw)
    assert document["summary"] == "A sunny day."
    assert document["recommendations"] == "• Play outside • Read"


def test_unparseable_text_keeps_raw_and_needs_repair() -> None:
    document = parse_analysis("I cannot analyse this image.")
    assert document["raw"] == "I cannot analyse this image."
    assert all(document[section] == "" for section in SECTIONS)
    assert document["confidence"] == "medium"
    assert needs_repair(document)


def test_invalid_confidence_and_non_string_fields() -> None:
    document = parse_analysis(json.dumps({"summary": 42, "confidence": "certain", "emotional": ["a"]}))
    assert document["summary"] == ""
    assert document["emotional"] == ""
    assert document["confidence"] == "medium"


def test_short_summary_needs_repair() -> None:
    assert needs_repair(parse_analysis(full_analysis(summary="Too short.")))
    assert needs_repair(parse_analysis(None))
