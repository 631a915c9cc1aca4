import pytest

from pagewright.errors import InvalidDocumentStructure, ParseFailed
from pagewright.parsing import (
    bracket_span,
    decode_units,
    fenced_block,
    lead_in_phrase,
    parse_document,
    parse_response,
    parse_units,
    strip_fences,
    validate_document,
)

PAYLOAD = '[{"id":"TEXT_0","localized":"Hola"}]'


@pytest.mark.parametrize(
    "raw",
    [
        "```json\n" + PAYLOAD + "\n```",
        "Here is the result:\n" + PAYLOAD,
        "garbage " + PAYLOAD + " trailing",
        PAYLOAD,
    ],
)
def test_unit_payload_is_recovered(raw):
    assert parse_units(raw) == {"TEXT_0": "Hola"}


def test_no_brackets_raises_parse_failed():
    with pytest.raises(ParseFailed) as excinfo:
        parse_units("no brackets at all")

    assert excinfo.value.strategies == [
        "direct_array",
        "strip_fences",
        "fenced_block",
        "bracket_span",
        "lead_in_phrase",
    ]
    assert excinfo.value.response_length == len("no brackets at all")
    assert "18 chars" in str(excinfo.value)


def test_fenced_block_wins_over_prose_brackets():
    raw = "Sure!\n```json\n" + PAYLOAD + "\n```\nHope this helps [smile]"

    assert parse_units(raw) == {"TEXT_0": "Hola"}
    assert fenced_block(raw) == PAYLOAD


def test_array_after_a_line_break_is_found():
    raw = 'Note [1]: see below\n[{"id":"TEXT_3","localized":"Adiós"}]'

    assert parse_units(raw) == {"TEXT_3": "Adiós"}


def test_bracket_span_requires_quote_and_brace():
    assert bracket_span("list [1, 2, 3] here") is None
    assert bracket_span('x [{"a": 1}] y') == '[{"a": 1}]'


def test_lead_in_phrase_patterns():
    assert lead_in_phrase("BEGIN:\n" + PAYLOAD) == PAYLOAD
    assert lead_in_phrase("nothing to see") is None


def test_decode_units_skips_malformed_items():
    values = decode_units(
        '[{"id":"TEXT_0","localized":"Hola"}, {"id":"TEXT_1"}, "stray", {"id":5,"localized":"x"}]'
    )

    assert values == {"TEXT_0": "Hola"}
    assert decode_units('{"id":"TEXT_0","localized":"Hola"}') is None
    assert decode_units("[]") is None


def test_array_without_usable_entries_fails():
    with pytest.raises(ParseFailed):
        parse_units('[{"id":"TEXT_0","text":"untranslated"}]')


def test_strip_fences_removes_language_tag():
    assert strip_fences("```html\n<p>x</p>\n```") == "<p>x</p>"


DOCUMENT = "<!DOCTYPE html><html><head></head><body><h1>Hola</h1></body></html>"


@pytest.mark.parametrize(
    "raw",
    [
        DOCUMENT,
        "```html\n" + DOCUMENT + "\n```",
        "<output>" + DOCUMENT + "</output>",
        "Here is your page:\n\n" + DOCUMENT + "\n\nEnjoy!",
    ],
)
def test_document_is_recovered(raw):
    assert parse_document(raw) == DOCUMENT


def test_document_without_doctype_uses_html_span():
    raw = "Result: <HTML><BODY><p>Hola</p></BODY></HTML> done"

    assert parse_document(raw) == "<HTML><BODY><p>Hola</p></BODY></HTML>"


def test_document_missing_body_is_invalid():
    with pytest.raises(InvalidDocumentStructure):
        parse_document("<html><p>Hola</p></html>")


def test_response_without_markup_fails_to_parse():
    with pytest.raises(ParseFailed):
        parse_document("I cannot help with that.")


def test_validate_document_is_case_insensitive():
    assert validate_document("<HTML><Body></BODY></html>")
    assert not validate_document("<html><body></html>")


def test_parse_response_dispatches_on_mode():
    assert parse_response(PAYLOAD, "unit") == {"TEXT_0": "Hola"}
    assert parse_response(DOCUMENT, "document") == DOCUMENT
    with pytest.raises(ValueError):
        parse_response(PAYLOAD, "poetry")
