import pytest

from pagewright.structures import (
    CompletionReport,
    LocalizationOutput,
    LocalizationRequest,
    LocalizationResult,
    Locator,
    LocatorStrategy,
    split_outline,
)


@pytest.mark.parametrize(
    "selector, strategy, tag, node_id, class_name, attribute",
    [
        ("#h", LocatorStrategy.ID, None, "h", None, None),
        ("h1#h", LocatorStrategy.ID, "h1", "h", None, None),
        (".intro", LocatorStrategy.CLASS_TAG, None, None, "intro", None),
        ("p.intro", LocatorStrategy.CLASS_TAG, "p", None, "intro", None),
        ("li", LocatorStrategy.TEXT, "li", None, None, None),
        ("img#hero[alt]", LocatorStrategy.ID, "img", "hero", None, "alt"),
    ],
)
def test_locator_parse_round_trips(selector, strategy, tag, node_id, class_name, attribute):
    locator = Locator.parse(selector)

    assert locator.strategy is strategy
    assert (locator.tag, locator.node_id, locator.class_name, locator.attribute) == (
        tag,
        node_id,
        class_name,
        attribute,
    )
    assert str(locator) == selector


@pytest.mark.parametrize("selector", ["", "div > p", "[alt]", "p..x"])
def test_locator_parse_rejects_unsupported_syntax(selector):
    with pytest.raises(ValueError):
        Locator.parse(selector)


def test_split_outline_strips_markers():
    block = "**Titulo**\n\n[Comprar]\n\n• Elemento\n\nTexto normal"

    assert split_outline(block, 4) == ["Titulo", "Comprar", "Elemento", "Texto normal"]
    assert split_outline(block, 3) is None


def test_result_merge_is_append_only():
    result = LocalizationResult({"TEXT_0": "Hola"})

    accepted = result.merge(
        {"TEXT_0": "Otra", "TEXT_1": "Adiós", "TEXT_2": "   ", "TEXT_9": "Extra"},
        allowed_ids=["TEXT_0", "TEXT_1", "TEXT_2"],
    )

    assert accepted == ["TEXT_1"]
    assert result.as_dict() == {"TEXT_0": "Hola", "TEXT_1": "Adiós"}
    assert "TEXT_9" not in result
    assert len(result) == 2


def test_completeness_and_metadata():
    report = CompletionReport(mode="unit", units_total=4, units_processed=3, units_unresolved=1)
    output = LocalizationOutput(
        html="<p>x</p>",
        report=report,
        request=LocalizationRequest(target_language="Spanish", target_country="Mexico"),
        source_url="https://example.com/",
    )

    assert report.completeness == 0.75
    assert CompletionReport(mode="unit", units_total=0, units_processed=0, units_unresolved=0).completeness == 0.0
    metadata = output.metadata
    assert metadata["original_url"] == "https://example.com/"
    assert metadata["target_country"] == "Mexico"
    assert metadata["completeness"] == 0.75
