from pagewright.documents import SoupDocument
from pagewright.extractor import TextUnitExtractor
from pagewright.replacement import ReplacementEngine
from pagewright.structures import LocalizationResult, Locator, TextUnit, TextUnitKind


def unit(unit_id, selector, text, kind=TextUnitKind.PARAGRAPH):
    return TextUnit(unit_id=unit_id, original_text=text, locator=Locator.parse(selector), kind=kind)


def test_id_and_class_units_are_replaced_in_place():
    html = '<h1 id="h">Welcome</h1><p class="intro">Visit us today.</p>'
    document = SoupDocument(html)
    units = [
        unit("TEXT_0", "#h", "Welcome", TextUnitKind.HEADING),
        unit("TEXT_1", ".intro", "Visit us today."),
    ]
    result = LocalizationResult({"TEXT_0": "Bienvenido", "TEXT_1": "Visítanos hoy."})

    stats = ReplacementEngine().apply(document, units, result)

    assert document.serialize() == '<h1 id="h">Bienvenido</h1><p class="intro">Visítanos hoy.</p>'
    assert stats.applied == ["TEXT_0", "TEXT_1"]
    assert stats.skipped == []
    assert stats.document is document


def test_empty_result_leaves_document_byte_identical():
    html = "<html>\n <body>\n  <P ID='x'>Welcome  back</P>\n  <br/>\n </body>\n</html>"
    document = SoupDocument(html)
    units = TextUnitExtractor().extract(document)

    stats = ReplacementEngine().apply(document, units, LocalizationResult())

    assert document.serialize() == html
    assert stats.untouched == [item.unit_id for item in units]


def test_id_replacement_preserves_node_structure():
    document = SoupDocument(
        '<div id="card" class="x" data-k="1">Hello there friend<span>keep me</span> tail</div>'
    )
    node = document.select_by_id("card")
    before_attrs = dict(node.attrs)
    before_children = len(node.find_all(True, recursive=False))

    ReplacementEngine().apply(
        document,
        [unit("TEXT_0", "div#card", "Hello there friend")],
        LocalizationResult({"TEXT_0": "Hola amigo"}),
    )

    node = document.select_by_id("card")
    assert node.name == "div"
    assert dict(node.attrs) == before_attrs
    assert len(node.find_all(True, recursive=False)) == before_children
    assert document.serialize() == (
        '<div id="card" class="x" data-k="1">Hola amigo<span>keep me</span> tail</div>'
    )


def test_identified_node_is_never_replaced_twice():
    document = SoupDocument(
        '<p id="lead" class="note">Same text here</p>'
        '<p class="note">Same text here</p>'
        "<p>Same text here</p>"
    )
    units = [
        unit("TEXT_0", "p#lead", "Same text here"),
        unit("TEXT_1", "p.note", "Same text here"),
        unit("TEXT_2", "p", "Same text here"),
    ]
    result = LocalizationResult({"TEXT_0": "Uno", "TEXT_1": "Dos", "TEXT_2": "Tres"})

    stats = ReplacementEngine().apply(document, units, result)

    assert document.serialize() == (
        '<p id="lead" class="note">Uno</p><p class="note">Dos</p><p>Tres</p>'
    )
    assert stats.edits == 3


def test_class_tier_requires_exact_direct_text():
    document = SoupDocument('<p class="note">Other words entirely</p><p class="note">Target text</p>')

    ReplacementEngine().apply(
        document,
        [unit("TEXT_0", "p.note", "Target text")],
        LocalizationResult({"TEXT_0": "Texto"}),
    )

    assert document.serialize() == '<p class="note">Other words entirely</p><p class="note">Texto</p>'


def test_literal_tier_ignores_nodes_with_id_or_class():
    document = SoupDocument('<p class="keep">Shared sentence</p><p>Shared sentence</p>')

    ReplacementEngine().apply(
        document,
        [unit("TEXT_0", "p", "Shared sentence")],
        LocalizationResult({"TEXT_0": "Frase"}),
    )

    assert document.serialize() == '<p class="keep">Shared sentence</p><p>Frase</p>'


def test_attribute_unit_only_touches_its_attribute():
    document = SoupDocument('<img id="hero" alt="A happy customer" src="a.png" title="Hero">')
    units = [unit("ALT_0", "img#hero[alt]", "A happy customer", TextUnitKind.ATTRIBUTE_ALT)]

    ReplacementEngine().apply(document, units, LocalizationResult({"ALT_0": "Un cliente feliz"}))

    html = document.serialize()
    assert 'alt="Un cliente feliz"' in html
    assert 'src="a.png"' in html
    assert 'title="Hero"' in html


def test_unit_without_matching_node_is_counted_as_skipped():
    html = "<p>Nothing to see</p>"
    document = SoupDocument(html)

    stats = ReplacementEngine().apply(
        document,
        [unit("TEXT_0", "#missing", "Gone text")],
        LocalizationResult({"TEXT_0": "Nada"}),
    )

    assert stats.skipped == ["TEXT_0"]
    assert stats.processed == 0
    assert document.serialize() == html


def test_script_contents_are_never_touched():
    html = '<script>var s = "Welcome back friend";</script><p>Welcome back friend</p>'
    document = SoupDocument(html)
    units = TextUnitExtractor().extract(document)

    ReplacementEngine().apply(document, units, LocalizationResult({units[0].unit_id: "Hola"}))

    assert document.serialize() == '<script>var s = "Welcome back friend";</script><p>Hola</p>'


GROUP_HTML = (
    '<header id="top"><h2>Our great offers</h2><p>Fresh food every single day</p></header>'
)


def _group_units(html):
    document = SoupDocument(html)
    units = TextUnitExtractor(group_sections=True).extract(document)
    return document, units


def test_section_group_is_written_back_member_by_member():
    document, units = _group_units(GROUP_HTML)
    assert [item.unit_id for item in units] == ["SECTION_0"]

    stats = ReplacementEngine().apply(
        document,
        units,
        LocalizationResult({"SECTION_0": "**Nuestras ofertas**\n\nComida fresca cada día"}),
    )

    assert stats.applied == ["SECTION_0"]
    assert document.serialize() == (
        '<header id="top"><h2>Nuestras ofertas</h2><p>Comida fresca cada día</p></header>'
    )


def test_unsplittable_group_falls_back_to_container_text():
    document, units = _group_units(GROUP_HTML)

    ReplacementEngine().apply(document, units, LocalizationResult({"SECTION_0": "Todo junto"}))

    assert document.serialize() == '<header id="top">Todo junto</header>'


def test_unsplittable_group_without_container_id_is_skipped():
    html = "<header><h2>Our great offers</h2><p>Fresh food every single day</p></header>"
    document, units = _group_units(html)

    stats = ReplacementEngine().apply(
        document, units, LocalizationResult({units[0].unit_id: "Todo junto"})
    )

    assert stats.skipped == [units[0].unit_id]
    assert document.serialize() == html


def test_unit_without_value_keeps_its_node_from_look_alikes():
    html = '<p id="lead" class="note">Same text here</p><p class="note">Same text here</p>'
    document = SoupDocument(html)
    units = TextUnitExtractor().extract(document)
    assert [item.unit_id for item in units] == ["TEXT_0", "TEXT_1"]

    stats = ReplacementEngine().apply(document, units, LocalizationResult({"TEXT_1": "Dos"}))

    assert document.serialize() == (
        '<p id="lead" class="note">Same text here</p><p class="note">Dos</p>'
    )
    assert stats.untouched == ["TEXT_0"]
    assert stats.applied == ["TEXT_1"]


def test_class_tier_never_writes_into_identified_nodes():
    html = '<p id="lead" class="note">Same text here</p>'
    document = SoupDocument(html)

    stats = ReplacementEngine().apply(
        document,
        [unit("TEXT_1", "p.note", "Same text here")],
        LocalizationResult({"TEXT_1": "Dos"}),
    )

    assert stats.skipped == ["TEXT_1"]
    assert document.serialize() == html


def test_bytes_outside_edited_spans_are_kept():
    html = (
        "<!DOCTYPE html>\n<p id='a'>Welcome to our shop</p>"
        "<p>Caf&eacute; &amp; bar&nbsp;open</p><input disabled type=text><br/>"
    )
    document = SoupDocument(html)

    ReplacementEngine().apply(
        document,
        [unit("TEXT_0", "p#a", "Welcome to our shop")],
        LocalizationResult({"TEXT_0": "Bienvenido"}),
    )

    assert document.serialize() == html.replace("Welcome to our shop", "Bienvenido")
