import pytest
from webcleaner.core.errors import SynthesisFailure
from webcleaner.layers.sense.soup_document import SoupDocument
from webcleaner.layers.synthesis.selector_synthesizer import SelectorSynthesizer, css_escape, is_runtime_class

PAGE = """
<html><body>
  <div id="main-ad">Buy now</div>
  <div class="promo sticky">Promo</div>
  <div class="card">One</div>
  <div class="card">Two</div>
  <div id="feed">
    <div class="card">Three</div>
    <div class="card"><aside>Sponsored</aside></div>
  </div>
</body></html>
"""


def make():
    doc = SoupDocument(PAGE)
    return doc, SelectorSynthesizer(doc)


def test_unique_id_wins():
    """Test that a unique id is used directly."""
    doc, synth = make()
    node = doc.query_all("#main-ad")[0]
    assert synth.synthesize(node) == "#main-ad"


def test_unique_class_list():
    """Test that a unique class combination is used when there is no id."""
    doc, synth = make()
    node = doc.query_all(".promo")[0]
    assert synth.synthesize(node) == "div.promo.sticky"


def test_shared_classes_fall_back_to_path():
    """Test that shared classes fall back to a positional path."""
    doc, synth = make()
    second_card = doc.query_all("body > div.card")[1]
    selector = synth.synthesize(second_card)

    assert selector == "body > div.card:nth-child(4)"
    assert doc.query_all(selector) == [second_card]


def test_path_is_anchored_at_nearest_id():
    """Test that the path stops at the nearest ancestor with an id."""
    doc, synth = make()
    aside = doc.query_all("aside")[0]
    assert synth.synthesize(aside) == "div#feed > div.card:nth-child(2) > aside:nth-child(1)"


def test_runtime_classes_are_ignored():
    """Test that webcleaner and highlight classes never appear in selectors."""
    doc, synth = make()
    node = doc.query_all(".promo")[0]
    doc.add_class(node, "webcleaner-hidden")
    doc.add_class(node, "webcleaner-highlight")

    assert synth.synthesize(node) == "div.promo.sticky"
    assert synth.stable_classes(node) == ["promo", "sticky"]


def test_is_runtime_class():
    """Test runtime class detection."""
    assert is_runtime_class("webcleaner-enlarged")
    assert is_runtime_class("highlight")
    assert not is_runtime_class("promo")


def test_duplicate_id_is_not_used():
    """Test that a duplicated id is not trusted."""
    doc = SoupDocument('<div id="dup" class="a">1</div><div id="dup" class="b">2</div>')
    synth = SelectorSynthesizer(doc)
    first = doc.query_all(".a")[0]
    assert synth.synthesize(first) == "div.a"


def test_id_needing_escape_round_trips():
    """Test that ids with special characters are escaped and still match."""
    doc = SoupDocument('<div id="1st:ad">x</div>')
    synth = SelectorSynthesizer(doc)
    node = doc.query_all("div")[0]

    selector = synth.synthesize(node)

    assert selector == "#" + css_escape("1st:ad")
    assert doc.query_all(selector)[0] is node


def test_every_element_round_trips():
    """Test that every element's selector matches exactly that element."""
    doc, synth = make()
    for node in doc.query_all("body *"):
        selector = synth.synthesize(node)
        matches = doc.query_all(selector)
        assert any(m is node for m in matches), selector


def test_path_depth_is_bounded():
    """Test that positional paths climb at most six levels."""
    markup = "<div>" * 8 + "<p>deep</p>" + "</div>" * 8
    doc = SoupDocument(markup)
    synth = SelectorSynthesizer(doc)
    node = doc.query_all("p")[0]

    selector = synth.synthesize(node)

    assert selector.count(">") == 5
    assert any(m is node for m in doc.query_all(selector))


def test_non_element_raises():
    """Test that non-elements raise SynthesisFailure."""
    _, synth = make()
    with pytest.raises(SynthesisFailure):
        synth.synthesize("not a node")


def test_synthesize_or_none():
    """Test the None-returning variant."""
    _, synth = make()
    assert synth.synthesize_or_none(None) is None
