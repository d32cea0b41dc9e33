import pytest
from webcleaner.layers.reconciliation.effects import (
    ENLARGED_MARKER,
    HIDDEN_MARKER,
    BlurEffect,
    EnlargeEffect,
    HideEffect,
    effect_for,
)
from webcleaner.layers.sense.document import Rect
from webcleaner.layers.sense.soup_document import SoupDocument


def one(doc, selector):
    return doc.query_all(selector)[0]


def test_blur_sets_important_styles_and_marker():
    """Test that blur writes important styles and the marker class."""
    doc = SoupDocument("<div id='ad'>Ad</div>")
    node = one(doc, "#ad")

    BlurEffect(radius_px=5).apply(doc, node)

    assert doc.has_class(node, HIDDEN_MARKER)
    assert doc.get_style(node, "filter") == ("blur(5px)", "important")
    assert doc.get_style(node, "pointer-events") == ("none", "important")
    assert doc.get_style(node, "user-select") == ("none", "important")
    assert doc.get_style(node, "display") == ("", "")


def test_blur_makes_inline_elements_inline_block():
    """Test that inline elements become inline-block so the blur renders."""
    doc = SoupDocument("<p><span id='s'>text</span></p>")
    node = one(doc, "#s")

    BlurEffect().apply(doc, node)

    assert doc.get_style(node, "display") == ("inline-block", "important")


def test_reverse_restores_prior_inline_values():
    """Test that reversal restores the exact prior inline values."""
    doc = SoupDocument("<div id='ad' style='filter: grayscale(1); color: red !important'>Ad</div>")
    node = one(doc, "#ad")
    effect = BlurEffect()

    effect.apply(doc, node)
    effect.reverse(doc, node)

    assert doc.get_style(node, "filter") == ("grayscale(1)", "")
    assert doc.get_style(node, "color") == ("red", "important")
    assert doc.get_style(node, "pointer-events") == ("", "")
    assert not doc.has_class(node, HIDDEN_MARKER)
    assert doc.get_attribute(node, effect.restore_attribute) is None


def test_reverse_leaves_no_trace_on_unstyled_nodes():
    """Test that reversing an unstyled node leaves no attributes behind."""
    doc = SoupDocument("<div id='ad' class='promo'>Ad</div>")
    node = one(doc, "#ad")
    before = doc.to_html()
    effect = HideEffect()

    effect.apply(doc, node)
    assert doc.get_style(node, "display") == ("none", "important")
    effect.reverse(doc, node)

    assert doc.to_html() == before


def test_reverse_survives_corrupt_restore_record():
    """Test that a mangled restore record still lets the effect be removed."""
    doc = SoupDocument("<div id='ad'>Ad</div>")
    node = one(doc, "#ad")
    effect = BlurEffect()
    effect.apply(doc, node)
    doc.set_attribute(node, effect.restore_attribute, "{not json")

    effect.reverse(doc, node)

    assert not effect.is_applied(doc, node)
    assert doc.get_attribute(node, effect.restore_attribute) is None


def test_enlarge_scales_media_by_rendered_width():
    """Test that media elements are widened from their rendered width."""
    doc = SoupDocument("<img id='pic' src='a.png'>", layout={"#pic": Rect(0, 0, 100, 80)})
    node = one(doc, "#pic")

    EnlargeEffect().apply(doc, node)

    assert doc.has_class(node, ENLARGED_MARKER)
    assert doc.get_style(node, "width") == ("170px", "important")
    assert doc.get_style(node, "height") == ("auto", "important")
    assert doc.get_style(node, "font-size") == ("", "")


def test_enlarge_grows_text_elements():
    """Test that non-media elements get a larger font size."""
    doc = SoupDocument("<p id='t'>Read me</p>")
    node = one(doc, "#t")

    EnlargeEffect().apply(doc, node)

    assert doc.get_style(node, "font-size") == ("130%", "important")
    assert doc.get_style(node, "position") == ("relative", "important")


def test_effects_use_separate_markers():
    """Test that blur and enlarge can coexist on one node."""
    doc = SoupDocument("<p id='t'>x</p>")
    node = one(doc, "#t")
    blur, enlarge = BlurEffect(), EnlargeEffect()

    blur.apply(doc, node)
    enlarge.apply(doc, node)
    enlarge.reverse(doc, node)

    assert blur.is_applied(doc, node)
    assert not enlarge.is_applied(doc, node)
    assert doc.get_style(node, "filter")[0] == "blur(8px)"


def test_effect_for():
    """Test effect lookup by name."""
    assert isinstance(effect_for("blur"), BlurEffect)
    assert effect_for("BLUR", blur_radius_px=3).radius_px == 3
    assert isinstance(effect_for("hide"), HideEffect)
    with pytest.raises(ValueError):
        effect_for("sparkle")
