"""Synthesis Layer - Selector generation."""

from webcleaner.layers.synthesis.selector_synthesizer import SelectorSynthesizer, css_escape

__all__ = ["SelectorSynthesizer", "css_escape"]
