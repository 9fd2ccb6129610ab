"""Text normalization for problem statements coming from feeds.

Feed posts arrive with HTML entities, markdown residue and irregular
spacing; the classifier and duplicate checks work better on clean text.
"""
from __future__ import annotations

import html
import logging
import re
import unicodedata

logger = logging.getLogger(__name__)

REMOVED_MARKERS = ("[removed]", "[deleted]")


def normalize_whitespace(text: str) -> str:
    """Collapse runs of spaces/tabs, keep paragraph breaks, trim."""
    text = re.sub(r'[ \t\f\v]+', ' ', text)
    text = re.sub(r' *\n *', '\n', text)
    text = re.sub(r'\n{3,}', '\n\n', text)
    return text.strip()


def normalize_punctuation(text: str) -> str:
    """Normalize common punctuation variations."""
    # Replace smart quotes
    text = text.replace('“', '"').replace('”', '"')
    text = text.replace('‘', "'").replace('’', "'")

    # Normalize dashes
    text = text.replace('–', '-').replace('—', '-')

    # Remove excessive punctuation
    text = re.sub(r'([!?.]){4,}', r'\1\1\1', text)

    return text


def clean_html(text: str) -> str:
    """Unescape entities and remove HTML tags."""
    text = html.unescape(text)
    return re.sub(r'<[^>]+>', '', text)


def is_removed(text: str) -> bool:
    """True when a post body was removed or deleted by the platform."""
    return any(marker in text for marker in REMOVED_MARKERS)


def normalize_text(
    text: str,
    *,
    clean_html_tags: bool = True,
    remove_extra_whitespace: bool = True,
) -> str:
    """Normalization applied to every problem statement before analysis.

    Args:
        text: Input text to normalize
        clean_html_tags: Unescape entities and remove HTML tags
        remove_extra_whitespace: Collapse and trim whitespace

    Returns:
        Normalized text (case is preserved)
    """
    if not text or not text.strip():
        return ""

    if clean_html_tags:
        text = clean_html(text)

    text = unicodedata.normalize('NFC', text)
    text = normalize_punctuation(text)

    if remove_extra_whitespace:
        text = normalize_whitespace(text)

    return text
