"""Prompt styling: detail-level and length adjustment of raw captions.

A raw caption from a captioning backend is short and plain.  Before it is
returned to the user it passes through two deterministic transforms, plus an
optional model-specific post-pass:

1. **Detail level** (applied first)

   - ``minimal`` drops generic adjectives and keeps the first 15 words.
   - ``balanced`` leaves the text alone.
   - ``detailed`` appends two randomly chosen descriptive phrases.
   - ``comprehensive`` appends one technical, one artistic and one quality
     phrase (always the first of each pool).

2. **Length target** (applied second)

   - ``short`` / ``medium`` cap the text at 50 / 100 words.
   - ``long`` / ``detailed`` append expansion phrases, in a fixed order,
     until the text reaches 150 / 200 words and then cap it at 200 / 300.

3. **Flux post-pass**: for the Flux-optimized model three quality phrases
   are appended after everything else.  This pass is not length-capped.

Words are whitespace-delimited tokens; truncation always cuts on a token
boundary, and text already under a cap is returned unchanged.

Random choices go through a *chooser* callable with the signature of
:func:`random.sample` so callers (and tests) can make them deterministic.

Usage
-----
::

    prompt = adjust_prompt_style(
        "a dog running in a field",
        length_target="long",
        detail_level="detailed",
    )
    prompt = enhance_for_flux(prompt)
"""

from __future__ import annotations

import random
from collections.abc import Callable, Sequence
from typing import Literal

LengthTarget = Literal["short", "medium", "long", "detailed"]
DetailLevel = Literal["minimal", "balanced", "detailed", "comprehensive"]

Chooser = Callable[[Sequence[str], int], list[str]]

# ---------------------------------------------------------------------------
# Phrase pools.
# ---------------------------------------------------------------------------

STOPLIST = frozenset(
    ["beautiful", "stunning", "amazing", "incredible", "gorgeous", "lovely", "wonderful"]
)

MINIMAL_MAX_WORDS = 15

DETAIL_PHRASES = (
    "with intricate details",
    "featuring rich textures",
    "showcasing fine craftsmanship",
    "with careful attention to lighting",
    "displaying vibrant color palette",
    "with artistic composition",
)

TECHNICAL_PHRASES = (
    "shot with professional camera equipment",
    "using optimal lighting conditions",
    "with precise focus and depth of field",
    "featuring balanced exposure and contrast",
)

ARTISTIC_PHRASES = (
    "following rule of thirds composition",
    "with harmonious color grading",
    "showcasing artistic perspective",
    "demonstrating creative vision",
)

QUALITY_PHRASES = (
    "ultra-high resolution",
    "museum quality",
    "gallery worthy",
    "award winning photography",
)

EXPANSION_PHRASES = (
    "with professional quality and attention to detail",
    "featuring excellent composition and visual appeal",
    "showcasing remarkable clarity and sharpness",
    "displaying exceptional artistic merit",
    "captured with perfect timing and technique",
    "demonstrating mastery of lighting and perspective",
    "with impeccable framing and visual balance",
)

FLUX_PHRASES = (
    "highly detailed",
    "cinematic lighting",
    "ultra realistic",
    "4k resolution",
    "professional photography",
    "sharp focus",
    "vivid colors",
    "masterpiece",
    "best quality",
)

# length target -> (minimum words after expansion, maximum words)
_LENGTH_LIMITS: dict[str, tuple[int | None, int]] = {
    "short": (None, 50),
    "medium": (None, 100),
    "long": (150, 200),
    "detailed": (200, 300),
}


def _default_chooser(pool: Sequence[str], k: int) -> list[str]:
    return random.sample(list(pool), k)


def _words(text: str) -> list[str]:
    return text.split()


# ---------------------------------------------------------------------------
# Detail-level transforms.
# ---------------------------------------------------------------------------


def simplify_prompt(text: str) -> str:
    """Drop generic adjectives and keep the first 15 remaining words.

    If every word is on the stoplist the first 15 original words are kept
    instead, so the result is never empty for non-empty input.
    """
    words = _words(text)
    essential = [word for word in words if word.lower() not in STOPLIST]
    if not essential:
        essential = words
    return " ".join(essential[:MINIMAL_MAX_WORDS])


def add_detailed_descriptions(text: str, chooser: Chooser = _default_chooser) -> str:
    """Append two distinct phrases drawn from :data:`DETAIL_PHRASES`."""
    chosen = chooser(DETAIL_PHRASES, 2)
    return f"{text}, {', '.join(chosen)}"


def add_comprehensive_details(text: str) -> str:
    """Append the lead technical, artistic, and quality phrases."""
    details = [TECHNICAL_PHRASES[0], ARTISTIC_PHRASES[0], QUALITY_PHRASES[0]]
    return f"{text}, {', '.join(details)}"


# ---------------------------------------------------------------------------
# Length transforms.
# ---------------------------------------------------------------------------


def truncate_to_length(text: str, max_words: int) -> str:
    """Cap *text* at *max_words* whitespace-delimited words."""
    words = _words(text)
    if len(words) <= max_words:
        return text
    return " ".join(words[:max_words])


def expand_to_length(text: str, min_words: int, max_words: int) -> str:
    """Append expansion phrases until *min_words* is reached, then cap.

    Phrases are added in their fixed order; if the pool runs out first the
    text is returned as long as it got.
    """
    current = len(_words(text))
    if current >= min_words:
        return truncate_to_length(text, max_words)

    expanded = text
    for phrase in EXPANSION_PHRASES:
        if current >= min_words:
            break
        expanded += f", {phrase}"
        current += len(_words(phrase))

    return truncate_to_length(expanded, max_words)


# ---------------------------------------------------------------------------
# Public entry points.
# ---------------------------------------------------------------------------


def adjust_prompt_style(
    raw_text: str,
    length_target: str | None = None,
    detail_level: str = "balanced",
    *,
    chooser: Chooser | None = None,
) -> str:
    """Apply the detail-level transform, then the length transform.

    Args:
        raw_text: Caption produced by a captioning backend.
        length_target: ``short``, ``medium``, ``long`` or ``detailed``.
            ``None`` (or an unrecognised value) skips the length transform.
        detail_level: ``minimal``, ``balanced``, ``detailed`` or
            ``comprehensive``.  Unrecognised values behave like
            ``balanced``.
        chooser: Random selection function with the signature of
            :func:`random.sample`.

    Returns:
        The styled prompt text.
    """
    chooser = chooser or _default_chooser
    text = raw_text

    if detail_level == "minimal":
        text = simplify_prompt(text)
    elif detail_level == "detailed":
        text = add_detailed_descriptions(text, chooser)
    elif detail_level == "comprehensive":
        text = add_comprehensive_details(text)

    limits = _LENGTH_LIMITS.get(length_target) if length_target else None
    if limits is not None:
        min_words, max_words = limits
        if min_words is None:
            text = truncate_to_length(text, max_words)
        else:
            text = expand_to_length(text, min_words, max_words)

    # Whitespace-only captions have no words to style.
    if not _words(text):
        return raw_text
    return text


def enhance_for_flux(text: str, *, chooser: Chooser | None = None) -> str:
    """Append three distinct quality phrases for Flux-optimized prompts."""
    chooser = chooser or _default_chooser
    chosen = chooser(FLUX_PHRASES, 3)
    return f"{text}, {', '.join(chosen)}"
