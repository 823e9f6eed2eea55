"""Plain-text normalisation for chat output and persona lookup.

Two concerns live here:

1. **Markdown stripping** -- the chat stream is rendered as plain text, so
   headings, emphasis, code fences, inline code, list markers and links are
   reduced to their text.  Applied to every streamed delta and to the
   follow-up completion after a tool call.

2. **Name matching** -- persona names typed by a user ("chef", "the Travel
   guide") are matched against the stored persona list with rapidfuzz.
"""

import re

from rapidfuzz import fuzz, process

_HEADING_RE = re.compile(r"^#+\s+(.*)$", re.MULTILINE)
_BOLD_STAR_RE = re.compile(r"\*\*([^*]+)\*\*")
_BOLD_UNDERSCORE_RE = re.compile(r"__([^_]+)__")
_ITALIC_STAR_RE = re.compile(r"\*([^*]+)\*")
_ITALIC_UNDERSCORE_RE = re.compile(r"_([^_]+)_")
_CODE_BLOCK_RE = re.compile(r"```[\s\S]*?```")
_INLINE_CODE_RE = re.compile(r"`([^`]+)`")
_BULLET_RE = re.compile(r"^[*-]\s+(.*)$", re.MULTILINE)
_NUMBERED_RE = re.compile(r"^\d+\.\s+(.*)$", re.MULTILINE)
_LINK_RE = re.compile(r"\[([^\]]+)\]\([^)]+\)")


def _unfence(match: re.Match[str]) -> str:
    # Drop the opening fence line (with its language tag) and the closing fence.
    block = match.group(0)
    block = re.sub(r"^```.*$", "", block, count=1, flags=re.MULTILINE)
    block = re.sub(r"```$", "", block)
    return block.strip()


def strip_markdown(text: str) -> str:
    """Reduce markdown formatting in *text* to plain text.

    Whitespace outside code fences is preserved so the function is safe to
    apply to individual streamed deltas.

    Args:
        text: Possibly markdown-formatted text.

    Returns:
        The text with markdown syntax removed.  Empty input returns ``""``.
    """
    if not text:
        return ""

    text = _HEADING_RE.sub(r"\1", text)
    text = _BOLD_STAR_RE.sub(r"\1", text)
    text = _BOLD_UNDERSCORE_RE.sub(r"\1", text)
    text = _ITALIC_STAR_RE.sub(r"\1", text)
    text = _ITALIC_UNDERSCORE_RE.sub(r"\1", text)
    text = _CODE_BLOCK_RE.sub(_unfence, text)
    text = _INLINE_CODE_RE.sub(r"\1", text)
    text = _BULLET_RE.sub(r"\1", text)
    text = _NUMBERED_RE.sub(r"\1", text)
    text = _LINK_RE.sub(r"\1", text)
    return text


def fuzzy_match(query: str, candidates: list[str], threshold: float = 80.0) -> str | None:
    """Return the candidate closest to *query*, or ``None`` below *threshold*.

    Uses rapidfuzz ``WRatio`` on lower-cased strings, which tolerates extra
    words ("the chef persona") and small typos ("travle guide").

    Args:
        query: The user-supplied name.
        candidates: Names to match against.
        threshold: Minimum score (0-100) for a match.

    Returns:
        The best matching candidate string, or ``None``.
    """
    if not query or not candidates:
        return None

    lowered = {c.lower(): c for c in candidates}
    best = process.extractOne(query.lower().strip(), list(lowered), scorer=fuzz.WRatio)
    if best is None:
        return None
    match, score, _ = best
    if score < threshold:
        return None
    return lowered[match]
