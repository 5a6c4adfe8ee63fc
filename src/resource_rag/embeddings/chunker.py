"""
Text Chunker

Splits resource text into ordered, overlapping chunks sized for the
embedding provider. Token budgets are converted to character budgets with a
fixed characters-per-token approximation; no tokenizer is invoked.

Key Properties
--------------
- Lazy: chunk_text() is a generator, so only one chunk is held at a time
- Deterministic: a pure function of its input and budgets
- Boundary-aware: cuts prefer paragraph > sentence > comma > whitespace
- Always terminates, including on text with no whitespace at all
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import Iterator, List, Optional

DEFAULT_MAX_TOKENS = 500
DEFAULT_OVERLAP_TOKENS = 50
DEFAULT_CHARS_PER_TOKEN = 4

# Break search window around the candidate end, in characters
_LOOKBEHIND_CHARS = 200
_LOOKAHEAD_CHARS = 100

# Highest priority first. Patterns sharing a priority compete on position.
_BREAK_PRIORITIES = (
    (re.compile(r"\n\n"),),
    (re.compile(r"\.\s"), re.compile(r"[!?]\s")),
    (re.compile(r",\s"),),
    (re.compile(r"\s"),),
)

_WHITESPACE_RUN = re.compile(r"\s+")


@dataclass(frozen=True)
class TextChunk:
    """One chunk of normalized text."""
    index: int
    content: str
    approx_tokens: int


def normalize_text(text: Optional[str]) -> str:
    """
    Collapse whitespace runs to single spaces and trim.
    """
    if not text:
        return ""
    return _WHITESPACE_RUN.sub(" ", text).strip()


def approx_tokens(text: str, chars_per_token: int = DEFAULT_CHARS_PER_TOKEN) -> int:
    return math.ceil(len(text) / chars_per_token)


def _find_break(text: str, window_start: int, window_end: int) -> int:
    """
    Return the position just after the last highest-priority separator
    inside text[window_start:window_end], or -1 if none is found.
    """
    window = text[window_start:window_end]
    for patterns in _BREAK_PRIORITIES:
        best = -1
        for pattern in patterns:
            for match in pattern.finditer(window):
                best = max(best, match.end())
        if best >= 0:
            return window_start + best
    return -1


def chunk_text(
    text: Optional[str],
    max_tokens: int = DEFAULT_MAX_TOKENS,
    overlap_tokens: int = DEFAULT_OVERLAP_TOKENS,
    chars_per_token: int = DEFAULT_CHARS_PER_TOKEN,
) -> Iterator[TextChunk]:
    """
    Lazily split text into overlapping chunks.

    Parameters
    ----------
    text : Optional[str]
        Raw text of any length. Whitespace is normalized before splitting
        and the normalized form is what the chunks contain.

    max_tokens : int
        Approximate token budget per chunk.

    overlap_tokens : int
        Approximate tokens shared by consecutive chunks.

    chars_per_token : int
        Characters-per-token approximation used to derive char budgets.

    Yields
    ------
    TextChunk
        Chunks with contiguous indices starting at 0.
    """
    clean = normalize_text(text)
    if not clean:
        return

    max_chars = max_tokens * chars_per_token
    overlap_chars = overlap_tokens * chars_per_token
    length = len(clean)

    if length <= max_chars:
        yield TextChunk(0, clean, approx_tokens(clean, chars_per_token))
        return

    start = 0
    index = 0
    last_end = -1

    while start < length:
        end = start + max_chars

        if end >= length:
            end = length
        else:
            window_start = max(start + max_chars - _LOOKBEHIND_CHARS, start)
            window_end = min(start + max_chars + _LOOKAHEAD_CHARS, length)
            cut = _find_break(clean, window_start, window_end)
            # A cut at or before the previous end would leave a gap or stall
            if cut > max(start, last_end):
                end = cut

        if end <= last_end:
            break

        content = clean[start:end].strip()
        if content:
            yield TextChunk(index, content, approx_tokens(content, chars_per_token))
            index += 1

        if end >= length:
            break

        # Overlap only when the next chunk can still reach past this one
        next_start = end - overlap_chars
        if start < next_start and next_start + max_chars > end:
            start = next_start
        else:
            start = end
        last_end = end


def count_chunks(
    text: Optional[str],
    max_tokens: int = DEFAULT_MAX_TOKENS,
    overlap_tokens: int = DEFAULT_OVERLAP_TOKENS,
    chars_per_token: int = DEFAULT_CHARS_PER_TOKEN,
) -> int:
    """
    Count chunks without materializing them.
    """
    return sum(
        1 for _ in chunk_text(text, max_tokens, overlap_tokens, chars_per_token)
    )


def split_text(
    text: Optional[str],
    max_tokens: int = DEFAULT_MAX_TOKENS,
    overlap_tokens: int = DEFAULT_OVERLAP_TOKENS,
    chars_per_token: int = DEFAULT_CHARS_PER_TOKEN,
) -> List[TextChunk]:
    """
    Materialize all chunks. Intended for short texts and diagnostics.
    """
    return list(chunk_text(text, max_tokens, overlap_tokens, chars_per_token))
